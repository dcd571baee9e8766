"""File and directory operations inside the sandbox."""

import logging
import posixpath
from pathlib import Path
from typing import List, Mapping, Union

from .manager import SandboxManager
from .models import FileEntry

logger = logging.getLogger("stackbox.files")


def join_remote(root: str, relative: str) -> str:
    """Join a project-relative path onto ``root``.

    Generated projects use both ``main.py`` and ``/main.py`` for the same
    file, so a leading slash is treated as relative to ``root``.
    """
    rel = relative.replace("\\", "/").lstrip("/")
    return posixpath.normpath(posixpath.join(root, rel))


def parent_chain(path: str) -> List[str]:
    """Every ancestor of ``path`` plus itself, shallowest first.

    >>> parent_chain("/home/backend/app")
    ['/home', '/home/backend', '/home/backend/app']
    """
    parts = [p for p in posixpath.normpath(path).split("/") if p]
    return ["/" + "/".join(parts[: i + 1]) for i in range(len(parts))]


class FileOperations:
    """Thin wrapper over the remote filesystem.

    ``write_file`` never creates parent directories; callers that write
    nested paths use :meth:`ensure_directories` or :meth:`write_tree`.
    """

    def __init__(self, manager: SandboxManager):
        self.manager = manager

    async def write_file(self, path: str, content: str) -> None:
        handle = await self.manager.acquire()
        await handle.remote.write_file(path, content)
        logger.debug("Wrote %s (%d bytes)", path, len(content))

    async def read_file(self, path: str) -> str:
        handle = await self.manager.acquire()
        return await handle.remote.read_file(path)

    async def create_directory(self, path: str) -> bool:
        """Create ``path``; True if created, False if it already existed."""
        handle = await self.manager.acquire()
        created = await handle.remote.make_dir(path)
        if created:
            logger.debug("Created directory %s", path)
        return created

    async def list_files(self, path: str = "/home") -> List[FileEntry]:
        handle = await self.manager.acquire()
        return list(await handle.remote.list_dir(path))

    async def ensure_directories(self, path: str) -> None:
        """Create ``path`` and every missing ancestor, one level at a time."""
        for directory in parent_chain(path):
            await self.create_directory(directory)

    async def write_tree(self, root: str, files: Mapping[str, str]) -> List[str]:
        """Write ``files`` (relative path -> content) below ``root``.

        Returns the absolute paths written, in order.
        """
        await self.ensure_directories(root)
        created: set[str] = set(parent_chain(root))
        written: List[str] = []
        for rel_path, content in files.items():
            target = join_remote(root, rel_path)
            parent = posixpath.dirname(target)
            if parent not in created:
                await self.ensure_directories(parent)
                created.update(parent_chain(parent))
            await self.write_file(target, content)
            written.append(target)
        logger.info("Wrote %d files under %s", len(written), root)
        return written

    async def upload_file(self, local_path: Union[str, Path], remote_path: str) -> str:
        """Copy a local text file into the sandbox; returns ``remote_path``."""
        content = Path(local_path).read_text(encoding="utf-8")
        await self.write_file(remote_path, content)
        logger.info("Uploaded %s -> %s", local_path, remote_path)
        return remote_path

    async def download_file(self, remote_path: str, local_path: Union[str, Path]) -> Path:
        """Copy a sandbox file to ``local_path``, creating local parents."""
        content = await self.read_file(remote_path)
        target = Path(local_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        logger.info("Downloaded %s -> %s", remote_path, target)
        return target
