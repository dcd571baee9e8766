"""Ownership of the single remote sandbox used by a deployment."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .config import SandboxConfig
from .errors import ProvisioningError
from .models import MetricSample, format_bytes
from .providers.base import RemoteSandbox, SandboxProvider

logger = logging.getLogger("stackbox.manager")

# Resource usage above this percentage is logged as a warning.
USAGE_WARNING_PCT = 80.0


@dataclass
class SandboxHandle:
    """A live remote sandbox."""
    id: str
    template_id: str
    api_key: str = field(repr=False)
    remote: RemoteSandbox = field(repr=False, compare=False)

    def url_for(self, port: int) -> str:
        return f"https://{self.remote.get_host(port)}"


class SandboxManager:
    """Lazily creates one sandbox and hands it to every caller.

    ``acquire()`` is idempotent; concurrent first calls share a single
    creation. ``release()`` kills the sandbox, and the next ``acquire()``
    creates a fresh one.
    """

    def __init__(
        self,
        config: SandboxConfig,
        provider: Optional[SandboxProvider] = None,
        sandbox_id: Optional[str] = None,
    ):
        config.validate()
        self.config = config
        if provider is None:
            from .providers.e2b_sandbox import E2BProvider

            provider = E2BProvider()
        self.provider = provider
        # attach to an existing sandbox on first acquire instead of creating one
        self.sandbox_id = sandbox_id
        self._handle: Optional[SandboxHandle] = None
        self._creation: Optional[asyncio.Future] = None

    @property
    def handle(self) -> Optional[SandboxHandle]:
        return self._handle

    async def acquire(self) -> SandboxHandle:
        while True:
            if self._handle is not None:
                return self._handle
            if self._creation is None:
                self._creation = asyncio.ensure_future(self._create())
            # shield: a cancelled waiter must not cancel creation for the others
            handle = await asyncio.shield(self._creation)
            if self._handle is handle:
                return handle
            # released while this caller was waiting; never hand out a killed sandbox
            logger.debug("Sandbox %s was released during acquire, acquiring again", handle.id)

    async def _create(self) -> SandboxHandle:
        task = asyncio.current_task()
        owned = False
        try:
            if self.sandbox_id:
                remote = await self.provider.connect(self.sandbox_id, self.config.api_key)
            else:
                remote = await self.provider.create(
                    self.config.template_id,
                    self.config.api_key,
                    self.config.sandbox_timeout_s,
                )
        except ProvisioningError:
            logger.error("Sandbox creation failed (template=%s)", self.config.template_id)
            raise
        except Exception as e:
            raise ProvisioningError(f"Sandbox creation failed: {e}") from e
        finally:
            # release() detaches an in-flight creation; only the attached one installs its handle
            owned = self._creation is task
            if owned:
                self._creation = None

        handle = SandboxHandle(
            id=remote.sandbox_id,
            template_id=self.config.template_id,
            api_key=self.config.api_key,
            remote=remote,
        )
        if owned:
            self._handle = handle
            logger.info("Sandbox %s acquired (provider=%s)", handle.id, self.provider.name)
        return handle

    async def release(self) -> None:
        """Kill the sandbox if one exists. No-op otherwise.

        A creation still in flight is awaited and its sandbox killed too;
        callers waiting on it acquire a fresh sandbox instead.
        """
        creation, self._creation = self._creation, None
        handle, self._handle = self._handle, None
        self.sandbox_id = None

        if creation is not None:
            try:
                created = await asyncio.shield(creation)
            except ProvisioningError as e:
                logger.debug("Nothing to release, creation failed: %s", e)
            else:
                if created is not handle:
                    logger.info("Releasing sandbox %s (created during release)", created.id)
                    await created.remote.kill()

        if handle is None:
            return
        logger.info("Releasing sandbox %s", handle.id)
        await handle.remote.kill()

    async def url_for(self, port: int) -> str:
        handle = await self.acquire()
        return handle.url_for(port)

    async def info(self) -> dict:
        handle = await self.acquire()
        return {
            "sandbox_id": handle.id,
            "template_id": handle.template_id,
            "provider": self.provider.name,
        }

    async def metrics(self) -> List[MetricSample]:
        handle = await self.acquire()
        return list(await handle.remote.get_metrics())

    async def log_metrics(self) -> Optional[MetricSample]:
        """Log the latest resource sample and warn about high usage."""
        samples = await self.metrics()
        if not samples:
            logger.info("No metrics reported yet for sandbox")
            return None

        latest = samples[-1]
        logger.info(
            "Sandbox metrics: cpu=%.1f%% (%d cores) mem=%s/%s (%.1f%%) disk=%s/%s (%.1f%%)",
            latest.cpu_used_pct,
            latest.cpu_count,
            format_bytes(latest.mem_used),
            format_bytes(latest.mem_total),
            latest.mem_used_pct,
            format_bytes(latest.disk_used),
            format_bytes(latest.disk_total),
            latest.disk_used_pct,
        )
        for label, pct in (
            ("CPU", latest.cpu_used_pct),
            ("memory", latest.mem_used_pct),
            ("disk", latest.disk_used_pct),
        ):
            if pct > USAGE_WARNING_PCT:
                logger.warning("High %s usage in sandbox: %.1f%%", label, pct)
        return latest

    async def __aenter__(self) -> "SandboxManager":
        await self.acquire()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.release()
