"""Remote sandbox providers."""

from .base import RemoteSandbox, SandboxProvider

__all__ = ["RemoteSandbox", "SandboxProvider"]
