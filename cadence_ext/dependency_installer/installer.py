"""Base class for installable external tool dependencies."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import ClassVar, Optional, Sequence, Tuple, Type

from cadence_ext.core.logging_utils import get_module_logger
from cadence_ext.core.settings import Settings


class InstallError(Exception):
    """Raised by ``run_install`` when a tool could not be installed."""


class Installer(ABC):
    """One external tool that can be verified and installed.

    Subclasses declare ``name`` and the installer *classes* they depend on.
    The registry creates exactly one instance per class.
    """

    name: ClassVar[str] = ""
    dependencies: ClassVar[Sequence[Type["Installer"]]] = ()

    def __init__(self) -> None:
        self.logger = get_module_logger(f"Installer.{self.get_name()}")

    @classmethod
    def from_settings(cls, settings: Optional[Settings]) -> "Installer":
        """Build the installer for the given user settings."""
        return cls()

    def get_name(self) -> str:
        return self.name or type(self).__name__

    @abstractmethod
    async def verify_install(self) -> bool:
        """Return True when the tool is present on the host."""

    @abstractmethod
    async def run_install(self) -> None:
        """Install the tool, raising ``InstallError`` on failure."""

    async def run_command(self, *cmd: str) -> Tuple[int, str]:
        """Run ``cmd`` and return ``(returncode, combined output)``.

        A missing executable is reported as return code 127.
        """
        self.logger.debug("Running: %s", " ".join(cmd))
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except FileNotFoundError as e:
            return 127, str(e)

        stdout, _ = await process.communicate()
        return process.returncode, stdout.decode(errors="replace").strip()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.get_name()!r}>"


__all__ = ["Installer", "InstallError"]
