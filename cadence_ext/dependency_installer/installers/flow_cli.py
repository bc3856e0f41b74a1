"""Installer for the Flow CLI, which ships the Cadence language server."""

from __future__ import annotations

import shutil
import sys
from typing import Optional

from cadence_ext.core.settings import DEFAULT_FLOW_COMMAND, Settings

from ..installer import Installer, InstallError

INSTALL_SCRIPT_URL = "https://raw.githubusercontent.com/onflow/flow-cli/master/install.sh"
INSTALL_SCRIPT_PS_URL = "https://raw.githubusercontent.com/onflow/flow-cli/master/install.ps1"


class InstallFlowCLI(Installer):
    name = "Flow CLI"

    def __init__(self, flow_command: str = DEFAULT_FLOW_COMMAND) -> None:
        super().__init__()
        self.flow_command = flow_command

    @classmethod
    def from_settings(cls, settings: Optional[Settings]) -> "InstallFlowCLI":
        if settings is None:
            return cls()
        return cls(flow_command=settings.flow_command)

    async def verify_install(self) -> bool:
        returncode, output = await self.run_command(self.flow_command, "version")
        if returncode != 0:
            self.logger.debug("'%s version' failed (%d): %s", self.flow_command, returncode, output)
            return False
        return True

    async def run_install(self) -> None:
        if sys.platform == "win32":
            cmd = [
                "powershell", "-NoProfile", "-Command",
                f"iex \"& {{ $(irm '{INSTALL_SCRIPT_PS_URL}') }}\"",
            ]
        elif sys.platform == "darwin" and shutil.which("brew"):
            cmd = ["brew", "install", "flow-cli"]
        else:
            cmd = ["sh", "-c", f"sh -ci \"$(curl -fsSL {INSTALL_SCRIPT_URL})\""]

        self.logger.info("Installing %s", self.get_name())
        returncode, output = await self.run_command(*cmd)
        if returncode != 0:
            raise InstallError(f"{self.get_name()} installer exited with code {returncode}: {output[-500:]}")


__all__ = ["InstallFlowCLI"]
