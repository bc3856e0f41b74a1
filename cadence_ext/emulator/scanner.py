"""
Emulator Scanner - decides whether a usable Flow emulator is running.

An emulator counts as detected when its port accepts connections and the
emulator process runs from the directory that holds the resolved
flow.json. The language server crashes when connected to an emulator
started elsewhere, so a port-only match is rejected and the user is
warned once per mismatch episode.
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Awaitable, Callable, Optional, Sequence

import psutil

from cadence_ext.core.logging_utils import get_module_logger
from cadence_ext.core.notifications import LoggingNotifier, Notifier
from cadence_ext.core.settings import DEFAULT_EMULATOR_HOST, DEFAULT_EMULATOR_PORT

logger = get_module_logger("EmulatorScanner")

EMULATOR_COMMAND = "flow emulator"
PORT_OPEN = "open"
PORT_CLOSED = "closed"
PORT_FILTERED = "filtered"

# Platforms where another process's working directory can be read
LOCATION_CHECK_PLATFORMS = ("linux", "darwin")

LOCATION_WARNING = (
    "Emulator detected running in a different directory than your flow.json config. "
    "To connect an emulator, please run 'flow emulator' in the same directory as your flow.json"
)

ConfigPathProvider = Callable[[], Awaitable[Path]]


def _matches_command(cmdline: Sequence[str], command: str) -> bool:
    """True when argv runs ``command``'s executable with its subcommand words.

    ``grep "flow emulator"`` or ``sh -c "flow emulator"`` do not match, since
    the executable is compared on argv[0] rather than the joined line.
    """
    executable, *words = command.split()
    if not cmdline:
        return False
    name = Path(cmdline[0]).name.lower()
    if name.endswith(".exe"):
        name = name[:-4]
    if name != Path(executable).name.lower():
        return False
    args = list(cmdline[1:])
    return all(word in args for word in words)


def find_emulator_process(command: str = EMULATOR_COMMAND) -> Optional[psutil.Process]:
    """Return the first process running ``command`` (e.g. ``flow emulator``)."""
    for proc in psutil.process_iter(['pid', 'name', 'cmdline']):
        try:
            if _matches_command(proc.info.get('cmdline') or [], command):
                return proc
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue
    return None


def get_emulator_run_path(command: str = EMULATOR_COMMAND) -> Optional[Path]:
    """Working directory of the running emulator, or None if unknown."""
    proc = find_emulator_process(command)
    if proc is None:
        return None
    try:
        return Path(proc.cwd())
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess) as e:
        logger.debug("Cannot read cwd of pid %d: %s", proc.pid, e)
        return None


class EmulatorScanner:

    def __init__(
        self,
        config_path_provider: ConfigPathProvider,
        *,
        host: str = DEFAULT_EMULATOR_HOST,
        port: int = DEFAULT_EMULATOR_PORT,
        command: str = EMULATOR_COMMAND,
        notifier: Optional[Notifier] = None,
        platform: Optional[str] = None,
        connect_timeout: float = 1.0,
    ):
        self.config_path_provider = config_path_provider
        self.host = host
        self.port = port
        self.command = command
        self.notifier: Notifier = notifier or LoggingNotifier()
        self.platform = platform or sys.platform
        self.connect_timeout = connect_timeout

        # Armed until a location warning is shown; re-armed once the
        # mismatch clears.
        self._location_warning_armed = True

    @property
    def location_warning_armed(self) -> bool:
        return self._location_warning_armed

    async def check_port_status(self) -> str:
        """Check the emulator port. Raises OSError on unexpected failures."""
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port),
                timeout=self.connect_timeout,
            )
        except ConnectionRefusedError:
            return PORT_CLOSED
        except asyncio.TimeoutError:
            return PORT_FILTERED

        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return PORT_OPEN

    async def detect(self) -> bool:
        try:
            status = await self.check_port_status()
        except Exception as e:
            logger.error("Emulator port check failed: %s", e)
            return False

        if status != PORT_OPEN:
            self._location_warning_armed = True
            return False

        if not await self.valid_emulator_location():
            if self._location_warning_armed:
                self.notifier.show_warning(LOCATION_WARNING)
                self._location_warning_armed = False
            return False

        self._location_warning_armed = True
        return True

    async def valid_emulator_location(self) -> bool:
        if self.platform not in LOCATION_CHECK_PLATFORMS:
            logger.debug("Cannot verify emulator location on %s", self.platform)
            return True

        try:
            config_path = await self.config_path_provider()
            emulator_dir = await asyncio.to_thread(get_emulator_run_path, self.command)
        except Exception as e:
            logger.debug("Emulator location lookup failed: %s", e)
            return False

        if emulator_dir is None:
            return False

        return _same_directory(emulator_dir, Path(config_path).parent)


def _same_directory(a: Path, b: Path) -> bool:
    try:
        return a.resolve() == b.resolve()
    except OSError:
        return a == b


__all__ = [
    "EmulatorScanner",
    "find_emulator_process",
    "get_emulator_run_path",
    "EMULATOR_COMMAND",
    "LOCATION_WARNING",
    "PORT_OPEN",
    "PORT_CLOSED",
    "PORT_FILTERED",
]
