"""User settings for the language server session and dependency installer."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from .config_manager import ConfigManager, get_config_manager
from .logging_utils import get_module_logger
from .paths import CONFIG_PATH

logger = get_module_logger("Settings")

DEFAULT_FLOW_COMMAND = "flow"
DEFAULT_EMULATOR_HOST = "127.0.0.1"
DEFAULT_EMULATOR_PORT = 3569


@dataclass
class Settings:
    """Typed view over the ``key = value`` settings file.

    Attributes:
        flow_command: Executable used to launch the language server.
        num_accounts: Number of accounts the language server pre-creates.
        access_check_mode: Cadence access check mode passed at startup.
        custom_config_path: Explicit flow.json path (relative paths resolve
            against the workspace). Empty means "look in the workspace".
        workspace: Directory that holds the Flow project.
        emulator_host: Host checked for a running emulator.
        emulator_port: Port checked for a running emulator.
        poll_interval: Seconds between emulator watcher ticks.
        install_settle_delay: Seconds to wait before installing dependencies.
        config_watch_interval: Seconds between flow.json change checks.
    """

    flow_command: str = DEFAULT_FLOW_COMMAND
    num_accounts: int = 5
    access_check_mode: str = "strict"
    custom_config_path: str = ""
    workspace: Path = field(default_factory=Path.cwd)
    emulator_host: str = DEFAULT_EMULATOR_HOST
    emulator_port: int = DEFAULT_EMULATOR_PORT
    poll_interval: float = 1.0
    install_settle_delay: float = 2.0
    config_watch_interval: float = 1.0

    @classmethod
    def from_config(
        cls,
        config: Dict[str, str],
        *,
        workspace: Optional[Path] = None,
        manager: Optional[ConfigManager] = None,
    ) -> "Settings":
        cm = manager or get_config_manager()
        defaults = cls()
        return cls(
            flow_command=cm.get_str(config, 'flow_command', defaults.flow_command) or defaults.flow_command,
            num_accounts=cm.get_int(config, 'num_accounts', defaults.num_accounts),
            access_check_mode=cm.get_str(config, 'access_check_mode', defaults.access_check_mode),
            custom_config_path=cm.get_str(config, 'custom_config_path', defaults.custom_config_path),
            workspace=Path(workspace) if workspace is not None else defaults.workspace,
            emulator_host=cm.get_str(config, 'emulator_host', defaults.emulator_host),
            emulator_port=cm.get_int(config, 'emulator_port', defaults.emulator_port),
            poll_interval=cm.get_float(config, 'poll_interval', defaults.poll_interval),
            install_settle_delay=cm.get_float(config, 'install_settle_delay', defaults.install_settle_delay),
            config_watch_interval=cm.get_float(config, 'config_watch_interval', defaults.config_watch_interval),
        )

    @classmethod
    async def load(
        cls,
        config_path: Path = CONFIG_PATH,
        *,
        workspace: Optional[Path] = None,
    ) -> "Settings":
        manager = get_config_manager()
        config = await manager.read_config_async(Path(config_path))
        settings = cls.from_config(config, workspace=workspace, manager=manager)
        logger.debug("Loaded settings from %s: %s", config_path, settings)
        return settings


__all__ = [
    'Settings',
    'DEFAULT_FLOW_COMMAND',
    'DEFAULT_EMULATOR_HOST',
    'DEFAULT_EMULATOR_PORT',
]
