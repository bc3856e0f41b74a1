"""Locating and watching the Flow project configuration (flow.json)."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Awaitable, Callable, Optional

import aiofiles.os

from cadence_ext.core.asyncio_utils import cancel_and_wait, create_logged_task
from cadence_ext.core.logging_utils import get_module_logger
from cadence_ext.core.paths import FLOW_CONFIG_FILENAME
from cadence_ext.core.settings import Settings

logger = get_module_logger("FlowConfig")

ConfigChangeCallback = Callable[[], Awaitable[None]]


class FlowConfigError(Exception):
    """The Flow configuration file could not be found."""


class ConfigWatch:
    """Handle for a running config watch; ``stop()`` ends it."""

    def __init__(self, task: asyncio.Task) -> None:
        self._task = task

    @property
    def running(self) -> bool:
        return not self._task.done()

    async def stop(self) -> None:
        await cancel_and_wait(self._task)


class FlowConfig:

    def __init__(self, settings: Settings):
        self.settings = settings

    async def get_config_path(self) -> Path:
        """Resolve the flow.json path from settings or the workspace."""
        custom = self.settings.custom_config_path.strip()
        if custom:
            path = Path(custom).expanduser()
            if not path.is_absolute():
                path = Path(self.settings.workspace) / path
        else:
            path = Path(self.settings.workspace) / FLOW_CONFIG_FILENAME

        if not await aiofiles.os.path.isfile(path):
            raise FlowConfigError(f"Flow configuration not found at {path}")

        return path.resolve()

    async def _mtime(self, path: Path) -> Optional[float]:
        try:
            return (await aiofiles.os.stat(path)).st_mtime
        except FileNotFoundError:
            return None

    def watch(
        self,
        path: Path,
        callback: ConfigChangeCallback,
        interval: Optional[float] = None,
    ) -> ConfigWatch:
        """Poll ``path`` and await ``callback`` whenever its mtime changes.

        Deletion and re-creation both count as changes.
        """
        poll = self.settings.config_watch_interval if interval is None else interval
        task = create_logged_task(
            self._watch_loop(Path(path), callback, poll),
            logger=logger,
            context=f"watch:{Path(path).name}",
        )
        return ConfigWatch(task)

    async def _watch_loop(self, path: Path, callback: ConfigChangeCallback, interval: float) -> None:
        last = await self._mtime(path)
        logger.debug("Watching %s for changes", path)

        while True:
            await asyncio.sleep(interval)
            current = await self._mtime(path)
            if current == last:
                continue
            last = current

            logger.info("Flow configuration changed: %s", path)
            try:
                await callback()
            except Exception as e:
                logger.error("Config change handler failed: %s", e, exc_info=True)


__all__ = ["FlowConfig", "FlowConfigError", "ConfigWatch"]
