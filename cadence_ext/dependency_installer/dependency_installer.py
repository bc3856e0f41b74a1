"""
Dependency Installer - detects and installs missing external tools.

Missing-dependency detection is memoized in a StateCache so repeated
checks are cheap and concurrent checks share one scan. Installation walks
the missing installers in registry order (dependencies first); a failed
installer is reported and skipped, and dependents of anything that did not
get installed are failed without being attempted.
"""

from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Type

from cadence_ext.core.asyncio_utils import create_logged_task
from cadence_ext.core.logging_utils import get_module_logger
from cadence_ext.core.notifications import LoggingNotifier, Notifier
from cadence_ext.core.settings import Settings
from cadence_ext.core.state_cache import StateCache

from .installer import Installer, InstallError
from .installers import INSTALLERS
from .registry import InstallerRegistry

DEFAULT_SETTLE_DELAY = 2.0


@dataclass
class InstallReport:
    """Outcome of one ``install_missing()`` batch."""
    installed: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    still_missing: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.still_missing


class DependencyInstaller:

    def __init__(
        self,
        installer_classes: Optional[Iterable[Type[Installer]]] = None,
        *,
        settings: Optional[Settings] = None,
        notifier: Optional[Notifier] = None,
        settle_delay: Optional[float] = None,
        platform: Optional[str] = None,
    ):
        self.logger = get_module_logger("DependencyInstaller")
        self.notifier: Notifier = notifier or LoggingNotifier()
        if settle_delay is None:
            settle_delay = settings.install_settle_delay if settings is not None else DEFAULT_SETTLE_DELAY
        self.settle_delay = settle_delay
        self.platform = platform or sys.platform

        self.registry = InstallerRegistry(
            INSTALLERS if installer_classes is None else installer_classes,
            settings=settings,
        )
        self.missing_dependencies: StateCache[List[Installer]] = StateCache(
            self._find_missing, logger=self.logger
        )
        self.missing_dependencies.subscribe(self._on_missing_changed)

        self._background: Set[asyncio.Task] = set()

    @property
    def registered_installers(self) -> List[Installer]:
        return self.registry.registered_installers

    async def _find_missing(self) -> List[Installer]:
        missing: List[Installer] = []
        for installer in self.registered_installers:
            try:
                present = await installer.verify_install()
            except Exception as e:
                self.logger.error(
                    "Could not verify %s, treating it as missing: %s",
                    installer.get_name(), e, exc_info=True,
                )
                present = False
            if not present:
                missing.append(installer)

        self.logger.debug("Missing dependencies: %s", [x.get_name() for x in missing])
        return missing

    def _on_missing_changed(self, missing: List[Installer]) -> None:
        if not missing:
            return
        self.notifier.prompt_error(
            "Not all dependencies are installed: " + ", ".join(x.get_name() for x in missing),
            "Install Missing Dependencies",
            self._schedule_install,
        )

    def _schedule_install(self) -> None:
        create_logged_task(
            self.install_missing(),
            logger=self.logger,
            context="install_missing",
            pending=self._background,
        )

    async def check_missing(self) -> List[Installer]:
        return await self.missing_dependencies.get_value()

    async def check_dependencies(self) -> List[Installer]:
        """Force a fresh scan of the host."""
        self.missing_dependencies.invalidate()
        return await self.missing_dependencies.get_value()

    async def install_missing(self) -> InstallReport:
        missing = await self.missing_dependencies.get_value()
        installed: List[Installer] = [x for x in self.registered_installers if x not in missing]
        report = InstallReport()

        # Give the host a moment to settle before launching installers.
        if self.settle_delay > 0:
            await asyncio.sleep(self.settle_delay)

        self.logger.info("Missing dependencies: %s", [x.get_name() for x in missing])

        for installer in missing:
            name = installer.get_name()
            try:
                await self._install_one(installer, installed)
            except InstallError as e:
                report.failed[name] = str(e)
                self.notifier.show_error(str(e))
                self.logger.warning("Failed to install %s: %s", name, e)
            except Exception as e:
                message = f"Failed to install {name}: {e}"
                report.failed[name] = message
                self.notifier.show_error(message)
                self.logger.error("Unexpected error installing %s: %s", name, e, exc_info=True)
            else:
                installed.append(installer)
                report.installed.append(name)

        still_missing = await self.check_dependencies()
        report.still_missing = [x.get_name() for x in still_missing]

        if report.still_missing:
            self.notifier.show_error(
                "Failed to install all dependencies. The following may need to be installed manually: "
                + ", ".join(report.still_missing)
            )
        elif self.platform == "win32":
            self.notifier.show_info(
                "All dependencies installed successfully. Newly installed dependencies "
                "will not be available in terminals until the editor is restarted."
            )
        else:
            self.notifier.show_info(
                "All dependencies installed successfully. You may need to restart active terminals."
            )

        return report

    async def _install_one(self, installer: Installer, installed: List[Installer]) -> None:
        name = installer.get_name()
        installed_classes = {type(x) for x in installed}
        missing_deps = [dep for dep in installer.dependencies if dep not in installed_classes]

        if missing_deps:
            dep_names = []
            for dep in missing_deps:
                registered = self.registry.find(dep)
                dep_names.append(registered.get_name() if registered else dep.__name__)
            raise InstallError(f"Cannot install {name}. Missing dependencies: {', '.join(dep_names)}")

        self.logger.info("Installing %s...", name)
        await installer.run_install()
        self.logger.info("Installed %s successfully.", name)


__all__ = ["DependencyInstaller", "InstallReport", "DEFAULT_SETTLE_DELAY"]
