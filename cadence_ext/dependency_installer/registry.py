"""Installer Registry - dependency-ordered set of installers."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Type, TypeVar

from cadence_ext.core.logging_utils import get_module_logger
from cadence_ext.core.settings import Settings

from .installer import Installer

logger = get_module_logger("InstallerRegistry")

I = TypeVar("I", bound=Installer)


class InstallerConfigurationError(ValueError):
    """The declared installer dependency graph is invalid (e.g. cyclic)."""


class InstallerRegistry:
    """
    Holds one instance per installer class in topological order.

    ``register()`` walks the dependency graph depth-first: each class's
    dependencies are registered before the class itself, and a class that
    is already registered is skipped. The position of every installer is
    therefore fixed by its first resolution, and every dependency appears
    earlier in ``registered_installers`` than its dependents.
    """

    def __init__(
        self,
        installer_classes: Iterable[Type[Installer]] = (),
        *,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings
        self.registered_installers: List[Installer] = []
        self._by_class: Dict[Type[Installer], Installer] = {}
        self.register(installer_classes)

    def register(self, installer_classes: Iterable[Type[Installer]]) -> None:
        for installer_class in installer_classes:
            self._visit(installer_class, [])

    def _visit(self, installer_class: Type[Installer], path: List[Type[Installer]]) -> None:
        if installer_class in self._by_class:
            return

        if installer_class in path:
            cycle = path[path.index(installer_class):] + [installer_class]
            raise InstallerConfigurationError(
                "Cyclic installer dependencies: " + " -> ".join(cls.__name__ for cls in cycle)
            )

        path.append(installer_class)
        for dependency in installer_class.dependencies:
            self._visit(dependency, path)
        path.pop()

        installer = installer_class.from_settings(self.settings)
        self._by_class[installer_class] = installer
        self.registered_installers.append(installer)
        logger.debug("Registered installer %s", installer.get_name())

    def find(self, installer_class: Type[I]) -> Optional[I]:
        return self._by_class.get(installer_class)  # type: ignore[return-value]

    def __iter__(self):
        return iter(self.registered_installers)

    def __len__(self) -> int:
        return len(self.registered_installers)


__all__ = ["InstallerRegistry", "InstallerConfigurationError"]
