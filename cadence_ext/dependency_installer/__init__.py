from .installer import Installer, InstallError
from .registry import InstallerRegistry, InstallerConfigurationError
from .dependency_installer import DependencyInstaller, InstallReport

__all__ = [
    'Installer',
    'InstallError',
    'InstallerRegistry',
    'InstallerConfigurationError',
    'DependencyInstaller',
    'InstallReport',
]
