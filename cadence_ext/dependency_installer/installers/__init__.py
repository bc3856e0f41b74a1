from .flow_cli import InstallFlowCLI

# Installers requested at startup; their dependencies are pulled in by the registry.
INSTALLERS = [
    InstallFlowCLI,
]

__all__ = ["INSTALLERS", "InstallFlowCLI"]
