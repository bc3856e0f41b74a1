"""Dependency installation and language server session management for Cadence tooling."""

__version__ = "0.1.0"

__all__ = ['__version__']
