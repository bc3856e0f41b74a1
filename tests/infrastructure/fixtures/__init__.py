"""Scripted processes and sample files used by the test suite.

Usage:
    from tests.infrastructure.fixtures import get_fake_language_server

    script = get_fake_language_server()
    # launch with sys.executable
"""

from pathlib import Path

FIXTURES_DIR = Path(__file__).parent


def get_fake_language_server() -> Path:
    return FIXTURES_DIR / "fake_language_server.py"
