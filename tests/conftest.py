"""Shared pytest configuration and fixtures for the cadence-ext test suite."""

import sys
from pathlib import Path

import pytest

# Ensure the project root is in the path for imports
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from tests.infrastructure.fixtures import get_fake_language_server  # noqa: E402


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
    config.addinivalue_line(
        "markers", "subprocess: mark test as launching real child processes"
    )


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def test_data_dir() -> Path:
    """Return the test fixtures directory."""
    return PROJECT_ROOT / "tests" / "infrastructure" / "fixtures"


@pytest.fixture
def fake_language_server() -> Path:
    """Return the path of the scripted JSON-RPC language server."""
    return get_fake_language_server()
