"""Unit test fixtures for isolated, fast test execution.

Everything here avoids real network, process and installer I/O:
- ``notifier`` records user-facing messages
- ``workspace`` is a temporary Flow project containing a flow.json
- ``settings`` points at that workspace with zero delays
"""

from __future__ import annotations

from pathlib import Path

import pytest

from cadence_ext.core.settings import Settings
from tests.infrastructure.mocks.session_mocks import FakeLanguageClient, RecordingNotifier


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    project = tmp_path / "project"
    project.mkdir()
    (project / "flow.json").write_text('{"networks": {}}', encoding="utf-8")
    return project


@pytest.fixture
def settings(workspace: Path) -> Settings:
    return Settings(
        workspace=workspace,
        poll_interval=0.01,
        install_settle_delay=0,
        config_watch_interval=0.01,
    )


@pytest.fixture(autouse=True)
def reset_fake_clients():
    FakeLanguageClient.instances.clear()
    yield
    FakeLanguageClient.instances.clear()
