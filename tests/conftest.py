from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
for entry in (ROOT, ROOT / "src"):
    if str(entry) not in sys.path:
        sys.path.insert(0, str(entry))


import pytest

from lenssync.host import MemorySettingsStore, RecordingController
from lenssync.schema import SyncOptions
from tests.host_helpers import FakeLauncher, RecordingSleep


@pytest.fixture
def options() -> SyncOptions:
    return SyncOptions()


@pytest.fixture
def store() -> MemorySettingsStore:
    return MemorySettingsStore()


@pytest.fixture
def controller() -> RecordingController:
    return RecordingController()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_launcher():
    def _make(stdout: str = "", *, returncode: int = 0, error: Exception | None = None):
        return FakeLauncher(stdout=stdout, returncode=returncode, error=error)

    return _make
