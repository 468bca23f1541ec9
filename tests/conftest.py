"""
Pytest configuration and fixtures.
Adds the repo root to sys.path so tests can import the top-level modules.
"""

import sys
from pathlib import Path

import pytest

repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))


class FakeClock:
    """Monotonic clock + sleep that only advances when someone sleeps."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def advance(self, sec: float) -> None:
        self.now += sec

    async def sleep(self, sec: float) -> None:
        self.sleeps.append(sec)
        self.now += sec


@pytest.fixture
def fake_clock():
    return FakeClock()
