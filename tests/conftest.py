"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from animus_resilience.clock import ManualClock  # noqa: E402


class RecordingSink:
    """Event sink that keeps every event it receives."""

    def __init__(self):
        self.events: list[tuple[str, dict]] = []

    def __call__(self, event: str, payload: dict) -> None:
        self.events.append((event, payload))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def of(self, name: str) -> list[dict]:
        return [payload for event, payload in self.events if event == name]


@pytest.fixture
def clock():
    """Deterministic virtual clock starting at t=0."""
    return ManualClock()


@pytest.fixture
def events():
    """Recording event sink."""
    return RecordingSink()
