"""Shared fixtures: a controllable millisecond clock and a settable memory probe."""

import pytest


def pytest_configure(config):
    config.addinivalue_line("markers", "fast: quick unit tests with no external resources")


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> float:
        self.now += ms
        return self.now

    def set(self, ms: float) -> None:
        self.now = ms


class FakeMemoryProbe:
    """Memory probe returning a settable usage ratio."""

    def __init__(self, usage: float = 0.5):
        self.usage = usage
        self.calls = 0

    def __call__(self) -> float:
        self.calls += 1
        return self.usage


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def memory_probe():
    return FakeMemoryProbe()
