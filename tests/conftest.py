import pytest

from blowout.audio.sources import SyntheticSignalSource
from blowout.config.config_loader import DetectionSettings
from blowout.core.scheduler import Ticker

TICK_MS = 31.25


class FakeClock:
    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def ticker(clock):
    # 1/32 s per tick keeps the fake clock exact: a 200 ms baseline takes 8 frames.
    return Ticker(interval_ms=TICK_MS, clock=clock, sleep=clock.sleep)


@pytest.fixture()
def settings():
    return DetectionSettings(tick_interval_ms=TICK_MS)


@pytest.fixture()
def make_source():
    def factory(energies, **kwargs):
        return SyntheticSignalSource(energies, **kwargs)

    return factory
