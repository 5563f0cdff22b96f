"""Ambient-noise baseline and the detection threshold derived from it."""
import math
from dataclasses import dataclass
from typing import Callable, Optional

from blowout.audio.energy import estimate
from blowout.audio.errors import CalibrationInterrupted, SignalSourceError
from blowout.audio.sources import SignalSource
from blowout.core.scheduler import Ticker
from blowout.util.logging import get_logger


@dataclass(frozen=True)
class BaselineStatistics:
    mean: float
    std: float
    sample_count: int


class RunningStats:
    """Welford accumulator; ``std`` is the population deviation."""

    def __init__(self):
        self.count = 0
        self.mean = 0.0
        self._m2 = 0.0

    def add(self, value: float) -> None:
        self.count += 1
        delta = value - self.mean
        self.mean += delta / self.count
        self._m2 += delta * (value - self.mean)

    @property
    def std(self) -> float:
        if self.count == 0:
            return 0.0
        return math.sqrt(max(0.0, self._m2 / self.count))

    def snapshot(self) -> BaselineStatistics:
        return BaselineStatistics(mean=self.mean, std=self.std, sample_count=self.count)


def derive_threshold(stats: BaselineStatistics, std_factor: float = 3.0, min_threshold: float = 0.012) -> float:
    return max(min_threshold, stats.mean + std_factor * stats.std)


class BaselineCalibrator:
    def __init__(
        self,
        window_ms: float = 200.0,
        std_factor: float = 3.0,
        min_threshold: float = 0.012,
        ticker: Optional[Ticker] = None,
    ):
        self.window_ms = window_ms
        self.std_factor = std_factor
        self.min_threshold = min_threshold
        self.ticker = ticker or Ticker()
        self._log = get_logger("core.calibrator")

    def calibrate(
        self,
        source: SignalSource,
        on_sample: Optional[Callable[[float], None]] = None,
        cancelled: Optional[Callable[[], bool]] = None,
    ) -> BaselineStatistics:
        """Sample ambient energy until the wall-clock window has elapsed.

        The window is measured in time, not frames, because the tick rate is
        up to the host. At least one frame is always taken. ``cancelled`` ends
        the window early with whatever has been gathered.
        """
        stats = RunningStats()
        started = self.ticker.now_ms()
        while True:
            try:
                sample = estimate(source.frame())
            except SignalSourceError as exc:
                raise CalibrationInterrupted(
                    f"Source failed after {stats.count} baseline samples: {exc}"
                ) from exc
            stats.add(sample)
            self._log.debug("Sampling ambient... RMS: %.3f", sample)
            if on_sample is not None:
                on_sample(sample)
            if cancelled is not None and cancelled():
                break
            if self.ticker.elapsed_ms(started) >= self.window_ms:
                break
            self.ticker.tick()
        baseline = stats.snapshot()
        self._log.info(
            "Baseline mean:%.4f std:%.4f threshold:%.4f (%s samples)",
            baseline.mean,
            baseline.std,
            self.threshold(baseline),
            baseline.sample_count,
        )
        return baseline

    def threshold(self, stats: BaselineStatistics) -> float:
        return derive_threshold(stats, self.std_factor, self.min_threshold)
