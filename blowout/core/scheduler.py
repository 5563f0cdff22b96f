import time
from typing import Callable, Optional


class Ticker:
    """Cooperative frame cadence: one tick per frame pull.

    ``tick()`` hands control back to the host by sleeping out whatever is left
    of the current interval. Clock and sleep are injectable so loops can be
    driven deterministically.
    """

    def __init__(
        self,
        interval_ms: float = 1000.0 / 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.interval_ms = interval_ms
        self._clock = clock
        self._sleep = sleep
        self._last_tick: Optional[float] = None

    def now_ms(self) -> float:
        return self._clock() * 1000.0

    def elapsed_ms(self, since_ms: float) -> float:
        return self.now_ms() - since_ms

    def tick(self) -> None:
        now = self.now_ms()
        if self._last_tick is None:
            wait_ms = self.interval_ms
        else:
            wait_ms = self.interval_ms - (now - self._last_tick)
        if wait_ms > 0:
            self._sleep(wait_ms / 1000.0)
        self._last_tick = self.now_ms()
