from dataclasses import dataclass
from typing import Callable, Optional

from blowout.audio.energy import estimate
from blowout.audio.sources import SignalSource
from blowout.core.scheduler import Ticker
from blowout.core.state_manager import OneShotLatch
from blowout.util.logging import get_logger

DECAY_POLICIES = ("decay", "reset")


@dataclass
class DetectorState:
    consecutive: int = 0
    fired: bool = False
    frames: int = 0


class HysteresisDetector:
    """Counts loud frames against a fixed threshold until a blow is sustained.

    A quiet frame erodes the count by one ("decay") or clears it ("reset"),
    so a real blow with brief dips still gets through while a single spike
    does not.
    """

    def __init__(self, threshold: float, required_frames: int = 7, decay_policy: str = "decay"):
        if required_frames < 1:
            raise ValueError("required_frames must be at least 1")
        if decay_policy not in DECAY_POLICIES:
            raise ValueError(f"Unknown decay policy: {decay_policy!r}")
        self.threshold = threshold
        self.required_frames = required_frames
        self.decay_policy = decay_policy
        self.state = DetectorState()
        self._log = get_logger("core.detector")

    def update(self, sample: float) -> bool:
        """Feed one energy sample. True only for the sample that fires."""
        st = self.state
        if st.fired:
            return False
        st.frames += 1
        if sample > self.threshold:
            st.consecutive += 1
        elif self.decay_policy == "reset":
            st.consecutive = 0
        else:
            st.consecutive = max(0, st.consecutive - 1)
        self._log.debug("RMS:%.3f thr:%.3f frames:%s", sample, self.threshold, st.consecutive)
        if st.consecutive >= self.required_frames:
            st.fired = True
            return True
        return False

    def run(
        self,
        source: SignalSource,
        ticker: Ticker,
        latch: OneShotLatch,
        on_tick: Optional[Callable[[], None]] = None,
    ) -> bool:
        """Pull frames until the detector fires or the latch is taken elsewhere.

        ``on_tick`` runs at the top of every tick, before the latch is checked.
        Returns True if this detector fired the latch. Source errors propagate.
        """
        while True:
            if on_tick is not None:
                on_tick()
            if latch.fired:
                return False
            if self.update(estimate(source.frame())):
                won = latch.fire("detector")
                self._log.info("Blow detected after %s frames", self.state.frames)
                return won
            ticker.tick()
