"""Calibrate, detect, fire once; fall back to a manual trigger when the mic fails."""
import queue
import threading
from typing import Callable, List, Optional

from blowout.audio.errors import BlowoutError, CalibrationInterrupted, InvalidTransition, SignalSourceError
from blowout.audio.sources import SignalSource
from blowout.config.config_loader import DetectionSettings
from blowout.core.calibrator import BaselineCalibrator, BaselineStatistics
from blowout.core.detector import HysteresisDetector
from blowout.core.scheduler import Ticker
from blowout.core.state_manager import SessionState, StateManager
from blowout.util.logging import get_logger

BlowListener = Callable[[], None]
FallbackListener = Callable[[str], None]

_MANUAL = "manual"
_INPUT_CLOSED = "input_closed"


class SessionController:
    """Runs one blow-detection session against a signal source.

    ``run()`` walks IDLE -> AWAITING_PERMISSION -> CALIBRATING -> DETECTING and
    ends in FIRED or UNAVAILABLE. Automatic and manual triggers share one
    latch, so listeners registered with ``on_blow_detected`` are called once.
    The source is closed exactly once on every way out of ``run()``.

    The fallback timeout is also armed on a timer thread, so the manual trigger
    is offered even while ``source.open()`` is stuck on a permission prompt.
    """

    def __init__(
        self,
        source: SignalSource,
        settings: Optional[DetectionSettings] = None,
        ticker: Optional[Ticker] = None,
    ):
        self.source = source
        self.settings = settings or DetectionSettings()
        self.ticker = ticker or Ticker(self.settings.tick_interval_ms)
        self.manager = StateManager()
        self.error: Optional[BlowoutError] = None
        self.baseline: Optional[BaselineStatistics] = None
        self.threshold: Optional[float] = None
        self.detector: Optional[HysteresisDetector] = None
        self.fallback_reason: Optional[str] = None
        self._requests: "queue.Queue[str]" = queue.Queue()
        self._input_closed = threading.Event()
        self._fallback_lock = threading.Lock()
        self._fallback_timer: Optional[threading.Timer] = None
        self._blow_listeners: List[BlowListener] = []
        self._fallback_listeners: List[FallbackListener] = []
        self._started_ms: Optional[float] = None
        self._ran = False
        self._released = False
        self._log = get_logger("core.session")

    @property
    def state(self) -> SessionState:
        return self.manager.state

    @property
    def fired(self) -> bool:
        return self.manager.latch.fired

    @property
    def fired_by(self) -> Optional[str]:
        return self.manager.latch.fired_by

    def on_blow_detected(self, callback: BlowListener) -> BlowListener:
        self._blow_listeners.append(callback)
        return callback

    def on_fallback_offered(self, callback: FallbackListener) -> FallbackListener:
        self._fallback_listeners.append(callback)
        return callback

    def run(self) -> SessionState:
        if self._ran:
            raise InvalidTransition("A session can only be run once")
        self._ran = True
        if self.fired:
            return self.state
        self._started_ms = self.ticker.now_ms()
        self._enter(SessionState.AWAITING_PERMISSION)
        self._arm_fallback_timer()
        try:
            return self._run()
        finally:
            self._fallback_timer.cancel()
            self._release()

    def _run(self) -> SessionState:
        try:
            self.source.open()
        except SignalSourceError as exc:
            return self._fail(exc)
        self._service()
        if self.fired:
            return self.state

        self._enter(SessionState.CALIBRATING)
        s = self.settings
        calibrator = BaselineCalibrator(s.baseline_window_ms, s.std_factor, s.min_threshold, ticker=self.ticker)
        try:
            self.baseline = calibrator.calibrate(
                self.source,
                on_sample=lambda _sample: self._service(),
                cancelled=lambda: self.fired,
            )
        except CalibrationInterrupted as exc:
            return self._fail(exc)
        if self.fired:
            return self.state
        self.threshold = calibrator.threshold(self.baseline)

        self._enter(SessionState.DETECTING)
        self.detector = HysteresisDetector(self.threshold, s.required_frames, s.decay_policy)
        try:
            won = self.detector.run(self.source, self.ticker, self.manager.latch, on_tick=self._service)
        except SignalSourceError as exc:
            return self._fail(exc)
        if won:
            self._complete()
        return self.state

    def force_trigger(self) -> bool:
        """Manual override. True only for the call that actually fires."""
        if not self.manager.can_transition(SessionState.FIRED):
            return False
        if not self.manager.latch.fire("manual"):
            return False
        self._log.info("Manual trigger from %s", self.state.value)
        self._complete()
        return True

    def request_trigger(self) -> None:
        """Thread-safe manual trigger, honoured on the session's own thread."""
        self._requests.put(_MANUAL)

    def close_manual_input(self) -> None:
        """No manual request can arrive any more (e.g. stdin hit EOF)."""
        self._input_closed.set()
        self._requests.put(_INPUT_CLOSED)

    def wait_for_manual_trigger(self, timeout: Optional[float] = None) -> bool:
        """Block until ``request_trigger()`` is called, then fire.

        Returns False on timeout, when already fired, or once the manual
        input has been closed with nothing pending.
        """
        while not self.fired:
            if self._input_closed.is_set() and self._requests.empty():
                return False
            try:
                request = self._requests.get(timeout=timeout)
            except queue.Empty:
                return False
            if request == _MANUAL:
                return self.force_trigger()
        return False

    def _service(self) -> None:
        while True:
            try:
                request = self._requests.get_nowait()
            except queue.Empty:
                break
            if request == _MANUAL:
                self.force_trigger()
        if (
            self.fallback_reason is None
            and self._started_ms is not None
            and self.state not in (SessionState.DETECTING, SessionState.FIRED)
            and self.ticker.elapsed_ms(self._started_ms) >= self.settings.fallback_timeout_ms
        ):
            self._offer_fallback("timeout")

    def _arm_fallback_timer(self) -> None:
        self._fallback_timer = threading.Timer(self.settings.fallback_timeout_ms / 1000.0, self._fallback_timer_expired)
        self._fallback_timer.daemon = True
        self._fallback_timer.start()

    def _fallback_timer_expired(self) -> None:
        # Runs on the timer thread; only reads the state.
        if self.state in (SessionState.AWAITING_PERMISSION, SessionState.CALIBRATING):
            self._offer_fallback("timeout")

    def _enter(self, target: SessionState) -> None:
        previous = self.manager.transition(target)
        self._log.info("Session %s -> %s", previous.value, target.value)

    def _fail(self, exc: BlowoutError) -> SessionState:
        self.error = exc
        self._log.warning("Microphone unavailable (%s): %s", exc.reason, exc)
        self._enter(SessionState.UNAVAILABLE)
        self._offer_fallback("unavailable")
        return self.state

    def _complete(self) -> None:
        self._enter(SessionState.FIRED)
        self._log.info("Blow detected (by %s)", self.fired_by)
        for callback in list(self._blow_listeners):
            try:
                callback()
            except Exception:
                self._log.exception("on_blow_detected listener %r failed", callback)

    def _offer_fallback(self, reason: str) -> None:
        with self._fallback_lock:
            if self.fallback_reason is not None:
                return
            self.fallback_reason = reason
        self._log.warning("Offering manual trigger (%s)", reason)
        for callback in list(self._fallback_listeners):
            try:
                callback(reason)
            except Exception:
                self._log.exception("on_fallback_offered listener %r failed", callback)

    def _release(self) -> None:
        if self._released:
            return
        self._released = True
        self.source.close()
