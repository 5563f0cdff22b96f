import argparse
import sys
import threading
from typing import Dict, List, Optional

from blowout.audio.errors import ConfigError, NotSupported
from blowout.audio.sources import (
    MicSignalSource,
    SignalSource,
    SyntheticSignalSource,
    WavFileSignalSource,
    list_input_devices,
)
from blowout.config.config_loader import DetectionSettings, load_config
from blowout.core.session import SessionController
from blowout.core.state_manager import SessionState
from blowout.output.celebration import build_celebration
from blowout.util.logging import get_logger, setup_logging

# Quiet room for the baseline, then a breathy blow with one dip.
SIMULATED_BLOW = [0.004] * 40 + [0.08, 0.09, 0.03, 0.1, 0.11, 0.1, 0.09, 0.1, 0.12, 0.1]


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="blowout", description="Blow into the mic to blow out the candles.")
    p.add_argument("--config", help="YAML or JSON config file (default: ./config.yaml if present)")
    p.add_argument("--device", type=int, help="Input device index")
    p.add_argument("--list-devices", action="store_true", help="List input devices and exit")
    p.add_argument("--wav", help="Play a recorded WAV file instead of the microphone")
    p.add_argument("--simulate", action="store_true", help="Use a synthetic blow instead of the microphone")
    p.add_argument("--verbose", action="store_true", help="Log every frame")
    return p.parse_args(argv)


def build_source(args: argparse.Namespace, config: Dict) -> SignalSource:
    audio = config["audio"]
    if args.simulate:
        return SyntheticSignalSource(SIMULATED_BLOW, frame_size=audio["frame_size"])
    if args.wav:
        return WavFileSignalSource(args.wav, frame_size=audio["frame_size"])
    device = args.device if args.device is not None else audio["device_index"]
    return MicSignalSource(
        sample_rate=audio["sample_rate"],
        frame_size=audio["frame_size"],
        device_index=device,
        read_timeout_sec=audio["read_timeout_sec"],
    )


def _read_enter(controller: SessionController) -> None:
    try:
        line = sys.stdin.readline()
    except (OSError, ValueError):
        # stdin closed or not readable: same as EOF.
        line = ""
    if line:
        controller.request_trigger()
    else:
        controller.close_manual_input()


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    try:
        config = load_config(args.config)
        settings = DetectionSettings.from_config(config)
    except ConfigError as exc:
        setup_logging()
        get_logger("main").error("Invalid configuration: %s", exc)
        return 2
    setup_logging("DEBUG" if args.verbose else config["logging"]["level"])
    log = get_logger("main")
    log.info("Config loaded")

    if args.list_devices:
        try:
            devices = list_input_devices()
        except NotSupported as exc:
            log.error("%s", exc)
            return 1
        for dev in devices:
            print(f"{dev['index']:>3}  {dev['name']}  ({dev['default_samplerate']:.0f} Hz)")
        return 0

    controller = SessionController(build_source(args, config), settings)
    celebration = build_celebration(config["celebration"])
    controller.on_blow_detected(celebration.celebrate)
    controller.on_fallback_offered(celebration.offer_fallback)
    if not args.simulate:
        threading.Thread(target=_read_enter, args=(controller,), daemon=True).start()

    log.info("Blow to put the candles out.")
    try:
        state = controller.run()
        if state is SessionState.UNAVAILABLE and not controller.wait_for_manual_trigger():
            log.warning("No manual trigger available; giving up")
    except KeyboardInterrupt:
        log.info("Interrupted")
        return 130
    log.info("Session ended in %s", controller.state.value)
    return 0 if controller.state is SessionState.FIRED else 1


if __name__ == "__main__":
    raise SystemExit(main())
