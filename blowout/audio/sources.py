"""Audio inputs that hand out fixed-size frames on demand."""
import pathlib
import queue
import wave
from typing import List, Optional, Sequence, Type

import numpy as np

from blowout.audio.errors import DeviceUnavailable, NotSupported, PermissionDenied, SignalSourceError
from blowout.util.logging import get_logger


class SignalSource:
    """open() acquires the input, frame() pulls one frame, close() releases it.

    close() is idempotent. Used as a context manager the source is always
    released, whatever happens inside the block.
    """

    def open(self) -> None:
        raise NotImplementedError

    def frame(self) -> np.ndarray:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


def _import_sounddevice():
    try:
        import sounddevice as sd
    except (ImportError, OSError) as exc:
        # OSError: the module is installed but PortAudio is missing.
        raise NotSupported(f"sounddevice is unavailable: {exc}") from exc
    return sd


def list_input_devices() -> List[dict]:
    sd = _import_sounddevice()
    devices = []
    for index, info in enumerate(sd.query_devices()):
        if info.get("max_input_channels", 0) > 0:
            devices.append({"index": index, "name": info["name"], "default_samplerate": info["default_samplerate"]})
    return devices


class MicSignalSource(SignalSource):
    """Pull microphone frames that a sounddevice callback pushes into a queue."""

    def __init__(
        self,
        sample_rate: int = 44100,
        frame_size: int = 1024,
        device_index: Optional[int] = None,
        read_timeout_sec: float = 0.1,
        max_queued: int = 20,
    ):
        self.sample_rate = sample_rate
        self.frame_size = frame_size
        self.device_index = device_index
        self.read_timeout_sec = read_timeout_sec
        self._queue: "queue.Queue[np.ndarray]" = queue.Queue(maxsize=max_queued)
        self._stream = None
        self._last: Optional[np.ndarray] = None
        self._log = get_logger("audio.mic")

    def _map_open_error(self, exc: Exception) -> SignalSourceError:
        if "permission" in str(exc).lower():
            return PermissionDenied(f"Microphone access denied: {exc}")
        return DeviceUnavailable(f"Cannot open input device {self.device_index}: {exc}")

    def _callback(self, indata, frames, time_info, status):
        if status:
            self._log.debug("Stream status: %s", status)
        block = np.array(indata[:, 0], dtype=np.float32)
        try:
            self._queue.put_nowait(block)
        except queue.Full:
            # Keep the newest audio; drop the oldest block.
            try:
                self._queue.get_nowait()
            except queue.Empty:
                pass
            self._queue.put_nowait(block)

    def open(self) -> None:
        if self._stream is not None:
            return
        sd = _import_sounddevice()
        try:
            stream = sd.InputStream(
                samplerate=self.sample_rate,
                blocksize=self.frame_size,
                dtype="float32",
                channels=1,
                callback=self._callback,
                device=self.device_index,
            )
        except sd.PortAudioError as exc:
            raise self._map_open_error(exc) from exc
        except ValueError as exc:
            # sounddevice raises ValueError for unknown device names/indices.
            raise DeviceUnavailable(f"No such input device {self.device_index!r}: {exc}") from exc
        try:
            stream.start()
        except sd.PortAudioError as exc:
            stream.close()
            raise self._map_open_error(exc) from exc
        except BaseException:
            stream.close()
            raise
        self._stream = stream
        self._log.info(
            "Mic stream started (rate=%s, frame_size=%s, device=%s)",
            self.sample_rate,
            self.frame_size,
            self.device_index,
        )

    def frame(self) -> np.ndarray:
        if self._stream is None:
            raise DeviceUnavailable("Mic stream is not open")
        latest = None
        while True:
            try:
                latest = self._queue.get_nowait()
            except queue.Empty:
                break
        if latest is None:
            try:
                latest = self._queue.get(timeout=self.read_timeout_sec)
            except queue.Empty:
                if not self._stream.active or self._last is None:
                    raise DeviceUnavailable("Microphone stopped delivering audio")
                # No fresh block yet: hand back the current buffer again.
                return self._last
        self._last = latest
        return latest

    def close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()
            self._log.info("Mic stream stopped")


class WavFileSignalSource(SignalSource):
    """Play back a PCM WAV recording frame by frame.

    Running off the end of the recording behaves like an unplugged device.
    """

    def __init__(self, path: str, frame_size: int = 1024):
        self.path = pathlib.Path(path)
        self.frame_size = frame_size
        self.sample_rate: Optional[int] = None
        self._samples: Optional[np.ndarray] = None
        self._pos = 0
        self._log = get_logger("audio.wav")

    def open(self) -> None:
        if self._samples is not None:
            return
        try:
            with wave.open(str(self.path), "rb") as wav_file:
                width = wav_file.getsampwidth()
                channels = wav_file.getnchannels()
                self.sample_rate = wav_file.getframerate()
                raw = wav_file.readframes(wav_file.getnframes())
        except FileNotFoundError as exc:
            raise DeviceUnavailable(f"Recording not found: {self.path}") from exc
        except (OSError, EOFError, wave.Error) as exc:
            raise DeviceUnavailable(f"Cannot read recording {self.path}: {exc}") from exc
        if width == 1:
            pcm = np.frombuffer(raw, dtype=np.uint8)
        elif width == 2:
            pcm = np.frombuffer(raw, dtype="<i2")
        else:
            raise NotSupported(f"Unsupported sample width {width * 8} bits in {self.path}")
        if channels > 1:
            # Downmix to mono, keeping the integer encoding.
            pcm = pcm.reshape(-1, channels).mean(axis=1).astype(pcm.dtype)
        self._samples = pcm
        self._pos = 0
        self._log.info("Playing %s (rate=%s, samples=%s)", self.path, self.sample_rate, pcm.size)

    def frame(self) -> np.ndarray:
        if self._samples is None:
            raise DeviceUnavailable("Recording is not open")
        end = self._pos + self.frame_size
        if end > self._samples.size:
            raise DeviceUnavailable(f"End of recording {self.path}")
        block = self._samples[self._pos : end]
        self._pos = end
        return block

    def close(self) -> None:
        self._samples = None


class SyntheticSignalSource(SignalSource):
    """Frames whose RMS follows a scripted energy sequence.

    Each frame is a square wave of amplitude ``e``, so ``estimate()`` returns
    ``e`` exactly. After the script runs out the last energy repeats, unless
    ``fail_after`` says the device should die at that frame.
    """

    def __init__(
        self,
        energies: Sequence[float],
        frame_size: int = 256,
        fail_on_open: Optional[Type[SignalSourceError]] = None,
        fail_after: Optional[int] = None,
        fail_with: Type[SignalSourceError] = DeviceUnavailable,
    ):
        if not energies:
            raise ValueError("energies must not be empty")
        self.energies = [min(1.0, max(0.0, float(e))) for e in energies]
        self.frame_size = frame_size
        self.fail_on_open = fail_on_open
        self.fail_after = fail_after
        self.fail_with = fail_with
        self.frames_served = 0
        self.open_calls = 0
        self.close_calls = 0
        self.is_open = False
        self._sign = np.where(np.arange(frame_size) % 2 == 0, 1.0, -1.0).astype(np.float32)

    def open(self) -> None:
        self.open_calls += 1
        if self.fail_on_open is not None:
            raise self.fail_on_open("Synthetic source refused to open")
        self.is_open = True

    def frame(self) -> np.ndarray:
        if not self.is_open:
            raise DeviceUnavailable("Synthetic source is not open")
        if self.fail_after is not None and self.frames_served >= self.fail_after:
            raise self.fail_with(f"Synthetic source failed after {self.frames_served} frames")
        idx = min(self.frames_served, len(self.energies) - 1)
        self.frames_served += 1
        return self._sign * self.energies[idx]

    def close(self) -> None:
        if self.is_open:
            self.close_calls += 1
        self.is_open = False
