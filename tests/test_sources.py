import types
import wave

import numpy as np
import pytest

from blowout.audio import sources
from blowout.audio.energy import estimate
from blowout.audio.errors import DeviceUnavailable, NotSupported, PermissionDenied
from blowout.audio.sources import MicSignalSource, SyntheticSignalSource, WavFileSignalSource


def _write_wav(path, samples, width=2, channels=1, rate=8000):
    with wave.open(str(path), "wb") as wav_file:
        wav_file.setnchannels(channels)
        wav_file.setsampwidth(width)
        wav_file.setframerate(rate)
        wav_file.writeframes(samples.tobytes())


def test_wav_source_plays_frames_then_runs_out(tmp_path):
    pcm = np.concatenate([np.zeros(64, dtype="<i2"), np.full(64, 16384, dtype="<i2")])
    path = tmp_path / "blow.wav"
    _write_wav(path, pcm)
    with WavFileSignalSource(str(path), frame_size=64) as source:
        assert source.sample_rate == 8000
        assert estimate(source.frame()) == 0.0
        assert estimate(source.frame()) == pytest.approx(0.5)
        with pytest.raises(DeviceUnavailable):
            source.frame()


def test_wav_source_downmixes_stereo_bytes(tmp_path):
    stereo = np.tile(np.array([128, 128], dtype=np.uint8), 32)
    path = tmp_path / "quiet.wav"
    _write_wav(path, stereo, width=1, channels=2)
    with WavFileSignalSource(str(path), frame_size=32) as source:
        frame = source.frame()
        assert frame.dtype == np.uint8
        assert estimate(frame) == 0.0


def test_wav_source_missing_file(tmp_path):
    with pytest.raises(DeviceUnavailable):
        WavFileSignalSource(str(tmp_path / "missing.wav")).open()


def test_synthetic_source_energy_script():
    source = SyntheticSignalSource([0.1, 0.3], frame_size=16)
    source.open()
    assert estimate(source.frame()) == pytest.approx(0.1)
    assert estimate(source.frame()) == pytest.approx(0.3)
    assert estimate(source.frame()) == pytest.approx(0.3)
    source.close()
    source.close()
    assert source.close_calls == 1


def test_synthetic_source_failures():
    with pytest.raises(PermissionDenied):
        SyntheticSignalSource([0.1], fail_on_open=PermissionDenied).open()
    source = SyntheticSignalSource([0.1], fail_after=1, fail_with=NotSupported)
    source.open()
    source.frame()
    with pytest.raises(NotSupported):
        source.frame()


class FakePortAudioError(Exception):
    pass


class FakeStream:
    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.callback = kwargs["callback"]
        self.active = False
        self.closed = False

    def start(self):
        self.active = True

    def stop(self):
        self.active = False

    def close(self):
        self.closed = True


@pytest.fixture()
def fake_sd(monkeypatch):
    sd = types.SimpleNamespace(PortAudioError=FakePortAudioError, streams=[])

    def input_stream(**kwargs):
        stream = FakeStream(**kwargs)
        sd.streams.append(stream)
        return stream

    sd.InputStream = input_stream
    monkeypatch.setattr(sources, "_import_sounddevice", lambda: sd)
    return sd


def _push(stream, value, n=8):
    stream.callback(np.full((n, 1), value, dtype=np.float32), n, None, None)


def test_mic_source_returns_latest_block(fake_sd):
    mic = MicSignalSource(sample_rate=16000, frame_size=8, read_timeout_sec=0.01)
    mic.open()
    stream = fake_sd.streams[0]
    assert stream.kwargs["samplerate"] == 16000
    assert stream.kwargs["blocksize"] == 8
    _push(stream, 0.1)
    _push(stream, 0.4)
    assert estimate(mic.frame()) == pytest.approx(0.4)
    # Nothing new arrived: the current buffer is handed back again.
    assert estimate(mic.frame()) == pytest.approx(0.4)
    mic.close()
    mic.close()
    assert stream.closed


def test_mic_source_drops_oldest_when_full(fake_sd):
    mic = MicSignalSource(frame_size=4, max_queued=2, read_timeout_sec=0.01)
    mic.open()
    stream = fake_sd.streams[0]
    for value in (0.1, 0.2, 0.3):
        _push(stream, value, n=4)
    assert mic._queue.qsize() == 2
    assert estimate(mic.frame()) == pytest.approx(0.3)


def test_mic_source_without_audio_is_unavailable(fake_sd):
    mic = MicSignalSource(read_timeout_sec=0.01)
    mic.open()
    with pytest.raises(DeviceUnavailable):
        mic.frame()
    mic.close()


def test_mic_source_stopped_stream_is_unavailable(fake_sd):
    mic = MicSignalSource(frame_size=4, read_timeout_sec=0.01)
    mic.open()
    stream = fake_sd.streams[0]
    _push(stream, 0.2, n=4)
    mic.frame()
    stream.active = False
    with pytest.raises(DeviceUnavailable):
        mic.frame()


@pytest.mark.parametrize(
    "exc,expected",
    [
        (FakePortAudioError("Error opening InputStream: Invalid device"), DeviceUnavailable),
        (FakePortAudioError("Permission denied by the system"), PermissionDenied),
        (ValueError("No input device matching 'usb'"), DeviceUnavailable),
    ],
)
def test_mic_open_errors_are_mapped(fake_sd, exc, expected):
    def failing(**kwargs):
        raise exc

    fake_sd.InputStream = failing
    with pytest.raises(expected):
        MicSignalSource().open()


def test_missing_sounddevice_is_not_supported(monkeypatch):
    def unavailable():
        raise NotSupported("sounddevice is unavailable: no PortAudio")

    monkeypatch.setattr(sources, "_import_sounddevice", unavailable)
    with pytest.raises(NotSupported):
        MicSignalSource().open()
    with pytest.raises(NotSupported):
        sources.list_input_devices()


def test_mic_stream_that_fails_to_start_is_closed(fake_sd):
    class NoStartStream(FakeStream):
        def start(self):
            raise FakePortAudioError("Error starting stream: Unanticipated host error")

    created = []

    def input_stream(**kwargs):
        stream = NoStartStream(**kwargs)
        created.append(stream)
        return stream

    fake_sd.InputStream = input_stream
    mic = MicSignalSource()
    with pytest.raises(DeviceUnavailable):
        mic.open()
    assert created[0].closed
    mic.close()
