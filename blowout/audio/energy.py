"""Frame loudness as a single RMS value."""
import numpy as np


def normalize(frame) -> np.ndarray:
    """Return the frame as float32 samples in [-1, 1].

    Signed integers are scaled by their full range. Unsigned integers are
    offset-binary with silence at the midpoint (128 for the analyser's
    uint8 bytes).
    """
    pcm = np.asarray(frame)
    if np.issubdtype(pcm.dtype, np.unsignedinteger):
        mid = (float(np.iinfo(pcm.dtype).max) + 1.0) / 2.0
        x = (pcm.astype(np.float64) - mid) / mid
    elif np.issubdtype(pcm.dtype, np.integer):
        x = pcm.astype(np.float64) / (float(np.iinfo(pcm.dtype).max) + 1.0)
    else:
        x = pcm.astype(np.float64)
    return np.clip(x.ravel(), -1.0, 1.0).astype(np.float32)


def estimate(frame) -> float:
    """RMS energy of a frame, in [0, 1]. Empty frames are silent."""
    x = normalize(frame)
    if x.size == 0:
        return 0.0
    rms = float(np.sqrt(np.mean(np.square(x, dtype=np.float64))))
    return min(1.0, max(0.0, rms))
