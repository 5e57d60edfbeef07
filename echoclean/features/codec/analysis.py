import math

import numpy as np


def rms(samples: np.ndarray) -> float:
    """Root mean square of a buffer; 0.0 when empty."""
    samples = np.asarray(samples, dtype=np.float64)
    if samples.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(samples ** 2)))


def peak(samples: np.ndarray) -> float:
    samples = np.asarray(samples, dtype=np.float64)
    if samples.size == 0:
        return 0.0
    return float(np.abs(samples).max())


def normalize(samples: np.ndarray, target_rms: float = 0.3) -> np.ndarray:
    """
    Scale a buffer to the target RMS. Silence is returned unchanged.
    """
    samples = np.asarray(samples, dtype=np.float64)
    current = rms(samples)
    if current == 0.0:
        return samples.copy()
    return samples * (target_rms / current)


def reduction_db(before: np.ndarray, after: np.ndarray) -> float:
    """
    How much quieter *after* is than *before*, in dB (positive means reduced).
    """
    rms_before = rms(before)
    rms_after = rms(after)
    if rms_after == 0.0:
        return 0.0 if rms_before == 0.0 else math.inf
    if rms_before == 0.0:
        return -math.inf
    return 20.0 * math.log10(rms_before / rms_after)
