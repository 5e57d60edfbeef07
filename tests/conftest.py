"""Shared fixtures for echoclean tests."""

import io

import numpy as np
import pytest
import soundfile as sf

from echoclean.core.config import reset_settings
from echoclean.core.models import AudioSignal

SAMPLE_RATE = 16000


def make_echo_samples(sample_rate: int = SAMPLE_RATE, delay: int = 80, duration: float = 1.0,
                      freq: float = 440.0) -> np.ndarray:
    """x[t] = sin(2*pi*f*t) + 0.5*sin(2*pi*f*(t - d))"""
    t = np.arange(int(sample_rate * duration)) / sample_rate
    return np.sin(2 * np.pi * freq * t) + 0.5 * np.sin(2 * np.pi * freq * (t - delay / sample_rate))


@pytest.fixture
def echo_samples():
    return make_echo_samples


@pytest.fixture
def echo_signal():
    """One second of a 440 Hz tone with an 80-sample echo at 16 kHz."""
    return AudioSignal(sample_rate=SAMPLE_RATE, samples=make_echo_samples())


@pytest.fixture
def wav_bytes():
    """Factory: encode a (frames,) or (frames, channels) array as an in-memory audio file."""
    def _make(samples: np.ndarray, sample_rate: int = SAMPLE_RATE,
              subtype: str = "PCM_16", fmt: str = "WAV") -> bytes:
        buf = io.BytesIO()
        sf.write(buf, samples, sample_rate, format=fmt, subtype=subtype)
        return buf.getvalue()
    return _make


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Every test starts without cached settings."""
    reset_settings()
    yield
    reset_settings()
