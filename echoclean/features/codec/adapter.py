"""Bridge between container bytes and the engine's normalized mono samples."""

import io
import logging

import numpy as np
import soundfile as sf

from echoclean.core.errors import DecodeError
from echoclean.core.models import AudioSignal

logger = logging.getLogger("echoclean.codec")

_SUBTYPES = {
    16: "PCM_16",
    24: "PCM_24",
}


def decode(data: bytes) -> AudioSignal:
    """
    Decode an audio container into a mono AudioSignal.

    Any format libsndfile can read is accepted. Multi-channel input is
    downmixed by averaging channels.
    """
    if not data:
        raise DecodeError("No audio data")

    try:
        with sf.SoundFile(io.BytesIO(data)) as f:
            sample_rate = f.samplerate
            channels = f.channels
            fmt = f.format
            frames = f.read(dtype="float64", always_2d=True)
    except (RuntimeError, TypeError, ValueError) as e:
        # soundfile.LibsndfileError is a RuntimeError subclass
        raise DecodeError(f"Could not decode audio: {e}") from e

    # Convert to mono if multi-channel
    if channels > 1:
        samples = frames.mean(axis=1)
    else:
        samples = frames[:, 0]

    logger.info("Decoded %s: %d frames, %d channel(s) @ %d Hz",
                fmt, len(samples), channels, sample_rate)

    try:
        return AudioSignal(sample_rate=int(sample_rate), samples=samples)
    except ValueError as e:
        raise DecodeError(str(e)) from e


def encode(signal: AudioSignal, bit_depth: int = 16) -> bytes:
    """
    Encode a signal as a mono PCM WAV container at its own sample rate.
    """
    subtype = _SUBTYPES.get(bit_depth)
    if subtype is None:
        raise ValueError(f"Unsupported bit_depth: {bit_depth} (use 16 or 24)")

    data = np.clip(signal.samples, -1.0, 1.0)

    buf = io.BytesIO()
    sf.write(buf, data, signal.sample_rate, format="WAV", subtype=subtype)
    logger.debug("Encoded %d samples as %s WAV", len(data), subtype)
    return buf.getvalue()
