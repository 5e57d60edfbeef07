import logging
import math

import numpy as np

from echoclean.core.errors import DivergenceError, ValidationError
from echoclean.core.models import MAX_FILTER_LENGTH, MAX_STEP_SIZE, MIN_FILTER_LENGTH

logger = logging.getLogger("echoclean.filtering.nlms")

DEFAULT_EPSILON = 1e-6
DEFAULT_DIVERGENCE_LIMIT = 8.0


class NLMSFilter:
    """
    Single-channel NLMS predictor that cancels the part of each sample
    explainable from the signal's own recent past.

    For every input sample x:
        h      = the filter_length samples before x, oldest first
        y_hat  = w . h
        e      = clip(x - y_hat, -1, 1)
        w     += step_size / (h . h + epsilon) * e * h

    The history is a mirrored ring (two copies of the window back to back),
    so the current window is always a contiguous view and pushing a sample is O(1).
    """
    def __init__(self,
                 filter_length: int = 512,
                 step_size: float = 0.05,
                 epsilon: float = DEFAULT_EPSILON,
                 divergence_limit: float = DEFAULT_DIVERGENCE_LIMIT):
        self.divergence_limit = divergence_limit
        self.reset(filter_length, step_size, epsilon)

    def reset(self, filter_length: int, step_size: float, epsilon: float = DEFAULT_EPSILON) -> None:
        """
        Allocate zeroed coefficients and history for a new signal.
        """
        if not MIN_FILTER_LENGTH <= filter_length <= MAX_FILTER_LENGTH:
            raise ValidationError(
                f"filter_length must be in [{MIN_FILTER_LENGTH}, {MAX_FILTER_LENGTH}], got {filter_length}"
            )
        if not 0.0 < step_size <= MAX_STEP_SIZE:
            raise ValidationError(f"step_size must be in (0, {MAX_STEP_SIZE}], got {step_size}")
        if not epsilon > 0.0:
            raise ValidationError(f"epsilon must be positive, got {epsilon}")

        self.filter_length = int(filter_length)
        self.step_size = float(step_size)
        self.epsilon = float(epsilon)

        self._w = np.zeros(self.filter_length, dtype=np.float64)
        self._ring = np.zeros(2 * self.filter_length, dtype=np.float64)
        self._pos = 0
        self.samples_seen = 0

        logger.debug("Filter reset: filter_length=%d, step_size=%.4f, epsilon=%g",
                     self.filter_length, self.step_size, self.epsilon)

    @property
    def coefficients(self) -> np.ndarray:
        view = self._w.view()
        view.flags.writeable = False
        return view

    @property
    def history(self) -> np.ndarray:
        """The last filter_length input samples, oldest first."""
        view = self._ring[self._pos:self._pos + self.filter_length]
        view.flags.writeable = False
        return view

    def process_sample(self, x: float) -> float:
        """
        Cancel one sample and adapt. Raises DivergenceError without touching
        the filter state if the sample cannot be processed stably.
        """
        x = float(x)
        if abs(x) > self.divergence_limit:
            raise DivergenceError(
                f"Input {x:.3g} exceeds amplitude limit {self.divergence_limit:g} "
                f"at sample {self.samples_seen}"
            )
        h = self._ring[self._pos:self._pos + self.filter_length]

        y_hat = float(np.dot(self._w, h))
        residual = x - y_hat
        if not math.isfinite(residual):
            raise DivergenceError(
                f"Non-finite residual at sample {self.samples_seen} (x={x!r}, y_hat={y_hat!r})"
            )

        e = min(1.0, max(-1.0, residual))
        mu_n = self.step_size / (float(np.dot(h, h)) + self.epsilon)

        updated = self._w + (mu_n * e) * h
        if not np.all(np.isfinite(updated)):
            raise DivergenceError(f"Non-finite coefficient at sample {self.samples_seen}")
        self._w = updated

        # Write into both halves of the mirrored ring, then advance.
        self._ring[self._pos] = x
        self._ring[self._pos + self.filter_length] = x
        self._pos = (self._pos + 1) % self.filter_length
        self.samples_seen += 1

        return e

    def process_block(self, samples: np.ndarray) -> np.ndarray:
        """
        Run process_sample over a slice in order. State carries over to the next call.
        """
        out = np.empty(len(samples), dtype=np.float64)
        for i, x in enumerate(samples):
            out[i] = self.process_sample(x)
        return out
