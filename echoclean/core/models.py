from dataclasses import dataclass, field

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from echoclean.core.errors import ValidationError

MIN_FILTER_LENGTH = 128
MAX_FILTER_LENGTH = 2048
FILTER_LENGTH_STEP = 128
MAX_STEP_SIZE = 0.2


@dataclass(frozen=True)
class AudioSignal:
    """
    A finite mono signal, as decoded by the codec adapter.

    `samples` is stored as a read-only float64 array so the signal cannot be
    changed after construction.
    """
    sample_rate: int
    samples: np.ndarray = field(repr=False)
    channel_count: int = 1

    def __post_init__(self):
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        if self.channel_count != 1:
            raise ValueError(f"AudioSignal is mono, got channel_count={self.channel_count}")

        samples = np.array(self.samples, dtype=np.float64)
        if samples.ndim != 1:
            raise ValueError(f"samples must be 1-D, got shape {samples.shape}")
        if not np.all(np.isfinite(samples)):
            raise ValueError("samples must be finite")
        samples.flags.writeable = False
        object.__setattr__(self, "samples", samples)

    def __len__(self) -> int:
        return len(self.samples)

    @property
    def duration(self) -> float:
        return len(self.samples) / self.sample_rate


class ProcessingSettings(BaseModel):
    """
    Per-job filter settings. Validated before any job is created.
    """
    model_config = ConfigDict(frozen=True)

    filter_length: int = Field(default=512, ge=MIN_FILTER_LENGTH, le=MAX_FILTER_LENGTH)
    step_size: float = Field(default=0.05, gt=0.0, le=MAX_STEP_SIZE)

    @field_validator("filter_length")
    @classmethod
    def _aligned_filter_length(cls, value: int) -> int:
        if value % FILTER_LENGTH_STEP != 0:
            raise ValueError(f"filter_length must be a multiple of {FILTER_LENGTH_STEP}")
        return value

    @classmethod
    def build(cls, **values) -> "ProcessingSettings":
        """
        Validate raw values, raising the engine's ValidationError instead of pydantic's.
        """
        try:
            return cls(**values)
        except PydanticValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise ValidationError(f"Invalid processing settings: {problems}") from e
