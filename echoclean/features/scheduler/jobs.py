import uuid
from dataclasses import dataclass, field
from enum import Enum

from echoclean.core.errors import EchoCleanError
from echoclean.core.models import AudioSignal, ProcessingSettings


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.RUNNING, JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED},
    JobStatus.RUNNING: {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED},
}


def new_job_id() -> str:
    return uuid.uuid4().hex


@dataclass
class ProcessingJob:
    """
    One end-to-end processing request for a single AudioSignal under fixed settings.
    """
    input: AudioSignal
    settings: ProcessingSettings
    id: str = field(default_factory=new_job_id)
    status: JobStatus = JobStatus.PENDING
    progress_percent: int = 0
    result: AudioSignal | None = None
    error: EchoCleanError | None = None

    @property
    def total_samples(self) -> int:
        return len(self.input)

    def transition(self, status: JobStatus) -> None:
        """
        Move to *status*. Terminal states are final and reached exactly once.
        """
        allowed = _TRANSITIONS.get(self.status, set())
        if status not in allowed:
            raise RuntimeError(f"Job {self.id}: illegal transition {self.status.value} -> {status.value}")
        self.status = status
