import logging
from typing import Callable, Iterator

import numpy as np

from echoclean.core.errors import BusyError, DivergenceError, EchoCleanError
from echoclean.core.models import AudioSignal, ProcessingSettings
from echoclean.features.filtering.nlms import DEFAULT_DIVERGENCE_LIMIT, DEFAULT_EPSILON, NLMSFilter
from echoclean.features.scheduler.jobs import JobStatus, ProcessingJob, new_job_id

logger = logging.getLogger("echoclean.scheduler")

DEFAULT_CHUNK_SIZE = 4096


class ChunkScheduler:
    """
    Drives one NLMSFilter over a whole signal, one chunk per `step()`.

    Holds a single job slot. The filter state lives only as long as the active
    job and is carried unchanged from one chunk to the next. Callers yield to
    their own loop between steps, which is where cancellation is observed.
    """
    def __init__(self,
                 chunk_size: int = DEFAULT_CHUNK_SIZE,
                 epsilon: float = DEFAULT_EPSILON,
                 divergence_limit: float = DEFAULT_DIVERGENCE_LIMIT,
                 filter_factory: Callable[[ProcessingSettings], NLMSFilter] | None = None):
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")
        self.chunk_size = chunk_size
        self.filter_factory = filter_factory or (
            lambda s: NLMSFilter(s.filter_length, s.step_size,
                                 epsilon=epsilon, divergence_limit=divergence_limit)
        )

        self._job: ProcessingJob | None = None
        self._last_job: ProcessingJob | None = None
        self._filter: NLMSFilter | None = None
        self._outputs: list[np.ndarray] = []
        self._cursor = 0

    @property
    def active_job(self) -> ProcessingJob | None:
        return self._job

    @property
    def busy(self) -> bool:
        return self._job is not None

    def get(self, job_id: str) -> ProcessingJob | None:
        """Return the active job or the most recently finished one with this id."""
        for job in (self._job, self._last_job):
            if job is not None and job.id == job_id:
                return job
        return None

    def submit(self, signal: AudioSignal, settings: ProcessingSettings | dict,
               job_id: str | None = None) -> str:
        """
        Create a pending job in the slot. Raises BusyError if the slot is taken
        and ValidationError if the settings are invalid.
        """
        if self._job is not None:
            raise BusyError(f"Job {self._job.id} is still {self._job.status.value}")
        if not isinstance(settings, ProcessingSettings):
            settings = ProcessingSettings.build(**settings)

        job = ProcessingJob(input=signal, settings=settings, id=job_id or new_job_id())
        self._job = job
        self._cursor = 0
        self._outputs = []
        logger.info("Job %s submitted: %d samples @ %d Hz, filter_length=%d, step_size=%.4f",
                    job.id, job.total_samples, signal.sample_rate,
                    settings.filter_length, settings.step_size)
        return job.id

    def step(self) -> ProcessingJob | None:
        """
        Process one chunk of the active job and return it, or None when idle.
        """
        job = self._job
        if job is None:
            return None

        if job.status is JobStatus.PENDING:
            if job.total_samples == 0:
                logger.info("Job %s has no samples, completing immediately", job.id)
                self._complete(job)
                return job
            job.transition(JobStatus.RUNNING)
            self._filter = self.filter_factory(job.settings)
            logger.info("Job %s running (chunk_size=%d)", job.id, self.chunk_size)

        total = job.total_samples
        start = self._cursor
        end = min(start + self.chunk_size, total)

        try:
            out = self._filter.process_block(job.input.samples[start:end])
        except DivergenceError as e:
            logger.error("Job %s diverged at %d%%: %s", job.id, job.progress_percent, e)
            job.error = e
            job.transition(JobStatus.FAILED)
            self._release()
            return job

        self._outputs.append(out)
        self._cursor = end

        if end >= total:
            self._complete(job)
        else:
            job.progress_percent = min(99, (100 * end) // total)
            logger.debug("Job %s: %d/%d samples (%d%%)", job.id, end, total, job.progress_percent)
        return job

    def cancel(self, job_id: str) -> bool:
        """
        Cancel the active job if it matches. Its filter state and partial output are discarded.
        """
        job = self._job
        if job is None or job.id != job_id:
            logger.debug("Cancel ignored, job %s is not active", job_id)
            return False
        job.transition(JobStatus.CANCELLED)
        logger.info("Job %s cancelled at %d%%", job.id, job.progress_percent)
        self._release()
        return True

    def abort(self, error: EchoCleanError) -> ProcessingJob | None:
        """
        Fail the active job with *error*, keeping its last progress value.
        """
        job = self._job
        if job is None:
            return None
        job.error = error
        job.transition(JobStatus.FAILED)
        logger.error("Job %s aborted at %d%%: %s", job.id, job.progress_percent, error)
        self._release()
        return job

    def iter_progress(self, job_id: str) -> Iterator[int]:
        """
        Step the job to a terminal state, yielding each new (strictly increasing) progress value.
        The consumer may call `cancel()` between yields.
        """
        job = self.get(job_id)
        if job is None:
            raise KeyError(job_id)
        last = job.progress_percent
        while self._job is job:
            self.step()
            if job.progress_percent > last:
                last = job.progress_percent
                yield last

    def run(self, job_id: str) -> ProcessingJob:
        """Run a job to completion without interleaving other work."""
        for _ in self.iter_progress(job_id):
            pass
        return self.get(job_id)

    def _complete(self, job: ProcessingJob) -> None:
        if self._outputs:
            samples = np.concatenate(self._outputs)
        else:
            samples = np.zeros(0, dtype=np.float64)
        job.result = AudioSignal(sample_rate=job.input.sample_rate, samples=samples)
        job.progress_percent = 100
        job.transition(JobStatus.COMPLETED)
        logger.info("Job %s completed: %d samples", job.id, len(samples))
        self._release()

    def _release(self) -> None:
        self._last_job = self._job
        self._job = None
        self._filter = None
        self._outputs = []
        self._cursor = 0
