import logging
import queue
import signal
from multiprocessing import Queue as ProcessQueue
from typing import Callable

from echoclean.core.config import CodecConfig, EngineConfig
from echoclean.core.errors import (
    BusyError,
    EchoCleanError,
    InternalError,
    NotInitializedError,
)
from echoclean.core.events import (
    Cancel,
    ErrorInfo,
    Init,
    InitResult,
    Process,
    ProcessResult,
    Progress,
    Ready,
    Shutdown,
)
from echoclean.core.logging import setup_logging
from echoclean.core.models import ProcessingSettings
from echoclean.features.codec.adapter import decode, encode
from echoclean.features.scheduler.jobs import JobStatus, ProcessingJob
from echoclean.features.scheduler.scheduler import ChunkScheduler

logger = logging.getLogger("echoclean.engine.service")

# Status reported for a Process request that never became a job.
REJECTED = "rejected"


class EngineService:
    """
    Dispatch loop of the engine process.

    Reads host messages from `inbox` and answers on `outbox`. While a job is
    active the loop alternates between one scheduler step and a non-blocking
    drain of the inbox, so a Cancel is honoured at the next chunk boundary and a
    second Process is rejected as Busy instead of queued.
    """
    def __init__(self,
                 inbox: ProcessQueue,
                 outbox: ProcessQueue,
                 config: EngineConfig | None = None,
                 codec: CodecConfig | None = None,
                 scheduler_factory: Callable[[], ChunkScheduler] | None = None):
        self.inbox = inbox
        self.outbox = outbox
        self.config = config or EngineConfig()
        self.codec = codec or CodecConfig()
        self.scheduler_factory = scheduler_factory or (
            lambda: ChunkScheduler(
                chunk_size=self.config.chunk_size,
                epsilon=self.config.epsilon,
                divergence_limit=self.config.divergence_limit,
            )
        )

        self.scheduler: ChunkScheduler | None = None
        self._last_percent = 0
        self._running = False

    @property
    def initialized(self) -> bool:
        return self.scheduler is not None

    def run(self):
        """Block until Shutdown (or a None poison pill) is received."""
        logger.info("Engine service starting: chunk_size=%d, queue_maxsize=%d",
                    self.config.chunk_size, self.config.queue_maxsize)
        self._running = True
        self.outbox.put(Ready())

        while self._running:
            if self.scheduler is not None and self.scheduler.busy:
                self._poll_inbox()
                if self._running and self.scheduler.busy:
                    self._advance()
            else:
                self._dispatch(self.inbox.get())

        logger.info("Engine service stopped")

    def _poll_inbox(self):
        """
        Handle every message already waiting, without blocking.
        """
        while self._running:
            try:
                message = self.inbox.get_nowait()
            except queue.Empty:
                return
            self._dispatch(message)

    def _dispatch(self, message):
        if message is None or isinstance(message, Shutdown):
            self._handle_shutdown()
        elif isinstance(message, Init):
            self._handle_init()
        elif isinstance(message, Process):
            self._handle_process(message)
        elif isinstance(message, Cancel):
            self._handle_cancel(message)
        else:
            logger.warning("Unknown message type received by engine: %s", type(message).__name__)

    def _handle_init(self):
        if self.scheduler is not None and self.scheduler.busy:
            error = BusyError(f"Job {self.scheduler.active_job.id} is running")
            self.outbox.put(InitResult(success=False, error=ErrorInfo.from_exception(error)))
            return

        try:
            self.scheduler = self.scheduler_factory()
        except Exception as e:
            logger.error("Engine initialization failed: %s", e, exc_info=True)
            self.scheduler = None
            self.outbox.put(InitResult(success=False, error=ErrorInfo.from_exception(e)))
            return

        logger.info("Engine initialized")
        self.outbox.put(InitResult(success=True))

    def _handle_process(self, message: Process):
        job_id = message.job_id
        if self.scheduler is not None and self.scheduler.busy and self.scheduler.active_job.id == job_id:
            logger.warning("Dropped duplicate Process for running job %s", job_id)
            return

        try:
            if self.scheduler is None:
                raise NotInitializedError("Engine received Process before Init")
            if self.scheduler.busy:
                raise BusyError(f"Job {self.scheduler.active_job.id} is still running")
            settings = ProcessingSettings.build(**message.settings)
            signal_in = decode(message.signal_bytes)
            self.scheduler.submit(signal_in, settings, job_id=job_id)
        except EchoCleanError as e:
            logger.warning("Rejected job %s: %s (%s)", job_id, e, e.kind)
            self.outbox.put(ProcessResult(
                job_id=job_id,
                success=False,
                status=REJECTED,
                error=ErrorInfo.from_exception(e),
            ))
            return

        self._last_percent = 0

    def _handle_cancel(self, message: Cancel):
        if self.scheduler is None or not self.scheduler.cancel(message.job_id):
            logger.info("Cancel for job %s ignored (not running)", message.job_id)
            return
        self.outbox.put(ProcessResult(
            job_id=message.job_id,
            success=False,
            status=JobStatus.CANCELLED.value,
        ))

    def _handle_shutdown(self):
        logger.info("Shutdown requested")
        if self.scheduler is not None and self.scheduler.busy:
            self._handle_cancel(Cancel(job_id=self.scheduler.active_job.id))
        self._running = False

    def _advance(self):
        """
        Run one chunk and report what changed.
        """
        try:
            job = self.scheduler.step()
        except Exception as e:
            logger.error("Unexpected error while processing: %s", e, exc_info=True)
            job = self.scheduler.abort(InternalError(str(e)))

        if job is None:
            return

        if job.status is JobStatus.COMPLETED:
            self._finish(job)
            return

        if job.progress_percent > self._last_percent:
            self._last_percent = job.progress_percent
            self.outbox.put(Progress(job_id=job.id, percent=job.progress_percent))

        if job.status.is_terminal:
            self._finish(job)

    def _finish(self, job: ProcessingJob):
        if job.status is JobStatus.COMPLETED:
            try:
                output = encode(job.result, bit_depth=self.codec.bit_depth)
            except Exception as e:
                logger.error("Encoding result of job %s failed: %s", job.id, e, exc_info=True)
                self.outbox.put(ProcessResult(
                    job_id=job.id,
                    success=False,
                    status=JobStatus.FAILED.value,
                    error=ErrorInfo.from_exception(InternalError(str(e))),
                ))
                return
            self.outbox.put(Progress(job_id=job.id, percent=100))
            self.outbox.put(ProcessResult(
                job_id=job.id,
                success=True,
                status=JobStatus.COMPLETED.value,
                output_bytes=output,
            ))
        else:
            self.outbox.put(ProcessResult(
                job_id=job.id,
                success=False,
                status=job.status.value,
                error=ErrorInfo.from_exception(job.error) if job.error else None,
            ))


def run_engine_service(inbox: ProcessQueue,
                       outbox: ProcessQueue,
                       config: EngineConfig,
                       codec: CodecConfig,
                       log_file: str | None = None,
                       log_level: str = "INFO"):
    """
    Entry point of the engine process.
    """
    # The host owns Ctrl+C; it cancels or shuts us down through the inbox.
    signal.signal(signal.SIGINT, signal.SIG_IGN)
    setup_logging(level=log_level, log_file=log_file)
    service = EngineService(inbox, outbox, config=config, codec=codec)
    service.run()
