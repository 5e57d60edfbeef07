import logging
import multiprocessing
import queue
import time
from typing import Callable

from echoclean.core.config import Settings, load_settings
from echoclean.core.errors import BusyError, EngineError, NotInitializedError
from echoclean.core.events import (
    Cancel,
    EngineMessage,
    Init,
    InitResult,
    Process,
    ProcessResult,
    Progress,
    Ready,
    Shutdown,
    transfer_buffer,
)
from echoclean.core.models import ProcessingSettings
from echoclean.features.engine.service import run_engine_service
from echoclean.features.scheduler.jobs import new_job_id

logger = logging.getLogger("echoclean.core.session")

_POLL_INTERVAL = 0.2  # seconds


class EngineClient:
    """
    Host-side handle to one engine process.

    Lifecycle: construct, `start()` (spawn and wait for Ready), `initialize()`
    (Init / InitResult), submit jobs, `close()`. Closing and starting again gives
    a fresh engine with no job state, which is how a host enforces its own timeout.
    """
    def __init__(self, settings: Settings | None = None):
        self.settings = settings or load_settings()

        self.q_to_engine = None
        self.q_from_engine = None
        self.process = None
        self.initialized = False
        self._active_job: str | None = None

    @property
    def active_job(self) -> str | None:
        return self._active_job

    def start(self):
        """
        Spawn the engine process and block until it reports Ready.
        """
        if self.process is not None:
            raise EngineError("Engine already started")

        maxsize = self.settings.engine.queue_maxsize
        self.q_to_engine = multiprocessing.Queue(maxsize=maxsize)
        self.q_from_engine = multiprocessing.Queue(maxsize=maxsize)

        self.process = multiprocessing.Process(
            target=run_engine_service,
            args=(
                self.q_to_engine,
                self.q_from_engine,
                self.settings.engine,
                self.settings.codec,
                self.settings.app.log_file,
                self.settings.app.log_level,
            ),
            daemon=True,
            name="echoclean-engine",
        )
        self.process.start()
        logger.info("Engine process started (pid=%s)", self.process.pid)

        self._expect(Ready, self.settings.engine.ready_timeout)

    def initialize(self):
        """
        Send Init and wait for the engine to confirm it.
        """
        if self.process is None:
            raise NotInitializedError("Engine process is not started")
        self.q_to_engine.put(Init())
        result: InitResult = self._expect(InitResult, self.settings.engine.ready_timeout)
        if not result.success:
            raise result.error.to_exception()
        self.initialized = True
        logger.info("Engine initialized")

    def submit(self,
               signal_bytes: bytes | bytearray | memoryview,
               settings: ProcessingSettings | dict | None = None,
               job_id: str | None = None) -> str:
        """
        Send a Process request and return its job id.

        Settings are validated here first, so a ValidationError never reaches the engine.
        A bytearray or memoryview is emptied/released once handed over.
        """
        if not self.initialized:
            raise NotInitializedError("Engine is not initialized")
        if self._active_job is not None:
            raise BusyError(f"Job {self._active_job} is still running")

        if settings is None:
            settings = ProcessingSettings.build(**self.settings.processing.model_dump())
        elif not isinstance(settings, ProcessingSettings):
            settings = ProcessingSettings.build(**settings)

        job_id = job_id or new_job_id()
        payload = transfer_buffer(signal_bytes)
        self.q_to_engine.put(Process(job_id=job_id, signal_bytes=payload, settings=settings.model_dump()))
        self._active_job = job_id
        logger.info("Submitted job %s (%d bytes)", job_id, len(payload))
        return job_id

    def cancel(self, job_id: str):
        if self.q_to_engine is None:
            return
        logger.info("Requesting cancel of job %s", job_id)
        self.q_to_engine.put(Cancel(job_id=job_id))

    def poll(self, timeout: float | None = None) -> EngineMessage | None:
        """
        Return the next engine message, or None if nothing arrived in time.
        """
        if self.q_from_engine is None:
            raise NotInitializedError("Engine process is not started")
        try:
            message = self.q_from_engine.get(timeout=timeout)
        except queue.Empty:
            return None
        if isinstance(message, ProcessResult) and message.job_id == self._active_job:
            self._active_job = None
        return message

    def wait_result(self,
                    job_id: str,
                    on_progress: Callable[[int], None] | None = None,
                    timeout: float | None = None) -> ProcessResult:
        """
        Pump messages until the terminal ProcessResult of *job_id* arrives.
        Raises TimeoutError after *timeout* seconds and EngineError if the engine dies.
        """
        deadline = None if timeout is None else time.monotonic() + timeout

        while True:
            wait = _POLL_INTERVAL
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise TimeoutError(f"Job {job_id} did not finish within {timeout}s")
                wait = min(wait, remaining)

            message = self.poll(timeout=wait)
            if message is None:
                self._check_alive()
                continue

            if isinstance(message, Progress) and message.job_id == job_id:
                if on_progress is not None:
                    on_progress(message.percent)
            elif isinstance(message, ProcessResult) and message.job_id == job_id:
                logger.info("Job %s finished: %s", job_id, message.status)
                return message
            else:
                logger.debug("Skipping message for another job: %s", message)

    def close(self):
        """
        Stop the engine process and close the queues. Safe to call twice.
        """
        if self.process is None:
            return

        if self.process.is_alive():
            try:
                self.q_to_engine.put(Shutdown(), timeout=1.0)
            except queue.Full:
                logger.warning("Engine inbox full, terminating instead of shutting down")
            self.process.join(timeout=5)
            if self.process.is_alive():
                self.process.terminate()
                self.process.join(timeout=5)

        for q in (self.q_to_engine, self.q_from_engine):
            try:
                q.close()
            except Exception as e:
                logger.error("Error closing queue: %s", e)

        logger.info("Engine process stopped (exitcode=%s)", self.process.exitcode)
        self.process = None
        self.q_to_engine = None
        self.q_from_engine = None
        self.initialized = False
        self._active_job = None

    def __enter__(self) -> "EngineClient":
        self.start()
        self.initialize()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _check_alive(self):
        if self.process is None or not self.process.is_alive():
            code = None if self.process is None else self.process.exitcode
            self._active_job = None
            raise EngineError(f"Engine process is not running (exitcode={code})")

    def _expect(self, message_type: type, timeout: float):
        """
        Wait for a message of *message_type*, ignoring anything else.
        """
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise EngineError(f"Timed out waiting for {message_type.__name__} from engine")
            message = self.poll(timeout=min(_POLL_INTERVAL, remaining))
            if message is None:
                self._check_alive()
                continue
            if isinstance(message, message_type):
                return message
            logger.debug("Ignoring %s while waiting for %s", type(message).__name__, message_type.__name__)
