"""
Messages exchanged between the host and the engine process.

Host -> engine: Init, Process, Cancel, Shutdown.
Engine -> host: Ready, InitResult, Progress, ProcessResult.

Everything here is a plain dataclass so it pickles through a multiprocessing.Queue.
"""

from dataclasses import dataclass, field

from echoclean.core.errors import EchoCleanError, error_from_kind


@dataclass
class ErrorInfo:
    """
    Wire form of an error: its taxonomy kind and a message.
    """
    kind: str
    message: str

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ErrorInfo":
        kind = exc.kind if isinstance(exc, EchoCleanError) else "InternalError"
        return cls(kind=kind, message=str(exc))

    def to_exception(self) -> EchoCleanError:
        return error_from_kind(self.kind, self.message)


# Host -> engine

@dataclass
class Init:
    pass


@dataclass
class Process:
    job_id: str
    signal_bytes: bytes = field(repr=False)
    settings: dict = field(default_factory=dict)


@dataclass
class Cancel:
    job_id: str


@dataclass
class Shutdown:
    pass


# Engine -> host

@dataclass
class Ready:
    pass


@dataclass
class InitResult:
    success: bool
    error: ErrorInfo | None = None


@dataclass
class Progress:
    job_id: str
    percent: int


@dataclass
class ProcessResult:
    """
    Terminal message for a job. A cancelled job has success=False and no error.
    """
    job_id: str
    success: bool
    status: str
    output_bytes: bytes | None = field(default=None, repr=False)
    error: ErrorInfo | None = None


HostMessage = Init | Process | Cancel | Shutdown
EngineMessage = Ready | InitResult | Progress | ProcessResult


def transfer_buffer(buf: bytes | bytearray | memoryview) -> bytes:
    """
    Move a sample buffer into a message.

    A bytearray is emptied and a memoryview released, so the sender no longer
    holds usable data after the send. Immutable bytes are passed through.
    """
    if isinstance(buf, bytearray):
        payload = bytes(buf)
        del buf[:]
        return payload
    if isinstance(buf, memoryview):
        payload = buf.tobytes()
        buf.release()
        return payload
    if isinstance(buf, bytes):
        return buf
    raise TypeError(f"Expected a bytes-like buffer, got {type(buf).__name__}")
