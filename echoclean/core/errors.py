class EchoCleanError(Exception):
    """
    Base class for every error the engine reports to a host.

    `kind` is the stable name used when the error crosses the process boundary.
    """
    kind = "EchoCleanError"


class ValidationError(EchoCleanError):
    """Settings are out of their allowed range. No job is created."""
    kind = "ValidationError"


class NotInitializedError(EchoCleanError):
    """The engine context has not completed `Init` yet."""
    kind = "NotInitialized"


class DecodeError(EchoCleanError):
    """Input bytes are malformed or in an unsupported container."""
    kind = "DecodeError"


class DivergenceError(EchoCleanError):
    """The adaptive filter became numerically unstable mid-job."""
    kind = "DivergenceError"


class BusyError(EchoCleanError):
    """A job already occupies the engine's single slot."""
    kind = "Busy"


class EngineError(EchoCleanError):
    """The engine process died or never became ready (host side only)."""
    kind = "EngineError"


class InternalError(EchoCleanError):
    """An unexpected exception inside the engine, reported instead of crashing the loop."""
    kind = "InternalError"


_KINDS = {
    cls.kind: cls
    for cls in (
        ValidationError,
        NotInitializedError,
        DecodeError,
        DivergenceError,
        BusyError,
        EngineError,
        InternalError,
    )
}


def error_from_kind(kind: str, message: str) -> EchoCleanError:
    """
    Rebuild a typed error from its wire representation.
    Unknown kinds fall back to the base class.
    """
    cls = _KINDS.get(kind, EchoCleanError)
    return cls(message)
