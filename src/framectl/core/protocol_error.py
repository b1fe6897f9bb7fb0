"""Protocol error classification

Every failure raised by a remote call is converted into a `ProtocolError`
carrying one of three kinds:

- `ErrorKind.CLOSED`: the tab, frame or document is gone. Callers give up.
- `ErrorKind.CRASHED`: the target process died. Callers escalate.
- `ErrorKind.GENERIC`: anything else, with the raw message preserved.

Classification works by matching phrases the host is known to use when a
target disappears.
"""

from enum import Enum
from typing import List, Optional, Tuple


class ErrorKind(str, Enum):
    """Failure taxonomy for remote calls"""
    GENERIC = "error"
    CLOSED = "closed"
    CRASHED = "crashed"


CLOSED_TARGET_PHRASES: Tuple[str, ...] = (
    "No tab with id",
    "No frame with id",
    "Cannot access a closed tab",
    "The tab was closed",
    "was removed",
    "Target closed",
)

CRASHED_TARGET_PHRASES: Tuple[str, ...] = (
    "Target crashed",
    "renderer process has crashed",
    "Page crashed",
)


class ProtocolError(Exception):
    """A typed failure of a remote call

    Attributes:
        kind: classified failure kind
        method: name of the remote operation that failed, if known
        raw_message: message without the protocol prefix
        logs: optional call log lines collected by a progress controller
    """

    def __init__(
        self,
        kind: ErrorKind = ErrorKind.GENERIC,
        message: str = "",
        method: Optional[str] = None,
        logs: Optional[List[str]] = None,
    ):
        self.kind = kind
        self.method = method
        self.raw_message = message
        self.logs = list(logs) if logs else []
        super().__init__(self._format())

    def _format(self) -> str:
        if self.method:
            return f"Protocol error ({self.method}): {self.raw_message}"
        return f"Protocol error: {self.raw_message}"

    @property
    def message(self) -> str:
        return str(self)

    @classmethod
    def from_exception(cls, exc: BaseException, method: Optional[str] = None) -> "ProtocolError":
        """Classify a raw host failure

        An existing `ProtocolError` is returned unchanged, except that a
        missing method name is filled in.

        Args:
            exc: the raised exception
            method: name of the remote operation being performed

        Returns:
            A classified ProtocolError
        """
        if isinstance(exc, ProtocolError):
            if exc.method is None and method is not None:
                exc.method = method
                exc.args = (exc._format(),)
            return exc

        raw = str(exc) or exc.__class__.__name__
        kind = classify_message(raw)
        if kind is ErrorKind.CLOSED:
            label = method or "remote call"
            error = cls(kind, f"Target closed during {label}: {raw}", method)
        elif kind is ErrorKind.CRASHED:
            error = cls(kind, f"Target crashed: {raw}", method)
        else:
            error = cls(kind, raw, method)
        error.__cause__ = exc
        return error

    def browser_log_message(self) -> str:
        """Message with the collected call log appended"""
        if not self.logs:
            return str(self)
        lines = "\n".join(f"  - {line}" for line in self.logs)
        return f"{self}\nCall log:\n{lines}"

    def is_closed(self) -> bool:
        return self.kind is ErrorKind.CLOSED

    def is_crashed(self) -> bool:
        return self.kind is ErrorKind.CRASHED


class ContextDestroyedError(ProtocolError):
    """The execution context was destroyed by a document replacement"""

    def __init__(self, reason: str = "Execution context was destroyed", method: Optional[str] = None):
        super().__init__(ErrorKind.CLOSED, reason, method)
        self.reason = reason


class FrameDetachedError(ProtocolError):
    """The frame owning the execution context is detached"""

    def __init__(self, frame_id: Optional[int] = None, method: Optional[str] = None):
        if frame_id is None:
            message = "Frame was detached"
        else:
            message = f"Frame {frame_id} was detached"
        super().__init__(ErrorKind.CLOSED, message, method)
        self.frame_id = frame_id


def classify_message(message: str) -> ErrorKind:
    """Map a raw failure message onto an ErrorKind"""
    for phrase in CRASHED_TARGET_PHRASES:
        if phrase in message:
            return ErrorKind.CRASHED
    for phrase in CLOSED_TARGET_PHRASES:
        if phrase in message:
            return ErrorKind.CLOSED
    return ErrorKind.GENERIC


def is_protocol_error(error: object) -> bool:
    return isinstance(error, ProtocolError)


def is_session_closed_error(error: object) -> bool:
    """True when the error means the target is gone (closed or crashed)"""
    return isinstance(error, ProtocolError) and error.kind in (ErrorKind.CLOSED, ErrorKind.CRASHED)
