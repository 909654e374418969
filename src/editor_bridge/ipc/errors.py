"""Error taxonomy for the editor bridge IPC layer.

Every error carries a machine-readable ``code`` so callers (and the CLI) can
branch on the failure kind without string matching.
"""

from __future__ import annotations

from enum import StrEnum


class BridgeError(Exception):
    """Base class for all bridge IPC failures."""

    code: str = "BRIDGE_ERROR"


# ---------------------------------------------------------------------------
# Framing
# ---------------------------------------------------------------------------


class ProtocolErrorKind(StrEnum):
    """Why a frame was rejected."""

    INVALID_MAGIC = "INVALID_MAGIC"
    MESSAGE_TOO_LARGE = "MESSAGE_TOO_LARGE"
    MALFORMED_PAYLOAD = "MALFORMED_PAYLOAD"


class ProtocolError(BridgeError):
    """Raised when bytes on the wire do not form a valid frame."""

    def __init__(self, kind: ProtocolErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.code = kind.value


# ---------------------------------------------------------------------------
# Request lifecycle
# ---------------------------------------------------------------------------


class BusyError(BridgeError):
    """Raised when an operation is started while an identical one is outstanding."""

    code = "BUSY"


class VersionMismatchError(BridgeError):
    """Raised when the client protocol version differs from the host's."""

    code = "VERSION_MISMATCH"

    def __init__(self, expected: str, received: str) -> None:
        super().__init__(f"Version mismatch: Expected {expected}, but received {received}")
        self.expected = expected
        self.received = received


class RequestCancelledError(BridgeError):
    """The outstanding request was cancelled before it resolved."""

    code = "CANCELLED"


class CorrelationError(BridgeError):
    """A response arrived whose id does not match the outstanding request."""

    code = "CORRELATION"

    def __init__(self, expected_id: int, received_id: int) -> None:
        super().__init__(f"Response id mismatch: expected {expected_id}, got {received_id}")
        self.expected_id = expected_id
        self.received_id = received_id


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------


class BridgeConnectionError(BridgeError):
    """Base for transport-level failures."""

    code = "CONNECTION_ERROR"


class EndpointNotFoundError(BridgeConnectionError):
    """No live host could be discovered or the endpoint refused the connection."""

    code = "NOT_FOUND"


class ConnectTimeoutError(BridgeConnectionError):
    """Connecting to the host exceeded the connect deadline."""

    code = "ETIMEDOUT"

    def __init__(self, address: str, timeout: float) -> None:
        super().__init__(f"ETIMEDOUT: connecting to {address} took longer than {timeout:.3f}s")
        self.address = address
        self.timeout = timeout


class DisconnectedError(BridgeConnectionError):
    """The transport failed mid-exchange."""

    code = "DISCONNECTED"


class ConnectionClosedError(DisconnectedError):
    """The peer closed the stream while a read was pending."""

    def __init__(self, message: str = "stream closed") -> None:
        super().__init__(message)


class DescriptorError(EndpointNotFoundError):
    """The instance descriptor file is missing or invalid."""

    code = "DESCRIPTOR_INVALID"


# ---------------------------------------------------------------------------
# Retry budget
# ---------------------------------------------------------------------------


class RetriesExceededError(BridgeError):
    """Base for exhausted retry budgets."""

    code = "RETRIES_EXCEEDED"

    def __init__(self, operation: str, attempts: int, last_error: BaseException | None) -> None:
        detail = f": {last_error}" if last_error is not None else ""
        super().__init__(f"{operation} failed after {attempts} attempts{detail}")
        self.attempts = attempts
        self.last_error = last_error


class WriteRetriesExceededError(RetriesExceededError):
    code = "WRITE_RETRIES_EXCEEDED"

    def __init__(self, attempts: int, last_error: BaseException | None) -> None:
        super().__init__("write", attempts, last_error)


class ReadRetriesExceededError(RetriesExceededError):
    code = "READ_RETRIES_EXCEEDED"

    def __init__(self, attempts: int, last_error: BaseException | None) -> None:
        super().__init__("read", attempts, last_error)


__all__ = [
    "BridgeConnectionError",
    "BridgeError",
    "BusyError",
    "ConnectTimeoutError",
    "ConnectionClosedError",
    "CorrelationError",
    "DescriptorError",
    "DisconnectedError",
    "EndpointNotFoundError",
    "ProtocolError",
    "ProtocolErrorKind",
    "ReadRetriesExceededError",
    "RequestCancelledError",
    "RetriesExceededError",
    "VersionMismatchError",
    "WriteRetriesExceededError",
]
