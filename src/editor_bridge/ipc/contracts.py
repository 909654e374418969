"""IPC request/response contract types for editor bridge communication."""

from __future__ import annotations

from enum import IntEnum
from typing import Any

from pydantic import BaseModel, Field, StrictInt, StrictStr, field_validator


class ResponseStatus(IntEnum):
    """Outcome of a request, encoded on the wire as ``0`` / ``-1``."""

    OK = 0
    ERROR = -1


class RequestMessage(BaseModel):
    """Envelope for a single request sent from the controller to the host.

    ``id`` is allocated by the client and is strictly increasing for the
    lifetime of a client instance.  ``parameters`` is opaque to the IPC layer
    and interpreted only by the method handler.
    """

    id: StrictInt = Field(description="Correlation id chosen by the client")
    version: StrictStr = Field(description="Protocol version spoken by the client")
    method: StrictStr = Field(description="Host method name (e.g. 'refresh')")
    parameters: Any = Field(description="Method-defined payload (any JSON value)")


class ResponseMessage(BaseModel):
    """Envelope for a single response sent from the host to the controller.

    ``id`` echoes the ``id`` of the request being answered.  ``result`` is a
    human-readable string on error and a method-defined string on success.
    """

    id: StrictInt = Field(description="Echoed id of the originating RequestMessage")
    version: StrictStr = Field(description="Protocol version spoken by the host")
    status: ResponseStatus = Field(description="0 = OK, -1 = Error")
    result: StrictStr = Field(description="Method result or error description")

    @field_validator("status", mode="before")
    @classmethod
    def _status_must_be_integer(cls, value: object) -> object:
        if isinstance(value, ResponseStatus):
            return value
        if isinstance(value, bool) or not isinstance(value, int):
            msg = "status must be an integer (0 or -1)"
            raise ValueError(msg)
        return value

    @property
    def ok(self) -> bool:
        """Whether the host reported success."""
        return self.status is ResponseStatus.OK

    @staticmethod
    def success(request_id: int, version: str, result: str = "OK") -> ResponseMessage:
        """Create a successful response."""
        return ResponseMessage(
            id=request_id, version=version, status=ResponseStatus.OK, result=result
        )

    @staticmethod
    def failure(request_id: int, version: str, message: str) -> ResponseMessage:
        """Create an error response carrying *message*."""
        return ResponseMessage(
            id=request_id, version=version, status=ResponseStatus.ERROR, result=message
        )


type Message = RequestMessage | ResponseMessage

__all__ = [
    "Message",
    "RequestMessage",
    "ResponseMessage",
    "ResponseStatus",
]
