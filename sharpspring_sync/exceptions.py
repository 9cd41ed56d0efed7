"""Exception hierarchy shared by the Sharpspring client, cache and sync job."""
from __future__ import annotations

import json
from typing import Any, Optional

# Codes for object-level errors synthesized locally, before a request is sent.
CANDIDATE_NOT_A_LEAD = 1
CANDIDATE_MISSING_EMAIL = 2
CANDIDATE_INVALID_EMAIL = 3


class SharpSpringError(RuntimeError):
    """Base class for every error raised by this package."""

    def __init__(self, message: str = "", code: int = 0) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class TransportError(SharpSpringError):
    """Raised when the HTTP exchange fails before a response could be parsed.

    ``code`` is ``1000`` for connection level failures and ``1000 + status``
    for unexpected HTTP status codes.
    """


class ProtocolFormatError(SharpSpringError, ValueError):
    """Raised when a response envelope does not have the structure we expect.

    These are never retried or downgraded: they indicate that the remote API
    changed its (undocumented) behaviour and the interpreting code needs to be
    revisited.
    """


class SharpSpringRestApiError(SharpSpringError):
    """Error reported by the REST API, either for a whole call or per object.

    For an API-level error (``object_level`` is False) the remote system
    rejected the call before touching any object. An object-level error with
    code 0 is a wrapper: ``data`` then holds the full positional result list
    so callers can see which objects succeeded.
    """

    def __init__(
        self,
        message: str = "",
        code: int = 0,
        data: Any = None,
        *,
        object_level: bool = False,
    ) -> None:
        super().__init__(message, code)
        self.data = [] if data is None else data
        self.object_level = object_level

    @property
    def is_object_level(self) -> bool:
        return self.object_level

    @property
    def is_batch_wrapper(self) -> bool:
        """True if this wraps per-object results rather than one error."""

        return self.object_level and not self.code

    def __str__(self) -> str:
        level = " object-level" if self.object_level else ""
        try:
            data = json.dumps(self.data, indent=2, default=str)
        except (TypeError, ValueError):  # pragma: no cover - repr fallback
            data = repr(self.data)
        return (
            f"Sharpspring REST API{level} error with code {self.code} / "
            f"message '{self.message}'\nData:\n{data}"
        )


def object_error(code: int, message: str, data: Optional[Any] = None) -> dict:
    """Return a per-object result entry describing a failure."""

    return {
        "success": False,
        "error": {"code": code, "message": message, "data": [] if data is None else data},
    }


__all__ = [
    "CANDIDATE_INVALID_EMAIL",
    "CANDIDATE_MISSING_EMAIL",
    "CANDIDATE_NOT_A_LEAD",
    "ProtocolFormatError",
    "SharpSpringError",
    "SharpSpringRestApiError",
    "TransportError",
    "object_error",
]
