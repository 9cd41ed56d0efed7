"""Tagged outcomes for calls that act on a batch of objects."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, List, Union

from .exceptions import SharpSpringRestApiError


@dataclass(frozen=True)
class Ok:
    value: Any


@dataclass(frozen=True)
class ObjectLevelFailure:
    """Some objects failed; ``outcomes`` is positional with the submitted batch."""

    outcomes: List[Any] = field(default_factory=list)
    message: str = ""
    code: int = 0


@dataclass(frozen=True)
class ApiLevelFailure:
    """The whole call was rejected; no objects were touched."""

    code: int
    message: str
    data: Any = None


CallResult = Union[Ok, ObjectLevelFailure, ApiLevelFailure]


def capture(func: Callable[..., Any], *args: Any, **kwargs: Any) -> CallResult:
    """Run ``func`` and turn a REST API error into a tagged result.

    Transport and protocol format errors are not caught: they stay fatal.
    """

    try:
        return Ok(func(*args, **kwargs))
    except SharpSpringRestApiError as exc:
        return from_error(exc)


def from_error(exc: SharpSpringRestApiError) -> CallResult:
    if exc.object_level:
        if exc.code:
            # A single object's own error, as raised for one-object calls.
            return ObjectLevelFailure(
                outcomes=[{"success": False, "error": {"code": exc.code, "message": exc.message, "data": exc.data}}],
                message=exc.message,
                code=exc.code,
            )
        return ObjectLevelFailure(outcomes=list(exc.data), message=exc.message)
    return ApiLevelFailure(code=exc.code, message=exc.message, data=exc.data)


__all__ = ["ApiLevelFailure", "CallResult", "ObjectLevelFailure", "Ok", "capture", "from_error"]
