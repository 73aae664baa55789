"""Typed decoding of pipelined replies.

``pipeline.execute(raise_on_error=False)`` leaves exception instances in the
reply list; each slot is turned into ``Ok`` or ``Failed`` right after the round
trip so callers never inspect raw tuples.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, List, Union

from redis.exceptions import (
    NoPermissionError,
    ResponseError,
    TimeoutError as RedisTimeoutError,
)

UNKNOWN_COMMAND = "unknown-command"
NO_PERMISSION = "no-permission"
RESPONSE = "response"
TIMEOUT = "timeout"
BAD_VALUE = "bad-value"


@dataclass(frozen=True)
class Ok:
    value: Any

    ok = True


@dataclass(frozen=True)
class Failed:
    kind: str
    message: str

    ok = False


Reply = Union[Ok, Failed]


def error_kind(exc: BaseException) -> str:
    if isinstance(exc, NoPermissionError):
        return NO_PERMISSION
    if isinstance(exc, ResponseError):
        if str(exc).lower().startswith("unknown command"):
            return UNKNOWN_COMMAND
        return RESPONSE
    if isinstance(exc, RedisTimeoutError):
        return TIMEOUT
    return BAD_VALUE


def decode(raw: Any, convert: Callable[[Any], Any]) -> Reply:
    if isinstance(raw, Exception):
        return Failed(error_kind(raw), str(raw))
    try:
        return Ok(convert(raw))
    except (TypeError, ValueError, UnicodeDecodeError) as e:
        return Failed(BAD_VALUE, str(e))


def as_text(raw) -> str:
    if isinstance(raw, (bytes, bytearray)):
        return raw.decode("utf-8", errors="replace")
    if raw is None:
        raise ValueError("nil reply")
    return str(raw)


def as_int(raw) -> int:
    if raw is None:
        raise ValueError("nil reply")
    return int(raw)


def chunk(replies: List[Any], width: int) -> List[List[Any]]:
    return [replies[i:i + width] for i in range(0, len(replies), width)]
