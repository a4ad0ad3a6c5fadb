"""Tagged failure types for chat-platform calls and the phase loop steps."""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass
from typing import Union

import discord

__all__ = [
    "DEFAULT_RETRY_AFTER_SEC",
    "Other",
    "PlatformError",
    "RateLimited",
    "Step",
    "TimedOut",
    "Failure",
    "classify_exception",
    "step_for",
]

DEFAULT_RETRY_AFTER_SEC = 10.0


@dataclass(frozen=True, slots=True)
class RateLimited:
    retry_after: float = DEFAULT_RETRY_AFTER_SEC
    bucket: str | None = None


@dataclass(frozen=True, slots=True)
class TimedOut:
    operation: str


@dataclass(frozen=True, slots=True)
class Other:
    detail: str


Failure = Union[RateLimited, TimedOut, Other]


class PlatformError(Exception):
    """Raised by the gateway; ``failure`` says what kind of failure it was."""

    def __init__(self, failure: Failure) -> None:
        super().__init__(_describe(failure))
        self.failure = failure


class Step(enum.Enum):
    """What the phase loop does after an item."""

    CONTINUE = "continue"
    SKIP_ITEM = "skip_item"
    STOP_PHASE = "stop_phase"


def _describe(failure: Failure) -> str:
    if isinstance(failure, RateLimited):
        bucket = f" bucket={failure.bucket}" if failure.bucket else ""
        return f"rate limited; retry_after={failure.retry_after:.1f}s{bucket}"
    if isinstance(failure, TimedOut):
        return f"{failure.operation} timed out"
    return failure.detail


def classify_exception(
    exc: BaseException,
    *,
    operation: str = "platform call",
    default_retry_after: float = DEFAULT_RETRY_AFTER_SEC,
) -> Failure:
    """Map an exception raised by discord.py (or a timeout) to a failure tag."""

    if isinstance(exc, PlatformError):
        return exc.failure
    if isinstance(exc, discord.RateLimited):
        retry_after = float(getattr(exc, "retry_after", 0.0) or 0.0)
        return RateLimited(retry_after=retry_after or default_retry_after)
    if isinstance(exc, discord.HTTPException) and getattr(exc, "status", None) == 429:
        retry_after = _retry_after_header(exc)
        return RateLimited(
            retry_after=retry_after if retry_after is not None else default_retry_after,
            bucket=_bucket_header(exc),
        )
    if isinstance(exc, asyncio.TimeoutError):
        return TimedOut(operation=operation)
    detail = str(exc).strip() or exc.__class__.__name__
    return Other(detail=f"{operation}: {detail}")


def _headers(exc: discord.HTTPException):
    response = getattr(exc, "response", None)
    return getattr(response, "headers", None) or {}


def _retry_after_header(exc: discord.HTTPException) -> float | None:
    raw = _headers(exc).get("Retry-After")
    if raw is None:
        return None
    try:
        return max(0.0, float(raw))
    except (TypeError, ValueError):
        return None


def _bucket_header(exc: discord.HTTPException) -> str | None:
    value = _headers(exc).get("X-RateLimit-Bucket")
    return str(value) if value else None


def step_for(failure: Failure) -> Step:
    """Timeouts stop the phase; everything else skips just the current item."""

    if isinstance(failure, TimedOut):
        return Step.STOP_PHASE
    return Step.SKIP_ITEM
