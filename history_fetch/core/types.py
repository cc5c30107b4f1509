"""
Core Type Definitions for Channel History Retrieval

Implements Result/Either monads for zero-exception control flow and the
TimeToken cursor type shared by every layer.

Page fetchers, query constructors and the orchestrator all return Result
values; nothing on the public surface raises for an expected failure.

Time tokens are only ever upscaled to native precision, never divided.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import (
    Any,
    Callable,
    Generic,
    Literal,
    TypeVar,
    Union,
)

from history_fetch.core import constants as C

# =============================================================================
# TYPE VARIABLES FOR GENERIC CONTAINERS
# =============================================================================
T = TypeVar("T")  # Success type
E = TypeVar("E")  # Error type
U = TypeVar("U")  # Transform result type


# =============================================================================
# RESULT MONAD: ZERO-EXCEPTION CONTROL FLOW
# =============================================================================
@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """
    Success variant of Result monad.

    Immutable container for successful computation results.
    """

    value: T

    def is_ok(self) -> Literal[True]:
        return True

    def is_err(self) -> Literal[False]:
        return False

    def unwrap(self) -> T:
        """Extract value. Safe to call after is_ok() check."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        """Return value, ignoring default."""
        return self.value

    def map(self, fn: Callable[[T], U]) -> Ok[U]:
        """Apply transformation to success value."""
        return Ok(fn(self.value))

    def flat_map(self, fn: Callable[[T], Result[U, E]]) -> Result[U, E]:
        """Monadic bind for chaining fallible operations."""
        return fn(self.value)

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """
    Failure variant of Result monad.

    Carries full error context for exhaustive handling.
    """

    error: E

    def is_ok(self) -> Literal[False]:
        return False

    def is_err(self) -> Literal[True]:
        return True

    def unwrap(self) -> Any:
        """
        Attempting to unwrap an error is a programming error.

        Raises:
            RuntimeError: Always, with error context
        """
        raise RuntimeError(f"Called unwrap() on Err: {self.error}")

    def unwrap_or(self, default: T) -> T:
        """Return default value on error."""
        return default

    def map(self, fn: Callable[[Any], U]) -> Err[E]:
        """No-op on error variant - propagates error unchanged."""
        return self

    def flat_map(self, fn: Callable[[Any], Result[U, E]]) -> Err[E]:
        """Propagate error through monadic chain."""
        return self

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


# Union type for pattern matching
Result = Union[Ok[T], Err[E]]


# =============================================================================
# TIME TOKEN WITH NATIVE SERVICE PRECISION
# =============================================================================
TokenLike = Union["TimeToken", int, float, Decimal, datetime, str]


@dataclass(frozen=True, slots=True, order=True)
class TimeToken:
    """
    Monotonic high-precision cursor used for ordering and windowing.

    Stores 100 ns ticks since the Unix epoch, the storage service's native
    precision. Tokens for present-day events are 17-digit integers.

    Coarser client values are upscaled on construction:
        - int with <= 11 digits: seconds
        - int with 12-14 digits: milliseconds
        - int with 15-16 digits: microseconds
        - int with >= 17 digits: native ticks
        - float / Decimal: seconds with fractional part
        - datetime: converted through its POSIX timestamp
    """

    ticks: int

    def __post_init__(self) -> None:
        if isinstance(self.ticks, bool) or not isinstance(self.ticks, int):
            raise TypeError(f"ticks must be int, got {type(self.ticks).__name__}")
        if self.ticks < 0:
            raise ValueError(f"ticks must be >= 0, got {self.ticks}")

    @classmethod
    def now(cls) -> TimeToken:
        """Capture current time at native precision."""
        return cls(ticks=time.time_ns() // 100)

    @classmethod
    def from_seconds(cls, seconds: Union[int, float, Decimal]) -> TimeToken:
        """
        Convert seconds to a token.

        Floats are read through their shortest repr so 1.5 becomes exactly
        15_000_000 ticks. Fractions finer than one tick are truncated.
        """
        if isinstance(seconds, float):
            amount = Decimal(repr(seconds))
        else:
            amount = Decimal(seconds)
        ticks = (amount * C.TICKS_PER_SECOND).to_integral_value(rounding=ROUND_DOWN)
        return cls(ticks=int(ticks))

    @classmethod
    def from_millis(cls, millis: int) -> TimeToken:
        return cls(ticks=millis * C.TICKS_PER_MILLI)

    @classmethod
    def from_micros(cls, micros: int) -> TimeToken:
        return cls(ticks=micros * C.TICKS_PER_MICRO)

    @classmethod
    def from_datetime(cls, value: datetime) -> TimeToken:
        """Convert an aware (or UTC-naive) datetime."""
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        delta = value - datetime(1970, 1, 1, tzinfo=timezone.utc)
        micros = (delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds
        return cls.from_micros(micros)

    @classmethod
    def from_value(cls, value: Any) -> Result[TimeToken, str]:
        """
        Normalize any supported client value to a native-precision token.

        Returns:
            Ok[TimeToken]: Upscaled token
            Err[str]: Reason the value cannot be used as a token
        """
        if isinstance(value, TimeToken):
            return Ok(value)
        if isinstance(value, bool) or value is None:
            return Err(f"Unsupported time token value: {value!r}")
        try:
            if isinstance(value, datetime):
                return Ok(cls.from_datetime(value))
            if isinstance(value, (float, Decimal)):
                if not Decimal(repr(value) if isinstance(value, float) else value).is_finite():
                    return Err(f"Time token must be finite, got {value!r}")
                if value < 0:
                    return Err(f"Time token must be >= 0, got {value!r}")
                return Ok(cls.from_seconds(value))
            if isinstance(value, int):
                if value < 0:
                    return Err(f"Time token must be >= 0, got {value}")
                return Ok(cls._from_int(value))
            if isinstance(value, str):
                return cls.from_value(int(value.strip()))
        except (ValueError, TypeError, InvalidOperation, OverflowError) as e:
            return Err(f"Invalid time token {value!r}: {e}")
        return Err(f"Unsupported time token type: {type(value).__name__}")

    @classmethod
    def _from_int(cls, value: int) -> TimeToken:
        digits = len(str(value))
        if digits <= C.SECONDS_MAX_DIGITS:
            return cls(ticks=value * C.TICKS_PER_SECOND)
        if digits <= C.MILLIS_MAX_DIGITS:
            return cls.from_millis(value)
        if digits <= C.MICROS_MAX_DIGITS:
            return cls.from_micros(value)
        return cls(ticks=value)

    @property
    def seconds(self) -> float:
        """Convert to floating-point seconds (lossy, for display)."""
        return self.ticks / C.TICKS_PER_SECOND

    def to_datetime(self) -> datetime:
        """Convert to an aware UTC datetime (microsecond resolution)."""
        seconds, remainder = divmod(self.ticks, C.TICKS_PER_SECOND)
        return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(
            microsecond=remainder // C.TICKS_PER_MICRO
        )

    def __int__(self) -> int:
        return self.ticks

    def __str__(self) -> str:
        return str(self.ticks)

    def __repr__(self) -> str:
        return f"TimeToken({self.ticks})"
