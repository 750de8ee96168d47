"""
Core Type Definitions for MentorSync

Implements Result/Either monads for zero-exception control flow across the
session, service and storage layers, plus the small value types shared by
every document collection.

Design Principles:
- Domain operations return Result instead of raising
- Documents stay plain dicts on the wire (camelCase keys)
- Identifiers are opaque strings minted by the persistence gateway

Complexity: O(1) for all type operations
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import (
    Any,
    Generic,
    Literal,
    TypeVar,
    Union,
)
from uuid import uuid4

# =============================================================================
# TYPE VARIABLES FOR GENERIC CONTAINERS
# =============================================================================
T = TypeVar("T")  # Success type
E = TypeVar("E")  # Error type


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
        """
        Extract value. Safe to call after is_ok() check.

        Returns:
            T: The wrapped success value
        """
        return self.value

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """
    Failure variant of Result monad.

    Carries the error (usually a MentorSyncError) for exhaustive handling.
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

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


# Union type for pattern matching
Result = Union[Ok[T], Err[E]]


# =============================================================================
# DOCUMENT ALIASES
# =============================================================================
# Schemaless document as stored by the gateway and sent to clients.
Document = dict[str, Any]

# Opaque document identifier.
DocumentId = str


def new_document_id() -> DocumentId:
    """Mint a fresh opaque identifier (hex UUID4)."""
    return uuid4().hex


# =============================================================================
# TIMESTAMP
# =============================================================================
@dataclass(frozen=True, slots=True, order=True)
class Timestamp:
    """
    High-precision timestamp for event ordering.

    Stores nanoseconds since Unix epoch. Documents persist milliseconds
    (the `date` field of assessments) via `millis`.
    """

    nanos: int

    NANOS_PER_MILLI: int = 1_000_000

    @classmethod
    def now(cls) -> Timestamp:
        return cls(nanos=time.time_ns())

    @property
    def millis(self) -> int:
        """Convert to milliseconds (truncating)."""
        return self.nanos // self.NANOS_PER_MILLI

    def __repr__(self) -> str:
        return f"Timestamp({self.nanos}ns)"
