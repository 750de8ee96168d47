"""
Exhaustive Error Hierarchy for MentorSync

Design Principles:
- Forbid exceptions for control flow (use Result types)
- Never swallow errors or use null for absence
- Carry full error context for debugging and audit trails
- Keep `message` client-presentable: session handlers forward it verbatim
  as the body of a `message` event

Each error type includes:
- Unique error code for programmatic handling
- Human-readable message
- Optional cause chain for root cause analysis
- Timestamp for log correlation

Usage:
    result = await engine.send(caller_id, mentor_id)
    match result:
        case Ok(request):
            reply.ok()
        case Err(AuthorizationError() as error):
            reply.fail(error.message)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from mentorsync.core.types import Timestamp


# =============================================================================
# ERROR CODE ENUMERATION
# =============================================================================
class ErrorCode(Enum):
    """
    Unique error codes for programmatic error handling.

    Codes are grouped by subsystem:
    - 1xxx: Storage errors
    - 2xxx: Protocol (command contract) errors
    - 3xxx: Authorization and lookup errors
    - 4xxx: Relationship consistency errors
    - 5xxx: Session errors
    - 9xxx: Internal/unknown errors
    """

    # Storage errors (1xxx)
    STORAGE_CONNECTION_FAILED = 1001
    STORAGE_OPERATION_FAILED = 1002
    STORAGE_SERIALIZATION_FAILED = 1003

    # Protocol errors (2xxx)
    PROTOCOL_INVALID_PAYLOAD = 2001
    PROTOCOL_VALIDATION_FAILED = 2002

    # Authorization / lookup errors (3xxx)
    AUTH_FORBIDDEN = 3001
    AUTH_NOT_FOUND = 3002
    AUTH_PRECONDITION_FAILED = 3003

    # Consistency errors (4xxx)
    CONSISTENCY_CORRUPT_RECORD = 4001

    # Session errors (5xxx)
    SESSION_ACCOUNT_MISSING = 5001
    SESSION_SYNC_FAILED = 5002
    SESSION_IDENTITY_LOOKUP_FAILED = 5003
    SESSION_INVALID_TRANSITION = 5004

    # Internal errors (9xxx)
    INTERNAL_ERROR = 9001


# =============================================================================
# BASE ERROR CLASS
# =============================================================================
@dataclass
class MentorSyncError(Exception):
    """
    Base class for all MentorSync errors.

    Provides common infrastructure for error handling:
    - Unique error ID for log correlation
    - Error code for programmatic handling
    - Timestamp
    - Cause chain for root cause analysis
    """

    code: ErrorCode
    message: str
    error_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: Timestamp = field(default_factory=Timestamp.now)
    cause: Optional[Exception] = None
    context: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """
        Serialize error to dictionary for structured logging.

        Note: Excludes cause stack trace to avoid leaking implementation
        details into client-visible payloads.
        """
        return {
            "error_id": self.error_id,
            "code": self.code.name,
            "code_value": self.code.value,
            "message": self.message,
            "timestamp_nanos": self.timestamp.nanos,
            "context": self.context,
        }

    def __str__(self) -> str:
        return f"[{self.code.name}] {self.message} (id={self.error_id[:8]})"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"code={self.code.name}, "
            f"message={self.message!r}, "
            f"error_id={self.error_id!r})"
        )


# =============================================================================
# STORAGE ERRORS
# =============================================================================
@dataclass
class StorageError(MentorSyncError):
    """Failures reported by a persistence gateway backend."""

    @classmethod
    def connection_failed(
        cls,
        target: str,
        cause: Optional[Exception] = None,
    ) -> StorageError:
        return cls(
            code=ErrorCode.STORAGE_CONNECTION_FAILED,
            message=f"Failed to connect to document store at {target}",
            cause=cause,
            context={"target": target},
        )

    @classmethod
    def operation_failed(
        cls,
        operation: str,
        collection: str,
        cause: Optional[Exception] = None,
    ) -> StorageError:
        """A single gateway call failed."""
        detail = f": {cause}" if cause is not None else ""
        return cls(
            code=ErrorCode.STORAGE_OPERATION_FAILED,
            message=f"{operation} on '{collection}' failed{detail}",
            cause=cause,
            context={"operation": operation, "collection": collection},
        )

    @classmethod
    def serialization_failed(
        cls,
        collection: str,
        doc_id: str,
        cause: Optional[Exception] = None,
    ) -> StorageError:
        return cls(
            code=ErrorCode.STORAGE_SERIALIZATION_FAILED,
            message=f"Document {collection}/{doc_id} could not be (de)serialized",
            cause=cause,
            context={"collection": collection, "doc_id": doc_id},
        )


# =============================================================================
# PROTOCOL ERRORS
# =============================================================================
@dataclass
class ProtocolError(MentorSyncError):
    """
    Violations of the inbound command contract.

    Returned (as Err) when a command payload is structurally invalid or a
    submitted field is rejected.
    """

    @classmethod
    def invalid_payload(cls, reason: str, **context: Any) -> ProtocolError:
        return cls(
            code=ErrorCode.PROTOCOL_INVALID_PAYLOAD,
            message=reason,
            context=context,
        )

    @classmethod
    def validation_failed(cls, field_name: str, reason: str) -> ProtocolError:
        """A profile/assessment field was rejected by a validator."""
        return cls(
            code=ErrorCode.PROTOCOL_VALIDATION_FAILED,
            message=reason,
            context={"field": field_name},
        )


# =============================================================================
# AUTHORIZATION / LOOKUP ERRORS
# =============================================================================
@dataclass
class AuthorizationError(MentorSyncError):
    """Caller is not allowed to perform the action, or a precondition failed."""

    @classmethod
    def forbidden(cls, reason: str, **context: Any) -> AuthorizationError:
        return cls(
            code=ErrorCode.AUTH_FORBIDDEN,
            message=reason,
            context=context,
        )

    @classmethod
    def precondition_failed(cls, reason: str, **context: Any) -> AuthorizationError:
        return cls(
            code=ErrorCode.AUTH_PRECONDITION_FAILED,
            message=reason,
            context=context,
        )


@dataclass
class NotFoundError(MentorSyncError):
    """Referenced document does not exist."""

    @classmethod
    def missing(cls, reason: str, **context: Any) -> NotFoundError:
        return cls(
            code=ErrorCode.AUTH_NOT_FOUND,
            message=reason,
            context=context,
        )


# =============================================================================
# CONSISTENCY ERRORS
# =============================================================================
@dataclass
class ConsistencyError(MentorSyncError):
    """
    Redundantly-stored relationship records disagree.

    Produced when a mentorship request record is missing one of its
    endpoints, or a user references a request that no longer exists.
    """

    @classmethod
    def corrupt_request(cls, request_id: str, verb: str = "accept") -> ConsistencyError:
        return cls(
            code=ErrorCode.CONSISTENCY_CORRUPT_RECORD,
            message=f"There is something wrong with this request. You cannot {verb} it.",
            context={"request_id": request_id},
        )

    @classmethod
    def corrupt_assessment(cls, assessment_id: str) -> ConsistencyError:
        return cls(
            code=ErrorCode.CONSISTENCY_CORRUPT_RECORD,
            message="There's something wrong with the assessment you requested.",
            context={"assessment_id": assessment_id},
        )


# =============================================================================
# SESSION ERRORS
# =============================================================================
@dataclass
class SessionError(MentorSyncError):
    """
    Fatal per-connection errors.

    Every SessionError ends the connection: the session sends the message
    and disconnects.
    """

    @classmethod
    def account_missing(cls, user_id: str) -> SessionError:
        return cls(
            code=ErrorCode.SESSION_ACCOUNT_MISSING,
            message="Your account does not exist",
            context={"user_id": user_id},
        )

    @classmethod
    def sync_failed(cls, user_id: str, cause: Optional[Exception] = None) -> SessionError:
        return cls(
            code=ErrorCode.SESSION_SYNC_FAILED,
            message="There was a problem syncing your data.",
            cause=cause,
            context={"user_id": user_id},
        )

    @classmethod
    def identity_lookup_failed(
        cls,
        cause: Optional[Exception] = None,
    ) -> SessionError:
        return cls(
            code=ErrorCode.SESSION_IDENTITY_LOOKUP_FAILED,
            message="Could not resolve your account.",
            cause=cause,
        )

    @classmethod
    def invalid_transition(cls, from_state: str, to_state: str) -> SessionError:
        return cls(
            code=ErrorCode.SESSION_INVALID_TRANSITION,
            message=f"Invalid session transition: {from_state} -> {to_state}",
            context={"from_state": from_state, "to_state": to_state},
        )


# =============================================================================
# INTERNAL ERRORS
# =============================================================================
@dataclass
class InternalError(MentorSyncError):
    """Unexpected failures."""

    @classmethod
    def unexpected(cls, cause: Exception) -> InternalError:
        return cls(
            code=ErrorCode.INTERNAL_ERROR,
            message="An unexpected error occurred.",
            cause=cause,
            context={"exception_type": type(cause).__name__},
        )
