"""
Core module: Type definitions, error hierarchy, and configuration.

This module provides the foundational abstractions for MentorSync:
- Result/Either monads for zero-exception control flow
- Error hierarchy with one subclass per failure domain
- Configuration management with validation
"""

from mentorsync.core.types import (
    Result,
    Ok,
    Err,
    Document,
    DocumentId,
    Timestamp,
    new_document_id,
)
from mentorsync.core.errors import (
    ErrorCode,
    MentorSyncError,
    StorageError,
    ProtocolError,
    AuthorizationError,
    NotFoundError,
    ConsistencyError,
    SessionError,
    InternalError,
)
from mentorsync.core.config import (
    MentorSyncConfig,
    SessionConfig,
    ObservabilityConfig,
)

__all__ = [
    "Result",
    "Ok",
    "Err",
    "Document",
    "DocumentId",
    "Timestamp",
    "new_document_id",
    "ErrorCode",
    "MentorSyncError",
    "StorageError",
    "ProtocolError",
    "AuthorizationError",
    "NotFoundError",
    "ConsistencyError",
    "SessionError",
    "InternalError",
    "MentorSyncConfig",
    "SessionConfig",
    "ObservabilityConfig",
]
