"""
MentorSync: Real-Time Mentorship Matching Backend

Users authenticate with an external identity provider, create profiles,
submit self-assessments and form mentor/mentee relationships through a
send/accept/decline/cancel request workflow, synchronized over persistent
bidirectional connections.

Components:
- Persistence Gateway: async document store (in-memory or Redis)
- Connection Registry: user ID to live sessions, fan-out broadcast
- Mentor Availability Index: accepting mentors, rebuilt at startup
- Session State Machine: per-connection authorization and command tables
- Mentorship Engine: request lifecycle, relationships, reconciliation

License: MIT
"""

__version__ = "1.0.0"

# =============================================================================
# PUBLIC API EXPORTS
# =============================================================================
from mentorsync.core.types import (
    Result,
    Ok,
    Err,
    Document,
    DocumentId,
    Timestamp,
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
)
from mentorsync.core.config import MentorSyncConfig

# Storage exports
from mentorsync.storage import (
    DocumentGateway,
    InMemoryDocumentStore,
    create_gateway,
    purge_testing_documents,
)

# Session exports
from mentorsync.session import (
    SessionState,
    ConnectionRegistry,
    MentorAvailabilityIndex,
    InMemoryConnection,
)
from mentorsync.session.authenticated import (
    AuthenticatedSession,
    SessionOptions,
)

# Mentorship and services
from mentorsync.mentorship import MentorshipEngine
from mentorsync.models.user import Identity
from mentorsync.server import MentorSyncServer

__all__ = [
    # Version
    "__version__",
    # Types
    "Result",
    "Ok",
    "Err",
    "Document",
    "DocumentId",
    "Timestamp",
    # Errors
    "ErrorCode",
    "MentorSyncError",
    "StorageError",
    "ProtocolError",
    "AuthorizationError",
    "NotFoundError",
    "ConsistencyError",
    "SessionError",
    # Config
    "MentorSyncConfig",
    # Storage
    "DocumentGateway",
    "InMemoryDocumentStore",
    "create_gateway",
    "purge_testing_documents",
    # Session
    "SessionState",
    "ConnectionRegistry",
    "MentorAvailabilityIndex",
    "InMemoryConnection",
    "AuthenticatedSession",
    "SessionOptions",
    # Core components
    "MentorshipEngine",
    "Identity",
    "MentorSyncServer",
]
