"""
Session Module: Per-Connection Authorization and Live-Session Indexes

Provides:
- SessionStateMachine: connecting / authed_nouser / authed_user / connect_error
- CommandRouter: per-state command tables with atomic swap
- ConnectionRegistry: user ID to live sessions, fan-out broadcast
- MentorAvailabilityIndex: accepting mentors, rebuilt at startup
- Connection: transport protocol plus the in-memory transport

`AuthenticatedSession` lives in `mentorsync.session.authenticated`; it
depends on the services and the mentorship engine, which themselves use
the registry and index exported here.
"""

from mentorsync.session.state_machine import (
    SessionState,
    SessionStateMachine,
    SessionTransition,
    SessionContext,
    StateTransitionEvent,
    TransitionGuard,
    VALID_TRANSITIONS,
)
from mentorsync.session.connection import (
    Connection,
    EmittedEvent,
    InMemoryConnection,
)
from mentorsync.session.registry import ConnectionRegistry
from mentorsync.session.mentor_index import MentorAvailabilityIndex
from mentorsync.session.commands import (
    Command,
    CommandRouter,
    CommandSpec,
    Reply,
    command,
    run_command,
)

__all__ = [
    # State Machine
    "SessionState",
    "SessionStateMachine",
    "SessionTransition",
    "SessionContext",
    "StateTransitionEvent",
    "TransitionGuard",
    "VALID_TRANSITIONS",
    # Transport
    "Connection",
    "EmittedEvent",
    "InMemoryConnection",
    # Process-wide indexes
    "ConnectionRegistry",
    "MentorAvailabilityIndex",
    # Commands
    "Command",
    "CommandRouter",
    "CommandSpec",
    "Reply",
    "command",
    "run_command",
]
