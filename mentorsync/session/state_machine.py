"""
Session State Machine: Authorization Lifecycle FSM with Guard Conditions

States:
    CONNECTING    → Resolving the caller's identity against the user collection
    AUTHED_NOUSER → Identity verified, no user document yet
    AUTHED_USER   → Identity verified and bound to a user document
    CONNECT_ERROR → Authorization ended for this connection (terminal)

Transitions:
    CONNECTING    → AUTHED_NOUSER : Lookup found no user (never authed before)
    CONNECTING    → AUTHED_USER   : Lookup found a user
    CONNECTING    → CONNECT_ERROR : Lookup failed, or user vanished after auth
    AUTHED_NOUSER → AUTHED_USER   : Account created
    AUTHED_NOUSER → CONNECTING    : Transport reconnect
    AUTHED_USER   → CONNECTING    : Transport reconnect

Design:
    - The transition table is data; anything outside it is rejected
    - Guard conditions enforce monotonicity (authed_user never falls back
      to authed_nouser)
    - Every successful transition bumps the context version and notifies
      listeners with an immutable event
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from mentorsync.core.errors import SessionError
from mentorsync.core.types import DocumentId, Err, Ok, Result, Timestamp


logger = logging.getLogger(__name__)


# =============================================================================
# SESSION STATE ENUMERATION
# =============================================================================
class SessionState(Enum):
    """
    Per-connection authorization states.

    Values are the wire names emitted on the `state` event.
    """
    CONNECTING = "connecting"
    AUTHED_NOUSER = "authed_nouser"
    AUTHED_USER = "authed_user"
    CONNECT_ERROR = "connect_error"

    @property
    def is_terminal(self) -> bool:
        return self is SessionState.CONNECT_ERROR

    @property
    def is_authed(self) -> bool:
        return self in (SessionState.AUTHED_NOUSER, SessionState.AUTHED_USER)


# =============================================================================
# TRANSITION DEFINITIONS
# =============================================================================
@dataclass(frozen=True, slots=True)
class SessionTransition:
    """A legal (from, to, trigger) edge."""
    from_state: SessionState
    to_state: SessionState
    trigger: str


NO_USER = "NO_USER"
USER_FOUND = "USER_FOUND"
LOOKUP_FAILED = "LOOKUP_FAILED"
USER_VANISHED = "USER_VANISHED"
USER_CREATED = "USER_CREATED"
RECONNECT = "RECONNECT"


VALID_TRANSITIONS: frozenset[SessionTransition] = frozenset({
    # CONNECTING transitions
    SessionTransition(SessionState.CONNECTING, SessionState.AUTHED_NOUSER, NO_USER),
    SessionTransition(SessionState.CONNECTING, SessionState.AUTHED_USER, USER_FOUND),
    SessionTransition(SessionState.CONNECTING, SessionState.CONNECT_ERROR, LOOKUP_FAILED),
    SessionTransition(SessionState.CONNECTING, SessionState.CONNECT_ERROR, USER_VANISHED),
    SessionTransition(SessionState.CONNECTING, SessionState.CONNECTING, RECONNECT),

    # AUTHED_NOUSER transitions
    SessionTransition(SessionState.AUTHED_NOUSER, SessionState.AUTHED_USER, USER_CREATED),
    SessionTransition(SessionState.AUTHED_NOUSER, SessionState.CONNECTING, RECONNECT),

    # AUTHED_USER transitions
    SessionTransition(SessionState.AUTHED_USER, SessionState.CONNECTING, RECONNECT),
})


# =============================================================================
# SESSION CONTEXT
# =============================================================================
@dataclass
class SessionContext:
    """
    Mutable per-connection context.

    Only modified through state machine transitions.
    """
    session_id: str
    subject: str
    state: SessionState = SessionState.CONNECTING
    user_id: Optional[DocumentId] = None
    has_been_authed: bool = False
    version: int = 0
    created_at: Timestamp = field(default_factory=Timestamp.now)
    last_transition: Timestamp = field(default_factory=Timestamp.now)


@dataclass(frozen=True, slots=True)
class StateTransitionEvent:
    """Emitted to listeners after every successful transition."""
    session_id: str
    from_state: SessionState
    to_state: SessionState
    trigger: str
    user_id: Optional[DocumentId]
    version: int
    timestamp: Timestamp


# =============================================================================
# GUARD CONDITIONS
# =============================================================================
class TransitionGuard:
    """
    Guard condition for state transitions.

    Guards are evaluated before transition execution; all guards must pass.
    """

    __slots__ = ("_name", "_predicate", "_error_message")

    def __init__(
        self,
        name: str,
        predicate: Callable[[SessionContext], bool],
        error_message: str,
    ) -> None:
        self._name = name
        self._predicate = predicate
        self._error_message = error_message

    def evaluate(self, context: SessionContext) -> Result[None, str]:
        if self._predicate(context):
            return Ok(None)
        return Err(f"Guard '{self._name}' failed: {self._error_message}")

    @property
    def name(self) -> str:
        return self._name


# =============================================================================
# STATE MACHINE IMPLEMENTATION
# =============================================================================
class SessionStateMachine:
    """
    Finite state machine for one connection's authorization lifecycle.

    Usage:
        fsm = SessionStateMachine(SessionContext(session_id="s-1", subject="sub"))
        result = fsm.transition(USER_FOUND, user_id="u-1")
        if result.is_ok():
            connection.emit("state", result.value.to_state.value)

    The machine does not perform I/O; the owning session decides which
    trigger applies and reacts to the returned event.
    """

    __slots__ = ("_context", "_guards", "_listeners")

    def __init__(self, context: SessionContext) -> None:
        self._context = context
        self._guards: dict[SessionTransition, list[TransitionGuard]] = {}
        self._listeners: list[Callable[[StateTransitionEvent], None]] = []
        self._register_default_guards()

    def _register_default_guards(self) -> None:
        never_authed = TransitionGuard(
            "never_authed",
            lambda ctx: not ctx.has_been_authed,
            "Session already reached authed_user",
        )
        for transition in VALID_TRANSITIONS:
            if transition.to_state is SessionState.AUTHED_NOUSER:
                self._guards.setdefault(transition, []).append(never_authed)

    def add_listener(self, listener: Callable[[StateTransitionEvent], None]) -> None:
        self._listeners.append(listener)

    def transition(
        self,
        trigger: str,
        user_id: Optional[DocumentId] = None,
    ) -> Result[StateTransitionEvent, SessionError]:
        """
        Attempt a transition.

        Args:
            trigger: Transition trigger name
            user_id: Bound user, required when entering AUTHED_USER

        Returns:
            Ok(event) on success
            Err(SessionError) when no edge matches or a guard rejects it
        """
        current = self._context.state
        edge: Optional[SessionTransition] = None
        for candidate in VALID_TRANSITIONS:
            if candidate.from_state is current and candidate.trigger == trigger:
                edge = candidate
                break

        if edge is None:
            return Err(SessionError.invalid_transition(current.value, trigger))

        for guard in self._guards.get(edge, []):
            verdict = guard.evaluate(self._context)
            if verdict.is_err():
                logger.warning("Transition rejected: %s", verdict.error)
                return Err(SessionError.invalid_transition(current.value, edge.to_state.value))

        if edge.to_state is SessionState.AUTHED_USER:
            if user_id is None:
                return Err(SessionError.invalid_transition(current.value, edge.to_state.value))
            self._context.user_id = user_id
            self._context.has_been_authed = True

        self._context.state = edge.to_state
        self._context.version += 1
        self._context.last_transition = Timestamp.now()

        event = StateTransitionEvent(
            session_id=self._context.session_id,
            from_state=current,
            to_state=edge.to_state,
            trigger=trigger,
            user_id=self._context.user_id,
            version=self._context.version,
            timestamp=self._context.last_transition,
        )

        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("State listener failed")

        return Ok(event)

    @property
    def state(self) -> SessionState:
        return self._context.state

    @property
    def version(self) -> int:
        return self._context.version

    @property
    def context(self) -> SessionContext:
        return self._context

    def can_transition(self, trigger: str) -> bool:
        return trigger in self.available_triggers()

    def available_triggers(self) -> list[str]:
        return [
            t.trigger for t in VALID_TRANSITIONS
            if t.from_state is self._context.state
        ]
