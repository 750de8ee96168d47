"""
Authenticated Session: one connection's authorization lifecycle.

Flow:
    start()
      └─ connecting ── lookup user by OAuthSubID
           ├─ storage failure ............ connect_error + disconnect
           ├─ no user, never authed ...... authed_nouser  {createUser}
           ├─ no user, authed before ..... connect_error + disconnect
           └─ user found ................. authed_user    {full command set}

    authed_nouser ── createUser ok ─────── authed_user
    any non-terminal state ── transport `connect` ── connecting

Entering authed_user registers the session in the connection registry,
installs the authenticated command table and pushes `initialData` once.
A transport disconnect abandons any resolution or account entry still
awaiting storage, so a closed connection is never registered.

Listeners installed for the whole life of the session (never swapped):
`connect`, `disconnect` and, in testing mode, `setTestingVariable`.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Optional
from uuid import uuid4

from mentorsync.core import constants as C
from mentorsync.core.errors import SessionError
from mentorsync.core.types import Document, DocumentId, Err, Ok, Result
from mentorsync.mentorship.engine import MentorshipEngine
from mentorsync.models import user as U
from mentorsync.models.user import Identity
from mentorsync.observability.logging import StructuredLogger
from mentorsync.observability.metrics import SessionMetrics
from mentorsync.services.assessments import AssessmentService
from mentorsync.services.profile import ProfileService
from mentorsync.session import state_machine as sm
from mentorsync.session.commands import (
    Command,
    CommandRouter,
    Reply,
    build_table,
    command,
    run_command,
)
from mentorsync.session.connection import Connection
from mentorsync.session.mentor_index import MentorAvailabilityIndex
from mentorsync.session.registry import ConnectionRegistry
from mentorsync.session.state_machine import (
    SessionContext,
    SessionState,
    SessionStateMachine,
    StateTransitionEvent,
)
from mentorsync.storage.protocols import DocumentGateway, Predicate


NOUSER_COMMANDS: tuple[str, ...] = (C.CMD_CREATE_USER,)

USER_COMMANDS: tuple[str, ...] = (
    C.CMD_UPDATE_PROFILE,
    C.CMD_GET_ALL_MENTORS,
    C.CMD_SUBMIT_ASSESSMENT,
    C.CMD_MENTORSHIP_REQUEST,
    C.CMD_GET_USER,
    C.CMD_GET_ASSESSMENT,
    C.CMD_GET_QUESTIONS,
    C.CMD_GET_REQUEST_BETWEEN,
)

DELETE_ACCOUNT_AFTER_DISCONNECT = "deleteAccountAfterDisconnect"


@dataclass(frozen=True, slots=True)
class SessionOptions:
    """Per-connection options negotiated at accept time."""
    testing: bool = False
    delete_account_after_disconnect: bool = False


@dataclass(frozen=True, slots=True)
class SessionDeps:
    """Process-wide collaborators shared by every session."""
    gateway: DocumentGateway
    registry: ConnectionRegistry
    index: MentorAvailabilityIndex
    engine: MentorshipEngine
    profiles: ProfileService
    assessments: AssessmentService
    metrics: SessionMetrics


class AuthenticatedSession:
    """
    Authorization state and command surface of one connection.

    Usage:
        session = AuthenticatedSession(connection, identity, deps)
        await session.start()
    """

    def __init__(
        self,
        connection: Connection,
        identity: Identity,
        deps: SessionDeps,
        options: Optional[SessionOptions] = None,
        session_id: Optional[str] = None,
    ) -> None:
        self._connection = connection
        self._identity = identity
        self._deps = deps
        self._options = options or SessionOptions()
        self._session_id = session_id or uuid4().hex

        self._fsm = SessionStateMachine(
            SessionContext(session_id=self._session_id, subject=identity.subject),
        )
        self._fsm.add_listener(self._on_transition)
        self._router = CommandRouter(connection, self._dispatch)

        self._user: Optional[Document] = None
        self._registered_as: Optional[DocumentId] = None
        self._epoch = 0
        self._creating = False
        self._started = False
        self._teardown: Optional[asyncio.Task[None]] = None
        self._testing_variables: dict[str, Any] = {
            DELETE_ACCOUNT_AFTER_DISCONNECT: self._options.delete_account_after_disconnect,
        }
        self._log = StructuredLogger(__name__).with_extra(session_id=self._session_id)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def state(self) -> SessionState:
        return self._fsm.state

    @property
    def user_id(self) -> Optional[DocumentId]:
        return self._fsm.context.user_id

    @property
    def user(self) -> Optional[Document]:
        """Last refreshed copy of the bound user document."""
        return self._user

    @property
    def testing(self) -> bool:
        return self._options.testing

    @property
    def testing_variables(self) -> dict[str, Any]:
        return dict(self._testing_variables)

    @property
    def active_commands(self) -> frozenset[str]:
        return self._router.active

    @property
    def log(self) -> StructuredLogger:
        return self._log

    @property
    def metrics(self) -> SessionMetrics:
        return self._deps.metrics

    # -------------------------------------------------------------------------
    # Outbound
    # -------------------------------------------------------------------------

    def push(self, data_type: str, data: Any) -> None:
        self._connection.emit(C.EVENT_DATA, {"type": data_type, "data": data})

    def send_message(self, body: str, title: str = C.MESSAGE_TITLE_ERROR) -> None:
        self._connection.emit(C.EVENT_MESSAGE, {"title": title, "body": body})

    def fail_session(self, error: SessionError) -> None:
        """Fatal: report, then drop the connection."""
        self._log.error("Fatal session error", error=error.to_dict())
        self.send_message(error.message)
        self._connection.disconnect()

    def close(self) -> None:
        """Server-initiated disconnect without a message."""
        self._connection.disconnect()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        if self._started:
            return
        self._started = True

        self._connection.on(C.EVENT_CONNECT, self._on_connect)
        self._connection.on(C.EVENT_DISCONNECT, self._on_disconnect)
        if self._options.testing:
            self._connection.on(C.CMD_SET_TESTING_VARIABLE, self._on_set_testing_variable)

        self._connection.emit(C.EVENT_STATE, self.state.value)
        await self._resolve_identity()

    async def _on_connect(self) -> None:
        if self.state.is_terminal:
            self._log.debug("Ignoring reconnect after connect_error")
            return
        # A disconnect during resolution leaves the session in connecting.
        if self.state is not SessionState.CONNECTING:
            transitioned = self._fsm.transition(sm.RECONNECT)
            if transitioned.is_err():
                self._log.warning("Reconnect rejected", error=transitioned.error.message)
                return
        await self._resolve_identity()

    def _on_disconnect(self) -> None:
        # Abandon any resolution or account entry still awaiting storage.
        self._epoch += 1
        self._router.clear()
        user_id = self._registered_as
        if user_id is not None:
            self._deps.registry.unregister(user_id, self)
            self._registered_as = None
        self._log.info("Connection closed", user_id=self.user_id)

        if (
            self._options.testing
            and self._testing_variables.get(DELETE_ACCOUNT_AFTER_DISCONNECT)
            and self.user_id is not None
        ):
            self._teardown = asyncio.get_running_loop().create_task(
                self._delete_account(self.user_id),
            )

    async def _delete_account(self, user_id: DocumentId) -> None:
        deleted = await self._deps.gateway.delete_with_id(C.USER_COLLECTION, user_id)
        if deleted.is_err():
            self._log.error("Testing account cleanup failed", user_id=user_id, error=deleted.error.to_dict())
            return
        self._deps.index.discard(user_id)
        self._log.info("Deleted testing account", user_id=user_id)

    async def wait_closed(self) -> None:
        """Wait for disconnect teardown (testing account deletion)."""
        if self._teardown is not None:
            await self._teardown

    def _on_transition(self, event: StateTransitionEvent) -> None:
        self._connection.emit(C.EVENT_STATE, event.to_state.value)
        self._log.info(
            "Session transition",
            from_state=event.from_state.value,
            to_state=event.to_state.value,
            trigger=event.trigger,
        )

    # -------------------------------------------------------------------------
    # Identity resolution
    # -------------------------------------------------------------------------

    async def _resolve_identity(self) -> None:
        self._epoch += 1
        epoch = self._epoch
        self._router.clear()

        lookup = await self._deps.gateway.get(
            C.USER_COLLECTION,
            [Predicate.eq(U.OAUTH_SUB_ID, self._identity.subject)],
        )
        if epoch != self._epoch:
            return

        if lookup.is_err():
            self._fsm.transition(sm.LOOKUP_FAILED)
            self.fail_session(SessionError.identity_lookup_failed(cause=lookup.error))
            return

        if not lookup.value:
            if self._fsm.context.has_been_authed:
                self._fsm.transition(sm.USER_VANISHED)
                self.fail_session(SessionError.account_missing(self.user_id or ""))
                return
            self._fsm.transition(sm.NO_USER)
            self._router.install(build_table(self, NOUSER_COMMANDS))
            return

        if len(lookup.value) > 1:
            self._log.warning(
                "Several users share one subject", count=len(lookup.value),
            )
        await self._enter_authed_user(lookup.value[0][U.ID], sm.USER_FOUND, epoch)

    async def _enter_authed_user(self, user_id: DocumentId, trigger: str, epoch: int) -> None:
        fetched = await self._deps.gateway.get_with_id(C.USER_COLLECTION, user_id)
        if epoch != self._epoch:
            return
        if fetched.is_err() or fetched.value is None:
            if self.state is SessionState.CONNECTING:
                self._fsm.transition(sm.LOOKUP_FAILED)
            error = (
                SessionError.sync_failed(user_id, cause=fetched.error)
                if fetched.is_err()
                else SessionError.account_missing(user_id)
            )
            self.fail_session(error)
            return

        self._user = fetched.value
        transitioned = self._fsm.transition(trigger, user_id=user_id)
        if transitioned.is_err():
            self._log.error("Could not enter authed_user", error=transitioned.error.message)
            return

        if self._deps.registry.register(user_id, self):
            self._registered_as = user_id
        self._router.install(build_table(self, USER_COMMANDS))

        pending = await self._deps.engine.list_requests_for_user(user_id)
        if pending.is_err():
            self._log.error("Pending requests unavailable", error=pending.error.to_dict())
        catalog = await self._deps.assessments.catalog()
        if epoch != self._epoch:
            return

        self.push(C.DATA_INITIAL, {
            "user": self._user,
            "assessmentQuestions": catalog,
            "mentorshipRequests": pending.value if pending.is_ok() else [],
        })

    # -------------------------------------------------------------------------
    # Command plumbing
    # -------------------------------------------------------------------------

    async def refresh_user(self) -> Result[Document, SessionError]:
        user_id = self.user_id
        if user_id is None:
            return Err(SessionError.account_missing(""))
        fetched = await self._deps.gateway.get_with_id(C.USER_COLLECTION, user_id)
        if fetched.is_err():
            return Err(SessionError.sync_failed(user_id, cause=fetched.error))
        if fetched.value is None:
            return Err(SessionError.account_missing(user_id))
        self._user = fetched.value
        return Ok(fetched.value)

    async def _dispatch(self, cmd: Command, args: tuple[Any, ...]) -> None:
        with self._log.context(session_id=self._session_id, user_id=self.user_id):
            await run_command(self, cmd, args)

    async def _on_set_testing_variable(self, *args: Any) -> None:
        cmd = Command(
            spec=self.set_testing_variable.command_spec,  # type: ignore[attr-defined]
            handler=self.set_testing_variable,
        )
        await self._dispatch(cmd, args)

    def _me(self) -> Document:
        if self._user is None:
            raise SessionError.account_missing(self.user_id or "")
        return self._user

    # -------------------------------------------------------------------------
    # authed_nouser
    # -------------------------------------------------------------------------

    @command(C.CMD_CREATE_USER, C.SUBJECT_CREATE_USER, refresh=False)
    async def create_user(self, reply: Reply, payload: Any) -> None:
        if self._creating:
            reply.fail("Your account is already being created.")
            return
        self._creating = True
        epoch = self._epoch
        # Held until authed_user is entered so no second account can be made.
        try:
            created = await self._deps.profiles.create_user(
                self._identity, payload, testing=self._options.testing,
            )
            if created.is_err():
                reply.fail_with(created.error)
                return
            reply.ok()
            if epoch == self._epoch and self.state is SessionState.AUTHED_NOUSER:
                await self._enter_authed_user(created.value, sm.USER_CREATED, epoch)
        finally:
            self._creating = False

    # -------------------------------------------------------------------------
    # authed_user
    # -------------------------------------------------------------------------

    @command(C.CMD_UPDATE_PROFILE, C.SUBJECT_UPDATE_PROFILE)
    async def update_profile(self, reply: Reply, payload: Any) -> None:
        updated = await self._deps.profiles.update_profile(self._me(), payload)
        if updated.is_err():
            reply.fail_with(updated.error)
            return
        self._user = updated.value
        reply.ok()

    @command(C.CMD_GET_ALL_MENTORS, C.SUBJECT_GET_MENTORS, arity=0)
    async def get_all_mentors(self, reply: Reply) -> None:
        reply.ok(await self._deps.profiles.list_mentors(self._me()))

    @command(C.CMD_SUBMIT_ASSESSMENT, C.SUBJECT_ASSESSMENT)
    async def submit_assessment(self, reply: Reply, payload: Any) -> None:
        result = await self._deps.assessments.submit(
            self._me(), payload, testing=self._options.testing,
        )
        if result.is_err():
            reply.fail_with(result.error)
            return
        reply.ok(result.value)

    @command(C.CMD_MENTORSHIP_REQUEST, C.SUBJECT_MENTORSHIP)
    async def mentorship_request(self, reply: Reply, payload: Any) -> None:
        result = await self._deps.engine.handle(
            self._me(), payload, testing=self._options.testing,
        )
        if result.is_err():
            reply.fail_with(result.error)
            return
        reply.ok()

    @command(C.CMD_GET_USER, C.SUBJECT_GET_USER)
    async def get_user(self, reply: Reply, user_id: Any) -> None:
        result = await self._deps.profiles.get_user_view(self._me(), user_id)
        if result.is_err():
            reply.fail_with(result.error)
            return
        reply.ok(result.value)

    @command(C.CMD_GET_ASSESSMENT, C.SUBJECT_GET_ASSESSMENT)
    async def get_assessment(self, reply: Reply, assessment_id: Any) -> None:
        result = await self._deps.assessments.get_view(self._me(), assessment_id)
        if result.is_err():
            reply.fail_with(result.error)
            return
        reply.ok(result.value)

    @command(C.CMD_GET_QUESTIONS, C.SUBJECT_GET_QUESTIONS, arity=0)
    async def get_available_questions(self, reply: Reply) -> None:
        reply.ok(await self._deps.assessments.catalog())

    @command(C.CMD_GET_REQUEST_BETWEEN, C.SUBJECT_GET_REQUEST, arity=2)
    async def get_request_between(self, reply: Reply, mentor_id: Any, mentee_id: Any) -> None:
        if mentor_id is None or mentee_id is None:
            reply.fail("Missing mentorID or menteeID")
            return
        if not isinstance(mentor_id, str) or not isinstance(mentee_id, str):
            reply.fail("MentorID or menteeID format incorrect.")
            return
        found = await self._deps.engine.find_request_between(mentor_id, mentee_id)
        if found.is_err():
            reply.fail_with(found.error)
            return
        reply.ok(found.value.to_document() if found.value is not None else None)

    # -------------------------------------------------------------------------
    # testing mode
    # -------------------------------------------------------------------------

    @command(C.CMD_SET_TESTING_VARIABLE, C.SUBJECT_TESTING, arity=2, refresh=False)
    async def set_testing_variable(self, reply: Reply, variable: Any, value: Any) -> None:
        if variable not in C.TESTING_VARIABLES:
            reply.fail("invalid variable name provided")
            return
        self._testing_variables[variable] = value
        reply.ok()
