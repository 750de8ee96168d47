"""
Shared test utilities: store doubles, seeding, Result assertions and
session drivers.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

from mentorsync.core import constants as C
from mentorsync.core.types import Document, DocumentId, Result
from mentorsync.models import user as U
from mentorsync.models.user import Identity
from mentorsync.server import MentorSyncServer
from mentorsync.session.authenticated import AuthenticatedSession, SessionOptions
from mentorsync.session.connection import InMemoryConnection
from mentorsync.storage.backends import InMemoryDocumentStore


# =============================================================================
# STORE DOUBLES
# =============================================================================

class GatedStore(InMemoryDocumentStore):
    """
    In-memory store whose user reads can be held open.

    While held, `get_with_id` on the user collection waits for `release()`,
    so a test can interleave transport events with a pending read.
    """

    def __init__(self) -> None:
        super().__init__()
        self.waiting = asyncio.Event()
        self._open = asyncio.Event()
        self._open.set()

    def hold(self) -> None:
        self._open.clear()

    def release(self) -> None:
        self._open.set()

    async def get_with_id(
        self,
        collection: str,
        doc_id: DocumentId,
    ) -> Result[Optional[Document], Any]:
        if collection == C.USER_COLLECTION and not self._open.is_set():
            self.waiting.set()
            await self._open.wait()
        return await super().get_with_id(collection, doc_id)


# =============================================================================
# RESULT ASSERTIONS
# =============================================================================

def assert_ok(result: Result[Any, Any], message: str = "Expected Ok result") -> Any:
    assert result.is_ok(), f"{message}: {result.error if result.is_err() else ''}"
    return result.value


def assert_err(result: Result[Any, Any], error_type: Optional[type] = None) -> Any:
    assert result.is_err(), f"Expected Err, got Ok({result.value!r})"
    if error_type is not None:
        assert isinstance(result.error, error_type), (
            f"Expected {error_type.__name__}, got {type(result.error).__name__}"
        )
    return result.error


# =============================================================================
# SEEDING
# =============================================================================

def seed_user(
    store: InMemoryDocumentStore,
    username: str,
    subject: Optional[str] = None,
    **fields: Any,
) -> DocumentId:
    doc = {
        U.USERNAME: username,
        U.USERNAME_LOWER: username.lower(),
        U.FIRST_NAME: username.title(),
        U.LAST_NAME: "Tester",
        U.OAUTH_SUB_ID: subject or f"sub|{username}",
        **fields,
    }
    return store.seed(C.USER_COLLECTION, doc)


def seed_mentor(store: InMemoryDocumentStore, username: str, **fields: Any) -> DocumentId:
    return seed_user(
        store,
        username,
        **{U.IS_MENTOR: True, U.ACCEPTING_MENTEES: True, **fields},
    )


def seed_request(
    store: InMemoryDocumentStore,
    mentor_id: DocumentId,
    mentee_id: DocumentId,
    request_id: Optional[DocumentId] = None,
    link: bool = True,
) -> DocumentId:
    """Insert a request record and, with `link`, both back-references."""
    doc: dict[str, Any] = {"mentorID": mentor_id, "menteeID": mentee_id}
    if request_id:
        doc["id"] = request_id
    rid = store.seed(C.MENTORSHIP_REQUEST_COLLECTION, doc)
    if link:
        for user_id in (mentor_id, mentee_id):
            user = store.peek(C.USER_COLLECTION, user_id)
            assert user is not None
            user[U.MENTORSHIP_REQUESTS] = [*user.get(U.MENTORSHIP_REQUESTS, []), rid]
            store.seed(C.USER_COLLECTION, user)
    return rid


def requests_of(store: InMemoryDocumentStore, user_id: DocumentId) -> list[DocumentId]:
    user = store.peek(C.USER_COLLECTION, user_id)
    assert user is not None
    return list(user.get(U.MENTORSHIP_REQUESTS) or [])


def user_doc(store: InMemoryDocumentStore, user_id: DocumentId) -> dict[str, Any]:
    user = store.peek(C.USER_COLLECTION, user_id)
    assert user is not None, f"user {user_id} missing"
    return user


# =============================================================================
# SESSION DRIVERS
# =============================================================================

async def connect(
    server: MentorSyncServer,
    subject: str,
    options: Optional[SessionOptions] = None,
) -> tuple[AuthenticatedSession, InMemoryConnection]:
    conn = InMemoryConnection(f"conn-{subject}")
    session = await server.accept(conn, Identity(subject=subject), options)
    return session, conn


async def signup(
    server: MentorSyncServer,
    username: str,
    options: Optional[SessionOptions] = None,
    **profile: Any,
) -> tuple[AuthenticatedSession, InMemoryConnection]:
    """Connect a fresh subject and create its account."""
    session, conn = await connect(server, f"sub|{username}", options)
    created = await conn.call(
        C.CMD_CREATE_USER,
        {"fName": username.title(), "lName": "Tester", "username": username},
    )
    assert created is True, conn.messages()
    if profile:
        updated = await conn.call(C.CMD_UPDATE_PROFILE, profile)
        assert updated is True, conn.messages()
    return session, conn
