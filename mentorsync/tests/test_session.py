"""
Integration Tests: Authenticated Sessions

Drives a MentorSyncServer over in-memory connections.

Tests:
    - Identity resolution: new subject, known subject, lookup failure
    - createUser and the switch of command tables
    - initialData pushed once per entry into authed_user
    - Command contract: missing callback, validation failure, storage
      failure, handler crash, fatal refresh failure
    - Reconnect, vanished accounts and registry bookkeeping
    - Broadcast delivery across users and devices
    - Testing mode variables and account teardown
    - Server startup sweep and shutdown
"""

import asyncio
from typing import Any

import pytest

from mentorsync.core import constants as C
from mentorsync.core.config import MentorSyncConfig, SessionConfig
from mentorsync.core.errors import SessionError
from mentorsync.mentorship.engine import MentorshipEngine
from mentorsync.models.user import Identity
from mentorsync.server import MentorSyncServer
from mentorsync.session.authenticated import SessionOptions
from mentorsync.session.commands import Command, CommandRouter, CommandSpec
from mentorsync.session.connection import InMemoryConnection
from mentorsync.session.state_machine import SessionState
from mentorsync.storage import OperationType

from mentorsync.tests.helpers import (
    GatedStore,
    assert_ok,
    connect,
    seed_mentor,
    seed_request,
    seed_user,
    signup,
    user_doc,
)


async def _users(store) -> list[dict]:
    return assert_ok(await store.get(C.USER_COLLECTION))


# =============================================================================
# IDENTITY RESOLUTION
# =============================================================================
class TestIdentityResolution:
    """Tests for the connecting state."""

    @pytest.mark.asyncio
    async def test_new_subject_gets_nouser(self, server):
        """Test an unknown subject lands in authed_nouser with createUser only."""
        session, conn = await connect(server, "sub|new")

        assert conn.states() == ["connecting", "authed_nouser"]
        assert session.active_commands == frozenset({C.CMD_CREATE_USER})
        assert not conn.listening(C.CMD_GET_USER)
        assert not conn.listening(C.CMD_MENTORSHIP_REQUEST)
        assert conn.data() == []

    @pytest.mark.asyncio
    async def test_known_subject_gets_user(self, server, store):
        """Test an existing account binds immediately and gets initialData."""
        user_id = seed_user(store, "grace")
        store.seed(C.ASSESSMENT_QUESTION_COLLECTION, {"question": "Why?", "inputType": "string"})

        session, conn = await connect(server, "sub|grace")

        assert conn.states() == ["connecting", "authed_user"]
        assert session.user_id == user_id
        assert server.registry.is_online(user_id)
        initial = conn.data(C.DATA_INITIAL)
        assert len(initial) == 1
        payload = initial[0]["data"]
        assert payload["user"]["id"] == user_id
        assert [q["question"] for q in payload["assessmentQuestions"]] == ["Why?"]
        assert payload["mentorshipRequests"] == []
        assert not conn.listening(C.CMD_CREATE_USER)

    @pytest.mark.asyncio
    async def test_initial_data_includes_pending_requests(self, server, store):
        """Test pending requests are part of the first push."""
        mentor = seed_mentor(store, "grace")
        mentee = seed_user(store, "alan")
        request_id = seed_request(store, mentor, mentee)

        _, conn = await connect(server, "sub|grace")

        pending = conn.data(C.DATA_INITIAL)[0]["data"]["mentorshipRequests"]
        assert [r["id"] for r in pending] == [request_id]

    @pytest.mark.asyncio
    async def test_lookup_failure_is_terminal(self, server, store):
        """Test a storage failure while resolving ends in connect_error."""
        store.inject_fault(OperationType.QUERY, C.USER_COLLECTION)

        session, conn = await connect(server, "sub|x")

        assert conn.states() == ["connecting", "connect_error"]
        assert conn.messages()[-1]["body"] == "Could not resolve your account."
        assert not conn.connected
        assert session.active_commands == frozenset()

    @pytest.mark.asyncio
    async def test_reconnect_after_connect_error_ignored(self, server, store):
        """Test connect_error ends authorization for the connection."""
        store.inject_fault(OperationType.QUERY, C.USER_COLLECTION)
        session, conn = await connect(server, "sub|x")

        await conn.reconnect()

        assert session.state is SessionState.CONNECT_ERROR
        assert conn.states() == ["connecting", "connect_error"]


# =============================================================================
# ACCOUNT CREATION AND TABLE SWITCHING
# =============================================================================
class TestCreateUser:
    """Tests for authed_nouser -> authed_user."""

    @pytest.mark.asyncio
    async def test_create_user_flow(self, server, store):
        """Test createUser binds the session and swaps the command table."""
        session, conn = await connect(server, "sub|ada")

        created = await conn.call(
            C.CMD_CREATE_USER, {"fName": "Ada", "lName": "Lovelace", "username": "Ada"},
        )

        assert created is True
        assert conn.states() == ["connecting", "authed_nouser", "authed_user"]
        assert session.state is SessionState.AUTHED_USER
        doc = user_doc(store, session.user_id)
        assert doc["usernameLower"] == "ada"
        assert doc["OAuthSubID"] == "sub|ada"
        assert len(conn.data(C.DATA_INITIAL)) == 1
        assert conn.listening(C.CMD_GET_USER)
        assert server.registry.is_online(session.user_id)

    @pytest.mark.asyncio
    async def test_old_command_inert_after_transition(self, server, store):
        """Test createUser no longer fires once authed_user is reached."""
        _, conn = await signup(server, "ada")
        conn.clear()

        result = await conn.call(
            C.CMD_CREATE_USER, {"fName": "Ada", "lName": "Again", "username": "ada2"},
        )

        assert result is None
        assert conn.emitted == []
        assert len(await _users(store)) == 1

    @pytest.mark.asyncio
    async def test_invalid_create_stays_nouser(self, server, store):
        """Test a validation failure keeps the session in authed_nouser."""
        session, conn = await connect(server, "sub|ada")

        created = await conn.call(C.CMD_CREATE_USER, {"fName": "", "lName": "L", "username": "ada"})

        assert created is False
        assert session.state is SessionState.AUTHED_NOUSER
        assert conn.messages()[-1]["body"].startswith(C.SUBJECT_CREATE_USER)
        assert await _users(store) == []

    @pytest.mark.asyncio
    async def test_username_taken(self, server):
        """Test usernames are unique case-insensitively."""
        await signup(server, "grace")
        _, conn = await connect(server, "sub|other")

        created = await conn.call(
            C.CMD_CREATE_USER, {"fName": "G", "lName": "H", "username": "GRACE"},
        )

        assert created is False
        assert conn.messages()[-1]["body"] == C.SUBJECT_CREATE_USER + "Username is already taken."

    @pytest.mark.asyncio
    async def test_second_create_while_entering_refused(self, collector, config):
        """Test a createUser arriving before authed_user is entered makes no account."""
        store = GatedStore()
        server = MentorSyncServer(config, gateway=store, collector=collector)
        assert_ok(await server.startup())
        session, conn = await connect(server, "sub|ada")

        store.hold()
        first = asyncio.create_task(conn.call(
            C.CMD_CREATE_USER, {"fName": "Ada", "lName": "L", "username": "ada"},
        ))
        await store.waiting.wait()
        second = await conn.call(
            C.CMD_CREATE_USER, {"fName": "Ada", "lName": "L", "username": "ada2"},
        )
        store.release()

        assert await first is True
        assert second is False
        assert conn.messages()[-1]["body"] == (
            C.SUBJECT_CREATE_USER + "Your account is already being created."
        )
        users = await _users(store)
        assert [u["username"] for u in users] == ["ada"]
        assert session.state is SessionState.AUTHED_USER
        assert conn.states() == ["connecting", "authed_nouser", "authed_user"]


# =============================================================================
# COMMAND CONTRACT
# =============================================================================
class TestCommandContract:
    """Tests for callback handling and failure reporting."""

    @pytest.mark.asyncio
    async def test_missing_callback_refused_without_mutation(self, server, store, collector):
        """Test a command without callback sends only a message."""
        session, conn = await signup(server, "ada")
        conn.clear()
        writes = store.write_count()

        await conn.deliver(C.CMD_UPDATE_PROFILE, {"bio": "hello there"})
        await conn.deliver(C.CMD_UPDATE_PROFILE, {"bio": "hello there"}, "not callable")

        assert store.write_count() == writes
        assert "bio" not in user_doc(store, session.user_id)
        assert [e.event for e in conn.emitted] == [C.EVENT_MESSAGE, C.EVENT_MESSAGE]
        assert conn.messages()[0]["body"] == C.SUBJECT_UPDATE_PROFILE + C.NO_CALLBACK_BODY
        assert server.metrics.commands.get(command=C.CMD_UPDATE_PROFILE, outcome="refused") == 2

    @pytest.mark.asyncio
    async def test_missing_callback_for_zero_arity_command(self, server):
        """Test a payload passed in the callback position is refused."""
        _, conn = await signup(server, "ada")
        conn.clear()

        await conn.deliver(C.CMD_GET_ALL_MENTORS, {"unexpected": True})

        assert conn.messages()[0]["body"] == C.SUBJECT_GET_MENTORS + C.NO_CALLBACK_BODY

    @pytest.mark.asyncio
    async def test_validation_failure(self, server):
        """Test a malformed payload yields False plus a message."""
        _, conn = await signup(server, "ada")
        conn.clear()

        result = await conn.call(C.CMD_MENTORSHIP_REQUEST, {"action": "befriend"})

        assert result is False
        assert conn.messages() == [{
            "title": C.MESSAGE_TITLE_ERROR,
            "body": C.SUBJECT_MENTORSHIP + "Action is invalid.",
        }]

    @pytest.mark.asyncio
    async def test_storage_failure_is_generic(self, server, store):
        """Test gateway errors surface as the generic failure body."""
        _, mentee = await signup(server, "alan")
        mentor, _ = await signup(server, "grace", isMentor=True, acceptingMentees=True)
        store.inject_fault(OperationType.CREATE, C.MENTORSHIP_REQUEST_COLLECTION)
        mentee.clear()

        result = await mentee.call(
            C.CMD_MENTORSHIP_REQUEST, {"action": "send", "mentorID": mentor.user_id},
        )

        assert result is False
        assert mentee.messages()[-1]["body"] == C.SUBJECT_MENTORSHIP + C.GENERIC_FAILURE_BODY

    @pytest.mark.asyncio
    async def test_handler_crash_degrades(self, server, monkeypatch):
        """Test an exception inside a handler becomes a generic message."""
        _, conn = await signup(server, "ada")
        conn.clear()

        async def boom(self, *args, **kwargs):
            raise RuntimeError("unexpected")

        monkeypatch.setattr(MentorshipEngine, "handle", boom)

        result = await conn.call(C.CMD_MENTORSHIP_REQUEST, {"action": "removeMentor"})

        assert result is False
        assert conn.messages()[-1]["body"] == C.SUBJECT_MENTORSHIP + C.GENERIC_FAILURE_BODY
        assert conn.connected
        assert server.metrics.commands.get(command=C.CMD_MENTORSHIP_REQUEST, outcome="error") == 1

    @pytest.mark.asyncio
    async def test_refresh_failure_is_fatal(self, server, store):
        """Test a failed self re-read disconnects before the handler runs."""
        session, conn = await signup(server, "ada")
        conn.clear()
        store.inject_fault(OperationType.READ, C.USER_COLLECTION, doc_id=session.user_id)
        writes = store.write_count()

        result = await conn.call(C.CMD_UPDATE_PROFILE, {"bio": "never written"})

        assert result is None
        assert conn.messages()[-1]["body"] == "There was a problem syncing your data."
        assert not conn.connected
        assert store.write_count() == writes
        assert not server.registry.is_online(session.user_id)
        assert server.metrics.commands.get(command=C.CMD_UPDATE_PROFILE, outcome="aborted") == 1

    @pytest.mark.asyncio
    async def test_refresh_sees_external_changes(self, server, store):
        """Test each command re-reads the caller instead of trusting a snapshot."""
        session, conn = await signup(server, "alan")
        mentor = seed_mentor(store, "grace", menteeIDs=[session.user_id])
        store.seed(C.USER_COLLECTION, {**user_doc(store, session.user_id), "mentorID": mentor})

        result = await conn.call(C.CMD_MENTORSHIP_REQUEST, {"action": "removeMentor"})

        assert result is True
        assert user_doc(store, mentor)["menteeIDs"] == []

    @pytest.mark.asyncio
    async def test_unbound_caller_raises_typed_error(self, server):
        """Test user-scoped handlers refuse to run without a loaded account."""
        session, _ = await connect(server, "sub|new")

        with pytest.raises(SessionError) as raised:
            session._me()

        assert raised.value.message == "Your account does not exist"


# =============================================================================
# RECONNECT AND DISCONNECT
# =============================================================================
class TestConnectionLifecycle:
    """Tests for transport reconnects and disconnects."""

    @pytest.mark.asyncio
    async def test_reconnect_rebinds(self, server):
        """Test a reconnect re-resolves and pushes initialData again."""
        session, conn = await signup(server, "ada")

        await conn.reconnect()

        assert conn.states()[-2:] == ["connecting", "authed_user"]
        assert len(conn.data(C.DATA_INITIAL)) == 2
        assert server.registry.sessions_for(session.user_id) == [session]

    @pytest.mark.asyncio
    async def test_vanished_account_on_reconnect(self, server, store):
        """Test a deleted account never falls back to authed_nouser."""
        session, conn = await signup(server, "ada")
        await store.delete_with_id(C.USER_COLLECTION, session.user_id)

        await conn.reconnect()

        assert conn.states()[-2:] == ["connecting", "connect_error"]
        assert "authed_nouser" not in conn.states()[2:]
        assert conn.messages()[-1]["body"] == "Your account does not exist"
        assert not conn.connected
        assert not server.registry.is_online(session.user_id)

    @pytest.mark.asyncio
    async def test_disconnect_unregisters(self, server):
        """Test disconnect removes exactly this session."""
        first, first_conn = await signup(server, "ada")
        _, second_conn = await connect(server, "sub|ada")

        first_conn.disconnect()

        assert server.registry.sessions_for(first.user_id) != []
        assert len(server.registry) == 1
        assert server.metrics.live_sessions.get() == 1
        assert first.active_commands == frozenset()

        second_conn.disconnect()
        assert not server.registry.is_online(first.user_id)
        assert server.metrics.live_sessions.get() == 0

    @pytest.mark.asyncio
    async def test_disconnect_during_resolution_never_registers(self, collector, config):
        """Test a connection closed while its user is loading stays unbound."""
        store = GatedStore()
        user_id = seed_user(store, "grace")
        server = MentorSyncServer(config, gateway=store, collector=collector)
        assert_ok(await server.startup())
        conn = InMemoryConnection("conn-grace")

        store.hold()
        accepting = asyncio.create_task(server.accept(conn, Identity(subject="sub|grace")))
        await store.waiting.wait()
        conn.disconnect()
        store.release()
        session = await accepting

        assert session.state is SessionState.CONNECTING
        assert not server.registry.is_online(user_id)
        assert server.metrics.live_sessions.get() == 0
        assert session.active_commands == frozenset()
        assert conn.data(C.DATA_INITIAL) == []

        await conn.reconnect()

        assert session.state is SessionState.AUTHED_USER
        assert server.registry.sessions_for(user_id) == [session]
        assert len(conn.data(C.DATA_INITIAL)) == 1

    @pytest.mark.asyncio
    async def test_disconnect_during_create_never_registers(self, collector, config):
        """Test an account created over a closed connection is not bound to it."""
        store = GatedStore()
        server = MentorSyncServer(config, gateway=store, collector=collector)
        assert_ok(await server.startup())
        session, conn = await connect(server, "sub|ada")

        store.hold()
        creating = asyncio.create_task(conn.call(
            C.CMD_CREATE_USER, {"fName": "Ada", "lName": "L", "username": "ada"},
        ))
        await store.waiting.wait()
        conn.disconnect()
        store.release()

        assert await creating is True
        assert session.state is SessionState.AUTHED_NOUSER
        assert len(server.registry) == 0
        assert server.metrics.live_sessions.get() == 0
        assert session.active_commands == frozenset()


# =============================================================================
# BROADCAST AND READS
# =============================================================================
class TestMentorshipOverSessions:
    """End-to-end request flow between two users."""

    @pytest.mark.asyncio
    async def test_send_accept_broadcasts(self, server, store):
        """Test both users and every device see the request lifecycle."""
        mentor, mentor_conn = await signup(server, "grace", isMentor=True, acceptingMentees=True)
        _, mentor_tablet = await connect(server, "sub|grace")
        mentee, mentee_conn = await signup(server, "alan")
        for conn in (mentor_conn, mentor_tablet, mentee_conn):
            conn.clear()

        sent = await mentee_conn.call(
            C.CMD_MENTORSHIP_REQUEST, {"action": "send", "mentorID": mentor.user_id},
        )
        assert sent is True
        for conn in (mentor_conn, mentor_tablet, mentee_conn):
            pushed = conn.data(C.DATA_MENTORSHIP_REQUEST)
            assert len(pushed) == 1
            assert pushed[0]["data"]["menteeID"] == mentee.user_id

        request = await mentee_conn.call(C.CMD_GET_REQUEST_BETWEEN, mentor.user_id, mentee.user_id)
        accepted = await mentor_conn.call(
            C.CMD_MENTORSHIP_REQUEST, {"action": "accept", "mentorshipRequestID": request["id"]},
        )

        assert accepted is True
        assert mentee_conn.data(C.DATA_MENTORSHIP_REQUEST)[-1]["data"]["status"] == "accepted"
        assert user_doc(store, mentee.user_id)["mentorID"] == mentor.user_id

    @pytest.mark.asyncio
    async def test_get_all_mentors_filters_fields(self, server):
        """Test mentors come back as visibility-filtered views."""
        mentor, _ = await signup(server, "grace", isMentor=True, acceptingMentees=True)
        _, conn = await signup(server, "alan")

        mentors = await conn.call(C.CMD_GET_ALL_MENTORS)

        assert [m["id"] for m in mentors] == [mentor.user_id]
        assert "OAuthSubID" not in mentors[0]
        assert "email" not in mentors[0]

    @pytest.mark.asyncio
    async def test_profile_flags_update_index(self, server):
        """Test turning acceptingMentees off removes the mentor from listings."""
        mentor, mentor_conn = await signup(server, "grace", isMentor=True, acceptingMentees=True)
        assert mentor.user_id in server.index

        await mentor_conn.call(C.CMD_UPDATE_PROFILE, {"acceptingMentees": False})

        assert mentor.user_id not in server.index

    @pytest.mark.asyncio
    async def test_get_request_between_validation(self, server):
        """Test argument checks of getMentorshipRequestBetweenUsers."""
        session, conn = await signup(server, "alan")

        missing = await conn.call(C.CMD_GET_REQUEST_BETWEEN, None, session.user_id)
        malformed = await conn.call(C.CMD_GET_REQUEST_BETWEEN, 1, 2)

        assert missing is False
        assert malformed is False
        bodies = [m["body"] for m in conn.messages()]
        assert C.SUBJECT_GET_REQUEST + "Missing mentorID or menteeID" in bodies
        assert C.SUBJECT_GET_REQUEST + "MentorID or menteeID format incorrect." in bodies

    @pytest.mark.asyncio
    async def test_get_user_visibility(self, server, store):
        """Test a mentor sees a mentee's assessments and a stranger does not."""
        mentor, mentor_conn = await signup(server, "grace", isMentor=True)
        mentee, _ = await signup(server, "alan")
        _, stranger_conn = await signup(server, "eve")
        store.seed(C.USER_COLLECTION, {
            **user_doc(store, mentee.user_id), "mentorID": mentor.user_id, "assessments": ["a-1"],
        })

        as_mentor = await mentor_conn.call(C.CMD_GET_USER, mentee.user_id)
        as_stranger = await stranger_conn.call(C.CMD_GET_USER, mentee.user_id)
        missing = await stranger_conn.call(C.CMD_GET_USER, "nobody")

        assert as_mentor["assessments"] == ["a-1"]
        assert "assessments" not in as_stranger
        assert "mentorID" not in as_stranger
        assert missing is False


# =============================================================================
# TESTING MODE
# =============================================================================
class TestTestingMode:
    """Tests for the testing-only command and teardown."""

    @pytest.mark.asyncio
    async def test_documents_flagged(self, server, store):
        """Test accounts created in testing mode carry the flag."""
        session, _ = await signup(server, "ada", options=SessionOptions(testing=True))

        assert user_doc(store, session.user_id)["testing"] is True

    @pytest.mark.asyncio
    async def test_set_variable_and_delete_on_disconnect(self, server, store):
        """Test deleteAccountAfterDisconnect removes the account on disconnect."""
        session, conn = await signup(
            server, "grace", options=SessionOptions(testing=True),
            isMentor=True, acceptingMentees=True,
        )
        assert session.user_id in server.index

        set_ok = await conn.call(C.CMD_SET_TESTING_VARIABLE, "deleteAccountAfterDisconnect", True)
        conn.disconnect()
        await session.wait_closed()

        assert set_ok is True
        assert store.peek(C.USER_COLLECTION, session.user_id) is None
        assert session.user_id not in server.index

    @pytest.mark.asyncio
    async def test_unknown_variable(self, server):
        """Test only known testing variables can be set."""
        session, conn = await connect(server, "sub|t", SessionOptions(testing=True))

        result = await conn.call(C.CMD_SET_TESTING_VARIABLE, "debug", True)

        assert result is False
        assert conn.messages()[-1]["body"] == C.SUBJECT_TESTING + "invalid variable name provided"
        assert session.testing_variables == {"deleteAccountAfterDisconnect": False}

    @pytest.mark.asyncio
    async def test_testing_mode_disabled_by_config(self, store, collector):
        """Test the server downgrades testing requests when not allowed."""
        server = MentorSyncServer(
            MentorSyncConfig(session=SessionConfig(allow_testing_mode=False, reconcile_on_startup=False)),
            gateway=store,
            collector=collector,
        )
        assert_ok(await server.startup())

        session, conn = await connect(server, "sub|t", SessionOptions(testing=True))

        assert not session.testing
        assert not conn.listening(C.CMD_SET_TESTING_VARIABLE)


# =============================================================================
# SERVER LIFECYCLE
# =============================================================================
class TestServerLifecycle:
    """Tests for startup repair and shutdown."""

    @pytest.mark.asyncio
    async def test_startup_sweep_repairs_store(self, store, collector):
        """Test startup rebuilds the index and reconciles stale references."""
        mentor_id = seed_mentor(store, "ada")
        mentee_id = seed_user(store, "grace", mentorshipRequests=["ghost"])
        rid = seed_request(store, mentor_id, mentee_id, link=False)

        server = MentorSyncServer(
            MentorSyncConfig(session=SessionConfig(reconcile_on_startup=True)),
            gateway=store,
            collector=collector,
        )
        assert_ok(await server.startup())

        assert server.started
        assert mentor_id in server.index
        assert user_doc(store, mentor_id)["mentorshipRequests"] == [rid]
        assert user_doc(store, mentee_id)["mentorshipRequests"] == [rid]

    @pytest.mark.asyncio
    async def test_shutdown_disconnects_sessions(self, server):
        """Test shutdown closes every connection and forgets its sessions."""
        _, first = await connect(server, "sub|one")
        _, second = await connect(server, "sub|two")

        await server.shutdown()

        assert not first.connected
        assert not second.connected
        assert server.sessions == []
        assert not server.started


# =============================================================================
# ROUTER
# =============================================================================
class RecordingConnection:
    """Connection double exposing raw listener registration."""

    def __init__(self) -> None:
        self.id = "rec"
        self.listeners: dict[str, list[Any]] = {}

    def emit(self, event: str, *args: Any) -> None:
        pass

    def on(self, event: str, listener: Any) -> None:
        self.listeners.setdefault(event, []).append(listener)

    def off(self, event: str, listener: Any) -> None:
        self.listeners[event].remove(listener)

    def disconnect(self) -> None:
        pass


class TestCommandRouter:
    """Tests for table installation."""

    @pytest.mark.asyncio
    async def test_stale_listener_is_inert(self):
        """Test a listener captured before a table swap never dispatches."""
        conn = RecordingConnection()
        dispatched = []

        async def dispatch(cmd, args):
            dispatched.append(cmd.spec.name)

        async def handler(reply, payload):
            pass

        router = CommandRouter(conn, dispatch)
        old = Command(CommandSpec("old", "old: "), handler)
        new = Command(CommandSpec("new", "new: "), handler)

        router.install({"old": old})
        stale = conn.listeners["old"][0]
        router.install({"new": new})
        await stale({}, lambda _: None)
        await conn.listeners["new"][0]({}, lambda _: None)

        assert dispatched == ["new"]
        assert conn.listeners["old"] == []
        assert router.active == frozenset({"new"})
        assert router.generation == 2


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
