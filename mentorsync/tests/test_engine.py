"""
Unit Tests: Mentorship Relationship Engine

Tests:
    - send / accept / decline / cancel and their broadcasts
    - removeMentor / removeMentee
    - Payload validation in `handle`
    - Duplicate lookup and its self-healing
    - Corrupt request records
    - reconcile_pair, reconcile_user and sweep
    - Storage failures and the unsynchronized concurrent-accept gap
"""

import asyncio
from typing import Any

import pytest

from mentorsync.core import constants as C
from mentorsync.core.errors import (
    AuthorizationError,
    ConsistencyError,
    NotFoundError,
    ProtocolError,
    StorageError,
)
from mentorsync.mentorship.engine import MentorshipEngine
from mentorsync.session.registry import ConnectionRegistry
from mentorsync.storage import InMemoryDocumentStore, OperationType

from mentorsync.tests.helpers import (
    assert_err,
    assert_ok,
    requests_of,
    seed_mentor,
    seed_request,
    seed_user,
    user_doc,
)


class Recorder:
    """Broadcast target that keeps what it receives."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        self.pushed: list[tuple[str, Any]] = []

    def push(self, data_type: str, data: Any) -> None:
        self.pushed.append((data_type, data))


async def _all_requests(store: InMemoryDocumentStore) -> list[dict]:
    return assert_ok(await store.get(C.MENTORSHIP_REQUEST_COLLECTION))


@pytest.fixture
def pair(store):
    """(mentee, accepting mentor)."""
    return seed_user(store, "alan"), seed_mentor(store, "grace")


# =============================================================================
# REQUEST LIFECYCLE
# =============================================================================
class TestSend:
    """Tests for sending a request."""

    @pytest.mark.asyncio
    async def test_send_is_symmetric(self, store, engine, pair):
        """Test the ID lands on both users and exactly one record exists."""
        mentee, mentor = pair

        request = assert_ok(await engine.send(user_doc(store, mentee), mentor))

        assert requests_of(store, mentee) == [request.id]
        assert requests_of(store, mentor) == [request.id]
        records = await _all_requests(store)
        assert len(records) == 1
        assert records[0]["mentorID"] == mentor
        assert records[0]["menteeID"] == mentee

    @pytest.mark.asyncio
    async def test_send_broadcasts_to_both(self, store, engine, registry, pair):
        """Test both parties' live sessions receive the new request."""
        mentee, mentor = pair
        mentee_session, mentor_session = Recorder("m1"), Recorder("m2")
        registry.register(mentee, mentee_session)
        registry.register(mentor, mentor_session)

        request = assert_ok(await engine.send(user_doc(store, mentee), mentor))

        expected = (C.DATA_MENTORSHIP_REQUEST, request.to_document())
        assert mentee_session.pushed == [expected]
        assert mentor_session.pushed == [expected]
        assert "status" not in expected[1]

    @pytest.mark.asyncio
    async def test_duplicate_send_rejected(self, store, engine, pair):
        """Test a second send for the same pair fails as already sent."""
        mentee, mentor = pair
        assert_ok(await engine.send(user_doc(store, mentee), mentor))

        error = assert_err(await engine.send(user_doc(store, mentee), mentor), AuthorizationError)

        assert error.message == "You have already sent a request"
        assert len(await _all_requests(store)) == 1

    @pytest.mark.asyncio
    async def test_reverse_direction_counts_as_duplicate(self, store, engine, pair):
        """Test a pending request in the other direction also blocks sending."""
        mentee, mentor = pair
        store.seed(C.USER_COLLECTION, {
            **user_doc(store, mentee), "isMentor": True, "acceptingMentees": True,
        })
        assert_ok(await engine.send(user_doc(store, mentee), mentor))

        error = assert_err(await engine.send(user_doc(store, mentor), mentee))

        assert error.message == "You have already sent a request"

    @pytest.mark.asyncio
    async def test_send_to_non_mentor_rejected(self, store, engine):
        """Test targeting a non-mentor fails before any record is created."""
        mentee = seed_user(store, "alan")
        plain = seed_user(store, "carl", isMentor=False)
        writes = store.write_count()

        error = assert_err(await engine.send(user_doc(store, mentee), plain))

        assert error.message == "That user is not a mentor"
        assert await _all_requests(store) == []
        assert store.write_count() == writes

    @pytest.mark.asyncio
    async def test_send_to_closed_mentor_rejected(self, store, engine):
        """Test a mentor who is not accepting mentees."""
        mentee = seed_user(store, "alan")
        closed = seed_mentor(store, "grace", acceptingMentees=False)

        error = assert_err(await engine.send(user_doc(store, mentee), closed))

        assert error.message == "That user is not currently accepting mentees."

    @pytest.mark.asyncio
    async def test_send_to_missing_user(self, store, engine):
        """Test targeting an unknown ID."""
        mentee = seed_user(store, "alan")

        error = assert_err(await engine.send(user_doc(store, mentee), "nobody"), NotFoundError)

        assert error.message == "That user does not exist"

    @pytest.mark.asyncio
    async def test_send_to_self_rejected(self, store, engine):
        """Test a mentor cannot request themself."""
        mentor = seed_mentor(store, "grace")

        result = await engine.send(user_doc(store, mentor), mentor)

        assert_err(result, AuthorizationError)
        assert await _all_requests(store) == []

    @pytest.mark.asyncio
    async def test_testing_flag_carried(self, store, engine, pair):
        """Test requests created in testing mode are flagged."""
        mentee, mentor = pair

        request = assert_ok(await engine.send(user_doc(store, mentee), mentor, testing=True))

        assert store.peek(C.MENTORSHIP_REQUEST_COLLECTION, request.id)["testing"] is True


class TestAcceptDeclineCancel:
    """Tests for resolving a pending request."""

    @pytest.mark.asyncio
    async def test_accept_establishes_relationship(self, store, engine, registry, pair):
        """Test accept links both users and removes every copy of the request."""
        mentee, mentor = pair
        request = assert_ok(await engine.send(user_doc(store, mentee), mentor))
        watcher = Recorder("w")
        registry.register(mentee, watcher)

        assert_ok(await engine.accept(user_doc(store, mentor), request.id))

        assert user_doc(store, mentee)["mentorID"] == mentor
        assert user_doc(store, mentor)["menteeIDs"] == [mentee]
        assert requests_of(store, mentee) == []
        assert requests_of(store, mentor) == []
        assert await _all_requests(store) == []
        assert watcher.pushed[-1][1]["status"] == "accepted"

    @pytest.mark.asyncio
    async def test_send_then_cancel_round_trip(self, store, engine, registry, pair):
        """Test cancel restores both users' lists to their pre-send state."""
        mentee, mentor = pair
        before = (requests_of(store, mentee), requests_of(store, mentor))
        request = assert_ok(await engine.send(user_doc(store, mentee), mentor))
        watcher = Recorder("w")
        registry.register(mentor, watcher)

        assert_ok(await engine.cancel(user_doc(store, mentee), request.id))

        assert (requests_of(store, mentee), requests_of(store, mentor)) == before
        assert store.peek(C.MENTORSHIP_REQUEST_COLLECTION, request.id) is None
        assert watcher.pushed[-1][1]["status"] == "cancelled"

    @pytest.mark.asyncio
    async def test_decline(self, store, engine, registry, pair):
        """Test decline removes the request without a relationship."""
        mentee, mentor = pair
        request = assert_ok(await engine.send(user_doc(store, mentee), mentor))
        watcher = Recorder("w")
        registry.register(mentee, watcher)

        assert_ok(await engine.decline(user_doc(store, mentor), request.id))

        assert user_doc(store, mentee).get("mentorID") is None
        assert await _all_requests(store) == []
        assert watcher.pushed[-1][1]["status"] == "declined"

    @pytest.mark.asyncio
    async def test_only_mentor_accepts(self, store, engine, pair):
        """Test the mentee cannot accept their own request."""
        mentee, mentor = pair
        request = assert_ok(await engine.send(user_doc(store, mentee), mentor))

        error = assert_err(await engine.accept(user_doc(store, mentee), request.id), AuthorizationError)

        assert error.message == "You do not have permission to accept this request."
        assert len(await _all_requests(store)) == 1

    @pytest.mark.asyncio
    async def test_only_mentee_cancels(self, store, engine, pair):
        """Test the mentor cannot cancel."""
        mentee, mentor = pair
        request = assert_ok(await engine.send(user_doc(store, mentee), mentor))

        error = assert_err(await engine.cancel(user_doc(store, mentor), request.id))

        assert error.message == "You do not have permission to cancel this request."

    @pytest.mark.asyncio
    async def test_stranger_cannot_decline(self, store, engine, pair):
        """Test a third user cannot decline."""
        mentee, mentor = pair
        stranger = seed_user(store, "eve")
        request = assert_ok(await engine.send(user_doc(store, mentee), mentor))

        error = assert_err(await engine.decline(user_doc(store, stranger), request.id))

        assert error.message == "You do not have permission to decline this request."

    @pytest.mark.asyncio
    async def test_missing_request(self, store, engine, pair):
        """Test acting on a request that does not exist."""
        _, mentor = pair

        error = assert_err(await engine.accept(user_doc(store, mentor), "gone"), NotFoundError)

        assert error.message == "Action failed, that mentorship request does not exist."

    @pytest.mark.asyncio
    async def test_cannot_mentor_own_mentor(self, store, engine):
        """Test accepting a request from one's own mentor is refused."""
        mentor = seed_mentor(store, "grace")
        mentee = seed_mentor(store, "alan", mentorID=mentor)
        store.seed(C.USER_COLLECTION, {**user_doc(store, mentor), "menteeIDs": [mentee]})
        # mentor asks their own mentee to mentor them
        request = assert_ok(await engine.send(user_doc(store, mentor), mentee))

        error = assert_err(await engine.accept(user_doc(store, mentee), request.id))

        assert error.message == "You cannot mentor your own mentor."
        assert store.peek(C.MENTORSHIP_REQUEST_COLLECTION, request.id) is not None

    @pytest.mark.asyncio
    async def test_accept_moves_mentee_from_previous_mentor(self, store, engine):
        """Test a mentee has one mentor: the old one loses them."""
        old = seed_mentor(store, "old")
        new = seed_mentor(store, "new")
        mentee = seed_user(store, "alan", mentorID=old)
        store.seed(C.USER_COLLECTION, {**user_doc(store, old), "menteeIDs": [mentee]})
        request = assert_ok(await engine.send(user_doc(store, mentee), new))

        assert_ok(await engine.accept(user_doc(store, new), request.id))

        assert user_doc(store, mentee)["mentorID"] == new
        assert user_doc(store, old)["menteeIDs"] == []
        assert user_doc(store, new)["menteeIDs"] == [mentee]


class TestCorruptRequests:
    """Tests for records missing an endpoint."""

    @pytest.mark.asyncio
    async def test_accept_corrupt_request(self, store, engine, metrics):
        """Test a corrupt record is deleted and the action fails."""
        mentor = seed_mentor(store, "grace")
        store.seed(C.MENTORSHIP_REQUEST_COLLECTION, {"id": "bad", "mentorID": mentor})
        store.seed(C.USER_COLLECTION, {**user_doc(store, mentor), "mentorshipRequests": ["bad"]})

        error = assert_err(await engine.accept(user_doc(store, mentor), "bad"), ConsistencyError)

        assert error.message == "There is something wrong with this request. You cannot accept it."
        assert store.peek(C.MENTORSHIP_REQUEST_COLLECTION, "bad") is None
        assert requests_of(store, mentor) == []
        assert metrics.self_heal.get(kind="corrupt_request") == 1

    @pytest.mark.asyncio
    async def test_cancel_corrupt_request_names_verb(self, store, engine):
        """Test the error names the attempted action."""
        mentee = seed_user(store, "alan")
        store.seed(C.MENTORSHIP_REQUEST_COLLECTION, {"id": "bad", "menteeID": mentee})

        error = assert_err(await engine.cancel(user_doc(store, mentee), "bad"))

        assert error.message.endswith("You cannot cancel it.")

    @pytest.mark.asyncio
    async def test_corrupt_discard_does_not_broadcast(self, store, engine, registry):
        """Test corrupt records vanish silently."""
        mentor = seed_mentor(store, "grace")
        watcher = Recorder("w")
        registry.register(mentor, watcher)
        store.seed(C.MENTORSHIP_REQUEST_COLLECTION, {"id": "bad", "mentorID": mentor})

        await engine.decline(user_doc(store, mentor), "bad")

        assert watcher.pushed == []


# =============================================================================
# RELATIONSHIP MUTATION
# =============================================================================
class TestRemoveRelationships:
    """Tests for removeMentor and removeMentee."""

    @pytest.fixture
    def linked(self, store):
        mentor = seed_mentor(store, "grace")
        mentee = seed_user(store, "alan", mentorID=mentor)
        store.seed(C.USER_COLLECTION, {**user_doc(store, mentor), "menteeIDs": [mentee]})
        return mentor, mentee

    @pytest.mark.asyncio
    async def test_remove_mentor(self, store, engine, linked):
        """Test the mentee leaves their mentor on both sides."""
        mentor, mentee = linked

        assert_ok(await engine.remove_mentor(user_doc(store, mentee)))

        assert user_doc(store, mentee)["mentorID"] is None
        assert user_doc(store, mentor)["menteeIDs"] == []

    @pytest.mark.asyncio
    async def test_remove_mentee(self, store, engine, linked):
        """Test the mentor drops a mentee on both sides."""
        mentor, mentee = linked

        assert_ok(await engine.remove_mentee(user_doc(store, mentor), mentee))

        assert user_doc(store, mentee)["mentorID"] is None
        assert user_doc(store, mentor)["menteeIDs"] == []

    @pytest.mark.asyncio
    async def test_remove_mentor_without_mentor(self, store, engine):
        """Test removeMentor with no mentor set."""
        loner = seed_user(store, "alan")

        error = assert_err(await engine.remove_mentor(user_doc(store, loner)))

        assert error.message == "You do not have a mentor"

    @pytest.mark.asyncio
    async def test_remove_unknown_mentee_no_mutation(self, store, engine, linked):
        """Test removing someone who is not a mentee changes nothing."""
        mentor, _ = linked
        other = seed_user(store, "eve")
        writes = store.write_count()

        error = assert_err(await engine.remove_mentee(user_doc(store, mentor), other))

        assert error.message == "That is not one of your mentees."
        assert store.write_count() == writes

    @pytest.mark.asyncio
    async def test_remove_mentee_without_mentees(self, store, engine):
        """Test removeMentee with an empty list."""
        mentor = seed_mentor(store, "grace")

        error = assert_err(await engine.remove_mentee(user_doc(store, mentor), "x"))

        assert error.message == "You do not have mentees"

    @pytest.mark.asyncio
    async def test_remove_mentorship_requires_both_users(self, store, engine):
        """Test the helper fails when an endpoint is missing."""
        mentor = seed_mentor(store, "grace")

        assert_err(await engine.remove_mentorship(mentor, "ghost"), NotFoundError)
        assert_err(await engine.add_mentorship("ghost", mentor), NotFoundError)


# =============================================================================
# PAYLOAD VALIDATION
# =============================================================================
class TestHandle:
    """Tests for the `mentorshipRequest` payload dispatcher."""

    @pytest.mark.parametrize(
        "payload, message",
        [
            ("send", "Data is invalid."),
            ({"action": "befriend"}, "Action is invalid."),
            ({"action": "send"}, "MentorID is invalid"),
            ({"action": "send", "mentorID": 42}, "MentorID is invalid"),
            ({"action": "accept"}, "MentorshipRequestID is invalid"),
            ({"action": "cancel", "mentorshipRequestID": "  "}, "MentorshipRequestID is invalid"),
            ({"action": "removeMentee"}, "MenteeID is not valid."),
        ],
    )
    @pytest.mark.asyncio
    async def test_invalid_payloads(self, store, engine, payload, message):
        """Test structural validation messages."""
        caller = seed_user(store, "alan")
        writes = store.write_count()

        error = assert_err(await engine.handle(user_doc(store, caller), payload), ProtocolError)

        assert error.message == message
        assert store.write_count() == writes

    @pytest.mark.asyncio
    async def test_handle_routes_send(self, store, engine, pair):
        """Test a valid send payload creates a request."""
        mentee, mentor = pair

        result = await engine.handle(user_doc(store, mentee), {"action": "send", "mentorID": mentor})

        assert result.is_ok()
        assert len(await _all_requests(store)) == 1

    @pytest.mark.asyncio
    async def test_handle_routes_remove_mentor(self, store, engine):
        """Test removeMentor needs no extra fields."""
        loner = seed_user(store, "alan")

        error = assert_err(await engine.handle(user_doc(store, loner), {"action": "removeMentor"}))

        assert error.message == "You do not have a mentor"


# =============================================================================
# LOOKUP AND SELF-HEALING
# =============================================================================
class TestFindRequestBetween:
    """Tests for the direction-sensitive duplicate lookup."""

    @pytest.mark.asyncio
    async def test_direction_sensitive(self, store, engine, pair):
        """Test only the literal (mentor, mentee) orientation matches."""
        mentee, mentor = pair
        request = assert_ok(await engine.send(user_doc(store, mentee), mentor))

        found = assert_ok(await engine.find_request_between(mentor, mentee))
        reverse = assert_ok(await engine.find_request_between(mentee, mentor))

        assert found == request
        assert reverse is None

    @pytest.mark.asyncio
    async def test_dangling_id_pruned(self, store, engine, metrics, pair):
        """Test a shared ID with no record is removed from both users."""
        mentee, mentor = pair
        for user_id in pair:
            store.seed(C.USER_COLLECTION, {**user_doc(store, user_id), "mentorshipRequests": ["ghost"]})

        found = assert_ok(await engine.find_request_between(mentor, mentee))

        assert found is None
        assert requests_of(store, mentee) == []
        assert requests_of(store, mentor) == []
        assert metrics.self_heal.get(kind="dangling_id") == 1

    @pytest.mark.asyncio
    async def test_dangling_id_skipped_before_match(self, store, engine, pair):
        """Test the loop continues past a dangling ID to a real match."""
        mentee, mentor = pair
        for user_id in pair:
            store.seed(C.USER_COLLECTION, {**user_doc(store, user_id), "mentorshipRequests": ["ghost"]})
        request_id = seed_request(store, mentor, mentee)

        found = assert_ok(await engine.find_request_between(mentor, mentee))

        assert found is not None and found.id == request_id
        assert requests_of(store, mentee) == [request_id]

    @pytest.mark.asyncio
    async def test_corrupt_shared_record_discarded(self, store, engine, pair):
        """Test a shared corrupt record is deleted and pruned from both users."""
        mentee, mentor = pair
        store.seed(C.MENTORSHIP_REQUEST_COLLECTION, {"id": "bad", "mentorID": mentor})
        for user_id in pair:
            store.seed(C.USER_COLLECTION, {**user_doc(store, user_id), "mentorshipRequests": ["bad"]})

        found = assert_ok(await engine.find_request_between(mentor, mentee))

        assert found is None
        assert store.peek(C.MENTORSHIP_REQUEST_COLLECTION, "bad") is None
        assert requests_of(store, mentee) == []
        assert requests_of(store, mentor) == []

    @pytest.mark.asyncio
    async def test_malformed_list_reset(self, store, engine, pair):
        """Test a non-list mentorshipRequests is reset to []."""
        mentee, mentor = pair
        store.seed(C.USER_COLLECTION, {**user_doc(store, mentor), "mentorshipRequests": "oops"})

        found = assert_ok(await engine.find_request_between(mentor, mentee))

        assert found is None
        assert user_doc(store, mentor)["mentorshipRequests"] == []

    @pytest.mark.asyncio
    async def test_missing_user(self, store, engine):
        """Test a lookup involving an unknown user is a plain no-match."""
        mentee = seed_user(store, "alan")

        assert assert_ok(await engine.find_request_between("ghost", mentee)) is None

    @pytest.mark.asyncio
    async def test_list_requests_for_user(self, store, engine):
        """Test requests where the user is either party."""
        a, b, c = seed_mentor(store, "a1a"), seed_mentor(store, "b2b"), seed_user(store, "c3c")
        first = seed_request(store, a, b)
        second = seed_request(store, c, a)
        seed_request(store, b, c)

        docs = assert_ok(await engine.list_requests_for_user(a))

        assert {d["id"] for d in docs} == {first, second}


# =============================================================================
# RECONCILIATION
# =============================================================================
class TestReconcile:
    """Tests for the explicit repair routines."""

    @pytest.mark.asyncio
    async def test_pair_restores_missing_backref(self, store, engine, pair):
        """Test a record referenced by only one side gets the other back."""
        mentee, mentor = pair
        request_id = seed_request(store, mentor, mentee, link=False)
        store.seed(C.USER_COLLECTION, {**user_doc(store, mentor), "mentorshipRequests": [request_id]})

        report = assert_ok(await engine.reconcile_pair(mentee, mentor))

        assert report.restored_refs == 1
        assert requests_of(store, mentee) == [request_id]

    @pytest.mark.asyncio
    async def test_pair_is_idempotent(self, store, engine, pair):
        """Test a second run on repaired state changes nothing."""
        mentee, mentor = pair
        for user_id in pair:
            store.seed(C.USER_COLLECTION, {**user_doc(store, user_id), "mentorshipRequests": ["ghost"]})
        seed_request(store, mentor, mentee, link=False)

        first = assert_ok(await engine.reconcile_pair(mentor, mentee))
        writes = store.write_count()
        second = assert_ok(await engine.reconcile_pair(mentor, mentee))

        assert first.changed
        assert first.pruned_ids == 1
        assert not second.changed
        assert store.write_count() == writes

    @pytest.mark.asyncio
    async def test_pair_discards_corrupt(self, store, engine, pair):
        """Test a shared corrupt record is removed from storage and lists."""
        mentee, mentor = pair
        store.seed(C.MENTORSHIP_REQUEST_COLLECTION, {"id": "bad", "menteeID": mentee})
        for user_id in pair:
            store.seed(C.USER_COLLECTION, {**user_doc(store, user_id), "mentorshipRequests": ["bad"]})

        report = assert_ok(await engine.reconcile_pair(mentor, mentee))

        assert report.discarded_requests == 1
        assert requests_of(store, mentor) == []
        assert store.peek(C.MENTORSHIP_REQUEST_COLLECTION, "bad") is None

    @pytest.mark.asyncio
    async def test_user_prunes_foreign_id(self, store, engine):
        """Test a user referencing a request between two other users."""
        a, b = seed_mentor(store, "a1a"), seed_user(store, "b2b")
        bystander = seed_user(store, "eve")
        request_id = seed_request(store, a, b)
        store.seed(C.USER_COLLECTION, {**user_doc(store, bystander), "mentorshipRequests": [request_id]})

        report = assert_ok(await engine.reconcile_user(bystander))

        assert report.pruned_ids == 1
        assert requests_of(store, bystander) == []
        assert requests_of(store, a) == [request_id]

    @pytest.mark.asyncio
    async def test_user_discards_orphan(self, store, engine, metrics):
        """Test a request whose counterpart was deleted."""
        mentor = seed_mentor(store, "grace")
        request_id = store.seed(C.MENTORSHIP_REQUEST_COLLECTION, {"mentorID": mentor, "menteeID": "ghost"})
        store.seed(C.USER_COLLECTION, {**user_doc(store, mentor), "mentorshipRequests": [request_id]})

        report = assert_ok(await engine.reconcile_user(mentor))

        assert report.discarded_requests == 1
        assert requests_of(store, mentor) == []
        assert store.peek(C.MENTORSHIP_REQUEST_COLLECTION, request_id) is None
        assert metrics.self_heal.get(kind="orphan_request") == 1

    @pytest.mark.asyncio
    async def test_user_restores_counterpart_backref(self, store, engine, pair):
        """Test the counterpart regains a reference it lost."""
        mentee, mentor = pair
        request_id = seed_request(store, mentor, mentee, link=False)

        report = assert_ok(await engine.reconcile_user(mentee))

        assert report.restored_refs == 2
        assert requests_of(store, mentee) == [request_id]
        assert requests_of(store, mentor) == [request_id]

    @pytest.mark.asyncio
    async def test_sweep(self, store, engine):
        """Test the whole-store pass removes orphans and corrupt records."""
        alive = seed_user(store, "alan")
        store.seed(C.MENTORSHIP_REQUEST_COLLECTION, {"id": "orphan", "mentorID": "g1", "menteeID": "g2"})
        store.seed(C.MENTORSHIP_REQUEST_COLLECTION, {"id": "bad", "mentorID": alive})
        store.seed(C.USER_COLLECTION, {**user_doc(store, alive), "mentorshipRequests": ["bad", "ghost"]})

        report = assert_ok(await engine.sweep())

        assert await _all_requests(store) == []
        assert requests_of(store, alive) == []
        assert report.discarded_requests == 2
        assert report.pruned_ids == 1


# =============================================================================
# FAILURE AND CONCURRENCY
# =============================================================================
class TestStorageFailures:
    """Tests for gateway errors surfacing from the engine."""

    @pytest.mark.asyncio
    async def test_create_failure(self, store, engine, pair):
        """Test a failed create leaves no back-references."""
        mentee, mentor = pair
        store.inject_fault(OperationType.CREATE, C.MENTORSHIP_REQUEST_COLLECTION)

        assert_err(await engine.send(user_doc(store, mentee), mentor), StorageError)

        assert requests_of(store, mentee) == []
        assert requests_of(store, mentor) == []

    @pytest.mark.asyncio
    async def test_partial_failure_repaired_by_reconcile(self, store, engine, pair):
        """Test a crash between the two back-reference writes is repairable."""
        mentee, mentor = pair
        store.inject_fault(OperationType.WRITE, C.USER_COLLECTION, doc_id=mentee)

        assert_err(await engine.send(user_doc(store, mentee), mentor), StorageError)
        assert len(requests_of(store, mentor)) == 1
        assert requests_of(store, mentee) == []

        assert_ok(await engine.reconcile_pair(mentor, mentee))

        assert requests_of(store, mentee) == requests_of(store, mentor)


class TestConcurrencyGap:
    """
    Relationship writes are read-modify-write without tokens. These tests
    pin the resulting lost update so a change in behaviour is noticed.
    """

    @pytest.mark.asyncio
    async def test_concurrent_accepts_lose_a_mentee(self):
        """Test two interleaved accepts on one mentor keep only one menteeIDs entry."""
        store = InMemoryDocumentStore(simulate_latency_ms=1)
        engine = MentorshipEngine(store, ConnectionRegistry())
        mentor = seed_mentor(store, "grace")
        first, second = seed_user(store, "alan"), seed_user(store, "ada")
        r1 = seed_request(store, mentor, first)
        r2 = seed_request(store, mentor, second)
        caller = user_doc(store, mentor)

        results = await asyncio.gather(
            engine.accept(caller, r1),
            engine.accept(caller, r2),
        )

        assert all(r.is_ok() for r in results)
        assert user_doc(store, first)["mentorID"] == mentor
        assert user_doc(store, second)["mentorID"] == mentor
        assert len(user_doc(store, mentor)["menteeIDs"]) == 1

        # The clobbered request list is at least repairable.
        report = assert_ok(await engine.reconcile_user(mentor))
        assert report.pruned_ids == 1
        assert requests_of(store, mentor) == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
