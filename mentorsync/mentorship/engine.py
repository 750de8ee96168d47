"""
Mentorship Relationship Engine

Implements the mentorship request lifecycle (send/accept/decline/cancel),
direct relationship mutation (removeMentor/removeMentee) and the repair
routines that keep the redundantly-stored request records consistent.

Storage Model:
    A pending request lives in three places:

        mentorshipRequest/<id>           {id, mentorID, menteeID}
        user/<mentorID>.mentorshipRequests  [..., id]
        user/<menteeID>.mentorshipRequests  [..., id]

    The record exists iff its ID is in both users' lists. Every mutation
    is a sequence of single-document writes; there are no cross-document
    transactions, so a failure or an interleaving session can leave the
    copies diverged. Divergence is repaired on read (`find_request_between`)
    and explicitly (`reconcile_pair`, `reconcile_user`, `sweep`).

    A relationship is `mentee.mentorID` plus `mentor.menteeIDs`, also two
    independent writes.

Concurrency:
    Two sessions mutating the same user's relationship fields can clobber
    each other (read-modify-write without tokens). This is a known gap.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from mentorsync.core import constants as C
from mentorsync.core.errors import (
    AuthorizationError,
    ConsistencyError,
    MentorSyncError,
    NotFoundError,
    ProtocolError,
    StorageError,
)
from mentorsync.core.types import Document, DocumentId, Err, Ok, Result
from mentorsync.models import user as U
from mentorsync.models.mentorship import (
    MENTEE_ID,
    MENTOR_ID,
    MentorshipAction,
    MentorshipRequest,
    RequestStatus,
    build_request_document,
)
from mentorsync.observability.metrics import SessionMetrics
from mentorsync.session.registry import ConnectionRegistry
from mentorsync.storage.protocols import Combinator, DocumentGateway, Predicate


logger = logging.getLogger(__name__)


# =============================================================================
# REPAIR REPORT
# =============================================================================
@dataclass(slots=True)
class ReconcileReport:
    """What a repair pass changed."""
    pruned_ids: int = 0
    discarded_requests: int = 0
    restored_refs: int = 0
    reset_lists: int = 0

    @property
    def changed(self) -> bool:
        return any((
            self.pruned_ids,
            self.discarded_requests,
            self.restored_refs,
            self.reset_lists,
        ))

    def absorb(self, other: ReconcileReport) -> None:
        self.pruned_ids += other.pruned_ids
        self.discarded_requests += other.discarded_requests
        self.restored_refs += other.restored_refs
        self.reset_lists += other.reset_lists


# =============================================================================
# ENGINE
# =============================================================================
class MentorshipEngine:
    """
    Mentorship request lifecycle and relationship mutation.

    Usage:
        engine = MentorshipEngine(gateway, registry)
        result = await engine.handle(caller_doc, {"action": "send", "mentorID": b})

    `caller` arguments are the caller's freshly re-read user document.
    """

    __slots__ = ("_gateway", "_registry", "_metrics")

    def __init__(
        self,
        gateway: DocumentGateway,
        registry: ConnectionRegistry,
        metrics: Optional[SessionMetrics] = None,
    ) -> None:
        self._gateway = gateway
        self._registry = registry
        self._metrics = metrics

    # -------------------------------------------------------------------------
    # Command entry point
    # -------------------------------------------------------------------------

    async def handle(
        self,
        caller: Document,
        payload: Any,
        testing: bool = False,
    ) -> Result[Any, MentorSyncError]:
        """Validate a `mentorshipRequest` payload and run its action."""
        if not isinstance(payload, dict):
            return Err(ProtocolError.invalid_payload("Data is invalid."))

        action = MentorshipAction.parse(payload.get("action"))
        if action is None:
            return Err(ProtocolError.invalid_payload("Action is invalid."))

        if action is MentorshipAction.SEND:
            mentor_id = payload.get("mentorID")
            if not _is_id(mentor_id):
                return Err(ProtocolError.invalid_payload("MentorID is invalid"))
            return await self.send(caller, mentor_id, testing)

        if action in (MentorshipAction.ACCEPT, MentorshipAction.DECLINE, MentorshipAction.CANCEL):
            request_id = payload.get("mentorshipRequestID")
            if not _is_id(request_id):
                return Err(ProtocolError.invalid_payload("MentorshipRequestID is invalid"))
            if action is MentorshipAction.ACCEPT:
                return await self.accept(caller, request_id)
            if action is MentorshipAction.DECLINE:
                return await self.decline(caller, request_id)
            return await self.cancel(caller, request_id)

        if action is MentorshipAction.REMOVE_MENTOR:
            return await self.remove_mentor(caller)

        mentee_id = payload.get("menteeID")
        if not _is_id(mentee_id):
            return Err(ProtocolError.invalid_payload("MenteeID is not valid."))
        return await self.remove_mentee(caller, mentee_id)

    # -------------------------------------------------------------------------
    # Request lifecycle
    # -------------------------------------------------------------------------

    async def send(
        self,
        caller: Document,
        mentor_id: DocumentId,
        testing: bool = False,
    ) -> Result[MentorshipRequest, MentorSyncError]:
        """Caller (as mentee) asks `mentor_id` to mentor them."""
        caller_id = caller[U.ID]
        if mentor_id == caller_id:
            return Err(AuthorizationError.precondition_failed(
                "You cannot send yourself a mentorship request.",
            ))

        fetched = await self._gateway.get_with_id(C.USER_COLLECTION, mentor_id)
        if fetched.is_err():
            return Err(fetched.error)
        mentor = fetched.value
        if mentor is None:
            return Err(NotFoundError.missing("That user does not exist", user_id=mentor_id))
        if mentor.get(U.IS_MENTOR) is not True:
            return Err(AuthorizationError.precondition_failed(
                "That user is not a mentor", user_id=mentor_id,
            ))
        if mentor.get(U.ACCEPTING_MENTEES) is not True:
            return Err(AuthorizationError.precondition_failed(
                "That user is not currently accepting mentees.", user_id=mentor_id,
            ))

        for pair in ((mentor_id, caller_id), (caller_id, mentor_id)):
            existing = await self.find_request_between(*pair)
            if existing.is_err():
                return Err(existing.error)
            if existing.value is not None:
                return Err(AuthorizationError.precondition_failed(
                    "You have already sent a request",
                    request_id=existing.value.id,
                ))

        return await self.add_request(mentor_id, caller_id, testing)

    async def accept(
        self,
        caller: Document,
        request_id: DocumentId,
    ) -> Result[None, MentorSyncError]:
        loaded = await self._load_request(request_id, "accept")
        if loaded.is_err():
            return Err(loaded.error)
        request = loaded.value
        if request.mentor_id != caller[U.ID]:
            return Err(AuthorizationError.forbidden(
                "You do not have permission to accept this request.",
                request_id=request_id,
            ))
        if caller.get(U.MENTOR_ID) == request.mentee_id:
            return Err(AuthorizationError.precondition_failed(
                "You cannot mentor your own mentor.",
                request_id=request_id,
            ))

        removed = await self.remove_request(request, RequestStatus.ACCEPTED)
        if removed.is_err():
            return removed
        return await self.add_mentorship(request.mentor_id, request.mentee_id)

    async def decline(
        self,
        caller: Document,
        request_id: DocumentId,
    ) -> Result[None, MentorSyncError]:
        loaded = await self._load_request(request_id, "decline")
        if loaded.is_err():
            return Err(loaded.error)
        request = loaded.value
        if request.mentor_id != caller[U.ID]:
            return Err(AuthorizationError.forbidden(
                "You do not have permission to decline this request.",
                request_id=request_id,
            ))
        return await self.remove_request(request, RequestStatus.DECLINED)

    async def cancel(
        self,
        caller: Document,
        request_id: DocumentId,
    ) -> Result[None, MentorSyncError]:
        loaded = await self._load_request(request_id, "cancel")
        if loaded.is_err():
            return Err(loaded.error)
        request = loaded.value
        if request.mentee_id != caller[U.ID]:
            return Err(AuthorizationError.forbidden(
                "You do not have permission to cancel this request.",
                request_id=request_id,
            ))
        return await self.remove_request(request, RequestStatus.CANCELLED)

    async def _load_request(
        self,
        request_id: DocumentId,
        verb: str,
    ) -> Result[MentorshipRequest, MentorSyncError]:
        fetched = await self._gateway.get_with_id(C.MENTORSHIP_REQUEST_COLLECTION, request_id)
        if fetched.is_err():
            return Err(fetched.error)
        if fetched.value is None:
            return Err(NotFoundError.missing(
                "Action failed, that mentorship request does not exist.",
                request_id=request_id,
            ))
        request = MentorshipRequest.from_document(fetched.value)
        if request is None:
            discarded = await self.discard_corrupt_request(request_id, fetched.value)
            if discarded.is_err():
                return Err(discarded.error)
            return Err(ConsistencyError.corrupt_request(request_id, verb))
        return Ok(request)

    # -------------------------------------------------------------------------
    # Relationship mutation
    # -------------------------------------------------------------------------

    async def remove_mentor(self, caller: Document) -> Result[None, MentorSyncError]:
        mentor_id = caller.get(U.MENTOR_ID)
        if not mentor_id:
            return Err(AuthorizationError.precondition_failed("You do not have a mentor"))
        return await self.remove_mentorship(mentor_id, caller[U.ID])

    async def remove_mentee(
        self,
        caller: Document,
        mentee_id: DocumentId,
    ) -> Result[None, MentorSyncError]:
        mentees = U.id_list(caller, U.MENTEE_IDS)
        if not mentees:
            return Err(AuthorizationError.precondition_failed("You do not have mentees"))
        if mentee_id not in mentees:
            return Err(AuthorizationError.precondition_failed(
                "That is not one of your mentees.", mentee_id=mentee_id,
            ))
        return await self.remove_mentorship(caller[U.ID], mentee_id)

    async def add_mentorship(
        self,
        mentor_id: DocumentId,
        mentee_id: DocumentId,
    ) -> Result[None, MentorSyncError]:
        """
        Make `mentor_id` the mentor of `mentee_id`.

        A mentee has one mentor: an existing mentor loses the mentee first.
        Two independent writes, not atomic.
        """
        users = await self._fetch_pair(mentor_id, mentee_id)
        if users.is_err():
            return Err(users.error)
        mentor, mentee = users.value

        if mentor.get(U.MENTOR_ID) == mentee_id:
            return Err(AuthorizationError.precondition_failed(
                "You cannot mentor your own mentor.",
            ))

        previous = mentee.get(U.MENTOR_ID)
        if previous and previous != mentor_id:
            detached = await self._detach_mentee(previous, mentee_id)
            if detached.is_err():
                return detached

        written = await self._gateway.set_with_id(
            C.USER_COLLECTION, mentee_id, {U.MENTOR_ID: mentor_id},
        )
        if written.is_err():
            return Err(written.error)

        written = await self._gateway.set_with_id(
            C.USER_COLLECTION,
            mentor_id,
            {U.MENTEE_IDS: U.appended(U.id_list(mentor, U.MENTEE_IDS), mentee_id)},
        )
        if written.is_err():
            return Err(written.error)

        logger.info("Mentorship established: %s mentors %s", mentor_id, mentee_id)
        return Ok(None)

    async def remove_mentorship(
        self,
        mentor_id: DocumentId,
        mentee_id: DocumentId,
    ) -> Result[None, MentorSyncError]:
        """Dissolve the relationship on both sides (two independent writes)."""
        users = await self._fetch_pair(mentor_id, mentee_id)
        if users.is_err():
            return Err(users.error)
        mentor, mentee = users.value

        if mentee.get(U.MENTOR_ID) == mentor_id:
            written = await self._gateway.set_with_id(
                C.USER_COLLECTION, mentee_id, {U.MENTOR_ID: None},
            )
            if written.is_err():
                return Err(written.error)

        written = await self._gateway.set_with_id(
            C.USER_COLLECTION,
            mentor_id,
            {U.MENTEE_IDS: U.without(U.id_list(mentor, U.MENTEE_IDS), mentee_id)},
        )
        if written.is_err():
            return Err(written.error)

        logger.info("Mentorship removed: %s no longer mentors %s", mentor_id, mentee_id)
        return Ok(None)

    async def _detach_mentee(
        self,
        mentor_id: DocumentId,
        mentee_id: DocumentId,
    ) -> Result[None, MentorSyncError]:
        fetched = await self._gateway.get_with_id(C.USER_COLLECTION, mentor_id)
        if fetched.is_err():
            return Err(fetched.error)
        if fetched.value is None:
            return Ok(None)
        mentees = U.id_list(fetched.value, U.MENTEE_IDS)
        if mentee_id not in mentees:
            return Ok(None)
        written = await self._gateway.set_with_id(
            C.USER_COLLECTION, mentor_id, {U.MENTEE_IDS: U.without(mentees, mentee_id)},
        )
        if written.is_err():
            return Err(written.error)
        return Ok(None)

    async def _fetch_pair(
        self,
        first_id: DocumentId,
        second_id: DocumentId,
    ) -> Result[tuple[Document, Document], MentorSyncError]:
        docs: list[Document] = []
        for user_id in (first_id, second_id):
            fetched = await self._gateway.get_with_id(C.USER_COLLECTION, user_id)
            if fetched.is_err():
                return Err(fetched.error)
            if fetched.value is None:
                return Err(NotFoundError.missing("That user does not exist", user_id=user_id))
            docs.append(fetched.value)
        return Ok((docs[0], docs[1]))

    # -------------------------------------------------------------------------
    # Request records
    # -------------------------------------------------------------------------

    async def add_request(
        self,
        mentor_id: DocumentId,
        mentee_id: DocumentId,
        testing: bool = False,
    ) -> Result[MentorshipRequest, MentorSyncError]:
        """Create the record, reference it from both users, broadcast it."""
        created = await self._gateway.create(
            C.MENTORSHIP_REQUEST_COLLECTION,
            build_request_document(mentor_id, mentee_id, testing),
        )
        if created.is_err():
            return Err(created.error)
        request = MentorshipRequest(
            id=created.value,
            mentor_id=mentor_id,
            mentee_id=mentee_id,
            testing=testing,
        )

        for user_id in request.parties:
            referenced = await self._reference(user_id, request.id)
            if referenced.is_err():
                return Err(referenced.error)

        self._registry.broadcast_request(request.parties, request.to_document())
        logger.info("Mentorship request %s created (%s -> %s)", request.id, mentee_id, mentor_id)
        return Ok(request)

    async def remove_request(
        self,
        request: MentorshipRequest,
        status: RequestStatus,
    ) -> Result[None, MentorSyncError]:
        """Delete the record and both back-references, broadcast with status."""
        deleted = await self._gateway.delete_with_id(C.MENTORSHIP_REQUEST_COLLECTION, request.id)
        if deleted.is_err():
            return Err(deleted.error)

        for user_id in request.parties:
            pruned = await self._prune(user_id, request.id)
            if pruned.is_err():
                return Err(pruned.error)

        self._registry.broadcast_request(request.parties, request.to_document(status))
        logger.info("Mentorship request %s %s", request.id, status.value)
        return Ok(None)

    async def discard_corrupt_request(
        self,
        request_id: DocumentId,
        doc: Optional[Document],
        holders: Iterable[DocumentId] = (),
    ) -> Result[None, StorageError]:
        """
        Delete a malformed record outright, without broadcasting.

        Back-references are pruned from whichever endpoint IDs the record
        still carries plus any `holders` known to reference it.
        """
        deleted = await self._gateway.delete_with_id(C.MENTORSHIP_REQUEST_COLLECTION, request_id)
        if deleted.is_err():
            return Err(deleted.error)

        endpoints = [doc.get(MENTOR_ID), doc.get(MENTEE_ID)] if doc else []
        owners: list[DocumentId] = []
        for candidate in (*endpoints, *holders):
            if _is_id(candidate) and candidate not in owners:
                owners.append(candidate)

        for user_id in owners:
            pruned = await self._prune(user_id, request_id)
            if pruned.is_err():
                return Err(pruned.error)

        self._heal("corrupt_request")
        logger.warning("Discarded corrupt mentorship request %s", request_id)
        return Ok(None)

    async def _reference(
        self,
        user_id: DocumentId,
        request_id: DocumentId,
    ) -> Result[bool, StorageError]:
        """Append `request_id` to a user's list. Ok(False) when nothing changed."""
        fetched = await self._gateway.get_with_id(C.USER_COLLECTION, user_id)
        if fetched.is_err():
            return Err(fetched.error)
        if fetched.value is None:
            return Ok(False)
        current = U.id_list(fetched.value, U.MENTORSHIP_REQUESTS)
        if request_id in current and not U.has_malformed_list(fetched.value, U.MENTORSHIP_REQUESTS):
            return Ok(False)
        written = await self._gateway.set_with_id(
            C.USER_COLLECTION,
            user_id,
            {U.MENTORSHIP_REQUESTS: U.appended(current, request_id)},
        )
        if written.is_err():
            return Err(written.error)
        return Ok(True)

    async def _prune(
        self,
        user_id: DocumentId,
        request_id: DocumentId,
    ) -> Result[bool, StorageError]:
        """Remove `request_id` from a user's list. Ok(False) when nothing changed."""
        fetched = await self._gateway.get_with_id(C.USER_COLLECTION, user_id)
        if fetched.is_err():
            return Err(fetched.error)
        if fetched.value is None:
            return Ok(False)
        current = U.id_list(fetched.value, U.MENTORSHIP_REQUESTS)
        if request_id not in current and not U.has_malformed_list(fetched.value, U.MENTORSHIP_REQUESTS):
            return Ok(False)
        written = await self._gateway.set_with_id(
            C.USER_COLLECTION,
            user_id,
            {U.MENTORSHIP_REQUESTS: U.without(current, request_id)},
        )
        if written.is_err():
            return Err(written.error)
        return Ok(True)

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    async def find_request_between(
        self,
        mentor_id: DocumentId,
        mentee_id: DocumentId,
    ) -> Result[Optional[MentorshipRequest], StorageError]:
        """
        The pending request from `mentee_id` to `mentor_id`, if any.

        Direction-sensitive. Repairs what it trips over: dangling IDs are
        pruned from both users, corrupt records are discarded and
        non-list `mentorshipRequests` values are reset to [].

        Complexity: O(min(m, n)) record fetches over the two lists
        """
        users: list[Document] = []
        for user_id in (mentor_id, mentee_id):
            fetched = await self._gateway.get_with_id(C.USER_COLLECTION, user_id)
            if fetched.is_err():
                return Err(fetched.error)
            if fetched.value is None:
                return Ok(None)
            users.append(fetched.value)

        malformed = False
        for doc in users:
            if U.has_malformed_list(doc, U.MENTORSHIP_REQUESTS):
                malformed = True
                reset = await self._reset_list(doc[U.ID])
                if reset.is_err():
                    return Err(reset.error)
        if malformed:
            return Ok(None)

        mentor_ids = U.id_list(users[0], U.MENTORSHIP_REQUESTS)
        mentee_ids = U.id_list(users[1], U.MENTORSHIP_REQUESTS)
        if not mentor_ids or not mentee_ids:
            return Ok(None)

        smaller, larger = sorted((mentor_ids, mentee_ids), key=len)
        larger_set = set(larger)

        for request_id in smaller:
            if request_id not in larger_set:
                continue

            fetched = await self._gateway.get_with_id(C.MENTORSHIP_REQUEST_COLLECTION, request_id)
            if fetched.is_err():
                return Err(fetched.error)

            if fetched.value is None:
                for user_id in (mentor_id, mentee_id):
                    pruned = await self._prune(user_id, request_id)
                    if pruned.is_err():
                        return Err(pruned.error)
                self._heal("dangling_id")
                logger.info("Pruned dangling request %s from %s and %s", request_id, mentor_id, mentee_id)
                continue

            request = MentorshipRequest.from_document(fetched.value)
            if request is None:
                discarded = await self.discard_corrupt_request(
                    request_id, fetched.value, holders=(mentor_id, mentee_id),
                )
                if discarded.is_err():
                    return Err(discarded.error)
                continue

            if request.connects(mentor_id, mentee_id):
                return Ok(request)

        return Ok(None)

    async def list_requests_for_user(
        self,
        user_id: DocumentId,
    ) -> Result[list[Document], StorageError]:
        """Every request record where the user is mentor or mentee."""
        return await self._gateway.get(
            C.MENTORSHIP_REQUEST_COLLECTION,
            [Predicate.eq(MENTOR_ID, user_id), Predicate.eq(MENTEE_ID, user_id)],
            Combinator.OR,
        )

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    async def reconcile_pair(
        self,
        first_id: DocumentId,
        second_id: DocumentId,
    ) -> Result[ReconcileReport, StorageError]:
        """
        Repair every request between two users, in both directions.

        Idempotent: a second run on the repaired state changes nothing.
        """
        report = ReconcileReport()
        users: dict[DocumentId, Document] = {}
        for user_id in (first_id, second_id):
            fetched = await self._gateway.get_with_id(C.USER_COLLECTION, user_id)
            if fetched.is_err():
                return Err(fetched.error)
            if fetched.value is None:
                return Ok(report)
            users[user_id] = fetched.value

        lists: dict[DocumentId, list[DocumentId]] = {}
        for user_id, doc in users.items():
            if U.has_malformed_list(doc, U.MENTORSHIP_REQUESTS):
                report.reset_lists += 1
                self._heal("malformed_list")
            lists[user_id] = U.id_list(doc, U.MENTORSHIP_REQUESTS)
        original = {user_id: list(ids) for user_id, ids in lists.items()}

        records: dict[DocumentId, Document] = {}
        for mentor_id, mentee_id in ((first_id, second_id), (second_id, first_id)):
            found = await self._gateway.get(
                C.MENTORSHIP_REQUEST_COLLECTION,
                [Predicate.eq(MENTOR_ID, mentor_id), Predicate.eq(MENTEE_ID, mentee_id)],
            )
            if found.is_err():
                return Err(found.error)
            for doc in found.value:
                records[doc[U.ID]] = doc

        shared = set(lists[first_id]) & set(lists[second_id])
        for request_id in shared - set(records):
            fetched = await self._gateway.get_with_id(C.MENTORSHIP_REQUEST_COLLECTION, request_id)
            if fetched.is_err():
                return Err(fetched.error)
            if fetched.value is None:
                for user_id in lists:
                    lists[user_id] = U.without(lists[user_id], request_id)
                report.pruned_ids += 1
                self._heal("dangling_id")
            elif MentorshipRequest.from_document(fetched.value) is None:
                records[request_id] = fetched.value

        for request_id, doc in records.items():
            if MentorshipRequest.from_document(doc) is None:
                for user_id in lists:
                    lists[user_id] = U.without(lists[user_id], request_id)
                deleted = await self._gateway.delete_with_id(
                    C.MENTORSHIP_REQUEST_COLLECTION, request_id,
                )
                if deleted.is_err():
                    return Err(deleted.error)
                report.discarded_requests += 1
                self._heal("corrupt_request")
                continue
            for user_id in lists:
                if request_id not in lists[user_id]:
                    lists[user_id] = U.appended(lists[user_id], request_id)
                    report.restored_refs += 1
                    self._heal("missing_backref")

        for user_id, ids in lists.items():
            if ids != original[user_id] or U.has_malformed_list(users[user_id], U.MENTORSHIP_REQUESTS):
                written = await self._gateway.set_with_id(
                    C.USER_COLLECTION, user_id, {U.MENTORSHIP_REQUESTS: ids},
                )
                if written.is_err():
                    return Err(written.error)

        if report.changed:
            logger.info("Reconciled pair %s/%s: %s", first_id, second_id, report)
        return Ok(report)

    async def reconcile_user(self, user_id: DocumentId) -> Result[ReconcileReport, StorageError]:
        """
        Repair every request the user references or is party to.

        - IDs with no record, or whose record does not involve the user,
          are pruned from the user's list
        - corrupt records, and records whose counterpart user is gone,
          are discarded
        - valid records get their missing back-references restored
        """
        report = ReconcileReport()
        fetched = await self._gateway.get_with_id(C.USER_COLLECTION, user_id)
        if fetched.is_err():
            return Err(fetched.error)
        user = fetched.value
        if user is None:
            return Ok(report)

        malformed = U.has_malformed_list(user, U.MENTORSHIP_REQUESTS)
        if malformed:
            report.reset_lists += 1
            self._heal("malformed_list")
        ids = U.id_list(user, U.MENTORSHIP_REQUESTS)
        original = list(ids)

        records: dict[DocumentId, Document] = {}
        party_to = await self.list_requests_for_user(user_id)
        if party_to.is_err():
            return Err(party_to.error)
        for doc in party_to.value:
            records[doc[U.ID]] = doc

        for request_id in list(ids):
            if request_id in records:
                continue
            record = await self._gateway.get_with_id(C.MENTORSHIP_REQUEST_COLLECTION, request_id)
            if record.is_err():
                return Err(record.error)
            if record.value is None:
                ids = U.without(ids, request_id)
                report.pruned_ids += 1
                self._heal("dangling_id")
            elif MentorshipRequest.from_document(record.value) is None:
                records[request_id] = record.value
            else:
                # Valid record between two other users.
                ids = U.without(ids, request_id)
                report.pruned_ids += 1
                self._heal("foreign_id")

        for request_id, doc in records.items():
            request = MentorshipRequest.from_document(doc)
            if request is None:
                ids = U.without(ids, request_id)
                discarded = await self.discard_corrupt_request(request_id, doc)
                if discarded.is_err():
                    return Err(discarded.error)
                report.discarded_requests += 1
                continue

            counterpart = request.mentee_id if request.mentor_id == user_id else request.mentor_id
            other = await self._gateway.get_with_id(C.USER_COLLECTION, counterpart)
            if other.is_err():
                return Err(other.error)
            if other.value is None:
                ids = U.without(ids, request_id)
                deleted = await self._gateway.delete_with_id(
                    C.MENTORSHIP_REQUEST_COLLECTION, request_id,
                )
                if deleted.is_err():
                    return Err(deleted.error)
                report.discarded_requests += 1
                self._heal("orphan_request")
                continue

            if request_id not in ids:
                ids = U.appended(ids, request_id)
                report.restored_refs += 1
                self._heal("missing_backref")
            referenced = await self._reference(counterpart, request_id)
            if referenced.is_err():
                return Err(referenced.error)
            if referenced.value:
                report.restored_refs += 1
                self._heal("missing_backref")

        if ids != original or malformed:
            written = await self._gateway.set_with_id(
                C.USER_COLLECTION, user_id, {U.MENTORSHIP_REQUESTS: ids},
            )
            if written.is_err():
                return Err(written.error)

        if report.changed:
            logger.info("Reconciled user %s: %s", user_id, report)
        return Ok(report)

    async def sweep(self) -> Result[ReconcileReport, StorageError]:
        """
        Reconcile the whole store.

        Records whose endpoints are both gone are unreachable from any
        user, so they are scanned for directly before the per-user pass.
        """
        report = ReconcileReport()

        requests = await self._gateway.get(C.MENTORSHIP_REQUEST_COLLECTION)
        if requests.is_err():
            return Err(requests.error)
        for doc in requests.value:
            request = MentorshipRequest.from_document(doc)
            if request is None:
                continue
            alive = False
            for user_id in request.parties:
                fetched = await self._gateway.get_with_id(C.USER_COLLECTION, user_id)
                if fetched.is_err():
                    return Err(fetched.error)
                alive = alive or fetched.value is not None
            if not alive:
                deleted = await self._gateway.delete_with_id(
                    C.MENTORSHIP_REQUEST_COLLECTION, request.id,
                )
                if deleted.is_err():
                    return Err(deleted.error)
                report.discarded_requests += 1
                self._heal("orphan_request")

        corrupt = [doc for doc in requests.value if MentorshipRequest.from_document(doc) is None]
        for doc in corrupt:
            discarded = await self.discard_corrupt_request(doc[U.ID], doc)
            if discarded.is_err():
                return Err(discarded.error)
            report.discarded_requests += 1

        users = await self._gateway.get(C.USER_COLLECTION)
        if users.is_err():
            return Err(users.error)
        for doc in users.value:
            repaired = await self.reconcile_user(doc[U.ID])
            if repaired.is_err():
                return Err(repaired.error)
            report.absorb(repaired.value)

        logger.info("Reconciliation sweep finished: %s", report)
        return Ok(report)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _reset_list(self, user_id: DocumentId) -> Result[None, StorageError]:
        written = await self._gateway.set_with_id(
            C.USER_COLLECTION, user_id, {U.MENTORSHIP_REQUESTS: []},
        )
        if written.is_err():
            return Err(written.error)
        self._heal("malformed_list")
        logger.warning("Reset malformed mentorshipRequests on user %s", user_id)
        return Ok(None)

    def _heal(self, kind: str) -> None:
        if self._metrics:
            self._metrics.self_heal.inc(kind=kind)


def _is_id(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())
