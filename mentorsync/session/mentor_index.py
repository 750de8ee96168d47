"""
Mentor Availability Index

Denormalized, process-wide set of user IDs that currently accept mentees
(`isMentor and acceptingMentees`). Rebuilt from storage at startup,
updated incrementally on profile changes, and pruned lazily when a read
finds an entry whose user cannot be fetched.
"""

from __future__ import annotations

import logging
from typing import Iterator, Optional

from mentorsync.core import constants as C
from mentorsync.core.errors import StorageError
from mentorsync.core.types import Document, DocumentId, Err, Ok, Result
from mentorsync.models import user as U
from mentorsync.observability.metrics import SessionMetrics
from mentorsync.storage.protocols import Combinator, DocumentGateway, Predicate


logger = logging.getLogger(__name__)


class MentorAvailabilityIndex:
    """
    Set of accepting mentors.

    Mutations happen between awaits only; `fetch_all` snapshots the set
    before its first await so concurrent updates cannot break iteration.
    """

    __slots__ = ("_ids", "_metrics")

    def __init__(self, metrics: Optional[SessionMetrics] = None) -> None:
        self._ids: set[DocumentId] = set()
        self._metrics = metrics

    async def rebuild(self, gateway: DocumentGateway) -> Result[int, StorageError]:
        """Replace the contents with every accepting mentor in storage."""
        result = await gateway.get(
            C.USER_COLLECTION,
            [
                Predicate.eq(U.IS_MENTOR, True),
                Predicate.eq(U.ACCEPTING_MENTEES, True),
            ],
            Combinator.AND,
        )
        if result.is_err():
            logger.error("Mentor index rebuild failed: %s", result.error)
            return Err(result.error)

        self._ids = {doc[U.ID] for doc in result.value if doc.get(U.ID)}
        logger.info("Mentor index rebuilt with %d mentors", len(self._ids))
        return Ok(len(self._ids))

    def update_from_flags(self, user_id: DocumentId, doc: Document) -> bool:
        """
        Apply a user's current flags.

        `doc` must be the merged post-update document so that a partial
        update touching only one flag still sees the other.
        Returns True when the user is now indexed.
        """
        if U.is_accepting_mentor(doc):
            self.add(user_id)
            return True
        self.discard(user_id)
        return False

    def add(self, user_id: DocumentId) -> None:
        self._ids.add(user_id)

    def discard(self, user_id: DocumentId) -> None:
        self._ids.discard(user_id)

    def snapshot(self) -> list[DocumentId]:
        return list(self._ids)

    async def fetch_all(self, gateway: DocumentGateway) -> list[Document]:
        """
        Fetch every indexed mentor.

        IDs whose fetch fails or returns nothing are evicted.
        """
        mentors: list[Document] = []
        for user_id in self.snapshot():
            result = await gateway.get_with_id(C.USER_COLLECTION, user_id)
            if result.is_err() or result.value is None:
                logger.info("Evicting stale mentor %s from index", user_id)
                self.discard(user_id)
                if self._metrics:
                    self._metrics.self_heal.inc(kind="stale_mentor")
                continue
            mentors.append(result.value)
        return mentors

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._ids

    def __iter__(self) -> Iterator[DocumentId]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        return len(self._ids)
