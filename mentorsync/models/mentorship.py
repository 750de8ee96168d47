"""
Mentorship request records and the request action vocabulary.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from mentorsync.core.types import Document, DocumentId


MENTOR_ID = "mentorID"
MENTEE_ID = "menteeID"
STATUS = "status"


class MentorshipAction(Enum):
    SEND = "send"
    ACCEPT = "accept"
    DECLINE = "decline"
    CANCEL = "cancel"
    REMOVE_MENTOR = "removeMentor"
    REMOVE_MENTEE = "removeMentee"

    @classmethod
    def parse(cls, raw: Any) -> Optional[MentorshipAction]:
        try:
            return cls(raw)
        except ValueError:
            return None


class RequestStatus(Enum):
    """Status attached to the broadcast when a request is destroyed."""
    ACCEPTED = "accepted"
    DECLINED = "declined"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class MentorshipRequest:
    """
    A pending request from `mentee_id` to `mentor_id`.

    Only well-formed records become instances; `from_document` returns
    None for a record missing either endpoint.
    """
    id: DocumentId
    mentor_id: DocumentId
    mentee_id: DocumentId
    testing: bool = False

    @classmethod
    def from_document(cls, doc: Optional[Document]) -> Optional[MentorshipRequest]:
        if not doc:
            return None
        request_id = doc.get("id")
        mentor_id = doc.get(MENTOR_ID)
        mentee_id = doc.get(MENTEE_ID)
        if not (request_id and mentor_id and mentee_id):
            return None
        if not all(isinstance(v, str) for v in (request_id, mentor_id, mentee_id)):
            return None
        return cls(
            id=request_id,
            mentor_id=mentor_id,
            mentee_id=mentee_id,
            testing=bool(doc.get("testing", False)),
        )

    def connects(self, mentor_id: DocumentId, mentee_id: DocumentId) -> bool:
        """Exact orientation match."""
        return self.mentor_id == mentor_id and self.mentee_id == mentee_id

    @property
    def parties(self) -> tuple[DocumentId, DocumentId]:
        return (self.mentor_id, self.mentee_id)

    def to_document(self, status: Optional[RequestStatus] = None) -> Document:
        doc: Document = {
            "id": self.id,
            MENTOR_ID: self.mentor_id,
            MENTEE_ID: self.mentee_id,
        }
        if self.testing:
            doc["testing"] = True
        if status is not None:
            doc[STATUS] = status.value
        return doc


def build_request_document(
    mentor_id: DocumentId,
    mentee_id: DocumentId,
    testing: bool = False,
) -> Document:
    doc: Document = {MENTOR_ID: mentor_id, MENTEE_ID: mentee_id}
    if testing:
        doc["testing"] = True
    return doc
