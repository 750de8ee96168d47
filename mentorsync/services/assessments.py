"""
Assessment Service: owner CRUD/publish, mentor-aware reads and the
question catalog.
"""

from __future__ import annotations

import logging
from typing import Any

from mentorsync.core import constants as C
from mentorsync.core.errors import (
    AuthorizationError,
    ConsistencyError,
    MentorSyncError,
    NotFoundError,
    ProtocolError,
)
from mentorsync.core.types import Document, DocumentId, Err, Ok, Result
from mentorsync.models import assessment as A
from mentorsync.models import user as U
from mentorsync.models.assessment import AssessmentAction, is_valid_answered_questions
from mentorsync.storage.protocols import DocumentGateway


logger = logging.getLogger(__name__)


def _invalid(reason: str) -> Err[ProtocolError]:
    return Err(ProtocolError.invalid_payload(reason))


class AssessmentService:
    """
    Assessments are only ever written by their owner.

    Readers: the owner sees everything; the owner's mentor sees published
    assessments in full and unpublished ones redacted; anyone else is
    refused.
    """

    __slots__ = ("_gateway",)

    def __init__(self, gateway: DocumentGateway) -> None:
        self._gateway = gateway

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def submit(
        self,
        user: Document,
        payload: Any,
        testing: bool = False,
    ) -> Result[Any, MentorSyncError]:
        """
        Run one `submitAssessment` action.

        Returns:
            Ok(new_id) for create, Ok(True) otherwise
        """
        if not isinstance(payload, dict):
            return _invalid("Data is invalid.")

        action = AssessmentAction.parse(payload.get("action"))
        if action is None:
            return _invalid("Assessment action is invalid.")

        assessment_id = payload.get("id")
        if action.needs_id and (not isinstance(assessment_id, str) or not assessment_id):
            return _invalid("AssessmentID value is invalid.")

        questions = payload.get(A.QUESTIONS)
        if action.needs_questions:
            if not isinstance(questions, list):
                return _invalid("Questions value is invalid.")
            if not is_valid_answered_questions(questions):
                return _invalid("Questions are not valid")

        if action is AssessmentAction.CREATE:
            return await self._create(user, questions, testing)

        owned = await self._owned(user, assessment_id, action)
        if owned.is_err():
            return Err(owned.error)
        assessment = owned.value

        if action is AssessmentAction.EDIT:
            written = await self._gateway.set_with_id(
                C.ASSESSMENT_COLLECTION, assessment_id, {A.QUESTIONS: questions},
            )
        elif action is AssessmentAction.DELETE:
            return await self._delete(user, assessment_id)
        else:
            publish = action is AssessmentAction.PUBLISH
            if bool(assessment.get(A.PUBLISHED)) == publish:
                return Err(AuthorizationError.precondition_failed(
                    f"You cannot {action.value} this assessment, as it is already {action.value}ed.",
                    assessment_id=assessment_id,
                ))
            written = await self._gateway.set_with_id(
                C.ASSESSMENT_COLLECTION, assessment_id, {A.PUBLISHED: publish},
            )

        if written.is_err():
            return Err(written.error)
        logger.info("Assessment %s: %s by %s", assessment_id, action.value, user[U.ID])
        return Ok(True)

    async def _create(
        self,
        user: Document,
        questions: list[dict[str, Any]],
        testing: bool,
    ) -> Result[DocumentId, MentorSyncError]:
        user_id = user[U.ID]
        created = await self._gateway.create(
            C.ASSESSMENT_COLLECTION,
            A.build_assessment(user_id, questions, testing),
        )
        if created.is_err():
            return Err(created.error)

        written = await self._gateway.set_with_id(
            C.USER_COLLECTION,
            user_id,
            {
                U.IS_MENTEE: True,
                U.ASSESSMENTS: U.appended(U.id_list(user, U.ASSESSMENTS), created.value),
            },
        )
        if written.is_err():
            return Err(written.error)

        logger.info("Assessment %s created by %s", created.value, user_id)
        return Ok(created.value)

    async def _delete(self, user: Document, assessment_id: DocumentId) -> Result[Any, MentorSyncError]:
        deleted = await self._gateway.delete_with_id(C.ASSESSMENT_COLLECTION, assessment_id)
        if deleted.is_err():
            return Err(deleted.error)
        written = await self._gateway.set_with_id(
            C.USER_COLLECTION,
            user[U.ID],
            {U.ASSESSMENTS: U.without(U.id_list(user, U.ASSESSMENTS), assessment_id)},
        )
        if written.is_err():
            return Err(written.error)
        logger.info("Assessment %s deleted by %s", assessment_id, user[U.ID])
        return Ok(True)

    async def _owned(
        self,
        user: Document,
        assessment_id: DocumentId,
        action: AssessmentAction,
    ) -> Result[Document, MentorSyncError]:
        """The assessment, provided `user` owns it on both sides."""
        refused = AuthorizationError.forbidden(
            f"You cannot {action.value} this assessment, as it does not exist, "
            "or doesn't belong to you.",
            assessment_id=assessment_id,
        )
        if assessment_id not in U.id_list(user, U.ASSESSMENTS):
            return Err(refused)
        fetched = await self._gateway.get_with_id(C.ASSESSMENT_COLLECTION, assessment_id)
        if fetched.is_err():
            return Err(fetched.error)
        if fetched.value is None or fetched.value.get(A.USER_ID) != user[U.ID]:
            return Err(refused)
        return Ok(fetched.value)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_view(
        self,
        requester: Document,
        assessment_id: Any,
    ) -> Result[Document, MentorSyncError]:
        if not isinstance(assessment_id, str) or not assessment_id:
            return _invalid(f"Invalid assessmentID: {assessment_id}")

        fetched = await self._gateway.get_with_id(C.ASSESSMENT_COLLECTION, assessment_id)
        if fetched.is_err():
            return Err(fetched.error)
        assessment = fetched.value
        if assessment is None:
            return Err(NotFoundError.missing(
                "The requested assessment does not exist.", assessment_id=assessment_id,
            ))

        broken = ConsistencyError.corrupt_assessment(assessment_id)
        owner_id = assessment.get(A.USER_ID)
        if not isinstance(owner_id, str):
            return Err(broken)
        if owner_id == requester[U.ID]:
            return Ok(assessment)

        owner = await self._gateway.get_with_id(C.USER_COLLECTION, owner_id)
        if owner.is_err():
            return Err(owner.error)
        if owner.value is None:
            return Err(broken)

        if owner.value.get(U.MENTOR_ID) == requester[U.ID]:
            if assessment.get(A.PUBLISHED) is True:
                return Ok(assessment)
            return Ok(A.redacted(assessment))

        return Err(AuthorizationError.forbidden(
            "You do not have permission to view this assessment",
            assessment_id=assessment_id,
        ))

    async def catalog(self) -> list[Document]:
        """Every assessment question; empty when storage fails."""
        result = await self._gateway.get(C.ASSESSMENT_QUESTION_COLLECTION)
        if result.is_err():
            logger.error("Question catalog unavailable: %s", result.error)
            return []
        return result.value
