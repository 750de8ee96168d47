"""
Assessment documents and the question catalog.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from mentorsync.core.types import Document, DocumentId, Timestamp


USER_ID = "userID"
QUESTIONS = "questions"
PUBLISHED = "published"
DATE = "date"

QUESTION = "question"
ANSWER = "answer"
INPUT_TYPE = "inputType"

# inputType -> accepted answer types
ANSWER_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "number": (int, float),
    "boolean": (bool,),
}


class AssessmentAction(Enum):
    CREATE = "create"
    EDIT = "edit"
    DELETE = "delete"
    PUBLISH = "publish"
    UNPUBLISH = "unpublish"

    @classmethod
    def parse(cls, raw: Any) -> Optional[AssessmentAction]:
        try:
            return cls(raw)
        except ValueError:
            return None

    @property
    def needs_id(self) -> bool:
        return self is not AssessmentAction.CREATE

    @property
    def needs_questions(self) -> bool:
        return self in (AssessmentAction.CREATE, AssessmentAction.EDIT)


def _is_answered_question(item: Any) -> bool:
    if not isinstance(item, dict):
        return False
    question = item.get(QUESTION)
    if not isinstance(question, str) or not question.strip():
        return False
    if ANSWER not in item:
        return False
    answer = item[ANSWER]
    input_type = item.get(INPUT_TYPE, "string")
    accepted = ANSWER_TYPES.get(input_type)
    if accepted is None:
        return False
    if input_type == "number" and isinstance(answer, bool):
        return False
    return isinstance(answer, accepted)


def is_valid_answered_questions(questions: Any) -> bool:
    """At least one question, each with a question text and a typed answer."""
    return (
        isinstance(questions, list)
        and len(questions) > 0
        and all(_is_answered_question(q) for q in questions)
    )


def build_assessment(
    owner_id: DocumentId,
    questions: list[dict[str, Any]],
    testing: bool = False,
) -> Document:
    doc: Document = {
        QUESTIONS: questions,
        USER_ID: owner_id,
        DATE: Timestamp.now().millis,
        PUBLISHED: False,
    }
    if testing:
        doc["testing"] = True
    return doc


def redacted(assessment: Document) -> Document:
    """What a mentor sees of an unpublished assessment."""
    return {PUBLISHED: False, "id": assessment.get("id")}
