"""
Document models: users, assessments and mentorship requests.
"""

from mentorsync.models.user import Identity, build_new_user, view_for
from mentorsync.models.assessment import AssessmentAction, is_valid_answered_questions
from mentorsync.models.mentorship import (
    MentorshipAction,
    MentorshipRequest,
    RequestStatus,
)

__all__ = [
    "Identity",
    "build_new_user",
    "view_for",
    "AssessmentAction",
    "is_valid_answered_questions",
    "MentorshipAction",
    "MentorshipRequest",
    "RequestStatus",
]
