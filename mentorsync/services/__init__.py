"""
Services: profile and assessment operations used by authenticated sessions.
"""

from mentorsync.services.profile import ProfileService
from mentorsync.services.assessments import AssessmentService

__all__ = [
    "ProfileService",
    "AssessmentService",
]
