"""
Mentorship Module: request lifecycle, relationships and reconciliation.
"""

from mentorsync.mentorship.engine import MentorshipEngine, ReconcileReport

__all__ = [
    "MentorshipEngine",
    "ReconcileReport",
]
