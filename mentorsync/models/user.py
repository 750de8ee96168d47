"""
User documents: field names, construction and per-viewer visibility.

Field names are the camelCase keys clients already consume.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from mentorsync.core.types import Document, DocumentId


# =============================================================================
# FIELD NAMES
# =============================================================================
ID = "id"
OAUTH_SUB_ID = "OAuthSubID"
EMAIL = "email"
DISPLAY_PICTURE_URL = "DisplayPictureURL"
USERNAME = "username"
USERNAME_LOWER = "usernameLower"
FIRST_NAME = "fName"
MIDDLE_NAME = "mName"
LAST_NAME = "lName"
BIO = "bio"
SOCIALS = "socials"
EXPERIENCE = "experience"
EDUCATION = "education"
CERTIFICATIONS = "certifications"
PROJECTS = "projects"
SOFT_SKILLS = "softSkills"
IS_MENTOR = "isMentor"
IS_MENTEE = "isMentee"
ACCEPTING_MENTEES = "acceptingMentees"
MENTOR_ID = "mentorID"
MENTEE_IDS = "menteeIDs"
ASSESSMENTS = "assessments"
MENTORSHIP_REQUESTS = "mentorshipRequests"
TESTING = "testing"

# Never visible to anyone but the user themself.
PRIVATE_FIELDS: tuple[str, ...] = (MENTEE_IDS, IS_MENTEE, OAUTH_SUB_ID, EMAIL)

# Visible to the user and to their mentor.
MENTOR_VISIBLE_FIELDS: tuple[str, ...] = (ASSESSMENTS, MENTOR_ID)


# =============================================================================
# IDENTITY
# =============================================================================
@dataclass(frozen=True, slots=True)
class Identity:
    """
    Verified caller identity handed over by the identity provider.

    Token verification happens upstream; the subject is trusted here.
    """
    subject: str
    email: Optional[str] = None
    display_picture_url: Optional[str] = None


def build_new_user(
    identity: Identity,
    first_name: str,
    middle_name: Optional[str],
    last_name: str,
    username: str,
    testing: bool = False,
) -> Document:
    """Document written by `createUser` (username already validated)."""
    trimmed = username.strip()
    doc: Document = {
        USERNAME: trimmed,
        USERNAME_LOWER: trimmed.lower(),
        FIRST_NAME: first_name,
        MIDDLE_NAME: middle_name or None,
        LAST_NAME: last_name,
        OAUTH_SUB_ID: identity.subject,
        DISPLAY_PICTURE_URL: identity.display_picture_url,
        EMAIL: identity.email,
    }
    if testing:
        doc[TESTING] = True
    return doc


# =============================================================================
# RELATIONSHIP FIELD ACCESS
# =============================================================================
def id_list(doc: Optional[Document], field: str) -> list[DocumentId]:
    """
    Read an ID-list field, treating missing or malformed values as empty.

    Use `has_malformed_list` to detect values that need resetting.
    """
    if doc is None:
        return []
    value = doc.get(field)
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def has_malformed_list(doc: Optional[Document], field: str) -> bool:
    """True when the field is present, non-null and not a list."""
    if doc is None:
        return False
    value = doc.get(field)
    return value is not None and not isinstance(value, list)


def without(ids: list[DocumentId], target: DocumentId) -> list[DocumentId]:
    """Copy of `ids` with every occurrence of `target` removed."""
    return [item for item in ids if item != target]


def appended(ids: list[DocumentId], target: DocumentId) -> list[DocumentId]:
    """Copy of `ids` with `target` appended unless already present."""
    if target in ids:
        return list(ids)
    return [*ids, target]


def is_accepting_mentor(doc: Optional[Document]) -> bool:
    return bool(doc) and doc.get(IS_MENTOR) is True and doc.get(ACCEPTING_MENTEES) is True


# =============================================================================
# VISIBILITY
# =============================================================================
def view_for(target: Document, requester: Optional[Document]) -> Document:
    """
    Copy of `target` containing only what `requester` may see.

    - No requester, or the user themself: everything.
    - The target's mentor: everything except PRIVATE_FIELDS.
    - Anyone else: additionally loses MENTOR_VISIBLE_FIELDS.
    """
    view: dict[str, Any] = dict(target)
    if requester is None or requester.get(ID) == target.get(ID):
        return view

    for field in PRIVATE_FIELDS:
        view.pop(field, None)

    requester_id = requester.get(ID)
    if requester_id is not None and target.get(MENTOR_ID) == requester_id:
        return view

    for field in MENTOR_VISIBLE_FIELDS:
        view.pop(field, None)
    return view
