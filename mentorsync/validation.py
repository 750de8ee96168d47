"""
Profile Field Validation

The ProfileValidator protocol is the seam for field-level rules. Sessions
only depend on the protocol; `BasicProfileValidator` is the structural
default shipped with the package and can be replaced wholesale.

Every check returns Result[None, ProtocolError] whose message is shown to
the client after the command's subject prefix.
"""

from __future__ import annotations

import re
from typing import Any, Optional, Protocol, runtime_checkable

from mentorsync.core import constants as C
from mentorsync.core.errors import MentorSyncError, ProtocolError
from mentorsync.core.types import DocumentId, Err, Ok, Result
from mentorsync.models import user as U
from mentorsync.storage.protocols import DocumentGateway, Predicate


_USERNAME_RE = re.compile(r"^[A-Za-z0-9_.\-]+$")


@runtime_checkable
class ProfileValidator(Protocol):
    """Field-level validation rules for profile data."""

    def validate_first_name(self, value: Any) -> Result[None, ProtocolError]: ...

    def validate_middle_name(self, value: Any) -> Result[None, ProtocolError]: ...

    def validate_last_name(self, value: Any) -> Result[None, ProtocolError]: ...

    async def validate_username(
        self,
        value: Any,
        current_user_id: Optional[DocumentId] = None,
    ) -> Result[None, MentorSyncError]: ...

    def validate_social(self, value: Any) -> Result[None, ProtocolError]: ...

    def validate_experience(self, value: Any) -> Result[None, ProtocolError]: ...

    def validate_education(self, value: Any) -> Result[None, ProtocolError]: ...

    def validate_certification(self, value: Any) -> Result[None, ProtocolError]: ...

    def validate_project(self, value: Any) -> Result[None, ProtocolError]: ...


def _fail(field_name: str, reason: str) -> Err[ProtocolError]:
    return Err(ProtocolError.validation_failed(field_name, reason))


class BasicProfileValidator:
    """
    Structural checks only: types, lengths and username availability.

    Usernames are unique case-insensitively through the `usernameLower`
    field, so availability is a single equality query.
    """

    __slots__ = ("_gateway", "_min_item_length")

    def __init__(
        self,
        gateway: DocumentGateway,
        min_item_length: int = C.MIN_PROFILE_ITEM_LENGTH,
    ) -> None:
        self._gateway = gateway
        self._min_item_length = min_item_length

    # -------------------------------------------------------------------------
    # Names
    # -------------------------------------------------------------------------

    @staticmethod
    def _name(field_name: str, label: str, value: Any) -> Result[None, ProtocolError]:
        if not isinstance(value, str):
            return _fail(field_name, f"{label} is not valid.")
        stripped = value.strip()
        if not (C.MIN_NAME_LENGTH <= len(stripped) <= C.MAX_NAME_LENGTH):
            return _fail(
                field_name,
                f"{label} must be between {C.MIN_NAME_LENGTH} and "
                f"{C.MAX_NAME_LENGTH} characters.",
            )
        return Ok(None)

    def validate_first_name(self, value: Any) -> Result[None, ProtocolError]:
        return self._name(U.FIRST_NAME, "First name", value)

    def validate_middle_name(self, value: Any) -> Result[None, ProtocolError]:
        # Empty middle names are stored as null.
        if value is None or value == "":
            return Ok(None)
        return self._name(U.MIDDLE_NAME, "Middle name", value)

    def validate_last_name(self, value: Any) -> Result[None, ProtocolError]:
        return self._name(U.LAST_NAME, "Last name", value)

    # -------------------------------------------------------------------------
    # Username
    # -------------------------------------------------------------------------

    async def validate_username(
        self,
        value: Any,
        current_user_id: Optional[DocumentId] = None,
    ) -> Result[None, MentorSyncError]:
        if not isinstance(value, str):
            return _fail(U.USERNAME, "Username is not valid.")
        trimmed = value.strip()
        if not (C.MIN_USERNAME_LENGTH <= len(trimmed) <= C.MAX_USERNAME_LENGTH):
            return _fail(
                U.USERNAME,
                f"Username must be between {C.MIN_USERNAME_LENGTH} and "
                f"{C.MAX_USERNAME_LENGTH} characters.",
            )
        if not _USERNAME_RE.match(trimmed):
            return _fail(
                U.USERNAME,
                "Username may only contain letters, numbers, '.', '_' and '-'.",
            )

        existing = await self._gateway.get(
            C.USER_COLLECTION,
            [Predicate.eq(U.USERNAME_LOWER, trimmed.lower())],
        )
        if existing.is_err():
            return Err(existing.error)
        if any(doc.get(U.ID) != current_user_id for doc in existing.value):
            return _fail(U.USERNAME, "Username is already taken.")
        return Ok(None)

    # -------------------------------------------------------------------------
    # List items
    # -------------------------------------------------------------------------

    def validate_social(self, value: Any) -> Result[None, ProtocolError]:
        if not isinstance(value, str) or len(value.strip()) < self._min_item_length:
            return _fail(U.SOCIALS, f"Social {value} is not valid.")
        return Ok(None)

    def _record(self, field_name: str, label: str, value: Any) -> Result[None, ProtocolError]:
        if not isinstance(value, dict) or not value:
            return _fail(field_name, f"{label} is not formatted correctly.")
        for key, item in value.items():
            if not isinstance(key, str):
                return _fail(field_name, f"{label} is not formatted correctly.")
            if item is not None and not isinstance(item, (str, int, float, bool)):
                return _fail(field_name, f"{label} field '{key}' is not valid.")
        return Ok(None)

    def validate_experience(self, value: Any) -> Result[None, ProtocolError]:
        return self._record(U.EXPERIENCE, "Experience", value)

    def validate_education(self, value: Any) -> Result[None, ProtocolError]:
        return self._record(U.EDUCATION, "Education", value)

    def validate_certification(self, value: Any) -> Result[None, ProtocolError]:
        return self._record(U.CERTIFICATIONS, "Certification", value)

    def validate_project(self, value: Any) -> Result[None, ProtocolError]:
        return self._record(U.PROJECTS, "Project", value)
