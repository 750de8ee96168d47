"""
Profile Service: account creation, profile updates and user reads.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from mentorsync.core import constants as C
from mentorsync.core.config import SessionConfig
from mentorsync.core.errors import MentorSyncError, NotFoundError, ProtocolError
from mentorsync.core.types import Document, DocumentId, Err, Ok, Result
from mentorsync.models import user as U
from mentorsync.models.user import Identity, build_new_user, view_for
from mentorsync.session.mentor_index import MentorAvailabilityIndex
from mentorsync.storage.protocols import DocumentGateway
from mentorsync.validation import ProfileValidator


logger = logging.getLogger(__name__)


# updateProfile list field -> (validator method name, format error)
_RECORD_FIELDS: tuple[tuple[str, str, str], ...] = (
    (U.EXPERIENCE, "validate_experience", "Experiences are not formatted correctly."),
    (U.EDUCATION, "validate_education", "Education is not formatted correctly."),
    (U.CERTIFICATIONS, "validate_certification", "Certifications are not formatted correctly."),
    (U.PROJECTS, "validate_project", "Projects are not formatted correctly."),
)


def _invalid(reason: str) -> Err[ProtocolError]:
    return Err(ProtocolError.invalid_payload(reason))


class ProfileService:
    """
    User document writes and visibility-filtered reads.

    Keeps the mentor availability index in step with every profile write
    that touches `isMentor` or `acceptingMentees`.
    """

    __slots__ = ("_gateway", "_validator", "_index", "_config")

    def __init__(
        self,
        gateway: DocumentGateway,
        validator: ProfileValidator,
        index: MentorAvailabilityIndex,
        config: Optional[SessionConfig] = None,
    ) -> None:
        self._gateway = gateway
        self._validator = validator
        self._index = index
        self._config = config or SessionConfig()

    async def create_user(
        self,
        identity: Identity,
        payload: Any,
        testing: bool = False,
    ) -> Result[DocumentId, MentorSyncError]:
        if not isinstance(payload, dict):
            return _invalid("Data is invalid.")

        first = payload.get(U.FIRST_NAME)
        middle = payload.get(U.MIDDLE_NAME)
        last = payload.get(U.LAST_NAME)
        username = payload.get(U.USERNAME)

        for check in (
            self._validator.validate_first_name(first),
            self._validator.validate_middle_name(middle),
            self._validator.validate_last_name(last),
        ):
            if check.is_err():
                return Err(check.error)

        available = await self._validator.validate_username(username)
        if available.is_err():
            return Err(available.error)

        created = await self._gateway.create(
            C.USER_COLLECTION,
            build_new_user(identity, first, middle, last, username, testing),
        )
        if created.is_err():
            return Err(created.error)

        logger.info("Created user %s for subject %s", created.value, identity.subject)
        return Ok(created.value)

    async def update_profile(
        self,
        user: Document,
        payload: Any,
    ) -> Result[Document, MentorSyncError]:
        """
        Validate and merge a partial profile update.

        The first invalid field fails the whole update; nothing is written.
        Returns the merged document.
        """
        if not isinstance(payload, dict):
            return _invalid("Data is invalid.")

        user_id = user[U.ID]
        update: Document = {}

        if U.USERNAME in payload:
            username = payload[U.USERNAME]
            available = await self._validator.validate_username(username, current_user_id=user_id)
            if available.is_err():
                return Err(available.error)
            update[U.USERNAME] = username.strip()
            update[U.USERNAME_LOWER] = username.strip().lower()

        name_checks: tuple[tuple[str, Callable[[Any], Result[None, ProtocolError]]], ...] = (
            (U.FIRST_NAME, self._validator.validate_first_name),
            (U.MIDDLE_NAME, self._validator.validate_middle_name),
            (U.LAST_NAME, self._validator.validate_last_name),
        )
        for field_name, check in name_checks:
            if field_name in payload:
                verdict = check(payload[field_name])
                if verdict.is_err():
                    return Err(verdict.error)
                update[field_name] = payload[field_name] or None

        if U.SOCIALS in payload:
            socials = payload[U.SOCIALS]
            if not isinstance(socials, list):
                return _invalid("Socials are not formatted correctly.")
            for social in socials:
                verdict = self._validator.validate_social(social)
                if verdict.is_err():
                    return Err(verdict.error)
            update[U.SOCIALS] = socials

        for field_name, method, format_error in _RECORD_FIELDS:
            if field_name not in payload:
                continue
            items = payload[field_name]
            if not isinstance(items, list):
                return _invalid(format_error)
            check = getattr(self._validator, method)
            for item in items:
                verdict = check(item)
                if verdict.is_err():
                    return Err(verdict.error)
            update[field_name] = items

        if U.SOFT_SKILLS in payload:
            skills = payload[U.SOFT_SKILLS]
            if not isinstance(skills, list):
                return _invalid("Soft skills are not formatted correctly.")
            for skill in skills:
                if not isinstance(skill, str) or len(skill.strip()) < self._config.min_profile_item_length:
                    return _invalid(f"Soft skill {skill} is not valid.")
            update[U.SOFT_SKILLS] = skills

        if U.IS_MENTOR in payload:
            if not isinstance(payload[U.IS_MENTOR], bool):
                return _invalid("isMentor value is invalid.")
            update[U.IS_MENTOR] = payload[U.IS_MENTOR]

        if U.ACCEPTING_MENTEES in payload:
            if not isinstance(payload[U.ACCEPTING_MENTEES], bool):
                return _invalid("acceptingMentees value is not valid.")
            update[U.ACCEPTING_MENTEES] = payload[U.ACCEPTING_MENTEES]

        if U.BIO in payload:
            bio = payload[U.BIO]
            if not isinstance(bio, str):
                return _invalid("Bio is not valid.")
            bio = bio.strip()
            if len(bio) > self._config.max_bio_length:
                return _invalid("Bio is too long.")
            update[U.BIO] = bio

        if not update:
            return Ok(user)

        written = await self._gateway.set_with_id(C.USER_COLLECTION, user_id, update)
        if written.is_err():
            return Err(written.error)

        merged = {**user, **update}
        self._index.update_from_flags(user_id, merged)
        logger.debug("Updated profile of %s: %s", user_id, sorted(update))
        return Ok(merged)

    async def get_user_view(
        self,
        requester: Document,
        user_id: Any,
    ) -> Result[Document, MentorSyncError]:
        if not isinstance(user_id, str) or not user_id:
            return _invalid("Invalid userID")
        fetched = await self._gateway.get_with_id(C.USER_COLLECTION, user_id)
        if fetched.is_err():
            return Err(fetched.error)
        if fetched.value is None:
            return Err(NotFoundError.missing("Requested user does not exist", user_id=user_id))
        return Ok(view_for(fetched.value, requester))

    async def list_mentors(self, requester: Document) -> list[Document]:
        """Accepting mentors as `requester` may see them."""
        mentors = await self._index.fetch_all(self._gateway)
        return [view_for(mentor, requester) for mentor in mentors]
