from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Mapping

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from gatehouse.db.models import IdentityLink
from gatehouse.db.repos.base import BaseRepository
from gatehouse.logging_config import log_with_fields
from gatehouse.sso.oidc.errors import IdentityLinkConflict

logger = logging.getLogger("gatehouse.db.identity_links")


def serialize_profile(profile: Mapping[str, object]) -> str:
    return json.dumps(profile, sort_keys=True, default=str)


class IdentityLinkRepository(BaseRepository[IdentityLink]):
    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, IdentityLink)

    async def get_by_subject(self, subject_id: str) -> IdentityLink | None:
        return await self.first_where(IdentityLink.external_subject_id == subject_id)

    async def find_user_id_by_subject(self, subject_id: str) -> uuid.UUID | None:
        return await self.value_where(
            IdentityLink.user_id,
            IdentityLink.external_subject_id == subject_id,
        )

    async def insert(
        self,
        subject_id: str,
        user_id: uuid.UUID,
        profile: Mapping[str, object],
    ) -> IdentityLink:
        """Create the link, relying on the unique constraint to settle races.

        Raises ``IdentityLinkConflict`` when another request linked the same
        subject first. The session is unusable until rolled back afterwards.
        """
        link = IdentityLink(
            external_subject_id=subject_id,
            user_id=user_id,
            cached_profile=serialize_profile(profile),
        )
        try:
            return await self.add(link)
        except IntegrityError as exc:
            raise IdentityLinkConflict(subject_id) from exc

    async def update_profile(self, subject_id: str, profile: Mapping[str, object]) -> bool:
        link = await self.get_by_subject(subject_id)
        if link is None:
            log_with_fields(
                logger,
                logging.WARNING,
                "identity link profile refresh skipped: link not found",
                subject_id=subject_id,
            )
            return False

        link.cached_profile = serialize_profile(profile)
        await self.session.flush()
        return True
