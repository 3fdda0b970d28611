"""
ReelMatch — Identity Provider (display-name projection)

The matching core never owns accounts.  It only needs to know whether a
user exists and what name to show for them.
"""

from __future__ import annotations

import uuid
from typing import Iterable

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reelmatch.config import get_settings
from reelmatch.models.user import User

logger = structlog.get_logger("reelmatch.identity_service")


class IdentityProvider:
    """Read-only lookups against ``users``."""

    def __init__(self, unknown_display_name: str | None = None) -> None:
        self.unknown_display_name = (
            unknown_display_name
            if unknown_display_name is not None
            else get_settings().UNKNOWN_DISPLAY_NAME
        )

    async def display_names(
        self,
        db_session: AsyncSession,
        user_ids: Iterable[uuid.UUID],
    ) -> dict[uuid.UUID, str]:
        """Map every requested id to a display name.

        Ids with no user row (or a blank name) map to the fallback name, so
        callers can index the result without checking.
        """
        ids = set(user_ids)
        if not ids:
            return {}

        stmt = select(User.id, User.display_name).where(User.id.in_(ids))
        result = await db_session.execute(stmt)
        found = {row.id: row.display_name for row in result.all()}

        missing = ids - found.keys()
        if missing:
            logger.debug("display_names_missing", count=len(missing))

        return {
            uid: (found.get(uid) or "").strip() or self.unknown_display_name
            for uid in ids
        }

    async def exists(self, db_session: AsyncSession, user_id: uuid.UUID) -> bool:
        stmt = select(User.id).where(User.id == user_id)
        result = await db_session.execute(stmt)
        return result.scalar_one_or_none() is not None
