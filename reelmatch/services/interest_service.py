"""
ReelMatch — Interest Store (movie likes, read-only)

Read access to the likes written by the likes subsystem.  The matching core
never mutates these rows; every "shared items" list it shows is recomputed
live from here, so unliking a movie after a match removes it from the
shared list while the match itself persists.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

import structlog
from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from reelmatch.config import get_settings
from reelmatch.models.interest import MovieLike
from reelmatch.schemas.match import SharedItem
from reelmatch.utils.timeutil import as_utc

logger = structlog.get_logger("reelmatch.interest_service")


@dataclass(frozen=True)
class LikedItem:
    item_id: int
    title: str
    poster_path: str | None
    release_year: str | None
    created_at: datetime


@dataclass(frozen=True)
class ItemLike:
    """One other user's like on an item the viewer also likes."""

    user_id: uuid.UUID
    item_id: int
    created_at: datetime


class InterestStore:
    """Query helpers over ``movie_likes``."""

    def __init__(
        self,
        poster_image_base: str | None = None,
        poster_size: str | None = None,
    ) -> None:
        settings = get_settings()
        self.poster_image_base = (
            poster_image_base if poster_image_base is not None else settings.POSTER_IMAGE_BASE
        )
        self.poster_size = poster_size if poster_size is not None else settings.POSTER_SIZE

    # ── Public API ────────────────────────────────────────────────────────

    def poster_url(self, poster_path: str | None) -> str | None:
        """Build the full CDN URL for a raw poster path, or ``None``."""
        if not poster_path or not poster_path.strip():
            return None
        path = poster_path if poster_path.startswith("/") else f"/{poster_path}"
        return f"{self.poster_image_base.rstrip('/')}/{self.poster_size}{path}"

    async def liked_items(
        self,
        db_session: AsyncSession,
        user_id: uuid.UUID,
    ) -> dict[int, LikedItem]:
        """Return the user's likes keyed by item id (empty for unknown users)."""
        stmt = select(MovieLike).where(MovieLike.user_id == user_id)
        result = await db_session.execute(stmt)
        return {
            like.item_id: LikedItem(
                item_id=like.item_id,
                title=like.title,
                poster_path=like.poster_path,
                release_year=like.release_year,
                created_at=as_utc(like.created_at),
            )
            for like in result.scalars().all()
        }

    async def likes_for_items(
        self,
        db_session: AsyncSession,
        item_ids: Iterable[int],
        exclude_user_id: uuid.UUID,
    ) -> list[ItemLike]:
        """Return every other user's like on any of ``item_ids``."""
        ids = list(item_ids)
        if not ids:
            return []

        stmt = select(
            MovieLike.user_id, MovieLike.item_id, MovieLike.created_at
        ).where(
            MovieLike.item_id.in_(ids),
            MovieLike.user_id != exclude_user_id,
        )
        result = await db_session.execute(stmt)
        return [
            ItemLike(user_id=row.user_id, item_id=row.item_id, created_at=as_utc(row.created_at))
            for row in result.all()
        ]

    async def shared_items(
        self,
        db_session: AsyncSession,
        viewer_id: uuid.UUID,
        other_id: uuid.UUID,
    ) -> list[SharedItem]:
        """Live intersection of two users' likes, ordered by item id."""
        if viewer_id == other_id:
            return []
        shared = await self.shared_items_many(db_session, viewer_id, [other_id])
        return shared.get(other_id, [])

    async def shared_items_many(
        self,
        db_session: AsyncSession,
        viewer_id: uuid.UUID,
        other_ids: Iterable[uuid.UUID],
    ) -> dict[uuid.UUID, list[SharedItem]]:
        """Batched ``shared_items`` for one viewer against many users.

        Titles and poster data come from the viewer's own like snapshot.
        Users with nothing in common are absent from the returned dict.
        """
        ids = [oid for oid in other_ids if oid != viewer_id]
        if not ids:
            return {}

        mine = aliased(MovieLike)
        theirs = aliased(MovieLike)
        stmt = (
            select(theirs.user_id, mine)
            .join(
                theirs,
                and_(theirs.item_id == mine.item_id, theirs.user_id.in_(ids)),
            )
            .where(mine.user_id == viewer_id)
            .order_by(theirs.user_id, mine.item_id)
        )
        result = await db_session.execute(stmt)

        shared: dict[uuid.UUID, list[SharedItem]] = {}
        for other_id, like in result.all():
            shared.setdefault(other_id, []).append(
                SharedItem(
                    item_id=like.item_id,
                    title=like.title,
                    poster_url=self.poster_url(like.poster_path),
                    release_year=like.release_year,
                )
            )

        logger.debug(
            "shared_items_computed",
            viewer_id=str(viewer_id),
            others=len(ids),
            with_overlap=len(shared),
        )
        return shared

    async def item_title(
        self,
        db_session: AsyncSession,
        item_id: int,
        user_ids: Iterable[uuid.UUID],
    ) -> str | None:
        """Title of ``item_id`` as snapshotted by any of ``user_ids``."""
        stmt = (
            select(MovieLike.title)
            .where(
                MovieLike.item_id == item_id,
                MovieLike.user_id.in_(list(user_ids)),
                MovieLike.title != "",
            )
            .limit(1)
        )
        result = await db_session.execute(stmt)
        return result.scalar_one_or_none()
