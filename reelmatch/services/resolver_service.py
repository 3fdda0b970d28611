"""
ReelMatch — Mutual Match Resolver

Turns two opposing requests for the same item into exactly one
conversation room with two memberships, inside the caller's transaction.

Concurrency
-----------
Two users may reciprocate at the same instant.  Work on one pair is
serialised with ``acquire_pair_lock`` (a transaction-scoped advisory lock on
PostgreSQL; SQLite transactions already start with ``BEGIN IMMEDIATE``).
Should two writers still race to the room insert, ``uq_room_pair`` rejects
the second; its SAVEPOINT is rolled back and the winner's room is returned,
so both callers see the same room id.

A room counts as the pair's match only while both membership rows exist.
The chat side may delete one; a later reciprocal request then restores the
missing rows instead of inserting a second room.
"""

from __future__ import annotations

import hashlib
import uuid
from dataclasses import dataclass

import structlog
from sqlalchemy import and_, delete, func, insert, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from reelmatch.models.match import (
    ConversationRoom,
    MatchRequest,
    RoomMembership,
    ordered_pair,
)
from reelmatch.utils.timeutil import utcnow

logger = structlog.get_logger("reelmatch.resolver_service")


@dataclass(frozen=True)
class ResolutionOutcome:
    matched: bool
    room_id: uuid.UUID | None = None
    created: bool = False


def pair_lock_key(user_a_id: uuid.UUID, user_b_id: uuid.UUID) -> int:
    """Signed 64-bit advisory lock key for the unordered pair."""
    low, high = ordered_pair(user_a_id, user_b_id)
    digest = hashlib.blake2b(low.bytes + high.bytes, digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


async def acquire_pair_lock(
    db_session: AsyncSession,
    user_a_id: uuid.UUID,
    user_b_id: uuid.UUID,
) -> None:
    """Block until no other transaction is working on this pair.

    Released automatically at commit or rollback.
    """
    dialect = db_session.get_bind().dialect.name
    if dialect != "postgresql":
        return
    key = pair_lock_key(user_a_id, user_b_id)
    await db_session.execute(select(func.pg_advisory_xact_lock(key)))
    logger.debug("pair_lock_acquired", key=key)


async def find_pair_room(
    db_session: AsyncSession,
    user_a_id: uuid.UUID,
    user_b_id: uuid.UUID,
) -> ConversationRoom | None:
    """The room stored for the pair, whatever state its memberships are in."""
    low, high = ordered_pair(user_a_id, user_b_id)
    stmt = select(ConversationRoom).where(
        ConversationRoom.user_low_id == low,
        ConversationRoom.user_high_id == high,
    )
    result = await db_session.execute(stmt)
    return result.scalar_one_or_none()


async def find_room(
    db_session: AsyncSession,
    user_a_id: uuid.UUID,
    user_b_id: uuid.UUID,
) -> ConversationRoom | None:
    """The pair's room, counted only while both memberships exist.

    Same rule as status and the active list: ``is_active`` is ignored, a
    missing membership row is not.
    """
    low, high = ordered_pair(user_a_id, user_b_id)
    low_member = aliased(RoomMembership)
    high_member = aliased(RoomMembership)
    stmt = (
        select(ConversationRoom)
        .join(
            low_member,
            and_(
                low_member.room_id == ConversationRoom.id,
                low_member.user_id == low,
            ),
        )
        .join(
            high_member,
            and_(
                high_member.room_id == ConversationRoom.id,
                high_member.user_id == high,
            ),
        )
        .where(
            ConversationRoom.user_low_id == low,
            ConversationRoom.user_high_id == high,
        )
    )
    result = await db_session.execute(stmt)
    return result.scalar_one_or_none()


class MutualMatchResolver:
    """Detects reciprocity and materialises the room."""

    async def _delete_pair_requests(
        self,
        db_session: AsyncSession,
        user_a_id: uuid.UUID,
        user_b_id: uuid.UUID,
        item_id: int,
    ) -> int:
        stmt = delete(MatchRequest).where(
            MatchRequest.item_id == item_id,
            or_(
                and_(
                    MatchRequest.requestor_id == user_a_id,
                    MatchRequest.target_user_id == user_b_id,
                ),
                and_(
                    MatchRequest.requestor_id == user_b_id,
                    MatchRequest.target_user_id == user_a_id,
                ),
            ),
        )
        result = await db_session.execute(stmt)
        return result.rowcount or 0

    async def _opposite_exists(
        self,
        db_session: AsyncSession,
        user_a_id: uuid.UUID,
        user_b_id: uuid.UUID,
        item_id: int,
    ) -> bool:
        stmt = select(MatchRequest.id).where(
            MatchRequest.requestor_id == user_b_id,
            MatchRequest.target_user_id == user_a_id,
            MatchRequest.item_id == item_id,
        )
        result = await db_session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def _restore_memberships(
        self,
        db_session: AsyncSession,
        room: ConversationRoom,
    ) -> None:
        """Re-add whichever membership rows the room has lost."""
        result = await db_session.execute(
            select(RoomMembership.user_id).where(RoomMembership.room_id == room.id)
        )
        present = set(result.scalars().all())
        now = utcnow()
        missing = [
            {"room_id": room.id, "user_id": uid, "is_active": True, "joined_at": now}
            for uid in (room.user_low_id, room.user_high_id)
            if uid not in present
        ]
        if missing:
            await db_session.execute(insert(RoomMembership), missing)

    async def _create_room(
        self,
        db_session: AsyncSession,
        user_a_id: uuid.UUID,
        user_b_id: uuid.UUID,
        item_id: int,
    ) -> tuple[uuid.UUID, bool]:
        """Insert room + memberships; on a pair conflict return the winner's room."""
        low, high = ordered_pair(user_a_id, user_b_id)
        now = utcnow()
        try:
            async with db_session.begin_nested():
                room = ConversationRoom(
                    user_low_id=low,
                    user_high_id=high,
                    item_id=item_id,
                    created_at=now,
                )
                db_session.add(room)
                await db_session.flush()
                db_session.add_all(
                    [
                        RoomMembership(
                            room_id=room.id, user_id=uid, is_active=True, joined_at=now
                        )
                        for uid in (low, high)
                    ]
                )
            return room.id, True
        except IntegrityError:
            existing = await find_room(db_session, user_a_id, user_b_id)
            if existing is None:
                raise
            logger.info(
                "room_insert_raced",
                room_id=str(existing.id),
                item_id=item_id,
            )
            return existing.id, False

    # ── Public API ────────────────────────────────────────────────────────

    async def try_resolve(
        self,
        db_session: AsyncSession,
        user_a_id: uuid.UUID,
        user_b_id: uuid.UUID,
        item_id: int,
    ) -> ResolutionOutcome:
        """Resolve reciprocity for ``item_id`` right after A -> B was recorded.

        Parameters
        ----------
        db_session:
            Session with an open transaction; the pair lock should already
            be held.
        user_a_id:
            The user whose request was just recorded.
        user_b_id:
            Its target.
        item_id:
            Item of the request just recorded.

        Returns
        -------
        ResolutionOutcome
            ``matched`` is ``True`` whenever the pair now owns a room;
            ``created`` only for the call that inserted it, or that re-added
            the memberships of a room which had lost one.
        """
        log = logger.bind(
            user_a_id=str(user_a_id),
            user_b_id=str(user_b_id),
            item_id=item_id,
        )

        existing = await find_room(db_session, user_a_id, user_b_id)
        if existing is not None:
            removed = await self._delete_pair_requests(
                db_session, user_a_id, user_b_id, item_id
            )
            log.info("pair_already_matched", room_id=str(existing.id), removed=removed)
            return ResolutionOutcome(matched=True, room_id=existing.id, created=False)

        if not await self._opposite_exists(db_session, user_a_id, user_b_id, item_id):
            log.debug("no_reciprocal_request")
            return ResolutionOutcome(matched=False)

        orphaned = await find_pair_room(db_session, user_a_id, user_b_id)
        if orphaned is not None:
            await self._restore_memberships(db_session, orphaned)
            log.info("orphaned_room_restored", room_id=str(orphaned.id))
            room_id, created = orphaned.id, True
        else:
            room_id, created = await self._create_room(
                db_session, user_a_id, user_b_id, item_id
            )
        removed = await self._delete_pair_requests(
            db_session, user_a_id, user_b_id, item_id
        )

        log.info(
            "mutual_match_resolved",
            room_id=str(room_id),
            created=created,
            requests_removed=removed,
        )
        return ResolutionOutcome(matched=True, room_id=room_id, created=created)
