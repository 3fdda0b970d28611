"""
ReelMatch — Status Resolver

Derives the viewer's relationship with another user from the committed
request ledger and room state.

Priority:
  1. matched           a room with memberships for both users (active or not)
  2. mutual_interest   requests in both directions, but on different items
  3. pending_sent      only outgoing requests
  4. pending_received  only incoming requests
  5. none

``matched`` requires a room, and a room only exists after same-item
reciprocity, so cross-item interest is surfaced as the advisory
``mutual_interest`` state rather than as a match.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Protocol, Sequence

import structlog
from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from reelmatch.models.match import ConversationRoom, MatchRequest, RoomMembership
from reelmatch.schemas.match import MatchState, MatchStatusResponse
from reelmatch.services.interest_service import InterestStore
from reelmatch.utils.timeutil import as_utc

logger = structlog.get_logger("reelmatch.status_service")


class _RequestLike(Protocol):
    item_id: int
    created_at: datetime


def _latest(requests: Sequence[_RequestLike]) -> datetime | None:
    if not requests:
        return None
    return max(as_utc(r.created_at) for r in requests)


def derive_status(
    outgoing: Sequence[_RequestLike],
    incoming: Sequence[_RequestLike],
    room_id: uuid.UUID | None,
) -> MatchStatusResponse:
    """Pure state derivation; ``shared_items`` is left empty for the caller."""
    outgoing_ids = sorted({r.item_id for r in outgoing})
    incoming_ids = sorted({r.item_id for r in incoming})

    if room_id is not None:
        return MatchStatusResponse(
            state=MatchState.MATCHED,
            can_match=False,
            can_decline=False,
            room_id=room_id,
        )

    if outgoing and incoming:
        return MatchStatusResponse(
            state=MatchState.MUTUAL_INTEREST,
            can_match=True,
            can_decline=True,
            request_sent_at=_latest(incoming),
            incoming_item_ids=incoming_ids,
            outgoing_item_ids=outgoing_ids,
        )

    if outgoing:
        return MatchStatusResponse(
            state=MatchState.PENDING_SENT,
            can_match=False,
            can_decline=False,
            request_sent_at=_latest(outgoing),
            outgoing_item_ids=outgoing_ids,
        )

    if incoming:
        return MatchStatusResponse(
            state=MatchState.PENDING_RECEIVED,
            can_match=True,
            can_decline=True,
            request_sent_at=_latest(incoming),
            incoming_item_ids=incoming_ids,
        )

    return MatchStatusResponse(state=MatchState.NONE, can_match=True, can_decline=False)


class StatusResolver:
    def __init__(self, interest_store: InterestStore | None = None) -> None:
        self.interest_store = interest_store or InterestStore()

    async def matched_rooms(
        self,
        db_session: AsyncSession,
        viewer_id: uuid.UUID,
        other_ids: Sequence[uuid.UUID],
    ) -> dict[uuid.UUID, uuid.UUID]:
        """Map each of ``other_ids`` sharing a room with the viewer to its room id.

        Only rooms holding memberships for both users count; ``is_active``
        is ignored.
        """
        if not other_ids:
            return {}
        mine = aliased(RoomMembership)
        theirs = aliased(RoomMembership)
        stmt = (
            select(theirs.user_id, ConversationRoom.id)
            .join(
                mine,
                and_(mine.room_id == ConversationRoom.id, mine.user_id == viewer_id),
            )
            .join(
                theirs,
                and_(
                    theirs.room_id == ConversationRoom.id,
                    theirs.user_id.in_(other_ids),
                    theirs.user_id != viewer_id,
                ),
            )
        )
        result = await db_session.execute(stmt)
        return {other_id: room_id for other_id, room_id in result.all()}

    async def pair_requests(
        self,
        db_session: AsyncSession,
        viewer_id: uuid.UUID,
        other_ids: Sequence[uuid.UUID],
    ) -> list[MatchRequest]:
        """Every request between the viewer and any of ``other_ids``, either way."""
        if not other_ids:
            return []
        stmt = select(MatchRequest).where(
            or_(
                (MatchRequest.requestor_id == viewer_id)
                & MatchRequest.target_user_id.in_(other_ids),
                (MatchRequest.target_user_id == viewer_id)
                & MatchRequest.requestor_id.in_(other_ids),
            )
        )
        result = await db_session.execute(stmt)
        return list(result.scalars().all())

    async def statuses(
        self,
        db_session: AsyncSession,
        viewer_id: uuid.UUID,
        other_ids: Sequence[uuid.UUID],
    ) -> dict[uuid.UUID, MatchStatusResponse]:
        """Batched derivation for many users, two queries in total.

        ``shared_items`` is not filled in.
        """
        ids = [oid for oid in dict.fromkeys(other_ids) if oid != viewer_id]
        rooms = await self.matched_rooms(db_session, viewer_id, ids)
        requests = await self.pair_requests(db_session, viewer_id, ids)

        outgoing: dict[uuid.UUID, list[MatchRequest]] = {}
        incoming: dict[uuid.UUID, list[MatchRequest]] = {}
        for req in requests:
            if req.requestor_id == viewer_id:
                outgoing.setdefault(req.target_user_id, []).append(req)
            else:
                incoming.setdefault(req.requestor_id, []).append(req)

        return {
            oid: derive_status(
                outgoing.get(oid, []), incoming.get(oid, []), rooms.get(oid)
            )
            for oid in ids
        }

    async def status(
        self,
        db_session: AsyncSession,
        viewer_id: uuid.UUID,
        other_id: uuid.UUID,
    ) -> MatchStatusResponse:
        """Resolve the viewer's status toward ``other_id``.

        Self-pairs and unknown users resolve to ``none`` with no shared
        items; nothing here raises for missing rows.
        """
        if viewer_id == other_id:
            return derive_status([], [], None)

        derived = await self.statuses(db_session, viewer_id, [other_id])
        result = derived[other_id]
        result.shared_items = await self.interest_store.shared_items(
            db_session, viewer_id, other_id
        )

        logger.debug(
            "status_resolved",
            viewer_id=str(viewer_id),
            other_id=str(other_id),
            state=result.state.value,
        )
        return result
