"""
ReelMatch — Active Match Aggregator

Builds the per-user "matches" list: every room the user belongs to,
decorated with the other member's name, the last message preview, a
message counter and the live shared-item intersection.

All lookups are batched; the list costs a fixed number of queries
regardless of how many rooms the user has.
"""

from __future__ import annotations

import uuid

import structlog
from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from reelmatch.models.match import ConversationRoom, RoomMembership
from reelmatch.schemas.match import ActiveMatchResponse
from reelmatch.services.chat_read_service import ChatMessageStore
from reelmatch.services.identity_service import IdentityProvider
from reelmatch.services.interest_service import InterestStore
from reelmatch.utils.timeutil import as_utc

logger = structlog.get_logger("reelmatch.active_match_service")


def activity_sort_key(match: ActiveMatchResponse) -> tuple:
    """Most recent activity first (last message, else match time), then room id."""
    return (match.last_message_at or match.matched_at, str(match.room_id))


class ActiveMatchAggregator:
    def __init__(
        self,
        interest_store: InterestStore | None = None,
        identity_provider: IdentityProvider | None = None,
        chat_store: ChatMessageStore | None = None,
    ) -> None:
        self.interest_store = interest_store or InterestStore()
        self.identity_provider = identity_provider or IdentityProvider()
        self.chat_store = chat_store or ChatMessageStore()

    async def list_active(
        self,
        db_session: AsyncSession,
        user_id: uuid.UUID,
    ) -> list[ActiveMatchResponse]:
        """List every room ``user_id`` has a membership in.

        Membership ``is_active`` flags are ignored: leaving a conversation
        does not unmatch the pair.  Rooms whose other membership is gone are
        skipped.

        ``unread_count`` counts messages authored by the other member.  It
        is not tracked per read receipt.
        """
        mine = aliased(RoomMembership)
        theirs = aliased(RoomMembership)
        stmt = (
            select(ConversationRoom.id, ConversationRoom.created_at, theirs.user_id)
            .join(
                mine,
                and_(mine.room_id == ConversationRoom.id, mine.user_id == user_id),
            )
            .join(
                theirs,
                and_(theirs.room_id == ConversationRoom.id, theirs.user_id != user_id),
            )
        )
        rows = (await db_session.execute(stmt)).all()
        if not rows:
            return []

        room_ids = [row.id for row in rows]
        other_ids = [row.user_id for row in rows]

        last_messages = await self.chat_store.last_messages(db_session, room_ids)
        counts = await self.chat_store.counts_by_sender(db_session, room_ids)
        names = await self.identity_provider.display_names(db_session, other_ids)
        shared = await self.interest_store.shared_items_many(
            db_session, user_id, other_ids
        )

        matches: list[ActiveMatchResponse] = []
        for room_id, created_at, other_id in rows:
            last = last_messages.get(room_id)
            matches.append(
                ActiveMatchResponse(
                    other_user_id=other_id,
                    display_name=names[other_id],
                    room_id=room_id,
                    matched_at=as_utc(created_at),
                    last_message=last.text if last else None,
                    last_message_at=last.sent_at if last else None,
                    unread_count=counts.get((room_id, other_id), 0),
                    shared_items=shared.get(other_id, []),
                )
            )

        matches.sort(key=activity_sort_key, reverse=True)

        logger.info("active_matches_listed", user_id=str(user_id), count=len(matches))
        return matches
