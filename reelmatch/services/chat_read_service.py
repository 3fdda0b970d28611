"""
ReelMatch — Chat read model

Last-message previews and per-sender message counts for conversation
rooms.  Message storage itself belongs to the chat subsystem; nothing here
writes.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from reelmatch.models.chat import ChatMessage
from reelmatch.utils.timeutil import as_utc

logger = structlog.get_logger("reelmatch.chat_read_service")


@dataclass(frozen=True)
class LastMessage:
    room_id: uuid.UUID
    sender_id: uuid.UUID
    text: str
    sent_at: datetime


class ChatMessageStore:
    """Query helpers over ``chat_messages``."""

    async def last_message(
        self,
        db_session: AsyncSession,
        room_id: uuid.UUID,
    ) -> LastMessage | None:
        latest = await self.last_messages(db_session, [room_id])
        return latest.get(room_id)

    async def count_from(
        self,
        db_session: AsyncSession,
        room_id: uuid.UUID,
        sender_id: uuid.UUID,
    ) -> int:
        stmt = select(func.count(ChatMessage.id)).where(
            ChatMessage.room_id == room_id,
            ChatMessage.sender_id == sender_id,
        )
        result = await db_session.execute(stmt)
        return int(result.scalar_one())

    async def last_messages(
        self,
        db_session: AsyncSession,
        room_ids: Iterable[uuid.UUID],
    ) -> dict[uuid.UUID, LastMessage]:
        """Latest message per room, one query for all rooms.

        Ties on ``sent_at`` are broken by message id so the preview is
        stable between calls.
        """
        ids = list(room_ids)
        if not ids:
            return {}

        ranked = (
            select(
                ChatMessage.room_id,
                ChatMessage.sender_id,
                ChatMessage.text,
                ChatMessage.sent_at,
                func.row_number()
                .over(
                    partition_by=ChatMessage.room_id,
                    order_by=(ChatMessage.sent_at.desc(), ChatMessage.id.desc()),
                )
                .label("rn"),
            )
            .where(ChatMessage.room_id.in_(ids))
            .subquery()
        )
        stmt = select(
            ranked.c.room_id, ranked.c.sender_id, ranked.c.text, ranked.c.sent_at
        ).where(ranked.c.rn == 1)
        result = await db_session.execute(stmt)

        return {
            row.room_id: LastMessage(
                room_id=row.room_id,
                sender_id=row.sender_id,
                text=row.text,
                sent_at=as_utc(row.sent_at),
            )
            for row in result.all()
        }

    async def counts_by_sender(
        self,
        db_session: AsyncSession,
        room_ids: Iterable[uuid.UUID],
    ) -> dict[tuple[uuid.UUID, uuid.UUID], int]:
        """Message counts keyed by ``(room_id, sender_id)``."""
        ids = list(room_ids)
        if not ids:
            return {}

        stmt = (
            select(ChatMessage.room_id, ChatMessage.sender_id, func.count(ChatMessage.id))
            .where(ChatMessage.room_id.in_(ids))
            .group_by(ChatMessage.room_id, ChatMessage.sender_id)
        )
        result = await db_session.execute(stmt)
        return {(room_id, sender_id): int(n) for room_id, sender_id, n in result.all()}
