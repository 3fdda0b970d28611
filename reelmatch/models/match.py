"""
ReelMatch — Match request, conversation room and membership models.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    UniqueConstraint,
    func,
    true,
)
from sqlalchemy.dialects.postgresql import UUID as PgUUID
from sqlalchemy.orm import Mapped, mapped_column

from reelmatch.database import Base


def ordered_pair(
    user_a_id: uuid.UUID, user_b_id: uuid.UUID
) -> tuple[uuid.UUID, uuid.UUID]:
    """Return the pair in canonical (low, high) order."""
    if user_a_id.int <= user_b_id.int:
        return user_a_id, user_b_id
    return user_b_id, user_a_id


class MatchRequest(Base):
    """Directional "interest expressed" record.

    At most one row per (requestor, target, item); the constraint lives in
    the store so concurrent identical inserts collapse into one row.
    """

    __tablename__ = "match_requests"
    __table_args__ = (
        UniqueConstraint(
            "requestor_id",
            "target_user_id",
            "item_id",
            name="uq_match_request_triple",
        ),
        Index("ix_match_requests_target_requestor", "target_user_id", "requestor_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    requestor_id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    target_user_id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    item_id: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<MatchRequest {self.requestor_id} -> {self.target_user_id} "
            f"item={self.item_id}>"
        )


class ConversationRoom(Base):
    """Room created exactly once per resolved mutual match.

    ``user_low_id``/``user_high_id`` hold the pair in canonical order under
    ``uq_room_pair``: a pair can never own two rooms.
    """

    __tablename__ = "conversation_rooms"
    __table_args__ = (
        UniqueConstraint("user_low_id", "user_high_id", name="uq_room_pair"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_low_id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    user_high_id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    item_id: Mapped[int] = mapped_column(
        Integer, nullable=False, comment="Item whose reciprocity created the room"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<ConversationRoom {self.id} {self.user_low_id} <-> {self.user_high_id}>"


class RoomMembership(Base):
    """Shared with the chat subsystem, which toggles ``is_active``/``left_at``.

    Row existence, not ``is_active``, is what keeps a pair matched.
    """

    __tablename__ = "room_memberships"
    __table_args__ = (
        Index("ix_room_memberships_user_id", "user_id"),
    )

    room_id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True),
        ForeignKey("conversation_rooms.id", ondelete="CASCADE"),
        primary_key=True,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=true(), nullable=False
    )
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    left_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return (
            f"<RoomMembership room={self.room_id} user={self.user_id} "
            f"active={self.is_active}>"
        )
