"""Initial schema: users, likes, match requests, rooms, memberships, messages.

Revision ID: 001_initial
Revises:
Create Date: 2026-01-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── 1. users ────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    # ── 2. movie_likes (written by the likes subsystem) ─────────────
    op.create_table(
        "movie_likes",
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "item_id", sa.Integer, primary_key=True, comment="External movie id"
        ),
        sa.Column("title", sa.String(256), nullable=False, server_default=""),
        sa.Column(
            "poster_path",
            sa.String(256),
            nullable=True,
            comment="Raw poster path, e.g. /abc.jpg",
        ),
        sa.Column("release_year", sa.String(4), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("ix_movie_likes_item_id", "movie_likes", ["item_id"])
    op.create_index(
        "ix_movie_likes_user_created", "movie_likes", ["user_id", "created_at"]
    )

    # ── 3. match_requests ───────────────────────────────────────────
    op.create_table(
        "match_requests",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "requestor_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "target_user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("item_id", sa.Integer, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint(
            "requestor_id",
            "target_user_id",
            "item_id",
            name="uq_match_request_triple",
        ),
    )
    op.create_index(
        "ix_match_requests_target_requestor",
        "match_requests",
        ["target_user_id", "requestor_id"],
    )

    # ── 4. conversation_rooms ───────────────────────────────────────
    op.create_table(
        "conversation_rooms",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "user_low_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "user_high_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "item_id",
            sa.Integer,
            nullable=False,
            comment="Item whose reciprocity created the room",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("user_low_id", "user_high_id", name="uq_room_pair"),
    )

    # ── 5. room_memberships (shared with the chat subsystem) ────────
    op.create_table(
        "room_memberships",
        sa.Column(
            "room_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("conversation_rooms.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "user_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "is_active",
            sa.Boolean,
            server_default=sa.true(),
            nullable=False,
        ),
        sa.Column(
            "joined_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("left_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_room_memberships_user_id", "room_memberships", ["user_id"])

    # ── 6. chat_messages (read-only to matching) ────────────────────
    op.create_table(
        "chat_messages",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "room_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("conversation_rooms.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "sender_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("text", sa.String(2000), nullable=False),
        sa.Column(
            "sent_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index(
        "ix_chat_messages_room_sent", "chat_messages", ["room_id", "sent_at"]
    )
    op.create_index("ix_chat_messages_sender_id", "chat_messages", ["sender_id"])


def downgrade() -> None:
    # Drop in reverse order (children / dependents first).
    op.drop_index("ix_chat_messages_sender_id", table_name="chat_messages")
    op.drop_index("ix_chat_messages_room_sent", table_name="chat_messages")
    op.drop_table("chat_messages")

    op.drop_index("ix_room_memberships_user_id", table_name="room_memberships")
    op.drop_table("room_memberships")

    op.drop_table("conversation_rooms")

    op.drop_index(
        "ix_match_requests_target_requestor", table_name="match_requests"
    )
    op.drop_table("match_requests")

    op.drop_index("ix_movie_likes_user_created", table_name="movie_likes")
    op.drop_index("ix_movie_likes_item_id", table_name="movie_likes")
    op.drop_table("movie_likes")

    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
