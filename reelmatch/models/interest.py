"""
ReelMatch — Movie like model (interest signal).

Written by the likes subsystem, read-only to the matching core.  A small
snapshot of the movie (title, poster path, year) is kept so match cards
render without calling the metadata API.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, func
from sqlalchemy.dialects.postgresql import UUID as PgUUID
from sqlalchemy.orm import Mapped, mapped_column

from reelmatch.database import Base


class MovieLike(Base):
    __tablename__ = "movie_likes"
    __table_args__ = (
        Index("ix_movie_likes_item_id", "item_id"),
        Index("ix_movie_likes_user_created", "user_id", "created_at"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    item_id: Mapped[int] = mapped_column(
        Integer, primary_key=True, comment="External movie id"
    )
    title: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    poster_path: Mapped[str | None] = mapped_column(
        String(256), nullable=True, comment="Raw poster path, e.g. /abc.jpg"
    )
    release_year: Mapped[str | None] = mapped_column(String(4), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<MovieLike {self.user_id} item={self.item_id}>"
