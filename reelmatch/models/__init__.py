"""
ReelMatch — ORM model registry.

Importing every model here ensures that Alembic (and any other tool that
inspects ``Base.metadata``) discovers all tables automatically.
"""

from reelmatch.models.user import User
from reelmatch.models.interest import MovieLike
from reelmatch.models.match import ConversationRoom, MatchRequest, RoomMembership
from reelmatch.models.chat import ChatMessage

__all__ = [
    "User",
    "MovieLike",
    "MatchRequest",
    "ConversationRoom",
    "RoomMembership",
    "ChatMessage",
]
