"""
ReelMatch — Candidate Ranker

Ranks other users by how many liked movies they share with the viewer.

Ordering (deterministic across calls):
  1. overlap_count, descending
  2. most_recent_shared_activity, descending: the later of the two users'
     like timestamps on any shared item
  3. other_user_id (string form), ascending

The ranking step is a plain function over two like sets so it can be
exercised without a database; ``CandidateRanker.rank`` just feeds it.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Iterable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from reelmatch.schemas.match import Candidate
from reelmatch.services.interest_service import InterestStore, ItemLike, LikedItem

logger = structlog.get_logger("reelmatch.candidate_service")


def clamp_limit(limit: int | None) -> int:
    """Lower-clamp ``limit`` to 1; ``None``, zero and negatives become 1."""
    if limit is None or limit < 1:
        return 1
    return limit


def rank_candidates(
    my_likes: dict[int, LikedItem],
    other_likes: Iterable[ItemLike],
    limit: int | None,
) -> list[Candidate]:
    """Group other users' likes into ranked candidates.

    Parameters
    ----------
    my_likes:
        The viewer's likes keyed by item id.
    other_likes:
        Other users' likes.  Rows for items the viewer has not liked are
        ignored, so callers may pass a superset.
    limit:
        Maximum number of candidates; see ``clamp_limit``.

    Returns
    -------
    list[Candidate]
        At most ``limit`` candidates, every one with ``overlap_count >= 1``.
    """
    shared: dict[uuid.UUID, list[int]] = {}
    recent: dict[uuid.UUID, datetime] = {}

    for like in other_likes:
        mine = my_likes.get(like.item_id)
        if mine is None:
            continue
        shared.setdefault(like.user_id, []).append(like.item_id)
        activity = max(mine.created_at, like.created_at)
        if like.user_id not in recent or activity > recent[like.user_id]:
            recent[like.user_id] = activity

    candidates = [
        Candidate(
            other_user_id=other_id,
            overlap_count=len(set(item_ids)),
            shared_item_ids=sorted(set(item_ids)),
            most_recent_shared_activity=recent[other_id],
        )
        for other_id, item_ids in shared.items()
    ]

    # Two stable passes: id ascending first, then the primary keys descending.
    candidates.sort(key=lambda c: str(c.other_user_id))
    candidates.sort(
        key=lambda c: (c.overlap_count, c.most_recent_shared_activity),
        reverse=True,
    )
    return candidates[: clamp_limit(limit)]


class CandidateRanker:
    """Reads the like sets and ranks them."""

    def __init__(self, interest_store: InterestStore | None = None) -> None:
        self.interest_store = interest_store or InterestStore()

    async def rank(
        self,
        db_session: AsyncSession,
        user_id: uuid.UUID,
        limit: int | None,
    ) -> list[Candidate]:
        my_likes = await self.interest_store.liked_items(db_session, user_id)
        if not my_likes:
            logger.debug("rank_no_likes", user_id=str(user_id))
            return []

        other_likes = await self.interest_store.likes_for_items(
            db_session, my_likes.keys(), exclude_user_id=user_id
        )
        candidates = rank_candidates(my_likes, other_likes, limit)

        logger.info(
            "candidates_ranked",
            user_id=str(user_id),
            liked=len(my_likes),
            returned=len(candidates),
        )
        return candidates
