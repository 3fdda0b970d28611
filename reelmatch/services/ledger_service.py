"""
ReelMatch — Match Request Ledger

Directional "user A is interested in user B because of item X" records.

Both operations join the caller's transaction and only flush; the
``MatchingService`` decides when to commit.  Uniqueness of the
(requestor, target, item) triple is enforced by ``uq_match_request_triple``
so two concurrent identical inserts collapse into one row: the loser's
``IntegrityError`` is absorbed inside a SAVEPOINT and reported as
"already existed".
"""

from __future__ import annotations

import uuid

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from reelmatch.models.match import MatchRequest
from reelmatch.utils.timeutil import utcnow

logger = structlog.get_logger("reelmatch.ledger_service")


class ReferentialIntegrityError(Exception):
    """A request referenced a user that does not exist."""

    def __init__(self, requestor_id: uuid.UUID, target_id: uuid.UUID) -> None:
        self.requestor_id = requestor_id
        self.target_id = target_id
        super().__init__(
            f"Match request {requestor_id} -> {target_id} references a missing user"
        )


class MatchRequestLedger:
    """Idempotent record / precise decline over ``match_requests``."""

    async def _exists(
        self,
        db_session: AsyncSession,
        requestor_id: uuid.UUID,
        target_id: uuid.UUID,
        item_id: int,
    ) -> bool:
        stmt = select(MatchRequest.id).where(
            MatchRequest.requestor_id == requestor_id,
            MatchRequest.target_user_id == target_id,
            MatchRequest.item_id == item_id,
        )
        result = await db_session.execute(stmt)
        return result.scalar_one_or_none() is not None

    # ── Public API ────────────────────────────────────────────────────────

    async def record(
        self,
        db_session: AsyncSession,
        requestor_id: uuid.UUID,
        target_id: uuid.UUID,
        item_id: int,
    ) -> bool:
        """Record interest from ``requestor_id`` toward ``target_id``.

        Parameters
        ----------
        db_session:
            Session with an open transaction.
        requestor_id, target_id:
            The direction of interest.  Self-targeting is not checked here.
        item_id:
            The shared item motivating the request.

        Returns
        -------
        bool
            ``True`` if the request already existed (nothing written).

        Raises
        ------
        ReferentialIntegrityError
            If either user does not exist.
        """
        log = logger.bind(
            requestor_id=str(requestor_id),
            target_id=str(target_id),
            item_id=item_id,
        )

        if await self._exists(db_session, requestor_id, target_id, item_id):
            log.debug("match_request_exists")
            return True

        try:
            async with db_session.begin_nested():
                db_session.add(
                    MatchRequest(
                        requestor_id=requestor_id,
                        target_user_id=target_id,
                        item_id=item_id,
                        created_at=utcnow(),
                    )
                )
        except IntegrityError as exc:
            if await self._exists(db_session, requestor_id, target_id, item_id):
                log.info("match_request_insert_raced")
                return True
            log.warning("match_request_referential_failure")
            raise ReferentialIntegrityError(requestor_id, target_id) from exc

        log.info("match_request_recorded")
        return False

    async def decline(
        self,
        db_session: AsyncSession,
        declining_user_id: uuid.UUID,
        requestor_id: uuid.UUID,
        item_id: int,
    ) -> bool:
        """Remove the request ``requestor_id -> declining_user_id`` for one item.

        The decliner's own outgoing requests are never touched.  Returns
        ``True`` if a row was removed; a missing row is a no-op.
        """
        stmt = delete(MatchRequest).where(
            MatchRequest.requestor_id == requestor_id,
            MatchRequest.target_user_id == declining_user_id,
            MatchRequest.item_id == item_id,
        )
        result = await db_session.execute(stmt)
        removed = (result.rowcount or 0) > 0

        logger.info(
            "match_request_declined",
            declining_user_id=str(declining_user_id),
            requestor_id=str(requestor_id),
            item_id=item_id,
            removed=removed,
        )
        return removed
