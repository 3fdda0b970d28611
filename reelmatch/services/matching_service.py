"""
ReelMatch — Matching Service

Orchestrates the matching core and owns its transaction boundary:

  request_match:  pair lock, ledger.record, resolver.try_resolve in one
                  transaction; notifications go out only after commit
  decline:        ledger.decline in its own transaction
  candidates:     ranked candidates decorated with name and status
  status:         StatusResolver
  active_matches: ActiveMatchAggregator

Notification delivery is a separate failure domain.  Payloads are built
while the transaction is still open (so they see the same state the
transaction wrote) and dispatched after commit through ``notify_quietly``;
a failed or slow dispatcher can never undo or fail a committed match.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from reelmatch.database import atomic
from reelmatch.schemas.match import (
    ActiveMatchResponse,
    CandidateResponse,
    MatchNotification,
    MatchResultResponse,
    MatchStatusResponse,
    NotificationUser,
)
from reelmatch.services.active_match_service import ActiveMatchAggregator
from reelmatch.services.candidate_service import CandidateRanker
from reelmatch.services.identity_service import IdentityProvider
from reelmatch.services.interest_service import InterestStore
from reelmatch.services.ledger_service import MatchRequestLedger
from reelmatch.services.notification_service import (
    NotificationDispatcher,
    NullNotificationDispatcher,
    notify_quietly,
)
from reelmatch.services.resolver_service import (
    MutualMatchResolver,
    acquire_pair_lock,
    find_room,
)
from reelmatch.services.status_service import StatusResolver
from reelmatch.utils.timeutil import utcnow

logger = structlog.get_logger("reelmatch.matching_service")

# Shown when neither user's like row carries a title for the item.
FALLBACK_ITEM_TITLE = "a movie you liked"


@dataclass
class RequestOutcome:
    """Result of ``request_match`` plus what was sent afterwards."""

    matched: bool
    room_id: uuid.UUID | None = None
    room_created: bool = False
    # The pair already had a room, so no request was recorded.
    room_existed: bool = False
    # The request row was already in the ledger.
    already_existed: bool = False
    notifications: list[tuple[uuid.UUID, MatchNotification]] = field(default_factory=list)

    def to_response(self) -> MatchResultResponse:
        return MatchResultResponse(matched=self.matched, room_id=self.room_id)


class MatchingService:
    """Entry point for every matching operation.

    Collaborators are injected at construction so the service can be
    tested with fakes and wired through FastAPI dependencies.
    """

    def __init__(
        self,
        dispatcher: NotificationDispatcher | None = None,
        interest_store: InterestStore | None = None,
        identity_provider: IdentityProvider | None = None,
        ledger: MatchRequestLedger | None = None,
        resolver: MutualMatchResolver | None = None,
        notification_timeout: float | None = None,
    ) -> None:
        """Initialise the service.

        Parameters
        ----------
        dispatcher:
            Post-commit notification transport; defaults to the null
            dispatcher.
        interest_store, identity_provider:
            Read-only adapters shared by every component.
        ledger, resolver:
            Write-path components.
        notification_timeout:
            Upper bound per notification; defaults to
            ``NOTIFICATION_TIMEOUT_SECONDS``.
        """
        self.dispatcher = dispatcher or NullNotificationDispatcher()
        self.interest_store = interest_store or InterestStore()
        self.identity_provider = identity_provider or IdentityProvider()
        self.ledger = ledger or MatchRequestLedger()
        self.resolver = resolver or MutualMatchResolver()
        self.notification_timeout = notification_timeout

        self.ranker = CandidateRanker(self.interest_store)
        self.status_resolver = StatusResolver(self.interest_store)
        self.aggregator = ActiveMatchAggregator(
            interest_store=self.interest_store,
            identity_provider=self.identity_provider,
        )

    # ── Write path ────────────────────────────────────────────────────────

    async def request_match(
        self,
        db_session: AsyncSession,
        requestor_id: uuid.UUID,
        target_id: uuid.UUID,
        item_id: int,
    ) -> RequestOutcome:
        """Express interest from ``requestor_id`` toward ``target_id``.

        Parameters
        ----------
        db_session:
            Request-scoped session.  If it already has a transaction open
            the work runs in a SAVEPOINT and the outer transaction is
            committed.
        requestor_id, target_id:
            Distinct user ids (the API rejects self-targeting).
        item_id:
            Positive item id.

        Returns
        -------
        RequestOutcome
            ``matched``/``room_id`` reflect the pair's state after commit.

        Raises
        ------
        ReferentialIntegrityError
            If either user does not exist.  Nothing is committed.
        """
        log = logger.bind(
            requestor_id=str(requestor_id),
            target_id=str(target_id),
            item_id=item_id,
        )
        log.info("request_match_start")

        async with atomic(db_session):
            await acquire_pair_lock(db_session, requestor_id, target_id)

            existing_room = await find_room(db_session, requestor_id, target_id)
            room_existed = existing_room is not None
            already_existed = False
            if not room_existed:
                already_existed = await self.ledger.record(
                    db_session, requestor_id, target_id, item_id
                )

            resolution = await self.resolver.try_resolve(
                db_session, requestor_id, target_id, item_id
            )
            outcome = RequestOutcome(
                matched=resolution.matched,
                room_id=resolution.room_id,
                room_created=resolution.created,
                room_existed=room_existed,
                already_existed=already_existed,
            )
            outcome.notifications = await self._build_notifications(
                db_session, requestor_id, target_id, item_id, outcome
            )

        log.info(
            "request_match_committed",
            matched=outcome.matched,
            room_id=str(outcome.room_id) if outcome.room_id else None,
            room_created=outcome.room_created,
            room_existed=outcome.room_existed,
            already_existed=outcome.already_existed,
        )

        for recipient_id, payload in outcome.notifications:
            await notify_quietly(
                self.dispatcher, recipient_id, payload, self.notification_timeout
            )

        return outcome

    async def decline(
        self,
        db_session: AsyncSession,
        declining_user_id: uuid.UUID,
        requestor_id: uuid.UUID,
        item_id: int,
    ) -> bool:
        async with atomic(db_session):
            return await self.ledger.decline(
                db_session, declining_user_id, requestor_id, item_id
            )

    async def _build_notifications(
        self,
        db_session: AsyncSession,
        requestor_id: uuid.UUID,
        target_id: uuid.UUID,
        item_id: int,
        outcome: RequestOutcome,
    ) -> list[tuple[uuid.UUID, MatchNotification]]:
        """Payloads to send once the transaction commits.

        A new room notifies both users; a new one-sided request notifies
        the target.  Re-recording or re-discovering sends nothing.
        """
        if outcome.room_created:
            kind = "mutual_match"
            recipients = [(requestor_id, target_id), (target_id, requestor_id)]
        elif not outcome.matched and not outcome.already_existed:
            kind = "match_request"
            recipients = [(target_id, requestor_id)]
        else:
            return []

        names = await self.identity_provider.display_names(
            db_session, [requestor_id, target_id]
        )
        title = await self.interest_store.item_title(
            db_session, item_id, [requestor_id, target_id]
        )
        now = utcnow()

        return [
            (
                recipient_id,
                MatchNotification(
                    type=kind,
                    user=NotificationUser(id=about_id, display_name=names[about_id]),
                    item_id=item_id,
                    item_title=title or FALLBACK_ITEM_TITLE,
                    room_id=outcome.room_id if outcome.room_created else None,
                    timestamp=now,
                ),
            )
            for recipient_id, about_id in recipients
        ]

    # ── Read paths ────────────────────────────────────────────────────────

    async def candidates(
        self,
        db_session: AsyncSession,
        user_id: uuid.UUID,
        limit: int | None,
    ) -> list[CandidateResponse]:
        """Ranked candidates with display name and current match status."""
        ranked = await self.ranker.rank(db_session, user_id, limit)
        if not ranked:
            return []

        other_ids = [c.other_user_id for c in ranked]
        names = await self.identity_provider.display_names(db_session, other_ids)
        statuses = await self.status_resolver.statuses(db_session, user_id, other_ids)

        return [
            CandidateResponse(
                **candidate.model_dump(),
                display_name=names[candidate.other_user_id],
                match_status=statuses[candidate.other_user_id].state,
                request_sent_at=statuses[candidate.other_user_id].request_sent_at,
            )
            for candidate in ranked
        ]

    async def status(
        self,
        db_session: AsyncSession,
        viewer_id: uuid.UUID,
        other_id: uuid.UUID,
    ) -> MatchStatusResponse:
        return await self.status_resolver.status(db_session, viewer_id, other_id)

    async def active_matches(
        self,
        db_session: AsyncSession,
        user_id: uuid.UUID,
    ) -> list[ActiveMatchResponse]:
        return await self.aggregator.list_active(db_session, user_id)
