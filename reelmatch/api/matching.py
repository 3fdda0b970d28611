"""
ReelMatch — Matching API

Candidate discovery, match requests and declines, pairwise status and the
caller's active matches.  The caller is always the ``X-User-Id`` user.
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from reelmatch.api.deps import get_current_user_id, get_matching_service
from reelmatch.config import get_settings
from reelmatch.database import get_db
from reelmatch.schemas.match import (
    ActiveMatchResponse,
    CandidateResponse,
    MatchRequestCreate,
    MatchResultResponse,
    MatchStatusResponse,
)
from reelmatch.services.ledger_service import ReferentialIntegrityError
from reelmatch.services.matching_service import MatchingService

logger = structlog.get_logger("reelmatch.api.matching")

router = APIRouter()


def _reject_self(current_user_id: uuid.UUID, other_id: uuid.UUID) -> None:
    if current_user_id == other_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot match with yourself.",
        )


def _reject_item(item_id: int) -> None:
    if item_id <= 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="item_id must be a positive integer.",
        )


# ──────────────────────────────────────────────────────────────────────────────
# GET /candidates: Ranked users sharing liked movies
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/candidates",
    response_model=list[CandidateResponse],
    summary="List match candidates by shared likes",
)
async def list_candidates(
    limit: int | None = Query(default=None),
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    service: MatchingService = Depends(get_matching_service),
) -> list[CandidateResponse]:
    """Users sharing at least one liked movie, highest overlap first.

    ``limit`` defaults to ``CANDIDATE_DEFAULT_LIMIT`` and is capped at
    ``CANDIDATE_MAX_LIMIT``; values below 1 are treated as 1.
    """
    settings = get_settings()
    if limit is None:
        limit = settings.CANDIDATE_DEFAULT_LIMIT
    limit = min(limit, settings.CANDIDATE_MAX_LIMIT)

    return await service.candidates(db, current_user_id, limit)


# ──────────────────────────────────────────────────────────────────────────────
# POST /request: Express interest, resolving a mutual match if reciprocated
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/request",
    response_model=MatchResultResponse,
    summary="Send a match request for a shared movie",
)
async def send_match_request(
    body: MatchRequestCreate,
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    service: MatchingService = Depends(get_matching_service),
) -> MatchResultResponse:
    """Record interest toward ``target_user_id`` because of ``item_id``.

    If the target already asked for the same movie, the pair is matched
    and the new conversation room id is returned.  Repeating a request is
    harmless.
    """
    log = logger.bind(
        user_id=str(current_user_id),
        target_user_id=str(body.target_user_id),
        item_id=body.item_id,
    )

    _reject_self(current_user_id, body.target_user_id)
    _reject_item(body.item_id)

    if not await service.identity_provider.exists(db, body.target_user_id):
        log.info("match_request_unknown_target")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User {body.target_user_id} not found.",
        )

    try:
        outcome = await service.request_match(
            db, current_user_id, body.target_user_id, body.item_id
        )
    except ReferentialIntegrityError:
        log.warning("match_request_referential_failure")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Referenced user does not exist.",
        )

    return outcome.to_response()


# ──────────────────────────────────────────────────────────────────────────────
# POST /decline: Decline one incoming request
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/decline",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    summary="Decline an incoming match request",
)
async def decline_match_request(
    body: MatchRequestCreate,
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    service: MatchingService = Depends(get_matching_service),
) -> Response:
    """Remove the request ``target_user_id -> caller`` for ``item_id``.

    Declining something that does not exist is a no-op.
    """
    _reject_self(current_user_id, body.target_user_id)
    _reject_item(body.item_id)

    await service.decline(db, current_user_id, body.target_user_id, body.item_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ──────────────────────────────────────────────────────────────────────────────
# GET /status: Pairwise status with another user
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/status",
    response_model=MatchStatusResponse,
    summary="Match status between the caller and another user",
)
async def get_match_status(
    other_user_id: uuid.UUID = Query(...),
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    service: MatchingService = Depends(get_matching_service),
) -> MatchStatusResponse:
    _reject_self(current_user_id, other_user_id)
    return await service.status(db, current_user_id, other_user_id)


# ──────────────────────────────────────────────────────────────────────────────
# GET /active: The caller's matches with conversation previews
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/active",
    response_model=list[ActiveMatchResponse],
    summary="List the caller's active matches",
)
async def list_active_matches(
    current_user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    service: MatchingService = Depends(get_matching_service),
) -> list[ActiveMatchResponse]:
    return await service.active_matches(db, current_user_id)
