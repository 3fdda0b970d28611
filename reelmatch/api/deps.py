"""
ReelMatch — API dependencies

Caller identity, the notification dispatcher and the matching service,
all overridable through ``app.dependency_overrides`` in tests.
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from reelmatch.services.matching_service import MatchingService
from reelmatch.services.notification_service import (
    NotificationDispatcher,
    NullNotificationDispatcher,
)

# Set by the application lifespan once Redis is (or is not) available.
_dispatcher: NotificationDispatcher = NullNotificationDispatcher()


def set_notification_dispatcher(dispatcher: NotificationDispatcher | None) -> None:
    global _dispatcher
    _dispatcher = dispatcher or NullNotificationDispatcher()


def get_notification_dispatcher() -> NotificationDispatcher:
    return _dispatcher


async def get_current_user_id(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
) -> uuid.UUID:
    """Resolve the caller from the gateway-set ``X-User-Id`` header.

    Authentication happens upstream; a missing or malformed id means the
    request did not come through it.
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header.",
        )
    try:
        return uuid.UUID(x_user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid X-User-Id header.",
        )


def get_matching_service(
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> MatchingService:
    return MatchingService(dispatcher=dispatcher)
