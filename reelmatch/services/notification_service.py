"""
ReelMatch — Notification Dispatcher

Best-effort, post-commit delivery of match events to users.

The production dispatcher publishes one JSON message per recipient on the
Redis channel ``"{NOTIFICATION_CHANNEL_PREFIX}:{user_id}"``; the realtime
gateway subscribes to those channels and fans the payload out to the user's
open sockets.  When no Redis is configured the null dispatcher logs and
drops events.

Dispatchers may raise.  Callers go through ``notify_quietly``, which bounds
the call with a timeout and logs any failure without re-raising: a match
that has been committed stays committed whatever happens here.
"""

from __future__ import annotations

import asyncio
import uuid

import structlog

from reelmatch.config import get_settings
from reelmatch.schemas.match import MatchNotification

logger = structlog.get_logger("reelmatch.notification_service")


class NotificationDispatcher:
    """Interface for delivering a payload to one user."""

    async def notify(self, user_id: uuid.UUID, payload: MatchNotification) -> None:
        raise NotImplementedError


class NullNotificationDispatcher(NotificationDispatcher):
    async def notify(self, user_id: uuid.UUID, payload: MatchNotification) -> None:
        logger.debug(
            "notification_dropped",
            user_id=str(user_id),
            type=payload.type,
            reason="no transport configured",
        )


class RedisNotificationDispatcher(NotificationDispatcher):
    """Publish notifications on per-user Redis pub/sub channels.

    Parameters
    ----------
    redis_client:
        A ``redis.asyncio.Redis`` (or compatible) client.
    channel_prefix:
        Channel namespace; defaults to ``NOTIFICATION_CHANNEL_PREFIX``.
    """

    def __init__(self, redis_client, channel_prefix: str | None = None) -> None:
        self.redis = redis_client
        self.channel_prefix = (
            channel_prefix
            if channel_prefix is not None
            else get_settings().NOTIFICATION_CHANNEL_PREFIX
        )

    def channel_for(self, user_id: uuid.UUID) -> str:
        return f"{self.channel_prefix}:{user_id}"

    async def notify(self, user_id: uuid.UUID, payload: MatchNotification) -> None:
        channel = self.channel_for(user_id)
        receivers = await self.redis.publish(channel, payload.model_dump_json())
        logger.info(
            "notification_published",
            channel=channel,
            type=payload.type,
            receivers=receivers,
        )


async def notify_quietly(
    dispatcher: NotificationDispatcher,
    user_id: uuid.UUID,
    payload: MatchNotification,
    timeout_seconds: float | None = None,
) -> bool:
    """Deliver ``payload`` and report success; never raises.

    Returns ``False`` when the dispatcher timed out or failed.
    """
    if timeout_seconds is None:
        timeout_seconds = get_settings().NOTIFICATION_TIMEOUT_SECONDS

    log = logger.bind(user_id=str(user_id), type=payload.type)
    try:
        await asyncio.wait_for(
            dispatcher.notify(user_id, payload), timeout=timeout_seconds
        )
    except asyncio.TimeoutError:
        log.warning("notification_timeout", timeout=timeout_seconds)
        return False
    except Exception:
        log.exception("notification_failed")
        return False
    return True
