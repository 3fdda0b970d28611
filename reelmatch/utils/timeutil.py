"""UTC helpers.

SQLite hands timezone-aware columns back as naive datetimes; everything
leaving the data layer goes through ``as_utc`` so values compare and
serialise consistently across backends.
"""

from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
