"""
Timestamp helpers.

FindItFast stores every timestamp as a timezone-aware UTC datetime. Mixing naive and
aware datetimes breaks the expiry arithmetic in the verification engine, so naive
values coming from files or catalog input are treated as UTC.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes; convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
