from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TTLCache(Generic[T]):
    """Single-slot cache with an explicit time-to-live.

    Owned by whoever creates it (the API app, the FX lookup) and passed
    around by reference; nothing here is process-wide.
    """

    ttl_seconds: float
    value: Optional[T] = None
    stored_at: Optional[datetime] = None

    def get(self, now: Optional[datetime] = None) -> Optional[T]:
        if is_expired(self, now or utcnow()):
            return None
        return self.value

    def put(self, value: T, now: Optional[datetime] = None) -> None:
        self.value = value
        self.stored_at = now or utcnow()

    def clear(self) -> None:
        self.value = None
        self.stored_at = None


def is_expired(cache: TTLCache, now: datetime) -> bool:
    """True when the cache holds nothing or its entry is older than the TTL."""
    if cache.value is None or cache.stored_at is None:
        return True
    return now - cache.stored_at >= timedelta(seconds=cache.ttl_seconds)
