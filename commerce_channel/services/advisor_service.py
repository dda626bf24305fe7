import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from commerce_channel.config import settings
from commerce_channel.logging_config import get_logger
from commerce_channel.models import Advisor

logger = get_logger("advisor_service")


@dataclass(frozen=True)
class AdvisorInfo:
    """Session-independent snapshot of an advisor row, safe to share across requests."""

    id: UUID
    name: str
    gateway_number: str
    is_active: bool

    @classmethod
    def from_model(cls, advisor: Advisor) -> "AdvisorInfo":
        return cls(
            id=advisor.id,
            name=advisor.name,
            gateway_number=advisor.gateway_number,
            is_active=bool(advisor.is_active),
        )


class AdvisorCache:
    """TTL cache keyed by gateway number.

    Entries are never invalidated explicitly: advisor edits become visible
    once the entry expires (24h by default). Size is bounded; the oldest
    entries are dropped first.
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        max_entries: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.advisor_cache_ttl_seconds
        self.max_entries = max_entries if max_entries is not None else settings.advisor_cache_max_entries
        self._clock = clock
        self._entries: dict[str, tuple[float, AdvisorInfo]] = {}
        self._lock = threading.Lock()

    def get(self, gateway_number: str) -> Optional[AdvisorInfo]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(gateway_number)
            if not entry:
                return None
            expires_at, advisor = entry
            if expires_at <= now:
                self._entries.pop(gateway_number, None)
                return None
            return advisor

    def set(self, gateway_number: str, advisor: AdvisorInfo) -> None:
        now = self._clock()
        with self._lock:
            self._purge(now)
            if len(self._entries) >= self.max_entries:
                oldest = min(self._entries, key=lambda key: self._entries[key][0])
                self._entries.pop(oldest, None)
            self._entries[gateway_number] = (now + self.ttl_seconds, advisor)

    def _purge(self, now: float) -> None:
        expired = [key for key, (expires_at, _) in self._entries.items() if expires_at <= now]
        for key in expired:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


advisor_cache = AdvisorCache()


def get_advisor_by_gateway_number(
    db: Session,
    gateway_number: str,
    *,
    cache: Optional[AdvisorCache] = None,
) -> Optional[AdvisorInfo]:
    """Find the active advisor that owns a gateway sending address."""
    if cache is None:
        cache = advisor_cache
    cached = cache.get(gateway_number)
    if cached:
        return cached

    advisor = (
        db.query(Advisor)
        .filter(Advisor.gateway_number == gateway_number, Advisor.is_active.is_(True))
        .first()
    )
    if not advisor:
        return None

    info = AdvisorInfo.from_model(advisor)
    cache.set(gateway_number, info)
    logger.info(f"Advisor cached: {info.name} ({gateway_number})")
    return info
