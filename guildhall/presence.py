"""Online presence for players, tracked by heartbeat with a time-to-live.

A user is online while their last heartbeat is younger than the TTL. This is
an in-memory tracker: presence is not persisted, each server instance keeps
its own view, and the governance engine never consults it. It only decorates
read models (who in a team is online right now).
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Iterable, Optional

import structlog

log = structlog.get_logger()


class PresenceStatus(str, Enum):
    """Presence of a user as seen by this tracker."""

    ONLINE = "online"
    OFFLINE = "offline"


@dataclass
class PresenceRecord:
    """Last known heartbeat of a user.

    Attributes:
        user_id: User the record belongs to
        last_seen: Time of the latest heartbeat
        first_seen: Time of the heartbeat that started the current streak
    """

    user_id: str
    last_seen: datetime
    first_seen: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "user_id": self.user_id,
            "last_seen": self.last_seen.isoformat(),
            "first_seen": self.first_seen.isoformat(),
        }


class PresenceTracker:
    """Tracks who is online from periodic heartbeats."""

    def __init__(
        self,
        ttl_seconds: float = 60.0,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the tracker.

        Args:
            ttl_seconds: How long a heartbeat keeps a user online
            clock: Time source (datetime.now if not provided)
        """
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock or datetime.now
        self._records: dict[str, PresenceRecord] = {}

    def heartbeat(self, user_id: str) -> PresenceRecord:
        """Record that a user is active now."""
        now = self._clock()
        record = self._records.get(user_id)

        if record is None or not self._alive(record, now):
            record = PresenceRecord(user_id=user_id, last_seen=now, first_seen=now)
            self._records[user_id] = record
            log.debug("presence_online", user_id=user_id)
        else:
            record.last_seen = now

        return record

    def go_offline(self, user_id: str) -> bool:
        """Forget a user's heartbeat. Returns True if they were tracked."""
        removed = self._records.pop(user_id, None) is not None
        if removed:
            log.debug("presence_offline", user_id=user_id)
        return removed

    def status(self, user_id: str) -> PresenceStatus:
        return PresenceStatus.ONLINE if self.is_online(user_id) else PresenceStatus.OFFLINE

    def is_online(self, user_id: str) -> bool:
        record = self._records.get(user_id)
        return record is not None and self._alive(record, self._clock())

    def last_seen(self, user_id: str) -> Optional[datetime]:
        """Time of the user's latest heartbeat, even if it has expired."""
        record = self._records.get(user_id)
        return record.last_seen if record else None

    def online(self, user_ids: Iterable[str]) -> list[str]:
        """Subset of user_ids that is online, in input order."""
        now = self._clock()
        return [
            user_id
            for user_id in user_ids
            if user_id in self._records and self._alive(self._records[user_id], now)
        ]

    def prune(self) -> int:
        """Drop expired records. Returns how many were dropped."""
        now = self._clock()
        expired = [u for u, r in self._records.items() if not self._alive(r, now)]
        for user_id in expired:
            del self._records[user_id]

        if expired:
            log.debug("presence_pruned", count=len(expired))
        return len(expired)

    def get_stats(self) -> dict[str, Any]:
        """Get presence statistics."""
        now = self._clock()
        online = sum(1 for r in self._records.values() if self._alive(r, now))
        return {
            "tracked": len(self._records),
            "online": online,
            "ttl_seconds": self.ttl.total_seconds(),
        }

    def _alive(self, record: PresenceRecord, now: datetime) -> bool:
        return now - record.last_seen < self.ttl
