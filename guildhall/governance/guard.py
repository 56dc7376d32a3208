"""Per-team serialization of governance commands.

ConcurrencyGuard maps a team id to a mutual-exclusion slot. Commands against
different teams run fully in parallel; commands against the same team queue
up and are admitted one at a time in arrival order (asyncio.Lock wakes its
waiters FIFO). There is no global lock.

A slot exists only while some command holds or waits for it, so the map does
not grow with the number of teams ever touched.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional

import structlog

from guildhall.governance.errors import CommandTimeout

log = structlog.get_logger()


@dataclass
class _Slot:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class ConcurrencyGuard:
    """Serializes access to each team id."""

    def __init__(self, default_timeout: Optional[float] = None):
        """Initialize the guard.

        Args:
            default_timeout: Seconds a command may wait for its slot when
                slot() is not given an explicit timeout (None waits forever)
        """
        self.default_timeout = default_timeout
        self._slots: dict[str, _Slot] = {}

    @asynccontextmanager
    async def slot(
        self,
        team_id: str,
        timeout: Optional[float] = None,
    ) -> AsyncIterator[None]:
        """Hold the team's slot for the duration of the block.

        Args:
            team_id: Team to serialize on
            timeout: Seconds to wait for the slot (falls back to default_timeout)

        Raises:
            CommandTimeout: If the slot was not acquired in time; the block
                never runs
        """
        timeout = self.default_timeout if timeout is None else timeout

        slot = self._slots.get(team_id)
        if slot is None:
            slot = self._slots[team_id] = _Slot()
        slot.users += 1

        try:
            try:
                if timeout is None:
                    await slot.lock.acquire()
                else:
                    await asyncio.wait_for(slot.lock.acquire(), timeout)
            except asyncio.TimeoutError:
                log.warning("team_slot_timeout", team_id=team_id, timeout=timeout)
                raise CommandTimeout(
                    f"Timed out after {timeout}s waiting for team {team_id}",
                    team_id=team_id,
                ) from None

            try:
                yield
            finally:
                slot.lock.release()
        finally:
            slot.users -= 1
            if slot.users == 0 and self._slots.get(team_id) is slot:
                del self._slots[team_id]

    def is_busy(self, team_id: str) -> bool:
        """True if a command currently holds the team's slot."""
        slot = self._slots.get(team_id)
        return bool(slot and slot.lock.locked())

    def waiting(self, team_id: str) -> int:
        """Number of commands holding or queued on the team's slot."""
        slot = self._slots.get(team_id)
        return slot.users if slot else 0

    def active_slots(self) -> list[str]:
        """Team ids with a live slot."""
        return list(self._slots)
