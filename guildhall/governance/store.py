"""Durable storage for team snapshots with optimistic concurrency.

A store keeps one snapshot per team together with its version. The only way
to change a stored team is compare_and_swap(), which succeeds only when the
stored version still equals the version the caller loaded. An absent team
counts as version 0, so creation is a swap against 0.

Stores hand out and take in independent copies: no two in-flight commands
ever share a snapshot object.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Optional, Protocol

import aiosqlite
import structlog

from guildhall.governance.aggregate import check_invariants
from guildhall.governance.errors import StorageUnavailable
from guildhall.governance.models import Team

if TYPE_CHECKING:
    from guildhall.persistence.database import Database

log = structlog.get_logger()

JOIN_REQUEST = "join_request"
INVITATION = "invitation"


@dataclass
class PendingEntry:
    """A pending join request or invitation concerning one user.

    Attributes:
        team_id: Team the entry belongs to
        user_id: Requesting or invited user
        kind: "join_request" or "invitation"
        created_at: When the entry was recorded
    """

    team_id: str
    user_id: str
    kind: str
    created_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "team_id": self.team_id,
            "user_id": self.user_id,
            "kind": self.kind,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


def pending_entries(team: Team) -> list[PendingEntry]:
    """Flatten a team's pending requests and invitations."""
    entries = [
        PendingEntry(team.id, r.user_id, JOIN_REQUEST, r.created_at)
        for r in team.pending_join_requests.values()
    ]
    entries.extend(
        PendingEntry(team.id, i.invitee_id, INVITATION, i.created_at)
        for i in team.pending_invitations.values()
    )
    return entries


def _validate_commit(team_id: str, expected_version: int, team: Team) -> None:
    if team.id != team_id:
        raise ValueError(f"Snapshot id {team.id} does not match {team_id}")
    if team.version <= expected_version:
        raise ValueError(
            f"Snapshot version {team.version} must exceed expected {expected_version}"
        )
    check_invariants(team)


class TeamStore(Protocol):
    """Storage contract the governance engine relies on."""

    async def load(self, team_id: str) -> Optional[tuple[Team, int]]:
        """Return (snapshot copy, version), or None if the team is unknown."""
        ...

    async def compare_and_swap(
        self, team_id: str, expected_version: int, team: Team
    ) -> bool:
        """Store team if the stored version equals expected_version."""
        ...

    async def find_teams_for_user(self, user_id: str) -> list[Team]:
        """Active teams the user is a member of."""
        ...

    async def find_pending_for_user(self, user_id: str) -> list[PendingEntry]:
        """Pending requests and invitations concerning the user."""
        ...


class InMemoryTeamStore:
    """Process-local store holding serialized snapshots."""

    def __init__(self):
        # team_id -> (version, serialized snapshot)
        self._records: dict[str, tuple[int, str]] = {}

    async def load(self, team_id: str) -> Optional[tuple[Team, int]]:
        record = self._records.get(team_id)
        if record is None:
            return None
        version, payload = record
        return Team.from_dict(json.loads(payload)), version

    async def compare_and_swap(
        self, team_id: str, expected_version: int, team: Team
    ) -> bool:
        _validate_commit(team_id, expected_version, team)

        record = self._records.get(team_id)
        current = record[0] if record else 0
        if current != expected_version:
            log.info(
                "team_store_cas_conflict",
                team_id=team_id,
                expected_version=expected_version,
                stored_version=current,
            )
            return False

        self._records[team_id] = (team.version, json.dumps(team.to_dict()))
        return True

    async def find_teams_for_user(self, user_id: str) -> list[Team]:
        teams = []
        for team_id in sorted(self._records):
            loaded = await self.load(team_id)
            team = loaded[0]
            if not team.disbanded and team.is_member(user_id):
                teams.append(team)
        return teams

    async def find_pending_for_user(self, user_id: str) -> list[PendingEntry]:
        entries = []
        for team_id in sorted(self._records):
            team, _ = await self.load(team_id)
            if team.disbanded:
                continue
            entries.extend(e for e in pending_entries(team) if e.user_id == user_id)
        return entries

    def __len__(self) -> int:
        return len(self._records)


class SqliteTeamStore:
    """SQLite-backed store; one snapshot row per team plus index tables."""

    def __init__(self, database: Optional["Database"] = None):
        """Initialize the team store.

        Args:
            database: Database instance (creates default if not provided)
        """
        from guildhall.persistence.database import Database

        self.db = database or Database()

    async def _ensure_tables(self) -> None:
        try:
            await self.db.initialize()
        except (aiosqlite.Error, OSError) as e:
            raise StorageUnavailable(f"Database unavailable: {e}") from e

    async def load(self, team_id: str) -> Optional[tuple[Team, int]]:
        await self._ensure_tables()

        try:
            async with self.db.get_connection() as conn:
                cursor = await conn.execute(
                    "SELECT version, snapshot FROM team_snapshots WHERE id = ?",
                    (team_id,),
                )
                row = await cursor.fetchone()
        except (aiosqlite.Error, OSError) as e:
            raise StorageUnavailable(
                f"Failed to load team {team_id}: {e}", team_id=team_id
            ) from e

        if not row:
            return None

        return Team.from_dict(json.loads(row[1])), row[0]

    async def compare_and_swap(
        self, team_id: str, expected_version: int, team: Team
    ) -> bool:
        _validate_commit(team_id, expected_version, team)
        await self._ensure_tables()

        payload = json.dumps(team.to_dict())
        now = datetime.now().isoformat()

        try:
            async with self.db.get_connection() as conn:
                if expected_version == 0:
                    cursor = await conn.execute(
                        """
                        INSERT OR IGNORE INTO team_snapshots
                            (id, version, snapshot, disbanded, updated_at)
                        VALUES (?, ?, ?, ?, ?)
                        """,
                        (team_id, team.version, payload, int(team.disbanded), now),
                    )
                else:
                    cursor = await conn.execute(
                        """
                        UPDATE team_snapshots
                        SET version = ?, snapshot = ?, disbanded = ?, updated_at = ?
                        WHERE id = ? AND version = ?
                        """,
                        (
                            team.version,
                            payload,
                            int(team.disbanded),
                            now,
                            team_id,
                            expected_version,
                        ),
                    )

                if cursor.rowcount != 1:
                    await conn.rollback()
                    log.info(
                        "team_store_cas_conflict",
                        team_id=team_id,
                        expected_version=expected_version,
                    )
                    return False

                await self._write_indexes(conn, team)
                await conn.commit()
        except (aiosqlite.Error, OSError) as e:
            raise StorageUnavailable(
                f"Failed to store team {team_id}: {e}", team_id=team_id
            ) from e

        return True

    async def _write_indexes(self, conn: aiosqlite.Connection, team: Team) -> None:
        await conn.execute("DELETE FROM team_member_index WHERE team_id = ?", (team.id,))
        await conn.execute("DELETE FROM team_pending_index WHERE team_id = ?", (team.id,))

        await conn.executemany(
            "INSERT INTO team_member_index (team_id, user_id, role) VALUES (?, ?, ?)",
            [(team.id, m.user_id, m.role.value) for m in team.members.values()],
        )
        await conn.executemany(
            """
            INSERT INTO team_pending_index (team_id, user_id, kind, created_at)
            VALUES (?, ?, ?, ?)
            """,
            [
                (e.team_id, e.user_id, e.kind, e.created_at.isoformat() if e.created_at else None)
                for e in pending_entries(team)
            ],
        )

    async def find_teams_for_user(self, user_id: str) -> list[Team]:
        await self._ensure_tables()

        try:
            async with self.db.get_connection() as conn:
                cursor = await conn.execute(
                    """
                    SELECT s.snapshot
                    FROM team_snapshots s
                    JOIN team_member_index m ON s.id = m.team_id
                    WHERE m.user_id = ? AND s.disbanded = 0
                    ORDER BY s.id
                    """,
                    (user_id,),
                )
                rows = await cursor.fetchall()
        except (aiosqlite.Error, OSError) as e:
            raise StorageUnavailable(
                f"Failed to list teams for {user_id}: {e}", user_id=user_id
            ) from e

        return [Team.from_dict(json.loads(row[0])) for row in rows]

    async def find_pending_for_user(self, user_id: str) -> list[PendingEntry]:
        await self._ensure_tables()

        try:
            async with self.db.get_connection() as conn:
                cursor = await conn.execute(
                    """
                    SELECT p.team_id, p.user_id, p.kind, p.created_at
                    FROM team_pending_index p
                    JOIN team_snapshots s ON s.id = p.team_id
                    WHERE p.user_id = ? AND s.disbanded = 0
                    ORDER BY p.team_id, p.kind
                    """,
                    (user_id,),
                )
                rows = await cursor.fetchall()
        except (aiosqlite.Error, OSError) as e:
            raise StorageUnavailable(
                f"Failed to list pending entries for {user_id}: {e}", user_id=user_id
            ) from e

        return [
            PendingEntry(
                team_id=row[0],
                user_id=row[1],
                kind=row[2],
                created_at=datetime.fromisoformat(row[3]) if row[3] else None,
            )
            for row in rows
        ]
