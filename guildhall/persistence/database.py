"""SQLite database setup for Guildhall."""

import aiosqlite
from pathlib import Path
from typing import Optional
import structlog

log = structlog.get_logger()

# Current schema version for migration tracking
# Version 1: team snapshots with membership and pending-entry indexes
SCHEMA_VERSION = 1


class Database:
    """Manages SQLite database connection and schema."""

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize database manager.

        Args:
            db_path: Path to the database file. Defaults to ~/.guildhall/guildhall.db
        """
        if db_path is None:
            db_path = Path.home() / ".guildhall" / "guildhall.db"

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialized = False

    async def _get_schema_version(self, db: aiosqlite.Connection) -> int:
        """Get current schema version from database."""
        async with db.execute("PRAGMA user_version") as cursor:
            row = await cursor.fetchone()
            return row[0] if row else 0

    async def _set_schema_version(self, db: aiosqlite.Connection, version: int):
        """Set schema version in database."""
        await db.execute(f"PRAGMA user_version = {int(version)}")

    async def initialize(self):
        """Create database schema if it doesn't exist."""
        if self._initialized:
            return

        async with aiosqlite.connect(self.db_path) as db:
            # One row per team: the full governance snapshot plus its version
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS team_snapshots (
                    id TEXT PRIMARY KEY,
                    version INTEGER NOT NULL,
                    snapshot TEXT NOT NULL,
                    disbanded INTEGER NOT NULL DEFAULT 0,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """
            )

            # Index rows rewritten alongside each snapshot
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS team_member_index (
                    team_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    role TEXT NOT NULL,
                    PRIMARY KEY (team_id, user_id),
                    FOREIGN KEY (team_id) REFERENCES team_snapshots(id) ON DELETE CASCADE
                )
            """
            )

            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS team_pending_index (
                    team_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    kind TEXT NOT NULL CHECK (kind IN ('join_request', 'invitation')),
                    created_at TIMESTAMP,
                    PRIMARY KEY (team_id, user_id, kind),
                    FOREIGN KEY (team_id) REFERENCES team_snapshots(id) ON DELETE CASCADE
                )
            """
            )

            await db.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_member_index_user
                ON team_member_index(user_id)
            """
            )

            await db.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_pending_index_user
                ON team_pending_index(user_id)
            """
            )

            current_version = await self._get_schema_version(db)
            if current_version < SCHEMA_VERSION:
                await self._set_schema_version(db, SCHEMA_VERSION)
                log.info(
                    "schema_migrated",
                    from_version=current_version,
                    to_version=SCHEMA_VERSION,
                )

            await db.commit()

        self._initialized = True
        log.info("database_initialized", path=str(self.db_path))

    def get_connection(self):
        """Get an async database connection context manager."""
        return aiosqlite.connect(self.db_path)
