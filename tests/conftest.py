"""Shared test fixtures."""

import pytest
import pytest_asyncio

from guildhall.governance import (
    InMemoryTeamStore,
    MembershipService,
    RecordingSink,
    SqliteTeamStore,
    TeamAggregate,
)
from guildhall.persistence.database import Database


@pytest.fixture
def db(tmp_path):
    """Test database."""
    return Database(tmp_path / "test.db")


@pytest.fixture
def store():
    """In-memory team store."""
    return InMemoryTeamStore()


@pytest.fixture
def sqlite_store(db):
    """SQLite team store on a temporary database."""
    return SqliteTeamStore(db)


@pytest.fixture
def sink():
    """Event sink that records everything published."""
    return RecordingSink()


@pytest.fixture
def service(store, sink):
    """Membership service over the in-memory store."""
    return MembershipService(store, sink=sink)


@pytest_asyncio.fixture
async def team(service):
    """Team 'Night Owls' owned by alice."""
    return await service.create_team("alice", "Night Owls", team_id="t1")


@pytest_asyncio.fixture
async def staffed_team(service, team):
    """Team t1 with a Leader (lea), a Chief (chi) and a Member (bob)."""
    await service.add_member("alice", "t1", "lea", "Leader")
    await service.add_member("alice", "t1", "chi", "Chief")
    await service.add_member("alice", "t1", "bob")
    return await service.describe("t1")


@pytest.fixture
def aggregate():
    """Fresh aggregate for a team owned by alice."""
    agg, _ = TeamAggregate.create("t1", "alice", "Night Owls")
    return agg
