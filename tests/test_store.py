"""Tests for team stores."""

import pytest

from guildhall.governance import (
    InMemoryTeamStore,
    InvariantViolation,
    SqliteTeamStore,
    StorageUnavailable,
    TeamAggregate,
    TeamRole,
)
from guildhall.persistence.database import Database


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request, tmp_path):
    """Each store implementation in turn."""
    if request.param == "memory":
        return InMemoryTeamStore()
    return SqliteTeamStore(Database(tmp_path / "teams.db"))


def _new_team(team_id="t1", owner_id="alice"):
    agg, _ = TeamAggregate.create(team_id, owner_id, "Night Owls")
    return agg


# ============================================
# Store Contract
# ============================================


class TestStoreContract:
    """Behavior shared by every TeamStore."""

    @pytest.mark.asyncio
    async def test_load_missing(self, any_store):
        assert await any_store.load("nope") is None

    @pytest.mark.asyncio
    async def test_create_and_load(self, any_store):
        agg = _new_team()
        assert await any_store.compare_and_swap("t1", 0, agg.team)

        team, version = await any_store.load("t1")
        assert version == 1
        assert team.owner_id == "alice"
        assert team.role_of("alice") == TeamRole.OWNER

    @pytest.mark.asyncio
    async def test_create_twice_fails(self, any_store):
        assert await any_store.compare_and_swap("t1", 0, _new_team().team)
        assert not await any_store.compare_and_swap("t1", 0, _new_team(owner_id="bob").team)

        team, _ = await any_store.load("t1")
        assert team.owner_id == "alice"

    @pytest.mark.asyncio
    async def test_stale_version_rejected(self, any_store):
        await any_store.compare_and_swap("t1", 0, _new_team().team)

        team, version = await any_store.load("t1")
        first = TeamAggregate(team)
        first.add_member("bob")
        assert await any_store.compare_and_swap("t1", version, first.team)

        stale, _ = await any_store.load("t1")
        stale.version = version
        second = TeamAggregate(stale)
        second.add_member("carol")
        assert not await any_store.compare_and_swap("t1", version, second.team)

        team, current = await any_store.load("t1")
        assert current == 2
        assert team.is_member("bob")
        assert not team.is_member("carol")

    @pytest.mark.asyncio
    async def test_load_returns_independent_copies(self, any_store):
        await any_store.compare_and_swap("t1", 0, _new_team().team)

        a, _ = await any_store.load("t1")
        b, _ = await any_store.load("t1")
        a.members.clear()

        assert b.is_member("alice")

    @pytest.mark.asyncio
    async def test_rejects_snapshot_breaking_invariants(self, any_store):
        agg = _new_team()
        agg.team.members["alice"].role = TeamRole.LEADER

        with pytest.raises(InvariantViolation):
            await any_store.compare_and_swap("t1", 0, agg.team)
        assert await any_store.load("t1") is None

    @pytest.mark.asyncio
    async def test_rejects_non_increasing_version(self, any_store):
        agg = _new_team()
        await any_store.compare_and_swap("t1", 0, agg.team)

        with pytest.raises(ValueError):
            await any_store.compare_and_swap("t1", 1, agg.team)

    @pytest.mark.asyncio
    async def test_find_teams_and_pending(self, any_store):
        one = _new_team("t1")
        one.add_member("bob")
        one.record_invitation("alice", "carol")
        await any_store.compare_and_swap("t1", 0, one.team)

        two = _new_team("t2", owner_id="dave")
        two.record_join_request("carol", "hi")
        two.record_join_request("bob")
        await any_store.compare_and_swap("t2", 0, two.team)

        bob_teams = await any_store.find_teams_for_user("bob")
        assert [t.id for t in bob_teams] == ["t1"]

        carol_pending = await any_store.find_pending_for_user("carol")
        assert sorted((p.team_id, p.kind) for p in carol_pending) == [
            ("t1", "invitation"),
            ("t2", "join_request"),
        ]

    @pytest.mark.asyncio
    async def test_indexes_follow_updates(self, any_store):
        agg = _new_team()
        agg.record_invitation("alice", "bob")
        await any_store.compare_and_swap("t1", 0, agg.team)

        team, version = await any_store.load("t1")
        agg = TeamAggregate(team)
        agg.resolve_invitation("bob", accept=True)
        await any_store.compare_and_swap("t1", version, agg.team)

        assert await any_store.find_pending_for_user("bob") == []
        assert [t.id for t in await any_store.find_teams_for_user("bob")] == ["t1"]

    @pytest.mark.asyncio
    async def test_disbanded_teams_hidden_from_listings(self, any_store):
        agg = _new_team()
        agg.record_invitation("alice", "bob")
        agg.disband()
        await any_store.compare_and_swap("t1", 0, agg.team)

        assert await any_store.find_teams_for_user("alice") == []
        assert await any_store.find_pending_for_user("bob") == []
        team, _ = await any_store.load("t1")
        assert team.disbanded


# ============================================
# SQLite Specifics
# ============================================


class TestSqliteTeamStore:
    """Tests specific to the SQLite store."""

    @pytest.mark.asyncio
    async def test_survives_reopen(self, tmp_path):
        path = tmp_path / "teams.db"
        await SqliteTeamStore(Database(path)).compare_and_swap("t1", 0, _new_team().team)

        reopened = SqliteTeamStore(Database(path))
        team, version = await reopened.load("t1")

        assert version == 1
        assert team.name == "Night Owls"

    @pytest.mark.asyncio
    async def test_schema_version(self, db):
        await db.initialize()

        async with db.get_connection() as conn:
            cursor = await conn.execute("PRAGMA user_version")
            row = await cursor.fetchone()

        assert row[0] == 1

    @pytest.mark.asyncio
    async def test_unreachable_database(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        store = SqliteTeamStore(Database(tmp_path / "teams.db"))
        store.db.db_path = blocker / "teams.db"

        with pytest.raises(StorageUnavailable):
            await store.load("t1")
