"""Tests for heartbeat presence tracking."""

from datetime import datetime, timedelta

import pytest

from guildhall.presence import PresenceStatus, PresenceTracker


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 1, 1, 20, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tracker(clock):
    return PresenceTracker(ttl_seconds=60, clock=clock)


class TestPresenceTracker:
    """Tests for PresenceTracker."""

    def test_unknown_user_is_offline(self, tracker):
        assert tracker.status("bob") == PresenceStatus.OFFLINE
        assert tracker.last_seen("bob") is None

    def test_heartbeat_marks_online(self, tracker, clock):
        tracker.heartbeat("bob")

        assert tracker.is_online("bob")
        assert tracker.last_seen("bob") == clock.now

    def test_expires_after_ttl(self, tracker, clock):
        tracker.heartbeat("bob")
        clock.advance(59)
        assert tracker.is_online("bob")

        clock.advance(1)
        assert not tracker.is_online("bob")
        assert tracker.last_seen("bob") is not None

    def test_heartbeat_extends_streak(self, tracker, clock):
        first = tracker.heartbeat("bob")
        clock.advance(30)
        record = tracker.heartbeat("bob")

        assert record.first_seen == first.first_seen
        assert record.last_seen == clock.now

    def test_expired_heartbeat_starts_new_streak(self, tracker, clock):
        tracker.heartbeat("bob")
        clock.advance(120)
        record = tracker.heartbeat("bob")

        assert record.first_seen == clock.now

    def test_go_offline(self, tracker):
        tracker.heartbeat("bob")

        assert tracker.go_offline("bob")
        assert not tracker.go_offline("bob")
        assert not tracker.is_online("bob")

    def test_online_preserves_order(self, tracker, clock):
        tracker.heartbeat("carol")
        tracker.heartbeat("alice")
        clock.advance(61)
        tracker.heartbeat("bob")

        assert tracker.online(["alice", "bob", "carol", "dave"]) == ["bob"]

    def test_prune_and_stats(self, tracker, clock):
        tracker.heartbeat("alice")
        clock.advance(61)
        tracker.heartbeat("bob")

        assert tracker.get_stats() == {"tracked": 2, "online": 1, "ttl_seconds": 60.0}
        assert tracker.prune() == 1
        assert tracker.get_stats()["tracked"] == 1

    def test_invalid_ttl(self):
        with pytest.raises(ValueError):
            PresenceTracker(ttl_seconds=0)
