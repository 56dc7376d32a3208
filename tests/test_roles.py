"""Tests for the role hierarchy."""

import pytest

from guildhall.governance import (
    InvalidRole,
    TeamRole,
    can_assign_role,
    can_disband,
    can_initiate_transfer,
    can_manage_members,
    can_manage_role,
    rank,
)

ORDER = [
    TeamRole.MEMBER,
    TeamRole.FOUNDING_MEMBER,
    TeamRole.CHIEF,
    TeamRole.DEPUTY_LEADER,
    TeamRole.LEADER,
    TeamRole.OWNER,
]


class TestTeamRole:
    """Tests for TeamRole ordering and parsing."""

    def test_ranks_are_strictly_increasing(self):
        assert [rank(r) for r in ORDER] == [0, 1, 2, 3, 4, 5]

    def test_comparison_follows_rank(self):
        assert TeamRole.OWNER > TeamRole.LEADER > TeamRole.DEPUTY_LEADER
        assert TeamRole.CHIEF > TeamRole.FOUNDING_MEMBER > TeamRole.MEMBER
        assert sorted(reversed(ORDER)) == ORDER

    def test_display_values(self):
        assert TeamRole.DEPUTY_LEADER.value == "Deputy Leader"
        assert TeamRole.FOUNDING_MEMBER.value == "Founding Member"

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("Leader", TeamRole.LEADER),
            ("leader", TeamRole.LEADER),
            ("Deputy Leader", TeamRole.DEPUTY_LEADER),
            ("deputy_leader", TeamRole.DEPUTY_LEADER),
            ("deputy-leader", TeamRole.DEPUTY_LEADER),
            ("FOUNDING_MEMBER", TeamRole.FOUNDING_MEMBER),
            (TeamRole.CHIEF, TeamRole.CHIEF),
        ],
    )
    def test_parse(self, raw, expected):
        assert TeamRole.parse(raw) is expected

    def test_parse_unknown_role(self):
        with pytest.raises(InvalidRole):
            TeamRole.parse("Emperor")


class TestPermissions:
    """Tests for permission predicates."""

    def test_only_owner_and_leader_manage_members(self):
        managers = [r for r in ORDER if can_manage_members(r)]
        assert managers == [TeamRole.LEADER, TeamRole.OWNER]

    def test_only_owner_disbands_and_transfers(self):
        assert [r for r in ORDER if can_disband(r)] == [TeamRole.OWNER]
        assert [r for r in ORDER if can_initiate_transfer(r)] == [TeamRole.OWNER]

    def test_owner_manages_everyone_but_owner(self):
        for target in ORDER[:-1]:
            assert can_manage_role(TeamRole.OWNER, target)
        assert not can_manage_role(TeamRole.OWNER, TeamRole.OWNER)

    def test_leader_manages_only_lower_ranks(self):
        assert can_manage_role(TeamRole.LEADER, TeamRole.DEPUTY_LEADER)
        assert can_manage_role(TeamRole.LEADER, TeamRole.MEMBER)
        assert not can_manage_role(TeamRole.LEADER, TeamRole.LEADER)
        assert not can_manage_role(TeamRole.LEADER, TeamRole.OWNER)

    def test_non_managers_manage_nobody(self):
        for actor in ORDER[:4]:
            for target in ORDER:
                assert not can_manage_role(actor, target)

    def test_owner_is_never_assignable(self):
        for actor in ORDER:
            assert not can_assign_role(actor, TeamRole.OWNER)

    def test_assign_below_own_rank(self):
        assert can_assign_role(TeamRole.OWNER, TeamRole.LEADER)
        assert can_assign_role(TeamRole.LEADER, TeamRole.DEPUTY_LEADER)
        assert not can_assign_role(TeamRole.LEADER, TeamRole.LEADER)
        assert not can_assign_role(TeamRole.DEPUTY_LEADER, TeamRole.MEMBER)
