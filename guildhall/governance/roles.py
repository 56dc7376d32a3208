"""Role hierarchy for team governance.

Roles form a strict total order:

    Owner > Leader > Deputy Leader > Chief > Founding Member > Member

A higher rank carries every permission of the ranks below it, with two
carve-outs: only the Owner may disband the team or hand ownership over, and
only the Owner and Leaders may manage members (invite, resolve requests,
change roles, remove).

Everything here is pure; nothing touches team state.
"""

from enum import Enum
from functools import total_ordering


@total_ordering
class TeamRole(Enum):
    """Roles within a team, ordered by rank.

    MEMBER: Regular player
    FOUNDING_MEMBER: Honorary rank for early members
    CHIEF: Senior player
    DEPUTY_LEADER: Second in command, no management rights
    LEADER: Manages members and pending requests
    OWNER: Full control including disbanding and ownership transfer
    """

    MEMBER = "Member"
    FOUNDING_MEMBER = "Founding Member"
    CHIEF = "Chief"
    DEPUTY_LEADER = "Deputy Leader"
    LEADER = "Leader"
    OWNER = "Owner"

    @property
    def rank(self) -> int:
        """Numeric rank, 0 for Member up to 5 for Owner."""
        return _RANKS[self]

    def __lt__(self, other):
        if not isinstance(other, TeamRole):
            return NotImplemented
        return self.rank < other.rank

    @classmethod
    def parse(cls, value) -> "TeamRole":
        """Resolve a role from its display value or member name.

        Args:
            value: TeamRole, display value ("Deputy Leader") or name
                ("deputy_leader"), case-insensitive

        Returns:
            Matching TeamRole

        Raises:
            InvalidRole: If the value names no role
        """
        if isinstance(value, cls):
            return value

        if isinstance(value, str):
            wanted = value.strip().lower()
            for role in cls:
                if wanted in (role.value.lower(), role.name.lower()):
                    return role
                if wanted.replace("-", " ") == role.value.lower():
                    return role

        from guildhall.governance.errors import InvalidRole

        raise InvalidRole(f"Unknown role: {value!r}", role=str(value))


_RANKS = {
    TeamRole.MEMBER: 0,
    TeamRole.FOUNDING_MEMBER: 1,
    TeamRole.CHIEF: 2,
    TeamRole.DEPUTY_LEADER: 3,
    TeamRole.LEADER: 4,
    TeamRole.OWNER: 5,
}


def rank(role: TeamRole) -> int:
    """Numeric rank of a role."""
    return _RANKS[role]


def can_manage_members(role: TeamRole) -> bool:
    """Owners and Leaders manage membership, roles and pending requests."""
    return role in (TeamRole.OWNER, TeamRole.LEADER)


def can_disband(role: TeamRole) -> bool:
    """Only the Owner can disband a team."""
    return role == TeamRole.OWNER


def can_initiate_transfer(role: TeamRole) -> bool:
    """Only the Owner can transfer ownership."""
    return role == TeamRole.OWNER


def can_manage_role(actor: TeamRole, target: TeamRole) -> bool:
    """Check if an actor may remove or re-rank a member holding target.

    Args:
        actor: Role of the member acting
        target: Current role of the member acted upon

    Returns:
        True if the actor manages members and strictly outranks the target
    """
    if not can_manage_members(actor):
        return False

    # Owner can manage anyone except itself
    if actor == TeamRole.OWNER:
        return target != TeamRole.OWNER

    return actor > target


def can_assign_role(actor: TeamRole, new_role: TeamRole) -> bool:
    """Check if an actor may grant new_role to someone.

    Owner is never assignable; ownership only moves by transfer.
    """
    if new_role == TeamRole.OWNER or not can_manage_members(actor):
        return False
    return actor > new_role
