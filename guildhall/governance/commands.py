"""Inbound governance commands.

One frozen dataclass per action. A command names what the caller wants; the
caller id and team id travel beside it. Every command may carry the version
the caller last observed: if set and the team has moved on, the command
fails with ConcurrentModification instead of applying to state the caller
never saw. Ownership transfers that carry no version are pinned by the
service to the version current when they are submitted.
"""

from dataclasses import dataclass
from typing import Optional, Union

from guildhall.governance.roles import TeamRole


@dataclass(frozen=True)
class RequestJoin:
    user_id: str
    message: Optional[str] = None
    expected_version: Optional[int] = None


@dataclass(frozen=True)
class InviteMember:
    invitee_id: str
    message: Optional[str] = None
    expected_version: Optional[int] = None


@dataclass(frozen=True)
class ResolveJoinRequest:
    user_id: str
    accept: bool
    expected_version: Optional[int] = None


@dataclass(frozen=True)
class ResolveInvitation:
    """Invitee accepts/declines, or a manager revokes (accept=False)."""

    invitee_id: str
    accept: bool
    expected_version: Optional[int] = None


@dataclass(frozen=True)
class AddMember:
    user_id: str
    role: TeamRole = TeamRole.MEMBER
    expected_version: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, "role", TeamRole.parse(self.role))


@dataclass(frozen=True)
class RemoveMember:
    user_id: str
    expected_version: Optional[int] = None


@dataclass(frozen=True)
class ChangeRole:
    user_id: str
    new_role: TeamRole
    expected_version: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, "new_role", TeamRole.parse(self.new_role))


@dataclass(frozen=True)
class TransferOwnership:
    new_owner_id: str
    expected_version: Optional[int] = None


@dataclass(frozen=True)
class Leave:
    expected_version: Optional[int] = None


@dataclass(frozen=True)
class Disband:
    expected_version: Optional[int] = None


@dataclass(frozen=True)
class UpdateTeam:
    name: Optional[str] = None
    description: Optional[str] = None
    expected_version: Optional[int] = None

    def __post_init__(self):
        if self.name is not None:
            if not self.name.strip():
                raise ValueError("Team name cannot be empty")
            object.__setattr__(self, "name", self.name.strip())


Command = Union[
    RequestJoin,
    InviteMember,
    ResolveJoinRequest,
    ResolveInvitation,
    AddMember,
    RemoveMember,
    ChangeRole,
    TransferOwnership,
    Leave,
    Disband,
    UpdateTeam,
]


def pinned_at_submission(command: Command) -> bool:
    """True for commands judged against the state seen when submitted.

    An ownership transfer only makes sense for the owner who issued it. If
    another command commits while it waits for the team, it fails with
    ConcurrentModification rather than being re-evaluated for a caller who
    may no longer be Owner.
    """
    return isinstance(command, TransferOwnership)


def command_name(command: Command) -> str:
    """snake_case name of a command, used in logs."""
    name = type(command).__name__
    return "".join(
        f"_{c.lower()}" if c.isupper() and i else c.lower() for i, c in enumerate(name)
    )
