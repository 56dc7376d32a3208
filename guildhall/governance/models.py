"""Governance data model: teams, memberships, join requests, invitations.

These dataclasses are plain state. Rules live in TeamAggregate; this module
only knows how to copy itself and round-trip through a dict snapshot.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from guildhall.governance.roles import TeamRole


class JoinRequestStatus(str, Enum):
    """Lifecycle of a join request."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class InvitationStatus(str, Enum):
    """Lifecycle of an invitation."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    REVOKED = "revoked"


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class Membership:
    """A user's membership in a team.

    Attributes:
        user_id: Member's user ID
        role: Member's role
        joined_at: When the user joined
        invited_by: User who brought the member in, if any
    """

    user_id: str
    role: TeamRole
    joined_at: datetime = field(default_factory=datetime.now)
    invited_by: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "user_id": self.user_id,
            "role": self.role.value,
            "joined_at": self.joined_at.isoformat(),
            "invited_by": self.invited_by,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Membership":
        return cls(
            user_id=data["user_id"],
            role=TeamRole(data["role"]),
            joined_at=_parse_ts(data.get("joined_at")) or datetime.now(),
            invited_by=data.get("invited_by"),
        )


@dataclass
class JoinRequest:
    """A user asking to join a team."""

    user_id: str
    message: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    status: JoinRequestStatus = JoinRequestStatus.PENDING
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "user_id": self.user_id,
            "message": self.message,
            "created_at": self.created_at.isoformat(),
            "status": self.status.value,
            "resolved_by": self.resolved_by,
            "resolved_at": _ts(self.resolved_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JoinRequest":
        return cls(
            user_id=data["user_id"],
            message=data.get("message"),
            created_at=_parse_ts(data.get("created_at")) or datetime.now(),
            status=JoinRequestStatus(data.get("status", "pending")),
            resolved_by=data.get("resolved_by"),
            resolved_at=_parse_ts(data.get("resolved_at")),
        )


@dataclass
class Invitation:
    """A team member inviting a user to join."""

    inviter_id: str
    invitee_id: str
    message: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    status: InvitationStatus = InvitationStatus.PENDING
    resolved_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "inviter_id": self.inviter_id,
            "invitee_id": self.invitee_id,
            "message": self.message,
            "created_at": self.created_at.isoformat(),
            "status": self.status.value,
            "resolved_at": _ts(self.resolved_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Invitation":
        return cls(
            inviter_id=data["inviter_id"],
            invitee_id=data["invitee_id"],
            message=data.get("message"),
            created_at=_parse_ts(data.get("created_at")) or datetime.now(),
            status=InvitationStatus(data.get("status", "pending")),
            resolved_at=_parse_ts(data.get("resolved_at")),
        )


@dataclass
class Team:
    """Governance state of one team.

    Attributes:
        id: Opaque team identifier
        name: Display name
        description: Display description
        owner_id: User ID of the single Owner
        members: user_id -> Membership
        pending_join_requests: user_id -> pending JoinRequest
        pending_invitations: invitee_id -> pending Invitation
        version: Optimistic concurrency token, 1 at creation
        disbanded: Terminal flag; a disbanded team accepts no commands
        created_at: Creation timestamp
        updated_at: Last mutation timestamp
    """

    id: str
    name: str
    owner_id: str
    description: str = ""
    members: dict[str, Membership] = field(default_factory=dict)
    pending_join_requests: dict[str, JoinRequest] = field(default_factory=dict)
    pending_invitations: dict[str, Invitation] = field(default_factory=dict)
    version: int = 0
    disbanded: bool = False
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def is_member(self, user_id: str) -> bool:
        return user_id in self.members

    def role_of(self, user_id: str) -> Optional[TeamRole]:
        """Role of a user, None if not a member."""
        membership = self.members.get(user_id)
        return membership.role if membership else None

    def members_by_role(self) -> list[Membership]:
        """Members sorted by rank (highest first), then join time."""
        return sorted(
            self.members.values(),
            key=lambda m: (-m.role.rank, m.joined_at),
        )

    def copy(self) -> "Team":
        """Deep copy through the snapshot codec."""
        return Team.from_dict(self.to_dict())

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "owner_id": self.owner_id,
            "members": [m.to_dict() for m in self.members.values()],
            "pending_join_requests": [
                r.to_dict() for r in self.pending_join_requests.values()
            ],
            "pending_invitations": [
                i.to_dict() for i in self.pending_invitations.values()
            ],
            "version": self.version,
            "disbanded": self.disbanded,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Team":
        members = [Membership.from_dict(m) for m in data.get("members", [])]
        requests = [
            JoinRequest.from_dict(r) for r in data.get("pending_join_requests", [])
        ]
        invitations = [
            Invitation.from_dict(i) for i in data.get("pending_invitations", [])
        ]
        return cls(
            id=data["id"],
            name=data["name"],
            description=data.get("description") or "",
            owner_id=data["owner_id"],
            members={m.user_id: m for m in members},
            pending_join_requests={r.user_id: r for r in requests},
            pending_invitations={i.invitee_id: i for i in invitations},
            version=data.get("version", 0),
            disbanded=bool(data.get("disbanded", False)),
            created_at=_parse_ts(data.get("created_at")) or datetime.now(),
            updated_at=_parse_ts(data.get("updated_at")) or datetime.now(),
        )
