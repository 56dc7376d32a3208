"""Failure taxonomy for governance commands.

Every failure a command can produce is a GovernanceError subclass carrying a
kind, a category and enough context (team, user, role) to render a precise
message. Categories drive handling:

- PERMISSION: caller lacks rank; never retried
- STATE_CONFLICT: command does not apply to the current state; retrying
  without new information reproduces it
- CONCURRENCY: transient; the caller may retry with a fresh load
- COLLABORATOR: storage unavailable; fatal to the command, nothing applied
"""

from enum import Enum
from typing import Any, Optional


class ErrorCategory(Enum):
    """Categories of failures for handling decisions."""

    PERMISSION = "permission"
    STATE_CONFLICT = "state_conflict"
    CONCURRENCY = "concurrency"
    COLLABORATOR = "collaborator"


class ErrorKind(Enum):
    """Named failure kinds."""

    FORBIDDEN = "forbidden"
    ALREADY_MEMBER = "already_member"
    NOT_MEMBER = "not_member"
    DUPLICATE_PENDING_REQUEST = "duplicate_pending_request"
    DUPLICATE_PENDING_INVITATION = "duplicate_pending_invitation"
    NO_PENDING_REQUEST = "no_pending_request"
    NO_PENDING_INVITATION = "no_pending_invitation"
    TEAM_DISBANDED = "team_disbanded"
    TEAM_NOT_FOUND = "team_not_found"
    CANNOT_REMOVE_OWNER = "cannot_remove_owner"
    OWNER_CANNOT_LEAVE = "owner_cannot_leave"
    INVALID_ROLE = "invalid_role"
    INVALID_PARTICIPANT = "invalid_participant"
    CONCURRENT_MODIFICATION = "concurrent_modification"
    TIMEOUT = "timeout"
    STORAGE_UNAVAILABLE = "storage_unavailable"


class GovernanceError(Exception):
    """Base class for every governance failure."""

    kind: ErrorKind
    category: ErrorCategory = ErrorCategory.STATE_CONFLICT

    def __init__(
        self,
        message: str = "",
        *,
        team_id: Optional[str] = None,
        user_id: Optional[str] = None,
        role: Optional[str] = None,
    ):
        self.message = message or self.kind.value.replace("_", " ")
        self.team_id = team_id
        self.user_id = user_id
        self.role = role
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        """Only concurrency failures are worth retrying."""
        return self.category == ErrorCategory.CONCURRENCY

    def with_context(
        self,
        team_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> "GovernanceError":
        """Fill in missing context without overwriting what is already set."""
        if self.team_id is None:
            self.team_id = team_id
        if self.user_id is None:
            self.user_id = user_id
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "error": self.kind.value,
            "category": self.category.value,
            "message": self.message,
            "team_id": self.team_id,
            "user_id": self.user_id,
            "role": self.role,
            "retryable": self.retryable,
        }

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({self.message!r}, team_id={self.team_id!r}, "
            f"user_id={self.user_id!r})"
        )


# Permission errors

class Forbidden(GovernanceError):
    kind = ErrorKind.FORBIDDEN
    category = ErrorCategory.PERMISSION


# State-conflict errors

class AlreadyMember(GovernanceError):
    kind = ErrorKind.ALREADY_MEMBER


class NotMember(GovernanceError):
    kind = ErrorKind.NOT_MEMBER


class DuplicatePendingRequest(GovernanceError):
    kind = ErrorKind.DUPLICATE_PENDING_REQUEST


class DuplicatePendingInvitation(GovernanceError):
    kind = ErrorKind.DUPLICATE_PENDING_INVITATION


class NoPendingRequest(GovernanceError):
    kind = ErrorKind.NO_PENDING_REQUEST


class NoPendingInvitation(GovernanceError):
    kind = ErrorKind.NO_PENDING_INVITATION


class TeamDisbanded(GovernanceError):
    kind = ErrorKind.TEAM_DISBANDED


class TeamNotFound(GovernanceError):
    kind = ErrorKind.TEAM_NOT_FOUND


class CannotRemoveOwner(GovernanceError):
    kind = ErrorKind.CANNOT_REMOVE_OWNER


class OwnerCannotLeave(GovernanceError):
    kind = ErrorKind.OWNER_CANNOT_LEAVE


class InvalidRole(GovernanceError):
    kind = ErrorKind.INVALID_ROLE


class InvalidParticipant(GovernanceError):
    kind = ErrorKind.INVALID_PARTICIPANT


# Concurrency errors

class ConcurrentModification(GovernanceError):
    kind = ErrorKind.CONCURRENT_MODIFICATION
    category = ErrorCategory.CONCURRENCY


class CommandTimeout(GovernanceError):
    """The per-team slot was not acquired before the deadline."""

    kind = ErrorKind.TIMEOUT
    category = ErrorCategory.CONCURRENCY


# Collaborator errors

class StorageUnavailable(GovernanceError):
    kind = ErrorKind.STORAGE_UNAVAILABLE
    category = ErrorCategory.COLLABORATOR


class InvariantViolation(RuntimeError):
    """A team snapshot lost its single owner or kept a member pending.

    Always a bug, never a user error.
    """
