"""Team governance engine.

This package owns the Team aggregate and everything around it:
- Role hierarchy and permission predicates
- Team snapshots with memberships, join requests and invitations
- Per-team command serialization and optimistic-concurrency commits
- Domain events for notification fan-out
"""

from guildhall.governance.roles import (
    TeamRole,
    rank,
    can_manage_members,
    can_disband,
    can_initiate_transfer,
    can_manage_role,
    can_assign_role,
)
from guildhall.governance.models import (
    Team,
    Membership,
    JoinRequest,
    JoinRequestStatus,
    Invitation,
    InvitationStatus,
)
from guildhall.governance.errors import (
    ErrorCategory,
    ErrorKind,
    GovernanceError,
    Forbidden,
    AlreadyMember,
    NotMember,
    DuplicatePendingRequest,
    DuplicatePendingInvitation,
    NoPendingRequest,
    NoPendingInvitation,
    TeamDisbanded,
    TeamNotFound,
    CannotRemoveOwner,
    OwnerCannotLeave,
    InvalidRole,
    InvalidParticipant,
    ConcurrentModification,
    CommandTimeout,
    StorageUnavailable,
    InvariantViolation,
)
from guildhall.governance.events import (
    TeamEvent,
    TeamEventType,
    EventSink,
    EventBus,
    RecordingSink,
)
from guildhall.governance.aggregate import TeamAggregate, check_invariants
from guildhall.governance.commands import (
    Command,
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
)
from guildhall.governance.guard import ConcurrencyGuard
from guildhall.governance.store import (
    TeamStore,
    InMemoryTeamStore,
    SqliteTeamStore,
    PendingEntry,
)
from guildhall.governance.service import (
    CommandResult,
    MembershipService,
    generate_team_id,
)
from guildhall.governance.retry import RetryPolicy, execute_with_retry

__all__ = [
    # Roles
    "TeamRole",
    "rank",
    "can_manage_members",
    "can_disband",
    "can_initiate_transfer",
    "can_manage_role",
    "can_assign_role",
    # Model
    "Team",
    "Membership",
    "JoinRequest",
    "JoinRequestStatus",
    "Invitation",
    "InvitationStatus",
    # Errors
    "ErrorCategory",
    "ErrorKind",
    "GovernanceError",
    "Forbidden",
    "AlreadyMember",
    "NotMember",
    "DuplicatePendingRequest",
    "DuplicatePendingInvitation",
    "NoPendingRequest",
    "NoPendingInvitation",
    "TeamDisbanded",
    "TeamNotFound",
    "CannotRemoveOwner",
    "OwnerCannotLeave",
    "InvalidRole",
    "InvalidParticipant",
    "ConcurrentModification",
    "CommandTimeout",
    "StorageUnavailable",
    "InvariantViolation",
    # Events
    "TeamEvent",
    "TeamEventType",
    "EventSink",
    "EventBus",
    "RecordingSink",
    # Aggregate
    "TeamAggregate",
    "check_invariants",
    # Commands
    "Command",
    "RequestJoin",
    "InviteMember",
    "ResolveJoinRequest",
    "ResolveInvitation",
    "AddMember",
    "RemoveMember",
    "ChangeRole",
    "TransferOwnership",
    "Leave",
    "Disband",
    "UpdateTeam",
    # Concurrency & storage
    "ConcurrencyGuard",
    "TeamStore",
    "InMemoryTeamStore",
    "SqliteTeamStore",
    "PendingEntry",
    # Service
    "CommandResult",
    "MembershipService",
    "generate_team_id",
    "RetryPolicy",
    "execute_with_retry",
]
