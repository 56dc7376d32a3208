"""Membership service: the externally callable governance API.

Every command runs the same pipeline:

1. Acquire the team's slot from the ConcurrencyGuard
2. Load the snapshot and its version from the TeamStore
3. Reject disbanded teams and stale expected versions
4. Resolve the caller's role and check permissions
5. Apply the TeamAggregate operation
6. Commit with compare-and-swap against the loaded version
7. Release the slot, then publish events to the EventSink

Ownership transfers without an expected version are pinned to the version
current at submission, before step 1. A command cancelled during step 6
keeps its slot until the write settles.

execute() returns a CommandResult and never raises a GovernanceError; the
convenience coroutines raise the failure instead. Nothing is retried here:
retries are a client policy (see guildhall.governance.retry).
"""

import asyncio
import secrets
from dataclasses import dataclass, field, replace
from typing import Callable, Optional

import structlog

from guildhall.governance import roles
from guildhall.governance.aggregate import Events, TeamAggregate
from guildhall.governance.commands import (
    AddMember,
    ChangeRole,
    Command,
    Disband,
    InviteMember,
    Leave,
    RemoveMember,
    RequestJoin,
    ResolveInvitation,
    ResolveJoinRequest,
    TransferOwnership,
    UpdateTeam,
    command_name,
    pinned_at_submission,
)
from guildhall.governance.errors import (
    CannotRemoveOwner,
    ConcurrentModification,
    Forbidden,
    GovernanceError,
    InvalidParticipant,
    InvalidRole,
    NotMember,
    StorageUnavailable,
    TeamDisbanded,
    TeamNotFound,
)
from guildhall.governance.events import EventSink, TeamEvent
from guildhall.governance.guard import ConcurrencyGuard
from guildhall.governance.models import Team
from guildhall.governance.roles import TeamRole
from guildhall.governance.store import PendingEntry, TeamStore

log = structlog.get_logger()


def generate_team_id() -> str:
    """Generate a unique team ID."""
    return secrets.token_hex(12)


@dataclass
class CommandResult:
    """Outcome of one command: events on success, the failure otherwise.

    Attributes:
        team_id: Team the command targeted
        events: Events committed by the command, primary event first
        error: Failure, verbatim, if the command did not apply
        version: Team version after the commit (None on failure)
    """

    team_id: str
    events: list[TeamEvent] = field(default_factory=list)
    error: Optional[GovernanceError] = None
    version: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def event(self) -> Optional[TeamEvent]:
        """Primary event of a successful command."""
        return self.events[0] if self.events else None

    def unwrap(self) -> TeamEvent:
        """Return the primary event or raise the failure."""
        if self.error is not None:
            raise self.error
        return self.events[0]

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "ok": self.ok,
            "team_id": self.team_id,
            "version": self.version,
            "events": [e.to_dict() for e in self.events],
            "error": self.error.to_dict() if self.error else None,
        }


Handler = Callable[[TeamAggregate, str, Optional[TeamRole], Command], Events]


class MembershipService:
    """Applies governance commands to teams."""

    def __init__(
        self,
        store: TeamStore,
        sink: Optional[EventSink] = None,
        guard: Optional[ConcurrencyGuard] = None,
        command_timeout: Optional[float] = None,
    ):
        """Initialize the service.

        Args:
            store: Snapshot storage with compare-and-swap
            sink: Receiver of committed events (optional)
            guard: Per-team serializer (a private one if not shared)
            command_timeout: Seconds a command may wait for its team slot
        """
        self.store = store
        self.sink = sink
        self.guard = guard or ConcurrencyGuard()
        self.command_timeout = command_timeout

        self._handlers: dict[type, Handler] = {
            RequestJoin: self._request_join,
            InviteMember: self._invite_member,
            ResolveJoinRequest: self._resolve_join_request,
            ResolveInvitation: self._resolve_invitation,
            AddMember: self._add_member,
            RemoveMember: self._remove_member,
            ChangeRole: self._change_role,
            TransferOwnership: self._transfer_ownership,
            Leave: self._leave,
            Disband: self._disband,
            UpdateTeam: self._update_team,
        }

    # ========== Core API ==========

    async def create_team(
        self,
        caller_id: str,
        name: str,
        description: str = "",
        team_id: Optional[str] = None,
    ) -> Team:
        """Create a team owned by the caller.

        Args:
            caller_id: User who becomes the Owner
            name: Team name
            description: Team description
            team_id: Explicit id (generated if not provided)

        Returns:
            The created Team at version 1

        Raises:
            ValueError: If the name is blank
            ConcurrentModification: If team_id is already taken
            StorageUnavailable: If the store cannot be reached
        """
        if not name or not name.strip():
            raise ValueError("Team name cannot be empty")

        team_id = team_id or generate_team_id()
        aggregate, events = TeamAggregate.create(
            team_id=team_id,
            owner_id=caller_id,
            name=name.strip(),
            description=description,
        )

        async with self.guard.slot(team_id, timeout=self.command_timeout):
            stored = await self._commit(team_id, 0, aggregate.team, events)
        if not stored:
            raise ConcurrentModification(
                f"Team {team_id} already exists", team_id=team_id, user_id=caller_id
            )

        log.info(
            "team_created",
            team_id=team_id,
            name=aggregate.team.name,
            owner_id=caller_id,
        )
        self._publish(events)
        return aggregate.team.copy()

    async def execute(
        self,
        caller_id: str,
        team_id: str,
        command: Command,
    ) -> CommandResult:
        """Run one command against one team.

        Args:
            caller_id: Authenticated user issuing the command
            team_id: Target team
            command: What to do

        Returns:
            CommandResult carrying the committed events or the failure
        """
        name = command_name(command)
        handler = self._handlers.get(type(command))
        if handler is None:
            raise TypeError(f"Unsupported command: {type(command).__name__}")

        try:
            command = await self.pin_version(team_id, command)
            async with self.guard.slot(team_id, timeout=self.command_timeout):
                events, version = await self._apply(caller_id, team_id, command, handler)
        except GovernanceError as e:
            e.with_context(team_id=team_id, user_id=caller_id)
            log.info(
                "command_rejected",
                command=name,
                team_id=team_id,
                caller_id=caller_id,
                error=e.kind.value,
                reason=e.message,
            )
            return CommandResult(team_id=team_id, error=e)

        log.info(
            "command_applied",
            command=name,
            team_id=team_id,
            caller_id=caller_id,
            version=version,
            events=[ev.type.value for ev in events],
        )
        self._publish(events)
        return CommandResult(team_id=team_id, events=list(events), version=version)

    async def _apply(
        self,
        caller_id: str,
        team_id: str,
        command: Command,
        handler: Handler,
    ) -> tuple[Events, int]:
        loaded = await self._store_call(self.store.load(team_id), team_id)
        if loaded is None:
            raise TeamNotFound(f"Team {team_id} not found", team_id=team_id)
        team, loaded_version = loaded

        if team.disbanded:
            raise TeamDisbanded(f"Team {team_id} has been disbanded", team_id=team_id)

        expected = command.expected_version
        if expected is not None and expected != loaded_version:
            raise ConcurrentModification(
                f"Team {team_id} is at version {loaded_version}, caller expected {expected}",
                team_id=team_id,
                user_id=caller_id,
            )

        aggregate = TeamAggregate(team, actor_id=caller_id)
        events = handler(aggregate, caller_id, team.role_of(caller_id), command)

        stored = await self._commit(team_id, loaded_version, aggregate.team, events)
        if not stored:
            raise ConcurrentModification(
                f"Team {team_id} changed since version {loaded_version}",
                team_id=team_id,
                user_id=caller_id,
            )

        return events, aggregate.version

    async def _commit(
        self, team_id: str, expected_version: int, team: Team, events: Events
    ) -> bool:
        """Compare-and-swap a snapshot; a write in flight is never abandoned.

        The write runs as its own task. If the caller is cancelled meanwhile,
        the team slot stays held until the write settles, and a write that
        stored still publishes its events before the cancellation propagates.
        """
        write = asyncio.ensure_future(
            self._store_call(
                self.store.compare_and_swap(team_id, expected_version, team), team_id
            )
        )
        try:
            return await asyncio.shield(write)
        except asyncio.CancelledError:
            while not write.done():
                try:
                    await asyncio.wait({write})
                except asyncio.CancelledError:
                    continue

            if not write.cancelled() and write.exception() is None and write.result():
                log.warning(
                    "command_committed_after_cancel",
                    team_id=team_id,
                    version=team.version,
                    events=[ev.type.value for ev in events],
                )
                self._publish(events)
            raise

    async def pin_version(self, team_id: str, command: Command) -> Command:
        """Bind a submission-pinned command to the team's current version.

        Commands that already carry expected_version, and commands that are
        re-evaluated against whatever state is current, come back unchanged.
        """
        if command.expected_version is not None or not pinned_at_submission(command):
            return command
        loaded = await self._store_call(self.store.load(team_id), team_id)
        if loaded is None:
            return command
        return replace(command, expected_version=loaded[1])

    async def describe(self, team_id: str) -> Team:
        """Read-only view of a team's current governance state.

        Raises:
            TeamNotFound: If the team does not exist
            StorageUnavailable: If the store cannot be reached
        """
        loaded = await self._store_call(self.store.load(team_id), team_id)
        if loaded is None:
            raise TeamNotFound(f"Team {team_id} not found", team_id=team_id)
        return loaded[0]

    async def list_user_teams(self, user_id: str) -> list[Team]:
        """Active teams a user belongs to."""
        return await self._store_call(self.store.find_teams_for_user(user_id))

    async def list_pending_for_user(self, user_id: str) -> list[PendingEntry]:
        """A user's outstanding join requests and invitations."""
        return await self._store_call(self.store.find_pending_for_user(user_id))

    # ========== Convenience Wrappers ==========

    async def request_join(
        self, caller_id: str, team_id: str, message: Optional[str] = None
    ) -> TeamEvent:
        return (
            await self.execute(caller_id, team_id, RequestJoin(caller_id, message))
        ).unwrap()

    async def invite_member(
        self,
        caller_id: str,
        team_id: str,
        invitee_id: str,
        message: Optional[str] = None,
    ) -> TeamEvent:
        return (
            await self.execute(caller_id, team_id, InviteMember(invitee_id, message))
        ).unwrap()

    async def resolve_join_request(
        self, caller_id: str, team_id: str, user_id: str, accept: bool
    ) -> TeamEvent:
        return (
            await self.execute(caller_id, team_id, ResolveJoinRequest(user_id, accept))
        ).unwrap()

    async def resolve_invitation(
        self, caller_id: str, team_id: str, invitee_id: str, accept: bool
    ) -> TeamEvent:
        return (
            await self.execute(caller_id, team_id, ResolveInvitation(invitee_id, accept))
        ).unwrap()

    async def add_member(
        self,
        caller_id: str,
        team_id: str,
        user_id: str,
        role: TeamRole = TeamRole.MEMBER,
    ) -> TeamEvent:
        return (
            await self.execute(caller_id, team_id, AddMember(user_id, role))
        ).unwrap()

    async def remove_member(self, caller_id: str, team_id: str, user_id: str) -> TeamEvent:
        return (await self.execute(caller_id, team_id, RemoveMember(user_id))).unwrap()

    async def change_role(
        self, caller_id: str, team_id: str, user_id: str, new_role: TeamRole
    ) -> TeamEvent:
        return (
            await self.execute(caller_id, team_id, ChangeRole(user_id, new_role))
        ).unwrap()

    async def transfer_ownership(
        self, caller_id: str, team_id: str, new_owner_id: str
    ) -> TeamEvent:
        return (
            await self.execute(caller_id, team_id, TransferOwnership(new_owner_id))
        ).unwrap()

    async def leave(self, caller_id: str, team_id: str) -> TeamEvent:
        return (await self.execute(caller_id, team_id, Leave())).unwrap()

    async def disband(self, caller_id: str, team_id: str) -> TeamEvent:
        return (await self.execute(caller_id, team_id, Disband())).unwrap()

    async def update_team(
        self,
        caller_id: str,
        team_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> TeamEvent:
        return (
            await self.execute(caller_id, team_id, UpdateTeam(name, description))
        ).unwrap()

    # ========== Command Handlers ==========

    def _request_join(self, agg, caller_id, caller_role, cmd: RequestJoin) -> Events:
        if cmd.user_id != caller_id:
            raise InvalidParticipant(
                "Join requests can only be made for yourself", user_id=cmd.user_id
            )
        return agg.record_join_request(cmd.user_id, cmd.message)

    def _invite_member(self, agg, caller_id, caller_role, cmd: InviteMember) -> Events:
        if cmd.invitee_id == caller_id:
            raise InvalidParticipant("Users cannot invite themselves", user_id=caller_id)
        self._require_manager(caller_id, caller_role, "invite members")
        return agg.record_invitation(caller_id, cmd.invitee_id, cmd.message)

    def _resolve_join_request(
        self, agg, caller_id, caller_role, cmd: ResolveJoinRequest
    ) -> Events:
        self._require_manager(caller_id, caller_role, "resolve join requests")
        return agg.resolve_join_request(cmd.user_id, cmd.accept, resolved_by=caller_id)

    def _resolve_invitation(
        self, agg, caller_id, caller_role, cmd: ResolveInvitation
    ) -> Events:
        if caller_id == cmd.invitee_id:
            return agg.resolve_invitation(cmd.invitee_id, cmd.accept)

        # Managers may withdraw an invitation, never accept it on someone's behalf
        if cmd.accept:
            raise Forbidden(
                "Only the invitee can accept an invitation",
                user_id=caller_id,
                role=caller_role.value if caller_role else None,
            )
        self._require_manager(caller_id, caller_role, "revoke invitations")
        return agg.resolve_invitation(cmd.invitee_id, accept=False, revoked=True)

    def _add_member(self, agg, caller_id, caller_role, cmd: AddMember) -> Events:
        self._require_manager(caller_id, caller_role, "add members")
        if cmd.role == TeamRole.OWNER:
            raise InvalidRole(
                "Owner can only be installed by ownership transfer",
                user_id=cmd.user_id,
                role=cmd.role.value,
            )
        if not roles.can_assign_role(caller_role, cmd.role):
            raise Forbidden(
                f"{caller_role.value} cannot grant {cmd.role.value}",
                user_id=caller_id,
                role=cmd.role.value,
            )
        return agg.add_member(cmd.user_id, cmd.role, added_by=caller_id)

    def _remove_member(self, agg, caller_id, caller_role, cmd: RemoveMember) -> Events:
        self._require_manager(caller_id, caller_role, "remove members")
        target_role = agg.team.role_of(cmd.user_id)
        if target_role is None:
            raise NotMember(f"User {cmd.user_id} is not a member", user_id=cmd.user_id)
        if cmd.user_id == agg.team.owner_id:
            raise CannotRemoveOwner(
                "Cannot remove team owner. Transfer ownership first.",
                user_id=cmd.user_id,
            )
        if not roles.can_manage_role(caller_role, target_role):
            raise Forbidden(
                f"{caller_role.value} cannot remove a {target_role.value}",
                user_id=caller_id,
                role=target_role.value,
            )
        return agg.remove_member(cmd.user_id, removed_by=caller_id)

    def _change_role(self, agg, caller_id, caller_role, cmd: ChangeRole) -> Events:
        self._require_manager(caller_id, caller_role, "change roles")
        target_role = agg.team.role_of(cmd.user_id)
        if target_role is None:
            raise NotMember(f"User {cmd.user_id} is not a member", user_id=cmd.user_id)
        if cmd.new_role == TeamRole.OWNER or target_role == TeamRole.OWNER:
            raise InvalidRole(
                "Only ownership transfer changes who the Owner is",
                user_id=cmd.user_id,
                role=cmd.new_role.value,
            )
        if not (
            roles.can_manage_role(caller_role, target_role)
            and roles.can_assign_role(caller_role, cmd.new_role)
        ):
            raise Forbidden(
                f"{caller_role.value} cannot change a {target_role.value} "
                f"to {cmd.new_role.value}",
                user_id=caller_id,
                role=cmd.new_role.value,
            )
        return agg.change_role(cmd.user_id, cmd.new_role, changed_by=caller_id)

    def _transfer_ownership(
        self, agg, caller_id, caller_role, cmd: TransferOwnership
    ) -> Events:
        self._require_member(caller_id, caller_role)
        if not roles.can_initiate_transfer(caller_role):
            raise Forbidden(
                "Only the owner can transfer ownership",
                user_id=caller_id,
                role=caller_role.value,
            )
        return agg.transfer_ownership(cmd.new_owner_id)

    def _leave(self, agg, caller_id, caller_role, cmd: Leave) -> Events:
        self._require_member(caller_id, caller_role)
        return agg.leave(caller_id)

    def _disband(self, agg, caller_id, caller_role, cmd: Disband) -> Events:
        self._require_member(caller_id, caller_role)
        if not roles.can_disband(caller_role):
            raise Forbidden(
                "Only the owner can disband the team",
                user_id=caller_id,
                role=caller_role.value,
            )
        return agg.disband(disbanded_by=caller_id)

    def _update_team(self, agg, caller_id, caller_role, cmd: UpdateTeam) -> Events:
        self._require_manager(caller_id, caller_role, "edit team details")
        return agg.update_details(cmd.name, cmd.description)

    # ========== Helpers ==========

    def _require_member(self, caller_id: str, caller_role: Optional[TeamRole]) -> None:
        if caller_role is None:
            raise NotMember(f"User {caller_id} is not a member", user_id=caller_id)

    def _require_manager(
        self, caller_id: str, caller_role: Optional[TeamRole], action: str
    ) -> None:
        self._require_member(caller_id, caller_role)
        if not roles.can_manage_members(caller_role):
            raise Forbidden(
                f"{caller_role.value} cannot {action}",
                user_id=caller_id,
                role=caller_role.value,
            )

    async def _store_call(self, awaitable, team_id: Optional[str] = None):
        try:
            return await awaitable
        except GovernanceError:
            raise
        except (OSError, ConnectionError) as e:
            log.error("team_store_unavailable", team_id=team_id, error=str(e))
            raise StorageUnavailable(
                f"Team storage unavailable: {e}", team_id=team_id
            ) from e

    def _publish(self, events: Events) -> None:
        if self.sink is None:
            return
        for event in events:
            try:
                self.sink.publish(event)
            except Exception as e:
                log.error(
                    "event_publish_failed",
                    event_type=event.type.value,
                    team_id=event.team_id,
                    error=str(e),
                )
