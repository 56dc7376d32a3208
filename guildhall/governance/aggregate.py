"""Team aggregate: the consistency boundary for team governance.

A TeamAggregate wraps one Team snapshot and applies single mutations to it.
Every operation validates completely before touching state, so a raised
GovernanceError leaves the snapshot untouched. Every successful operation
bumps the version by exactly one and returns the events it produced, the
primary event first.

Permission checks are not done here; MembershipService gates commands with
the role hierarchy before calling into the aggregate.
"""

from datetime import datetime
from typing import Optional

from guildhall.governance.errors import (
    AlreadyMember,
    CannotRemoveOwner,
    DuplicatePendingInvitation,
    DuplicatePendingRequest,
    InvalidParticipant,
    InvalidRole,
    InvariantViolation,
    NoPendingInvitation,
    NoPendingRequest,
    NotMember,
    OwnerCannotLeave,
    TeamDisbanded,
)
from guildhall.governance.events import TeamEvent, TeamEventType
from guildhall.governance.models import (
    Invitation,
    InvitationStatus,
    JoinRequest,
    JoinRequestStatus,
    Membership,
    Team,
)
from guildhall.governance.roles import TeamRole

Events = tuple[TeamEvent, ...]


class TeamAggregate:
    """Holds one team's governance state and applies mutations to it."""

    def __init__(self, team: Team, actor_id: Optional[str] = None):
        """Wrap a loaded snapshot.

        Args:
            team: Snapshot to operate on; owned by this aggregate from now on
            actor_id: User issuing the current command, recorded on events
        """
        self.team = team
        self.actor_id = actor_id

    @classmethod
    def create(
        cls,
        team_id: str,
        owner_id: str,
        name: str,
        description: str = "",
    ) -> tuple["TeamAggregate", Events]:
        """Create a team whose only member is its Owner.

        Returns:
            (aggregate at version 1, (TEAM_CREATED,))
        """
        now = datetime.now()
        team = Team(
            id=team_id,
            name=name,
            description=description,
            owner_id=owner_id,
            members={owner_id: Membership(user_id=owner_id, role=TeamRole.OWNER, joined_at=now)},
            version=1,
            created_at=now,
            updated_at=now,
        )
        aggregate = cls(team, actor_id=owner_id)
        event = aggregate._event(
            TeamEventType.TEAM_CREATED,
            owner_id=owner_id,
            name=name,
        )
        return aggregate, (event,)

    @property
    def team_id(self) -> str:
        return self.team.id

    @property
    def version(self) -> int:
        return self.team.version

    # ========== Membership ==========

    def add_member(
        self,
        user_id: str,
        role: TeamRole = TeamRole.MEMBER,
        added_by: Optional[str] = None,
    ) -> Events:
        """Install a new member directly.

        Raises:
            AlreadyMember: If the user is already a member
            InvalidRole: If role is Owner (owners come from creation or transfer)
        """
        self._ensure_active()
        if self.team.is_member(user_id):
            raise AlreadyMember(
                f"User {user_id} is already a member", team_id=self.team_id, user_id=user_id
            )
        if role == TeamRole.OWNER:
            raise InvalidRole(
                "Owner can only be installed by ownership transfer",
                team_id=self.team_id,
                user_id=user_id,
                role=role.value,
            )

        self._install(user_id, role, invited_by=added_by)
        return (
            self._commit(
                TeamEventType.MEMBER_ADDED,
                user_id=user_id,
                role=role.value,
                added_by=added_by,
                via="direct",
            ),
        )

    def remove_member(self, user_id: str, removed_by: Optional[str] = None) -> Events:
        """Remove a member.

        Raises:
            NotMember: If the user is not a member
            CannotRemoveOwner: If the user is the Owner
        """
        self._ensure_active()
        membership = self._require_member(user_id)
        if user_id == self.team.owner_id:
            raise CannotRemoveOwner(
                "Cannot remove team owner. Transfer ownership first.",
                team_id=self.team_id,
                user_id=user_id,
            )

        del self.team.members[user_id]
        return (
            self._commit(
                TeamEventType.MEMBER_REMOVED,
                user_id=user_id,
                role=membership.role.value,
                removed_by=removed_by,
            ),
        )

    def change_role(
        self,
        user_id: str,
        new_role: TeamRole,
        changed_by: Optional[str] = None,
    ) -> Events:
        """Change a member's role.

        Raises:
            NotMember: If the user is not a member
            InvalidRole: If the new role is Owner, the target is the Owner,
                or the member already holds the role
        """
        self._ensure_active()
        membership = self._require_member(user_id)
        if new_role == TeamRole.OWNER:
            raise InvalidRole(
                "Use ownership transfer to install a new Owner",
                team_id=self.team_id,
                user_id=user_id,
                role=new_role.value,
            )
        if user_id == self.team.owner_id:
            raise InvalidRole(
                "Cannot change owner role. Transfer ownership first.",
                team_id=self.team_id,
                user_id=user_id,
                role=new_role.value,
            )
        if membership.role == new_role:
            raise InvalidRole(
                f"User {user_id} already holds role {new_role.value}",
                team_id=self.team_id,
                user_id=user_id,
                role=new_role.value,
            )

        old_role = membership.role
        membership.role = new_role
        return (
            self._commit(
                TeamEventType.ROLE_CHANGED,
                user_id=user_id,
                old_role=old_role.value,
                new_role=new_role.value,
                changed_by=changed_by,
            ),
        )

    def leave(self, user_id: str) -> Events:
        """A member leaves the team.

        Raises:
            NotMember: If the user is not a member
            OwnerCannotLeave: If the user is the Owner
        """
        self._ensure_active()
        membership = self._require_member(user_id)
        if user_id == self.team.owner_id:
            raise OwnerCannotLeave(
                "Owner must transfer ownership or disband the team before leaving",
                team_id=self.team_id,
                user_id=user_id,
            )

        del self.team.members[user_id]
        return (
            self._commit(
                TeamEventType.MEMBER_LEFT,
                user_id=user_id,
                role=membership.role.value,
            ),
        )

    # ========== Join Requests ==========

    def record_join_request(self, user_id: str, message: Optional[str] = None) -> Events:
        """Record a pending request to join.

        Raises:
            AlreadyMember: If the user is already a member
            DuplicatePendingRequest: If the user already has a pending request
        """
        self._ensure_active()
        if self.team.is_member(user_id):
            raise AlreadyMember(
                f"User {user_id} is already a member", team_id=self.team_id, user_id=user_id
            )
        if user_id in self.team.pending_join_requests:
            raise DuplicatePendingRequest(
                f"User {user_id} already has a pending join request",
                team_id=self.team_id,
                user_id=user_id,
            )

        self.team.pending_join_requests[user_id] = JoinRequest(
            user_id=user_id, message=message
        )
        return (
            self._commit(TeamEventType.JOIN_REQUESTED, user_id=user_id, message=message),
        )

    def resolve_join_request(
        self,
        user_id: str,
        accept: bool,
        resolved_by: Optional[str] = None,
    ) -> Events:
        """Accept or reject a pending join request.

        Membership is checked before the pending set: a user who became a
        member in the meantime yields AlreadyMember, never a silent success.

        Raises:
            AlreadyMember: If the user is already a member
            NoPendingRequest: If the user has no pending request
        """
        self._ensure_active()
        if self.team.is_member(user_id):
            raise AlreadyMember(
                f"User {user_id} is already a member", team_id=self.team_id, user_id=user_id
            )
        request = self.team.pending_join_requests.get(user_id)
        if request is None:
            raise NoPendingRequest(
                f"No pending join request from {user_id}",
                team_id=self.team_id,
                user_id=user_id,
            )

        del self.team.pending_join_requests[user_id]
        request.resolved_by = resolved_by
        request.resolved_at = datetime.now()

        if not accept:
            request.status = JoinRequestStatus.REJECTED
            return (
                self._commit(
                    TeamEventType.JOIN_REQUEST_REJECTED,
                    user_id=user_id,
                    resolved_by=resolved_by,
                ),
            )

        request.status = JoinRequestStatus.ACCEPTED
        self._install(user_id, TeamRole.MEMBER, invited_by=resolved_by)
        accepted = self._commit(
            TeamEventType.JOIN_REQUEST_ACCEPTED,
            user_id=user_id,
            resolved_by=resolved_by,
            message=request.message,
        )
        added = self._event(
            TeamEventType.MEMBER_ADDED,
            user_id=user_id,
            role=TeamRole.MEMBER.value,
            added_by=resolved_by,
            via="join_request",
        )
        return accepted, added

    # ========== Invitations ==========

    def record_invitation(
        self,
        inviter_id: str,
        invitee_id: str,
        message: Optional[str] = None,
    ) -> Events:
        """Record a pending invitation.

        Raises:
            InvalidParticipant: If a user invites themselves
            AlreadyMember: If the invitee is already a member
            DuplicatePendingInvitation: If the invitee already has one pending
        """
        self._ensure_active()
        if inviter_id == invitee_id:
            raise InvalidParticipant(
                "Users cannot invite themselves", team_id=self.team_id, user_id=invitee_id
            )
        if self.team.is_member(invitee_id):
            raise AlreadyMember(
                f"User {invitee_id} is already a member",
                team_id=self.team_id,
                user_id=invitee_id,
            )
        if invitee_id in self.team.pending_invitations:
            raise DuplicatePendingInvitation(
                f"User {invitee_id} already has a pending invitation",
                team_id=self.team_id,
                user_id=invitee_id,
            )

        self.team.pending_invitations[invitee_id] = Invitation(
            inviter_id=inviter_id, invitee_id=invitee_id, message=message
        )
        return (
            self._commit(
                TeamEventType.MEMBER_INVITED,
                user_id=invitee_id,
                inviter_id=inviter_id,
                message=message,
            ),
        )

    def resolve_invitation(
        self,
        invitee_id: str,
        accept: bool,
        revoked: bool = False,
    ) -> Events:
        """Accept, decline or revoke a pending invitation.

        Args:
            invitee_id: Invited user
            accept: True to install the invitee as a Member
            revoked: When not accepting, record the invitation as withdrawn
                by the team rather than declined by the invitee

        Raises:
            AlreadyMember: If the invitee is already a member
            NoPendingInvitation: If there is no pending invitation
        """
        self._ensure_active()
        if self.team.is_member(invitee_id):
            raise AlreadyMember(
                f"User {invitee_id} is already a member",
                team_id=self.team_id,
                user_id=invitee_id,
            )
        invitation = self.team.pending_invitations.get(invitee_id)
        if invitation is None:
            raise NoPendingInvitation(
                f"No pending invitation for {invitee_id}",
                team_id=self.team_id,
                user_id=invitee_id,
            )

        del self.team.pending_invitations[invitee_id]
        invitation.resolved_at = datetime.now()

        if not accept:
            if revoked:
                invitation.status = InvitationStatus.REVOKED
                event_type = TeamEventType.INVITATION_REVOKED
            else:
                invitation.status = InvitationStatus.DECLINED
                event_type = TeamEventType.INVITATION_DECLINED
            return (
                self._commit(
                    event_type, user_id=invitee_id, inviter_id=invitation.inviter_id
                ),
            )

        invitation.status = InvitationStatus.ACCEPTED
        self._install(invitee_id, TeamRole.MEMBER, invited_by=invitation.inviter_id)
        accepted = self._commit(
            TeamEventType.INVITATION_ACCEPTED,
            user_id=invitee_id,
            inviter_id=invitation.inviter_id,
        )
        added = self._event(
            TeamEventType.MEMBER_ADDED,
            user_id=invitee_id,
            role=TeamRole.MEMBER.value,
            added_by=invitation.inviter_id,
            via="invitation",
        )
        return accepted, added

    # ========== Ownership & Lifecycle ==========

    def transfer_ownership(self, new_owner_id: str) -> Events:
        """Hand ownership to an existing member.

        The previous Owner becomes a Leader and the target becomes Owner in a
        single step, so the team is never observable with zero or two owners.

        Raises:
            NotMember: If the target is not a member
            InvalidParticipant: If the target already is the Owner
        """
        self._ensure_active()
        target = self._require_member(new_owner_id)
        old_owner_id = self.team.owner_id
        if new_owner_id == old_owner_id:
            raise InvalidParticipant(
                f"User {new_owner_id} already owns the team",
                team_id=self.team_id,
                user_id=new_owner_id,
            )

        previous_role = target.role
        self.team.members[old_owner_id].role = TeamRole.LEADER
        target.role = TeamRole.OWNER
        self.team.owner_id = new_owner_id
        return (
            self._commit(
                TeamEventType.OWNERSHIP_TRANSFERRED,
                old_owner_id=old_owner_id,
                new_owner_id=new_owner_id,
                new_owner_previous_role=previous_role.value,
            ),
        )

    def disband(self, disbanded_by: Optional[str] = None) -> Events:
        """Mark the team terminal.

        Raises:
            TeamDisbanded: If the team is already disbanded
        """
        self._ensure_active()
        self.team.disbanded = True
        return (
            self._commit(
                TeamEventType.TEAM_DISBANDED,
                disbanded_by=disbanded_by,
                member_ids=sorted(self.team.members),
            ),
        )

    def update_details(
        self,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Events:
        """Update display metadata. Governance state is untouched."""
        self._ensure_active()
        changes = {}
        if name is not None and name != self.team.name:
            changes["name"] = name
        if description is not None and description != self.team.description:
            changes["description"] = description

        for key, value in changes.items():
            setattr(self.team, key, value)
        return (self._commit(TeamEventType.TEAM_UPDATED, changes=changes),)

    # ========== Invariants ==========

    def check_invariants(self) -> None:
        """Verify single ownership and that no member has pending entries.

        Raises:
            InvariantViolation: If the snapshot is inconsistent
        """
        check_invariants(self.team)

    # ========== Helpers ==========

    def _ensure_active(self) -> None:
        if self.team.disbanded:
            raise TeamDisbanded(
                f"Team {self.team_id} has been disbanded", team_id=self.team_id
            )

    def _require_member(self, user_id: str) -> Membership:
        membership = self.team.members.get(user_id)
        if membership is None:
            raise NotMember(
                f"User {user_id} is not a member", team_id=self.team_id, user_id=user_id
            )
        return membership

    def _install(self, user_id: str, role: TeamRole, invited_by: Optional[str]) -> None:
        self.team.members[user_id] = Membership(
            user_id=user_id, role=role, invited_by=invited_by
        )
        # A member has nothing left to request or be invited to
        self.team.pending_join_requests.pop(user_id, None)
        self.team.pending_invitations.pop(user_id, None)

    def _commit(self, event_type: TeamEventType, **data) -> TeamEvent:
        self.team.version += 1
        self.team.updated_at = datetime.now()
        return self._event(event_type, **data)

    def _event(self, event_type: TeamEventType, **data) -> TeamEvent:
        return TeamEvent(
            type=event_type,
            team_id=self.team_id,
            actor_id=self.actor_id,
            version=self.team.version,
            data=data,
        )


def check_invariants(team: Team) -> None:
    """Verify a snapshot's governance invariants.

    Raises:
        InvariantViolation: If the team does not have exactly one Owner
            matching owner_id, or a member still has a pending request or
            invitation
    """
    owners = [m.user_id for m in team.members.values() if m.role == TeamRole.OWNER]
    if owners != [team.owner_id]:
        raise InvariantViolation(
            f"Team {team.id} owners {owners} do not match owner_id {team.owner_id}"
        )

    for user_id, membership in team.members.items():
        if membership.user_id != user_id:
            raise InvariantViolation(f"Team {team.id} membership key mismatch for {user_id}")

    stale = set(team.members) & (
        set(team.pending_join_requests) | set(team.pending_invitations)
    )
    if stale:
        raise InvariantViolation(
            f"Team {team.id} members with pending entries: {sorted(stale)}"
        )
