"""Guildhall Web API Server.

FastAPI-based HTTP transport over the MembershipService.

Features:
- REST API for teams, join requests, invitations, roles and ownership
- Per-user team listings and pending inboxes
- Heartbeat-based presence
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import structlog

from guildhall import __version__
from guildhall.config import GuildhallConfig
from guildhall.governance import (
    AddMember,
    ChangeRole,
    Command,
    CommandResult,
    CommandTimeout,
    Disband,
    ErrorCategory,
    EventBus,
    Forbidden,
    GovernanceError,
    InviteMember,
    Leave,
    MembershipService,
    RemoveMember,
    RequestJoin,
    ResolveInvitation,
    ResolveJoinRequest,
    RetryPolicy,
    SqliteTeamStore,
    StorageUnavailable,
    TeamEvent,
    TeamNotFound,
    TeamStore,
    TransferOwnership,
    UpdateTeam,
    execute_with_retry,
)
from guildhall.governance.events import ALL_EVENTS
from guildhall.logging import bind_caller
from guildhall.persistence.database import Database
from guildhall.presence import PresenceTracker

log = structlog.get_logger()


# Pydantic models for API
class TeamCreateRequest(BaseModel):
    """Request to create a new team."""
    name: str = Field(..., min_length=1, description="Team name")
    description: str = Field(default="", description="Team description")
    team_id: Optional[str] = Field(default=None, description="Explicit team id")


class VersionedRequest(BaseModel):
    """Base for command bodies; expected_version guards against stale state."""
    expected_version: Optional[int] = Field(default=None, ge=0)


class TeamUpdateRequest(VersionedRequest):
    name: Optional[str] = None
    description: Optional[str] = None


class JoinRequestCreate(VersionedRequest):
    message: Optional[str] = None


class InvitationCreate(VersionedRequest):
    invitee_id: str = Field(..., min_length=1)
    message: Optional[str] = None


class ResolveRequest(VersionedRequest):
    accept: bool


class MemberAddRequest(VersionedRequest):
    user_id: str = Field(..., min_length=1)
    role: str = Field(default="Member", description="Role to grant")


class RoleChangeRequest(VersionedRequest):
    role: str = Field(..., description="New role")


class TransferRequest(VersionedRequest):
    new_owner_id: str = Field(..., min_length=1)


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    database_ok: bool
    timestamp: str


def status_for(error: GovernanceError) -> int:
    """HTTP status for a governance failure."""
    if error.category == ErrorCategory.PERMISSION:
        return 403
    if isinstance(error, TeamNotFound):
        return 404
    if isinstance(error, (CommandTimeout, StorageUnavailable)):
        return 503
    return 409


class GuildhallAPI:
    """Guildhall API application state."""

    def __init__(
        self,
        store: Optional[TeamStore] = None,
        config: Optional[GuildhallConfig] = None,
    ):
        self.config = config or GuildhallConfig()
        self.store = store or SqliteTeamStore(Database(self.config.db_path))
        self.event_bus = EventBus()
        self.service = MembershipService(
            self.store,
            sink=self.event_bus,
            command_timeout=self.config.command_timeout,
        )
        self.presence = PresenceTracker(ttl_seconds=self.config.presence_ttl_seconds)
        self.retry_policy = RetryPolicy(
            max_attempts=self.config.retry.attempts,
            base_delay=self.config.retry.base_delay,
            max_delay=self.config.retry.max_delay,
        )
        self.recent_events: list[dict[str, Any]] = []

    async def initialize(self):
        """Initialize API components."""
        db = getattr(self.store, "db", None)
        if db is not None:
            await db.initialize()

        self.event_bus.subscribe(ALL_EVENTS, self._record_event)
        log.info("guildhall_api_initialized", store=type(self.store).__name__)

    def _record_event(self, event: TeamEvent):
        self.recent_events.append(event.to_dict())
        # Bounded history for diagnostics
        del self.recent_events[:-100]
        log.debug("team_event", type=event.type.value, team_id=event.team_id)

    async def run(self, caller_id: str, team_id: str, command: Command) -> CommandResult:
        """Execute a command, retrying transient failures unless a version is pinned."""
        if command.expected_version is None:
            result = await execute_with_retry(
                self.service, caller_id, team_id, command, self.retry_policy
            )
        else:
            result = await self.service.execute(caller_id, team_id, command)

        if not result.ok:
            raise result.error
        return result

    async def database_ok(self) -> bool:
        db = getattr(self.store, "db", None)
        if db is None:
            return True
        try:
            async with db.get_connection() as conn:
                await conn.execute("SELECT 1")
            return True
        except Exception as e:
            log.warning("health_database_failed", error=str(e))
            return False

    async def shutdown(self):
        """Clean shutdown of API components."""
        await self.event_bus.drain()
        log.info("guildhall_api_shutdown")


async def caller_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Authenticated caller, taken from the X-User-Id header."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header required")
    bind_caller(x_user_id)
    return x_user_id


def create_app(
    store: Optional[TeamStore] = None,
    config: Optional[GuildhallConfig] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        store: Team store (SQLite at config.db_path if not provided)
        config: Configuration (defaults if not provided)

    Returns:
        Configured FastAPI application
    """

    api = GuildhallAPI(store=store, config=config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        await api.initialize()
        yield
        await api.shutdown()

    app = FastAPI(
        title="Guildhall API",
        description="Team membership and governance for gaming communities",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.api = api

    @app.exception_handler(GovernanceError)
    async def governance_error_handler(request: Request, exc: GovernanceError):
        return JSONResponse(status_code=status_for(exc), content=exc.to_dict())

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(
            status_code=422,
            content={"error": "invalid_request", "message": str(exc)},
        )

    # ===== Health =====

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health_check():
        """Check API health status."""
        db_ok = await api.database_ok()
        return HealthResponse(
            status="healthy" if db_ok else "degraded",
            version=__version__,
            database_ok=db_ok,
            timestamp=datetime.now().isoformat(),
        )

    # ===== Team Endpoints =====

    @app.post("/api/teams", status_code=201, tags=["Teams"])
    async def create_team(body: TeamCreateRequest, caller: str = Depends(caller_id)):
        """Create a team owned by the caller."""
        team = await api.service.create_team(
            caller, body.name, body.description, team_id=body.team_id
        )
        return team.to_dict()

    @app.get("/api/teams/{team_id}", tags=["Teams"])
    async def get_team(team_id: str):
        """Get a team's governance state."""
        team = await api.service.describe(team_id)
        return team.to_dict()

    @app.patch("/api/teams/{team_id}", tags=["Teams"])
    async def update_team(
        team_id: str, body: TeamUpdateRequest, caller: str = Depends(caller_id)
    ):
        """Edit team name or description."""
        result = await api.run(
            caller,
            team_id,
            UpdateTeam(body.name, body.description, body.expected_version),
        )
        return result.to_dict()

    @app.post("/api/teams/{team_id}/transfer", tags=["Teams"])
    async def transfer_ownership(
        team_id: str, body: TransferRequest, caller: str = Depends(caller_id)
    ):
        """Hand ownership to another member."""
        result = await api.run(
            caller, team_id, TransferOwnership(body.new_owner_id, body.expected_version)
        )
        return result.to_dict()

    @app.post("/api/teams/{team_id}/leave", tags=["Teams"])
    async def leave_team(
        team_id: str,
        body: Optional[VersionedRequest] = None,
        caller: str = Depends(caller_id),
    ):
        """Leave the team."""
        expected = body.expected_version if body else None
        result = await api.run(caller, team_id, Leave(expected))
        return result.to_dict()

    @app.post("/api/teams/{team_id}/disband", tags=["Teams"])
    async def disband_team(
        team_id: str,
        body: Optional[VersionedRequest] = None,
        caller: str = Depends(caller_id),
    ):
        """Disband the team."""
        expected = body.expected_version if body else None
        result = await api.run(caller, team_id, Disband(expected))
        return result.to_dict()

    # ===== Join Request Endpoints =====

    @app.post("/api/teams/{team_id}/join-requests", tags=["Join Requests"])
    async def request_join(
        team_id: str,
        body: Optional[JoinRequestCreate] = None,
        caller: str = Depends(caller_id),
    ):
        """Ask to join a team."""
        body = body or JoinRequestCreate()
        result = await api.run(
            caller, team_id, RequestJoin(caller, body.message, body.expected_version)
        )
        return result.to_dict()

    @app.post(
        "/api/teams/{team_id}/join-requests/{user_id}/resolve", tags=["Join Requests"]
    )
    async def resolve_join_request(
        team_id: str,
        user_id: str,
        body: ResolveRequest,
        caller: str = Depends(caller_id),
    ):
        """Accept or reject a pending join request."""
        result = await api.run(
            caller,
            team_id,
            ResolveJoinRequest(user_id, body.accept, body.expected_version),
        )
        return result.to_dict()

    # ===== Invitation Endpoints =====

    @app.post("/api/teams/{team_id}/invitations", tags=["Invitations"])
    async def invite_member(
        team_id: str, body: InvitationCreate, caller: str = Depends(caller_id)
    ):
        """Invite a user to the team."""
        result = await api.run(
            caller,
            team_id,
            InviteMember(body.invitee_id, body.message, body.expected_version),
        )
        return result.to_dict()

    @app.post(
        "/api/teams/{team_id}/invitations/{invitee_id}/resolve", tags=["Invitations"]
    )
    async def resolve_invitation(
        team_id: str,
        invitee_id: str,
        body: ResolveRequest,
        caller: str = Depends(caller_id),
    ):
        """Accept or decline an invitation (invitee), or revoke it (manager)."""
        result = await api.run(
            caller,
            team_id,
            ResolveInvitation(invitee_id, body.accept, body.expected_version),
        )
        return result.to_dict()

    # ===== Member Endpoints =====

    @app.post("/api/teams/{team_id}/members", tags=["Members"])
    async def add_member(
        team_id: str, body: MemberAddRequest, caller: str = Depends(caller_id)
    ):
        """Add a member directly."""
        result = await api.run(
            caller, team_id, AddMember(body.user_id, body.role, body.expected_version)
        )
        return result.to_dict()

    @app.delete("/api/teams/{team_id}/members/{user_id}", tags=["Members"])
    async def remove_member(
        team_id: str,
        user_id: str,
        expected_version: Optional[int] = Query(default=None, ge=0),
        caller: str = Depends(caller_id),
    ):
        """Remove a member."""
        result = await api.run(caller, team_id, RemoveMember(user_id, expected_version))
        return result.to_dict()

    @app.put("/api/teams/{team_id}/members/{user_id}/role", tags=["Members"])
    async def change_role(
        team_id: str,
        user_id: str,
        body: RoleChangeRequest,
        caller: str = Depends(caller_id),
    ):
        """Change a member's role."""
        result = await api.run(
            caller, team_id, ChangeRole(user_id, body.role, body.expected_version)
        )
        return result.to_dict()

    # ===== User Endpoints =====

    @app.get("/api/users/{user_id}/teams", tags=["Users"])
    async def list_user_teams(user_id: str):
        """Active teams a user belongs to."""
        teams = await api.service.list_user_teams(user_id)
        return [
            {
                "id": t.id,
                "name": t.name,
                "owner_id": t.owner_id,
                "role": t.role_of(user_id).value,
                "member_count": len(t.members),
                "version": t.version,
            }
            for t in teams
        ]

    @app.get("/api/users/{user_id}/pending", tags=["Users"])
    async def list_pending(user_id: str, caller: str = Depends(caller_id)):
        """A user's outstanding join requests and invitations."""
        if caller != user_id:
            raise Forbidden("Users can only read their own pending inbox", user_id=caller)
        entries = await api.service.list_pending_for_user(user_id)
        return [e.to_dict() for e in entries]

    # ===== Presence Endpoints =====

    @app.post("/api/presence/heartbeat", tags=["Presence"])
    async def heartbeat(caller: str = Depends(caller_id)):
        """Mark the caller online."""
        return api.presence.heartbeat(caller).to_dict()

    @app.get("/api/teams/{team_id}/presence", tags=["Presence"])
    async def team_presence(team_id: str):
        """Which members of a team are online."""
        team = await api.service.describe(team_id)
        members = team.members_by_role()
        online = set(api.presence.online(m.user_id for m in members))
        return {
            "team_id": team_id,
            "online": [m.user_id for m in members if m.user_id in online],
            "members": [
                {
                    "user_id": m.user_id,
                    "role": m.role.value,
                    "status": api.presence.status(m.user_id).value,
                }
                for m in members
            ],
        }

    return app


def run_server(
    host: str = "127.0.0.1",
    port: int = 8000,
    config: Optional[GuildhallConfig] = None,
):
    """Run the Guildhall API server.

    Args:
        host: Host to bind to
        port: Port to listen on
        config: Configuration (loaded from the default locations if None)
    """
    import uvicorn

    config = config or GuildhallConfig.load()
    app = create_app(config=config)
    uvicorn.run(app, host=host, port=port, log_level=config.log_level.lower())
