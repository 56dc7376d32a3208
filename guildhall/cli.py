"""Guildhall CLI - team governance from the terminal."""

import asyncio
import sys
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from guildhall import __version__
from guildhall.config import GuildhallConfig
from guildhall.governance import (
    AddMember,
    ChangeRole,
    Command,
    Disband,
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
    Team,
    TransferOwnership,
    UpdateTeam,
    execute_with_retry,
)
from guildhall.logging import bind_caller, clear_caller, setup_logging
from guildhall.persistence.database import Database

console = Console()

ROLE_CHOICES = click.Choice(
    ["member", "founding-member", "chief", "deputy-leader", "leader"],
    case_sensitive=False,
)

as_option = click.option(
    "--as",
    "caller",
    required=True,
    envvar="GUILDHALL_USER",
    help="User issuing the command (or set GUILDHALL_USER)",
)


def _service(config: GuildhallConfig) -> MembershipService:
    store = SqliteTeamStore(Database(config.db_path))
    return MembershipService(store, command_timeout=config.command_timeout)


def _fail(error: GovernanceError):
    console.print(f"[red]✗ {error.message}[/red] [dim]({error.kind.value})[/dim]")
    sys.exit(1)


def _run_command(
    config: GuildhallConfig, caller: str, team_id: str, command: Command, done: str
):
    """Run one governance command and report the outcome."""
    policy = RetryPolicy(
        max_attempts=config.retry.attempts,
        base_delay=config.retry.base_delay,
        max_delay=config.retry.max_delay,
    )

    async def execute():
        return await execute_with_retry(
            _service(config), caller, team_id, command, policy
        )

    bind_caller(caller, team_id)
    try:
        result = asyncio.run(execute())
    finally:
        clear_caller()
    if not result.ok:
        _fail(result.error)

    console.print(f"[green]✓ {done}[/green] [dim](version {result.version})[/dim]")


def _print_team(team: Team):
    status = "[red]disbanded[/red]" if team.disbanded else "[green]active[/green]"
    console.print(
        Panel(
            f"[bold]{team.name}[/bold]\n"
            f"{team.description or '[dim]No description[/dim]'}\n\n"
            f"ID: {team.id}\n"
            f"Owner: {team.owner_id}\n"
            f"Status: {status}\n"
            f"Version: {team.version}",
            title="Team",
        )
    )

    table = Table(title="Members", show_header=True, header_style="bold magenta")
    table.add_column("User", style="cyan")
    table.add_column("Role", style="yellow")
    table.add_column("Joined", style="dim")
    table.add_column("Invited By", style="dim")

    for m in team.members_by_role():
        table.add_row(
            m.user_id,
            m.role.value,
            m.joined_at.strftime("%Y-%m-%d %H:%M"),
            m.invited_by or "-",
        )
    console.print(table)

    if team.pending_join_requests:
        console.print("\n[bold]Pending join requests:[/bold]")
        for r in team.pending_join_requests.values():
            note = f" - {r.message}" if r.message else ""
            console.print(f"  • {r.user_id}{note}")

    if team.pending_invitations:
        console.print("\n[bold]Pending invitations:[/bold]")
        for i in team.pending_invitations.values():
            console.print(f"  • {i.invitee_id} [dim](invited by {i.inviter_id})[/dim]")


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "config_path", type=click.Path(), help="Config file path")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logs")
@click.pass_context
def cli(ctx, config_path: Optional[str] = None, verbose: bool = False):
    """Guildhall - team governance for gaming communities"""
    config = GuildhallConfig.load(config_path)
    setup_logging(
        level="DEBUG" if verbose else config.log_level,
        log_file=str(config.log_file) if config.log_file else None,
        json_format=config.json_logs,
    )
    ctx.obj = config


@cli.group()
def team():
    """Create and govern teams."""
    pass


@team.command("create")
@click.argument("name")
@click.option("--description", "-d", default="", help="Team description")
@click.option("--id", "team_id", help="Explicit team id")
@as_option
@click.pass_obj
def team_create(config, name: str, description: str, team_id: str, caller: str):
    """Create a team owned by you.

    Example:
        guildhall team create "Night Owls" --as alice
    """

    async def create():
        return await _service(config).create_team(
            caller, name, description, team_id=team_id
        )

    try:
        created = asyncio.run(create())
    except GovernanceError as e:
        _fail(e)
    except ValueError as e:
        console.print(f"[red]✗ {e}[/red]")
        sys.exit(1)

    console.print(f"[green]✓ Team created: {created.name}[/green]")
    console.print(f"  ID: {created.id}")
    console.print(f"  Owner: {created.owner_id}")


@team.command("show")
@click.argument("team_id")
@click.pass_obj
def team_show(config, team_id: str):
    """Show members and pending entries of a team."""

    async def describe():
        return await _service(config).describe(team_id)

    try:
        found = asyncio.run(describe())
    except GovernanceError as e:
        _fail(e)

    _print_team(found)


@team.command("update")
@click.argument("team_id")
@click.option("--name", "-n", help="New team name")
@click.option("--description", "-d", help="New description")
@as_option
@click.pass_obj
def team_update(config, team_id: str, name: str, description: str, caller: str):
    """Edit a team's name or description."""
    if name is None and description is None:
        console.print("[yellow]Nothing to update[/yellow]")
        return
    try:
        command = UpdateTeam(name, description)
    except ValueError as e:
        console.print(f"[red]✗ {e}[/red]")
        sys.exit(1)
    _run_command(config, caller, team_id, command, "Team updated")


@team.command("invite")
@click.argument("team_id")
@click.argument("user_id")
@click.option("--message", "-m", help="Invitation message")
@as_option
@click.pass_obj
def team_invite(config, team_id: str, user_id: str, message: str, caller: str):
    """Invite USER_ID to a team."""
    _run_command(
        config, caller, team_id, InviteMember(user_id, message), f"Invited {user_id}"
    )


@team.command("request")
@click.argument("team_id")
@click.option("--message", "-m", help="Note for the team's managers")
@as_option
@click.pass_obj
def team_request(config, team_id: str, message: str, caller: str):
    """Ask to join a team."""
    _run_command(
        config, caller, team_id, RequestJoin(caller, message), "Join request sent"
    )


@team.command("resolve-request")
@click.argument("team_id")
@click.argument("user_id")
@click.option("--accept/--reject", default=True, help="Accept or reject the request")
@as_option
@click.pass_obj
def team_resolve_request(config, team_id: str, user_id: str, accept: bool, caller: str):
    """Accept or reject USER_ID's join request."""
    done = f"Accepted {user_id}" if accept else f"Rejected {user_id}"
    _run_command(
        config, caller, team_id, ResolveJoinRequest(user_id, accept), done
    )


@team.command("respond")
@click.argument("team_id")
@click.option("--accept/--decline", default=True, help="Accept or decline")
@as_option
@click.pass_obj
def team_respond(config, team_id: str, accept: bool, caller: str):
    """Accept or decline your invitation to a team."""
    done = "Invitation accepted" if accept else "Invitation declined"
    _run_command(config, caller, team_id, ResolveInvitation(caller, accept), done)


@team.command("revoke")
@click.argument("team_id")
@click.argument("user_id")
@as_option
@click.pass_obj
def team_revoke(config, team_id: str, user_id: str, caller: str):
    """Withdraw USER_ID's pending invitation."""
    _run_command(
        config,
        caller,
        team_id,
        ResolveInvitation(user_id, accept=False),
        f"Invitation for {user_id} revoked",
    )


@team.command("add")
@click.argument("team_id")
@click.argument("user_id")
@click.option("--role", "-r", type=ROLE_CHOICES, default="member", help="Role to grant")
@as_option
@click.pass_obj
def team_add(config, team_id: str, user_id: str, role: str, caller: str):
    """Add USER_ID to a team directly."""
    _run_command(
        config, caller, team_id, AddMember(user_id, role), f"Added {user_id}"
    )


@team.command("remove")
@click.argument("team_id")
@click.argument("user_id")
@as_option
@click.pass_obj
def team_remove(config, team_id: str, user_id: str, caller: str):
    """Remove USER_ID from a team."""
    _run_command(
        config, caller, team_id, RemoveMember(user_id), f"Removed {user_id}"
    )


@team.command("role")
@click.argument("team_id")
@click.argument("user_id")
@click.argument("role", type=ROLE_CHOICES)
@as_option
@click.pass_obj
def team_role(config, team_id: str, user_id: str, role: str, caller: str):
    """Change USER_ID's role.

    Example:
        guildhall team role abc123 bob deputy-leader --as alice
    """
    command = ChangeRole(user_id, role)
    _run_command(
        config,
        caller,
        team_id,
        command,
        f"{user_id} is now {command.new_role.value}",
    )


@team.command("transfer")
@click.argument("team_id")
@click.argument("user_id")
@as_option
@click.pass_obj
def team_transfer(config, team_id: str, user_id: str, caller: str):
    """Hand ownership of a team to USER_ID."""
    _run_command(
        config,
        caller,
        team_id,
        TransferOwnership(user_id),
        f"Ownership transferred to {user_id}",
    )


@team.command("leave")
@click.argument("team_id")
@as_option
@click.pass_obj
def team_leave(config, team_id: str, caller: str):
    """Leave a team."""
    _run_command(config, caller, team_id, Leave(), "Left team")


@team.command("disband")
@click.argument("team_id")
@click.option("--force", "-f", is_flag=True, help="Skip confirmation")
@as_option
@click.pass_obj
def team_disband(config, team_id: str, force: bool, caller: str):
    """Disband a team. This cannot be undone."""
    if not force:
        if not click.confirm(f"Disband team {team_id}?"):
            console.print("[yellow]Cancelled.[/yellow]")
            return
    _run_command(config, caller, team_id, Disband(), "Team disbanded")


@team.command("mine")
@as_option
@click.pass_obj
def team_mine(config, caller: str):
    """List your teams and pending requests/invitations."""

    async def load():
        service = _service(config)
        teams = await service.list_user_teams(caller)
        pending = await service.list_pending_for_user(caller)
        return teams, pending

    try:
        teams, pending = asyncio.run(load())
    except GovernanceError as e:
        _fail(e)

    if not teams:
        console.print("[yellow]You are not on any team[/yellow]")
    else:
        table = Table(title="Your Teams", show_header=True, header_style="bold magenta")
        table.add_column("ID", style="dim")
        table.add_column("Name", style="cyan")
        table.add_column("Role", style="yellow")
        table.add_column("Members", justify="right", style="green")

        for t in teams:
            table.add_row(t.id, t.name, t.role_of(caller).value, str(len(t.members)))
        console.print(table)

    if pending:
        console.print("\n[bold]Pending:[/bold]")
        for entry in pending:
            kind = "invitation" if entry.kind == "invitation" else "join request"
            console.print(f"  • {kind} for team {entry.team_id}")


@cli.command()
@click.option("--host", "-h", help="Host to bind to")
@click.option("--port", "-p", type=int, help="Port to listen on")
@click.pass_obj
def serve(config, host: Optional[str] = None, port: Optional[int] = None):
    """Start the Guildhall Web API server.

    Example:
        guildhall serve --port 8080

    Then visit http://localhost:8080/docs for API documentation.
    """
    from guildhall.web.server import run_server

    host = host or config.web.host
    port = port or config.web.port

    console.print(
        Panel(
            f"[bold blue]Guildhall Web API[/bold blue]\n\n"
            f"Host: {host}\n"
            f"Port: {port}\n"
            f"Database: {config.db_path}",
            title="Starting Server",
        )
    )
    console.print(f"\n[dim]API docs: http://{host}:{port}/docs[/dim]\n")

    run_server(host=host, port=port, config=config)


if __name__ == "__main__":
    cli()
