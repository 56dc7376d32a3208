"""Tests for the Guildhall CLI."""

import pytest
from click.testing import CliRunner

from guildhall.cli import cli


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "guildhall.toml"
    path.write_text(f'data_dir = "{tmp_path / "data"}"\nlog_level = "ERROR"\n')
    return str(path)


@pytest.fixture
def run(config_file):
    runner = CliRunner()

    def invoke(*args, **kwargs):
        return runner.invoke(cli, ["--config", config_file, *args], **kwargs)

    return invoke


@pytest.fixture
def team(run):
    result = run("team", "create", "Night Owls", "--id", "t1", "--as", "alice")
    assert result.exit_code == 0, result.output
    return "t1"


def test_version():
    result = CliRunner().invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output


def test_create_and_show(run, team):
    result = run("team", "show", team)

    assert result.exit_code == 0
    assert "Night Owls" in result.output
    assert "alice" in result.output
    assert "Owner" in result.output


def test_show_unknown_team(run):
    result = run("team", "show", "nope")

    assert result.exit_code == 1
    assert "team_not_found" in result.output


def test_join_request_flow(run, team):
    result = run("team", "request", team, "-m", "let me in", "--as", "bob")
    assert result.exit_code == 0
    assert "Join request sent" in result.output

    mine = run("team", "mine", "--as", "bob")
    assert "join request for team t1" in mine.output

    result = run("team", "resolve-request", team, "bob", "--accept", "--as", "alice")
    assert result.exit_code == 0
    assert "version 3" in result.output

    mine = run("team", "mine", "--as", "bob")
    assert "Night Owls" in mine.output


def test_invite_and_respond(run, team):
    assert run("team", "invite", team, "bob", "--as", "alice").exit_code == 0

    result = run("team", "respond", team, "--decline", "--as", "bob")

    assert result.exit_code == 0
    assert "Invitation declined" in result.output


def test_revoke(run, team):
    run("team", "invite", team, "bob", "--as", "alice")

    result = run("team", "revoke", team, "bob", "--as", "alice")

    assert result.exit_code == 0
    assert "revoked" in result.output


def test_roles_and_removal(run, team):
    assert run("team", "add", team, "bob", "--role", "chief", "--as", "alice").exit_code == 0

    result = run("team", "role", team, "bob", "deputy-leader", "--as", "alice")
    assert "bob is now Deputy Leader" in result.output

    result = run("team", "remove", team, "bob", "--as", "alice")
    assert result.exit_code == 0


def test_member_cannot_disband(run, team):
    run("team", "add", team, "bob", "--as", "alice")

    result = run("team", "disband", team, "--force", "--as", "bob")

    assert result.exit_code == 1
    assert "forbidden" in result.output


def test_transfer_then_leave(run, team):
    run("team", "add", team, "bob", "--as", "alice")

    assert run("team", "transfer", team, "bob", "--as", "alice").exit_code == 0
    assert run("team", "leave", team, "--as", "alice").exit_code == 0

    result = run("team", "leave", team, "--as", "bob")
    assert "owner_cannot_leave" in result.output


def test_disband_confirmation(run, team):
    cancelled = run("team", "disband", team, "--as", "alice", input="n\n")
    assert "Cancelled" in cancelled.output

    confirmed = run("team", "disband", team, "--as", "alice", input="y\n")
    assert "Team disbanded" in confirmed.output

    result = run("team", "add", team, "bob", "--as", "alice")
    assert "team_disbanded" in result.output


def test_update(run, team):
    result = run("team", "update", team, "--name", "Early Birds", "--as", "alice")
    assert result.exit_code == 0

    assert "Early Birds" in run("team", "show", team).output


def test_caller_from_environment(run, team):
    result = run("team", "request", team, env={"GUILDHALL_USER": "bob"})
    assert result.exit_code == 0


def test_caller_required(run, team):
    result = run("team", "leave", team)
    assert result.exit_code != 0
