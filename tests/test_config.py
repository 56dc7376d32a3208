"""Tests for configuration loading and logging setup."""

import logging
from pathlib import Path

import pytest
import structlog
from pydantic import ValidationError

from guildhall.config import GuildhallConfig
from guildhall.logging import bind_caller, clear_caller, get_logger, setup_logging


class TestGuildhallConfig:
    """Tests for GuildhallConfig."""

    def test_defaults(self):
        config = GuildhallConfig()

        assert config.data_dir == Path.home() / ".guildhall"
        assert config.db_path == config.data_dir / "guildhall.db"
        assert config.command_timeout == 5.0
        assert config.retry.attempts == 3
        assert config.web.port == 8000
        assert config.log_level == "INFO"

    def test_db_path_follows_data_dir(self, tmp_path):
        config = GuildhallConfig(data_dir=tmp_path)
        assert config.db_path == tmp_path / "guildhall.db"

    def test_log_level_normalized(self):
        assert GuildhallConfig(log_level="debug").log_level == "DEBUG"

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"command_timeout": 0},
            {"presence_ttl_seconds": -1},
            {"log_level": "LOUD"},
            {"retry": {"attempts": 0}},
            {"web": {"port": 70000}},
        ],
    )
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValidationError):
            GuildhallConfig(**kwargs)

    def test_validate_assignment(self):
        config = GuildhallConfig()
        with pytest.raises(ValidationError):
            config.command_timeout = -5

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "guildhall.toml"
        original = GuildhallConfig(
            data_dir=tmp_path / "data",
            command_timeout=2.5,
            retry={"attempts": 5},
            web={"port": 9001},
        )
        original.save(str(path))

        loaded = GuildhallConfig.load(str(path))

        assert loaded.data_dir == tmp_path / "data"
        assert loaded.command_timeout == 2.5
        assert loaded.retry.attempts == 5
        assert loaded.web.port == 9001

    def test_load_missing_file_uses_defaults(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path))

        config = GuildhallConfig.load()

        assert config.command_timeout == 5.0

    def test_load_invalid_file_uses_defaults(self, tmp_path):
        path = tmp_path / "guildhall.toml"
        path.write_text("command_timeout = -1\n")

        assert GuildhallConfig.load(str(path)).command_timeout == 5.0


class TestLogging:
    """Tests for structlog setup."""

    def test_setup_with_log_file(self, tmp_path):
        log_file = tmp_path / "logs" / "guildhall.log"
        setup_logging(level="DEBUG", log_file=str(log_file), json_format=True)

        assert log_file.parent.exists()
        assert get_logger("guildhall.test") is not None

    def test_quiets_statement_loggers(self):
        setup_logging(level="DEBUG")

        assert logging.getLogger("aiosqlite").level == logging.WARNING
        assert logging.getLogger("uvicorn.access").level == logging.WARNING

    def test_bound_caller_reaches_log_lines(self):
        bind_caller("alice", "t1")
        try:
            event = structlog.contextvars.merge_contextvars(None, "info", {"event": "x"})
            explicit = structlog.contextvars.merge_contextvars(
                None, "info", {"event": "y", "team_id": "t2"}
            )
        finally:
            clear_caller()

        assert event == {"event": "x", "caller_id": "alice", "team_id": "t1"}
        assert explicit["team_id"] == "t2"
        assert "caller_id" not in structlog.contextvars.get_contextvars()
