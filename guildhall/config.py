"""Configuration for Guildhall with validation."""

from pathlib import Path
from typing import Optional

import structlog
import toml
from pydantic import BaseModel, ConfigDict, Field, field_validator

log = structlog.get_logger()


class RetryConfig(BaseModel):
    """Client retry configuration for transient command failures."""

    attempts: int = Field(gt=0, le=10, default=3)
    base_delay: float = Field(ge=0, default=0.05)
    max_delay: float = Field(gt=0, default=1.0)


class WebConfig(BaseModel):
    """HTTP server configuration."""

    host: str = "127.0.0.1"
    port: int = Field(gt=0, lt=65536, default=8000)


class GuildhallConfig(BaseModel):
    """Main configuration for Guildhall with validation."""

    model_config = ConfigDict(validate_assignment=True)

    # Paths
    data_dir: Path = Field(default_factory=lambda: Path.home() / ".guildhall")
    db_path: Optional[Path] = None  # Computed from data_dir if None

    # Governance
    command_timeout: float = Field(gt=0, default=5.0)
    retry: RetryConfig = Field(default_factory=RetryConfig)

    # Presence
    presence_ttl_seconds: float = Field(gt=0, default=60.0)

    # Web
    web: WebConfig = Field(default_factory=WebConfig)

    # Logging
    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR)$")
    log_file: Optional[Path] = None
    json_logs: bool = False

    @field_validator("log_level", mode="before")
    @classmethod
    def upper_log_level(cls, v):
        return v.upper() if isinstance(v, str) else v

    def model_post_init(self, __context):
        """Set computed values after initialization."""
        self.data_dir = Path(self.data_dir).expanduser()

        # Set db_path from data_dir if not provided
        if self.db_path is None:
            self.db_path = self.data_dir / "guildhall.db"

    @classmethod
    def load(cls, path: Optional[str] = None) -> "GuildhallConfig":
        """Load configuration from TOML file.

        Search order if path not provided:
        1. ./guildhall.toml (project-specific)
        2. ~/.guildhall/config.toml (user default)

        Args:
            path: Optional explicit config file path

        Returns:
            GuildhallConfig instance
        """
        if path is None:
            candidates = [
                Path("guildhall.toml"),
                Path("~/.guildhall/config.toml").expanduser(),
            ]
            for candidate in candidates:
                if candidate.exists():
                    path = str(candidate)
                    log.info("config_found", path=path)
                    break

        if path and Path(path).exists():
            try:
                data = toml.load(path)
                log.info("config_loaded", path=path)
                return cls(**data)
            except Exception as e:
                log.error("config_load_failed", path=path, error=str(e))
                return cls()

        log.info("config_using_defaults")
        return cls()

    def save(self, path: str):
        """Save configuration to TOML file.

        Args:
            path: File path to save to
        """
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            # Convert to dict, handling Path objects
            data = self.model_dump(mode="json", exclude_none=True)
            toml.dump(data, f)
        log.info("config_saved", path=path)
