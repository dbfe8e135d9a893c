"""Configuration loader -- reads config.yaml + .env, validates with Pydantic.

Resolves ${ENV_VAR} references in YAML values from environment variables.
Fails fast with clear errors if required config is missing.
"""

from __future__ import annotations

import logging
import os
import re
from datetime import timedelta
from pathlib import Path
from typing import Any, Literal

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from core.duration import parse_duration

logger = logging.getLogger(__name__)

# Default home directory for all state files
DEFAULT_HOME = Path.home() / ".supplydesk"

APP_VERSION = "0.4.0"


def _resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ${ENV_VAR} references in config values."""
    if isinstance(value, str):
        pattern = re.compile(r"\$\{(\w+)\}")
        def replacer(match: re.Match) -> str:
            var_name = match.group(1)
            env_value = os.environ.get(var_name)
            if env_value is None:
                logger.warning("Environment variable %s not set", var_name)
                return match.group(0)  # leave unresolved
            return env_value
        return pattern.sub(replacer, value)
    elif isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_resolve_env_vars(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# Config models (Pydantic)
# ---------------------------------------------------------------------------

class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8400


class AuditConfig(BaseModel):
    backend: Literal["sqlite", "memory"] = "sqlite"
    db_file: str = "audit.sqlite"
    # Fraction of incoming requests recorded as request.sample entries
    sample_rate: float = Field(default=0.1, ge=0.0, le=1.0)
    skip_prefixes: list[str] = Field(default_factory=lambda: [
        "/_next",
        "/static",
        "/favicon",
        "/api/health",
        "/api/metrics",
    ])


class ApprovalsConfig(BaseModel):
    # Pending approvals are auto-denied after this long
    ttl: str | int = "24h"

    @field_validator("ttl")
    @classmethod
    def _check_ttl(cls, value: str | int) -> str | int:
        parse_duration(value)
        return value

    @property
    def ttl_delta(self) -> timedelta:
        return parse_duration(self.ttl)


class DevConfig(BaseModel):
    capture_events: bool = True
    log_events: bool = True
    buffer_size: int = Field(default=200, ge=1)


class LoggingConfig(BaseModel):
    level: str = "INFO"


class AppConfig(BaseModel):
    """Top-level application configuration."""

    home_dir: str = str(DEFAULT_HOME)
    server: ServerConfig = Field(default_factory=ServerConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
    approvals: ApprovalsConfig = Field(default_factory=ApprovalsConfig)
    dev: DevConfig = Field(default_factory=DevConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def home_path(self) -> Path:
        """Resolved home directory as a Path."""
        return Path(self.home_dir).expanduser()

    @property
    def audit_db_path(self) -> Path:
        db_file = Path(self.audit.db_file).expanduser()
        return db_file if db_file.is_absolute() else self.home_path / db_file


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def load_config(
    config_path: str | Path | None = None,
    env_path: str | Path | None = None,
) -> AppConfig:
    """Load configuration from YAML + .env files.

    1. Load .env into environment variables
    2. Load config.yaml and resolve ${ENV_VAR} references
    3. Apply environment overrides
    4. Validate against Pydantic models
    5. Create home directory if needed
    """
    # Determine paths
    home = Path(os.environ.get("SUPPLYDESK_HOME", str(DEFAULT_HOME))).expanduser()

    if env_path is None:
        env_path = home / ".env"
    if config_path is None:
        config_path = home / "config.yaml"

    env_path = Path(env_path)
    config_path = Path(config_path)

    # Load .env
    if env_path.exists():
        load_dotenv(env_path)
        logger.info("Loaded environment from %s", env_path)
    else:
        logger.debug("No .env file at %s", env_path)

    # Load config.yaml
    raw_config: dict = {}
    if config_path.exists():
        with open(config_path) as f:
            raw_config = yaml.safe_load(f) or {}
        logger.info("Loaded config from %s", config_path)
    else:
        logger.warning("No config file at %s, using defaults", config_path)

    # Resolve ${ENV_VAR} references
    resolved = _resolve_env_vars(raw_config)

    # Override home_dir if set via env
    if "SUPPLYDESK_HOME" in os.environ:
        resolved["home_dir"] = os.environ["SUPPLYDESK_HOME"]

    if "AUDIT_SAMPLE_RATE" in os.environ:
        resolved.setdefault("audit", {})["sample_rate"] = os.environ["AUDIT_SAMPLE_RATE"]

    if "APPROVAL_TTL" in os.environ:
        resolved.setdefault("approvals", {})["ttl"] = os.environ["APPROVAL_TTL"]

    # Validate
    config = AppConfig(**resolved)

    config.home_path.mkdir(parents=True, exist_ok=True)

    return config
