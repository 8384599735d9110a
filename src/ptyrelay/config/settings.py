"""Configuration management for ptyrelay.

Loads settings from a YAML configuration file with environment variable
overrides. Supports .env files.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/ptyrelay.yaml")


class ServerConfig(BaseModel):
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8080, ge=1, le=65535)


class TerminalConfig(BaseModel):
    default_cols: int = Field(default=80, gt=0)
    default_rows: int = Field(default=24, gt=0)
    term: str = Field(default="xterm-256color", description="TERM value for spawned processes")
    read_chunk_size: int = Field(default=4096, gt=0)
    write_timeout: float = Field(default=5.0, gt=0, description="Seconds to wait for a full PTY input buffer")
    terminate_grace: float = Field(default=3.0, gt=0, description="Seconds to wait for exit after terminate()")
    kill_grace: float = Field(default=1.0, gt=0, description="Seconds to wait for exit after kill()")


class OrchestrationConfig(BaseModel):
    state_url: str | None = Field(
        default=None, description="URL returning the orchestrator's current application state"
    )
    timeout: float = Field(default=2.0, gt=0)


class TargetConfig(BaseModel):
    """A well-known target that resolves to a fixed binary."""

    binary: str = Field(description="Executable file name to search for")
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict, description="Environment overlay")
    managed: bool = Field(
        default=False, description="Look up the install path from the orchestration state"
    )
    dev_paths: list[str] = Field(
        default_factory=list,
        description="Development sibling paths; '{arch}' expands to the platform directory",
    )
    search_path: bool = Field(default=True, description="Fall back to searching PATH")


def _default_targets() -> dict[str, TargetConfig]:
    return {
        "demo_tui": TargetConfig(
            binary="demo-tui",
            env={"TERM": "xterm-256color", "COUNTER_URL": "http://localhost:8082"},
            managed=True,
            dev_paths=["../bc-gitops-demo-tui/priv/{arch}/demo-tui"],
        ),
    }


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    format: str = Field(
        default="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    file: str | None = Field(default=None)


class Settings(BaseSettings):
    """Root configuration for the ptyrelay server and client.

    Loads from YAML file and supports environment variable overrides.
    Reads .env files automatically.
    """

    model_config = {
        "env_prefix": "PTYRELAY_",
        "env_nested_delimiter": "__",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    server: ServerConfig = Field(default_factory=ServerConfig)
    terminal: TerminalConfig = Field(default_factory=TerminalConfig)
    orchestration: OrchestrationConfig = Field(default_factory=OrchestrationConfig)
    targets: dict[str, TargetConfig] = Field(default_factory=_default_targets)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Load settings from YAML + .env + environment variables.

    Priority: env vars > .env file > YAML file > defaults
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    _load_dotenv()

    yaml_data = {}
    if path.exists():
        with open(path) as f:
            yaml_data = yaml.safe_load(f) or {}
        logger.info("Loaded configuration from %s", path)
    else:
        logger.warning("Config file %s not found, using defaults + env vars", path)

    _apply_env_overrides(yaml_data)

    return Settings(**yaml_data)


def _load_dotenv() -> None:
    """Load .env file into os.environ if it exists."""
    env_path = Path(".env")
    if not env_path.exists():
        return
    with open(env_path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" in line:
                key, _, value = line.partition("=")
                key = key.strip()
                value = value.strip()
                if not os.environ.get(key):
                    os.environ[key] = value


def _apply_env_overrides(yaml_data: dict) -> None:
    """Apply environment variable overrides for non-prefixed vars."""
    # The orchestrator publishes its state endpoint under its own name
    state_url = os.environ.get("GITOPS_STATE_URL", "")
    if state_url:
        orchestration = yaml_data.setdefault("orchestration", {})
        if not orchestration.get("state_url"):
            orchestration["state_url"] = state_url
