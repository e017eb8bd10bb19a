"""Configuration — Pydantic models for termhub settings."""

from __future__ import annotations

import os
from typing import Any

from pydantic import BaseModel, Field

DEFAULT_FALLBACK_PATHS = [
    "/usr/local/bin",
    "/opt/homebrew/bin",
    "/opt/homebrew/sbin",
]


class TerminalConfig(BaseModel):
    """How PTY sessions are spawned and torn down."""

    default_shell: str | None = Field(
        default=None,
        description="Shell used when a session asks for none (default: $SHELL, then the platform shell)",
    )
    shell_args: list[str] = Field(
        default_factory=list, description="Extra arguments passed to every spawned shell"
    )
    cols: int = Field(default=80, gt=0, le=0xFFFF)
    rows: int = Field(default=24, gt=0, le=0xFFFF)
    term: str = Field(default="xterm-256color", description="TERM exported to the shell")
    read_chunk_size: int = Field(default=4096, gt=0)
    kill_grace: float = Field(
        default=2.0,
        description="Seconds between SIGHUP and SIGKILL when closing a session",
    )
    drain_timeout: float = Field(
        default=0.5,
        description="Seconds to keep reading output after the shell exits",
    )


class EnvironmentConfig(BaseModel):
    """Login-shell environment capture."""

    login_shell: str | None = Field(
        default=None, description="Shell used for capture (default: $SHELL)"
    )
    timeout: float = Field(default=5.0, gt=0)
    fallback_paths: list[str] = Field(
        default_factory=lambda: list(DEFAULT_FALLBACK_PATHS),
        description="Directories prepended to PATH when capture fails",
    )
    default_locale: str = Field(default="en_US.UTF-8")
    cache: bool = Field(
        default=True, description="Capture once per process and reuse the snapshot"
    )


class TermhubConfig(BaseModel):
    """Top-level termhub configuration."""

    terminal: TerminalConfig = Field(default_factory=TerminalConfig)
    environment: EnvironmentConfig = Field(default_factory=EnvironmentConfig)
    shells: dict[str, str] = Field(
        default_factory=dict,
        description="Extra shell presets (name -> path), merged over the built-in ones",
    )

    @classmethod
    def load(cls, config_path: str | None = None) -> TermhubConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            TERMHUB_SHELL        - Default shell for new sessions
            TERMHUB_LOGIN_SHELL  - Shell used to capture the login environment
            TERMHUB_ENV_TIMEOUT  - Capture timeout in seconds
            TERMHUB_TERM         - TERM value exported to sessions
            TERMHUB_ENV_CACHE    - "0"/"false" to re-capture on every create
        """
        # .env values win over stale exports in the parent shell.
        try:
            from dotenv import load_dotenv

            load_dotenv(override=True)
        except ImportError:
            pass

        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            import json

            with open(config_path) as f:
                config_data = json.load(f)

        terminal = config_data.get("terminal", {})
        environment = config_data.get("environment", {})

        env_shell = os.environ.get("TERMHUB_SHELL")
        if env_shell:
            terminal["default_shell"] = env_shell

        env_term = os.environ.get("TERMHUB_TERM")
        if env_term:
            terminal["term"] = env_term

        env_login_shell = os.environ.get("TERMHUB_LOGIN_SHELL")
        if env_login_shell:
            environment["login_shell"] = env_login_shell

        env_timeout = os.environ.get("TERMHUB_ENV_TIMEOUT")
        if env_timeout:
            environment["timeout"] = float(env_timeout)

        env_cache = os.environ.get("TERMHUB_ENV_CACHE")
        if env_cache:
            environment["cache"] = env_cache.strip().lower() not in ("0", "false", "no", "off")

        if terminal:
            config_data["terminal"] = terminal
        if environment:
            config_data["environment"] = environment

        return cls.model_validate(config_data)
