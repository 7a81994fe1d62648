"""Configuration — Pydantic models for dualterm settings."""

from __future__ import annotations

import os
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field

_TRUTHY = {"1", "true", "yes", "on"}


class TerminalConfig(BaseModel):
    """Terminal backend configuration.

    ``force_pipe`` is the one process-wide toggle: it makes the backend
    selector use pipe emulation even when a PTY is available, so the
    fallback path can be exercised in development and tests.
    """

    force_pipe: bool = Field(
        default=False, description="Always use pipe emulation, even if a PTY works"
    )
    term: str = Field(
        default="xterm-256color", description="TERM value when the caller sets none"
    )
    default_cols: int = Field(default=80, ge=1)
    default_rows: int = Field(default=30, ge=1)
    interactive_shells: list[str] = Field(
        default_factory=lambda: ["bash", "sh", "zsh"],
        description="Shells that get -i prepended when not already interactive",
    )
    kick_delay: float = Field(
        default=0.05,
        ge=0,
        description="Seconds before the carriage-return kick in pipe sessions",
    )
    pty_search_paths: list[str] = Field(
        default_factory=lambda: ["/dev/ptmx", "/dev/pts/ptmx"],
        description="Alternate locations probed when the default pty open fails",
    )
    max_sessions: int = Field(default=16, ge=1)
    ready_timeout: float = Field(
        default=0.5,
        ge=0,
        description="Seconds a managed session waits for first output before flushing queued input",
    )

    @classmethod
    def load(cls, config_path: str | None = None) -> TerminalConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            DUALTERM_FORCE_PIPE    - Force pipe emulation (1/true/yes/on)
            DUALTERM_TERM          - Default TERM value
            DUALTERM_KICK_DELAY    - Pipe-session kick delay in seconds
            DUALTERM_MAX_SESSIONS  - Session limit for the manager
            DUALTERM_READY_TIMEOUT - Seconds to wait for first output before
                                     flushing queued input
        """
        load_dotenv()

        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            import json

            with open(config_path) as f:
                config_data = json.load(f)

        env_force = os.environ.get("DUALTERM_FORCE_PIPE")
        if env_force is not None:
            config_data["force_pipe"] = env_force.strip().lower() in _TRUTHY

        env_term = os.environ.get("DUALTERM_TERM")
        if env_term:
            config_data["term"] = env_term

        env_kick = os.environ.get("DUALTERM_KICK_DELAY")
        if env_kick:
            config_data["kick_delay"] = float(env_kick)

        env_max = os.environ.get("DUALTERM_MAX_SESSIONS")
        if env_max:
            config_data["max_sessions"] = int(env_max)

        env_ready = os.environ.get("DUALTERM_READY_TIMEOUT")
        if env_ready:
            config_data["ready_timeout"] = float(env_ready)

        return cls.model_validate(config_data)


_config: TerminalConfig | None = None


def get_config() -> TerminalConfig:
    """Return the process-wide config, loading it on first use."""
    global _config
    if _config is None:
        _config = TerminalConfig.load()
    return _config


def reset_config(config: TerminalConfig | None = None) -> None:
    """Replace (or drop) the cached process-wide config."""
    global _config
    _config = config
