"""Process launcher — turn a spawn request into an argv, cwd and env."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

from dualterm.config import TerminalConfig, get_config

INTERACTIVE_FLAG = "-i"


@dataclass
class Geometry:
    """Terminal size in character cells. Every resize overwrites both fields."""

    cols: int = 80
    rows: int = 30

    def __post_init__(self) -> None:
        if self.cols < 1 or self.rows < 1:
            raise ValueError(f"Invalid geometry: {self.cols}x{self.rows}")

    def as_tuple(self) -> tuple[int, int]:
        return (self.cols, self.rows)


@dataclass
class SpawnRequest:
    """What a caller asks for when opening a terminal session."""

    command: str
    args: list[str] = field(default_factory=list)
    cwd: str | None = None
    env: dict[str, str] = field(default_factory=dict)
    cols: int = 80
    rows: int = 30

    def __post_init__(self) -> None:
        if not self.command:
            raise ValueError("SpawnRequest.command must not be empty")
        if self.cols < 1 or self.rows < 1:
            raise ValueError(f"Invalid geometry: {self.cols}x{self.rows}")


@dataclass
class LaunchSpec:
    """Normalized launch data handed to a session backend."""

    argv: list[str]
    cwd: str
    env: dict[str, str]
    geometry: Geometry

    @property
    def command(self) -> str:
        return self.argv[0]


def default_shell() -> str:
    """The user's login shell, as the file manager opens it."""
    if sys.platform == "win32":
        return "powershell.exe"
    return os.environ.get("SHELL") or "bash"


def is_interactive_shell(command: str, config: TerminalConfig | None = None) -> bool:
    cfg = config or get_config()
    return os.path.basename(command) in cfg.interactive_shells


def build_args(
    command: str, args: list[str], config: TerminalConfig | None = None
) -> list[str]:
    """Prepend ``-i`` for recognized shells unless the caller already did."""
    args = list(args)
    if sys.platform == "win32":
        return args
    if is_interactive_shell(command, config) and INTERACTIVE_FLAG not in args:
        args.insert(0, INTERACTIVE_FLAG)
    return args


def build_env(
    overrides: dict[str, str],
    geometry: Geometry,
    config: TerminalConfig | None = None,
) -> dict[str, str]:
    """Inherited environment with caller overrides on top.

    TERM, COLUMNS and LINES are only filled in when missing or empty.
    """
    cfg = config or get_config()
    env = {**os.environ, **overrides}
    defaults = {
        "TERM": cfg.term,
        "COLUMNS": str(geometry.cols),
        "LINES": str(geometry.rows),
    }
    for key, value in defaults.items():
        if not env.get(key):
            env[key] = value
    return env


def prepare_launch(
    request: SpawnRequest, config: TerminalConfig | None = None
) -> LaunchSpec:
    """Normalize a spawn request into the exact argv and env to execute."""
    cfg = config or get_config()
    geometry = Geometry(request.cols, request.rows)
    return LaunchSpec(
        argv=[request.command, *build_args(request.command, request.args, cfg)],
        cwd=request.cwd or os.getcwd(),
        env=build_env(request.env, geometry, cfg),
        geometry=geometry,
    )
