"""CLI entry point for dualterm."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys

import typer

from dualterm.backend import pty_available, select_backend, spawn_session
from dualterm.config import TerminalConfig, reset_config
from dualterm.launcher import SpawnRequest, default_shell
from dualterm.session.base import ExitStatus

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="dualterm",
    help="Interactive terminal sessions over a PTY, or pipes when no PTY is available.",
    no_args_is_help=True,
)


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _load_config(config_file: str | None, pipe: bool = False) -> TerminalConfig:
    config = TerminalConfig.load(config_file)
    if pipe:
        config.force_pipe = True
    reset_config(config)
    return config


@app.command()
def probe(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Report which terminal backend new sessions would use."""
    setup_logging(verbose)
    config = _load_config(config_file)

    typer.echo(f"PTY available: {'yes' if pty_available() else 'no'}")
    typer.echo(f"Forced pipe emulation: {'yes' if config.force_pipe else 'no'}")
    typer.echo(f"Backend: {select_backend(config).value}")
    typer.echo(f"Default shell: {default_shell()}")


@app.command(
    context_settings={
        "allow_extra_args": True,
        "ignore_unknown_options": True,
        "allow_interspersed_args": False,
    }
)
def run(
    ctx: typer.Context,
    command: str | None = typer.Argument(
        None, help="Program to run (default: your shell)."
    ),
    cwd: str | None = typer.Option(None, "--cwd", help="Working directory."),
    cols: int | None = typer.Option(None, "--cols", help="Initial columns."),
    rows: int | None = typer.Option(None, "--rows", help="Initial rows."),
    pipe: bool = typer.Option(
        False, "--pipe", help="Force pipe emulation even if a PTY is available."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Run a command in a terminal session attached to this terminal."""
    setup_logging(verbose)
    config = _load_config(config_file, pipe=pipe)

    size = _local_size()
    request = SpawnRequest(
        command=command or default_shell(),
        args=list(ctx.args),
        cwd=os.path.abspath(cwd) if cwd else None,
        cols=cols or (size[0] if size else config.default_cols),
        rows=rows or (size[1] if size else config.default_rows),
    )

    saved = _enter_raw_mode()
    try:
        status = asyncio.run(_bridge(request, config))
    finally:
        _restore_mode(saved)

    raise typer.Exit(_exit_code(status))


def _local_size() -> tuple[int, int] | None:
    try:
        size = os.get_terminal_size(sys.stdout.fileno())
    except OSError:
        return None
    return size.columns, size.lines


def _enter_raw_mode() -> list | None:
    """Put the local tty in raw mode so keystrokes pass straight through."""
    if not sys.stdin.isatty():
        return None
    try:
        import termios
        import tty
    except ImportError:
        return None
    fd = sys.stdin.fileno()
    saved = termios.tcgetattr(fd)
    tty.setraw(fd)
    return saved


def _restore_mode(saved: list | None) -> None:
    if saved is None:
        return
    import termios

    termios.tcsetattr(sys.stdin.fileno(), termios.TCSADRAIN, saved)


def _exit_code(status: ExitStatus) -> int:
    if status.code is not None:
        return status.code
    try:
        return 128 + signal.Signals[status.signal].value
    except KeyError:
        return 1


async def _bridge(request: SpawnRequest, config: TerminalConfig) -> ExitStatus:
    """Pump local stdin into the session and session output to stdout."""
    session = await spawn_session(request, config)
    logger.info("Session pid=%s on %s backend", session.pid, session.kind.value)

    loop = asyncio.get_running_loop()
    out = sys.stdout.buffer
    stdin_fd: int | None = None

    def _on_data(chunk: str) -> None:
        out.write(chunk.encode("utf-8"))
        out.flush()

    def _on_error(exc: BaseException) -> None:
        sys.stderr.write(f"dualterm: {exc}\r\n")

    def _on_stdin() -> None:
        try:
            data = os.read(stdin_fd, 4096)
        except OSError:
            data = b""
        if not data:
            loop.remove_reader(stdin_fd)
            return
        session.write(data)

    def _on_winch() -> None:
        size = _local_size()
        if size:
            session.resize(*size)

    session.set_on_data(_on_data)
    session.set_on_error(_on_error)
    try:
        fd = sys.stdin.fileno()
        loop.add_reader(fd, _on_stdin)
        stdin_fd = fd
    except (OSError, ValueError) as e:
        logger.warning("Not forwarding stdin: %s", e)
    if hasattr(signal, "SIGWINCH"):
        loop.add_signal_handler(signal.SIGWINCH, _on_winch)
    try:
        status = await session.wait()
    finally:
        if stdin_fd is not None:
            loop.remove_reader(stdin_fd)
        if hasattr(signal, "SIGWINCH"):
            loop.remove_signal_handler(signal.SIGWINCH)
    assert status is not None
    return status


def main() -> None:
    app()


if __name__ == "__main__":
    main()
