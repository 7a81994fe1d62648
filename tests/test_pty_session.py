"""Tests for dualterm.session.pty_session.PTYSession with real processes."""

from __future__ import annotations

import asyncio
import sys
import textwrap

import pytest

from dualterm.backend import pty_available
from dualterm.launcher import SpawnRequest, prepare_launch
from dualterm.session.base import BackendKind, ExitStatus, SessionHandle, SessionState

pytestmark = pytest.mark.skipif(
    sys.platform == "win32" or not pty_available(), reason="needs a PTY"
)

PY = sys.executable

SIZE_SCRIPT = textwrap.dedent(
    """
    import os, sys, time
    print("ready", flush=True)
    sys.stdin.readline()
    size = os.get_terminal_size(sys.stdout.fileno())
    print(f"size={size.columns}x{size.lines}", flush=True)
    """
)


async def _start(command: str, *args: str, **kwargs):
    from dualterm.session.pty_session import PTYSession

    spec = prepare_launch(SpawnRequest(command=command, args=list(args), **kwargs))
    session = PTYSession(spec)
    await session.start()
    return session


class TestPTYExit:
    def test_echo_hello(self, output_reader) -> None:
        async def _run():
            session = await _start("echo", "hello")
            text = await output_reader(session).rest()
            return session, text

        session, text = asyncio.run(_run())
        assert "hello" in text
        assert session.exit_status == ExitStatus(code=0, signal=None)
        assert session.state is SessionState.EXITED
        assert session.kind is BackendKind.PTY
        assert isinstance(session, SessionHandle)

    def test_kill_reports_code_only(self) -> None:
        async def _run():
            session = await _start("sleep", "30")
            session.kill("SIGTERM")
            return await session.wait(10)

        status = asyncio.run(_run())
        assert status == ExitStatus(code=143, signal=None)

    def test_missing_command_raises_at_start(self) -> None:
        async def _run():
            await _start("/nonexistent/dualterm-no-such-binary")

        with pytest.raises(FileNotFoundError):
            asyncio.run(_run())


class TestPTYIO:
    def test_is_a_tty(self, output_reader) -> None:
        async def _run():
            session = await _start(PY, "-c", "import sys; print(sys.stdout.isatty())")
            return await output_reader(session).rest()

        assert "True" in asyncio.run(_run())

    def test_write_and_echo(self, output_reader) -> None:
        async def _run():
            session = await _start("cat")
            reader = output_reader(session)
            session.write("through the pty\n")
            await reader.until("through the pty", count=2)
            session.write(b"\x04")  # EOF
            status = await session.wait(10)
            return reader.text, status

        text, status = asyncio.run(_run())
        # Once echoed by the line discipline, once printed by cat
        assert text.count("through the pty") == 2
        assert status == ExitStatus(code=0)

    def test_resize_sets_window_size(self, output_reader) -> None:
        async def _run():
            session = await _start(PY, "-c", SIZE_SCRIPT, cols=80, rows=24)
            reader = output_reader(session)
            await reader.until("ready")
            session.resize(120, 40)
            session.resize(100, 33)
            session.write("\n")
            await reader.until("size=")
            await session.wait(10)
            return session.geometry.as_tuple(), reader.text

        geometry, text = asyncio.run(_run())
        assert geometry == (100, 33)
        assert "size=100x33" in text

    def test_initial_size(self, output_reader) -> None:
        async def _run():
            session = await _start(PY, "-c", SIZE_SCRIPT, cols=91, rows=17)
            reader = output_reader(session)
            await reader.until("ready")
            session.write("\n")
            return await reader.rest()

        assert "size=91x17" in asyncio.run(_run())

    def test_write_after_exit_is_noop(self) -> None:
        async def _run():
            session = await _start("echo", "done")
            await session.wait(10)
            data: list[str] = []
            session.set_on_data(data.append)
            session.write("more\n")  # Should not raise
            session.resize(120, 40)
            session.kill()
            await asyncio.sleep(0.1)
            return data, session.exit_status

        data, status = asyncio.run(_run())
        assert data == []
        assert status == ExitStatus(0)
