"""Shared fixtures for dualterm tests."""

from __future__ import annotations

import asyncio

import pytest

from dualterm.backend import set_pty_probe
from dualterm.config import TerminalConfig, reset_config
from dualterm.session.base import SessionHandle


class OutputReader:
    """Accumulates a session's output across several waits."""

    def __init__(self, session: SessionHandle) -> None:
        self._stream = session.output()
        self.text = ""

    async def until(self, needle: str, count: int = 1, timeout: float = 10.0) -> str:
        async def _read() -> None:
            async for chunk in self._stream:
                self.text += chunk
                if self.text.count(needle) >= count:
                    return

        if self.text.count(needle) < count:
            await asyncio.wait_for(_read(), timeout)
        return self.text

    async def rest(self, timeout: float = 10.0) -> str:
        async def _read() -> None:
            async for chunk in self._stream:
                self.text += chunk

        await asyncio.wait_for(_read(), timeout)
        return self.text


@pytest.fixture(autouse=True)
def _isolate_globals(monkeypatch: pytest.MonkeyPatch):
    for var in (
        "DUALTERM_FORCE_PIPE",
        "DUALTERM_TERM",
        "DUALTERM_KICK_DELAY",
        "DUALTERM_MAX_SESSIONS",
        "DUALTERM_READY_TIMEOUT",
    ):
        monkeypatch.delenv(var, raising=False)
    reset_config(TerminalConfig())
    set_pty_probe(None)
    yield
    reset_config(None)
    set_pty_probe(None)


@pytest.fixture
def pipe_config() -> TerminalConfig:
    return TerminalConfig(force_pipe=True)


@pytest.fixture
def output_reader() -> type[OutputReader]:
    return OutputReader
