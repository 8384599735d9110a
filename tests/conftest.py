"""Shared test fixtures for the ptyrelay test suite.

Provides in-memory doubles for the PTY launcher and its handles so the
session actor and server can be tested without spawning processes, plus
helpers for the tests that do run a real shell on a PTY.
"""

from __future__ import annotations

import asyncio
import os
import stat
from pathlib import Path

import pytest

from ptyrelay.domain.models import CommandSpec, Exited, Output, Viewport
from ptyrelay.pty.launcher import LaunchError, PipeClosed, ProcessNotRunning, checked_viewport
from ptyrelay.resolver.command import CommandResolver
from ptyrelay.resolver.orchestration import AppState, StaticOrchestrationState

SH = "/bin/sh"


# ---------------------------------------------------------------------------
# PTY Doubles
# ---------------------------------------------------------------------------


class FakeHandle:
    """Stands in for PtyProcessHandle; the test drives its event stream."""

    def __init__(self, viewport: Viewport, pid: int = 4242, obeys_terminate: bool = True) -> None:
        self.pid = pid
        self.pty_name = "/dev/pts/fake"
        self.viewport = viewport
        self.obeys_terminate = obeys_terminate
        self.written: list[bytes] = []
        self.write_error: Exception | None = None
        self.terminate_calls = 0
        self.kill_calls = 0
        self.released = False
        self._exited: Exited | None = None
        self._events: asyncio.Queue = asyncio.Queue()

    @property
    def is_alive(self) -> bool:
        return self._exited is None

    def emit(self, data: bytes) -> None:
        self._events.put_nowait(Output(data=data))

    def exit(self, reason: str = "exited with status 0", **kwargs) -> None:
        if self._exited is None:
            self._exited = Exited(reason=reason, **kwargs)
            self._events.put_nowait(self._exited)

    def fail_stream(self, error: Exception) -> None:
        self._events.put_nowait(error)

    async def next_event(self):
        item = await self._events.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def write(self, data: bytes) -> None:
        if self.write_error is not None:
            raise self.write_error
        if not self.is_alive:
            raise PipeClosed("process is not running")
        self.written.append(data)

    def resize(self, cols: int, rows: int) -> Viewport:
        if not self.is_alive:
            raise ProcessNotRunning("process is not running")
        self.viewport = checked_viewport(cols, rows)
        return self.viewport

    def get_size(self) -> Viewport:
        return self.viewport

    def terminate(self) -> None:
        self.terminate_calls += 1
        if self.obeys_terminate:
            self.exit("killed by SIGHUP", signal="SIGHUP")

    def kill(self) -> None:
        self.kill_calls += 1
        self.exit("killed by SIGKILL", signal="SIGKILL")

    def release(self) -> None:
        if self.is_alive:
            self.kill()
        self.released = True


class FakeLauncher:
    """Records launches and hands out FakeHandles."""

    def __init__(self, obeys_terminate: bool = True) -> None:
        self.obeys_terminate = obeys_terminate
        self.launched: list[tuple[CommandSpec, Viewport]] = []
        self.handles: list[FakeHandle] = []
        self.error: Exception | None = None

    async def launch(self, spec: CommandSpec, viewport: Viewport) -> FakeHandle:
        if self.error is not None:
            raise self.error
        self.launched.append((spec, viewport))
        handle = FakeHandle(viewport, pid=4242 + len(self.handles), obeys_terminate=self.obeys_terminate)
        self.handles.append(handle)
        return handle


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sh_shell(monkeypatch: pytest.MonkeyPatch) -> str:
    """Make the 'shell' target resolve to /bin/sh."""
    if not os.access(SH, os.X_OK):
        pytest.skip("/bin/sh not available")
    monkeypatch.setenv("SHELL", SH)
    return SH


@pytest.fixture
def resolver(sh_shell: str) -> CommandResolver:
    """A resolver that knows only the generic shell target."""
    return CommandResolver(targets={})


@pytest.fixture
def fake_launcher() -> FakeLauncher:
    return FakeLauncher()


@pytest.fixture
def stubborn_launcher() -> FakeLauncher:
    """A launcher whose processes ignore terminate() and need kill()."""
    return FakeLauncher(obeys_terminate=False)


@pytest.fixture
def launch_error() -> LaunchError:
    return LaunchError("PTY allocation failed: out of ptys")


def _make_executable(path: Path, body: str = "#!/bin/sh\nexit 0\n") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def make_executable():
    """Factory writing an executable script at a path, creating parent directories."""
    return _make_executable


@pytest.fixture
def static_orchestration(tmp_path: Path) -> StaticOrchestrationState:
    """Orchestration state with demo_tui installed under tmp_path/releases."""
    return StaticOrchestrationState(
        {
            "demo_tui": AppState(
                name="demo_tui",
                version="0.1.0",
                status="running",
                installation_path=str(tmp_path / "releases" / "demo_tui-0.1.0"),
                health="healthy",
            )
        }
    )


async def _collect_output(handle, needle: bytes, timeout: float = 5.0) -> bytes:
    buffer = b""

    async def _read() -> bytes:
        nonlocal buffer
        while needle not in buffer:
            event = await handle.next_event()
            if isinstance(event, Exited):
                break
            buffer += event.data
        return buffer

    return await asyncio.wait_for(_read(), timeout)


@pytest.fixture
def collect_output():
    """Coroutine factory reading Output events from a real handle until a needle appears."""
    return _collect_output
