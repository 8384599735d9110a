"""Tests for CommandResolver."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from ptyrelay.config.settings import TargetConfig
from ptyrelay.resolver.base import AmbiguousOrMissingBinary, NotFound, ResolutionError
from ptyrelay.resolver.command import CommandResolver
from ptyrelay.resolver.orchestration import OrchestrationError, OrchestrationState

ARCH = "linux-x86_64"


def _demo_target(**overrides) -> TargetConfig:
    fields = {
        "binary": "demo-tui",
        "env": {"TERM": "xterm-256color", "COUNTER_URL": "http://localhost:8082"},
        "managed": True,
        "dev_paths": ["../bc-gitops-demo-tui/priv/{arch}/demo-tui"],
        "search_path": False,
    }
    fields.update(overrides)
    return TargetConfig(**fields)


def _workdir(tmp_path: Path) -> Path:
    """The relay checkout, with the TUI project checked out beside it."""
    workdir = tmp_path / "work" / "relay"
    workdir.mkdir(parents=True, exist_ok=True)
    return workdir


class FailingOrchestration(OrchestrationState):
    def __init__(self) -> None:
        self.calls = 0

    async def get_current_state(self):
        self.calls += 1
        raise OrchestrationError("orchestrator is down")


class SlowOrchestration(OrchestrationState):
    async def get_current_state(self):
        await asyncio.sleep(10)
        return {}


class TestShellTarget:
    @pytest.mark.asyncio
    async def test_resolves_to_login_shell(self, resolver: CommandResolver, sh_shell: str) -> None:
        spec = await resolver.resolve("shell")
        assert spec.executable == Path(sh_shell).resolve()
        assert spec.args == ()
        assert spec.env == {"TERM": "xterm-256color"}

    @pytest.mark.asyncio
    async def test_falls_back_when_shell_unset(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("SHELL", raising=False)
        if not Path("/bin/bash").exists():
            pytest.skip("/bin/bash not available")
        spec = await CommandResolver().resolve("shell")
        assert spec.executable == Path("/bin/bash").resolve()

    @pytest.mark.asyncio
    async def test_uses_configured_term(self, sh_shell: str) -> None:
        spec = await CommandResolver(term="vt100").resolve("shell")
        assert spec.env["TERM"] == "vt100"


class TestUnknownTarget:
    @pytest.mark.asyncio
    async def test_unknown_name_is_not_found(self, resolver: CommandResolver) -> None:
        with pytest.raises(NotFound) as exc_info:
            await resolver.resolve("no_such_app")
        assert exc_info.value.target == "no_such_app"
        assert isinstance(exc_info.value, ResolutionError)


class TestManagedTarget:
    @pytest.mark.asyncio
    async def test_installed_binary_preferred(
        self, tmp_path: Path, make_executable, static_orchestration
    ) -> None:
        installed = make_executable(tmp_path / "releases" / "demo_tui-0.1.0" / "priv" / ARCH / "demo-tui")
        make_executable(tmp_path / "work" / "bc-gitops-demo-tui" / "priv" / ARCH / "demo-tui")
        resolver = CommandResolver(
            targets={"demo_tui": _demo_target()},
            orchestration=static_orchestration,
            base_dir=_workdir(tmp_path),
            arch=ARCH,
        )

        spec = await resolver.resolve("demo_tui")

        assert spec.executable == installed.resolve()
        assert spec.env == {"TERM": "xterm-256color", "COUNTER_URL": "http://localhost:8082"}

    @pytest.mark.asyncio
    async def test_dev_path_when_not_installed(
        self, tmp_path: Path, make_executable, static_orchestration
    ) -> None:
        dev = make_executable(tmp_path / "work" / "bc-gitops-demo-tui" / "priv" / ARCH / "demo-tui")
        resolver = CommandResolver(
            targets={"demo_tui": _demo_target()},
            orchestration=static_orchestration,
            base_dir=_workdir(tmp_path),
            arch=ARCH,
        )
        spec = await resolver.resolve("demo_tui")
        assert spec.executable == dev.resolve()

    @pytest.mark.asyncio
    async def test_path_fallback(
        self, tmp_path: Path, make_executable, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        on_path = make_executable(tmp_path / "bin" / "demo-tui")
        monkeypatch.setenv("PATH", str(tmp_path / "bin"))
        resolver = CommandResolver(
            targets={"demo_tui": _demo_target(search_path=True)},
            base_dir=tmp_path,
            arch=ARCH,
        )
        spec = await resolver.resolve("demo_tui")
        assert spec.executable == on_path.resolve()

    @pytest.mark.asyncio
    async def test_missing_binary(self, tmp_path: Path, static_orchestration) -> None:
        resolver = CommandResolver(
            targets={"demo_tui": _demo_target()},
            orchestration=static_orchestration,
            base_dir=tmp_path,
            arch=ARCH,
        )
        with pytest.raises(AmbiguousOrMissingBinary) as exc_info:
            await resolver.resolve("demo_tui")
        assert "demo-tui" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_orchestration_failure_falls_through(self, tmp_path: Path, make_executable) -> None:
        dev = make_executable(tmp_path / "work" / "bc-gitops-demo-tui" / "priv" / ARCH / "demo-tui")
        orchestration = FailingOrchestration()
        resolver = CommandResolver(
            targets={"demo_tui": _demo_target()},
            orchestration=orchestration,
            base_dir=_workdir(tmp_path),
            arch=ARCH,
        )
        spec = await resolver.resolve("demo_tui")
        assert spec.executable == dev.resolve()
        assert orchestration.calls == 1

    @pytest.mark.asyncio
    async def test_orchestration_query_is_bounded(self, tmp_path: Path) -> None:
        resolver = CommandResolver(
            targets={"demo_tui": _demo_target()},
            orchestration=SlowOrchestration(),
            query_timeout=0.05,
            base_dir=tmp_path,
            arch=ARCH,
        )
        with pytest.raises(AmbiguousOrMissingBinary):
            await asyncio.wait_for(resolver.resolve("demo_tui"), timeout=2.0)

    @pytest.mark.asyncio
    async def test_unmanaged_target_skips_orchestration(self, tmp_path: Path, make_executable) -> None:
        make_executable(tmp_path / "tools" / "htop")
        orchestration = MagicMock(spec=OrchestrationState)
        orchestration.get_current_state = AsyncMock(return_value={})
        resolver = CommandResolver(
            targets={"htop": TargetConfig(binary="htop", dev_paths=["tools/htop"], args=["-d", "10"])},
            orchestration=orchestration,
            base_dir=tmp_path,
            arch=ARCH,
        )
        spec = await resolver.resolve("htop")
        assert spec.args == ("-d", "10")
        orchestration.get_current_state.assert_not_awaited()


class TestTargetNames:
    def test_shell_listed_first(self) -> None:
        resolver = CommandResolver(targets={"zeta": TargetConfig(binary="z"), "alpha": TargetConfig(binary="a")})
        assert resolver.target_names == ["shell", "alpha", "zeta"]
