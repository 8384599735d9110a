"""Tests for the command-line interface."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from ptyrelay.cli import main, parse_args


@pytest.fixture(autouse=True)
def _reset_logging():
    """main() installs handlers bound to the captured stderr."""
    yield
    logger = logging.getLogger("ptyrelay")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)


class TestParseArgs:
    def test_attach(self) -> None:
        args = parse_args(["attach", "demo_tui", "--url", "ws://relay:9000"])
        assert args.command == "attach"
        assert args.target == "demo_tui"
        assert args.url == "ws://relay:9000"

    def test_serve_overrides(self) -> None:
        args = parse_args(["-v", "serve", "--port", "9001"])
        assert args.verbose
        assert args.port == 9001
        assert args.host is None


class TestResolveCommand:
    def test_resolve_shell(self, sh_shell: str, tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["-c", str(tmp_path / "missing.yaml"), "resolve", "shell"])
        assert exc_info.value.code == 0
        out = capsys.readouterr().out
        assert f"Executable: {Path(sh_shell).resolve()}" in out
        assert "TERM=xterm-256color" in out

    def test_resolve_unknown(self, tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["-c", str(tmp_path / "missing.yaml"), "resolve", "no_such_app"])
        assert exc_info.value.code == 1
        assert "unknown target" in capsys.readouterr().err
