"""Tests for the binary candidate search helpers."""

from __future__ import annotations

from pathlib import Path

import pytest

from ptyrelay.resolver.base import find_executable, is_executable, platform_arch, search_path


class TestFindExecutable:
    def test_first_existing_candidate_wins(self, tmp_path: Path, make_executable) -> None:
        first = make_executable(tmp_path / "a" / "tool")
        make_executable(tmp_path / "b" / "tool")
        assert find_executable([tmp_path / "missing", first, tmp_path / "b" / "tool"]) == first.resolve()

    def test_skips_none_entries(self, tmp_path: Path, make_executable) -> None:
        tool = make_executable(tmp_path / "tool")
        assert find_executable([None, tool]) == tool.resolve()

    def test_skips_non_executable_files(self, tmp_path: Path, make_executable) -> None:
        plain = tmp_path / "plain"
        plain.write_text("data")
        tool = make_executable(tmp_path / "tool")
        assert find_executable([plain, tool]) == tool.resolve()

    def test_skips_directories(self, tmp_path: Path) -> None:
        (tmp_path / "dir").mkdir()
        assert find_executable([tmp_path / "dir"]) is None

    def test_no_candidates(self) -> None:
        assert find_executable([]) is None

    def test_is_executable(self, tmp_path: Path, make_executable) -> None:
        assert is_executable(make_executable(tmp_path / "tool"))
        assert not is_executable(tmp_path / "nope")


class TestPlatformArch:
    @pytest.mark.parametrize(
        "system,machine,expected",
        [
            ("Linux", "x86_64", "linux-x86_64"),
            ("Linux", "aarch64", "linux-aarch64"),
            ("Linux", "arm64", "linux-aarch64"),
            ("Darwin", "arm64", "macos-aarch64"),
            ("Darwin", "x86_64", "macos-x86_64"),
            ("FreeBSD", "amd64", "linux-x86_64"),
        ],
    )
    def test_arch_directory(self, system: str, machine: str, expected: str) -> None:
        assert platform_arch(system, machine) == expected

    def test_defaults_to_host(self) -> None:
        assert platform_arch() in {"linux-x86_64", "linux-aarch64", "macos-x86_64", "macos-aarch64"}


class TestSearchPath:
    def test_candidates_follow_path_order(self) -> None:
        assert search_path("tool", "/opt/bin::/usr/bin") == [Path("/opt/bin/tool"), Path("/usr/bin/tool")]

    def test_uses_environment_path(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PATH", "/custom/bin")
        assert search_path("tool") == [Path("/custom/bin/tool")]
