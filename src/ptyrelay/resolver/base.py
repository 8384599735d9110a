"""Resolution errors and binary search helpers.

The candidate search is a pure function over an ordered list of paths:
the first existing, executable regular file wins.
"""

from __future__ import annotations

import os
import platform
from pathlib import Path
from typing import Iterable


class ResolutionError(Exception):
    """Raised when a target name cannot be turned into a CommandSpec."""

    def __init__(self, message: str, target: str = "") -> None:
        super().__init__(message)
        self.target = target


class NotFound(ResolutionError):
    """The target name is not known to the resolver."""


class AmbiguousOrMissingBinary(ResolutionError):
    """The target is known but none of its candidate binaries exist."""


def is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


def find_executable(candidates: Iterable[str | Path | None]) -> Path | None:
    """Return the first existing executable among candidates, in order.

    None entries are skipped so callers can pass optional lookups
    (e.g. a failed orchestration query) without filtering.
    """
    for candidate in candidates:
        if candidate is None:
            continue
        path = Path(candidate).expanduser()
        if is_executable(path):
            return path.resolve()
    return None


def platform_arch(system: str | None = None, machine: str | None = None) -> str:
    """Name of the architecture-specific directory binaries ship in."""
    system = (system if system is not None else platform.system()).lower()
    machine = (machine if machine is not None else platform.machine()).lower()
    is_arm = machine in ("aarch64", "arm64") or machine.startswith("arm")

    if system == "darwin":
        return "macos-aarch64" if is_arm else "macos-x86_64"
    if system == "linux" and machine in ("aarch64", "arm64"):
        return "linux-aarch64"
    return "linux-x86_64"


def search_path(name: str, path: str | None = None) -> list[Path]:
    """Candidate locations for name on PATH, in PATH order."""
    if path is None:
        path = os.environ.get("PATH", os.defpath)
    return [Path(entry) / name for entry in path.split(os.pathsep) if entry]
