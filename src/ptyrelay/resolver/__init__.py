"""Command Resolver module for ptyrelay.

Turns a logical target name into a concrete executable, arguments and
environment overlay.

Public API:
    CommandResolver -- Resolves target names
    ResolutionError, NotFound, AmbiguousOrMissingBinary -- Failures
    find_executable -- Ordered first-match binary search
"""

from ptyrelay.resolver.base import (
    AmbiguousOrMissingBinary,
    NotFound,
    ResolutionError,
    find_executable,
    platform_arch,
)
from ptyrelay.resolver.command import SHELL_TARGET, CommandResolver

__all__ = [
    "AmbiguousOrMissingBinary",
    "CommandResolver",
    "NotFound",
    "ResolutionError",
    "SHELL_TARGET",
    "find_executable",
    "platform_arch",
]
