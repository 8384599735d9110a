"""Command Resolver: logical target name -> CommandSpec.

Targets are either the generic "shell", or well-known targets from the
configuration. Managed targets are looked up in the orchestration state
first, then in development sibling directories, then on PATH.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Mapping

from ptyrelay.config.settings import TargetConfig
from ptyrelay.domain.models import CommandSpec
from ptyrelay.resolver.base import (
    AmbiguousOrMissingBinary,
    NotFound,
    find_executable,
    platform_arch,
    search_path,
)
from ptyrelay.resolver.orchestration import OrchestrationState

logger = logging.getLogger(__name__)

SHELL_TARGET = "shell"
DEFAULT_SHELL = "/bin/bash"
DEFAULT_TERM = "xterm-256color"


class CommandResolver:
    """Resolves target names to launchable commands.

    Performs no I/O beyond filesystem checks and at most one
    orchestration query per call, which is bounded by query_timeout.
    Never retries.
    """

    def __init__(
        self,
        targets: Mapping[str, TargetConfig] | None = None,
        orchestration: OrchestrationState | None = None,
        query_timeout: float = 2.0,
        base_dir: Path | None = None,
        arch: str | None = None,
        term: str = DEFAULT_TERM,
    ) -> None:
        self._targets = dict(targets or {})
        self._orchestration = orchestration
        self._query_timeout = query_timeout
        self._base_dir = base_dir or Path.cwd()
        self._arch = arch or platform_arch()
        self._term = term

    @property
    def target_names(self) -> list[str]:
        return [SHELL_TARGET, *sorted(self._targets)]

    async def resolve(self, target: str) -> CommandSpec:
        """Resolve target to a CommandSpec.

        Raises:
            NotFound: If target is not a known name.
            AmbiguousOrMissingBinary: If no candidate binary exists.
        """
        if target == SHELL_TARGET:
            return self._resolve_shell()

        config = self._targets.get(target)
        if config is None:
            raise NotFound(f"unknown target {target!r}", target=target)

        candidates: list[Path | None] = []
        if config.managed:
            candidates.extend(await self._managed_candidates(target, config.binary))
        candidates.extend(self._dev_candidates(config))
        if config.search_path:
            candidates.extend(search_path(config.binary))

        executable = find_executable(candidates)
        if executable is None:
            raise AmbiguousOrMissingBinary(
                f"binary {config.binary!r} for target {target!r} not found", target=target
            )

        logger.debug("Resolved %s to %s", target, executable)
        return CommandSpec(executable=executable, args=tuple(config.args), env=dict(config.env))

    def _resolve_shell(self) -> CommandSpec:
        shell = os.environ.get("SHELL") or DEFAULT_SHELL
        executable = find_executable([shell, DEFAULT_SHELL])
        if executable is None:
            raise AmbiguousOrMissingBinary(f"shell {shell!r} not found", target=SHELL_TARGET)
        return CommandSpec(executable=executable, env={"TERM": self._term})

    async def _managed_candidates(self, target: str, binary: str) -> list[Path]:
        if self._orchestration is None:
            return []
        try:
            state = await asyncio.wait_for(
                self._orchestration.get_current_state(), timeout=self._query_timeout
            )
        except asyncio.TimeoutError:
            logger.warning("Orchestration state query timed out resolving %s", target)
            return []
        except Exception as e:
            logger.warning("Orchestration state unavailable resolving %s: %s", target, e)
            return []

        app = state.get(target)
        if app is None or not app.installation_path:
            return []
        root = Path(app.installation_path)
        return [root / "priv" / self._arch / binary]

    def _dev_candidates(self, config: TargetConfig) -> list[Path]:
        paths = []
        for template in config.dev_paths:
            path = Path(template.format(arch=self._arch)).expanduser()
            if not path.is_absolute():
                path = self._base_dir / path
            paths.append(path)
        return paths
