"""Clients for the orchestration engine's current application state.

The orchestrator owns the managed applications; the relay only reads
where a managed target is installed. Implementations must be safe to
call concurrently from many sessions.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Mapping

import httpx
from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


class AppState(BaseModel):
    """One managed application as reported by the orchestrator."""

    name: str
    version: str | None = None
    status: str | None = None
    installation_path: str | None = Field(default=None, description="Root directory of the installed release")
    health: str | None = None
    env: dict[str, str] = Field(default_factory=dict)


class OrchestrationError(Exception):
    """Raised when the orchestration state cannot be fetched or parsed."""


class OrchestrationState(ABC):
    """Read-only view of the orchestrator's state."""

    @abstractmethod
    async def get_current_state(self) -> dict[str, AppState]:
        """Return the managed applications keyed by target name.

        Raises:
            OrchestrationError: If the state is unavailable.
        """
        ...


class StaticOrchestrationState(OrchestrationState):
    """A fixed state mapping, for configuration-driven setups and tests."""

    def __init__(self, apps: Mapping[str, AppState] | None = None) -> None:
        self._apps = dict(apps or {})

    async def get_current_state(self) -> dict[str, AppState]:
        return dict(self._apps)


class HttpOrchestrationState(OrchestrationState):
    """Fetches the state from the orchestrator's HTTP endpoint.

    The endpoint returns either a JSON object keyed by application name
    or a list of application objects carrying a "name" field.
    """

    def __init__(
        self,
        state_url: str,
        timeout: float = 2.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._state_url = state_url
        self._timeout = timeout
        self._transport = transport

    async def get_current_state(self) -> dict[str, AppState]:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.get(self._state_url)
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise OrchestrationError(f"Failed to fetch orchestration state: {e}") from e

        try:
            return _parse_state(data)
        except (ValidationError, TypeError) as e:
            raise OrchestrationError(f"Malformed orchestration state: {e}") from e


def _parse_state(data: object) -> dict[str, AppState]:
    if isinstance(data, dict):
        return {
            name: AppState.model_validate({"name": name, **(entry or {})})
            for name, entry in data.items()
        }
    if isinstance(data, list):
        apps = [AppState.model_validate(entry) for entry in data]
        return {app.name: app for app in apps}
    raise TypeError(f"expected an object or a list, got {type(data).__name__}")
