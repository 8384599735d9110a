"""Core domain models for the ptyrelay system.

These models represent the data flowing through one terminal session:
the viewport a client renders at, the session record an actor owns,
the resolved launch descriptor for a target, and the messages passed
between the network peer, the session actor and the PTY process.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_COLS = 80
DEFAULT_ROWS = 24

# struct winsize stores dimensions as unsigned shorts
MAX_DIMENSION = 0xFFFF


# ---------------------------------------------------------------------------
# Session Models
# ---------------------------------------------------------------------------


class Viewport(BaseModel):
    """A terminal character grid size."""

    model_config = ConfigDict(frozen=True)

    cols: int = Field(default=DEFAULT_COLS, gt=0, le=MAX_DIMENSION, description="Columns (characters per line)")
    rows: int = Field(default=DEFAULT_ROWS, gt=0, le=MAX_DIMENSION, description="Rows (lines)")


def session_key(target: str) -> str:
    """Derive the session key for a requested target name."""
    return f"terminal:{target}"


class Session(BaseModel):
    """One client <-> actor pairing.

    Owned exclusively by a TerminalSessionActor. The viewport is only
    updated after the PTY accepts a resize.
    """

    key: str = Field(description="Opaque session key derived from the target name")
    target: str = Field(description="Requested logical target name")
    viewport: Viewport = Field(default_factory=Viewport)
    created_at: datetime = Field(default_factory=datetime.now)

    @classmethod
    def for_target(cls, target: str, viewport: Viewport) -> Session:
        return cls(key=session_key(target), target=target, viewport=viewport)


class CommandSpec(BaseModel):
    """Resolved launch descriptor for a target.

    Produced by the CommandResolver and consumed once by the PtyLauncher.
    The env mapping is an overlay: its entries win over the invoking
    process environment.
    """

    model_config = ConfigDict(frozen=True)

    executable: Path = Field(description="Absolute path to an existing executable")
    args: tuple[str, ...] = Field(default=(), description="Arguments, excluding argv[0]")
    env: dict[str, str] = Field(default_factory=dict, description="Environment overlay")

    @property
    def argv(self) -> list[str]:
        return [str(self.executable), *self.args]


# ---------------------------------------------------------------------------
# Session Messages (discriminated unions)
# ---------------------------------------------------------------------------


class Input(BaseModel):
    """Bytes typed by the client, destined for the child's stdin."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["input"] = "input"
    data: bytes


class Resize(BaseModel):
    """A viewport change requested by the client.

    Dimensions are not validated here: non-positive values must reach
    the PTY layer so they can be rejected there without ending the session.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["resize"] = "resize"
    cols: int
    rows: int


class Output(BaseModel):
    """A chunk of raw bytes produced by the child on the PTY."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["output"] = "output"
    data: bytes


class Exited(BaseModel):
    """Terminal notification: the child process is gone."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["exited"] = "exited"
    reason: str = Field(description="Human-readable diagnostic")
    exit_code: int | None = Field(default=None, description="Exit status if the process exited normally")
    signal: str | None = Field(default=None, description="Signal name if the process was killed")


InboundMessage = Annotated[Union[Input, Resize], Field(discriminator="kind")]

OutboundMessage = Annotated[Union[Output, Exited], Field(discriminator="kind")]
