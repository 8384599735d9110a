"""Domain models for ptyrelay.

This package contains the core data structures and message types used
throughout the system. All models use Pydantic v2 for validation.
"""

from ptyrelay.domain.models import (
    CommandSpec,
    Exited,
    InboundMessage,
    Input,
    OutboundMessage,
    Output,
    Resize,
    Session,
    Viewport,
    session_key,
)

__all__ = [
    "CommandSpec",
    "Exited",
    "InboundMessage",
    "Input",
    "OutboundMessage",
    "Output",
    "Resize",
    "Session",
    "Viewport",
    "session_key",
]
