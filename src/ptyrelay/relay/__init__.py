"""Terminal relay module for ptyrelay.

Connects network sessions to PTY-backed processes. The FastAPI server
creates one TerminalSessionActor per WebSocket connection.

Public API:
    TerminalSessionActor -- Per-session actor
    SessionState -- Actor lifecycle states
    JoinError -- Session start failure
    create_app -- FastAPI application factory
"""

from ptyrelay.relay.actor import JoinError, SessionState, TerminalSessionActor

__all__ = ["JoinError", "SessionState", "TerminalSessionActor", "create_app"]


def __getattr__(name: str) -> object:
    """Lazy import for the server, which pulls in FastAPI."""
    if name == "create_app":
        from ptyrelay.relay.server import create_app
        return create_app
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
