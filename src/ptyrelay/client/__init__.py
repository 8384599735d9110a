"""Client Terminal Adapter module for ptyrelay.

Public API:
    TerminalClientAdapter -- Connects a surface to a relay session
    TerminalSurface -- Abstract terminal emulator widget
    LocalTerminalSurface -- The local TTY as a surface
"""

from ptyrelay.client.surface import LocalTerminalSurface, TerminalSurface

__all__ = ["LocalTerminalSurface", "TerminalClientAdapter", "TerminalSurface"]


def __getattr__(name: str) -> type:
    """Lazy import for the adapter, which requires websockets."""
    if name == "TerminalClientAdapter":
        from ptyrelay.client.adapter import TerminalClientAdapter
        return TerminalClientAdapter
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
