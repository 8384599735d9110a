"""PTY Process Launcher module for ptyrelay.

Public API:
    PtyLauncher -- Spawns commands on fresh pseudo-terminals
    PtyProcessHandle -- A running PTY-attached child process
    PtyError and subclasses -- Launch, write and resize failures
"""

from ptyrelay.pty.launcher import (
    LaunchError,
    PipeClosed,
    ProcessNotRunning,
    PtyError,
    PtyLauncher,
    PtyProcessHandle,
    ResizeRejected,
    WriteError,
)

__all__ = [
    "LaunchError",
    "PipeClosed",
    "ProcessNotRunning",
    "PtyError",
    "PtyLauncher",
    "PtyProcessHandle",
    "ResizeRejected",
    "WriteError",
]
