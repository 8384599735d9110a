"""ptyrelay -- Interactive terminal relay over WebSockets.

This package lets a remote terminal emulator drive a text-mode process
running on the server through a pseudo-terminal, with one session actor
per connection owning exactly one PTY-attached child process.
"""

__version__ = "0.1.0"
