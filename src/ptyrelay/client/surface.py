"""Terminal surfaces the client adapter renders into.

A surface is the emulator side of a session: it displays output,
reports the user's keystrokes and tells the adapter when its character
grid changes size. Escape sequences are interpreted by the surface, never
by the relay.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
import os
import select
import shutil
import signal
import termios
import tty
from abc import ABC, abstractmethod
from typing import Callable

from ptyrelay.domain.models import Viewport

logger = logging.getLogger(__name__)

# Ctrl+]
DEFAULT_DETACH_CHAR = "\x1d"


class TerminalSurface(ABC):
    """Abstract terminal emulator widget."""

    @abstractmethod
    def open(self) -> None:
        """Prepare the surface for rendering."""
        ...

    @abstractmethod
    def size(self) -> Viewport:
        """Current character grid size."""
        ...

    @abstractmethod
    def write(self, data: str) -> None:
        """Render terminal data as-is."""
        ...

    def writeln(self, text: str = "") -> None:
        self.write(text + "\r\n")

    @abstractmethod
    def on_data(self, callback: Callable[[str], None]) -> None:
        """Register the callback that receives user keystrokes."""
        ...

    @abstractmethod
    def observe_resize(self, callback: Callable[[], None]) -> None:
        """Register the callback fired when the grid size may have changed."""
        ...

    @abstractmethod
    def unobserve_resize(self) -> None:
        """Detach the resize observer. Safe to call repeatedly."""
        ...

    @abstractmethod
    def dispose(self) -> None:
        """Release the surface. Safe to call repeatedly."""
        ...


class LocalTerminalSurface(TerminalSurface):
    """Uses the local TTY as the emulator.

    Puts stdin in raw mode while open, forwards keystrokes, and treats
    SIGWINCH as the resize observer. Typing the detach character calls
    the detach callback instead of being forwarded.
    """

    def __init__(
        self,
        stdin_fd: int = 0,
        stdout_fd: int = 1,
        detach_char: str | None = DEFAULT_DETACH_CHAR,
    ) -> None:
        self._stdin_fd = stdin_fd
        self._stdout_fd = stdout_fd
        self._detach_char = detach_char
        self._saved_attrs: list | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._data_callback: Callable[[str], None] | None = None
        self._detach_callback: Callable[[], None] | None = None
        self._observing = False
        self._reading = False

    def on_detach(self, callback: Callable[[], None]) -> None:
        self._detach_callback = callback

    def open(self) -> None:
        self._loop = asyncio.get_running_loop()
        if os.isatty(self._stdin_fd):
            self._saved_attrs = termios.tcgetattr(self._stdin_fd)
            tty.setraw(self._stdin_fd)
        self._loop.add_reader(self._stdin_fd, self._on_stdin)
        self._reading = True

    def size(self) -> Viewport:
        cols, rows = shutil.get_terminal_size()
        return Viewport(cols=max(cols, 1), rows=max(rows, 1))

    def write(self, data: str) -> None:
        view = memoryview(data.encode("utf-8"))
        while view:
            try:
                written = os.write(self._stdout_fd, view)
            except BlockingIOError:
                # Non-blocking stdout is full: wait for the terminal to drain it
                select.select([], [self._stdout_fd], [])
                continue
            view = view[written:]

    def on_data(self, callback: Callable[[str], None]) -> None:
        self._data_callback = callback

    def observe_resize(self, callback: Callable[[], None]) -> None:
        if self._loop is None:
            raise RuntimeError("surface is not open")
        self._loop.add_signal_handler(signal.SIGWINCH, callback)
        self._observing = True

    def unobserve_resize(self) -> None:
        if self._observing and self._loop is not None:
            self._loop.remove_signal_handler(signal.SIGWINCH)
        self._observing = False

    def dispose(self) -> None:
        self.unobserve_resize()
        if self._reading and self._loop is not None:
            self._loop.remove_reader(self._stdin_fd)
        self._reading = False
        if self._saved_attrs is not None:
            termios.tcsetattr(self._stdin_fd, termios.TCSADRAIN, self._saved_attrs)
            self._saved_attrs = None

    def _on_stdin(self) -> None:
        try:
            data = os.read(self._stdin_fd, 1024)
        except BlockingIOError:
            return
        if not data:
            if self._loop is not None:
                self._loop.remove_reader(self._stdin_fd)
            self._reading = False
            return
        text = self._decoder.decode(data)
        if self._detach_char and self._detach_char in text:
            text, _, _ = text.partition(self._detach_char)
            if text and self._data_callback is not None:
                self._data_callback(text)
            if self._detach_callback is not None:
                self._detach_callback()
            return
        if text and self._data_callback is not None:
            self._data_callback(text)
