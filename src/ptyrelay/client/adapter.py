"""Client Terminal Adapter.

Drives a TerminalSurface from a relay session: opens the session with
the surface's size, writes output to the surface verbatim, forwards
keystrokes and size changes, and tears everything down on deactivate.
Every abandoned adapter that is not deactivated keeps a session actor
and its child process alive on the server, so callers should always
pair activate() with deactivate().
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Protocol
from urllib.parse import quote

import websockets
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed, WebSocketException

from ptyrelay.client.surface import TerminalSurface
from ptyrelay.relay.protocol import (
    DataPayload,
    ExitMessage,
    InputMessage,
    JoinMessage,
    JoinPayload,
    JoinReplyMessage,
    OutputMessage,
    ResizeMessage,
    SizePayload,
    parse_server_message,
)

logger = logging.getLogger(__name__)


class Connection(Protocol):
    """The subset of a websockets client connection the adapter uses."""

    async def send(self, message: str) -> None: ...

    async def recv(self) -> str | bytes: ...

    async def close(self) -> None: ...


Connector = Callable[[str], Awaitable[Connection]]


async def websocket_connector(url: str) -> Connection:
    return await websockets.connect(url)


class TerminalClientAdapter:
    """Connects one TerminalSurface to one relay session at a time."""

    def __init__(
        self,
        base_url: str,
        target: str,
        surface: TerminalSurface,
        connector: Connector | None = None,
    ) -> None:
        self._url = f"{base_url.rstrip('/')}/terminal/{quote(target, safe='')}"
        self._target = target
        self._surface = surface
        self._connector = connector or websocket_connector
        self._conn: Connection | None = None
        self._joined = False
        self._active = False
        self._exit_reason: str | None = None
        self._outgoing: asyncio.Queue[str] = asyncio.Queue()
        self._writer: asyncio.Task[None] | None = None

    @property
    def url(self) -> str:
        return self._url

    @property
    def joined(self) -> bool:
        return self._joined

    @property
    def exit_reason(self) -> str | None:
        return self._exit_reason

    async def activate(self) -> bool:
        """Open the surface and join a session. Returns True once joined."""
        if not self._active:
            self._surface.open()
            self._surface.on_data(self._on_input)
            self._surface.observe_resize(self._on_resize)
            self._active = True
            self._surface.writeln(f"\x1b[1;33mptyrelay\x1b[0m connecting to: \x1b[1;36m{self._target}\x1b[0m")
            self._surface.writeln()
        return await self._connect()

    async def run(self) -> str | None:
        """Render server messages until the session ends.

        Returns the exit reason, or None if the adapter never joined.
        """
        if self._conn is None or not self._joined:
            return self._exit_reason
        while True:
            try:
                raw = await self._conn.recv()
            except ConnectionClosed:
                if self._joined:
                    self._show_exit("connection closed")
                break
            try:
                message = parse_server_message(raw)
            except ValidationError as e:
                logger.warning("Ignoring malformed server message: %s", e)
                continue
            if isinstance(message, OutputMessage):
                self._surface.write(message.payload.data)
            elif isinstance(message, ExitMessage):
                self._show_exit(message.payload.reason)
                break
        return self._exit_reason

    async def reconnect(self) -> bool:
        """Drop the current session and join a new one on the same surface."""
        await self._disconnect()
        return await self._connect()

    async def deactivate(self) -> None:
        """Close the session, detach observers and release the surface."""
        await self._disconnect()
        if self._active:
            self._surface.unobserve_resize()
            self._surface.dispose()
            self._active = False

    async def flush(self) -> None:
        """Wait until queued input and resize messages have been sent."""
        if self._writer is not None and not self._writer.done():
            await self._outgoing.join()

    def send_resize(self) -> None:
        if not self._joined:
            return
        size = self._surface.size()
        self._enqueue(ResizeMessage(payload=SizePayload(cols=size.cols, rows=size.rows)).model_dump_json())

    def send_input(self, data: str) -> None:
        if not self._joined:
            return
        self._enqueue(InputMessage(payload=DataPayload(data=data)).model_dump_json())

    # -- internals -----------------------------------------------------------

    async def _connect(self) -> bool:
        self._exit_reason = None
        try:
            self._conn = await self._connector(self._url)
        except (OSError, WebSocketException) as e:
            self._show_failure(str(e))
            return False

        size = self._surface.size()
        try:
            await self._conn.send(JoinMessage(payload=JoinPayload(cols=size.cols, rows=size.rows)).model_dump_json())
            reply = parse_server_message(await self._conn.recv())
        except (ConnectionClosed, ValidationError) as e:
            self._show_failure(f"no join reply ({e})")
            await self._close_connection()
            return False

        if not isinstance(reply, JoinReplyMessage) or reply.payload.status != "ok":
            reason = reply.payload.reason if isinstance(reply, JoinReplyMessage) else "unexpected reply"
            self._show_failure(reason or "unknown error")
            await self._close_connection()
            return False

        self._joined = True
        self._writer = asyncio.create_task(self._write_loop())
        self._surface.writeln("\x1b[1;32m[Connected]\x1b[0m")
        self._surface.writeln()
        self.send_resize()
        logger.info("Joined %s", self._url)
        return True

    async def _disconnect(self) -> None:
        self._joined = False
        if self._writer is not None:
            self._writer.cancel()
            await asyncio.gather(self._writer, return_exceptions=True)
            self._writer = None
        while not self._outgoing.empty():
            self._outgoing.get_nowait()
            self._outgoing.task_done()
        await self._close_connection()

    async def _close_connection(self) -> None:
        if self._conn is not None:
            try:
                await self._conn.close()
            except (OSError, WebSocketException) as e:
                logger.debug("Error closing connection: %s", e)
            self._conn = None

    def _enqueue(self, frame: str) -> None:
        self._outgoing.put_nowait(frame)

    async def _write_loop(self) -> None:
        while True:
            frame = await self._outgoing.get()
            try:
                if self._conn is not None and self._joined:
                    await self._conn.send(frame)
            except ConnectionClosed:
                logger.debug("Connection closed while sending")
                self._joined = False
            finally:
                self._outgoing.task_done()

    def _on_input(self, data: str) -> None:
        self.send_input(data)

    def _on_resize(self) -> None:
        self.send_resize()

    def _show_exit(self, reason: str) -> None:
        self._joined = False
        self._exit_reason = reason
        self._surface.writeln()
        self._surface.writeln(f"\x1b[1;31m[Process exited: {reason}]\x1b[0m")
        self._surface.writeln("\x1b[90mReconnect to start a new session.\x1b[0m")

    def _show_failure(self, reason: str) -> None:
        self._joined = False
        self._surface.writeln(f"\x1b[1;31m[Connection failed: {reason}]\x1b[0m")
        self._surface.writeln("\x1b[90mCheck that the application is running and try again.\x1b[0m")
        logger.warning("Could not join %s: %s", self._url, reason)
