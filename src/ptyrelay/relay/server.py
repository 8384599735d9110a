"""FastAPI server for the terminal relay.

Each WebSocket connection to /terminal/{target} is one terminal session
served by its own TerminalSessionActor:

    GET  /health              -> {"status": "ok", "targets": [...]}
    WS   /terminal/{target}   <- join, input, resize
                              -> join_reply, output, exit
"""

from __future__ import annotations

import asyncio
import logging

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field, ValidationError

from ptyrelay.config.settings import Settings
from ptyrelay.domain.models import Exited, Viewport
from ptyrelay.pty.launcher import PtyLauncher
from ptyrelay.relay.actor import JoinError, TerminalSessionActor
from ptyrelay.relay.protocol import (
    JoinMessage,
    OutputEncoder,
    join_error,
    join_ok,
    parse_client_message,
    to_inbound,
)
from ptyrelay.resolver.command import CommandResolver
from ptyrelay.resolver.orchestration import HttpOrchestrationState, OrchestrationState

logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    status: str = "ok"
    targets: list[str] = Field(default_factory=list)


def build_resolver(settings: Settings, orchestration: OrchestrationState | None = None) -> CommandResolver:
    """Create a CommandResolver from settings."""
    if orchestration is None and settings.orchestration.state_url:
        orchestration = HttpOrchestrationState(
            settings.orchestration.state_url, timeout=settings.orchestration.timeout
        )
    return CommandResolver(
        targets=settings.targets,
        orchestration=orchestration,
        query_timeout=settings.orchestration.timeout,
        term=settings.terminal.term,
    )


def build_launcher(settings: Settings) -> PtyLauncher:
    """Create a PtyLauncher from settings."""
    return PtyLauncher(
        term=settings.terminal.term,
        read_chunk_size=settings.terminal.read_chunk_size,
        write_timeout=settings.terminal.write_timeout,
    )


def create_app(
    settings: Settings | None = None,
    resolver: CommandResolver | None = None,
    launcher: PtyLauncher | None = None,
) -> FastAPI:
    """Create the relay application.

    Args:
        settings: Configuration; defaults are used if None.
        resolver: Optional pre-configured CommandResolver (for testing).
        launcher: Optional pre-configured PtyLauncher (for testing).
    """
    settings = settings or Settings()

    app = FastAPI(
        title="ptyrelay",
        description="Interactive terminal relay over WebSockets",
        version="0.1.0",
    )
    app.state.settings = settings
    app.state.resolver = resolver or build_resolver(settings)
    app.state.launcher = launcher or build_launcher(settings)

    @app.get("/health")
    async def health_check() -> HealthResponse:
        return HealthResponse(targets=app.state.resolver.target_names)

    @app.websocket("/terminal/{target}")
    async def terminal_socket(websocket: WebSocket, target: str) -> None:
        await websocket.accept()
        actor = TerminalSessionActor(
            target,
            resolver=app.state.resolver,
            launcher=app.state.launcher,
            terminate_grace=settings.terminal.terminate_grace,
            kill_grace=settings.terminal.kill_grace,
        )
        if not await _join(websocket, actor, settings):
            return
        try:
            await _relay(websocket, actor)
        finally:
            await actor.close()

    return app


async def _receive_frame(websocket: WebSocket) -> str | bytes:
    message = await websocket.receive()
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(message.get("code", 1000))
    text = message.get("text")
    return text if text is not None else message.get("bytes") or b""


async def _join(websocket: WebSocket, actor: TerminalSessionActor, settings: Settings) -> bool:
    """Handle the join handshake. Returns True when the session is active."""
    try:
        raw = await _receive_frame(websocket)
    except WebSocketDisconnect:
        return False

    try:
        message = parse_client_message(raw)
    except ValidationError:
        message = None
    if not isinstance(message, JoinMessage):
        await _reject(websocket, "expected a join message")
        return False

    cols = message.payload.cols if message.payload.cols is not None else settings.terminal.default_cols
    rows = message.payload.rows if message.payload.rows is not None else settings.terminal.default_rows
    try:
        viewport = Viewport(cols=cols, rows=rows)
    except ValidationError:
        await _reject(websocket, f"invalid terminal size {cols}x{rows}")
        return False

    try:
        await actor.join(viewport)
    except JoinError as e:
        await _reject(websocket, e.reason)
        return False

    await websocket.send_text(join_ok().model_dump_json())
    return True


async def _reject(websocket: WebSocket, reason: str) -> None:
    logger.info("Join rejected: %s", reason)
    try:
        await websocket.send_text(join_error(reason).model_dump_json())
        await websocket.close()
    except (RuntimeError, WebSocketDisconnect):
        pass


async def _relay(websocket: WebSocket, actor: TerminalSessionActor) -> None:
    """Pump both directions until the process exits or the peer leaves."""
    sender = asyncio.create_task(_forward_outbox(websocket, actor))
    receiver = asyncio.create_task(_forward_inbox(websocket, actor))
    try:
        done, _ = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        receiver.cancel()
        if not sender.done():
            # Peer is gone: stop the process before dropping the outbox
            await actor.close()
            sender.cancel()
        await asyncio.gather(sender, receiver, return_exceptions=True)

    if sender in done and sender.exception() is None:
        try:
            await websocket.close()
        except RuntimeError:
            logger.debug("WebSocket already closed")


async def _forward_outbox(websocket: WebSocket, actor: TerminalSessionActor) -> None:
    encoder = OutputEncoder()
    while True:
        item = await actor.outbox.get()
        for message in encoder.encode(item):
            await websocket.send_text(message.model_dump_json())
        if isinstance(item, Exited):
            return


async def _forward_inbox(websocket: WebSocket, actor: TerminalSessionActor) -> None:
    while True:
        try:
            raw = await _receive_frame(websocket)
        except WebSocketDisconnect:
            logger.info("Peer disconnected from %s", actor.session.key if actor.session else "session")
            return
        try:
            message = parse_client_message(raw)
        except ValidationError as e:
            logger.warning("Ignoring malformed client message: %s", e)
            continue
        if isinstance(message, JoinMessage):
            logger.warning("Ignoring join on an active session")
            continue
        actor.post(to_inbound(message))


def main() -> None:
    """Entry point for running the relay server standalone."""
    from ptyrelay.config.settings import load_settings
    from ptyrelay.utils.logging import setup_logging

    settings = load_settings()
    setup_logging(settings.logging)
    app = create_app(settings)
    uvicorn.run(app, host=settings.server.host, port=settings.server.port)


if __name__ == "__main__":
    main()
