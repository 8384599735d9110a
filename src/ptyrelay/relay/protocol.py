"""Wire protocol between the relay and its clients.

Every WebSocket text frame is a JSON envelope::

    {"event": "<name>", "payload": {...}}

Client -> server: join, input, resize.
Server -> client: join_reply, output, exit.
"""

from __future__ import annotations

import codecs
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from ptyrelay.domain.models import Exited, Input, Output, Resize


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


class SizePayload(BaseModel):
    cols: int
    rows: int


class JoinPayload(BaseModel):
    """Initial terminal size; the server's configured default fills in omitted fields."""

    cols: int | None = None
    rows: int | None = None


class DataPayload(BaseModel):
    data: str = Field(description="Terminal bytes as text")


class JoinReplyPayload(BaseModel):
    status: Literal["ok", "error"]
    reason: str | None = None


class ReasonPayload(BaseModel):
    reason: str


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


class JoinMessage(BaseModel):
    event: Literal["join"] = "join"
    payload: JoinPayload = Field(default_factory=JoinPayload)


class InputMessage(BaseModel):
    event: Literal["input"] = "input"
    payload: DataPayload


class ResizeMessage(BaseModel):
    event: Literal["resize"] = "resize"
    payload: SizePayload


class JoinReplyMessage(BaseModel):
    event: Literal["join_reply"] = "join_reply"
    payload: JoinReplyPayload


class OutputMessage(BaseModel):
    event: Literal["output"] = "output"
    payload: DataPayload


class ExitMessage(BaseModel):
    event: Literal["exit"] = "exit"
    payload: ReasonPayload


ClientMessage = Annotated[
    Union[JoinMessage, InputMessage, ResizeMessage],
    Field(discriminator="event"),
]

ServerMessage = Annotated[
    Union[JoinReplyMessage, OutputMessage, ExitMessage],
    Field(discriminator="event"),
]

_client_adapter: TypeAdapter[JoinMessage | InputMessage | ResizeMessage] = TypeAdapter(ClientMessage)
_server_adapter: TypeAdapter[JoinReplyMessage | OutputMessage | ExitMessage] = TypeAdapter(ServerMessage)


def parse_client_message(raw: str | bytes) -> JoinMessage | InputMessage | ResizeMessage:
    """Parse a client frame. Raises pydantic.ValidationError if malformed."""
    return _client_adapter.validate_json(raw)


def parse_server_message(raw: str | bytes) -> JoinReplyMessage | OutputMessage | ExitMessage:
    """Parse a server frame. Raises pydantic.ValidationError if malformed."""
    return _server_adapter.validate_json(raw)


def to_inbound(message: InputMessage | ResizeMessage) -> Input | Resize:
    """Convert a client envelope into an actor mailbox message."""
    if isinstance(message, InputMessage):
        return Input(data=message.payload.data.encode("utf-8"))
    return Resize(cols=message.payload.cols, rows=message.payload.rows)


def join_ok() -> JoinReplyMessage:
    return JoinReplyMessage(payload=JoinReplyPayload(status="ok"))


def join_error(reason: str) -> JoinReplyMessage:
    return JoinReplyMessage(payload=JoinReplyPayload(status="error", reason=reason))


class OutputEncoder:
    """Turns actor outbox items into server envelopes for one connection.

    PTY output is an opaque byte stream that may split a multi-byte
    UTF-8 character across reads. The incremental decoder holds such a
    tail back until the rest arrives, so the peer never sees a torn
    character. Undecodable bytes become U+FFFD.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def encode(self, item: Output | Exited) -> list[OutputMessage | ExitMessage]:
        if isinstance(item, Output):
            text = self._decoder.decode(item.data)
            return [OutputMessage(payload=DataPayload(data=text))] if text else []

        messages: list[OutputMessage | ExitMessage] = []
        tail = self._decoder.decode(b"", final=True)
        if tail:
            messages.append(OutputMessage(payload=DataPayload(data=tail)))
        messages.append(ExitMessage(payload=ReasonPayload(reason=item.reason)))
        return messages
