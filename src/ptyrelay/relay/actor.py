"""Terminal Session Actor.

One actor per network session. It owns at most one PtyProcessHandle and
runs as a single asyncio task that selects over two sources: its mailbox
of inbound session messages, and the handle's event stream. Everything
destined for the peer is put on the actor's outbox, which always ends
with exactly one Exited message.

State machine::

    JOINING --join ok--> ACTIVE --exit / close / write failure--> TERMINATING --> CLOSED
    JOINING --join failed--> CLOSED
"""

from __future__ import annotations

import asyncio
import enum
import logging

from ptyrelay.domain.models import Exited, InboundMessage, Input, Output, Resize, Session, Viewport
from ptyrelay.pty.launcher import LaunchError, PtyError, PtyLauncher, PtyProcessHandle, WriteError
from ptyrelay.resolver.base import ResolutionError
from ptyrelay.resolver.command import CommandResolver

logger = logging.getLogger(__name__)

DEFAULT_TERMINATE_GRACE = 3.0
DEFAULT_KILL_GRACE = 1.0


class SessionState(str, enum.Enum):
    """Lifecycle states of a terminal session actor."""

    JOINING = "joining"
    ACTIVE = "active"
    TERMINATING = "terminating"
    CLOSED = "closed"


class JoinError(Exception):
    """Raised when a session cannot be started.

    The reason is suitable for showing to the peer; the underlying
    ResolutionError or LaunchError is chained as __cause__.
    """

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class _Close:
    """Mailbox sentinel: the peer went away."""


_CLOSE = _Close()


class TerminalSessionActor:
    """Relays one network session to one PTY-backed process."""

    def __init__(
        self,
        target: str,
        resolver: CommandResolver,
        launcher: PtyLauncher,
        terminate_grace: float = DEFAULT_TERMINATE_GRACE,
        kill_grace: float = DEFAULT_KILL_GRACE,
    ) -> None:
        self._target = target
        self._resolver = resolver
        self._launcher = launcher
        self._terminate_grace = terminate_grace
        self._kill_grace = kill_grace
        self._state = SessionState.JOINING
        self._session: Session | None = None
        self._handle: PtyProcessHandle | None = None
        self._mailbox: asyncio.Queue[InboundMessage | _Close] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None
        self._exit_reason: str | None = None
        self.outbox: asyncio.Queue[Output | Exited] = asyncio.Queue()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def handle(self) -> PtyProcessHandle | None:
        return self._handle

    async def join(self, viewport: Viewport) -> Session:
        """Resolve the target and launch it on a PTY sized to viewport.

        On success the actor is ACTIVE and its task is running.

        Raises:
            JoinError: If resolution or launch fails; the actor is CLOSED
                and no process is left behind.
        """
        if self._state is not SessionState.JOINING:
            raise JoinError(f"session is {self._state.value}")
        try:
            spec = await self._resolver.resolve(self._target)
            handle = await self._launcher.launch(spec, viewport)
        except (ResolutionError, LaunchError) as e:
            self._state = SessionState.CLOSED
            logger.error("Failed to start terminal for %s: %s", self._target, e)
            raise JoinError(f"Failed to start terminal: {e}") from e
        except Exception as e:
            self._state = SessionState.CLOSED
            logger.exception("Unexpected error starting terminal for %s", self._target)
            raise JoinError(f"Failed to start terminal: {e}") from e

        self._handle = handle
        self._session = Session.for_target(self._target, viewport)
        self._state = SessionState.ACTIVE
        self._task = asyncio.create_task(self._run(), name=f"session-actor:{self._session.key}")
        logger.info(
            "Session %s active (pid=%d, %dx%d)",
            self._session.key, handle.pid, viewport.cols, viewport.rows,
        )
        return self._session

    def post(self, message: InboundMessage) -> bool:
        """Queue an Input or Resize for the actor. Ignored unless ACTIVE."""
        if self._state is not SessionState.ACTIVE:
            return False
        self._mailbox.put_nowait(message)
        return True

    async def close(self) -> None:
        """Close the session, making sure the child process is gone.

        Waits for the terminate/kill sequence, which is bounded by the
        grace periods. Closing a CLOSED actor is a no-op.
        """
        if self._state is SessionState.CLOSED:
            return
        if self._task is None:
            self._state = SessionState.CLOSED
            return
        if self._state is SessionState.ACTIVE:
            self._mailbox.put_nowait(_CLOSE)
        await asyncio.wait({self._task})

    async def wait_closed(self) -> None:
        if self._task is not None:
            await asyncio.wait({self._task})

    # -- actor task ----------------------------------------------------------

    async def _run(self) -> None:
        assert self._handle is not None
        handle = self._handle
        loop = asyncio.get_running_loop()
        inbound = asyncio.ensure_future(self._mailbox.get())
        event = asyncio.ensure_future(handle.next_event())
        deadline: float | None = None
        killed = False
        exited: Exited | None = None

        try:
            while True:
                timeout = None if deadline is None else max(0.0, deadline - loop.time())
                done, _ = await asyncio.wait(
                    {inbound, event}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
                )

                if not done:
                    if not killed:
                        logger.warning(
                            "Process %d ignored termination for %.1fs, killing",
                            handle.pid, self._terminate_grace,
                        )
                        handle.kill()
                        killed = True
                        deadline = loop.time() + self._kill_grace
                        continue
                    logger.error("Process %d did not confirm exit, releasing anyway", handle.pid)
                    break

                if event in done:
                    try:
                        notification = event.result()
                    except Exception as e:
                        logger.warning("Event stream for pid %d failed: %s", handle.pid, e)
                        exited = Exited(reason="unknown")
                        break
                    if isinstance(notification, Exited):
                        exited = notification
                        break
                    self.outbox.put_nowait(notification)
                    event = asyncio.ensure_future(handle.next_event())

                if inbound in done:
                    message = inbound.result()
                    inbound = asyncio.ensure_future(self._mailbox.get())
                    if self._state is not SessionState.ACTIVE:
                        continue
                    if isinstance(message, _Close):
                        self._begin_termination("closed by peer")
                    elif isinstance(message, Input):
                        await self._write(message)
                    elif isinstance(message, Resize):
                        self._resize(message)
                    if self._state is SessionState.TERMINATING and deadline is None:
                        deadline = loop.time() + self._terminate_grace
        except Exception:
            logger.exception("Session actor for %s crashed", self._target)
            self._exit_reason = self._exit_reason or "internal error"
        finally:
            inbound.cancel()
            event.cancel()
            self._finish(exited)

    async def _write(self, message: Input) -> None:
        assert self._handle is not None
        try:
            await self._handle.write(message.data)
        except WriteError as e:
            logger.warning("Input to pid %d failed: %s", self._handle.pid, e)
            self._begin_termination(f"input write failed: {e}")

    def _resize(self, message: Resize) -> None:
        assert self._handle is not None and self._session is not None
        try:
            viewport = self._handle.resize(message.cols, message.rows)
        except PtyError as e:
            logger.warning("Resize to %dx%d rejected: %s", message.cols, message.rows, e)
            return
        self._session.viewport = viewport
        logger.debug("Session %s resized to %dx%d", self._session.key, viewport.cols, viewport.rows)

    def _begin_termination(self, reason: str) -> None:
        assert self._handle is not None
        self._state = SessionState.TERMINATING
        self._exit_reason = reason
        self._handle.terminate()

    def _finish(self, exited: Exited | None) -> None:
        handle = self._handle
        self._state = SessionState.TERMINATING
        if handle is not None:
            handle.release()

        if exited is None:
            exited = Exited(reason=self._exit_reason or "terminated")
        elif self._exit_reason is not None:
            exited = exited.model_copy(update={"reason": f"{self._exit_reason} ({exited.reason})"})
        self.outbox.put_nowait(exited)

        self._handle = None
        self._state = SessionState.CLOSED
        key = self._session.key if self._session else self._target
        logger.info("Session %s closed: %s", key, exited.reason)
