"""PTY Process Launcher.

Allocates a pseudo-terminal pair, spawns a resolved command attached to
its subordinate side, and exposes the running child as a PtyProcessHandle.

The handle reports what the child does as a stream of events: any
number of Output chunks followed by exactly one Exited. Output is read
from the master side by an event loop reader callback; the exit status
is collected by a reaper thread, and whatever output is still buffered
in the PTY is drained before Exited is queued.
"""

from __future__ import annotations

import asyncio
import errno
import fcntl
import logging
import os
import signal
import struct
import termios
import threading

from ptyrelay.domain.models import MAX_DIMENSION, CommandSpec, Exited, Output, Viewport
from ptyrelay.resolver.base import is_executable

logger = logging.getLogger(__name__)

DEFAULT_TERM = "xterm-256color"
DEFAULT_READ_CHUNK = 4096
DEFAULT_WRITE_TIMEOUT = 5.0


class PtyError(Exception):
    """Base class for PTY launcher and handle failures."""


class LaunchError(PtyError):
    """Raised when a PTY cannot be allocated or the command cannot be executed."""


class WriteError(PtyError):
    """Raised when input cannot be fully written to the PTY."""


class PipeClosed(WriteError):
    """Raised when the PTY is gone while writing."""


class ProcessNotRunning(PtyError):
    """Raised for operations that need a live process."""


class ResizeRejected(PtyError):
    """Raised when a window size is invalid or refused by the PTY."""


def _pack_winsize(viewport: Viewport) -> bytes:
    return struct.pack("HHHH", viewport.rows, viewport.cols, 0, 0)


def checked_viewport(cols: int, rows: int) -> Viewport:
    """Validate a requested size; zero, negative and oversized values are rejected."""
    if not (0 < cols <= MAX_DIMENSION and 0 < rows <= MAX_DIMENSION):
        raise ResizeRejected(f"invalid terminal size {cols}x{rows}")
    return Viewport(cols=cols, rows=rows)


def describe_exit(status: int | None) -> Exited:
    """Turn a raw waitpid status into an Exited event."""
    if status is None:
        return Exited(reason="exit status unavailable")
    code = os.waitstatus_to_exitcode(status)
    if code < 0:
        try:
            name = signal.Signals(-code).name
        except ValueError:
            name = f"signal {-code}"
        return Exited(reason=f"killed by {name}", signal=name)
    return Exited(reason=f"exited with status {code}", exit_code=code)


class PtyProcessHandle:
    """A running child process attached to a PTY.

    Owned by exactly one session actor. Must be created from inside a
    running event loop; all methods are meant to be called from that loop.
    """

    def __init__(
        self,
        pid: int,
        master_fd: int,
        pty_name: str,
        viewport: Viewport,
        read_chunk_size: int = DEFAULT_READ_CHUNK,
        write_timeout: float = DEFAULT_WRITE_TIMEOUT,
    ) -> None:
        self._pid = pid
        self._master_fd: int | None = master_fd
        self._pty_name = pty_name
        self._viewport = viewport
        self._read_chunk_size = read_chunk_size
        self._write_timeout = write_timeout
        self._loop = asyncio.get_running_loop()
        self._events: asyncio.Queue[Output | Exited] = asyncio.Queue()
        self._exit_future: asyncio.Future[Exited] = self._loop.create_future()
        self._exited: Exited | None = None
        self._reading = False

    @property
    def pid(self) -> int:
        return self._pid

    @property
    def pty_name(self) -> str:
        return self._pty_name

    @property
    def viewport(self) -> Viewport:
        return self._viewport

    @property
    def is_alive(self) -> bool:
        return self._exited is None

    @property
    def exit_info(self) -> Exited | None:
        return self._exited

    def start(self) -> None:
        """Begin watching the PTY for output and the child for exit."""
        if self._master_fd is None:
            raise ProcessNotRunning("PTY has been released")
        self._loop.add_reader(self._master_fd, self._on_readable)
        self._reading = True
        threading.Thread(
            target=self._wait_for_exit, daemon=True, name=f"pty-reaper-{self._pid}"
        ).start()

    async def next_event(self) -> Output | Exited:
        """Wait for the next Output chunk or the final Exited event."""
        return await self._events.get()

    async def wait(self) -> Exited:
        """Wait until the child has exited and been reaped."""
        return await asyncio.shield(self._exit_future)

    async def write(self, data: bytes) -> None:
        """Write all of data to the child's terminal input.

        Waits at most write_timeout seconds in total for the PTY input
        buffer to drain when it is full.

        Raises:
            PipeClosed: If the process or PTY is gone.
            WriteError: If the data could not be written in time.
        """
        if not self.is_alive or self._master_fd is None:
            raise PipeClosed("process is not running")
        view = memoryview(data)
        deadline = self._loop.time() + self._write_timeout
        while view:
            try:
                written = os.write(self._master_fd, view)
            except BlockingIOError:
                remaining = deadline - self._loop.time()
                if remaining <= 0 or not await self._wait_writable(remaining):
                    raise WriteError(
                        f"partial write: {len(data) - len(view)} of {len(data)} bytes accepted"
                    )
                continue
            except OSError as e:
                raise PipeClosed(f"failed to write to PTY: {e}") from e
            view = view[written:]

    def resize(self, cols: int, rows: int) -> Viewport:
        """Set the PTY window size; the kernel signals SIGWINCH to the child.

        Raises:
            ProcessNotRunning: If the child has exited.
            ResizeRejected: If the size is invalid or the ioctl fails.
        """
        if not self.is_alive or self._master_fd is None:
            raise ProcessNotRunning("process is not running")
        viewport = checked_viewport(cols, rows)
        try:
            fcntl.ioctl(self._master_fd, termios.TIOCSWINSZ, _pack_winsize(viewport))
        except OSError as e:
            raise ResizeRejected(f"failed to resize PTY: {e}") from e
        self._viewport = viewport
        return viewport

    def get_size(self) -> Viewport:
        """Query the window size currently set on the PTY."""
        if self._master_fd is None:
            raise ProcessNotRunning("PTY has been released")
        packed = fcntl.ioctl(self._master_fd, termios.TIOCGWINSZ, b"\x00" * 8)
        rows, cols, _, _ = struct.unpack("HHHH", packed)
        return Viewport(cols=cols, rows=rows)

    def terminate(self) -> None:
        """Ask the child's process group to exit (SIGHUP, then SIGTERM).

        Interactive shells ignore SIGTERM, so the hangup a real terminal
        would deliver is sent first. No-op once the child has exited.
        """
        if not self.is_alive:
            return
        self._signal_group(signal.SIGHUP)
        self._signal_group(signal.SIGTERM)
        logger.debug("Sent SIGHUP/SIGTERM to pid %d", self._pid)

    def kill(self) -> None:
        """Forcefully kill the child's process group."""
        if not self.is_alive:
            return
        self._signal_group(signal.SIGKILL)
        logger.debug("Sent SIGKILL to pid %d", self._pid)

    def release(self) -> None:
        """Stop reading and close the PTY master. Safe to call repeatedly.

        A child still running at this point is killed.
        """
        if self.is_alive:
            self.kill()
        self._stop_reading()
        if self._master_fd is not None:
            try:
                os.close(self._master_fd)
            except OSError:
                pass
            self._master_fd = None
            logger.debug("Released PTY %s", self._pty_name)

    # -- internals ---------------------------------------------------------

    def _signal_group(self, sig: signal.Signals) -> None:
        try:
            os.killpg(self._pid, sig)
        except ProcessLookupError:
            pass
        except PermissionError:
            # The child may not lead its own group if setsid() failed
            try:
                os.kill(self._pid, sig)
            except ProcessLookupError:
                pass

    def _on_readable(self) -> None:
        if self._master_fd is None:
            return
        try:
            data = os.read(self._master_fd, self._read_chunk_size)
        except BlockingIOError:
            return
        except OSError:
            # EIO: every subordinate fd is closed
            self._stop_reading()
            return
        if not data:
            self._stop_reading()
            return
        self._events.put_nowait(Output(data=data))

    def _drain(self) -> None:
        while self._master_fd is not None:
            try:
                data = os.read(self._master_fd, self._read_chunk_size)
            except OSError:
                return
            if not data:
                return
            self._events.put_nowait(Output(data=data))

    def _stop_reading(self) -> None:
        if self._reading and self._master_fd is not None:
            self._loop.remove_reader(self._master_fd)
        self._reading = False

    def _wait_for_exit(self) -> None:
        # Runs in the reaper thread
        try:
            _, status = os.waitpid(self._pid, 0)
        except ChildProcessError:
            status = None
        try:
            self._loop.call_soon_threadsafe(self._on_exit, status)
        except RuntimeError:
            # Event loop already closed
            pass

    def _on_exit(self, status: int | None) -> None:
        self._drain()
        self._stop_reading()
        self._exited = describe_exit(status)
        logger.info("Process %d %s", self._pid, self._exited.reason)
        self._events.put_nowait(self._exited)
        if not self._exit_future.done():
            self._exit_future.set_result(self._exited)

    async def _wait_writable(self, timeout: float) -> bool:
        assert self._master_fd is not None
        ready = self._loop.create_future()
        fd = self._master_fd
        self._loop.add_writer(fd, lambda: ready.done() or ready.set_result(None))
        try:
            await asyncio.wait_for(ready, timeout)
            return True
        except asyncio.TimeoutError:
            return False
        finally:
            self._loop.remove_writer(fd)


class PtyLauncher:
    """Spawns CommandSpecs on fresh pseudo-terminals.

    Failures are raised as LaunchError and never retried here.
    """

    def __init__(
        self,
        term: str = DEFAULT_TERM,
        read_chunk_size: int = DEFAULT_READ_CHUNK,
        write_timeout: float = DEFAULT_WRITE_TIMEOUT,
    ) -> None:
        self._term = term
        self._read_chunk_size = read_chunk_size
        self._write_timeout = write_timeout

    def build_env(self, spec: CommandSpec, viewport: Viewport) -> dict[str, str]:
        """Child environment: ours, overlaid by the spec, plus size variables."""
        env = dict(os.environ)
        env.update(spec.env)
        env["TERM"] = spec.env.get("TERM", self._term)
        env["COLUMNS"] = str(viewport.cols)
        env["LINES"] = str(viewport.rows)
        return env

    async def launch(self, spec: CommandSpec, viewport: Viewport) -> PtyProcessHandle:
        """Spawn spec on a new PTY sized to viewport.

        Raises:
            LaunchError: If the executable is unusable, the PTY cannot be
                allocated, or exec fails in the child.
        """
        if not is_executable(spec.executable):
            raise LaunchError(f"{spec.executable} is not an executable file")
        try:
            checked_viewport(viewport.cols, viewport.rows)
        except ResizeRejected as e:
            raise LaunchError(str(e)) from e
        env = self.build_env(spec, viewport)
        loop = asyncio.get_running_loop()

        try:
            master_fd, slave_fd = os.openpty()
        except OSError as e:
            raise LaunchError(f"PTY allocation failed: {e}") from e

        try:
            # Size the terminal before the child can look at it
            fcntl.ioctl(slave_fd, termios.TIOCSWINSZ, _pack_winsize(viewport))
            pty_name = os.ttyname(slave_fd)
            status_r, status_w = os.pipe()
        except BaseException as e:
            os.close(master_fd)
            os.close(slave_fd)
            if isinstance(e, OSError):
                raise LaunchError(f"PTY setup failed: {e}") from e
            raise

        try:
            pid = os.fork()
        except OSError as e:
            for fd in (master_fd, slave_fd, status_r, status_w):
                os.close(fd)
            raise LaunchError(f"fork failed: {e}") from e

        if pid == 0:
            _exec_child(spec, env, slave_fd, status_w)

        os.close(slave_fd)
        os.close(status_w)
        try:
            # The executor thread owns status_r and closes it
            exec_errno = await loop.run_in_executor(None, _read_exec_status, status_r)
            if exec_errno is not None:
                await loop.run_in_executor(None, _reap_quietly, pid)
                raise LaunchError(f"failed to execute {spec.executable}: {os.strerror(exec_errno)}")
            os.set_blocking(master_fd, False)
            handle = PtyProcessHandle(
                pid=pid,
                master_fd=master_fd,
                pty_name=pty_name,
                viewport=viewport,
                read_chunk_size=self._read_chunk_size,
                write_timeout=self._write_timeout,
            )
        except LaunchError:
            os.close(master_fd)
            raise
        except BaseException:
            # Cancelled with the child possibly running
            logger.warning("Launch of %s aborted, killing pid %d", spec.executable, pid)
            _kill_quietly(pid)
            _reap_quietly(pid)
            os.close(master_fd)
            raise

        handle.start()
        logger.info(
            "Started %s (pid=%d, %s, %dx%d)",
            spec.executable, pid, pty_name, viewport.cols, viewport.rows,
        )
        return handle


def _exec_child(spec: CommandSpec, env: dict[str, str], slave_fd: int, status_w: int) -> None:
    """Runs in the forked child; never returns."""
    code = errno.EINVAL
    try:
        os.setsid()
        fcntl.ioctl(slave_fd, termios.TIOCSCTTY, 0)
        os.dup2(slave_fd, 0)
        os.dup2(slave_fd, 1)
        os.dup2(slave_fd, 2)
        if slave_fd > 2:
            os.close(slave_fd)
        # Python ignores SIGPIPE; ignored dispositions survive exec
        try:
            signal.signal(signal.SIGPIPE, signal.SIG_DFL)
        except ValueError:
            pass
        os.execve(str(spec.executable), spec.argv, env)
    except OSError as e:
        code = e.errno or errno.EINVAL
    finally:
        # Only reached if exec did not replace the process image
        try:
            os.write(status_w, str(code).encode())
        finally:
            os._exit(127)


def _read_exec_status(fd: int) -> int | None:
    """Read the child's exec errno and close fd.

    EOF without data means exec succeeded.
    """
    chunks = []
    try:
        while True:
            chunk = os.read(fd, 64)
            if not chunk:
                break
            chunks.append(chunk)
    finally:
        os.close(fd)
    if not chunks:
        return None
    try:
        return int(b"".join(chunks))
    except ValueError:
        return errno.EINVAL


def _kill_quietly(pid: int) -> None:
    # The child may not have called setsid() yet
    for kill in (os.killpg, os.kill):
        try:
            kill(pid, signal.SIGKILL)
        except OSError:
            pass


def _reap_quietly(pid: int) -> None:
    try:
        os.waitpid(pid, 0)
    except ChildProcessError:
        pass
