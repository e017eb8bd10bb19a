"""PTY backends — the OS boundary of a terminal session.

A backend spawns a process attached to a pseudo-terminal and hands back a
``PtyProcess``: the only object allowed to signal or reap that process.
``OsPtyBackend`` talks to the real OS; ``termhub.pty.fake`` provides a
deterministic stand-in for tests. Sessions receive one or the other by
injection.
"""

from __future__ import annotations

import asyncio
import contextlib
import errno
import fcntl
import logging
import os
import pty
import signal
import struct
import termios
from abc import ABC, abstractmethod
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DataCallback = Callable[[bytes], None]
ExitCallback = Callable[[Optional[int]], None]

# winsize fields are unsigned shorts.
MAX_WINSIZE = 0xFFFF


class SpawnError(Exception):
    """A process could not be started on a pseudo-terminal."""

    def __init__(self, message: str, shell: str | None = None) -> None:
        super().__init__(message)
        self.shell = shell


class PtyProcess(ABC):
    """Handle to one process running on a pseudo-terminal.

    Output and exit are delivered to a single owner registered with
    ``attach()``; fan-out to several listeners is the caller's business.
    """

    pid: int

    def __init__(self) -> None:
        self._on_data: DataCallback | None = None
        self._on_exit: ExitCallback | None = None
        self._attached = False

    @property
    @abstractmethod
    def returncode(self) -> int | None:
        """Exit status once the process is gone, else None."""

    def attach(self, on_data: DataCallback, on_exit: ExitCallback) -> Callable[[], None]:
        """Register the owner's callbacks and start delivery.

        Returns a disposal handle that detaches both callbacks. A process
        has exactly one owner: attaching twice raises RuntimeError.
        """
        if self._attached:
            raise RuntimeError(f"PTY process {self.pid} already has an owner")
        self._attached = True
        self._on_data = on_data
        self._on_exit = on_exit
        self._start()

        def dispose() -> None:
            self._on_data = None
            self._on_exit = None

        return dispose

    def _emit_data(self, data: bytes) -> None:
        if self._on_data is not None:
            self._on_data(data)

    def _emit_exit(self, code: int | None) -> None:
        callback, self._on_exit = self._on_exit, None
        if callback is not None:
            callback(code)

    @abstractmethod
    def _start(self) -> None:
        """Begin reading output and watching for exit."""

    @abstractmethod
    def write(self, data: bytes) -> None:
        """Queue bytes for the process's terminal input."""

    @abstractmethod
    def resize(self, cols: int, rows: int) -> None:
        """Change the terminal window size."""

    @abstractmethod
    async def kill(self) -> None:
        """Terminate the process and release the terminal. Idempotent."""


class PtyBackend(ABC):
    """Factory for PTY processes."""

    @abstractmethod
    async def spawn(
        self,
        argv: list[str],
        cwd: str,
        env: dict[str, str],
        cols: int,
        rows: int,
    ) -> PtyProcess:
        """Start ``argv`` on a new pseudo-terminal. Raises SpawnError."""


def set_winsize(fd: int, cols: int, rows: int) -> None:
    """Send TIOCSWINSZ to resize the PTY."""
    winsize = struct.pack("HHHH", rows, cols, 0, 0)
    fcntl.ioctl(fd, termios.TIOCSWINSZ, winsize)


def _acquire_controlling_tty() -> None:
    # Runs in the child after setsid(): make the pty slave (stdin) the
    # controlling terminal so job control and SIGWINCH work.
    with contextlib.suppress(OSError):
        fcntl.ioctl(0, termios.TIOCSCTTY, 0)


class OsPtyProcess(PtyProcess):
    """A real child process on a real pseudo-terminal.

    The master fd is non-blocking and serviced from the event loop:
    ``add_reader`` delivers one data callback per ``os.read`` chunk, and
    writes that do not fit in the pty input buffer are queued and flushed
    with ``add_writer`` in order.
    """

    def __init__(
        self,
        proc: asyncio.subprocess.Process,
        master_fd: int,
        read_chunk_size: int = 4096,
        drain_timeout: float = 0.5,
        kill_grace: float = 2.0,
    ) -> None:
        super().__init__()
        self._proc = proc
        self.pid = proc.pid
        self._fd = master_fd
        self._read_chunk_size = read_chunk_size
        self._drain_timeout = drain_timeout
        self._kill_grace = kill_grace
        self._loop = asyncio.get_running_loop()
        self._reading = False
        self._writing = False
        self._pending = bytearray()
        self._eof = asyncio.Event()
        self._watch_task: asyncio.Task | None = None
        self._fd_closed = False

    @property
    def returncode(self) -> int | None:
        return self._proc.returncode

    def _start(self) -> None:
        self._loop.add_reader(self._fd, self._on_readable)
        self._reading = True
        self._watch_task = self._loop.create_task(self._watch())

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def _on_readable(self) -> None:
        try:
            data = os.read(self._fd, self._read_chunk_size)
        except BlockingIOError:
            return
        except OSError as e:
            # Linux reports EIO on the master once the slave side is gone.
            if e.errno != errno.EIO:
                logger.debug("PTY %d read failed: %s", self.pid, e)
            data = b""

        if not data:
            self._stop_reading()
            return
        self._emit_data(data)

    def _stop_reading(self) -> None:
        if self._reading:
            self._loop.remove_reader(self._fd)
            self._reading = False
        self._eof.set()

    async def _watch(self) -> None:
        code = await self._proc.wait()
        # Deliver whatever the shell printed before dying, unless a
        # grandchild keeps the slave open.
        try:
            await asyncio.wait_for(self._eof.wait(), timeout=self._drain_timeout)
        except asyncio.TimeoutError:
            logger.debug("PTY %d still open after exit, not draining further", self.pid)
        self._release()
        logger.debug("PTY process %d exited with %s", self.pid, code)
        self._emit_exit(code)

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    def write(self, data: bytes) -> None:
        if self._fd_closed or not data:
            return
        if self._pending:
            self._pending.extend(data)
            return
        try:
            written = os.write(self._fd, data)
        except BlockingIOError:
            written = 0
        if written < len(data):
            self._pending.extend(data[written:])
            self._loop.add_writer(self._fd, self._on_writable)
            self._writing = True

    def _on_writable(self) -> None:
        try:
            written = os.write(self._fd, self._pending)
        except BlockingIOError:
            return
        except OSError as e:
            logger.debug("PTY %d write failed, dropping %d bytes: %s", self.pid, len(self._pending), e)
            written = len(self._pending)
        del self._pending[:written]
        if not self._pending:
            self._stop_writing()

    def _stop_writing(self) -> None:
        if self._writing:
            self._loop.remove_writer(self._fd)
            self._writing = False

    def resize(self, cols: int, rows: int) -> None:
        if not self._fd_closed:
            set_winsize(self._fd, cols, rows)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def _signal(self, sig: int) -> None:
        # The shell leads its own process group (start_new_session).
        try:
            os.killpg(self.pid, sig)
        except ProcessLookupError:
            logger.debug("Process group already gone: %d", self.pid)
        except PermissionError:
            with contextlib.suppress(ProcessLookupError):
                os.kill(self.pid, sig)

    async def kill(self) -> None:
        if self._proc.returncode is None:
            self._signal(signal.SIGHUP)
            try:
                await asyncio.wait_for(self._proc.wait(), timeout=self._kill_grace)
            except asyncio.TimeoutError:
                logger.info("PTY process %d ignored SIGHUP, sending SIGKILL", self.pid)
                self._signal(signal.SIGKILL)
                await self._proc.wait()

        if self._watch_task is not None:
            await self._watch_task
        else:
            self._release()

    def _release(self) -> None:
        self._stop_reading()
        self._stop_writing()
        self._pending.clear()
        if not self._fd_closed:
            self._fd_closed = True
            with contextlib.suppress(OSError):
                os.close(self._fd)


class OsPtyBackend(PtyBackend):
    """Spawns processes on real pseudo-terminals (POSIX only)."""

    def __init__(
        self,
        read_chunk_size: int = 4096,
        drain_timeout: float = 0.5,
        kill_grace: float = 2.0,
    ) -> None:
        self._read_chunk_size = read_chunk_size
        self._drain_timeout = drain_timeout
        self._kill_grace = kill_grace

    async def spawn(
        self,
        argv: list[str],
        cwd: str,
        env: dict[str, str],
        cols: int,
        rows: int,
    ) -> PtyProcess:
        try:
            master_fd, slave_fd = pty.openpty()
        except OSError as e:
            raise SpawnError(f"Cannot allocate a pseudo-terminal: {e}", shell=argv[0]) from e

        try:
            set_winsize(master_fd, cols, rows)
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                cwd=cwd,
                env=env,
                start_new_session=True,
                preexec_fn=_acquire_controlling_tty,
            )
        except (OSError, ValueError) as e:
            os.close(master_fd)
            raise SpawnError(f"Cannot start {argv[0]}: {e}", shell=argv[0]) from e
        finally:
            # Parent always closes the slave; the child holds its own copy.
            os.close(slave_fd)

        os.set_blocking(master_fd, False)
        logger.info("Spawned %s on pty: pid=%d cwd=%s", argv[0], proc.pid, cwd)
        return OsPtyProcess(
            proc,
            master_fd,
            read_chunk_size=self._read_chunk_size,
            drain_timeout=self._drain_timeout,
            kill_grace=self._kill_grace,
        )
