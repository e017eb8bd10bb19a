"""PTY session — one shell process on one pseudo-terminal."""

from __future__ import annotations

import enum
import logging
import time
from typing import Any, Callable

from termhub.config import TerminalConfig
from termhub.pty.backend import MAX_WINSIZE, PtyBackend, PtyProcess, SpawnError
from termhub.pty.shell import resolve_working_directory, shell_candidates
from termhub.session.wire import TerminalEvent

logger = logging.getLogger(__name__)


class SessionState(enum.Enum):
    """Lifecycle states for a PTY session."""

    STARTING = "starting"
    RUNNING = "running"
    EXITED = "exited"  # Process exited on its own
    CLOSED = "closed"  # Closed by us, or never started

    @property
    def terminal(self) -> bool:
        return self in (SessionState.EXITED, SessionState.CLOSED)


class PtySession:
    """A managed pseudo-terminal session.

    Owns exactly one ``PtyProcess`` and turns its output and exit into
    ``TerminalEvent``s for ``on_event``. The state only moves forward:

        STARTING -> RUNNING -> EXITED
        STARTING -> CLOSED            (spawn failed, or closed early)
        RUNNING  -> CLOSED            (kill)

    ``write`` and ``resize`` are forwarded only while RUNNING and are
    no-ops otherwise. Exactly one exit event is emitted per session.
    """

    def __init__(
        self,
        session_id: int,
        backend: PtyBackend,
        on_event: Callable[[TerminalEvent], None],
        config: TerminalConfig | None = None,
        presets: dict[str, str] | None = None,
    ) -> None:
        self.id = session_id
        self.created_at = time.time()
        self.shell_path = ""
        self.working_directory = ""
        self.exit_code: int | None = None
        self.close_reason: str | None = None
        self.spawn_error: SpawnError | None = None

        self._backend = backend
        self._on_event = on_event
        self._config = config or TerminalConfig()
        self._presets = presets
        self._state = SessionState.STARTING
        self._process: PtyProcess | None = None
        self._detach: Callable[[], None] | None = None
        self._exit_sent = False
        self._spawning = False

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def alive(self) -> bool:
        return self._state == SessionState.RUNNING

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    async def start(
        self,
        shell_hint: str | None,
        cwd_hint: str | None,
        environment: dict[str, str],
    ) -> None:
        """Resolve shell and working directory, then spawn.

        Walks the shell fallback chain until one spawns. If none does, the
        session ends CLOSED with ``spawn_error`` set, an exit event carrying
        the reason is emitted, and SpawnError is raised.
        """
        if self._state == SessionState.CLOSED:
            self._send_exit(None, self.close_reason)
            return
        if self._state != SessionState.STARTING:
            raise RuntimeError(f"PTY session {self.id} already started")

        cwd = resolve_working_directory(cwd_hint)
        env = dict(environment)
        env["TERM"] = self._config.term
        env["COLORTERM"] = "truecolor"

        candidates = shell_candidates(
            shell_hint, env, self._config.default_shell, self._presets
        )
        self._spawning = True
        try:
            process, last_error = await self._spawn_first(candidates, cwd, env)
        finally:
            self._spawning = False

        if process is None:
            error = last_error or SpawnError("No usable shell found", shell=shell_hint)
            self._fail(error)
            raise error

        self.working_directory = cwd
        self._process = process

        if self._state == SessionState.CLOSED:
            # close() arrived while we were spawning.
            logger.info("PTY session %d closed during startup, killing pid=%d", self.id, process.pid)
            await process.kill()
            self._send_exit(process.returncode, self.close_reason)
            return

        self._state = SessionState.RUNNING
        self._detach = process.attach(self._handle_data, self._handle_exit)
        logger.info(
            "PTY session %d started: pid=%d shell=%s cwd=%s",
            self.id,
            process.pid,
            self.shell_path,
            self.working_directory,
        )

    async def _spawn_first(
        self, candidates: list[str], cwd: str, env: dict[str, str]
    ) -> tuple[PtyProcess | None, SpawnError | None]:
        last_error: SpawnError | None = None
        for shell in candidates:
            try:
                process = await self._backend.spawn(
                    [shell, *self._config.shell_args],
                    cwd,
                    env,
                    self._config.cols,
                    self._config.rows,
                )
            except SpawnError as e:
                logger.warning("PTY session %d: %s", self.id, e)
                last_error = e
                continue
            self.shell_path = shell
            return process, None
        return None, last_error

    def _fail(self, error: SpawnError) -> None:
        self.spawn_error = error
        self.close_reason = f"spawn failed: {error}"
        self._state = SessionState.CLOSED
        logger.error("PTY session %d could not start: %s", self.id, error)
        self._send_exit(None, self.close_reason)

    # ------------------------------------------------------------------
    # Events from the process
    # ------------------------------------------------------------------

    def _handle_data(self, data: bytes) -> None:
        if self._exit_sent:
            return
        self._emit(TerminalEvent.output(self.id, data))

    def _handle_exit(self, code: int | None) -> None:
        self.exit_code = code
        if self._state == SessionState.RUNNING:
            self._state = SessionState.EXITED
            logger.info("PTY session %d exited (code=%s)", self.id, code)
        self._send_exit(code, self.close_reason)

    def _send_exit(self, code: int | None, reason: str | None) -> None:
        if self._exit_sent:
            return
        self._exit_sent = True
        self._emit(TerminalEvent.exited(self.id, exit_code=code, reason=reason))
        if self._detach is not None:
            self._detach()
            self._detach = None

    def _emit(self, event: TerminalEvent) -> None:
        try:
            self._on_event(event)
        except Exception:
            logger.exception("Error publishing %s event for session %d", event.type.value, self.id)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def write(self, data: bytes) -> bool:
        """Forward input to the terminal. Returns False when not RUNNING."""
        if self._state != SessionState.RUNNING or self._process is None:
            logger.debug("Ignoring write to PTY session %d in state %s", self.id, self._state.value)
            return False
        try:
            self._process.write(data)
        except OSError as e:
            logger.warning("Write to PTY session %d failed: %s", self.id, e)
            return False
        return True

    def resize(self, cols: int, rows: int) -> bool:
        """Resize the terminal. Returns False when not RUNNING."""
        if self._state != SessionState.RUNNING or self._process is None:
            logger.debug("Ignoring resize of PTY session %d in state %s", self.id, self._state.value)
            return False
        if not (0 < cols <= MAX_WINSIZE and 0 < rows <= MAX_WINSIZE):
            logger.debug("Ignoring out-of-range size %dx%d for PTY session %d", cols, rows, self.id)
            return False
        try:
            self._process.resize(cols, rows)
        except OSError as e:
            logger.warning("Resize of PTY session %d failed: %s", self.id, e)
            return False
        return True

    async def kill(self, reason: str = "closed") -> None:
        """Terminate the process and move to CLOSED. No-op once terminal."""
        if self._state.terminal:
            return

        was_starting = self._state == SessionState.STARTING
        self._state = SessionState.CLOSED
        self.close_reason = reason
        if was_starting and self._spawning:
            # start() sees CLOSED once the spawn returns and disposes of the process.
            return
        if self._process is None:
            self._send_exit(None, reason)
            return

        await self._process.kill()
        self.exit_code = self._process.returncode
        self._send_exit(self.exit_code, reason)
        logger.info("Killed PTY session %d (pid=%d)", self.id, self._process.pid)

    def info(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "pid": self.pid,
            "shell": self.shell_path,
            "cwd": self.working_directory,
            "state": self._state.value,
            "alive": self.alive,
            "created_at": self.created_at,
            "exit_code": self.exit_code,
        }

    def __repr__(self) -> str:
        return f"PtySession(id={self.id}, state={self._state.value}, shell={self.shell_path!r})"
