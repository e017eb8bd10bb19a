"""Session registry — the single owner of the id -> PtySession map."""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any, Callable

from termhub.config import TerminalConfig
from termhub.pty.backend import PtyBackend, SpawnError
from termhub.pty.environment import ShellEnvironmentResolver
from termhub.pty.session import PtySession
from termhub.session.wire import TerminalEvent

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Manages the lifecycle of every PTY session.

    All mutations happen on the event loop that owns the registry, so the
    map needs no locking. The registry guarantees:
    - ids come from a per-registry counter and are never reused, even
      after the session they named is closed
    - at most one session per id
    - ``create`` returns an id before the shell is up; environment
      capture and spawn run in a separate task
    - every session is killed on ``shutdown`` (no orphan processes)
    """

    def __init__(
        self,
        backend: PtyBackend,
        resolver: ShellEnvironmentResolver,
        on_event: Callable[[TerminalEvent], None],
        config: TerminalConfig | None = None,
        presets: dict[str, str] | None = None,
    ) -> None:
        self._backend = backend
        self._resolver = resolver
        self._on_event = on_event
        self._config = config or TerminalConfig()
        self._presets = presets
        self._sessions: dict[int, PtySession] = {}
        self._starting: dict[int, asyncio.Task[None]] = {}
        self._ids = itertools.count(1)
        self._shut_down = False

    def create(self, shell_hint: str | None = None, cwd_hint: str | None = None) -> int:
        """Allocate a session and start it in the background.

        Returns the new id immediately. Callers learn about a failed spawn
        through the session's exit event (or ``wait_started``).
        """
        if self._shut_down:
            raise RuntimeError("SessionRegistry has been shut down")

        loop = asyncio.get_running_loop()
        session_id = next(self._ids)
        session = PtySession(
            session_id,
            self._backend,
            on_event=self._on_event,
            config=self._config,
            presets=self._presets,
        )
        self._sessions[session_id] = session

        task = loop.create_task(self._start(session, shell_hint, cwd_hint))
        self._starting[session_id] = task
        task.add_done_callback(lambda _t: self._starting.pop(session_id, None))

        logger.info(
            "Creating PTY session %d (shell=%s, cwd=%s)",
            session_id,
            shell_hint or "default",
            cwd_hint or "default",
        )
        return session_id

    async def _start(
        self, session: PtySession, shell_hint: str | None, cwd_hint: str | None
    ) -> None:
        try:
            environment = await self._resolver.resolve()
            await session.start(shell_hint, cwd_hint, environment)
        except SpawnError as e:
            # Already recorded on the session and announced as an exit event.
            logger.debug("PTY session %d left CLOSED after spawn failure: %s", session.id, e)
        except Exception:
            logger.exception("Unexpected error starting PTY session %d", session.id)
            await session.kill(reason="startup error")

    def get(self, session_id: int) -> PtySession | None:
        """Get a session by id; None for unknown or removed ids."""
        return self._sessions.get(session_id)

    async def wait_started(self, session_id: int) -> PtySession | None:
        """Wait until the session's spawn attempt has finished."""
        task = self._starting.get(session_id)
        if task is not None:
            # Shielded: a caller giving up must not abort the spawn.
            await asyncio.shield(task)
        return self._sessions.get(session_id)

    def write(self, session_id: int, data: bytes) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            logger.debug("Dropping write to unknown PTY session %s", session_id)
            return False
        return session.write(data)

    def resize(self, session_id: int, cols: int, rows: int) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            logger.debug("Dropping resize of unknown PTY session %s", session_id)
            return False
        return session.resize(cols, rows)

    async def close(self, session_id: int) -> None:
        """Kill a session and remove it from tracking. Idempotent."""
        session = self._sessions.get(session_id)
        if session is None:
            logger.debug("PTY session %s already closed", session_id)
            return

        task = self._starting.get(session_id)
        if task is not None:
            await asyncio.shield(task)

        await session.kill()
        # A concurrent close may have removed it while we awaited.
        if self._sessions.get(session_id) is session:
            del self._sessions[session_id]
            logger.info("PTY session %d removed", session_id)

    def list_sessions(self) -> list[dict[str, Any]]:
        """List all tracked sessions."""
        return [s.info() for s in self._sessions.values()]

    async def shutdown(self) -> None:
        """Kill all sessions. Called on shutdown."""
        self._shut_down = True
        for session_id in list(self._sessions):
            try:
                await self.close(session_id)
            except Exception:
                logger.exception("Error closing PTY session %d during shutdown", session_id)
        logger.info("All PTY sessions cleaned up")

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions
