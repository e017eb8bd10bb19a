"""In-memory PTY backend with deterministic behaviour, for tests and demos."""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Container, Iterator
from dataclasses import dataclass, field

from termhub.pty.backend import PtyBackend, PtyProcess, SpawnError


class FakePtyProcess(PtyProcess):
    """A scripted stand-in for a shell on a pseudo-terminal.

    With ``echo`` enabled, written bytes come back as output on the next
    loop iteration, the way a tty in cooked mode echoes keystrokes.
    ``feed()`` and ``exit()`` let tests drive output and termination.
    """

    def __init__(
        self,
        argv: list[str],
        cwd: str,
        env: dict[str, str],
        cols: int,
        rows: int,
        echo: bool = True,
        pid: int = 90_000,
    ) -> None:
        super().__init__()
        self.pid = pid
        self.argv = argv
        self.cwd = cwd
        self.env = env
        self.size = (cols, rows)
        self.echo = echo
        self.written: list[bytes] = []
        self.resizes: list[tuple[int, int]] = []
        self.killed = False
        self._returncode: int | None = None

    @property
    def returncode(self) -> int | None:
        return self._returncode

    @property
    def input(self) -> bytes:
        """Everything written to the terminal so far."""
        return b"".join(self.written)

    def _start(self) -> None:
        pass

    def write(self, data: bytes) -> None:
        if self._returncode is not None:
            return
        self.written.append(data)
        if self.echo:
            asyncio.get_running_loop().call_soon(self.feed, data)

    def resize(self, cols: int, rows: int) -> None:
        self.size = (cols, rows)
        self.resizes.append((cols, rows))

    def feed(self, data: bytes) -> None:
        """Emit ``data`` as terminal output."""
        if self._returncode is None:
            self._emit_data(data)

    def exit(self, code: int = 0) -> None:
        """Simulate the process terminating on its own."""
        if self._returncode is not None:
            return
        self._returncode = code
        self._emit_exit(code)

    async def kill(self) -> None:
        if self._returncode is None:
            self.killed = True
            self.exit(-9)


@dataclass
class FakePtyBackend(PtyBackend):
    """Backend producing ``FakePtyProcess`` instances.

    ``failing`` lists shell paths whose spawn raises SpawnError;
    ``fail_all`` makes every spawn fail.
    """

    failing: Container[str] = field(default_factory=set)
    fail_all: bool = False
    echo: bool = True
    spawned: list[FakePtyProcess] = field(default_factory=list)
    attempts: list[str] = field(default_factory=list)
    pids: Iterator[int] = field(default_factory=lambda: itertools.count(90_000), repr=False)

    async def spawn(
        self,
        argv: list[str],
        cwd: str,
        env: dict[str, str],
        cols: int,
        rows: int,
    ) -> PtyProcess:
        self.attempts.append(argv[0])
        if self.fail_all or argv[0] in self.failing:
            raise SpawnError(f"Cannot start {argv[0]}: simulated failure", shell=argv[0])
        process = FakePtyProcess(argv, cwd, env, cols, rows, echo=self.echo, pid=next(self.pids))
        self.spawned.append(process)
        return process
