"""PTY process management — interactive shells on pseudo-terminals.

Every terminal a consumer opens is a ``PtySession`` owned by a
``SessionRegistry``. Sessions get their environment from a
``ShellEnvironmentResolver`` and their process from an injected
``PtyBackend`` (the real OS one, or the fake used in tests).
"""

from termhub.pty.backend import OsPtyBackend, PtyBackend, PtyProcess, SpawnError
from termhub.pty.environment import ShellEnvironmentResolver
from termhub.pty.fake import FakePtyBackend, FakePtyProcess
from termhub.pty.registry import SessionRegistry
from termhub.pty.session import PtySession, SessionState

__all__ = [
    "FakePtyBackend",
    "FakePtyProcess",
    "OsPtyBackend",
    "PtyBackend",
    "PtyProcess",
    "PtySession",
    "SessionRegistry",
    "SessionState",
    "ShellEnvironmentResolver",
    "SpawnError",
]
