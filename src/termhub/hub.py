"""Terminal hub — builds and owns one instance of every core component."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from termhub.commands import TerminalCommands
from termhub.config import TermhubConfig
from termhub.pty.backend import OsPtyBackend, PtyBackend
from termhub.pty.environment import ShellEnvironmentResolver
from termhub.pty.registry import SessionRegistry
from termhub.session.wire import EventBroadcaster

logger = logging.getLogger(__name__)


@dataclass
class TerminalHub:
    """All components of the terminal core, constructed once at startup.

    Use as an async context manager, or call ``shutdown()`` explicitly, so
    no shell outlives the host process.
    """

    config: TermhubConfig
    resolver: ShellEnvironmentResolver
    backend: PtyBackend
    broadcaster: EventBroadcaster
    registry: SessionRegistry
    commands: TerminalCommands

    async def shutdown(self) -> None:
        await self.registry.shutdown()
        self.broadcaster.close()
        logger.info("Terminal hub shut down")

    async def __aenter__(self) -> TerminalHub:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()


def build_hub(
    config: TermhubConfig | None = None,
    backend: PtyBackend | None = None,
) -> TerminalHub:
    """Set up all components of the terminal core.

    This is synchronous setup, no async needed. Pass ``backend`` to swap
    the OS pseudo-terminals for another implementation (e.g. the fake one).
    """
    config = config or TermhubConfig()

    resolver = ShellEnvironmentResolver(
        login_shell=config.environment.login_shell,
        timeout=config.environment.timeout,
        fallback_paths=config.environment.fallback_paths,
        default_locale=config.environment.default_locale,
        cache=config.environment.cache,
    )

    if backend is None:
        backend = OsPtyBackend(
            read_chunk_size=config.terminal.read_chunk_size,
            drain_timeout=config.terminal.drain_timeout,
            kill_grace=config.terminal.kill_grace,
        )

    broadcaster = EventBroadcaster()
    registry = SessionRegistry(
        backend,
        resolver,
        on_event=broadcaster.publish,
        config=config.terminal,
        presets=config.shells,
    )

    return TerminalHub(
        config=config,
        resolver=resolver,
        backend=backend,
        broadcaster=broadcaster,
        registry=registry,
        commands=TerminalCommands(registry),
    )
