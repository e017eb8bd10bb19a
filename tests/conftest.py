"""Shared fixtures: a registry wired to the fake backend and a queue consumer."""

from __future__ import annotations

import asyncio

import pytest

from termhub.commands import TerminalCommands
from termhub.pty.environment import ShellEnvironmentResolver
from termhub.pty.fake import FakePtyBackend
from termhub.pty.registry import SessionRegistry
from termhub.session.wire import EventBroadcaster, QueueConsumer, TerminalEvent

# A login shell that cannot exist makes capture fail instantly, so tests
# get the deterministic fallback environment without spawning anything.
MISSING_LOGIN_SHELL = "/nonexistent/termhub-login-shell"


async def settle(rounds: int = 5) -> None:
    """Let callbacks scheduled with call_soon run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def drain(consumer: QueueConsumer) -> list[TerminalEvent]:
    events: list[TerminalEvent] = []
    while not consumer.queue.empty():
        event = consumer.get_nowait()
        if event is not None:
            events.append(event)
    return events


@pytest.fixture
def resolver() -> ShellEnvironmentResolver:
    return ShellEnvironmentResolver(login_shell=MISSING_LOGIN_SHELL, timeout=1.0)


@pytest.fixture
def backend() -> FakePtyBackend:
    return FakePtyBackend()


@pytest.fixture
def broadcaster() -> EventBroadcaster:
    return EventBroadcaster()


@pytest.fixture
def consumer(broadcaster: EventBroadcaster) -> QueueConsumer:
    consumer = QueueConsumer()
    broadcaster.subscribe(consumer)
    return consumer


@pytest.fixture
def registry(
    backend: FakePtyBackend,
    resolver: ShellEnvironmentResolver,
    broadcaster: EventBroadcaster,
) -> SessionRegistry:
    return SessionRegistry(backend, resolver, on_event=broadcaster.publish)


@pytest.fixture
def commands(registry: SessionRegistry) -> TerminalCommands:
    return TerminalCommands(registry)
