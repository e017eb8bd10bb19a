"""Command façade — the messaging layer's only way into the terminal core.

Request/response channels map onto ``TerminalCommands`` methods. Arguments
arriving through ``dispatch`` are validated with Pydantic models before
anything touches the registry.

Only ``create`` reports failure: ``write``, ``resize`` and ``close`` on a
session that no longer exists are silent no-ops, because a consumer can
always race a shell that exits on its own.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, ClassVar, Union

from pydantic import BaseModel, Field, ValidationError

from termhub.pty.backend import MAX_WINSIZE
from termhub.pty.registry import SessionRegistry
from termhub.pty.session import SessionState

logger = logging.getLogger(__name__)

CREATE_CHANNEL = "terminal-create"
WRITE_CHANNEL = "terminal-write"
RESIZE_CHANNEL = "terminal-resize"
CLOSE_CHANNEL = "terminal-close"
LIST_CHANNEL = "terminal-list"
EXEC_CMD_LINES_CHANNEL = "exec-cmd-lines-in-terminal"


class InvalidCommand(ValueError):
    """Unknown channel or arguments that fail validation."""


@dataclass
class CreateOk:
    """The session is running (or already ran) its shell."""

    session_id: int
    shell: str = ""
    cwd: str = ""
    ok: ClassVar[bool] = True

    def to_dict(self) -> dict[str, Any]:
        return {"sessionId": self.session_id, "shell": self.shell, "cwd": self.cwd}


@dataclass
class CreateFailed:
    """No shell could be started; the id is dead and already closed."""

    session_id: int
    reason: str
    ok: ClassVar[bool] = False

    @property
    def message(self) -> str:
        return f"Terminal unavailable: {self.reason}"

    def to_dict(self) -> dict[str, Any]:
        return {"sessionId": self.session_id, "error": self.message}


CreateResult = Union[CreateOk, CreateFailed]


class CreateParams(BaseModel):
    shell: str | None = Field(default=None, description="Shell path or preset name.")
    cwd: str | None = Field(default=None, description="Working directory.")
    auto_start_command: str | None = Field(
        default=None, description="Command typed into the shell once it is up."
    )


class WriteParams(BaseModel):
    session_id: int
    data: bytes | str


class ResizeParams(BaseModel):
    session_id: int
    cols: int = Field(gt=0, le=MAX_WINSIZE)
    rows: int = Field(gt=0, le=MAX_WINSIZE)


class CloseParams(BaseModel):
    session_id: int


class ExecCmdLinesParams(BaseModel):
    cmd_lines: list[str]
    cwd: str | None = None


def _as_bytes(data: bytes | str) -> bytes:
    return data.encode("utf-8") if isinstance(data, str) else data


class TerminalCommands:
    """The four terminal operations plus the extras the UI relies on."""

    def __init__(self, registry: SessionRegistry) -> None:
        self._registry = registry
        self._handlers: dict[str, tuple[type[BaseModel], Callable[[Any], Awaitable[Any]]]] = {
            CREATE_CHANNEL: (CreateParams, self._handle_create),
            WRITE_CHANNEL: (WriteParams, self._handle_write),
            RESIZE_CHANNEL: (ResizeParams, self._handle_resize),
            CLOSE_CHANNEL: (CloseParams, self._handle_close),
            EXEC_CMD_LINES_CHANNEL: (ExecCmdLinesParams, self._handle_exec),
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def create(
        self,
        shell: str | None = None,
        cwd: str | None = None,
        auto_start_command: str | None = None,
    ) -> CreateResult:
        """Open a new terminal session.

        The id is allocated up front (consumers may subscribe to it right
        away); this call then waits for the spawn outcome so a hard
        failure can be reported instead of a silently blank terminal.
        """
        session_id = self._registry.create(shell, cwd)
        session = await self._registry.wait_started(session_id)

        # EXITED still counts as created: the shell ran and its exit event is out.
        if session is None or session.state == SessionState.CLOSED:
            if session is None:
                reason = "session vanished"
            elif session.spawn_error is not None:
                reason = str(session.spawn_error)
            else:
                reason = f"closed during startup ({session.close_reason or 'closed'})"
            logger.error("Terminal %d unavailable: %s", session_id, reason)
            await self._registry.close(session_id)
            return CreateFailed(session_id=session_id, reason=reason)

        if auto_start_command and auto_start_command.strip():
            self._registry.write(session_id, _as_bytes(auto_start_command.strip() + "\n"))

        return CreateOk(
            session_id=session_id,
            shell=session.shell_path,
            cwd=session.working_directory,
        )

    def write(self, session_id: int, data: bytes | str) -> None:
        if self._registry.get(session_id) is None:
            logger.debug("write: no terminal %s", session_id)
            return
        self._registry.write(session_id, _as_bytes(data))

    def resize(self, session_id: int, cols: int, rows: int) -> None:
        if self._registry.get(session_id) is None:
            logger.debug("resize: no terminal %s", session_id)
            return
        self._registry.resize(session_id, cols, rows)

    async def close(self, session_id: int) -> None:
        if self._registry.get(session_id) is None:
            logger.debug("close: no terminal %s", session_id)
            return
        await self._registry.close(session_id)

    async def exec_cmd_lines(
        self, cmd_lines: list[str], cwd: str | None = None
    ) -> CreateResult:
        """Open a fresh terminal and type each line into it."""
        result = await self.create(cwd=cwd)
        if isinstance(result, CreateOk):
            session = self._registry.get(result.session_id)
            if session is not None and session.state == SessionState.RUNNING:
                for line in cmd_lines:
                    self._registry.write(result.session_id, _as_bytes(line + "\n"))
        return result

    def list_sessions(self) -> list[dict[str, Any]]:
        return self._registry.list_sessions()

    async def dispatch(self, channel: str, arguments: dict[str, Any] | None = None) -> Any:
        """Route one request from the messaging layer.

        Returns the channel's response payload (a dict for create/exec, a
        list for listing, None for fire-and-forget channels).
        """
        if channel == LIST_CHANNEL:
            return self.list_sessions()

        entry = self._handlers.get(channel)
        if entry is None:
            raise InvalidCommand(
                f"Unknown channel: {channel}. Available channels: "
                f"{', '.join([*self._handlers, LIST_CHANNEL])}"
            )

        param_model, handler = entry
        try:
            params = param_model.model_validate(arguments or {})
        except ValidationError as e:
            raise InvalidCommand(f"Invalid parameters for {channel}: {e}") from e
        return await handler(params)

    # ------------------------------------------------------------------
    # Channel handlers
    # ------------------------------------------------------------------

    async def _handle_create(self, params: CreateParams) -> dict[str, Any]:
        result = await self.create(params.shell, params.cwd, params.auto_start_command)
        return result.to_dict()

    async def _handle_write(self, params: WriteParams) -> None:
        self.write(params.session_id, params.data)

    async def _handle_resize(self, params: ResizeParams) -> None:
        self.resize(params.session_id, params.cols, params.rows)

    async def _handle_close(self, params: CloseParams) -> None:
        await self.close(params.session_id)

    async def _handle_exec(self, params: ExecCmdLinesParams) -> dict[str, Any]:
        result = await self.exec_cmd_lines(params.cmd_lines, params.cwd)
        return result.to_dict()
