"""Shell and working-directory resolution.

Both resolve leniently: a bad working directory becomes the home
directory, and a shell that cannot be found is replaced by the next entry
of a fallback chain that ends at the platform default.
"""

from __future__ import annotations

import logging
import os
import shutil
import sys
from pathlib import Path

logger = logging.getLogger(__name__)

SHELL_PRESETS: dict[str, str] = {
    "bash": "/bin/bash",
    "zsh": "/bin/zsh",
    "fish": "/usr/local/bin/fish",
}


def _is_executable(path: str) -> bool:
    return os.path.isfile(path) and os.access(path, os.X_OK)


def platform_shells() -> list[str]:
    """Platform default shells, most preferred first."""
    if sys.platform == "win32":
        return ["cmd.exe"]
    return ["/bin/bash", "/bin/sh"]


def resolve_working_directory(hint: str | None) -> str:
    """Return a concrete, existing directory for ``hint``.

    ``~`` is expanded and symlinks are resolved. Anything that is not an
    existing directory is replaced by the home directory.
    """
    if hint:
        candidate = os.path.realpath(os.path.expanduser(hint))
        if os.path.isdir(candidate):
            return candidate
        logger.warning("Working directory %s does not exist, using home directory", hint)

    home = str(Path.home())
    if os.path.isdir(home):
        return os.path.realpath(home)
    logger.warning("Home directory %s is unusable, using /", home)
    return os.path.abspath(os.sep)


def resolve_shell(
    hint: str | None,
    search_path: str | None = None,
    presets: dict[str, str] | None = None,
) -> str | None:
    """Map a shell hint to an executable path, or None if it cannot be found.

    Accepts preset names (``bash``, ``zsh``, ``fish``), absolute paths and
    bare command names looked up on ``search_path``.
    """
    if not hint:
        return None
    hint = hint.strip()
    table = {**SHELL_PRESETS, **(presets or {})}
    if hint in table:
        hint = table[hint]

    expanded = os.path.expanduser(hint)
    if os.path.isabs(expanded):
        return expanded if _is_executable(expanded) else None
    return shutil.which(expanded, path=search_path)


def default_shell(environment: dict[str, str] | None = None) -> str:
    """$SHELL when it is usable, else the first available platform shell."""
    env = os.environ if environment is None else environment
    login = env.get("SHELL")
    if login and _is_executable(login):
        return login
    shells = platform_shells()
    for shell in shells:
        if _is_executable(shell):
            return shell
    return shells[-1]


def shell_candidates(
    hint: str | None,
    environment: dict[str, str],
    configured_default: str | None = None,
    presets: dict[str, str] | None = None,
) -> list[str]:
    """Ordered, de-duplicated list of shells to try for a new session."""
    search_path = environment.get("PATH")
    chain: list[str] = []

    requested = resolve_shell(hint, search_path, presets)
    if hint and requested is None:
        logger.warning("Shell %s not found, falling back to the default shell", hint)
    if requested:
        chain.append(requested)

    configured = resolve_shell(configured_default, search_path, presets)
    if configured:
        chain.append(configured)

    login = environment.get("SHELL")
    if login and _is_executable(login):
        chain.append(login)

    chain.extend(s for s in platform_shells() if sys.platform == "win32" or _is_executable(s))
    if not chain:
        chain.append(default_shell(environment))

    return list(dict.fromkeys(chain))
