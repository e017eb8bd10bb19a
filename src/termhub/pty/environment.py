"""Login-shell environment capture.

Shells spawned from a desktop process inherit a stripped-down environment
(no PATH additions from ``.zprofile``, no locale). The resolver runs the
user's login shell once, non-interactively, to read the environment an
interactive session would see, and falls back to a curated PATH when the
capture fails.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import sys

from termhub.config import DEFAULT_FALLBACK_PATHS

logger = logging.getLogger(__name__)

DEFAULT_LOCALE = "en_US.UTF-8"

# Upper bound on reaping a capture shell after it was killed.
REAP_TIMEOUT = 1.0


def platform_login_shell() -> str:
    """Shell used for capture when neither config nor $SHELL names one."""
    return "/bin/zsh" if sys.platform == "darwin" else "/bin/sh"


def parse_env_output(text: str) -> dict[str, str]:
    """Parse ``env`` output into a mapping.

    Splits on the first ``=`` only, so values may contain ``=``. Lines
    without ``=`` (continuations of multi-line values) and lines whose key
    is empty or contains whitespace are skipped.
    """
    env: dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if not sep or not key or any(c.isspace() for c in key):
            continue
        env[key] = value
    return env


def merge_captured(
    ambient: dict[str, str],
    captured: dict[str, str],
    default_locale: str = DEFAULT_LOCALE,
) -> dict[str, str]:
    """Overlay a captured login environment on the ambient one."""
    merged = {**ambient, **captured}
    path = captured.get("PATH") or ambient.get("PATH")
    if path:
        merged["PATH"] = path
    merged["LANG"] = captured.get("LANG") or ambient.get("LANG") or default_locale
    return merged


def fallback_environment(
    ambient: dict[str, str],
    fallback_paths: list[str] | None = None,
    default_locale: str = DEFAULT_LOCALE,
) -> dict[str, str]:
    """Ambient environment with common install dirs ahead of its PATH."""
    paths = list(DEFAULT_FALLBACK_PATHS if fallback_paths is None else fallback_paths)
    if ambient.get("PATH"):
        paths.append(ambient["PATH"])
    env = dict(ambient)
    env["PATH"] = ":".join(p for p in paths if p)
    env["LANG"] = ambient.get("LANG") or default_locale
    return env


class ShellEnvironmentResolver:
    """Resolves (and optionally caches) the interactive-shell environment.

    ``resolve()`` never raises: a missing shell, a failing command or a
    capture that outlives ``timeout`` all degrade to the fallback
    environment. Each call returns a fresh dict, so callers may mutate it.
    """

    def __init__(
        self,
        login_shell: str | None = None,
        timeout: float = 5.0,
        fallback_paths: list[str] | None = None,
        default_locale: str = DEFAULT_LOCALE,
        cache: bool = True,
    ) -> None:
        self._login_shell = login_shell
        self._timeout = timeout
        self._fallback_paths = fallback_paths
        self._default_locale = default_locale
        self._cache_enabled = cache
        self._cached: dict[str, str] | None = None
        self._lock = asyncio.Lock()

    @property
    def login_shell(self) -> str:
        return self._login_shell or os.environ.get("SHELL") or platform_login_shell()

    async def resolve(self) -> dict[str, str]:
        """Return a copy of the resolved environment."""
        # Concurrent creates share one capture instead of spawning N shells.
        async with self._lock:
            if self._cached is not None:
                return dict(self._cached)
            env = await self._resolve_uncached()
            if self._cache_enabled:
                self._cached = env
            return dict(env)

    def invalidate(self) -> None:
        """Drop the cached snapshot; the next resolve() captures again."""
        self._cached = None

    async def _resolve_uncached(self) -> dict[str, str]:
        ambient = dict(os.environ)
        shell = self.login_shell
        try:
            captured = await self._capture(shell)
        except asyncio.TimeoutError:
            logger.warning(
                "Login shell %s did not print its environment within %.1fs, using fallback",
                shell,
                self._timeout,
            )
        except (OSError, RuntimeError) as e:
            logger.warning("Failed to capture environment from %s: %s", shell, e)
        else:
            logger.debug("Captured %d variables from login shell %s", len(captured), shell)
            return merge_captured(ambient, captured, self._default_locale)

        return fallback_environment(ambient, self._fallback_paths, self._default_locale)

    async def _capture(self, shell: str) -> dict[str, str]:
        proc = await asyncio.create_subprocess_exec(
            shell,
            "-l",
            "-c",
            "env",
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
            start_new_session=True,
        )
        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError:
            # The shell leads its own process group (start_new_session), so
            # this also takes down children still holding stdout open.
            with contextlib.suppress(ProcessLookupError, PermissionError):
                os.killpg(proc.pid, signal.SIGKILL)
            try:
                await asyncio.wait_for(proc.wait(), timeout=REAP_TIMEOUT)
            except asyncio.TimeoutError:
                logger.debug("Capture shell %d not reaped within %.1fs", proc.pid, REAP_TIMEOUT)
            raise

        if proc.returncode != 0:
            raise RuntimeError(f"exited with status {proc.returncode}")

        captured = parse_env_output(stdout.decode("utf-8", errors="replace"))
        if not captured:
            raise RuntimeError("printed no environment")
        return captured
