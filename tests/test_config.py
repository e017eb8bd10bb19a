"""Tests for termhub.config."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from termhub.config import DEFAULT_FALLBACK_PATHS, TerminalConfig, TermhubConfig

_ENV_VARS = (
    "TERMHUB_SHELL",
    "TERMHUB_LOGIN_SHELL",
    "TERMHUB_ENV_TIMEOUT",
    "TERMHUB_TERM",
    "TERMHUB_ENV_CACHE",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestDefaults:
    def test_defaults(self) -> None:
        config = TermhubConfig()
        assert config.terminal.default_shell is None
        assert (config.terminal.cols, config.terminal.rows) == (80, 24)
        assert config.terminal.term == "xterm-256color"
        assert config.environment.fallback_paths == DEFAULT_FALLBACK_PATHS
        assert config.environment.cache is True
        assert config.shells == {}

    def test_fallback_paths_not_shared(self) -> None:
        a, b = TermhubConfig(), TermhubConfig()
        a.environment.fallback_paths.append("/extra")
        assert "/extra" not in b.environment.fallback_paths

    def test_rejects_zero_size(self) -> None:
        with pytest.raises(ValidationError):
            TerminalConfig(cols=0)

    def test_rejects_size_beyond_winsize(self) -> None:
        with pytest.raises(ValidationError):
            TerminalConfig(rows=65_536)


class TestLoad:
    def test_load_without_file(self) -> None:
        config = TermhubConfig.load(None)
        assert config.terminal.term == "xterm-256color"

    def test_missing_file_ignored(self, tmp_path: Path) -> None:
        config = TermhubConfig.load(str(tmp_path / "absent.json"))
        assert config.environment.timeout == 5.0

    def test_load_json(self, tmp_path: Path) -> None:
        path = tmp_path / "termhub.json"
        path.write_text(
            json.dumps(
                {
                    "terminal": {"default_shell": "/bin/sh", "cols": 100},
                    "environment": {"timeout": 2.5},
                    "shells": {"nu": "/usr/bin/nu"},
                }
            )
        )
        config = TermhubConfig.load(str(path))
        assert config.terminal.default_shell == "/bin/sh"
        assert config.terminal.cols == 100
        assert config.environment.timeout == 2.5
        assert config.shells == {"nu": "/usr/bin/nu"}

    def test_env_overrides_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = tmp_path / "termhub.json"
        path.write_text(json.dumps({"terminal": {"default_shell": "/bin/bash"}}))
        monkeypatch.setenv("TERMHUB_SHELL", "/bin/sh")
        monkeypatch.setenv("TERMHUB_TERM", "screen-256color")
        monkeypatch.setenv("TERMHUB_LOGIN_SHELL", "/bin/zsh")
        monkeypatch.setenv("TERMHUB_ENV_TIMEOUT", "1.5")
        config = TermhubConfig.load(str(path))
        assert config.terminal.default_shell == "/bin/sh"
        assert config.terminal.term == "screen-256color"
        assert config.environment.login_shell == "/bin/zsh"
        assert config.environment.timeout == 1.5

    @pytest.mark.parametrize("value", ["0", "false", "No", "off"])
    def test_env_cache_disabled(self, monkeypatch: pytest.MonkeyPatch, value: str) -> None:
        monkeypatch.setenv("TERMHUB_ENV_CACHE", value)
        assert TermhubConfig.load().environment.cache is False

    def test_env_cache_enabled(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TERMHUB_ENV_CACHE", "1")
        assert TermhubConfig.load().environment.cache is True

    def test_invalid_timeout(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TERMHUB_ENV_TIMEOUT", "-1")
        with pytest.raises(ValidationError):
            TermhubConfig.load()
