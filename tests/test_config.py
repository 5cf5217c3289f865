"""Tests for shellrelay.config."""

from __future__ import annotations

import json
import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from shellrelay.config import (
    ConnectionConfig,
    RelayConfig,
    ShellRelayConfig,
    TerminalConfig,
)

_ENV_VARS = (
    "SHELLRELAY_TERM",
    "SHELLRELAY_FILTER_INPUT",
    "SHELLRELAY_FILTER_OUTPUT",
    "SHELLRELAY_POLL_INTERVAL",
    "SHELLRELAY_READ_SIZE",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # Keep a stray .env in the working tree out of the picture
    monkeypatch.chdir(tmp_path)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class TestModels:
    def test_terminal_defaults(self) -> None:
        config = TerminalConfig()
        assert config.term_type == "xterm"
        assert (config.default_columns, config.default_rows) == (80, 24)

    def test_relay_defaults(self) -> None:
        config = RelayConfig()
        assert config.filter_input is True
        assert config.filter_output is True
        assert config.read_size == 8192
        assert config.poll_interval == 0.1
        assert config.interrupt_bytes == [0x03, 0x04]

    def test_relay_rejects_bad_values(self) -> None:
        with pytest.raises(ValidationError):
            RelayConfig(read_size=0)
        with pytest.raises(ValidationError):
            RelayConfig(poll_interval=-1)

    def test_connection_defaults(self) -> None:
        config = ConnectionConfig(host="example.com", username="alice")
        assert config.port == 22
        assert config.password is None
        assert config.allow_unknown_hosts is False

    def test_connection_hides_secrets_in_repr(self) -> None:
        config = ConnectionConfig(host="h", username="u", password="hunter2")
        assert "hunter2" not in repr(config)

    def test_connection_port_range(self) -> None:
        with pytest.raises(ValidationError):
            ConnectionConfig(host="h", username="u", port=70000)


# ---------------------------------------------------------------------------
# ShellRelayConfig.load
# ---------------------------------------------------------------------------


class TestLoad:
    def test_defaults(self) -> None:
        config = ShellRelayConfig.load()
        assert config.terminal.term_type == "xterm"
        assert config.relay.filter_output is True

    def test_missing_file_uses_defaults(self, tmp_path: Path) -> None:
        config = ShellRelayConfig.load(str(tmp_path / "nope.json"))
        assert config.relay.read_size == 8192

    def test_from_file(self, tmp_path: Path) -> None:
        path = tmp_path / "shellrelay.json"
        path.write_text(
            json.dumps(
                {
                    "terminal": {"term_type": "vt100"},
                    "relay": {"filter_input": False, "read_size": 1024},
                }
            )
        )
        config = ShellRelayConfig.load(str(path))
        assert config.terminal.term_type == "vt100"
        assert config.relay.filter_input is False
        assert config.relay.read_size == 1024

    def test_env_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SHELLRELAY_TERM", "ansi")
        monkeypatch.setenv("SHELLRELAY_FILTER_INPUT", "false")
        monkeypatch.setenv("SHELLRELAY_FILTER_OUTPUT", "no")
        monkeypatch.setenv("SHELLRELAY_POLL_INTERVAL", "0.25")
        monkeypatch.setenv("SHELLRELAY_READ_SIZE", "4096")
        config = ShellRelayConfig.load()
        assert config.terminal.term_type == "ansi"
        assert config.relay.filter_input is False
        assert config.relay.filter_output is False
        assert config.relay.poll_interval == 0.25
        assert config.relay.read_size == 4096

    def test_env_beats_file(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        path = tmp_path / "shellrelay.json"
        path.write_text(json.dumps({"terminal": {"term_type": "vt100"}}))
        monkeypatch.setenv("SHELLRELAY_TERM", "xterm-color")
        config = ShellRelayConfig.load(str(path))
        assert config.terminal.term_type == "xterm-color"

    def test_invalid_bool(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SHELLRELAY_FILTER_INPUT", "maybe")
        with pytest.raises(ValueError, match="SHELLRELAY_FILTER_INPUT"):
            ShellRelayConfig.load()

    def test_dotenv_file(self, tmp_path: Path) -> None:
        (tmp_path / ".env").write_text("SHELLRELAY_TERM=vt220\n")
        try:
            config = ShellRelayConfig.load()
            assert config.terminal.term_type == "vt220"
        finally:
            os.environ.pop("SHELLRELAY_TERM", None)
