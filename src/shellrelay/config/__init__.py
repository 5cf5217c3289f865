"""Configuration — Pydantic models for shellrelay settings."""

from __future__ import annotations

import json
import os
from typing import Any

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean, got {value!r}")


class TerminalConfig(BaseModel):
    """Remote PTY settings."""

    term_type: str = Field(
        default="xterm",
        description=(
            "Terminal type announced to the remote PTY. A basic type keeps "
            "remote programs from emitting 256-colour or other extended sequences."
        ),
    )
    default_columns: int = Field(default=80, ge=1)
    default_rows: int = Field(default=24, ge=1)


class RelayConfig(BaseModel):
    """Relay engine settings.

    The two filter switches are independent: output filtering strips CPR
    replies arriving from the remote, input filtering strips CPR replies
    produced by the local terminal before they reach the remote.
    """

    filter_input: bool = Field(
        default=True, description="Strip CPR sequences from local keystrokes"
    )
    filter_output: bool = Field(
        default=True, description="Strip CPR sequences from remote output"
    )
    read_size: int = Field(default=8192, gt=0, description="Remote read chunk size")
    poll_interval: float = Field(
        default=0.1,
        gt=0,
        description="Seconds between liveness checks while waiting for a keystroke",
    )
    interrupt_bytes: list[int] = Field(
        default_factory=lambda: [0x03, 0x04],
        description="Local bytes that end the session instead of being forwarded",
    )


class ConnectionConfig(BaseModel):
    """Parameters for one SSH connection.

    Passed explicitly to ``shellrelay.session.transport.connect``.
    """

    host: str
    port: int = Field(default=22, ge=1, le=65535)
    username: str
    password: str | None = Field(default=None, repr=False)
    key_file: str | None = Field(default=None)
    passphrase: str | None = Field(default=None, repr=False)
    timeout: float = Field(default=30.0, gt=0, description="Connect timeout in seconds")
    allow_unknown_hosts: bool = Field(
        default=False, description="Accept host keys missing from known_hosts"
    )


class ShellRelayConfig(BaseModel):
    """Top-level shellrelay configuration."""

    terminal: TerminalConfig = Field(default_factory=TerminalConfig)
    relay: RelayConfig = Field(default_factory=RelayConfig)

    @classmethod
    def load(cls, config_path: str | None = None) -> ShellRelayConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            SHELLRELAY_TERM            - Terminal type for the remote PTY
            SHELLRELAY_FILTER_INPUT    - Strip CPR from local input (true/false)
            SHELLRELAY_FILTER_OUTPUT   - Strip CPR from remote output (true/false)
            SHELLRELAY_POLL_INTERVAL   - Keystroke poll interval in seconds
            SHELLRELAY_READ_SIZE       - Remote read chunk size in bytes
        """
        load_dotenv(find_dotenv(usecwd=True))

        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            with open(config_path) as f:
                config_data = json.load(f)

        terminal = config_data.get("terminal", {})
        relay = config_data.get("relay", {})

        env_term = os.environ.get("SHELLRELAY_TERM")
        if env_term:
            terminal["term_type"] = env_term

        env_filter_input = os.environ.get("SHELLRELAY_FILTER_INPUT")
        if env_filter_input:
            relay["filter_input"] = _parse_bool(
                "SHELLRELAY_FILTER_INPUT", env_filter_input
            )

        env_filter_output = os.environ.get("SHELLRELAY_FILTER_OUTPUT")
        if env_filter_output:
            relay["filter_output"] = _parse_bool(
                "SHELLRELAY_FILTER_OUTPUT", env_filter_output
            )

        env_poll_interval = os.environ.get("SHELLRELAY_POLL_INTERVAL")
        if env_poll_interval:
            relay["poll_interval"] = float(env_poll_interval)

        env_read_size = os.environ.get("SHELLRELAY_READ_SIZE")
        if env_read_size:
            relay["read_size"] = int(env_read_size)

        if terminal:
            config_data["terminal"] = terminal
        if relay:
            config_data["relay"] = relay

        return cls.model_validate(config_data)
