"""CLI entry point for shellrelay."""

from __future__ import annotations

import asyncio
import getpass
import logging
from dataclasses import dataclass

import typer

from shellrelay.config import ConnectionConfig, ShellRelayConfig
from shellrelay.errors import (
    RelayError,
    SessionPhaseError,
    TerminalModeError,
    TransportError,
)
from shellrelay.relay.engine import RelayOutcome, RelayResult
from shellrelay.relay.interactive import run_interactive
from shellrelay.session.channel import TerminalGeometry
from shellrelay.terminal.local import LocalTerminal

app = typer.Typer(
    name="shellrelay",
    help="Attach your terminal to a remote shell over SSH.",
    no_args_is_help=True,
)


def setup_logging(verbose: bool = False, log_file: str | None = None) -> None:
    # INFO lines on stderr would land in the middle of a raw-mode screen.
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        filename=log_file,
    )


@dataclass
class Target:
    username: str
    host: str
    port: int | None = None


def parse_target(target: str) -> Target:
    """Split ``[user@]host[:port]``.

    The user defaults to the local login name.
    """
    if "@" in target:
        username, _, rest = target.rpartition("@")
    else:
        username, rest = "", target

    host, port = rest, None
    if rest.startswith("["):
        # [ipv6]:port
        end = rest.find("]")
        if end == -1:
            raise ValueError(f"unterminated IPv6 address in {target!r}")
        host = rest[1:end]
        tail = rest[end + 1 :]
        if tail.startswith(":"):
            port = int(tail[1:])
    elif rest.count(":") == 1:
        host, _, port_text = rest.partition(":")
        port = int(port_text)

    if not host:
        raise ValueError(f"no host in {target!r}")
    return Target(username=username or getpass.getuser(), host=host, port=port)


def _connection_config(
    target: str,
    port: int | None,
    identity_file: str | None,
    password: bool,
    accept_unknown_host: bool,
) -> ConnectionConfig:
    try:
        parsed = parse_target(target)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(2)

    secret = None
    if password:
        secret = typer.prompt(
            f"{parsed.username}@{parsed.host}'s password", hide_input=True
        )
    return ConnectionConfig(
        host=parsed.host,
        port=port or parsed.port or 22,
        username=parsed.username,
        password=secret,
        key_file=identity_file,
        allow_unknown_hosts=accept_unknown_host,
    )


def _report_failure(error: RelayError) -> None:
    if isinstance(error, SessionPhaseError):
        typer.echo(f"shellrelay: {error.phase} failed: {error.error}", err=True)
    elif isinstance(error, TransportError):
        typer.echo(f"shellrelay: connection failed: {error}", err=True)
    else:
        typer.echo(f"shellrelay: {error}", err=True)


@app.command()
def connect(
    target: str = typer.Argument(help="Remote host as [user@]host[:port]."),
    port: int | None = typer.Option(None, "--port", "-p", help="SSH port."),
    identity_file: str | None = typer.Option(
        None, "--identity-file", "-i", help="Private key for public-key auth."
    ),
    password: bool = typer.Option(
        False, "--password", help="Prompt for a password."
    ),
    term: str | None = typer.Option(
        None, "--term", help="Terminal type for the remote PTY (default: xterm)."
    ),
    filter_input: bool | None = typer.Option(
        None,
        "--filter-input/--no-filter-input",
        help="Strip cursor position reports from local keystrokes.",
    ),
    filter_output: bool | None = typer.Option(
        None,
        "--filter-output/--no-filter-output",
        help="Strip cursor position reports from remote output.",
    ),
    accept_unknown_host: bool = typer.Option(
        False, "--accept-unknown-host", help="Trust host keys not in known_hosts."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
    log_file: str | None = typer.Option(
        None, "--log-file", help="Write logs to this file instead of stderr."
    ),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Open an interactive shell on the remote host."""
    setup_logging(verbose, log_file)

    config = ShellRelayConfig.load(config_file)
    if term:
        config.terminal.term_type = term
    if filter_input is not None:
        config.relay.filter_input = filter_input
    if filter_output is not None:
        config.relay.filter_output = filter_output

    conn_config = _connection_config(
        target, port, identity_file, password, accept_unknown_host
    )

    typer.echo("=== shellrelay ===")
    typer.echo(f"Connecting to {conn_config.username}@{conn_config.host}")
    typer.echo("Press Ctrl+D or Ctrl+C, or type 'exit', to leave")
    typer.echo("==================")

    try:
        result = asyncio.run(_run_shell(conn_config, config))
    except RelayError as e:
        _report_failure(e)
        raise typer.Exit(1)

    typer.echo("\n=== session ended ===")
    if result.outcome is RelayOutcome.ERROR:
        typer.echo(f"shellrelay: relay failed: {result.error}", err=True)
        raise typer.Exit(1)


async def _run_shell(
    conn_config: ConnectionConfig, config: ShellRelayConfig
) -> RelayResult:
    from shellrelay.session.transport import connect as ssh_connect

    terminal = LocalTerminal(
        default_geometry=TerminalGeometry(
            config.terminal.default_columns, config.terminal.default_rows
        )
    )
    if not terminal.is_interactive():
        raise SessionPhaseError(
            "raw-mode", TerminalModeError("standard input is not a terminal")
        )

    connection = await ssh_connect(conn_config)
    try:
        channel = await connection.open_channel()
        return await run_interactive(
            channel,
            terminal,
            config.relay,
            term_type=config.terminal.term_type,
        )
    finally:
        await connection.close()


@app.command("exec")
def exec_command(
    target: str = typer.Argument(help="Remote host as [user@]host[:port]."),
    command: str = typer.Argument(help="Command to run remotely."),
    port: int | None = typer.Option(None, "--port", "-p", help="SSH port."),
    identity_file: str | None = typer.Option(
        None, "--identity-file", "-i", help="Private key for public-key auth."
    ),
    password: bool = typer.Option(
        False, "--password", help="Prompt for a password."
    ),
    accept_unknown_host: bool = typer.Option(
        False, "--accept-unknown-host", help="Trust host keys not in known_hosts."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
) -> None:
    """Run a single command remotely and print its output."""
    setup_logging(verbose)
    conn_config = _connection_config(
        target, port, identity_file, password, accept_unknown_host
    )

    try:
        exit_status = asyncio.run(_run_exec(conn_config, command))
    except RelayError as e:
        _report_failure(e)
        raise typer.Exit(1)

    if exit_status != 0:
        raise typer.Exit(exit_status)


async def _run_exec(conn_config: ConnectionConfig, command: str) -> int:
    from shellrelay.session.transport import connect as ssh_connect

    connection = await ssh_connect(conn_config)
    try:
        result = await connection.exec_command(command)
    finally:
        await connection.close()

    typer.echo(result.stdout, nl=False)
    if result.stderr:
        typer.echo(result.stderr, nl=False, err=True)
    return result.exit_status


def main() -> None:
    app()


if __name__ == "__main__":
    main()
