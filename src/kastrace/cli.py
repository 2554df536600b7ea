# src/kastrace/cli.py
"""kastrace Command Line Interface.

Entry point for the kastrace CLI tool. Results are printed to stdout as
JSON; logs go to stderr.
"""

from __future__ import annotations

import json
import signal
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import typer
from pydantic import ValidationError

from kastrace import __version__
from kastrace.contracts import CancelToken, FetchError, PageDirection, ResolvePreviousOutpoints, TransactionFetcher
from kastrace.core.config import KastraceSettings, load_settings

__all__ = ["app"]

# Conventional exit status for a run stopped by SIGINT
EXIT_INTERRUPTED = 130

app = typer.Typer(
    name="kastrace",
    help="kastrace: Kaspa address discovery and transaction history.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"kastrace version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables from .env file.

    Args:
        env_file: Explicit path to .env file. If None, searches for .env
                 in current directory and parent directories.

    Returns:
        True if .env was found and loaded, False otherwise.

    Raises:
        typer.Exit: If explicit env_file path doesn't exist.
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(f"Error: .env file not found: {env_file}", fg=typer.colors.RED, err=True)
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)

    return load_dotenv(override=False)


@app.callback()
def main(
    ctx: typer.Context,
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    no_dotenv: bool = typer.Option(False, "--no-dotenv", help="Skip loading .env file."),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        help="Path to .env file (skips automatic search).",
        exists=False,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose/debug logging."),
    json_logs: bool = typer.Option(False, "--json-logs", help="Output structured JSON logs on stderr."),
) -> None:
    """kastrace: Kaspa address discovery and transaction history."""
    from kastrace.core.logging import configure_logging

    configure_logging(json_output=json_logs, level="DEBUG" if verbose else "INFO")
    ctx.obj = {"verbose": verbose, "json_logs": json_logs}

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho("Warning: --env-file ignored because --no-dotenv is set.", fg=typer.colors.YELLOW, err=True)


def _settings(ctx: typer.Context, path: Path | None) -> KastraceSettings:
    """Load settings or exit with a readable error.

    The configured log_level applies unless --verbose was given.
    """
    try:
        settings = load_settings(path.expanduser() if path is not None else None)
    except FileNotFoundError:
        typer.echo(f"Error: Settings file not found: {path}", err=True)
        raise typer.Exit(1) from None
    except ValidationError as e:
        _report_validation_error(e)
        raise typer.Exit(1) from None

    options = ctx.obj or {}
    if not options.get("verbose") and settings.log_level != "INFO":
        from kastrace.core.logging import configure_logging

        configure_logging(json_output=options.get("json_logs", False), level=settings.log_level)
    return settings


def _override(settings: KastraceSettings, section: str, **values: Any) -> KastraceSettings:
    """Apply command-line overrides, re-validating the result."""
    try:
        return settings.with_overrides(section, **values)
    except ValidationError as e:
        _report_validation_error(e)
        raise typer.Exit(1) from None


def _report_validation_error(e: ValidationError) -> None:
    typer.echo("Configuration errors:", err=True)
    for error in e.errors():
        loc = ".".join(str(x) for x in error["loc"])
        typer.echo(f"  - {loc}: {error['msg']}", err=True)


@contextmanager
def _open_client(settings: KastraceSettings) -> Iterator[TransactionFetcher]:
    """Yield a client for the configured API, closing it afterwards."""
    from kastrace.clients import KaspaClient

    with KaspaClient.from_settings(settings.api) as client:
        yield client


@contextmanager
def _cancel_on_interrupt(token: CancelToken) -> Iterator[None]:
    """Turn SIGINT into a cancellation request for the duration of a run.

    The first Ctrl-C sets the token so the engine can return a partial
    result. The previous handler is restored on exit.
    """

    def _handler(signum: int, frame: object) -> None:
        typer.echo("Interrupted, canceling outstanding fetches...", err=True)
        token.cancel()

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _emit(data: dict[str, Any], *, canceled: bool = False) -> None:
    typer.echo(json.dumps(data, indent=2))
    if canceled:
        raise typer.Exit(EXIT_INTERRUPTED)


@app.command()
def discover(
    ctx: typer.Context,
    address: str = typer.Argument(..., help="Seed address (depth 0)."),
    max_depth: int | None = typer.Option(None, "--max-depth", "-d", help="Depth ceiling (>= 1)."),
    concurrency: int | None = typer.Option(None, "--concurrency", "-c", help="Maximum fetches in flight."),
    max_failed_tries: int | None = typer.Option(None, "--max-failed-tries", help="Retry rounds before giving up."),
    skip_inputs: bool | None = typer.Option(None, "--skip-inputs/--include-inputs", help="Ignore sender addresses."),
    skip_outputs: bool | None = typer.Option(None, "--skip-outputs/--include-outputs", help="Ignore recipient addresses."),
    resolve: ResolvePreviousOutpoints | None = typer.Option(None, "--resolve", help="Previous outpoint resolution."),
    settings_path: Path | None = typer.Option(None, "--settings", "-s", help="Path to settings YAML file."),
) -> None:
    """Discover addresses reachable from ADDRESS through its transactions."""
    from kastrace.engine import AddressDiscoveryEngine

    settings = _settings(ctx, settings_path)
    settings = _override(settings, "pool", concurrency_limit=concurrency, max_failed_tries=max_failed_tries)
    settings = _override(
        settings,
        "discovery",
        max_depth=max_depth,
        skip_inputs=skip_inputs,
        skip_outputs=skip_outputs,
        resolve_previous_outpoints=resolve,
    )

    token = CancelToken()
    with _open_client(settings) as client, _cancel_on_interrupt(token):
        result = AddressDiscoveryEngine.from_settings(client, settings).run(address, cancel_token=token)
    _emit(result.to_dict(), canceled=result.canceled)


@app.command()
def history(
    ctx: typer.Context,
    address: str = typer.Argument(..., help="Address whose history to fetch."),
    concurrency: int | None = typer.Option(None, "--concurrency", "-c", help="Pages per wave."),
    batch_size: int | None = typer.Option(None, "--batch-size", "-b", help="Transactions per page (50-500)."),
    max_failed_tries: int | None = typer.Option(None, "--max-failed-tries", help="Retry rounds per retry pass."),
    resolve: ResolvePreviousOutpoints | None = typer.Option(None, "--resolve", help="Previous outpoint resolution."),
    fields: str | None = typer.Option(None, "--fields", help="Comma-separated field selector."),
    settings_path: Path | None = typer.Option(None, "--settings", "-s", help="Path to settings YAML file."),
) -> None:
    """Fetch the full transaction history of ADDRESS with offset pagination."""
    from kastrace.engine import MaxRetriesExceeded, OffsetHistoryEngine

    settings = _settings(ctx, settings_path)
    settings = _override(settings, "pool", concurrency_limit=concurrency, max_failed_tries=max_failed_tries)
    settings = _override(settings, "history", batch_size=batch_size, resolve_previous_outpoints=resolve, fields=fields)

    token = CancelToken()
    try:
        with _open_client(settings) as client, _cancel_on_interrupt(token):
            result = OffsetHistoryEngine.from_settings(client, settings).run(address, cancel_token=token)
    except (MaxRetriesExceeded, FetchError) as e:
        typer.echo(f"Error: could not count transactions for {address}: {e}", err=True)
        raise typer.Exit(1) from None
    _emit(result.to_dict(), canceled=result.canceled)


@app.command("history-page")
def history_page(
    ctx: typer.Context,
    address: str = typer.Argument(..., help="Address whose history to fetch."),
    direction: PageDirection | None = typer.Option(None, "--direction", help="Walk before or after the timestamp."),
    timestamp: int | None = typer.Option(None, "--timestamp", "-t", help="Starting cursor in unix milliseconds."),
    limit: int | None = typer.Option(None, "--limit", "-l", help="Transactions per page (50-500)."),
    max_failed_tries: int | None = typer.Option(None, "--max-failed-tries", help="Retries per page."),
    resolve: ResolvePreviousOutpoints | None = typer.Option(None, "--resolve", help="Previous outpoint resolution."),
    fields: str | None = typer.Option(None, "--fields", help="Comma-separated field selector."),
    settings_path: Path | None = typer.Option(None, "--settings", "-s", help="Path to settings YAML file."),
) -> None:
    """Fetch the transaction history of ADDRESS with cursor pagination."""
    from kastrace.engine import CursorHistoryEngine

    settings = _settings(ctx, settings_path)
    settings = _override(settings, "pool", max_failed_tries=max_failed_tries)
    settings = _override(
        settings,
        "history",
        batch_size=limit,
        direction=direction,
        resolve_previous_outpoints=resolve,
        fields=fields,
    )

    token = CancelToken()
    with _open_client(settings) as client, _cancel_on_interrupt(token):
        engine = CursorHistoryEngine.from_settings(client, settings)
        result = engine.run(address, start=timestamp, cancel_token=token)
    _emit(result.to_dict(), canceled=result.canceled)


@app.command()
def count(
    ctx: typer.Context,
    address: str = typer.Argument(..., help="Address to count transactions for."),
    settings_path: Path | None = typer.Option(None, "--settings", "-s", help="Path to settings YAML file."),
) -> None:
    """Print the transaction count of ADDRESS."""
    settings = _settings(ctx, settings_path)
    try:
        with _open_client(settings) as client:
            result = client.count_transactions(address)
    except FetchError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None
    _emit({"Address": address, "Total": result.total, "LimitExceeded": result.limit_exceeded})


if __name__ == "__main__":
    app()
