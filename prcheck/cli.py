"""Typer CLI for checking which pull requests still need a review."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Annotated

import typer

from prcheck.cache import open_default_cache
from prcheck.github_client import GitHubFetcher, build_github_client
from prcheck.output import OrderedReporter
from prcheck.reconcile import CheckSummary, run_check
from prcheck.settings import (
    CheckSettings,
    ConfigError,
    DurationParseError,
    default_config_store,
    resolve_check_settings,
    validate_config_key,
)

app = typer.Typer(
    help="Report open GitHub pull requests that are still waiting for a review.",
    no_args_is_help=True,
)

EPILOG = (
    "Examples: 'prcheck check repo_1 repo_2 -a user_1 -a user_2' checks two repos for two "
    "authors; 'prcheck check @ --authors @' checks every saved repo for every author."
)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _fail(error: Exception, *, code: int) -> typer.Exit:
    typer.echo(typer.style(str(error), fg="red", bold=True), err=True)
    return typer.Exit(code=code)


@app.command("setConfig")
def set_config_command(
    key: Annotated[str, typer.Argument(help="Config key to set.")],
    values: Annotated[list[str], typer.Argument(help="Value(s); list keys keep all of them.")],
) -> None:
    """Sets a config value."""
    try:
        default_config_store().set(key, values)
    except ConfigError as error:
        raise _fail(error, code=2) from error


@app.command("getConfig")
def get_config_command(
    key: Annotated[str, typer.Argument(help="Config key to read.")],
) -> None:
    """Gets a config value."""
    try:
        value = default_config_store().get(key)
    except ConfigError as error:
        raise _fail(error, code=2) from error
    typer.echo("(not set)" if value is None else json.dumps(value))


@app.command("deleteConfig")
def delete_config_command(
    key: Annotated[str, typer.Argument(help="Config key to delete.")],
) -> None:
    """Deletes a config value."""
    try:
        validate_config_key(key)
        default_config_store().delete(key)
    except ConfigError as error:
        raise _fail(error, code=2) from error


@app.command("listConfig")
def list_config_command() -> None:
    """List all config values."""
    store = default_config_store()
    try:
        config = store.all()
    except ConfigError as error:
        raise _fail(error, code=2) from error
    typer.echo(json.dumps(config, indent=2, sort_keys=True))


async def _check_repositories(
    settings: CheckSettings,
    reporter: OrderedReporter,
    timeout_seconds: int,
) -> CheckSummary:
    cache = open_default_cache()
    async with build_github_client(settings.token, timeout_seconds) as client:
        fetcher = GitHubFetcher(client, cache=cache)
        summary = await run_check(settings, fetcher, reporter)
    logging.getLogger(__name__).debug(
        "Finished with %d network call(s) and %d cache hit(s)",
        fetcher.network_calls,
        fetcher.cache_hits,
    )
    return summary


@app.command("check", epilog=EPILOG)
def check_command(
    repos: Annotated[
        list[str], typer.Argument(help="Repository names, or '@' for all saved repos.")
    ],
    authors: Annotated[
        list[str] | None,
        typer.Option(
            "--authors",
            "-a",
            help="Author login(s), repeatable or comma-separated; '@' for everyone.",
        ),
    ] = None,
    org: Annotated[
        str | None, typer.Option("--org", "-o", help="GitHub org (or user) owning the repos.")
    ] = None,
    max_cache_age: Annotated[
        str | None,
        typer.Option(
            "--max-cache-age",
            "-c",
            help=(
                "Reuse cached responses younger than this, e.g. '60 minutes' "
                "(a unit is required)."
            ),
        ),
    ] = None,
    no_cache: Annotated[
        bool, typer.Option("--no-cache", help="Ignore cached responses for this run.")
    ] = False,
    timeout_seconds: Annotated[
        int, typer.Option(help="GitHub API timeout in seconds per request.")
    ] = 20,
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Log cache and network activity.")
    ] = False,
) -> None:
    """Checks for PR status."""
    _configure_logging(verbose)
    try:
        settings = resolve_check_settings(
            default_config_store(),
            repos=repos,
            authors=authors,
            org=org,
            max_cache_age=max_cache_age,
            no_cache=no_cache,
        )
    except (ConfigError, DurationParseError) as error:
        raise _fail(error, code=2) from error

    reporter = OrderedReporter()
    summary = asyncio.run(_check_repositories(settings, reporter, timeout_seconds))
    reporter.flush()
    if not summary.ok:
        raise typer.Exit(code=1)
