"""CLI commands for inspecting and exercising the configuration client."""

import json
import logging
import sys
from collections.abc import Generator
from contextlib import contextmanager
from typing import NoReturn

import click
import structlog

from remote_config.attributes.provider import StaticAttributeProvider
from remote_config.errors import RemoteConfigError
from remote_config.fetch.client import HttpConfigFetcher
from remote_config.manager.manager import ConfigManager
from remote_config.observability.logging import (
    bind_namespace_context,
    configure_logging,
)
from remote_config.parser.parser import serialize_snapshot
from remote_config.settings.app import RemoteConfigSettings, get_settings
from remote_config.store.models import assignments_key, snapshot_key
from remote_config.store.store import SqliteConfigStore


logger = structlog.get_logger()

ANONYMOUS_USER_ID = "anonymous"


def _setup(verbose: bool) -> RemoteConfigSettings:
    """Load settings and configure logging."""
    settings = get_settings()
    level = logging.DEBUG if verbose else getattr(logging, settings.log_level)
    configure_logging(level=level, json_format=settings.json_logs)
    bind_namespace_context(settings.namespace)
    return settings


@contextmanager
def _open_manager(
    settings: RemoteConfigSettings, user_id: str, platform: str
) -> Generator[ConfigManager]:
    """Build and initialize a one-shot manager (no scheduler, no auto fetch)."""
    manager_settings = settings.to_manager_settings().model_copy(
        update={"refresh_interval_seconds": None, "fetch_on_initialize": False}
    )
    with SqliteConfigStore(settings.cache_path) as store:
        manager = ConfigManager(
            fetcher=HttpConfigFetcher(settings.to_fetch_config()),
            store=store,
            attributes=StaticAttributeProvider(user_id=user_id, platform=platform),
            settings=manager_settings,
        )
        with manager:
            yield manager


def _fail(message: str) -> NoReturn:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


user_id_option = click.option(
    "--user-id",
    default=ANONYMOUS_USER_ID,
    show_default=True,
    help="Stable user identifier used for bucketing.",
)
platform_option = click.option(
    "--platform",
    default="cli",
    show_default=True,
    help="Platform attribute sent with fetches.",
)
refresh_option = click.option(
    "--refresh/--no-refresh",
    default=False,
    help="Fetch from the backend before answering.",
)


@click.group()
@click.version_option(version="0.1.0")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Remote configuration client CLI."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


@cli.command()
@user_id_option
@platform_option
@click.option("--json", "json_output", is_flag=True, help="Output as JSON.")
@click.pass_context
def fetch(ctx: click.Context, user_id: str, platform: str, json_output: bool) -> None:
    """Fetch once from the backend and report what changed."""
    settings = _setup(ctx.obj["verbose"])
    try:
        with _open_manager(settings, user_id, platform) as manager:
            result = manager.force_refresh(timeout=settings.timeout_seconds * 2)
    except (RemoteConfigError, TimeoutError) as e:
        _fail(str(e))

    if result.error is not None:
        _fail(f"{result.error.error_class.value}: {result.error.message}")

    change_set = result.change_set
    if json_output:
        output = {
            "outcome": result.outcome.value,
            "config_version": (
                result.snapshot.config_version if result.snapshot else None
            ),
            "changed_sections": [],
            "changed_flags": [],
            "changed_experiments": [],
            "duration_ms": round(result.duration_ms, 2),
        }
        if change_set is not None:
            output["changed_sections"] = sorted(change_set.changed_sections)
            output["changed_flags"] = sorted(change_set.changed_flags)
            output["changed_experiments"] = sorted(change_set.changed_experiments)
        click.echo(json.dumps(output, indent=2))
        return

    click.echo(f"Fetch {result.outcome.value} ({result.duration_ms:.0f} ms)")
    if change_set is not None and change_set.has_changes:
        click.echo(f"  Sections: {', '.join(sorted(change_set.changed_sections))}")
        if change_set.changed_flags:
            click.echo(f"  Flags: {', '.join(sorted(change_set.changed_flags))}")
        if change_set.changed_experiments:
            click.echo(
                f"  Experiments: {', '.join(sorted(change_set.changed_experiments))}"
            )


@cli.command()
@click.pass_context
def show(ctx: click.Context) -> None:
    """Print the active snapshot (from cache, else defaults) as JSON."""
    settings = _setup(ctx.obj["verbose"])
    try:
        with _open_manager(settings, ANONYMOUS_USER_ID, "cli") as manager:
            snapshot = manager.snapshot
            stale = manager.is_cache_stale
    except RemoteConfigError as e:
        _fail(str(e))

    if snapshot is None:
        _fail("no snapshot available")
    if stale:
        click.echo("Warning: cached snapshot is stale", err=True)
    click.echo(json.dumps(json.loads(serialize_snapshot(snapshot)), indent=2))


@cli.command()
@click.argument("name")
@user_id_option
@platform_option
@refresh_option
@click.pass_context
def flag(
    ctx: click.Context, name: str, user_id: str, platform: str, refresh: bool
) -> None:
    """Evaluate feature flag NAME for a user."""
    settings = _setup(ctx.obj["verbose"])
    try:
        with _open_manager(settings, user_id, platform) as manager:
            if refresh:
                manager.force_refresh(timeout=settings.timeout_seconds * 2)
            enabled = manager.is_feature_enabled(name)
            variant = manager.get_feature_variant(name)
    except (RemoteConfigError, TimeoutError) as e:
        _fail(str(e))

    click.echo(f"{name}: {'enabled' if enabled else 'disabled'} (variant: {variant})")


@cli.command()
@click.argument("experiment_id")
@user_id_option
@platform_option
@refresh_option
@click.pass_context
def experiment(
    ctx: click.Context,
    experiment_id: str,
    user_id: str,
    platform: str,
    refresh: bool,
) -> None:
    """Show the variant of EXPERIMENT_ID for a user."""
    settings = _setup(ctx.obj["verbose"])
    try:
        with _open_manager(settings, user_id, platform) as manager:
            if refresh:
                manager.force_refresh(timeout=settings.timeout_seconds * 2)
            variant = manager.get_experiment_variant(experiment_id)
    except (RemoteConfigError, TimeoutError) as e:
        _fail(str(e))

    click.echo(f"{experiment_id}: {variant}")


@cli.group()
def cache() -> None:
    """Manage the local configuration cache."""


@cache.command("clear")
@click.pass_context
def cache_clear(ctx: click.Context) -> None:
    """Delete the cached snapshot and experiment assignments."""
    settings = _setup(ctx.obj["verbose"])
    try:
        with SqliteConfigStore(settings.cache_path) as store:
            removed = [
                key
                for key in (
                    snapshot_key(settings.namespace),
                    assignments_key(settings.namespace),
                )
                if store.delete(key)
            ]
    except RemoteConfigError as e:
        _fail(str(e))

    logger.info("cache_cleared", component="cli", keys=removed)
    click.echo(f"Removed {len(removed)} cache entries.")


if __name__ == "__main__":
    cli()
