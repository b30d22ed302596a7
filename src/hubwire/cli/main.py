"""Command-line interface for hubwire.

Provides commands for querying a hub and watching its live event feed.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable, Coroutine, MutableMapping
from pathlib import Path
from typing import Any

import click
import structlog
import yaml

from hubwire import __version__
from hubwire.client import Client, connect
from hubwire.core.config import HubwireConfig
from hubwire.errors import HubwireError
from hubwire.protocol.services import action_from_wire

log = structlog.get_logger()


def _configure_logging(*, verbose: bool = False, quiet: bool = False) -> None:
    """Configure structlog with appropriate log level filtering."""
    import logging

    if quiet:
        min_level = logging.WARNING
    elif verbose:
        min_level = logging.DEBUG
    else:
        min_level = logging.INFO

    def _filter_by_level(
        _logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
    ) -> MutableMapping[str, Any]:
        if getattr(logging, method_name.upper(), 0) < min_level:
            raise structlog.DropEvent
        return event_dict

    structlog.configure(
        processors=[
            _filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.dev.ConsoleRenderer(colors=True),
        ],
    )


def _load_config(config_path: Path) -> HubwireConfig:
    try:
        return HubwireConfig.from_yaml(config_path)
    except Exception as e:
        log.error("Failed to load configuration", path=str(config_path), error=str(e))
        raise SystemExit(1) from e


def _run_with_client(
    config: HubwireConfig, body: Callable[[Client], Coroutine[Any, Any, None]]
) -> None:
    """Connect, run ``body`` with the client, and always close."""

    async def main() -> None:
        client = await connect(config.home_assistant, config.connection)
        try:
            await body(client)
        finally:
            await client.close()

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        log.info("Interrupted by user")
    except HubwireError as e:
        log.error("Request failed", error=str(e), kind=type(e).__name__)
        raise SystemExit(1) from e


def _parse_data(pairs: tuple[str, ...]) -> dict[str, Any]:
    """Parse ``key=value`` pairs; values are read as YAML scalars or lists."""
    data: dict[str, Any] = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"Expected key=value: {pair}", param_hint="--data")
        data[key] = yaml.safe_load(raw)
    return data


verbose_option = click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
quiet_option = click.option("--quiet", "-q", is_flag=True, help="Only log warnings and errors")
config_argument = click.argument("config_path", type=click.Path(exists=True, path_type=Path))


@click.group()
@click.version_option(version=__version__, prog_name="hubwire")
def cli() -> None:
    """hubwire - Home Assistant WebSocket client.

    Query a hub and follow its state changes using a YAML configuration file.
    """


@cli.command()
@config_argument
def validate(config_path: Path) -> None:
    """Validate configuration file.

    CONFIG_PATH: Path to YAML configuration file

    Exits with code 0 if valid, 1 if invalid.
    """
    try:
        config = HubwireConfig.from_yaml(config_path)
    except Exception as e:
        log.error("Configuration invalid", error=str(e))
        raise SystemExit(1) from e

    conn = config.connection
    click.echo(f"  Endpoint: {config.home_assistant.websocket_url}")
    click.echo(f"  Ping interval: {conn.ping_interval}s")
    click.echo(f"  Event buffer: {conn.event_buffer}")
    attempts = conn.reconnect.max_attempts or "unlimited"
    reconnect = f"on (max attempts: {attempts})" if conn.reconnect.enabled else "off"
    click.echo(f"  Reconnect: {reconnect}")


@cli.command()
@config_argument
@click.option("--domain", "-d", default=None, help="Only show entities of this domain")
@verbose_option
@quiet_option
def states(config_path: Path, domain: str | None, verbose: bool, quiet: bool) -> None:
    """List entity states.

    CONFIG_PATH: Path to YAML configuration file
    """
    _configure_logging(verbose=verbose, quiet=quiet)
    config = _load_config(config_path)

    async def body(client: Client) -> None:
        for state in await client.get_states():
            if domain is not None and state.domain != domain:
                continue
            click.echo(f"{state.entity_id}\t{state.state}")

    _run_with_client(config, body)


@cli.command()
@config_argument
@verbose_option
@quiet_option
def areas(config_path: Path, verbose: bool, quiet: bool) -> None:
    """List areas.

    CONFIG_PATH: Path to YAML configuration file
    """
    _configure_logging(verbose=verbose, quiet=quiet)
    config = _load_config(config_path)

    async def body(client: Client) -> None:
        for area in await client.list_areas():
            click.echo(f"{area.area_id}\t{area.name}")

    _run_with_client(config, body)


@cli.command()
@config_argument
@click.option("--count", "-n", type=int, default=None, help="Stop after N events")
@click.option("--domain", "-d", default=None, help="Only show entities of this domain")
@verbose_option
@quiet_option
def watch(
    config_path: Path, count: int | None, domain: str | None, verbose: bool, quiet: bool
) -> None:
    """Print state changes as they arrive (Ctrl+C to stop).

    CONFIG_PATH: Path to YAML configuration file
    """
    _configure_logging(verbose=verbose, quiet=quiet)
    config = _load_config(config_path)

    async def body(client: Client) -> None:
        seen = 0
        async for event in client.subscribe():
            if domain is not None and event.domain != domain:
                continue
            old = event.old_state.get("state") if event.old_state else None
            new = event.new_state.get("state") if event.new_state else None
            click.echo(f"{event.entity_id}\t{old} -> {new}")
            seen += 1
            if count is not None and seen >= count:
                return

    _run_with_client(config, body)


@cli.command()
@config_argument
@click.argument("entity_id")
@click.argument("service")
@click.option("--data", "-D", multiple=True, help="Service data as key=value (repeatable)")
@verbose_option
@quiet_option
def call(
    config_path: Path,
    entity_id: str,
    service: str,
    data: tuple[str, ...],
    verbose: bool,
    quiet: bool,
) -> None:
    """Call SERVICE on ENTITY_ID, e.g. ``light.kitchen turn_on -D brightness=120``.

    CONFIG_PATH: Path to YAML configuration file
    """
    _configure_logging(verbose=verbose, quiet=quiet)
    config = _load_config(config_path)

    domain, sep, _ = entity_id.partition(".")
    if not sep:
        raise click.BadParameter("Expected domain.object_id", param_hint="ENTITY_ID")
    try:
        action = action_from_wire(domain, service, _parse_data(data))
    except (TypeError, ValueError) as e:
        raise click.BadParameter(str(e), param_hint="--data") from e

    async def body(client: Client) -> None:
        result = await client.call_service(entity_id, action)
        click.echo(json.dumps(result, indent=2))

    _run_with_client(config, body)


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
