"""livequery CLI.

Usage:
    livequery watch posts                          # Live query as JSON lines
    livequery watch posts --filter status == draft --limit 5
    livequery watch posts/123 --no-realtime        # Single pull, no push channel
    livequery get posts/123                        # One GET, printed as JSON
    livequery trigger posts publish --payload '{"id": "123"}'

Connection settings come from --base-url / --ws-url or LIVEQUERY_* variables.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Callable, Coroutine
from typing import Any

import click

from .config import RestTransporterConfig, static_url
from .errors import LiveQueryError
from .transporter import RestTransporter
from .types import QueryOptions, QueryStreamItem


def _configure_logging(verbose: bool) -> None:
    """Send library logs to stderr; stdout is reserved for results."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    root_logger.addHandler(stderr_handler)
    root_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)


def _parse_value(raw: str) -> Any:
    """Interpret a filter value as JSON when possible, else as text."""
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def _build_config(
    base_url: str | None, ws_url: str | None, realtime: bool | None
) -> RestTransporterConfig:
    overrides: dict[str, Any] = {}
    if base_url:
        overrides["base_url"] = static_url(base_url)
    if ws_url:
        overrides["websocket_url"] = static_url(ws_url)
    if realtime is not None:
        overrides["realtime"] = realtime
    try:
        return RestTransporterConfig.from_env(**overrides)
    except ValueError as e:
        raise click.UsageError(str(e)) from e


def _emit(item: QueryStreamItem) -> None:
    click.echo(item.model_dump_json(exclude_none=True))


@click.group()
@click.option("--base-url", envvar="LIVEQUERY_BASE_URL", help="HTTP base URL")
@click.option("--ws-url", envvar="LIVEQUERY_WS_URL", help="WebSocket URL for realtime push")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging on stderr")
@click.pass_context
def main(ctx: click.Context, base_url: str | None, ws_url: str | None, verbose: bool) -> None:
    """livequery - live REST queries from the command line."""
    _configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["base_url"] = base_url
    ctx.obj["ws_url"] = ws_url


@main.command()
@click.argument("ref")
@click.option("--realtime/--no-realtime", default=None, help="Keep the query live over WebSocket")
@click.option("--limit", default=20, show_default=True, help="Page size")
@click.option("--cursor", default=None, help="Paging cursor (disables realtime push)")
@click.option("--order-by", default=None, help="Field to order by")
@click.option("--sort", type=click.Choice(["asc", "desc"]), default="desc", show_default=True)
@click.option(
    "--filter",
    "filters",
    type=(str, str, str),
    multiple=True,
    help="Filter as FIELD OP VALUE, e.g. --filter views '>=' 10",
)
@click.option("--once", is_flag=True, help="Exit after the first item")
@click.pass_context
def watch(
    ctx: click.Context,
    ref: str,
    realtime: bool | None,
    limit: int,
    cursor: str | None,
    order_by: str | None,
    sort: str,
    filters: tuple[tuple[str, str, str], ...],
    once: bool,
) -> None:
    """Stream a live query on REF as JSON lines."""
    config = _build_config(ctx.obj["base_url"], ctx.obj["ws_url"], realtime)
    options = QueryOptions(
        cursor=cursor,
        limit=limit,
        order_by=order_by,
        sort=sort,  # type: ignore[arg-type]
        filters=[(field, op, _parse_value(value)) for field, op, value in filters],
    )

    async def run() -> None:
        async with RestTransporter(config) as transporter:
            async with transporter.query("cli", ref, options) as stream:
                async for item in stream:
                    _emit(item)
                    if once:
                        break

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        click.echo("\nStopped", err=True)


@main.command()
@click.argument("ref")
@click.pass_context
def get(ctx: click.Context, ref: str) -> None:
    """GET REF once and print the response body."""
    config = _build_config(ctx.obj["base_url"], None, False)

    async def run() -> Any:
        async with RestTransporter(config) as transporter:
            return await transporter.get(ref)

    _run_call(run)


@main.command()
@click.argument("ref")
@click.argument("name")
@click.option("--payload", default=None, help="JSON payload for the action")
@click.pass_context
def trigger(ctx: click.Context, ref: str, name: str, payload: str | None) -> None:
    """Run the remote action NAME on REF."""
    config = _build_config(ctx.obj["base_url"], None, False)
    try:
        body = json.loads(payload) if payload else None
    except ValueError as e:
        raise click.BadParameter(f"Invalid JSON: {e}", param_hint="--payload") from e

    async def run() -> Any:
        async with RestTransporter(config) as transporter:
            return await transporter.trigger(ref, name, payload=body)

    _run_call(run)


def _run_call(run: Callable[[], Coroutine[Any, Any, Any]]) -> None:
    try:
        result = asyncio.run(run())
    except LiveQueryError as e:
        click.echo(f"Error [{e.code}]: {e.message}", err=True)
        sys.exit(1)
    click.echo(json.dumps(result, indent=2))


if __name__ == "__main__":
    main()
