"""CLI entry point for the contract_feed daemon."""

from __future__ import annotations

import asyncio
import logging
import sys

import click

from contract_feed.config import load_config
from contract_feed.daemon import run_daemon
from contract_feed.errors import ContractFeedError
from contract_feed.models.config import FeedConfig, FeedMode
from contract_feed.rest.fetcher import RetryingFetcher
from contract_feed.rest.retry import RetryPolicy
from contract_feed.storage.sqlite import SQLiteProgressStore


def _fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def _load(ctx: click.Context) -> FeedConfig:
    """Load the config and apply its log level unless -v was given."""
    cfg = load_config(ctx.obj["config_path"])
    if not ctx.obj["verbose"]:
        logging.getLogger().setLevel(cfg.log_level.upper())
    return cfg


def _validated(cfg: FeedConfig) -> FeedConfig:
    """Exit with error if the effective configuration is invalid."""
    try:
        cfg.validate()
    except ValueError as exc:
        _fail(str(exc))
    return cfg


@click.group()
@click.option("-c", "--config", "config_path", default=None, help="Path to config TOML file")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """contract_feed - Contract event feed over HTTP polling or WebSocket streaming."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose

    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )


# ── Feeds ──────────────────────────────────────────────


@cli.command()
@click.option("--from-block", type=int, default=None, help="First block to scan (ignored when progress is stored)")
@click.option("--address", default=None, help="Contract address filter")
@click.option("--event", "event_names", multiple=True, help="Event name filter (repeatable)")
@click.option("--flow-control", is_flag=True, help="Wait for each batch to be persisted before fetching the next")
@click.pass_context
def poll(
    ctx: click.Context,
    from_block: int | None,
    address: str | None,
    event_names: tuple[str, ...],
    flow_control: bool,
) -> None:
    """Backfill and follow events by polling the HTTP API.

    Events are written to stdout as JSON lines; progress is saved so a
    restarted feed resumes where it stopped.
    """
    cfg = _load(ctx)
    cfg.mode = FeedMode.POLL
    if from_block is not None:
        cfg.from_block = from_block
    if address:
        cfg.address = address
    if event_names:
        cfg.event_names = list(event_names)
    if flow_control:
        cfg.flow_control = True
    _validated(cfg)

    click.echo(f"Polling {cfg.base_url} from block {cfg.from_block}", err=True)
    asyncio.run(run_daemon(cfg))


@cli.command()
@click.option("--from-block", type=int, default=None, help="First block of the backfill")
@click.option("--to-block", type=int, default=None, help="Last block of the backfill")
@click.option("--address", default=None, help="Contract address filter")
@click.option("--reconnect", is_flag=True, help="Reconnect and resubscribe after a dropped connection")
@click.pass_context
def stream(
    ctx: click.Context,
    from_block: int | None,
    to_block: int | None,
    address: str | None,
    reconnect: bool,
) -> None:
    """Subscribe to the WebSocket event stream."""
    cfg = _load(ctx)
    cfg.mode = FeedMode.STREAM
    if from_block is not None:
        cfg.from_block = from_block
    if to_block is not None:
        cfg.to_block = to_block
    if address:
        cfg.address = address
    if reconnect:
        cfg.reconnect.enabled = True
    _validated(cfg)

    click.echo(f"Streaming from {cfg.effective_stream_url()}", err=True)
    asyncio.run(run_daemon(cfg))


# ── Info ───────────────────────────────────────────────


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show the effective configuration."""
    cfg = _load(ctx)
    click.echo(f"Mode:          {cfg.mode.value}")
    click.echo(f"Service:       {cfg.base_url}")
    click.echo(f"Stream URL:    {cfg.effective_stream_url()}")
    click.echo(f"Page size:     {cfg.page_size}")
    click.echo(f"Window span:   {cfg.window_span} blocks")
    click.echo(f"Poll interval: {cfg.poll_interval}s")
    click.echo(f"Retries:       {cfg.max_attempts} attempts, backoff {cfg.retry_backoff}s")
    click.echo(f"Flow control:  {cfg.flow_control}")
    click.echo(f"From block:    {cfg.from_block}")
    click.echo(f"Address:       {cfg.address or '(any)'}")
    click.echo(f"Events:        {', '.join(cfg.event_names) or '(any)'}")
    click.echo(f"Reconnect:     {cfg.reconnect.enabled}")
    click.echo(f"DB path:       {cfg.db_path}")


@cli.command()
@click.pass_context
def progress(ctx: click.Context) -> None:
    """List saved progress for every poll subscription."""
    cfg = _load(ctx)

    async def _progress():
        store = SQLiteProgressStore(cfg.db_path)
        await store.initialize()
        try:
            records = await store.list_progress()
            if not records:
                click.echo("No progress recorded.")
                return
            for r in records:
                click.echo(
                    f"  {r.key}: next window {r.from_block}-{r.to_block} page {r.page_number} "
                    f"scanned_to={r.scan_latest_block_number} "
                    f"completed={r.scan_latest_block_completed} at={r.updated_at}"
                )
        finally:
            await store.close()

    asyncio.run(_progress())


@cli.command()
@click.option("-n", "--limit", type=int, default=20, help="Number of entries to show")
@click.pass_context
def activity(ctx: click.Context, limit: int) -> None:
    """Show the recent activity log."""
    cfg = _load(ctx)

    async def _activity():
        store = SQLiteProgressStore(cfg.db_path)
        await store.initialize()
        try:
            entries = await store.get_recent_activity(limit)
            if not entries:
                click.echo("No activity recorded.")
                return
            for e in entries:
                click.echo(f"  [{e.created_at}] {e.kind}: {e.message}")
        finally:
            await store.close()

    asyncio.run(_activity())


@cli.command()
@click.pass_context
def head(ctx: click.Context) -> None:
    """Query the service's latest block number."""
    cfg = _load(ctx)

    async def _head():
        policy = RetryPolicy(max_attempts=cfg.max_attempts, backoff=cfg.retry_backoff)
        async with RetryingFetcher(cfg.base_url, cfg.request_timeout, policy) as fetcher:
            try:
                number = await fetcher.latest_block_number()
            except ContractFeedError as exc:
                _fail(f"head query failed: {exc}")
            click.echo(str(number))

    asyncio.run(_head())


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
