"""
datamarket/cli.py

Command line interface.

Run with: datamarket --help

Without DATAMARKET_RPC_URL and both registry addresses configured, commands
run against an empty in-memory ledger, which is only useful for quotes and
for inspecting the local purchase cache.
"""

import json
import logging
import sys
from typing import Optional

import click
import trio

from .api import EngineAPI
from .config import CURRENCY_SYMBOL, EngineConfig
from .engine import MarketplaceEngine
from .errors import MarketError
from .ledger.memory import InMemoryLedger
from .metrics import MetricsCollector
from .session import Session
from .settlement.bounties import SORT_ORDERS, STATUS_FILTERS
from .settlement.fees import quote_purchase
from .settlement.purchase_cache import PurchaseCache
from .storage import FileBackend

logger = logging.getLogger("datamarket.cli")


def build_engine(config: EngineConfig) -> MarketplaceEngine:
    """Wire an engine from configuration."""
    if config.has_ledger:
        from .ledger.web3_client import Web3LedgerClient
        ledger = Web3LedgerClient.from_config(config)
    else:
        logger.warning("No ledger configured, using an empty in-memory ledger")
        ledger = InMemoryLedger(event_window=config.event_window)
    cache = PurchaseCache(FileBackend(config.storage_dir))
    return MarketplaceEngine(ledger, cache, metrics=MetricsCollector())


def _run(ctx: click.Context, method: str, *args):
    """Build the engine and run one of its coroutines under trio."""
    engine = build_engine(ctx.obj["config"])
    try:
        return trio.run(getattr(engine, method), *args)
    except MarketError as e:
        raise click.ClickException(str(e))
    except ValueError as e:
        raise click.BadParameter(str(e))


def _echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2))


@click.group()
@click.option('--storage-dir', type=click.Path(file_okay=False), default=None,
              help='Directory holding purchases.json (default: ~/.datamarket)')
@click.option('--rpc-url', default=None, help='EVM JSON-RPC endpoint of the registry ledger')
@click.option('-v', '--verbose', is_flag=True, help='Enable debug logging')
@click.pass_context
def cli(ctx: click.Context, storage_dir: Optional[str], rpc_url: Optional[str], verbose: bool):
    """Dataset marketplace settlement and reconciliation engine."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s [%(name)s] %(levelname)s: %(message)s',
    )
    try:
        config = EngineConfig.from_env({"storage_dir": storage_dir, "rpc_url": rpc_url})
    except ValueError as e:
        raise click.UsageError(str(e))
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@cli.command()
@click.argument('price')
@click.option('--json', 'as_json', is_flag=True, help='Print JSON')
def quote(price: str, as_json: bool):
    """Show the fee breakdown for a dataset PRICE."""
    try:
        breakdown = quote_purchase(price)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint='PRICE')
    if as_json:
        _echo_json(breakdown.to_dict())
        return
    click.echo(f"Price:         {breakdown.price} {CURRENCY_SYMBOL}")
    click.echo(f"Platform fee:  {breakdown.platform_fee} {CURRENCY_SYMBOL}")
    click.echo(f"Network fee:   ~{breakdown.network_fee_estimate} {CURRENCY_SYMBOL}")
    click.echo(f"Total:         {breakdown.total} {CURRENCY_SYMBOL}")


@cli.command()
@click.argument('account')
@click.option('--json', 'as_json', is_flag=True, help='Print JSON')
@click.pass_context
def purchases(ctx: click.Context, account: str, as_json: bool):
    """List the reconciled purchases of ACCOUNT."""
    views = _run(ctx, "reconcile_purchases", Session(account))
    if as_json:
        _echo_json([v.to_dict() for v in views])
        return
    if not views:
        click.echo("No purchases")
        return
    for view in views:
        click.echo(
            f"#{view.dataset.id:<5} {view.record.price:>12} {CURRENCY_SYMBOL}  "
            f"{view.dataset.category or '-':<16} {view.record.transaction_id}  [{view.source}]"
        )


@cli.command()
@click.argument('account')
@click.option('--days', type=click.IntRange(min=1), default=30, show_default=True)
@click.pass_context
def trend(ctx: click.Context, account: str, days: int):
    """Daily revenue of ACCOUNT's purchases over the last N days."""
    points = _run(ctx, "revenue_trend", Session(account), days)
    if not points:
        click.echo(f"No purchases in the last {days} days")
        return
    for point in points:
        click.echo(f"{point.day.isoformat()}  {point.revenue} {CURRENCY_SYMBOL}")


@cli.command()
@click.argument('account')
@click.option('--days', type=click.IntRange(min=1), default=30, show_default=True)
@click.pass_context
def analytics(ctx: click.Context, account: str, days: int):
    """Period-over-period revenue summary for ACCOUNT."""
    summary = _run(ctx, "period_analytics", Session(account), days)
    _echo_json(summary.to_dict())


@cli.command()
@click.option('--status', 'status_filter', type=click.Choice(STATUS_FILTERS), default='all', show_default=True)
@click.option('--sort', type=click.Choice(SORT_ORDERS), default='newest', show_default=True)
@click.pass_context
def bounties(ctx: click.Context, status_filter: str, sort: str):
    """List bounties."""
    found = _run(ctx, "list_bounties", status_filter, sort)
    if not found:
        click.echo("No bounties")
        return
    for bounty in found:
        click.echo(
            f"#{bounty.id:<5} {str(bounty.status):<10} {bounty.reward:>12} {CURRENCY_SYMBOL}  {bounty.title}"
        )


@cli.command()
@click.option('--host', default=None, help='Host to bind (default: DATAMARKET_API_HOST or 127.0.0.1)')
@click.option('--port', type=int, default=None, help='Port to listen on')
@click.pass_context
def serve(ctx: click.Context, host: Optional[str], port: Optional[int]):
    """Run the REST API."""
    config: EngineConfig = ctx.obj["config"]
    api = EngineAPI(
        build_engine(config),
        host=host or config.api_host,
        port=port or config.api_port,
    )
    try:
        trio.run(api.start)
    except KeyboardInterrupt:
        logger.info("API server stopped")
        sys.exit(0)


def main():
    cli(obj={})


if __name__ == '__main__':
    main()
