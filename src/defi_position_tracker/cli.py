"""Command-line entry point.

Every subcommand prints a single JSON document to stdout. Invalid input
and unreachable storage exit with status 1.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from redis.asyncio import Redis
from sqlalchemy.exc import SQLAlchemyError

from defi_position_tracker.classifier import ClassifierConfig, TransactionClassifier
from defi_position_tracker.config import Settings, get_settings
from defi_position_tracker.ledger import LedgerClient, SolPriceOracle
from defi_position_tracker.storage import DatabaseManager
from defi_position_tracker.sync import (
    InvalidSyncParameterError,
    InvalidWalletAddressError,
    WalletSyncService,
)

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    settings: Settings
    db: DatabaseManager
    ledger: LedgerClient
    oracle: SolPriceOracle
    redis: Redis | None
    service: WalletSyncService

    async def aclose(self) -> None:
        await self.ledger.aclose()
        await self.oracle.aclose()
        await self.db.dispose_async()
        if self.redis is not None:
            await self.redis.aclose()


def build_runtime(settings: Settings) -> Runtime:
    """Wire the sync service and its collaborators from settings."""
    redis = Redis.from_url(settings.redis.url) if settings.redis.url else None
    db = DatabaseManager(settings.database.url)
    ledger = LedgerClient(
        settings.solana.rpc_url,
        fallback_rpc_url=settings.solana.fallback_rpc_url,
        redis=redis,
        commitment=settings.solana.commitment,
        cache_ttl_seconds=settings.solana.transaction_cache_ttl_seconds,
        max_requests_per_second=settings.solana.max_requests_per_second,
        max_retries=settings.solana.max_retries,
        retry_delay_seconds=settings.solana.retry_delay_seconds,
        request_timeout=settings.solana.request_timeout_seconds,
    )
    oracle = SolPriceOracle(
        api_url=settings.price.api_url,
        redis=redis,
        fallback_price=settings.price.fallback_sol_usd,
        cache_ttl_seconds=settings.price.cache_ttl_seconds,
        timeout_seconds=settings.price.timeout_seconds,
    )
    classifier = TransactionClassifier(ClassifierConfig.for_slugs(settings.sync.protocol_slugs))
    service = WalletSyncService.from_settings(
        settings, ledger, db, classifier, price_oracle=oracle
    )
    return Runtime(settings, db, ledger, oracle, redis, service)


def _decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation as e:
        raise argparse.ArgumentTypeError(f"not a decimal number: {value!r}") from e


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="defi-position-tracker",
        description="Ingest Solana wallet history and reconstruct DeFi position lifecycles",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create database tables")

    for name, help_text in (
        ("sync", "Fetch and classify new transactions for a wallet"),
        ("resync", "Clear a wallet's events and sync again from the newest signature"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("wallet", help="Base58 wallet address")
        p.add_argument("--max-signatures", type=int, default=None, help="Transactions to fetch")
        p.add_argument("--delay-ms", type=int, default=None, help="Delay between fetches")
        if name == "sync":
            p.add_argument("--before", default=None, help="Resume after this signature")

    p = sub.add_parser("clear", help="Delete all stored events for a wallet")
    p.add_argument("wallet")

    p = sub.add_parser("positions", help="Print reconstructed lifecycles and P&L")
    p.add_argument("wallet")

    p = sub.add_parser("stats", help="Print stored event counts")
    p.add_argument("wallet")

    p = sub.add_parser("override", help="Record a manual profit figure for a closed position")
    p.add_argument("wallet")
    p.add_argument("position_id")
    p.add_argument("--profit-usd", type=_decimal, required=True)
    p.add_argument("--protocol", default="meteora-dlmm")
    p.add_argument("--pnl-percent", type=_decimal, default=None)
    p.add_argument("--pair-name", default=None)
    p.add_argument("--notes", default=None)

    return parser.parse_args(argv)


async def _run_command(args: argparse.Namespace, runtime: Runtime) -> dict[str, Any]:
    service = runtime.service

    if args.command == "init-db":
        await runtime.db.init_schema_async()
        return {"status": "ok"}
    if args.command == "sync":
        stats = await service.sync(
            args.wallet,
            max_signatures=args.max_signatures,
            inter_request_delay_ms=args.delay_ms,
            before=args.before,
        )
        return stats.to_dict()
    if args.command == "resync":
        deleted, stats = await service.clear_and_resync(
            args.wallet,
            max_signatures=args.max_signatures,
            inter_request_delay_ms=args.delay_ms,
        )
        return {"deleted": deleted, "sync": stats.to_dict()}
    if args.command == "clear":
        return {"deleted": await service.clear(args.wallet)}
    if args.command == "positions":
        return (await service.reconstruct(args.wallet)).to_dict()
    if args.command == "stats":
        return (await service.event_stats(args.wallet)).to_dict()
    if args.command == "override":
        dto = await service.record_override(
            args.wallet,
            args.position_id,
            args.profit_usd,
            protocol=args.protocol,
            pnl_percent=args.pnl_percent,
            pair_name=args.pair_name,
            notes=args.notes,
        )
        return {
            "wallet_address": dto.wallet_address,
            "protocol": dto.protocol,
            "position_id": dto.position_id,
            "profit_usd": str(dto.profit_usd),
            "pnl_percent": str(dto.pnl_percent) if dto.pnl_percent is not None else None,
            "source": dto.source,
        }
    raise ValueError(f"Unknown command: {args.command}")


async def run(
    args: argparse.Namespace,
    settings: Settings,
    *,
    runtime_factory: Callable[[Settings], Runtime] = build_runtime,
    emit: Callable[[dict[str, Any]], Awaitable[None] | None] | None = None,
) -> int:
    """Execute one subcommand and return the process exit code."""
    runtime = runtime_factory(settings)
    try:
        result = await _run_command(args, runtime)
    except (InvalidWalletAddressError, InvalidSyncParameterError) as e:
        result, code = {"error": str(e)}, 1
    except (SQLAlchemyError, OSError) as e:
        # asyncpg surfaces a refused connection as a bare OSError.
        logger.error("Storage unavailable: %s", e)
        result, code = {"error": f"storage unavailable: {type(e).__name__}"}, 1
    else:
        code = 0
    finally:
        await runtime.aclose()

    if emit is None:
        print(json.dumps(result, indent=2, default=str))
    else:
        maybe = emit(result)
        if maybe is not None:
            await maybe
    return code


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    settings = get_settings()
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.debug("Settings: %s", settings.redacted_summary())
    sys.exit(asyncio.run(run(args, settings)))


if __name__ == "__main__":
    main()
