"""Wallet sync service.

This module provides the WalletSyncService, the single entry point that
runs one bounded ingestion pass for a wallet:

    signature pagination -> rate-limited fetch -> classification -> event store

It also exposes clear/resync and the read side (lifecycle reconstruction
with manual overrides applied). Per-signature problems never abort a sync;
they are counted or listed in the returned statistics. Invalid input fails
before any network call, and an unreachable store fails the whole call.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections import Counter
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from solders.pubkey import Pubkey
from sqlalchemy.exc import SQLAlchemyError

from defi_position_tracker.classifier.classifier import PriceBook, TransactionClassifier
from defi_position_tracker.classifier.models import DomainEvent
from defi_position_tracker.ledger.batch import BatchFetcher, BatchFetcherConfig
from defi_position_tracker.ledger.client import LedgerClientError
from defi_position_tracker.ledger.signatures import SignatureFetcher
from defi_position_tracker.lifecycle.models import Reconstruction
from defi_position_tracker.lifecycle.overrides import OverrideReconciler
from defi_position_tracker.lifecycle.reconstructor import LifecycleReconstructor
from defi_position_tracker.storage.repos import (
    EventStatsDTO,
    PositionEventDTO,
    PositionEventRepository,
    PositionOverrideDTO,
    PositionOverrideRepository,
)

if TYPE_CHECKING:
    from defi_position_tracker.config import Settings, SyncSettings
    from defi_position_tracker.ledger.client import LedgerClient
    from defi_position_tracker.ledger.price import SolPriceOracle
    from defi_position_tracker.storage.database import DatabaseManager

logger = logging.getLogger(__name__)

_BASE58_ADDRESS_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")

DEFAULT_FALLBACK_SOL_USD = Decimal("190")


class InvalidWalletAddressError(ValueError):
    """Raised when a wallet address is not a valid base58 public key."""


class InvalidSyncParameterError(ValueError):
    """Raised when a sync bound is out of range."""


def validate_wallet_address(address: str) -> str:
    """Return the address unchanged if it is a valid Solana public key.

    Base58 is case-sensitive, so the address is never normalized.
    """
    if not isinstance(address, str) or not _BASE58_ADDRESS_RE.match(address):
        raise InvalidWalletAddressError(f"Invalid Solana wallet address: {address!r}")
    try:
        Pubkey.from_string(address)
    except ValueError as e:
        raise InvalidWalletAddressError(f"Invalid Solana wallet address: {address!r}") from e
    return address


@dataclass
class SyncError:
    signature: str
    stage: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"signature": self.signature, "stage": self.stage, "message": self.message}


@dataclass
class SyncStats:
    """Everything that happened during one sync call."""

    wallet_address: str
    requested_max_signatures: int
    effective_max_signatures: int
    inter_request_delay_ms: int
    signatures_scanned: int = 0
    already_stored: int = 0
    total_fetched: int = 0
    missing: int = 0
    fetch_failures: int = 0
    classified: int = 0
    stored: int = 0
    duplicates: int = 0
    by_kind: dict[str, int] = field(default_factory=dict)
    errors: list[SyncError] = field(default_factory=list)
    next_cursor: str | None = None
    sol_usd_rate: Decimal | None = None
    price_source: str | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None

    @property
    def clamped(self) -> bool:
        return self.effective_max_signatures != self.requested_max_signatures

    def to_dict(self) -> dict[str, Any]:
        return {
            "wallet_address": self.wallet_address,
            "requested_max_signatures": self.requested_max_signatures,
            "effective_max_signatures": self.effective_max_signatures,
            "clamped": self.clamped,
            "inter_request_delay_ms": self.inter_request_delay_ms,
            "signatures_scanned": self.signatures_scanned,
            "already_stored": self.already_stored,
            "total_fetched": self.total_fetched,
            "missing": self.missing,
            "fetch_failures": self.fetch_failures,
            "classified": self.classified,
            "stored": self.stored,
            "duplicates": self.duplicates,
            "by_kind": dict(self.by_kind),
            "errors": [e.to_dict() for e in self.errors],
            "next_cursor": self.next_cursor,
            "sol_usd_rate": str(self.sol_usd_rate) if self.sol_usd_rate is not None else None,
            "price_source": self.price_source,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


@dataclass
class _WalletLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


@dataclass(frozen=True)
class SyncBounds:
    default_max_signatures: int = 15
    max_signatures_cap: int = 50
    inter_request_delay_ms: int = 500
    signature_page_size: int = 1000
    max_history_signatures: int = 1000
    fetch_concurrency: int = 1
    fetch_timeout_seconds: float = 45.0

    @classmethod
    def from_settings(cls, settings: SyncSettings) -> SyncBounds:
        return cls(
            default_max_signatures=settings.default_max_signatures,
            max_signatures_cap=settings.max_signatures_cap,
            inter_request_delay_ms=settings.inter_request_delay_ms,
            signature_page_size=settings.signature_page_size,
            max_history_signatures=settings.max_history_signatures,
            fetch_concurrency=settings.fetch_concurrency,
            fetch_timeout_seconds=settings.fetch_timeout_seconds,
        )


class WalletSyncService:
    """Runs bounded, idempotent sync passes and serves lifecycle reads.

    Example:
        ```python
        service = WalletSyncService(ledger, db, classifier, price_oracle=oracle)
        stats = await service.sync(wallet, max_signatures=15)
        view = await service.reconstruct(wallet)
        ```
    """

    def __init__(
        self,
        ledger: LedgerClient,
        db: DatabaseManager,
        classifier: TransactionClassifier,
        *,
        price_oracle: SolPriceOracle | None = None,
        bounds: SyncBounds | None = None,
        fallback_sol_usd: Decimal = DEFAULT_FALLBACK_SOL_USD,
        reconstructor: LifecycleReconstructor | None = None,
        reconciler: OverrideReconciler | None = None,
    ) -> None:
        self._ledger = ledger
        self._db = db
        self._classifier = classifier
        self._price_oracle = price_oracle
        self._bounds = bounds or SyncBounds()
        self._fallback_sol_usd = fallback_sol_usd
        self._reconstructor = reconstructor or LifecycleReconstructor()
        self._reconciler = reconciler or OverrideReconciler()
        self._signatures = SignatureFetcher(ledger, page_size=self._bounds.signature_page_size)
        self._wallet_locks: dict[str, _WalletLock] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        ledger: LedgerClient,
        db: DatabaseManager,
        classifier: TransactionClassifier,
        *,
        price_oracle: SolPriceOracle | None = None,
    ) -> WalletSyncService:
        return cls(
            ledger,
            db,
            classifier,
            price_oracle=price_oracle,
            bounds=SyncBounds.from_settings(settings.sync),
            fallback_sol_usd=settings.price.fallback_sol_usd,
        )

    @asynccontextmanager
    async def _exclusive(self, wallet_address: str) -> AsyncIterator[None]:
        """Hold the wallet's lock; the entry is dropped once nobody holds or waits on it."""
        entry = self._wallet_locks.get(wallet_address)
        if entry is None:
            entry = _WalletLock()
            self._wallet_locks[wallet_address] = entry
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._wallet_locks[wallet_address]

    def _resolve_bounds(
        self, max_signatures: int | None, inter_request_delay_ms: int | None
    ) -> tuple[int, int, int]:
        requested = self._bounds.default_max_signatures if max_signatures is None else max_signatures
        if isinstance(requested, bool) or not isinstance(requested, int) or requested < 1:
            raise InvalidSyncParameterError(f"max_signatures must be a positive integer, got {requested!r}")
        effective = min(requested, self._bounds.max_signatures_cap)
        if effective != requested:
            logger.warning(
                "max_signatures %d clamped to %d", requested, self._bounds.max_signatures_cap
            )

        delay = (
            self._bounds.inter_request_delay_ms
            if inter_request_delay_ms is None
            else inter_request_delay_ms
        )
        if isinstance(delay, bool) or not isinstance(delay, int) or delay < 0:
            raise InvalidSyncParameterError(
                f"inter_request_delay_ms must be a non-negative integer, got {delay!r}"
            )
        return requested, effective, delay

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    async def sync(
        self,
        wallet_address: str,
        *,
        max_signatures: int | None = None,
        inter_request_delay_ms: int | None = None,
        before: str | None = None,
    ) -> SyncStats:
        """Ingest up to ``max_signatures`` not-yet-stored transactions.

        Args:
            wallet_address: Base58 wallet address.
            max_signatures: Transactions to fetch; clamped to the configured cap.
            inter_request_delay_ms: Minimum delay between detail fetches.
            before: Resume the history walk after this signature.

        Returns:
            Completed statistics, including per-signature errors.

        Raises:
            InvalidWalletAddressError: If the address is malformed.
            InvalidSyncParameterError: If a bound is out of range.
            SQLAlchemyError: If the event store cannot be reached at all.
        """
        validate_wallet_address(wallet_address)
        requested, effective, delay_ms = self._resolve_bounds(max_signatures, inter_request_delay_ms)
        if before is not None:
            before = before.strip() or None

        async with self._exclusive(wallet_address):
            return await self._sync_locked(wallet_address, requested, effective, delay_ms, before)

    async def _sync_locked(
        self,
        wallet_address: str,
        requested: int,
        effective: int,
        delay_ms: int,
        before: str | None,
    ) -> SyncStats:
        stats = SyncStats(
            wallet_address=wallet_address,
            requested_max_signatures=requested,
            effective_max_signatures=effective,
            inter_request_delay_ms=delay_ms,
            next_cursor=before,
        )

        # Store reachability is checked before any ledger traffic.
        async with self._db.get_async_session() as session:
            await PositionEventRepository(session).existing_signatures([""])

        pending = await self._collect_pending(wallet_address, effective, before, stats)
        if not pending:
            stats.finished_at = datetime.now(UTC)
            logger.info("Sync %s: nothing new (scanned=%d)", wallet_address, stats.signatures_scanned)
            return stats

        prices = await self._price_book(stats)

        fetcher = BatchFetcher(
            self._ledger,
            BatchFetcherConfig(
                inter_request_delay_ms=delay_ms,
                max_concurrency=self._bounds.fetch_concurrency,
                max_batch_size=self._bounds.max_signatures_cap,
                fetch_timeout_seconds=self._bounds.fetch_timeout_seconds,
            ),
        )
        batch = await fetcher.fetch(pending)
        stats.total_fetched = batch.fetched
        stats.missing = batch.missing
        stats.fetch_failures = batch.failed

        events: list[DomainEvent] = []
        for signature, tx in batch.pairs():
            if tx is None:
                continue
            try:
                event = self._classifier.classify_any(
                    tx, wallet_address=wallet_address, prices=prices
                )
            except (ValueError, KeyError, TypeError, ArithmeticError) as e:
                logger.warning("Classification failed for %s: %s", signature, e)
                stats.errors.append(SyncError(signature, "classify", f"{type(e).__name__}: {e}"))
                continue
            if event is not None:
                events.append(event)

        stats.classified = len(events)
        stats.by_kind = dict(Counter(e.kind.value for e in events))
        await self._store(events, stats)

        stats.finished_at = datetime.now(UTC)
        logger.info(
            "Sync %s: scanned=%d fetched=%d classified=%d stored=%d duplicates=%d "
            "missing=%d failures=%d errors=%d",
            wallet_address,
            stats.signatures_scanned,
            stats.total_fetched,
            stats.classified,
            stats.stored,
            stats.duplicates,
            stats.missing,
            stats.fetch_failures,
            len(stats.errors),
        )
        return stats

    async def _collect_pending(
        self,
        wallet_address: str,
        limit: int,
        before: str | None,
        stats: SyncStats,
    ) -> list[str]:
        """Walk history most-recent-first, keeping up to ``limit`` unseen signatures."""
        pending: list[str] = []
        page: list[str] = []
        page_size = self._bounds.signature_page_size

        async def drain(chunk: list[str]) -> bool:
            async with self._db.get_async_session() as session:
                known = await PositionEventRepository(session).existing_signatures(chunk)
            for signature in chunk:
                stats.next_cursor = signature
                if signature in known:
                    stats.already_stored += 1
                    continue
                pending.append(signature)
                if len(pending) >= limit:
                    return True
            return False

        try:
            async for record in self._signatures.iter_signatures(
                wallet_address,
                max_records=self._bounds.max_history_signatures,
                before=before,
            ):
                stats.signatures_scanned += 1
                page.append(record.signature)
                if len(page) >= min(page_size, limit):
                    done = await drain(page)
                    page = []
                    if done:
                        break
        except (LedgerClientError, ValueError) as e:
            logger.warning("Signature listing failed for %s: %s", wallet_address, e)
            stats.errors.append(SyncError("signatures", "list", f"{type(e).__name__}: {e}"))

        if page and len(pending) < limit:
            await drain(page)
        return pending

    async def _price_book(self, stats: SyncStats) -> PriceBook:
        if self._price_oracle is None:
            rate, source = self._fallback_sol_usd, "default"
        else:
            quote = await self._price_oracle.get_sol_usd()
            rate, source = quote.price, quote.source
        stats.sol_usd_rate = rate
        stats.price_source = source
        return PriceBook(sol_usd=rate)

    async def _store(self, events: list[DomainEvent], stats: SyncStats) -> None:
        async with self._db.get_async_session() as session:
            repo = PositionEventRepository(session)
            for event in events:
                try:
                    async with session.begin_nested():
                        inserted = await repo.upsert(PositionEventDTO.from_event(event))
                except SQLAlchemyError as e:
                    logger.warning("Store failed for %s: %s", event.signature, e)
                    stats.errors.append(SyncError(event.signature, "store", f"{type(e).__name__}: {e}"))
                    continue
                if inserted:
                    stats.stored += 1
                else:
                    stats.duplicates += 1

    # ------------------------------------------------------------------
    # Corrections
    # ------------------------------------------------------------------

    async def clear(self, wallet_address: str) -> int:
        """Delete every stored event for the wallet."""
        validate_wallet_address(wallet_address)
        async with self._exclusive(wallet_address):
            return await self._clear_locked(wallet_address)

    async def _clear_locked(self, wallet_address: str) -> int:
        async with self._db.get_async_session() as session:
            return await PositionEventRepository(session).delete_for_wallet(wallet_address)

    async def clear_and_resync(
        self,
        wallet_address: str,
        *,
        max_signatures: int | None = None,
        inter_request_delay_ms: int | None = None,
    ) -> tuple[int, SyncStats]:
        """Delete the wallet's events and ingest again from the most recent signature."""
        validate_wallet_address(wallet_address)
        requested, effective, delay_ms = self._resolve_bounds(max_signatures, inter_request_delay_ms)
        async with self._exclusive(wallet_address):
            deleted = await self._clear_locked(wallet_address)
            stats = await self._sync_locked(wallet_address, requested, effective, delay_ms, None)
        return deleted, stats

    async def record_override(
        self,
        wallet_address: str,
        position_id: str,
        profit_usd: Decimal,
        *,
        protocol: str = "meteora-dlmm",
        pnl_percent: Decimal | None = None,
        pair_name: str | None = None,
        notes: str | None = None,
        source: str = "manual",
    ) -> PositionOverrideDTO:
        validate_wallet_address(wallet_address)
        if not position_id:
            raise InvalidSyncParameterError("position_id is required")
        async with self._db.get_async_session() as session:
            return await PositionOverrideRepository(session).upsert(
                PositionOverrideDTO(
                    wallet_address=wallet_address,
                    protocol=protocol,
                    position_id=position_id,
                    profit_usd=profit_usd,
                    pnl_percent=pnl_percent,
                    source=source,
                    pair_name=pair_name,
                    notes=notes,
                )
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def reconstruct(self, wallet_address: str) -> Reconstruction:
        """Lifecycle view of the wallet with manual overrides applied."""
        validate_wallet_address(wallet_address)
        async with self._db.get_async_session() as session:
            rows = await PositionEventRepository(session).list_for_wallet(wallet_address)
            overrides = await PositionOverrideRepository(session).list_for_wallet(wallet_address)
        reconstruction = self._reconstructor.reconstruct(
            wallet_address, (row.to_event() for row in rows)
        )
        return self._reconciler.apply(reconstruction, (o.to_record() for o in overrides))

    async def event_stats(self, wallet_address: str) -> EventStatsDTO:
        validate_wallet_address(wallet_address)
        async with self._db.get_async_session() as session:
            return await PositionEventRepository(session).get_stats(wallet_address)
