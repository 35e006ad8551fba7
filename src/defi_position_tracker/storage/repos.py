"""Repository pattern implementations for data access.

This module provides the event store adapter (idempotent on transaction
signature) and the manual override store.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from defi_position_tracker.classifier.models import (
    DomainEvent,
    EventKind,
    TokenDelta,
    decode_payload,
    encode_payload,
)
from defi_position_tracker.lifecycle.models import OverrideRecord
from defi_position_tracker.storage.models import PositionEventModel, PositionOverrideModel

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def _dialect_insert(session: AsyncSession, model: type[Any]) -> Any:
    if session.get_bind().dialect.name == "postgresql":
        return pg_insert(model)
    return sqlite_insert(model)


# ============================================================================
# Position events
# ============================================================================


@dataclass
class PositionEventDTO:
    """Data transfer object for stored position events."""

    signature: str
    wallet_address: str
    protocol: str
    kind: str
    position_id: str | None
    pool_id: str | None
    token_x_mint: str | None
    token_x_symbol: str | None
    token_x_amount: Decimal | None
    token_x_usd: Decimal | None
    token_y_mint: str | None
    token_y_symbol: str | None
    token_y_amount: Decimal | None
    token_y_usd: Decimal | None
    total_usd: Decimal
    block_time: int | None
    slot: int
    succeeded: bool
    fee_lamports: int
    payload: dict[str, Any]
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: PositionEventModel) -> PositionEventDTO:
        return cls(
            signature=model.signature,
            wallet_address=model.wallet_address,
            protocol=model.protocol,
            kind=model.kind,
            position_id=model.position_id,
            pool_id=model.pool_id,
            token_x_mint=model.token_x_mint,
            token_x_symbol=model.token_x_symbol,
            token_x_amount=model.token_x_amount,
            token_x_usd=model.token_x_usd,
            token_y_mint=model.token_y_mint,
            token_y_symbol=model.token_y_symbol,
            token_y_amount=model.token_y_amount,
            token_y_usd=model.token_y_usd,
            total_usd=model.total_usd,
            block_time=model.block_time,
            slot=model.slot,
            succeeded=model.succeeded,
            fee_lamports=model.fee_lamports,
            payload=model.payload,
            created_at=model.created_at,
        )

    @classmethod
    def from_event(cls, event: DomainEvent) -> PositionEventDTO:
        x, y = event.token_x, event.token_y
        return cls(
            signature=event.signature,
            wallet_address=event.wallet_address,
            protocol=event.protocol,
            kind=event.kind.value,
            position_id=event.position_id,
            pool_id=event.pool_id,
            token_x_mint=x.mint if x else None,
            token_x_symbol=x.symbol if x else None,
            token_x_amount=x.amount if x else None,
            token_x_usd=x.usd_value if x else None,
            token_y_mint=y.mint if y else None,
            token_y_symbol=y.symbol if y else None,
            token_y_amount=y.amount if y else None,
            token_y_usd=y.usd_value if y else None,
            total_usd=event.total_usd_value,
            block_time=event.block_time,
            slot=event.slot,
            succeeded=event.succeeded,
            fee_lamports=event.fee_lamports,
            payload=encode_payload(event.protocol, event.kind, event.payload),
        )

    def to_event(self) -> DomainEvent:
        _, kind, payload = decode_payload(self.payload)
        return DomainEvent(
            signature=self.signature,
            wallet_address=self.wallet_address,
            protocol=self.protocol,
            kind=EventKind(self.kind),
            position_id=self.position_id,
            pool_id=self.pool_id,
            token_x=_token(self.token_x_mint, self.token_x_symbol, self.token_x_amount, self.token_x_usd),
            token_y=_token(self.token_y_mint, self.token_y_symbol, self.token_y_amount, self.token_y_usd),
            total_usd_value=Decimal(self.total_usd),
            block_time=self.block_time,
            slot=self.slot,
            succeeded=self.succeeded,
            fee_lamports=self.fee_lamports,
            payload=payload,
        )


def _token(
    mint: str | None, symbol: str | None, amount: Decimal | None, usd: Decimal | None
) -> TokenDelta | None:
    if mint is None or amount is None:
        return None
    return TokenDelta(mint=mint, symbol=symbol, amount=Decimal(amount), usd_value=Decimal(usd or 0))


@dataclass
class EventStatsDTO:
    """Aggregate counts for a wallet's stored events."""

    total: int
    last_7_days: int
    last_30_days: int
    successful: int
    failed: int
    by_kind: dict[str, int] = field(default_factory=dict)
    last_synced_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "last_7_days": self.last_7_days,
            "last_30_days": self.last_30_days,
            "successful": self.successful,
            "failed": self.failed,
            "by_kind": dict(self.by_kind),
            "last_synced_at": self.last_synced_at.isoformat() if self.last_synced_at else None,
        }


class PositionEventRepository:
    """Event store keyed by transaction signature.

    ``upsert`` never updates: a confirmed transaction cannot change, so a
    second write for the same signature is a no-op.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert(self, dto: PositionEventDTO) -> bool:
        """Insert the event unless its signature is already stored.

        Returns:
            True if a new row was written.
        """
        values = {
            "signature": dto.signature,
            "wallet_address": dto.wallet_address,
            "protocol": dto.protocol,
            "kind": dto.kind,
            "position_id": dto.position_id,
            "pool_id": dto.pool_id,
            "token_x_mint": dto.token_x_mint,
            "token_x_symbol": dto.token_x_symbol,
            "token_x_amount": dto.token_x_amount,
            "token_x_usd": dto.token_x_usd,
            "token_y_mint": dto.token_y_mint,
            "token_y_symbol": dto.token_y_symbol,
            "token_y_amount": dto.token_y_amount,
            "token_y_usd": dto.token_y_usd,
            "total_usd": dto.total_usd,
            "block_time": dto.block_time,
            "slot": dto.slot,
            "succeeded": dto.succeeded,
            "fee_lamports": dto.fee_lamports,
            "payload": dto.payload,
            "created_at": dto.created_at or datetime.now(UTC),
        }
        stmt = _dialect_insert(self.session, PositionEventModel).values(**values)
        stmt = stmt.on_conflict_do_nothing(index_elements=["signature"])
        result = await self.session.execute(stmt)
        await self.session.flush()
        return (result.rowcount or 0) > 0

    async def get_by_signature(self, signature: str) -> PositionEventDTO | None:
        result = await self.session.execute(
            select(PositionEventModel).where(PositionEventModel.signature == signature)
        )
        model = result.scalar_one_or_none()
        return PositionEventDTO.from_model(model) if model else None

    async def existing_signatures(self, signatures: Iterable[str]) -> set[str]:
        wanted = list(dict.fromkeys(signatures))
        if not wanted:
            return set()
        result = await self.session.execute(
            select(PositionEventModel.signature).where(PositionEventModel.signature.in_(wanted))
        )
        return set(result.scalars().all())

    async def list_for_wallet(
        self,
        wallet_address: str,
        *,
        protocol: str | None = None,
        kinds: Sequence[EventKind] | None = None,
        position_id: str | None = None,
        since: int | None = None,
        limit: int | None = None,
    ) -> list[PositionEventDTO]:
        """Query a wallet's events, most recent first.

        Args:
            wallet_address: Wallet whose events to return.
            protocol: Only this protocol slug.
            kinds: Only these kinds.
            position_id: Only this position identifier.
            since: Only events with ``block_time >= since`` (unix seconds).
            limit: Maximum rows.
        """
        stmt = select(PositionEventModel).where(PositionEventModel.wallet_address == wallet_address)
        if protocol is not None:
            stmt = stmt.where(PositionEventModel.protocol == protocol)
        if kinds:
            stmt = stmt.where(PositionEventModel.kind.in_([k.value for k in kinds]))
        if position_id is not None:
            stmt = stmt.where(PositionEventModel.position_id == position_id)
        if since is not None:
            stmt = stmt.where(PositionEventModel.block_time >= since)
        stmt = stmt.order_by(
            PositionEventModel.block_time.desc().nulls_last(), PositionEventModel.signature
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return [PositionEventDTO.from_model(m) for m in result.scalars().all()]

    async def delete_for_wallet(self, wallet_address: str) -> int:
        """Delete every event for a wallet. Returns the number of rows removed."""
        result = await self.session.execute(
            delete(PositionEventModel).where(PositionEventModel.wallet_address == wallet_address)
        )
        await self.session.flush()
        deleted = result.rowcount or 0
        logger.info("Deleted %d events for wallet %s", deleted, wallet_address)
        return deleted

    async def last_synced_at(self, wallet_address: str) -> datetime | None:
        result = await self.session.execute(
            select(func.max(PositionEventModel.created_at)).where(
                PositionEventModel.wallet_address == wallet_address
            )
        )
        value = result.scalar_one_or_none()
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value

    async def get_stats(self, wallet_address: str, *, now: datetime | None = None) -> EventStatsDTO:
        now = now or datetime.now(UTC)
        week_ago = int((now - timedelta(days=7)).timestamp())
        month_ago = int((now - timedelta(days=30)).timestamp())
        wallet_filter = PositionEventModel.wallet_address == wallet_address

        by_kind_rows = await self.session.execute(
            select(PositionEventModel.kind, func.count())
            .where(wallet_filter)
            .group_by(PositionEventModel.kind)
        )
        by_kind = {str(kind): int(count) for kind, count in by_kind_rows.all()}

        async def count(*conditions: Any) -> int:
            result = await self.session.execute(
                select(func.count()).select_from(PositionEventModel).where(wallet_filter, *conditions)
            )
            return int(result.scalar_one())

        total = sum(by_kind.values())
        successful = await count(PositionEventModel.succeeded.is_(True))
        return EventStatsDTO(
            total=total,
            last_7_days=await count(PositionEventModel.block_time >= week_ago),
            last_30_days=await count(PositionEventModel.block_time >= month_ago),
            successful=successful,
            failed=total - successful,
            by_kind=by_kind,
            last_synced_at=await self.last_synced_at(wallet_address),
        )


# ============================================================================
# Manual overrides
# ============================================================================


@dataclass
class PositionOverrideDTO:
    """Data transfer object for manual P&L overrides."""

    wallet_address: str
    protocol: str
    position_id: str
    profit_usd: Decimal
    pnl_percent: Decimal | None = None
    source: str = "manual"
    pair_name: str | None = None
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: PositionOverrideModel) -> PositionOverrideDTO:
        return cls(
            wallet_address=model.wallet_address,
            protocol=model.protocol,
            position_id=model.position_id,
            profit_usd=model.profit_usd,
            pnl_percent=model.pnl_percent,
            source=model.source,
            pair_name=model.pair_name,
            notes=model.notes,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def to_record(self) -> OverrideRecord:
        return OverrideRecord(
            position_id=self.position_id,
            protocol=self.protocol,
            profit_usd=Decimal(self.profit_usd),
            pnl_percent=Decimal(self.pnl_percent) if self.pnl_percent is not None else None,
            source=self.source,
            created_at=self.updated_at or self.created_at,
        )


class PositionOverrideRepository:
    """Repository for manual overrides (one per wallet, protocol and position)."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert(self, dto: PositionOverrideDTO) -> PositionOverrideDTO:
        now = datetime.now(UTC)
        values = {
            "wallet_address": dto.wallet_address,
            "protocol": dto.protocol,
            "position_id": dto.position_id,
            "profit_usd": dto.profit_usd,
            "pnl_percent": dto.pnl_percent,
            "source": dto.source,
            "pair_name": dto.pair_name,
            "notes": dto.notes,
            "created_at": dto.created_at or now,
            "updated_at": now,
        }
        stmt = _dialect_insert(self.session, PositionOverrideModel).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["wallet_address", "protocol", "position_id"],
            set_={
                "profit_usd": stmt.excluded.profit_usd,
                "pnl_percent": stmt.excluded.pnl_percent,
                "source": stmt.excluded.source,
                "pair_name": stmt.excluded.pair_name,
                "notes": stmt.excluded.notes,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()
        stored = await self.get(dto.wallet_address, dto.protocol, dto.position_id)
        assert stored is not None
        return stored

    async def get(
        self, wallet_address: str, protocol: str, position_id: str
    ) -> PositionOverrideDTO | None:
        result = await self.session.execute(
            select(PositionOverrideModel)
            .where(
                PositionOverrideModel.wallet_address == wallet_address,
                PositionOverrideModel.protocol == protocol,
                PositionOverrideModel.position_id == position_id,
            )
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return PositionOverrideDTO.from_model(model) if model else None

    async def list_for_wallet(self, wallet_address: str) -> list[PositionOverrideDTO]:
        result = await self.session.execute(
            select(PositionOverrideModel)
            .where(PositionOverrideModel.wallet_address == wallet_address)
            .order_by(PositionOverrideModel.created_at.desc())
        )
        return [PositionOverrideDTO.from_model(m) for m in result.scalars().all()]

    async def delete(self, wallet_address: str, protocol: str, position_id: str) -> bool:
        result = await self.session.execute(
            delete(PositionOverrideModel).where(
                PositionOverrideModel.wallet_address == wallet_address,
                PositionOverrideModel.protocol == protocol,
                PositionOverrideModel.position_id == position_id,
            )
        )
        await self.session.flush()
        return (result.rowcount or 0) > 0
