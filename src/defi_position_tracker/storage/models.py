"""SQLAlchemy models for persistent storage.

This module defines the database schema for classified position events
and manual P&L overrides.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class PositionEventModel(Base):
    """One classified transaction per signature (immutable once stored)."""

    __tablename__ = "position_events"

    signature: Mapped[str] = mapped_column(String(100), primary_key=True)
    wallet_address: Mapped[str] = mapped_column(String(44), nullable=False)
    protocol: Mapped[str] = mapped_column(String(40), nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)

    position_id: Mapped[str | None] = mapped_column(String(44), nullable=True)
    pool_id: Mapped[str | None] = mapped_column(String(44), nullable=True)

    token_x_mint: Mapped[str | None] = mapped_column(String(44), nullable=True)
    token_x_symbol: Mapped[str | None] = mapped_column(String(20), nullable=True)
    token_x_amount: Mapped[Decimal | None] = mapped_column(Numeric(38, 12), nullable=True)
    token_x_usd: Mapped[Decimal | None] = mapped_column(Numeric(30, 6), nullable=True)
    token_y_mint: Mapped[str | None] = mapped_column(String(44), nullable=True)
    token_y_symbol: Mapped[str | None] = mapped_column(String(20), nullable=True)
    token_y_amount: Mapped[Decimal | None] = mapped_column(Numeric(38, 12), nullable=True)
    token_y_usd: Mapped[Decimal | None] = mapped_column(Numeric(30, 6), nullable=True)

    total_usd: Mapped[Decimal] = mapped_column(Numeric(30, 6), nullable=False)

    block_time: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    slot: Mapped[int] = mapped_column(BigInteger, nullable=False)
    succeeded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    fee_lamports: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # Tagged payload, see classifier.models.encode_payload.
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        Index("idx_position_events_wallet_time", "wallet_address", "block_time"),
        Index("idx_position_events_wallet_position", "wallet_address", "position_id"),
        Index("idx_position_events_wallet_kind", "wallet_address", "kind"),
    )


class PositionOverrideModel(Base):
    """User-supplied realized P&L for a position the classifier cannot resolve."""

    __tablename__ = "position_overrides"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    wallet_address: Mapped[str] = mapped_column(String(44), nullable=False)
    protocol: Mapped[str] = mapped_column(String(40), nullable=False)
    position_id: Mapped[str] = mapped_column(String(44), nullable=False)

    profit_usd: Mapped[Decimal] = mapped_column(Numeric(30, 6), nullable=False)
    pnl_percent: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    source: Mapped[str] = mapped_column(String(40), nullable=False, default="manual")
    pair_name: Mapped[str | None] = mapped_column(String(80), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        UniqueConstraint(
            "wallet_address", "protocol", "position_id", name="uq_position_overrides_position"
        ),
        Index("idx_position_overrides_wallet", "wallet_address"),
    )
