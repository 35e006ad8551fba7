"""Data models for reconstructed position lifecycles."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from defi_position_tracker.classifier.models import DomainEvent

ZERO = Decimal(0)


def _money(value: Decimal) -> str:
    return str(value)


@dataclass(frozen=True)
class PositionLifecycle:
    """Every event for one (protocol, position identifier).

    The same on-chain identifier can be opened and closed more than once,
    so activity is counted in occurrences rather than as a flag.
    """

    protocol: str
    position_id: str
    pool_id: str | None
    open_count: int
    close_count: int
    fee_claim_count: int
    invested_usd: Decimal
    withdrawn_usd: Decimal
    fees_usd: Decimal
    first_activity_at: int | None
    last_activity_at: int | None
    latest_open: DomainEvent | None
    events: tuple[DomainEvent, ...]

    @property
    def active_count(self) -> int:
        return max(self.open_count - self.close_count, 0)

    @property
    def is_active(self) -> bool:
        return self.active_count > 0

    @property
    def is_closed(self) -> bool:
        return self.close_count > 0 and self.active_count == 0

    @property
    def realized_pnl(self) -> Decimal:
        return self.withdrawn_usd + self.fees_usd - self.invested_usd

    def to_dict(self) -> dict[str, Any]:
        return {
            "protocol": self.protocol,
            "position_id": self.position_id,
            "pool_id": self.pool_id,
            "open_count": self.open_count,
            "close_count": self.close_count,
            "fee_claim_count": self.fee_claim_count,
            "active_count": self.active_count,
            "invested_usd": _money(self.invested_usd),
            "withdrawn_usd": _money(self.withdrawn_usd),
            "fees_usd": _money(self.fees_usd),
            "realized_pnl": _money(self.realized_pnl),
            "first_activity_at": self.first_activity_at,
            "last_activity_at": self.last_activity_at,
            "signatures": [e.signature for e in self.events],
        }


@dataclass(frozen=True)
class ActivePosition:
    """A currently open occurrence, valued at its most recent open."""

    protocol: str
    position_id: str
    pool_id: str | None
    active_count: int
    current_value_usd: Decimal
    opened_at: int | None
    open_signature: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "protocol": self.protocol,
            "position_id": self.position_id,
            "pool_id": self.pool_id,
            "active_count": self.active_count,
            "current_value_usd": _money(self.current_value_usd),
            "opened_at": self.opened_at,
            "open_signature": self.open_signature,
        }


@dataclass(frozen=True)
class PnLTotals:
    invested: Decimal
    withdrawn: Decimal
    fees_earned: Decimal
    unrealized_value: Decimal
    override_adjustment: Decimal = ZERO

    @property
    def realized_pnl(self) -> Decimal:
        return self.withdrawn + self.fees_earned - self.invested

    @property
    def reconciled_realized_pnl(self) -> Decimal:
        return self.realized_pnl + self.override_adjustment

    @property
    def total_pnl(self) -> Decimal:
        return self.unrealized_value + self.realized_pnl + self.override_adjustment

    @property
    def pnl_percent(self) -> Decimal:
        if self.invested == 0:
            return ZERO
        return self.total_pnl / self.invested * 100

    def to_dict(self) -> dict[str, Any]:
        return {
            "invested": _money(self.invested),
            "withdrawn": _money(self.withdrawn),
            "fees_earned": _money(self.fees_earned),
            "realized_pnl": _money(self.realized_pnl),
            "unrealized_value": _money(self.unrealized_value),
            "override_adjustment": _money(self.override_adjustment),
            "reconciled_realized_pnl": _money(self.reconciled_realized_pnl),
            "total_pnl": _money(self.total_pnl),
            "pnl_percent": _money(self.pnl_percent),
        }


@dataclass(frozen=True)
class OverrideRecord:
    """A user-supplied realized P&L for one position."""

    position_id: str
    protocol: str
    profit_usd: Decimal
    pnl_percent: Decimal | None = None
    source: str = "manual"
    created_at: datetime | None = None


@dataclass(frozen=True)
class AppliedOverride:
    protocol: str
    position_id: str
    profit_usd: Decimal
    computed_realized_pnl: Decimal

    @property
    def correction(self) -> Decimal:
        return self.profit_usd - self.computed_realized_pnl

    def to_dict(self) -> dict[str, Any]:
        return {
            "protocol": self.protocol,
            "position_id": self.position_id,
            "profit_usd": _money(self.profit_usd),
            "computed_realized_pnl": _money(self.computed_realized_pnl),
            "correction": _money(self.correction),
        }


@dataclass(frozen=True)
class Reconstruction:
    """Lifecycle view of a wallet.

    ``base_totals`` never includes overrides; ``totals`` is ``base_totals``
    plus the correction from ``applied_overrides``.
    """

    wallet_address: str
    lifecycles: tuple[PositionLifecycle, ...]
    active_positions: tuple[ActivePosition, ...]
    closed_lifecycles: tuple[PositionLifecycle, ...]
    unattributed_events: tuple[DomainEvent, ...]
    base_totals: PnLTotals
    totals: PnLTotals
    applied_overrides: tuple[AppliedOverride, ...] = field(default_factory=tuple)

    def lifecycle(self, protocol: str, position_id: str) -> PositionLifecycle | None:
        for lc in self.lifecycles:
            if lc.protocol == protocol and lc.position_id == position_id:
                return lc
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "wallet_address": self.wallet_address,
            "active_positions": [p.to_dict() for p in self.active_positions],
            "closed_lifecycles": [lc.to_dict() for lc in self.closed_lifecycles],
            "lifecycles": [lc.to_dict() for lc in self.lifecycles],
            "unattributed_signatures": [e.signature for e in self.unattributed_events],
            "applied_overrides": [o.to_dict() for o in self.applied_overrides],
            "totals": self.totals.to_dict(),
        }
