"""Position lifecycle reconstruction.

Groups a wallet's events by position identifier, counts opens against
closes, and derives invested/withdrawn/fees and P&L. Input order does not
matter: events are sorted by block time here.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable
from decimal import Decimal

from defi_position_tracker.classifier.models import DomainEvent, EventKind
from defi_position_tracker.lifecycle.models import (
    ZERO,
    ActivePosition,
    PnLTotals,
    PositionLifecycle,
    Reconstruction,
)

logger = logging.getLogger(__name__)


def _chronological_key(event: DomainEvent) -> tuple[int, int, int, str]:
    # Events without a block time sort first; slot and signature break ties.
    has_time = 0 if event.block_time is None else 1
    return (has_time, event.block_time or 0, event.slot, event.signature)


def _value(event: DomainEvent) -> Decimal:
    return abs(event.total_usd_value)


def _sum(events: Iterable[DomainEvent], kind: EventKind) -> Decimal:
    return sum((_value(e) for e in events if e.kind is kind), ZERO)


class LifecycleReconstructor:
    """Builds a ``Reconstruction`` from a wallet's domain events."""

    def build_lifecycle(
        self, protocol: str, position_id: str, events: Iterable[DomainEvent]
    ) -> PositionLifecycle:
        ordered = tuple(sorted(events, key=_chronological_key))
        counted = [e for e in ordered if e.succeeded]
        opens = [e for e in counted if e.kind is EventKind.POSITION_OPEN]
        times = [e.block_time for e in ordered if e.block_time is not None]
        pool_ids = [e.pool_id for e in ordered if e.pool_id]
        return PositionLifecycle(
            protocol=protocol,
            position_id=position_id,
            pool_id=pool_ids[-1] if pool_ids else None,
            open_count=len(opens),
            close_count=sum(1 for e in counted if e.kind is EventKind.POSITION_CLOSE),
            fee_claim_count=sum(1 for e in counted if e.kind is EventKind.FEE_CLAIM),
            invested_usd=_sum(counted, EventKind.POSITION_OPEN),
            withdrawn_usd=_sum(counted, EventKind.POSITION_CLOSE),
            fees_usd=_sum(counted, EventKind.FEE_CLAIM),
            first_activity_at=min(times) if times else None,
            last_activity_at=max(times) if times else None,
            latest_open=opens[-1] if opens else None,
            events=ordered,
        )

    def reconstruct(self, wallet_address: str, events: Iterable[DomainEvent]) -> Reconstruction:
        """Reconstruct lifecycles and totals.

        Failed transactions stay in each lifecycle's event list but are
        never counted or summed. Events without a position identifier count
        toward totals only.
        """
        partitions: dict[tuple[str, str], list[DomainEvent]] = defaultdict(list)
        unattributed: list[DomainEvent] = []
        all_events: list[DomainEvent] = []
        for event in events:
            if event.wallet_address != wallet_address:
                continue
            all_events.append(event)
            if event.position_id:
                partitions[(event.protocol, event.position_id)].append(event)
            else:
                unattributed.append(event)

        lifecycles = tuple(
            self.build_lifecycle(protocol, position_id, partition)
            for (protocol, position_id), partition in sorted(partitions.items())
        )

        active: list[ActivePosition] = []
        for lc in lifecycles:
            if lc.active_count > 0 and lc.latest_open is not None:
                active.append(
                    ActivePosition(
                        protocol=lc.protocol,
                        position_id=lc.position_id,
                        pool_id=lc.pool_id,
                        active_count=lc.active_count,
                        current_value_usd=_value(lc.latest_open),
                        opened_at=lc.latest_open.block_time,
                        open_signature=lc.latest_open.signature,
                    )
                )

        counted = [e for e in all_events if e.succeeded]
        totals = PnLTotals(
            invested=_sum(counted, EventKind.POSITION_OPEN),
            withdrawn=_sum(counted, EventKind.POSITION_CLOSE),
            fees_earned=_sum(counted, EventKind.FEE_CLAIM),
            unrealized_value=sum((p.current_value_usd for p in active), ZERO),
        )
        logger.debug(
            "Reconstructed %d lifecycles for %s (%d active, %d unattributed)",
            len(lifecycles),
            wallet_address,
            len(active),
            len(unattributed),
        )
        return Reconstruction(
            wallet_address=wallet_address,
            lifecycles=lifecycles,
            active_positions=tuple(active),
            closed_lifecycles=tuple(lc for lc in lifecycles if lc.is_closed),
            unattributed_events=tuple(sorted(unattributed, key=_chronological_key)),
            base_totals=totals,
            totals=totals,
        )
