"""Manual override reconciliation.

An override replaces the engine's realized P&L for one closed position
with a user-supplied figure. The difference goes into a correction term
on the aggregate totals. Stored events are never touched, and results are
always computed from ``base_totals``, so applying the same overrides again
(in any order) gives the same answer.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import replace

from defi_position_tracker.lifecycle.models import (
    ZERO,
    AppliedOverride,
    OverrideRecord,
    Reconstruction,
)

logger = logging.getLogger(__name__)


def _latest_per_position(overrides: Iterable[OverrideRecord]) -> dict[tuple[str, str], OverrideRecord]:
    latest: dict[tuple[str, str], OverrideRecord] = {}
    for record in sorted(
        overrides,
        key=lambda r: (r.created_at.timestamp() if r.created_at else float("-inf"), str(r.profit_usd)),
    ):
        latest[(record.protocol, record.position_id)] = record
    return latest


class OverrideReconciler:
    def apply(
        self, reconstruction: Reconstruction, overrides: Iterable[OverrideRecord]
    ) -> Reconstruction:
        """Return a copy of ``reconstruction`` with overrides folded into its totals."""
        by_position = _latest_per_position(overrides)

        applied: list[AppliedOverride] = []
        for lc in reconstruction.closed_lifecycles:
            record = by_position.get((lc.protocol, lc.position_id))
            if record is None:
                continue
            applied.append(
                AppliedOverride(
                    protocol=lc.protocol,
                    position_id=lc.position_id,
                    profit_usd=record.profit_usd,
                    computed_realized_pnl=lc.realized_pnl,
                )
            )

        unmatched = set(by_position) - {(a.protocol, a.position_id) for a in applied}
        for protocol, position_id in sorted(unmatched):
            logger.debug(
                "Override for %s/%s does not match a closed position; ignored",
                protocol,
                position_id,
            )

        correction = sum((a.correction for a in applied), ZERO)
        return replace(
            reconstruction,
            totals=replace(reconstruction.base_totals, override_adjustment=correction),
            applied_overrides=tuple(applied),
        )
