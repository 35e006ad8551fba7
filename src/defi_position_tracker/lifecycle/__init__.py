"""Lifecycle layer - Position reconstruction and P&L."""

from defi_position_tracker.lifecycle.models import (
    ActivePosition,
    AppliedOverride,
    OverrideRecord,
    PnLTotals,
    PositionLifecycle,
    Reconstruction,
)
from defi_position_tracker.lifecycle.overrides import OverrideReconciler
from defi_position_tracker.lifecycle.reconstructor import LifecycleReconstructor

__all__ = [
    "ActivePosition",
    "AppliedOverride",
    "LifecycleReconstructor",
    "OverrideReconciler",
    "OverrideRecord",
    "PnLTotals",
    "PositionLifecycle",
    "Reconstruction",
]
