"""Storage layer - Database schemas and repositories."""

from defi_position_tracker.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from defi_position_tracker.storage.models import (
    Base,
    PositionEventModel,
    PositionOverrideModel,
)
from defi_position_tracker.storage.repos import (
    EventStatsDTO,
    PositionEventDTO,
    PositionEventRepository,
    PositionOverrideDTO,
    PositionOverrideRepository,
)

__all__ = [
    "Base",
    "DatabaseManager",
    "EventStatsDTO",
    "PositionEventDTO",
    "PositionEventModel",
    "PositionEventRepository",
    "PositionOverrideDTO",
    "PositionOverrideModel",
    "PositionOverrideRepository",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
]
