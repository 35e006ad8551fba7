"""Classification layer - Protocol-specific transaction classification."""

from defi_position_tracker.classifier.classifier import PriceBook, TransactionClassifier
from defi_position_tracker.classifier.models import (
    DomainEvent,
    EventKind,
    EventPayload,
    FeeClaimPayload,
    PositionClosePayload,
    PositionOpenPayload,
    TokenDelta,
    UnknownPayload,
)
from defi_position_tracker.classifier.protocols import (
    BUILTIN_PROTOCOLS,
    ClassifierConfig,
    ProtocolDefinition,
    TokenRegistry,
    UnknownProtocolError,
)

__all__ = [
    "BUILTIN_PROTOCOLS",
    "ClassifierConfig",
    "DomainEvent",
    "EventKind",
    "EventPayload",
    "FeeClaimPayload",
    "PositionClosePayload",
    "PositionOpenPayload",
    "PriceBook",
    "ProtocolDefinition",
    "TokenDelta",
    "TokenRegistry",
    "TransactionClassifier",
    "UnknownPayload",
    "UnknownProtocolError",
]
