"""Data models for classified domain events."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any


class EventKind(str, Enum):
    POSITION_OPEN = "position_open"
    FEE_CLAIM = "fee_claim"
    POSITION_CLOSE = "position_close"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class TokenDelta:
    """Signed wallet-side amount of one mint, with its USD value."""

    mint: str
    symbol: str | None
    amount: Decimal
    usd_value: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "mint": self.mint,
            "symbol": self.symbol,
            "amount": str(self.amount),
            "usd_value": str(self.usd_value),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TokenDelta:
        return cls(
            mint=str(data["mint"]),
            symbol=data.get("symbol"),
            amount=Decimal(str(data["amount"])),
            usd_value=Decimal(str(data.get("usd_value", "0"))),
        )


# ============================================================================
# Payloads (tagged union, one schema per kind)
# ============================================================================


@dataclass(frozen=True)
class PositionOpenPayload:
    receipt_mint: str | None
    deposited: tuple[TokenDelta, ...]
    instructions: tuple[str, ...]


@dataclass(frozen=True)
class PositionClosePayload:
    receipt_mint: str | None
    withdrawn: tuple[TokenDelta, ...]
    instructions: tuple[str, ...]


@dataclass(frozen=True)
class FeeClaimPayload:
    claimed: tuple[TokenDelta, ...]
    instructions: tuple[str, ...]


@dataclass(frozen=True)
class UnknownPayload:
    reason: str
    matched_program: str | None
    deltas: tuple[TokenDelta, ...]
    instructions: tuple[str, ...]


EventPayload = PositionOpenPayload | PositionClosePayload | FeeClaimPayload | UnknownPayload

PAYLOAD_TYPES: dict[EventKind, type[EventPayload]] = {  # type: ignore[valid-type]
    EventKind.POSITION_OPEN: PositionOpenPayload,
    EventKind.POSITION_CLOSE: PositionClosePayload,
    EventKind.FEE_CLAIM: FeeClaimPayload,
    EventKind.UNKNOWN: UnknownPayload,
}

_DELTA_FIELDS = ("deposited", "withdrawn", "claimed", "deltas")


def payload_tag(protocol: str, kind: EventKind) -> str:
    return f"{protocol}:{kind.value}"


def encode_payload(protocol: str, kind: EventKind, payload: EventPayload) -> dict[str, Any]:
    """Serialize a payload for the events table's JSON column."""
    expected = PAYLOAD_TYPES[kind]
    if not isinstance(payload, expected):
        raise TypeError(
            f"{payload_tag(protocol, kind)} expects {expected.__name__}, got {type(payload).__name__}"
        )
    body: dict[str, Any] = {"tag": payload_tag(protocol, kind)}
    for name, value in vars(payload).items():
        if name in _DELTA_FIELDS:
            body[name] = [d.to_dict() for d in value]
        elif isinstance(value, tuple):
            body[name] = list(value)
        else:
            body[name] = value
    return body


def decode_payload(data: dict[str, Any]) -> tuple[str, EventKind, EventPayload]:
    """Inverse of ``encode_payload``; returns (protocol, kind, payload)."""
    tag = str(data["tag"])
    protocol, _, kind_value = tag.rpartition(":")
    kind = EventKind(kind_value)
    payload_type = PAYLOAD_TYPES[kind]
    kwargs: dict[str, Any] = {}
    for name in payload_type.__dataclass_fields__:
        value = data.get(name)
        if name in _DELTA_FIELDS:
            kwargs[name] = tuple(TokenDelta.from_dict(d) for d in value or [])
        elif name == "instructions":
            kwargs[name] = tuple(value or [])
        else:
            kwargs[name] = value
    return protocol, kind, payload_type(**kwargs)


@dataclass(frozen=True)
class DomainEvent:
    """One classified ledger transaction."""

    signature: str
    wallet_address: str
    protocol: str
    kind: EventKind
    position_id: str | None
    pool_id: str | None
    token_x: TokenDelta | None
    token_y: TokenDelta | None
    total_usd_value: Decimal
    block_time: int | None
    slot: int
    succeeded: bool
    fee_lamports: int
    payload: EventPayload

    def to_dict(self) -> dict[str, Any]:
        return {
            "signature": self.signature,
            "wallet_address": self.wallet_address,
            "protocol": self.protocol,
            "kind": self.kind.value,
            "position_id": self.position_id,
            "pool_id": self.pool_id,
            "token_x": self.token_x.to_dict() if self.token_x else None,
            "token_y": self.token_y.to_dict() if self.token_y else None,
            "total_usd_value": str(self.total_usd_value),
            "block_time": self.block_time,
            "slot": self.slot,
            "succeeded": self.succeeded,
            "fee_lamports": self.fee_lamports,
            "payload": encode_payload(self.protocol, self.kind, self.payload),
        }
