"""Pytest configuration and fixtures."""

from collections.abc import Callable, Iterable
from decimal import Decimal
from typing import Any

import pytest

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
from defi_position_tracker.classifier.protocols import METEORA_DLMM_PROGRAM, USDC_MINT
from defi_position_tracker.ledger.models import DecodedTransaction

WALLET = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"
POOL = "4Nd1mBQtrMJVYVfKf2PJy9NZUZdTAsp7D4xWLs4gDB4T"
POSITION_MINT = "PosNFT" + "1" * 37
COMPUTE_BUDGET_PROGRAM = "ComputeBudget111111111111111111111111111111"
STARTING_LAMPORTS = 2_000_000_000


def token_balance(
    index: int, mint: str, owner: str | None, amount: Decimal | str | int, decimals: int
) -> dict[str, Any]:
    """One ``preTokenBalances``/``postTokenBalances`` entry in jsonParsed shape."""
    entry: dict[str, Any] = {
        "accountIndex": index,
        "mint": mint,
        "uiTokenAmount": {"uiAmountString": str(amount), "decimals": decimals},
    }
    if owner is not None:
        entry["owner"] = owner
    return entry


def program_logs(program_id: str, *instructions: str, extra: Iterable[str] = ()) -> list[str]:
    """Log lines for one top-level invocation that logs the given instruction names."""
    return [
        f"Program {program_id} invoke [1]",
        *(f"Program log: Instruction: {name}" for name in instructions),
        *extra,
        f"Program {program_id} consumed 41234 of 200000 compute units",
        f"Program {program_id} success",
    ]


def raw_transaction(
    *,
    wallet: str = WALLET,
    program_id: str = METEORA_DLMM_PROGRAM,
    top_level: bool = True,
    inner: bool = False,
    program_in_keys: bool = True,
    extra_keys: Iterable[dict[str, Any]] = (),
    ix_accounts: Iterable[str] | None = None,
    logs: Iterable[str] = (),
    pre_tokens: Iterable[dict[str, Any]] = (),
    post_tokens: Iterable[dict[str, Any]] = (),
    lamport_change: int = 0,
    fee: int = 5000,
    err: Any = None,
    block_time: int | None = 1_760_000_000,
    slot: int = 300_000_000,
) -> dict[str, Any]:
    """A ``getTransaction`` jsonParsed result.

    ``lamport_change`` is the wallet's native change net of the fee, so the
    default leaves the wallet's SOL untouched apart from paying the fee.
    ``extra_keys`` follow the wallet, program and compute-budget keys, so
    they start at account index 3 (2 without the program key).
    """
    keys: list[dict[str, Any]] = [{"pubkey": wallet, "signer": True, "writable": True}]
    if program_in_keys:
        keys.append({"pubkey": program_id, "signer": False, "writable": False})
    keys.append({"pubkey": COMPUTE_BUDGET_PROGRAM, "signer": False, "writable": False})
    keys.extend(extra_keys)

    instructions = [{"programId": COMPUTE_BUDGET_PROGRAM, "accounts": [], "data": "3"}]
    if top_level:
        accounts = [wallet] if ix_accounts is None else list(ix_accounts)
        instructions.append({"programId": program_id, "accounts": accounts, "data": "x"})
    inner_groups = []
    if inner:
        inner_groups.append(
            {"index": 0, "instructions": [{"programId": program_id, "accounts": [], "data": "y"}]}
        )

    post_lamports = STARTING_LAMPORTS + lamport_change - fee
    return {
        "slot": slot,
        "blockTime": block_time,
        "transaction": {
            "signatures": ["placeholder"],
            "message": {"accountKeys": keys, "instructions": instructions},
        },
        "meta": {
            "err": err,
            "fee": fee,
            "preBalances": [STARTING_LAMPORTS] + [1] * (len(keys) - 1),
            "postBalances": [post_lamports] + [1] * (len(keys) - 1),
            "preTokenBalances": list(pre_tokens),
            "postTokenBalances": list(post_tokens),
            "logMessages": list(logs),
            "innerInstructions": inner_groups,
        },
    }


@pytest.fixture
def wallet() -> str:
    """Wallet under test."""
    return WALLET


@pytest.fixture
def pool_address() -> str:
    """Owner of the pool reserve accounts."""
    return POOL


@pytest.fixture
def position_mint() -> str:
    """Position receipt NFT mint."""
    return POSITION_MINT


@pytest.fixture
def make_raw_tx() -> Callable[..., dict[str, Any]]:
    """Builder for raw ``getTransaction`` results."""
    return raw_transaction


@pytest.fixture
def make_tx() -> Callable[..., DecodedTransaction]:
    """Builder for decoded transactions."""

    def build(signature: str = "sig-1", **kwargs: Any) -> DecodedTransaction:
        return DecodedTransaction.from_rpc_json(signature, raw_transaction(**kwargs))

    return build


@pytest.fixture
def balance() -> Callable[..., dict[str, Any]]:
    """Builder for token balance entries."""
    return token_balance


@pytest.fixture
def logs_for() -> Callable[..., list[str]]:
    """Builder for program log lines."""
    return program_logs


def domain_event(
    signature: str,
    kind: EventKind,
    *,
    position_id: str | None = POSITION_MINT,
    usd: Decimal | str | int = 0,
    block_time: int | None = 1_760_000_000,
    slot: int = 300_000_000,
    succeeded: bool = True,
    protocol: str = "meteora-dlmm",
    wallet: str = WALLET,
    pool_id: str | None = POOL,
) -> DomainEvent:
    """A classified event with a single USDC leg worth ``usd``."""
    value = Decimal(usd)
    sign = Decimal(-1) if kind is EventKind.POSITION_OPEN else Decimal(1)
    legs = (TokenDelta(USDC_MINT, "USDC", sign * value, value),) if value else ()
    payload: EventPayload
    if kind is EventKind.POSITION_OPEN:
        payload = PositionOpenPayload(receipt_mint=position_id, deposited=legs, instructions=())
    elif kind is EventKind.POSITION_CLOSE:
        payload = PositionClosePayload(receipt_mint=position_id, withdrawn=legs, instructions=())
    elif kind is EventKind.FEE_CLAIM:
        payload = FeeClaimPayload(claimed=legs, instructions=())
    else:
        payload = UnknownPayload(reason="test", matched_program=None, deltas=legs, instructions=())
    return DomainEvent(
        signature=signature,
        wallet_address=wallet,
        protocol=protocol,
        kind=kind,
        position_id=position_id,
        pool_id=pool_id,
        token_x=legs[0] if legs else None,
        token_y=None,
        total_usd_value=value,
        block_time=block_time,
        slot=slot,
        succeeded=succeeded,
        fee_lamports=5000,
        payload=payload,
    )


@pytest.fixture
def make_event() -> Callable[..., DomainEvent]:
    """Builder for classified domain events."""
    return domain_event
