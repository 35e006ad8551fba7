"""Token balance deltas.

Pre/post token balances are diffed on account index. An account that only
appears in the pre balances was closed in the transaction, so its post
amount is zero. Changes at or below epsilon are noise.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from defi_position_tracker.ledger.models import LAMPORTS_PER_SOL, DecodedTransaction, TokenBalance

NATIVE_DECIMALS = 9


@dataclass(frozen=True)
class AccountDelta:
    account_index: int
    mint: str
    owner: str | None
    pre: Decimal
    post: Decimal
    decimals: int

    @property
    def change(self) -> Decimal:
        return self.post - self.pre


@dataclass(frozen=True)
class MintDelta:
    """Net change of one mint across the wallet's accounts."""

    mint: str
    pre: Decimal
    post: Decimal
    decimals: int

    @property
    def change(self) -> Decimal:
        return self.post - self.pre


def account_deltas(tx: DecodedTransaction) -> list[AccountDelta]:
    """Per-account token deltas, ordered by account index."""
    pre: dict[int, TokenBalance] = {b.account_index: b for b in tx.pre_token_balances}
    post: dict[int, TokenBalance] = {b.account_index: b for b in tx.post_token_balances}

    deltas: list[AccountDelta] = []
    for index in sorted(pre.keys() | post.keys()):
        before = pre.get(index)
        after = post.get(index)
        ref = after or before
        assert ref is not None
        pre_amount = before.amount if before is not None and before.mint == ref.mint else Decimal(0)
        post_amount = after.amount if after is not None else Decimal(0)
        deltas.append(
            AccountDelta(
                account_index=index,
                mint=ref.mint,
                owner=ref.owner or (before.owner if before else None),
                pre=pre_amount,
                post=post_amount,
                decimals=ref.decimals,
            )
        )
    return deltas


def _has_owner_info(deltas: Iterable[AccountDelta]) -> bool:
    return any(d.owner is not None for d in deltas)


def native_change(tx: DecodedTransaction, wallet: str) -> Decimal:
    """Wallet lamport change in SOL, with the fee added back when the wallet paid it."""
    index = tx.account_index(wallet)
    if index is None or index >= len(tx.pre_balances) or index >= len(tx.post_balances):
        return Decimal(0)
    lamports = tx.post_balances[index] - tx.pre_balances[index]
    if index == 0:
        lamports += tx.fee
    return Decimal(lamports) / LAMPORTS_PER_SOL


def wallet_mint_deltas(
    tx: DecodedTransaction,
    wallet: str,
    *,
    epsilon: Decimal,
    native_mint: str | None = None,
) -> dict[str, MintDelta]:
    """Net per-mint change for the wallet, noise removed.

    When the node reports no token-account owners at all, the largest
    absolute per-account change of each mint stands in for the wallet's.
    When ``native_mint`` is given, the wallet's lamport change is folded
    into that mint so wrapped and native SOL are counted together.
    """
    deltas = account_deltas(tx)
    merged: dict[str, MintDelta] = {}

    if _has_owner_info(deltas):
        for d in deltas:
            if d.owner != wallet:
                continue
            prior = merged.get(d.mint)
            if prior is None:
                merged[d.mint] = MintDelta(d.mint, d.pre, d.post, d.decimals)
            else:
                merged[d.mint] = MintDelta(d.mint, prior.pre + d.pre, prior.post + d.post, d.decimals)
    else:
        for d in deltas:
            prior = merged.get(d.mint)
            if prior is None or abs(d.change) > abs(prior.change):
                merged[d.mint] = MintDelta(d.mint, d.pre, d.post, d.decimals)

    if native_mint is not None:
        lamport_change = native_change(tx, wallet)
        if lamport_change:
            prior = merged.get(native_mint)
            if prior is None:
                merged[native_mint] = MintDelta(
                    native_mint, Decimal(0), lamport_change, NATIVE_DECIMALS
                )
            else:
                merged[native_mint] = MintDelta(
                    native_mint, prior.pre, prior.post + lamport_change, prior.decimals
                )

    return {
        mint: merged[mint] for mint in sorted(merged) if abs(merged[mint].change) > epsilon
    }


def counterparty_owners(
    tx: DecodedTransaction,
    wallet: str,
    mints: Iterable[str],
    *,
    epsilon: Decimal,
) -> Counter[str]:
    """How often each non-wallet owner's accounts moved in the given mints."""
    wanted = set(mints)
    owners: Counter[str] = Counter()
    for d in account_deltas(tx):
        if d.mint in wanted and d.owner and d.owner != wallet and abs(d.change) > epsilon:
            owners[d.owner] += 1
    return owners
