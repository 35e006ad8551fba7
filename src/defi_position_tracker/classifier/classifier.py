"""Protocol transaction classifier.

Maps one decoded transaction to at most one ``DomainEvent`` for a given
protocol. Classification is a pure function of the transaction, the
wallet, the configuration and the price book: no I/O, no clock.

Ambiguous transactions resolve to ``unknown`` rather than a guess. A
wrong open/close corrupts lifecycle P&L; an ``unknown`` row only needs a
manual override.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from decimal import Decimal

from defi_position_tracker.classifier.deltas import MintDelta, counterparty_owners, wallet_mint_deltas
from defi_position_tracker.classifier.extraction import (
    DEFAULT_STRATEGIES,
    ExtractionStrategy,
    first_match,
)
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
    ClassifierConfig,
    PriceClass,
    ProtocolDefinition,
    TokenRegistry,
)
from defi_position_tracker.ledger.models import DecodedTransaction

logger = logging.getLogger(__name__)

_INVOKE_RE = re.compile(r"^Program (\w{32,44}) invoke \[\d+\]")
_EXIT_RE = re.compile(r"^Program (\w{32,44}) (success|failed)")
_INSTRUCTION_RE = re.compile(r"^Program log: Instruction: (\w+)")
_POSITION_LOG_RE = re.compile(r"[Pp]osition:\s*([1-9A-HJ-NP-Za-km-z]{32,44})")


@dataclass(frozen=True)
class PriceBook:
    """USD prices used for valuation.

    Stables are worth 1, the native asset is worth ``sol_usd``, and any
    other mint is worth whatever ``prices`` says (zero when absent).
    """

    sol_usd: Decimal
    prices: Mapping[str, Decimal] = field(default_factory=dict)

    def usd_price(self, mint: str, registry: TokenRegistry) -> Decimal:
        if mint in self.prices:
            return self.prices[mint]
        price_class = registry.price_class(mint)
        if price_class is PriceClass.STABLE:
            return Decimal(1)
        if price_class is PriceClass.NATIVE:
            return self.sol_usd
        return Decimal(0)


def instruction_names(tx: DecodedTransaction, protocol: ProtocolDefinition) -> tuple[str, ...]:
    """Instruction names logged while one of the protocol's programs was executing.

    Without any invoke lines to scope by, every logged instruction counts.
    """
    names: list[str] = []
    stack: list[str] = []
    scoped = any(_INVOKE_RE.match(line) for line in tx.log_messages)
    for line in tx.log_messages:
        invoke = _INVOKE_RE.match(line)
        if invoke:
            stack.append(invoke.group(1))
            continue
        if _EXIT_RE.match(line):
            if stack:
                stack.pop()
            continue
        match = _INSTRUCTION_RE.match(line)
        if not match:
            continue
        if scoped and not (stack and protocol.matches_program(stack[-1])):
            continue
        if match.group(1) not in names:
            names.append(match.group(1))
    return tuple(names)


def position_id_from_logs(tx: DecodedTransaction) -> str | None:
    for line in tx.log_messages:
        match = _POSITION_LOG_RE.search(line)
        if match:
            return match.group(1)
    return None


def position_id_from_instructions(
    tx: DecodedTransaction, protocol: ProtocolDefinition, wallet_address: str
) -> str | None:
    """First writable account handed to one of the protocol's instructions.

    Skips the wallet, program ids, token accounts and token-account owners.
    A pool owns its reserves, so what remains first is the position account.
    """
    keys = tx.account_keys
    writable = {key.address for key in keys if key.is_writable}
    instructions = (*tx.instructions, *tx.inner_instructions)
    excluded = {wallet_address, *(ix.program_id for ix in instructions)}
    for balance in (*tx.pre_token_balances, *tx.post_token_balances):
        if balance.account_index < len(keys):
            excluded.add(keys[balance.account_index].address)
        if balance.owner:
            excluded.add(balance.owner)

    for ix in instructions:
        if not protocol.matches_program(ix.program_id):
            continue
        for address in ix.accounts:
            if address in writable and address not in excluded:
                return address
    return None


class TransactionClassifier:
    """Classifies decoded transactions against configured protocols."""

    def __init__(
        self,
        config: ClassifierConfig,
        *,
        strategies: Sequence[ExtractionStrategy] = DEFAULT_STRATEGIES,
    ) -> None:
        self._config = config
        self._strategies = tuple(strategies)

    @property
    def config(self) -> ClassifierConfig:
        return self._config

    def classify_any(
        self,
        tx: DecodedTransaction,
        *,
        wallet_address: str,
        prices: PriceBook,
    ) -> DomainEvent | None:
        """Classify against each configured protocol in order; first event wins."""
        for protocol in self._config.protocols:
            event = self.classify(tx, protocol, wallet_address=wallet_address, prices=prices)
            if event is not None:
                return event
        return None

    def classify(
        self,
        tx: DecodedTransaction,
        protocol: ProtocolDefinition | str,
        *,
        wallet_address: str,
        prices: PriceBook,
    ) -> DomainEvent | None:
        """Classify one transaction for one protocol.

        Returns None when the transaction does not touch the protocol, or
        when it succeeded but moved nothing above epsilon for the wallet.
        """
        if isinstance(protocol, str):
            protocol = self._config.protocol(protocol)

        match = first_match(tx, protocol, self._strategies)
        if match is None:
            return None

        names = instruction_names(tx, protocol)

        if not tx.succeeded:
            kind = self._kind_from_markers(protocol, names)
            position_id = self._position_id(tx, protocol, wallet_address)
            payload = self._payload(kind, names, (), None, match.program_id, "transaction failed")
            return self._event(
                tx, protocol, wallet_address, kind, position_id, None, (), Decimal(0), payload
            )

        deltas = wallet_mint_deltas(
            tx,
            wallet_address,
            epsilon=self._config.epsilon,
            native_mint=self._config.native_mint,
        )
        if not deltas:
            logger.debug("%s touches %s but moved nothing for wallet", tx.signature, protocol.slug)
            return None

        receipts = {m: d for m, d in deltas.items() if self._is_receipt(protocol, d)}
        pool = {m: d for m, d in deltas.items() if m not in receipts}

        kind, reason = self._decide(protocol, receipts, pool, names)

        position_id: str | None = None
        if len(receipts) == 1:
            position_id = next(iter(receipts))
        elif not receipts:
            position_id = self._position_id(tx, protocol, wallet_address)

        owners = counterparty_owners(tx, wallet_address, pool, epsilon=self._config.epsilon)
        pool_id = sorted(owners.items(), key=lambda kv: (-kv[1], kv[0]))[0][0] if owners else None

        ordered = sorted(
            pool.values(), key=lambda d: (self._config.tokens.quote_rank(d.mint), d.mint)
        )
        token_deltas = tuple(self._token_delta(d, prices) for d in ordered)
        total_usd = sum((t.usd_value for t in token_deltas), Decimal(0))

        receipt_mint = position_id if receipts else None
        payload = self._payload(kind, names, token_deltas, receipt_mint, match.program_id, reason)
        event = self._event(
            tx, protocol, wallet_address, kind, position_id, pool_id, token_deltas, total_usd, payload
        )
        logger.debug(
            "Classified %s as %s/%s (%s, matched via %s)",
            tx.signature,
            protocol.slug,
            kind.value,
            reason,
            match.strategy,
        )
        return event

    # ------------------------------------------------------------------
    # Decision rules
    # ------------------------------------------------------------------

    @staticmethod
    def _position_id(
        tx: DecodedTransaction, protocol: ProtocolDefinition, wallet_address: str
    ) -> str | None:
        if protocol.position_id_from_logs:
            position_id = position_id_from_logs(tx)
            if position_id:
                return position_id
        if protocol.position_id_from_instructions:
            return position_id_from_instructions(tx, protocol, wallet_address)
        return None

    def _is_receipt(self, protocol: ProtocolDefinition, delta: MintDelta) -> bool:
        if delta.mint in protocol.receipt.mints:
            return True
        return protocol.receipt.nft_like and delta.decimals == 0 and abs(delta.change) == 1

    @staticmethod
    def _kind_from_markers(protocol: ProtocolDefinition, names: tuple[str, ...]) -> EventKind:
        if not protocol.tracks_positions:
            return EventKind.UNKNOWN
        seen = set(names)
        if seen.intersection(protocol.markers.close):
            return EventKind.POSITION_CLOSE
        if seen.intersection(protocol.markers.open):
            return EventKind.POSITION_OPEN
        if seen.intersection(protocol.markers.claim):
            return EventKind.FEE_CLAIM
        return EventKind.UNKNOWN

    @staticmethod
    def _decide(
        protocol: ProtocolDefinition,
        receipts: dict[str, MintDelta],
        pool: dict[str, MintDelta],
        names: tuple[str, ...],
    ) -> tuple[EventKind, str]:
        if not protocol.tracks_positions:
            return EventKind.UNKNOWN, "protocol does not track positions"
        if len(receipts) > 1:
            return EventKind.UNKNOWN, "multiple receipt mints"

        outflow = any(d.change < 0 for d in pool.values())
        inflow = any(d.change > 0 for d in pool.values())
        pure_out = outflow and not inflow
        pure_in = inflow and not outflow

        if receipts:
            receipt = next(iter(receipts.values()))
            if receipt.change > 0:
                if pure_out:
                    return EventKind.POSITION_OPEN, "receipt minted against deposit"
                return EventKind.UNKNOWN, "receipt minted without a pure deposit"
            if pure_in:
                return EventKind.POSITION_CLOSE, "receipt closed out against withdrawal"
            return EventKind.UNKNOWN, "receipt closed out without a pure withdrawal"

        seen = set(names)
        markers = protocol.markers
        has_open = bool(seen.intersection(markers.open))
        has_close = bool(seen.intersection(markers.close))
        has_claim = bool(seen.intersection(markers.claim))
        has_withdraw = bool(seen.intersection(markers.withdraw))

        if pure_out:
            if has_open and not has_close:
                return EventKind.POSITION_OPEN, "open instruction with deposit"
            return EventKind.UNKNOWN, "deposit without an open instruction"
        if pure_in:
            if has_close:
                return EventKind.POSITION_CLOSE, "close instruction with withdrawal"
            if has_claim and not has_withdraw:
                return EventKind.FEE_CLAIM, "claim instruction with inflow"
            if not seen.intersection(markers.all()):
                return EventKind.FEE_CLAIM, "inflow with no receipt change"
            return EventKind.UNKNOWN, "partial withdrawal"
        return EventKind.UNKNOWN, "mixed token flows"

    # ------------------------------------------------------------------
    # Builders
    # ------------------------------------------------------------------

    def _token_delta(self, delta: MintDelta, prices: PriceBook) -> TokenDelta:
        price = prices.usd_price(delta.mint, self._config.tokens)
        return TokenDelta(
            mint=delta.mint,
            symbol=self._config.tokens.symbol(delta.mint),
            amount=delta.change,
            usd_value=abs(delta.change) * price,
        )

    @staticmethod
    def _payload(
        kind: EventKind,
        names: tuple[str, ...],
        deltas: tuple[TokenDelta, ...],
        receipt_mint: str | None,
        matched_program: str,
        reason: str,
    ) -> EventPayload:
        if kind is EventKind.POSITION_OPEN:
            return PositionOpenPayload(receipt_mint=receipt_mint, deposited=deltas, instructions=names)
        if kind is EventKind.POSITION_CLOSE:
            return PositionClosePayload(receipt_mint=receipt_mint, withdrawn=deltas, instructions=names)
        if kind is EventKind.FEE_CLAIM:
            return FeeClaimPayload(claimed=deltas, instructions=names)
        return UnknownPayload(
            reason=reason, matched_program=matched_program, deltas=deltas, instructions=names
        )

    @staticmethod
    def _event(
        tx: DecodedTransaction,
        protocol: ProtocolDefinition,
        wallet_address: str,
        kind: EventKind,
        position_id: str | None,
        pool_id: str | None,
        token_deltas: tuple[TokenDelta, ...],
        total_usd: Decimal,
        payload: EventPayload,
    ) -> DomainEvent:
        return DomainEvent(
            signature=tx.signature,
            wallet_address=wallet_address,
            protocol=protocol.slug,
            kind=kind,
            position_id=position_id,
            pool_id=pool_id,
            token_x=token_deltas[0] if token_deltas else None,
            token_y=token_deltas[1] if len(token_deltas) > 1 else None,
            total_usd_value=total_usd,
            block_time=tx.block_time,
            slot=tx.slot,
            succeeded=tx.succeeded,
            fee_lamports=tx.fee,
            payload=payload,
        )
