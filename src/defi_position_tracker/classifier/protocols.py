"""Protocol definitions and token tables used by the classifier.

Everything here is plain configuration. The classifier receives a
``ClassifierConfig`` at construction time, so tests can supply synthetic
protocols and mints without touching the built-in tables.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

SOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USDT_MINT = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"

METEORA_DLMM_PROGRAM = "LBUZKhRxPF3XUpBCjp4YzTKgLccjZhTSDM9YuVaPwxo"
METEORA_POOLS_PROGRAM = "DLMM3DgeuhSzGSuBQnGSiH8LGQUgwAv8qLWGPtABV8r"

JUPITER_V6_PROGRAM = "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4"
JUPITER_V4_PROGRAM = "JUP4Fb2cqiRUcaTHdrPC8h2gNsA2ETXiPDD33WcGuJB"
JUPITER_V3_PROGRAM = "JUP3c2Uh3WA4Ng34tw6kPd2G4C5BB21Xo36Je1s32Ph"
JUPITER_V2_PROGRAM = "JUP2jxvXaqu7NQY1GmNF4m1vodw12LVXYxbFL2uJvfo"
JUPITER_LIMIT_ORDER_PROGRAM = "jupoNjAxXgZ4rjzxzPMP4oxduvQsQtZzyknqvzYNrNu"
JUPITER_PERPS_PROGRAM = "PERPHjGBqRHArX4DySjwM6UJHiR3sWAatqfdBS2verN"

SANCTUM_PROGRAM = "SP12tWFxD9oJsVWNavTTBZvMbA6gkAmxtVgxdqvyvhY"

MAGIC_EDEN_V2_PROGRAM = "M2mx93ekt1fmXSVkTrUL9xVFHkmME8HTUi5Cyc5aF7K"
MAGIC_EDEN_V1_PROGRAM = "MEisE1HzehtrDpAAT8PnLHjpSSkRYakotTuJRPjTpo8"

LST_MINTS: dict[str, str] = {
    "J1toso1uCk3RLmjorhTtrVwY9HJ7X8V9yYac6Y7kGCPn": "JitoSOL",
    "mSoLzYCxHdYgdzU16g5QSh3i5K3z3KZK7ytfqcJm7So": "mSOL",
    "bSo13r4TkiE4KumL71LsHTPpL2euBYLFx6h9HP3piy1": "bSOL",
    "he1iusmfkpAdwvxLNGV8Y1iSbj4rUy6yMhEA3fotn9A": "hSOL",
    "jupSoLaHXQiZZTSfEWMTRRgpnyFm8f6sZdosWBjx93v": "jupSOL",
    "picobAEvs6w7QEknPce34wAE4gknZA9v5tTonnmHYdX": "picoSOL",
    "5oVNBeEEQvYi1cX3ir8Dx5n1P7pdxydbGF2X4TxVusJm": "scnSOL",
    "Comp4ssDzXcLeu2MnLuGNNFC4cmLPMng8qWHPvzAMU1h": "compassSOL",
    "INFp2k2GLVEA8Wvs4mEyDA1LBKHA3HfHx3X8pKNF4Qf": "INF",
    "7kbnvuGBxxj8AG9qp8Scn56muWGaRaFqxg1FsRp3PaFT": "stSOL",
}

DEFAULT_EPSILON = Decimal("0.000001")


class UnknownProtocolError(KeyError):
    """Raised when a protocol slug is not configured."""


class PriceClass(str, Enum):
    """How a mint is valued in USD."""

    STABLE = "stable"
    NATIVE = "native"
    UNPRICED = "unpriced"


@dataclass(frozen=True)
class TokenInfo:
    mint: str
    symbol: str
    price_class: PriceClass = PriceClass.UNPRICED


@dataclass(frozen=True)
class TokenRegistry:
    """Mint metadata: symbols and valuation class."""

    tokens: Mapping[str, TokenInfo] = field(default_factory=dict)

    def symbol(self, mint: str) -> str | None:
        info = self.tokens.get(mint)
        return info.symbol if info else None

    def price_class(self, mint: str) -> PriceClass:
        info = self.tokens.get(mint)
        return info.price_class if info else PriceClass.UNPRICED

    def quote_rank(self, mint: str) -> int:
        """Ordering key that puts base tokens before SOL and SOL before stables."""
        return {
            PriceClass.UNPRICED: 0,
            PriceClass.NATIVE: 1,
            PriceClass.STABLE: 2,
        }[self.price_class(mint)]


@dataclass(frozen=True)
class LogMarkers:
    """Instruction names (from ``Program log: Instruction: X`` lines) per intent."""

    open: tuple[str, ...] = ()
    close: tuple[str, ...] = ()
    claim: tuple[str, ...] = ()
    withdraw: tuple[str, ...] = ()

    def all(self) -> tuple[str, ...]:
        return self.open + self.close + self.claim + self.withdraw


@dataclass(frozen=True)
class ReceiptRule:
    """How position-receipt tokens are recognized among balance deltas.

    A mint is a receipt when it is listed in ``mints``, or, with
    ``nft_like`` set, when it has zero decimals and moves by exactly one
    unit in the transaction.
    """

    mints: frozenset[str] = frozenset()
    nft_like: bool = True


@dataclass(frozen=True)
class ProtocolDefinition:
    """Static description of one protocol.

    ``tracks_positions`` protocols go through the open/claim/close decision
    order; others only ever yield ``unknown`` events. Without a receipt
    token, the position id comes from a ``Position: <address>`` log line
    when ``position_id_from_logs`` is set, then from the accounts passed to
    the protocol's own instructions when ``position_id_from_instructions``
    is set.
    """

    slug: str
    name: str
    program_ids: frozenset[str]
    program_id_prefixes: tuple[str, ...] = ()
    tracks_positions: bool = False
    receipt: ReceiptRule = field(default_factory=ReceiptRule)
    markers: LogMarkers = field(default_factory=LogMarkers)
    position_id_from_logs: bool = False
    position_id_from_instructions: bool = False

    def matches_program(self, program_id: str) -> bool:
        if program_id in self.program_ids:
            return True
        return any(program_id.startswith(prefix) for prefix in self.program_id_prefixes)


METEORA_DLMM = ProtocolDefinition(
    slug="meteora-dlmm",
    name="Meteora DLMM",
    program_ids=frozenset({METEORA_DLMM_PROGRAM, METEORA_POOLS_PROGRAM}),
    program_id_prefixes=("LBUZKhRxPF3X",),
    tracks_positions=True,
    receipt=ReceiptRule(nft_like=True),
    markers=LogMarkers(
        open=("InitializePosition", "InitializePositionPda", "InitializePositionByOperator"),
        close=("ClosePosition", "ClosePositionIfEmpty"),
        claim=("ClaimFee", "ClaimReward"),
        withdraw=("RemoveLiquidity", "RemoveLiquidityByRange", "RemoveAllLiquidity"),
    ),
    position_id_from_logs=True,
    position_id_from_instructions=True,
)

JUPITER = ProtocolDefinition(
    slug="jupiter",
    name="Jupiter",
    program_ids=frozenset(
        {
            JUPITER_V6_PROGRAM,
            JUPITER_V4_PROGRAM,
            JUPITER_V3_PROGRAM,
            JUPITER_V2_PROGRAM,
            JUPITER_LIMIT_ORDER_PROGRAM,
            JUPITER_PERPS_PROGRAM,
        }
    ),
)

SANCTUM = ProtocolDefinition(
    slug="sanctum",
    name="Sanctum",
    program_ids=frozenset({SANCTUM_PROGRAM}),
    tracks_positions=True,
    receipt=ReceiptRule(mints=frozenset(LST_MINTS), nft_like=False),
)

MAGIC_EDEN = ProtocolDefinition(
    slug="magic-eden",
    name="Magic Eden",
    program_ids=frozenset({MAGIC_EDEN_V2_PROGRAM, MAGIC_EDEN_V1_PROGRAM}),
)

BUILTIN_PROTOCOLS: dict[str, ProtocolDefinition] = {
    p.slug: p for p in (METEORA_DLMM, JUPITER, SANCTUM, MAGIC_EDEN)
}


def default_token_registry() -> TokenRegistry:
    tokens = {
        SOL_MINT: TokenInfo(SOL_MINT, "SOL", PriceClass.NATIVE),
        USDC_MINT: TokenInfo(USDC_MINT, "USDC", PriceClass.STABLE),
        USDT_MINT: TokenInfo(USDT_MINT, "USDT", PriceClass.STABLE),
    }
    for mint, symbol in LST_MINTS.items():
        tokens[mint] = TokenInfo(mint, symbol)
    return TokenRegistry(tokens=tokens)


@dataclass(frozen=True)
class ClassifierConfig:
    """Everything the classifier needs, passed in explicitly."""

    protocols: tuple[ProtocolDefinition, ...]
    tokens: TokenRegistry = field(default_factory=default_token_registry)
    epsilon: Decimal = DEFAULT_EPSILON
    native_mint: str = SOL_MINT

    def protocol(self, slug: str) -> ProtocolDefinition:
        for protocol in self.protocols:
            if protocol.slug == slug:
                return protocol
        raise UnknownProtocolError(slug)

    @classmethod
    def for_slugs(
        cls,
        slugs: Iterable[str],
        *,
        registry: Mapping[str, ProtocolDefinition] = BUILTIN_PROTOCOLS,
    ) -> ClassifierConfig:
        protocols = []
        for slug in slugs:
            if slug not in registry:
                raise UnknownProtocolError(slug)
            protocols.append(registry[slug])
        return cls(protocols=tuple(protocols))
