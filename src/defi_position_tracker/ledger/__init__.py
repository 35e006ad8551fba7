"""Ledger layer - Solana RPC reads, signature pagination and batch fetching."""

from defi_position_tracker.ledger.batch import (
    BatchFetcher,
    BatchFetcherConfig,
    BatchFetchResult,
    BatchTooLargeError,
)
from defi_position_tracker.ledger.client import (
    LedgerClient,
    LedgerClientError,
    LedgerRequestError,
    LedgerRPCError,
)
from defi_position_tracker.ledger.models import (
    AccountKey,
    DecodedTransaction,
    Instruction,
    MalformedTransactionError,
    SignatureRecord,
    TokenBalance,
)
from defi_position_tracker.ledger.price import PriceQuote, SolPriceOracle
from defi_position_tracker.ledger.rate_limit import RateLimiter
from defi_position_tracker.ledger.signatures import SignatureFetcher, SignaturePage

__all__ = [
    "AccountKey",
    "BatchFetchResult",
    "BatchFetcher",
    "BatchFetcherConfig",
    "BatchTooLargeError",
    "DecodedTransaction",
    "Instruction",
    "LedgerClient",
    "LedgerClientError",
    "LedgerRPCError",
    "LedgerRequestError",
    "MalformedTransactionError",
    "PriceQuote",
    "RateLimiter",
    "SignatureFetcher",
    "SignaturePage",
    "SignatureRecord",
    "SolPriceOracle",
    "TokenBalance",
]
