"""Rate-limited transaction detail fetching.

Fetches full transaction bodies for an ordered list of signatures under a
minimum inter-dispatch delay and bounded concurrency. A failed or missing
fetch never aborts the batch; it is recorded as ``None`` at that position.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from defi_position_tracker.config import MAX_SIGNATURES_HARD_LIMIT
from defi_position_tracker.ledger.client import LedgerClientError
from defi_position_tracker.ledger.models import DecodedTransaction
from defi_position_tracker.ledger.rate_limit import RateLimiter

if TYPE_CHECKING:
    from defi_position_tracker.ledger.client import LedgerClient

logger = logging.getLogger(__name__)

DEFAULT_INTER_REQUEST_DELAY_MS = 500
DEFAULT_FETCH_TIMEOUT_SECONDS = 45.0


class BatchTooLargeError(ValueError):
    """Raised when a batch exceeds the fetcher's hard cap."""


@dataclass(frozen=True)
class BatchFetcherConfig:
    """Pacing and bounds for one fetcher instance."""

    inter_request_delay_ms: int = DEFAULT_INTER_REQUEST_DELAY_MS
    max_concurrency: int = 1
    max_batch_size: int = MAX_SIGNATURES_HARD_LIMIT
    fetch_timeout_seconds: float = DEFAULT_FETCH_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        if self.inter_request_delay_ms < 0:
            raise ValueError("inter_request_delay_ms must be >= 0")
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        if not 1 <= self.max_batch_size <= MAX_SIGNATURES_HARD_LIMIT:
            raise ValueError(f"max_batch_size must be in 1..{MAX_SIGNATURES_HARD_LIMIT}")
        if self.fetch_timeout_seconds <= 0:
            raise ValueError("fetch_timeout_seconds must be > 0")


@dataclass
class BatchFetchResult:
    """Transactions aligned with the input signatures.

    ``transactions[i]`` is ``None`` when signature ``i`` was not served,
    either because the node returned nothing (``missing``) or because the
    fetch failed (recorded in ``failures``).
    """

    signatures: list[str]
    transactions: list[DecodedTransaction | None]
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def fetched(self) -> int:
        return sum(1 for tx in self.transactions if tx is not None)

    @property
    def missing(self) -> int:
        return sum(
            1
            for sig, tx in zip(self.signatures, self.transactions, strict=True)
            if tx is None and sig not in self.failures
        )

    @property
    def failed(self) -> int:
        return len(self.failures)

    def pairs(self) -> list[tuple[str, DecodedTransaction | None]]:
        return list(zip(self.signatures, self.transactions, strict=True))


class BatchFetcher:
    """Fetches transaction bodies with pacing and partial-failure tolerance."""

    def __init__(self, ledger: LedgerClient, config: BatchFetcherConfig | None = None) -> None:
        self._ledger = ledger
        self._config = config or BatchFetcherConfig()

    @property
    def config(self) -> BatchFetcherConfig:
        return self._config

    async def fetch(
        self,
        signatures: Sequence[str],
        *,
        inter_request_delay_ms: int | None = None,
    ) -> BatchFetchResult:
        """Fetch every signature, returning results in input order.

        Args:
            signatures: Ordered signatures to fetch.
            inter_request_delay_ms: Overrides the configured delay for this call.

        Raises:
            BatchTooLargeError: If more signatures are given than the hard cap allows.
        """
        sigs = list(signatures)
        if len(sigs) > self._config.max_batch_size:
            raise BatchTooLargeError(
                f"batch of {len(sigs)} exceeds cap of {self._config.max_batch_size}"
            )
        delay_ms = (
            self._config.inter_request_delay_ms
            if inter_request_delay_ms is None
            else inter_request_delay_ms
        )
        if delay_ms < 0:
            raise ValueError("inter_request_delay_ms must be >= 0")

        # Limiter state is per call; a new batch starts with no dispatch history.
        limiter = RateLimiter.from_milliseconds(delay_ms)
        semaphore = asyncio.Semaphore(self._config.max_concurrency)
        failures: dict[str, str] = {}

        async def fetch_one(signature: str) -> DecodedTransaction | None:
            async with semaphore:
                await limiter.acquire()
                try:
                    return await asyncio.wait_for(
                        self._ledger.get_transaction(signature),
                        timeout=self._config.fetch_timeout_seconds,
                    )
                except (LedgerClientError, ValueError, asyncio.TimeoutError) as e:
                    failures[signature] = f"{type(e).__name__}: {e}"
                    logger.warning("Fetch failed for %s: %s", signature, e)
                    return None

        transactions = list(await asyncio.gather(*(fetch_one(s) for s in sigs)))
        result = BatchFetchResult(signatures=sigs, transactions=transactions, failures=failures)
        logger.info(
            "Fetched %d/%d transactions (missing=%d, failed=%d, delay=%dms)",
            result.fetched,
            len(sigs),
            result.missing,
            result.failed,
            delay_ms,
        )
        return result
