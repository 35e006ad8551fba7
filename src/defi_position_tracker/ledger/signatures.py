"""Paginated walk over a wallet's signature history."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import TYPE_CHECKING

from defi_position_tracker.config import LEDGER_SIGNATURE_PAGE_LIMIT
from defi_position_tracker.ledger.models import SignatureRecord

if TYPE_CHECKING:
    from defi_position_tracker.ledger.client import LedgerClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignaturePage:
    """Result of a bounded signature scan."""

    records: tuple[SignatureRecord, ...]
    next_cursor: str | None
    exhausted: bool


class SignatureFetcher:
    """Walks signature history backward from the most recent entry.

    The walk is lazy and bounded: pages are requested only as the caller
    consumes records, and never more than ``max_records`` are yielded.
    Passing ``before`` resumes a prior scan after that signature.
    """

    def __init__(self, ledger: LedgerClient, *, page_size: int = LEDGER_SIGNATURE_PAGE_LIMIT) -> None:
        if not 1 <= page_size <= LEDGER_SIGNATURE_PAGE_LIMIT:
            raise ValueError(f"page_size must be in 1..{LEDGER_SIGNATURE_PAGE_LIMIT}")
        self._ledger = ledger
        self._page_size = page_size

    async def iter_signatures(
        self,
        address: str,
        *,
        max_records: int,
        before: str | None = None,
    ) -> AsyncIterator[SignatureRecord]:
        """Yield signature records most-recent-first.

        Stops after ``max_records`` records or when the ledger reports no
        more history (a short or empty page).
        """
        if max_records < 0:
            raise ValueError("max_records must be >= 0")

        remaining = max_records
        cursor = before
        while remaining > 0:
            limit = min(self._page_size, remaining)
            page = await self._ledger.list_signatures(address, limit=limit, before=cursor)
            logger.debug(
                "Fetched %d signatures for %s (before=%s, limit=%d)",
                len(page),
                address,
                cursor,
                limit,
            )
            for record in page[:remaining]:
                yield record
            if not page:
                return
            remaining -= min(len(page), remaining)
            cursor = page[-1].signature
            if len(page) < limit:
                return

    async def fetch(
        self,
        address: str,
        count: int,
        *,
        before: str | None = None,
    ) -> SignaturePage:
        """Collect up to ``count`` records into a single page.

        ``next_cursor`` is the last signature returned and can be passed as
        ``before`` to continue the scan.
        """
        records = [
            record
            async for record in self.iter_signatures(address, max_records=count, before=before)
        ]
        return SignaturePage(
            records=tuple(records),
            next_cursor=records[-1].signature if records else before,
            exhausted=len(records) < count,
        )
