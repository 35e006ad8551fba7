"""Solana RPC client with rate limiting, caching and failover.

This module wraps solana-py's ``AsyncClient`` for the two reads the sync
pipeline needs:
- Signature listing for a wallet (``getSignaturesForAddress``)
- Full transaction fetch (``getTransaction``, jsonParsed, v0 support)

Every call goes through a process-wide rate limiter, is retried with
exponential backoff, and fails over to a secondary RPC URL. Transaction
bodies are immutable once confirmed and are cached in Redis by signature.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any

import httpx
from redis.asyncio import Redis
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.core import RPCException
from solders.errors import SerdeJSONError
from solders.pubkey import Pubkey
from solders.signature import Signature

from defi_position_tracker.ledger.models import DecodedTransaction, SignatureRecord
from defi_position_tracker.ledger.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_CACHE_TTL_SECONDS = 7 * 24 * 3600
DEFAULT_MAX_REQUESTS_PER_SECOND = 10.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_SECONDS = 1.0
DEFAULT_REQUEST_TIMEOUT = 30.0

MAX_SUPPORTED_TRANSACTION_VERSION = 0

TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    SolanaRpcException,
    httpx.HTTPError,
    asyncio.TimeoutError,
)

# Unparseable bodies (gateway error pages, truncated JSON). pydantic's
# ValidationError is a ValueError.
MALFORMED_RESPONSE_ERRORS: tuple[type[BaseException], ...] = (
    SerdeJSONError,
    ValueError,
)

RETRYABLE_ERRORS = TRANSIENT_ERRORS + MALFORMED_RESPONSE_ERRORS


class LedgerClientError(Exception):
    """Base exception for ledger client errors."""


class LedgerRPCError(LedgerClientError):
    """Raised when an RPC call fails after all retries and failover."""


class LedgerRequestError(LedgerClientError):
    """Raised when the node rejects a request (not retried)."""


def _result_payload(resp: Any) -> Any:
    """Extract the JSON-RPC ``result`` from a solders response object."""
    payload = json.loads(resp.to_json())
    if isinstance(payload, dict) and "jsonrpc" in payload:
        if payload.get("error"):
            raise LedgerRequestError(f"RPC error: {payload['error']}")
        return payload.get("result")
    return payload


class LedgerClient:
    """Solana ledger read client.

    Example:
        ```python
        client = LedgerClient(
            rpc_url="https://api.mainnet-beta.solana.com",
            fallback_rpc_url="https://solana-rpc.publicnode.com",
            redis=Redis.from_url("redis://localhost:6379"),
        )
        records = await client.list_signatures(wallet, limit=100)
        tx = await client.get_transaction(records[0].signature)
        await client.aclose()
        ```
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        fallback_rpc_url: str | None = None,
        redis: Redis | None = None,
        commitment: str = "confirmed",
        cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
        max_requests_per_second: float = DEFAULT_MAX_REQUESTS_PER_SECOND,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        """Initialize the ledger client.

        Args:
            rpc_url: Primary Solana RPC endpoint URL.
            fallback_rpc_url: Optional fallback RPC URL for failover.
            redis: Optional Redis client for caching transaction bodies.
            commitment: Commitment level for reads.
            cache_ttl_seconds: Cache TTL for transaction bodies.
            max_requests_per_second: Process-wide request ceiling.
            max_retries: Attempts per endpoint.
            retry_delay_seconds: Initial delay between retries.
            request_timeout: HTTP timeout per request.
        """
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        self._rpc_url = rpc_url
        self._fallback_rpc_url = fallback_rpc_url
        self._redis = redis
        self._cache_ttl = cache_ttl_seconds
        self._max_retries = max_retries
        self._retry_delay = retry_delay_seconds

        commitment_level = Commitment(commitment)
        self._client = AsyncClient(rpc_url, commitment=commitment_level, timeout=request_timeout)
        self._fallback_client: AsyncClient | None = None
        if fallback_rpc_url:
            self._fallback_client = AsyncClient(
                fallback_rpc_url, commitment=commitment_level, timeout=request_timeout
            )

        self._rate_limiter = RateLimiter.per_second(max_requests_per_second)

        self._primary_healthy = True
        self._last_primary_check = 0.0
        self._primary_recovery_interval = 60.0

        self._cache_prefix = "solana:"

    def _cache_key(self, key_type: str, key: str) -> str:
        # base58 is case-sensitive, keys are used verbatim
        return f"{self._cache_prefix}{key_type}:{key}"

    async def _get_cached(self, key: str) -> str | None:
        if not self._redis:
            return None
        try:
            value = await self._redis.get(key)
            if isinstance(value, bytes):
                return value.decode()
            return str(value) if value is not None else None
        except Exception as e:
            logger.warning("Cache get failed: %s", e)
            return None

    async def _set_cached(self, key: str, value: str, ttl: int | None = None) -> None:
        if not self._redis:
            return
        try:
            await self._redis.set(key, value, ex=ttl or self._cache_ttl)
        except Exception as e:
            logger.warning("Cache set failed: %s", e)

    def _should_try_primary(self) -> bool:
        if self._primary_healthy:
            return True
        now = time.monotonic()
        if now - self._last_primary_check > self._primary_recovery_interval:
            self._last_primary_check = now
            return True
        return False

    async def _call_endpoint(
        self,
        client: AsyncClient,
        label: str,
        func_name: str,
        *args: Any,
        **kwargs: Any,
    ) -> tuple[bool, Any, Exception | None]:
        delay = self._retry_delay
        last_error: Exception | None = None
        for attempt in range(self._max_retries):
            await self._rate_limiter.acquire()
            try:
                method = getattr(client, func_name)
                return True, await method(*args, **kwargs), None
            except RPCException as e:
                raise LedgerRequestError(f"RPC {func_name} rejected: {e}") from e
            except RETRYABLE_ERRORS as e:
                last_error = e
                logger.warning(
                    "%s RPC %s failed (attempt %d/%d): %s",
                    label,
                    func_name,
                    attempt + 1,
                    self._max_retries,
                    e,
                )
                if attempt < self._max_retries - 1:
                    await asyncio.sleep(delay)
                    delay *= 2
        return False, None, last_error

    async def _execute_with_retry(self, func_name: str, *args: Any, **kwargs: Any) -> Any:
        """Execute an RPC call with retry and failover logic.

        Args:
            func_name: Name of the ``AsyncClient`` method to call.
            *args: Positional arguments for the method.
            **kwargs: Keyword arguments for the method.

        Returns:
            The solders response object.

        Raises:
            LedgerRPCError: If all retries and failover fail.
            LedgerRequestError: If the node rejects the request outright.
        """
        last_error: Exception | None = None

        if self._should_try_primary():
            ok, result, last_error = await self._call_endpoint(
                self._client, "Primary", func_name, *args, **kwargs
            )
            if ok:
                self._primary_healthy = True
                return result
            self._primary_healthy = False
            self._last_primary_check = time.monotonic()

        if self._fallback_client is not None:
            ok, result, fallback_error = await self._call_endpoint(
                self._fallback_client, "Fallback", func_name, *args, **kwargs
            )
            if ok:
                logger.info("Fallback RPC succeeded for %s", func_name)
                return result
            last_error = fallback_error

        raise LedgerRPCError(f"RPC call {func_name} failed after all retries: {last_error}")

    async def list_signatures(
        self,
        address: str,
        *,
        limit: int,
        before: str | None = None,
    ) -> list[SignatureRecord]:
        """List signatures for an address, most recent first.

        Args:
            address: Base58 account address.
            limit: Page size (the node caps this at 1000).
            before: Only return signatures older than this one.

        Returns:
            Signature records in the order the node returned them.
        """
        if limit < 1:
            raise ValueError("limit must be >= 1")
        resp = await self._execute_with_retry(
            "get_signatures_for_address",
            Pubkey.from_string(address),
            before=Signature.from_string(before) if before else None,
            limit=limit,
        )
        return [SignatureRecord.from_rpc(item) for item in resp.value or []]

    async def get_transaction(self, signature: str) -> DecodedTransaction | None:
        """Fetch and decode one transaction.

        Returns:
            The decoded transaction, or None when the node has no record of it.

        Raises:
            MalformedTransactionError: If the payload cannot be decoded.
            LedgerClientError: If the request fails.
        """
        cache_key = self._cache_key("tx", signature)
        cached = await self._get_cached(cache_key)
        if cached is not None:
            return DecodedTransaction.from_rpc_json(signature, json.loads(cached))

        resp = await self._execute_with_retry(
            "get_transaction",
            Signature.from_string(signature),
            encoding="jsonParsed",
            max_supported_transaction_version=MAX_SUPPORTED_TRANSACTION_VERSION,
        )
        payload = _result_payload(resp)
        if payload is None:
            return None

        tx = DecodedTransaction.from_rpc_json(signature, payload)
        await self._set_cached(cache_key, json.dumps(payload, separators=(",", ":")))
        return tx

    async def health_check(self) -> bool:
        """Check if the client can reach the RPC."""
        try:
            await self._execute_with_retry("get_slot")
            return True
        except LedgerClientError:
            return False

    async def aclose(self) -> None:
        """Close the underlying HTTP sessions."""
        clients = [self._client]
        if self._fallback_client is not None:
            clients.append(self._fallback_client)
        for client in clients:
            try:
                await client.close()
            except Exception as e:
                logger.warning("Failed to close RPC client session: %s", e)
