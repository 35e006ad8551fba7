"""Data models for the ledger layer.

Signature records and decoded transactions are immutable snapshots of what
the Solana RPC returned. They are built from the ``jsonParsed`` encoding of
``getTransaction`` and carry only the fields classification needs.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

LAMPORTS_PER_SOL = Decimal(1_000_000_000)

_INVOKE_LOG_RE = re.compile(r"^Program (\w{32,44}) invoke \[\d+\]")


class MalformedTransactionError(ValueError):
    """Raised when a transaction payload cannot be decoded."""


@dataclass(frozen=True)
class SignatureRecord:
    """One entry from getSignaturesForAddress."""

    signature: str
    slot: int
    block_time: int | None
    errored: bool

    @classmethod
    def from_rpc(cls, item: Any) -> SignatureRecord:
        """Create from a solders ``RpcConfirmedTransactionStatusWithSignature``."""
        return cls(
            signature=str(item.signature),
            slot=int(item.slot),
            block_time=int(item.block_time) if item.block_time is not None else None,
            errored=item.err is not None,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SignatureRecord:
        block_time = data.get("blockTime")
        return cls(
            signature=str(data["signature"]),
            slot=int(data["slot"]),
            block_time=int(block_time) if block_time is not None else None,
            errored=data.get("err") is not None,
        )


@dataclass(frozen=True)
class AccountKey:
    """An account referenced by a transaction message."""

    address: str
    is_writable: bool
    is_signer: bool

    @classmethod
    def from_dict(cls, data: dict[str, Any] | str) -> AccountKey:
        # Legacy ``json`` encoding lists bare addresses.
        if isinstance(data, str):
            return cls(address=data, is_writable=False, is_signer=False)
        return cls(
            address=str(data["pubkey"]),
            is_writable=bool(data.get("writable", False)),
            is_signer=bool(data.get("signer", False)),
        )


@dataclass(frozen=True)
class Instruction:
    """A compiled or parsed instruction (top-level or inner)."""

    program_id: str
    accounts: tuple[str, ...] = ()
    program: str | None = None
    parsed_type: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], account_keys: tuple[AccountKey, ...]) -> Instruction:
        program_id = data.get("programId")
        if program_id is None and "programIdIndex" in data:
            index = int(data["programIdIndex"])
            if index >= len(account_keys):
                raise MalformedTransactionError(f"programIdIndex {index} out of range")
            program_id = account_keys[index].address
        if program_id is None:
            raise MalformedTransactionError("instruction has no program id")

        accounts: tuple[str, ...] = ()
        raw_accounts = data.get("accounts") or []
        if raw_accounts and isinstance(raw_accounts[0], int):
            accounts = tuple(
                account_keys[i].address for i in raw_accounts if i < len(account_keys)
            )
        else:
            accounts = tuple(str(a) for a in raw_accounts)

        parsed = data.get("parsed")
        parsed_type = parsed.get("type") if isinstance(parsed, dict) else None
        return cls(
            program_id=str(program_id),
            accounts=accounts,
            program=data.get("program"),
            parsed_type=parsed_type,
        )


@dataclass(frozen=True)
class TokenBalance:
    """An SPL token balance entry from the transaction meta."""

    account_index: int
    mint: str
    owner: str | None
    amount: Decimal
    decimals: int

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TokenBalance:
        ui = data.get("uiTokenAmount") or {}
        decimals = int(ui.get("decimals", 0))
        raw = ui.get("uiAmountString")
        try:
            if raw is not None:
                amount = Decimal(str(raw))
            elif ui.get("amount") is not None:
                amount = Decimal(str(ui["amount"])).scaleb(-decimals)
            else:
                amount = Decimal(0)
        except InvalidOperation as e:
            raise MalformedTransactionError(f"invalid token amount: {raw!r}") from e
        return cls(
            account_index=int(data["accountIndex"]),
            mint=str(data["mint"]),
            owner=str(data["owner"]) if data.get("owner") else None,
            amount=amount,
            decimals=decimals,
        )


@dataclass(frozen=True)
class DecodedTransaction:
    """A fully fetched transaction, reduced to classification inputs."""

    signature: str
    slot: int
    block_time: int | None
    account_keys: tuple[AccountKey, ...]
    instructions: tuple[Instruction, ...]
    inner_instructions: tuple[Instruction, ...]
    pre_token_balances: tuple[TokenBalance, ...]
    post_token_balances: tuple[TokenBalance, ...]
    pre_balances: tuple[int, ...]
    post_balances: tuple[int, ...]
    log_messages: tuple[str, ...]
    fee: int
    succeeded: bool

    @property
    def fee_payer(self) -> str | None:
        return self.account_keys[0].address if self.account_keys else None

    def account_index(self, address: str) -> int | None:
        for i, key in enumerate(self.account_keys):
            if key.address == address:
                return i
        return None

    def invoked_programs(self) -> tuple[str, ...]:
        """Program ids named by ``Program <id> invoke [n]`` log lines, in order."""
        seen: list[str] = []
        for line in self.log_messages:
            match = _INVOKE_LOG_RE.match(line)
            if match and match.group(1) not in seen:
                seen.append(match.group(1))
        return tuple(seen)

    @classmethod
    def from_rpc_json(cls, signature: str, data: dict[str, Any]) -> DecodedTransaction:
        """Decode a ``getTransaction`` result (jsonParsed or json encoding).

        Raises:
            MalformedTransactionError: If required sections are missing.
        """
        try:
            meta = data.get("meta")
            message = data["transaction"]["message"]
        except (KeyError, TypeError) as e:
            raise MalformedTransactionError(f"transaction {signature} missing message: {e}") from e
        if not isinstance(meta, dict):
            raise MalformedTransactionError(f"transaction {signature} has no meta")

        try:
            account_keys = tuple(AccountKey.from_dict(k) for k in message.get("accountKeys", []))
            # v0 transactions may load extra accounts through lookup tables.
            loaded = meta.get("loadedAddresses") or {}
            if loaded and account_keys and not isinstance(message["accountKeys"][0], dict):
                account_keys += tuple(
                    AccountKey(address=a, is_writable=True, is_signer=False)
                    for a in loaded.get("writable", [])
                ) + tuple(
                    AccountKey(address=a, is_writable=False, is_signer=False)
                    for a in loaded.get("readonly", [])
                )

            instructions = tuple(
                Instruction.from_dict(ix, account_keys) for ix in message.get("instructions", [])
            )
            inner = tuple(
                Instruction.from_dict(ix, account_keys)
                for group in meta.get("innerInstructions") or []
                for ix in group.get("instructions", [])
            )
            pre_tokens = tuple(TokenBalance.from_dict(b) for b in meta.get("preTokenBalances") or [])
            post_tokens = tuple(
                TokenBalance.from_dict(b) for b in meta.get("postTokenBalances") or []
            )
            block_time = data.get("blockTime")
            return cls(
                signature=signature,
                slot=int(data.get("slot", 0)),
                block_time=int(block_time) if block_time is not None else None,
                account_keys=account_keys,
                instructions=instructions,
                inner_instructions=inner,
                pre_token_balances=pre_tokens,
                post_token_balances=post_tokens,
                pre_balances=tuple(int(b) for b in meta.get("preBalances") or []),
                post_balances=tuple(int(b) for b in meta.get("postBalances") or []),
                log_messages=tuple(str(m) for m in meta.get("logMessages") or []),
                fee=int(meta.get("fee") or 0),
                succeeded=meta.get("err") is None,
            )
        except MalformedTransactionError:
            raise
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedTransactionError(f"transaction {signature} could not be decoded: {e}") from e
