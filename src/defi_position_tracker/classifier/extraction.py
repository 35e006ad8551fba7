"""Program-id extraction strategies.

A transaction can name the program it touched in several places. Each
strategy looks in one place and returns the first matching program id, or
None. ``first_match`` runs them in a fixed order and the first hit wins.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass

from defi_position_tracker.classifier.protocols import ProtocolDefinition
from defi_position_tracker.ledger.models import DecodedTransaction


@dataclass(frozen=True)
class ProgramMatch:
    program_id: str
    strategy: str


ExtractionStrategy = Callable[[DecodedTransaction, ProtocolDefinition], ProgramMatch | None]


def _first(candidates: Iterable[str], protocol: ProtocolDefinition, strategy: str) -> ProgramMatch | None:
    for program_id in candidates:
        if protocol.matches_program(program_id):
            return ProgramMatch(program_id=program_id, strategy=strategy)
    return None


def from_top_level_instructions(
    tx: DecodedTransaction, protocol: ProtocolDefinition
) -> ProgramMatch | None:
    return _first((ix.program_id for ix in tx.instructions), protocol, "instructions")


def from_inner_instructions(
    tx: DecodedTransaction, protocol: ProtocolDefinition
) -> ProgramMatch | None:
    return _first((ix.program_id for ix in tx.inner_instructions), protocol, "inner_instructions")


def from_invoke_logs(tx: DecodedTransaction, protocol: ProtocolDefinition) -> ProgramMatch | None:
    return _first(tx.invoked_programs(), protocol, "logs")


def from_account_keys(tx: DecodedTransaction, protocol: ProtocolDefinition) -> ProgramMatch | None:
    # Some nodes surface a program only as a referenced account.
    return _first((key.address for key in tx.account_keys), protocol, "account_keys")


DEFAULT_STRATEGIES: tuple[ExtractionStrategy, ...] = (
    from_top_level_instructions,
    from_inner_instructions,
    from_invoke_logs,
    from_account_keys,
)


def first_match(
    tx: DecodedTransaction,
    protocol: ProtocolDefinition,
    strategies: Sequence[ExtractionStrategy] = DEFAULT_STRATEGIES,
) -> ProgramMatch | None:
    for strategy in strategies:
        match = strategy(tx, protocol)
        if match is not None:
            return match
    return None
