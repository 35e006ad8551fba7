"""Tests for the protocol transaction classifier."""

from dataclasses import replace
from decimal import Decimal

import pytest

from defi_position_tracker.classifier.classifier import (
    PriceBook,
    TransactionClassifier,
    instruction_names,
    position_id_from_instructions,
    position_id_from_logs,
)
from defi_position_tracker.classifier.models import (
    EventKind,
    FeeClaimPayload,
    PositionClosePayload,
    PositionOpenPayload,
    UnknownPayload,
)
from defi_position_tracker.classifier.protocols import (
    JUPITER_V6_PROGRAM,
    LST_MINTS,
    MAGIC_EDEN_V2_PROGRAM,
    METEORA_DLMM,
    METEORA_DLMM_PROGRAM,
    SANCTUM_PROGRAM,
    SOL_MINT,
    USDC_MINT,
    ClassifierConfig,
    UnknownProtocolError,
)
from defi_position_tracker.lifecycle.reconstructor import LifecycleReconstructor

PRICES = PriceBook(sol_usd=Decimal("100"))
JITOSOL_MINT = next(m for m, s in LST_MINTS.items() if s == "JitoSOL")


@pytest.fixture
def classifier() -> TransactionClassifier:
    return TransactionClassifier(ClassifierConfig.for_slugs(["meteora-dlmm"]))


@pytest.fixture
def open_tx(make_tx, balance, logs_for, wallet, pool_address, position_mint):
    """Deposit 5 SOL + 500 USDC into a new DLMM position."""
    return make_tx(
        "open-sig",
        logs=logs_for(METEORA_DLMM_PROGRAM, "InitializePosition", "AddLiquidityByStrategy"),
        pre_tokens=[
            balance(2, SOL_MINT, wallet, "10", 9),
            balance(3, USDC_MINT, wallet, "1000", 6),
            balance(4, SOL_MINT, pool_address, "500", 9),
            balance(5, USDC_MINT, pool_address, "80000", 6),
        ],
        post_tokens=[
            balance(2, SOL_MINT, wallet, "5", 9),
            balance(3, USDC_MINT, wallet, "500", 6),
            balance(4, SOL_MINT, pool_address, "505", 9),
            balance(5, USDC_MINT, pool_address, "80500", 6),
            balance(6, position_mint, wallet, "1", 0),
        ],
    )


@pytest.fixture
def close_tx(make_tx, balance, logs_for, wallet, pool_address, position_mint):
    """Withdraw 6 SOL + 600 USDC and close the position account."""
    return make_tx(
        "close-sig",
        block_time=1_760_086_400,
        logs=logs_for(METEORA_DLMM_PROGRAM, "RemoveLiquidity", "ClaimFee", "ClosePosition"),
        pre_tokens=[
            balance(2, SOL_MINT, wallet, "1", 9),
            balance(3, USDC_MINT, wallet, "100", 6),
            balance(4, SOL_MINT, pool_address, "505", 9),
            balance(5, USDC_MINT, pool_address, "80500", 6),
            balance(6, position_mint, wallet, "1", 0),
        ],
        post_tokens=[
            balance(2, SOL_MINT, wallet, "7", 9),
            balance(3, USDC_MINT, wallet, "700", 6),
            balance(4, SOL_MINT, pool_address, "499", 9),
            balance(5, USDC_MINT, pool_address, "79900", 6),
        ],
    )


def _claim_tx(make_tx, balance, logs_for, wallet, pool_address, names, extra=()):
    return make_tx(
        "claim-sig",
        logs=logs_for(METEORA_DLMM_PROGRAM, *names, extra=extra),
        pre_tokens=[
            balance(3, USDC_MINT, wallet, "100", 6),
            balance(5, USDC_MINT, pool_address, "80000", 6),
        ],
        post_tokens=[
            balance(3, USDC_MINT, wallet, "105", 6),
            balance(5, USDC_MINT, pool_address, "79995", 6),
        ],
    )


# ============================================================================
# Position lifecycle kinds
# ============================================================================


class TestPositionOpen:
    def test_receipt_minted_against_deposit(
        self, classifier, open_tx, wallet, pool_address, position_mint
    ) -> None:
        event = classifier.classify(open_tx, "meteora-dlmm", wallet_address=wallet, prices=PRICES)

        assert event is not None
        assert event.kind is EventKind.POSITION_OPEN
        assert event.protocol == "meteora-dlmm"
        assert event.position_id == position_mint
        assert event.pool_id == pool_address
        assert event.succeeded is True
        assert event.total_usd_value == Decimal("1000")

    def test_tokens_ordered_base_then_quote(self, classifier, open_tx, wallet) -> None:
        event = classifier.classify(open_tx, METEORA_DLMM, wallet_address=wallet, prices=PRICES)

        assert event.token_x.mint == SOL_MINT
        assert event.token_x.symbol == "SOL"
        assert event.token_x.amount == Decimal("-5")
        assert event.token_x.usd_value == Decimal("500")
        assert event.token_y.mint == USDC_MINT
        assert event.token_y.usd_value == Decimal("500")

    def test_payload(self, classifier, open_tx, wallet, position_mint) -> None:
        event = classifier.classify(open_tx, METEORA_DLMM, wallet_address=wallet, prices=PRICES)

        assert isinstance(event.payload, PositionOpenPayload)
        assert event.payload.receipt_mint == position_mint
        assert event.payload.instructions == ("InitializePosition", "AddLiquidityByStrategy")
        assert len(event.payload.deposited) == 2

    def test_native_sol_deposit(
        self, classifier, make_tx, balance, logs_for, wallet, position_mint
    ) -> None:
        tx = make_tx(
            logs=logs_for(METEORA_DLMM_PROGRAM, "InitializePosition"),
            lamport_change=-1_000_000_000,
            pre_tokens=[balance(3, USDC_MINT, wallet, "100", 6)],
            post_tokens=[
                balance(3, USDC_MINT, wallet, "0", 6),
                balance(6, position_mint, wallet, "1", 0),
            ],
        )

        event = classifier.classify(tx, METEORA_DLMM, wallet_address=wallet, prices=PRICES)

        assert event.kind is EventKind.POSITION_OPEN
        assert event.token_x.mint == SOL_MINT
        assert event.token_x.amount == Decimal("-1")
        assert event.total_usd_value == Decimal("200")

    def test_open_marker_without_receipt(self, classifier, make_tx, balance, logs_for, wallet) -> None:
        tx = make_tx(
            logs=logs_for(METEORA_DLMM_PROGRAM, "InitializePositionPda"),
            pre_tokens=[balance(3, USDC_MINT, wallet, "100", 6)],
            post_tokens=[balance(3, USDC_MINT, wallet, "40", 6)],
        )

        event = classifier.classify(tx, METEORA_DLMM, wallet_address=wallet, prices=PRICES)

        assert event.kind is EventKind.POSITION_OPEN
        assert event.total_usd_value == Decimal("60")


class TestPositionClose:
    def test_receipt_closed_against_withdrawal(
        self, classifier, close_tx, wallet, pool_address, position_mint
    ) -> None:
        event = classifier.classify(close_tx, METEORA_DLMM, wallet_address=wallet, prices=PRICES)

        assert event.kind is EventKind.POSITION_CLOSE
        assert event.position_id == position_mint
        assert event.pool_id == pool_address
        assert event.total_usd_value == Decimal("1200")
        assert event.block_time == 1_760_086_400
        assert isinstance(event.payload, PositionClosePayload)
        assert event.payload.receipt_mint == position_mint

    def test_close_marker_without_receipt(self, classifier, make_tx, balance, logs_for, wallet) -> None:
        tx = _claim_tx(
            make_tx, balance, logs_for, wallet, "pool", ("RemoveAllLiquidity", "ClosePositionIfEmpty")
        )

        event = classifier.classify(tx, METEORA_DLMM, wallet_address=wallet, prices=PRICES)

        assert event.kind is EventKind.POSITION_CLOSE


class TestFeeClaim:
    def test_claim_instruction_with_inflow(
        self, classifier, make_tx, balance, logs_for, wallet, pool_address, position_mint
    ) -> None:
        tx = _claim_tx(
            make_tx,
            balance,
            logs_for,
            wallet,
            pool_address,
            ("ClaimFee",),
            extra=(f"Program log: position: {position_mint}",),
        )

        event = classifier.classify(tx, METEORA_DLMM, wallet_address=wallet, prices=PRICES)

        assert event.kind is EventKind.FEE_CLAIM
        assert event.total_usd_value == Decimal("5")
        assert event.position_id == position_mint
        assert isinstance(event.payload, FeeClaimPayload)
        assert event.payload.claimed[0].amount == Decimal("5")

    def test_inflow_without_markers(self, classifier, make_tx, balance, logs_for, wallet, pool_address) -> None:
        tx = _claim_tx(make_tx, balance, logs_for, wallet, pool_address, ("Swap",))

        event = classifier.classify(tx, METEORA_DLMM, wallet_address=wallet, prices=PRICES)

        assert event.kind is EventKind.FEE_CLAIM
        assert event.position_id is None


# ============================================================================
# Ambiguity resolves to unknown
# ============================================================================


class TestUnknown:
    def test_partial_withdrawal(self, classifier, make_tx, balance, logs_for, wallet, pool_address) -> None:
        tx = _claim_tx(make_tx, balance, logs_for, wallet, pool_address, ("RemoveLiquidity",))

        event = classifier.classify(tx, METEORA_DLMM, wallet_address=wallet, prices=PRICES)

        assert event.kind is EventKind.UNKNOWN
        assert isinstance(event.payload, UnknownPayload)
        assert event.payload.reason == "partial withdrawal"
        assert event.payload.matched_program == METEORA_DLMM_PROGRAM

    def test_claim_alongside_withdrawal(self, classifier, make_tx, balance, logs_for, wallet) -> None:
        tx = _claim_tx(make_tx, balance, logs_for, wallet, "pool", ("RemoveLiquidity", "ClaimFee"))

        event = classifier.classify(tx, METEORA_DLMM, wallet_address=wallet, prices=PRICES)

        assert event.kind is EventKind.UNKNOWN

    def test_deposit_without_open(self, classifier, make_tx, balance, logs_for, wallet) -> None:
        tx = make_tx(
            logs=logs_for(METEORA_DLMM_PROGRAM, "AddLiquidity"),
            pre_tokens=[balance(3, USDC_MINT, wallet, "100", 6)],
            post_tokens=[balance(3, USDC_MINT, wallet, "50", 6)],
        )

        event = classifier.classify(tx, METEORA_DLMM, wallet_address=wallet, prices=PRICES)

        assert event.kind is EventKind.UNKNOWN
        assert event.payload.reason == "deposit without an open instruction"

    def test_mixed_flows(self, classifier, make_tx, balance, logs_for, wallet) -> None:
        tx = make_tx(
            logs=logs_for(METEORA_DLMM_PROGRAM, "Swap"),
            pre_tokens=[balance(2, SOL_MINT, wallet, "2", 9), balance(3, USDC_MINT, wallet, "0", 6)],
            post_tokens=[balance(2, SOL_MINT, wallet, "1", 9), balance(3, USDC_MINT, wallet, "99", 6)],
        )

        event = classifier.classify(tx, METEORA_DLMM, wallet_address=wallet, prices=PRICES)

        assert event.kind is EventKind.UNKNOWN
        assert event.payload.reason == "mixed token flows"

    def test_multiple_receipts(self, classifier, make_tx, balance, logs_for, wallet) -> None:
        tx = make_tx(
            logs=logs_for(METEORA_DLMM_PROGRAM, "InitializePosition"),
            pre_tokens=[balance(3, USDC_MINT, wallet, "100", 6)],
            post_tokens=[
                balance(3, USDC_MINT, wallet, "0", 6),
                balance(6, "NFTa" + "1" * 40, wallet, "1", 0),
                balance(7, "NFTb" + "1" * 40, wallet, "1", 0),
            ],
        )

        event = classifier.classify(tx, METEORA_DLMM, wallet_address=wallet, prices=PRICES)

        assert event.kind is EventKind.UNKNOWN
        assert event.position_id is None

    def test_receipt_minted_with_inflow(self, classifier, make_tx, balance, logs_for, wallet, position_mint) -> None:
        tx = make_tx(
            logs=logs_for(METEORA_DLMM_PROGRAM, "InitializePosition"),
            pre_tokens=[balance(3, USDC_MINT, wallet, "100", 6)],
            post_tokens=[
                balance(3, USDC_MINT, wallet, "150", 6),
                balance(6, position_mint, wallet, "1", 0),
            ],
        )

        event = classifier.classify(tx, METEORA_DLMM, wallet_address=wallet, prices=PRICES)

        assert event.kind is EventKind.UNKNOWN
        assert event.position_id == position_mint

    def test_swap_protocol_is_unknown(self, make_tx, balance, logs_for, wallet) -> None:
        classifier = TransactionClassifier(ClassifierConfig.for_slugs(["meteora-dlmm", "jupiter"]))
        tx = make_tx(
            program_id=JUPITER_V6_PROGRAM,
            logs=logs_for(JUPITER_V6_PROGRAM, "Route"),
            lamport_change=-1_000_000_000,
            pre_tokens=[balance(3, USDC_MINT, wallet, "0", 6)],
            post_tokens=[balance(3, USDC_MINT, wallet, "99.5", 6)],
        )

        event = classifier.classify_any(tx, wallet_address=wallet, prices=PRICES)

        assert event is not None
        assert event.protocol == "jupiter"
        assert event.kind is EventKind.UNKNOWN
        assert event.payload.matched_program == JUPITER_V6_PROGRAM

    def test_marketplace_is_unknown(self, make_tx, balance, logs_for, wallet) -> None:
        classifier = TransactionClassifier(ClassifierConfig.for_slugs(["magic-eden"]))
        tx = make_tx(
            program_id=MAGIC_EDEN_V2_PROGRAM,
            logs=logs_for(MAGIC_EDEN_V2_PROGRAM, "ExecuteSaleV2"),
            lamport_change=-3_000_000_000 // 2,
            post_tokens=[balance(6, "NFTc" + "1" * 40, wallet, "1", 0)],
        )

        event = classifier.classify(tx, "magic-eden", wallet_address=wallet, prices=PRICES)

        assert event.kind is EventKind.UNKNOWN
        assert event.payload.reason == "protocol does not track positions"


class TestLiquidStaking:
    def test_lst_mint_is_the_receipt(self, make_tx, balance, logs_for, wallet) -> None:
        classifier = TransactionClassifier(ClassifierConfig.for_slugs(["sanctum"]))
        tx = make_tx(
            program_id=SANCTUM_PROGRAM,
            logs=logs_for(SANCTUM_PROGRAM, "DepositSol"),
            lamport_change=-1_000_000_000,
            pre_tokens=[balance(3, JITOSOL_MINT, wallet, "0", 9)],
            post_tokens=[balance(3, JITOSOL_MINT, wallet, "0.87", 9)],
        )

        event = classifier.classify(tx, "sanctum", wallet_address=wallet, prices=PRICES)

        assert event.kind is EventKind.POSITION_OPEN
        assert event.position_id == JITOSOL_MINT
        assert event.total_usd_value == Decimal("100")


# ============================================================================
# No event
# ============================================================================


class TestNoEvent:
    def test_unrelated_program(self, classifier, make_tx, balance, logs_for, wallet) -> None:
        tx = make_tx(
            program_id=JUPITER_V6_PROGRAM,
            logs=logs_for(JUPITER_V6_PROGRAM, "Route"),
            pre_tokens=[balance(3, USDC_MINT, wallet, "0", 6)],
            post_tokens=[balance(3, USDC_MINT, wallet, "99.5", 6)],
        )

        assert classifier.classify_any(tx, wallet_address=wallet, prices=PRICES) is None

    def test_changes_below_epsilon(self, classifier, make_tx, balance, logs_for, wallet) -> None:
        tx = make_tx(
            logs=logs_for(METEORA_DLMM_PROGRAM, "ClaimFee"),
            pre_tokens=[balance(3, USDC_MINT, wallet, "100", 6)],
            post_tokens=[balance(3, USDC_MINT, wallet, "100.0000005", 6)],
        )

        assert classifier.classify(tx, METEORA_DLMM, wallet_address=wallet, prices=PRICES) is None

    def test_other_wallet_only(self, classifier, make_tx, balance, logs_for, wallet, pool_address) -> None:
        tx = make_tx(
            logs=logs_for(METEORA_DLMM_PROGRAM, "ClaimFee"),
            pre_tokens=[balance(5, USDC_MINT, pool_address, "100", 6)],
            post_tokens=[balance(5, USDC_MINT, pool_address, "90", 6)],
        )

        assert classifier.classify(tx, METEORA_DLMM, wallet_address=wallet, prices=PRICES) is None

    def test_unknown_protocol_slug(self, classifier, open_tx, wallet) -> None:
        with pytest.raises(UnknownProtocolError):
            classifier.classify(open_tx, "raydium", wallet_address=wallet, prices=PRICES)


# ============================================================================
# Failed transactions
# ============================================================================


class TestFailedTransactions:
    def test_kind_from_markers(self, classifier, make_tx, logs_for, wallet, position_mint) -> None:
        tx = make_tx(
            "failed-sig",
            err={"InstructionError": [1, {"Custom": 6001}]},
            logs=logs_for(
                METEORA_DLMM_PROGRAM,
                "InitializePosition",
                extra=(f"Program log: position: {position_mint}",),
            ),
        )

        event = classifier.classify(tx, METEORA_DLMM, wallet_address=wallet, prices=PRICES)

        assert event is not None
        assert event.succeeded is False
        assert event.kind is EventKind.POSITION_OPEN
        assert event.total_usd_value == Decimal("0")
        assert event.token_x is None
        assert event.position_id == position_mint
        assert event.fee_lamports == 5000

    def test_no_markers(self, classifier, make_tx, logs_for, wallet) -> None:
        tx = make_tx(err={"InstructionError": [1, "x"]}, logs=logs_for(METEORA_DLMM_PROGRAM))

        event = classifier.classify(tx, METEORA_DLMM, wallet_address=wallet, prices=PRICES)

        assert event.kind is EventKind.UNKNOWN
        assert event.payload.reason == "transaction failed"


# ============================================================================
# Purity
# ============================================================================


class TestDeterminism:
    def test_same_input_same_event(self, classifier, open_tx, close_tx, wallet) -> None:
        for tx in (open_tx, close_tx):
            first = classifier.classify_any(tx, wallet_address=wallet, prices=PRICES)
            second = classifier.classify_any(tx, wallet_address=wallet, prices=PRICES)
            assert first == second
            assert first.to_dict() == second.to_dict()

    def test_price_book_only_changes_valuation(self, classifier, open_tx, wallet) -> None:
        cheap = classifier.classify_any(open_tx, wallet_address=wallet, prices=PRICES)
        dear = classifier.classify_any(
            open_tx, wallet_address=wallet, prices=PriceBook(sol_usd=Decimal("200"))
        )

        assert cheap.kind is dear.kind
        assert cheap.position_id == dear.position_id
        assert dear.total_usd_value == Decimal("1500")


class TestLogHelpers:
    def test_instruction_names_scoped_to_protocol_frames(self, make_tx, logs_for) -> None:
        logs = [
            *logs_for(JUPITER_V6_PROGRAM, "ClosePosition"),
            *logs_for(METEORA_DLMM_PROGRAM, "ClaimFee"),
        ]
        tx = make_tx(logs=logs)

        assert instruction_names(tx, METEORA_DLMM) == ("ClaimFee",)

    def test_nested_frames(self, make_tx) -> None:
        logs = [
            f"Program {METEORA_DLMM_PROGRAM} invoke [1]",
            "Program log: Instruction: RemoveLiquidity",
            "Program TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA invoke [2]",
            "Program log: Instruction: Transfer",
            "Program TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA success",
            "Program log: Instruction: ClosePosition",
            f"Program {METEORA_DLMM_PROGRAM} success",
        ]
        tx = make_tx(logs=logs)

        assert instruction_names(tx, METEORA_DLMM) == ("RemoveLiquidity", "ClosePosition")

    def test_unscoped_logs_all_count(self, make_tx) -> None:
        tx = make_tx(logs=["Program log: Instruction: ClaimFee"])

        assert instruction_names(tx, METEORA_DLMM) == ("ClaimFee",)

    def test_position_id_from_logs(self, make_tx, position_mint) -> None:
        tx = make_tx(logs=[f"Program log: Position: {position_mint}"])

        assert position_id_from_logs(tx) == position_mint
        assert position_id_from_logs(make_tx(logs=["Program log: nothing"])) is None


# ============================================================================
# Position account resolution without receipts
# ============================================================================

POSITION_ACCOUNT = "PositionAccount" + "1" * 29
BIN_ARRAY = "BinArray" + "2" * 36
RESERVE_USDC = "Reserve" + "3" * 37
WALLET_USDC = "WalletAta" + "4" * 35


@pytest.fixture
def dlmm_tx(make_tx, balance, logs_for, wallet, pool_address):
    """DLMM transaction with real position/pool accounts and no receipt token.

    Account keys: 3 position, 4 pool, 5 bin array, 6 pool reserve, 7 wallet ATA.
    """
    keys = [
        {"pubkey": POSITION_ACCOUNT, "signer": False, "writable": True},
        {"pubkey": pool_address, "signer": False, "writable": True},
        {"pubkey": BIN_ARRAY, "signer": False, "writable": True},
        {"pubkey": RESERVE_USDC, "signer": False, "writable": True},
        {"pubkey": WALLET_USDC, "signer": False, "writable": True},
    ]

    def build(signature, names, accounts, wallet_change, *, block_time=1_760_000_000, **kwargs):
        return make_tx(
            signature,
            block_time=block_time,
            extra_keys=keys,
            ix_accounts=accounts,
            logs=logs_for(METEORA_DLMM_PROGRAM, *names),
            pre_tokens=[
                balance(6, USDC_MINT, pool_address, "50000", 6),
                balance(7, USDC_MINT, wallet, "1000", 6),
            ],
            post_tokens=[
                balance(6, USDC_MINT, pool_address, str(50000 - wallet_change), 6),
                balance(7, USDC_MINT, wallet, str(1000 + wallet_change), 6),
            ],
            **kwargs,
        )

    return build


class TestPositionAccountResolution:
    def test_open_claim_close_share_position_account(
        self, classifier, dlmm_tx, wallet, pool_address
    ) -> None:
        opened = dlmm_tx(
            "open",
            ("InitializePosition", "AddLiquidityByStrategy"),
            [wallet, POSITION_ACCOUNT, pool_address, WALLET_USDC, RESERVE_USDC, BIN_ARRAY],
            -100,
        )
        claimed = dlmm_tx(
            "claim",
            ("ClaimFee",),
            [pool_address, POSITION_ACCOUNT, BIN_ARRAY, wallet, RESERVE_USDC, WALLET_USDC],
            5,
            block_time=1_760_000_100,
        )
        closed = dlmm_tx(
            "close",
            ("RemoveLiquidity", "ClosePosition"),
            [POSITION_ACCOUNT, pool_address, BIN_ARRAY, wallet],
            120,
            block_time=1_760_000_200,
        )

        events = [
            classifier.classify(tx, METEORA_DLMM, wallet_address=wallet, prices=PRICES)
            for tx in (opened, claimed, closed)
        ]

        assert [e.kind for e in events] == [
            EventKind.POSITION_OPEN,
            EventKind.FEE_CLAIM,
            EventKind.POSITION_CLOSE,
        ]
        assert {e.position_id for e in events} == {POSITION_ACCOUNT}
        assert all(e.pool_id == pool_address for e in events)

        result = LifecycleReconstructor().reconstruct(wallet, events)
        lc = result.lifecycle("meteora-dlmm", POSITION_ACCOUNT)
        assert lc.is_closed is True
        assert lc.fee_claim_count == 1
        assert lc.realized_pnl == Decimal("25")
        assert result.unattributed_events == ()

    def test_log_line_takes_precedence(self, classifier, make_tx, wallet, position_mint) -> None:
        tx = make_tx(
            extra_keys=[{"pubkey": POSITION_ACCOUNT, "signer": False, "writable": True}],
            ix_accounts=[POSITION_ACCOUNT],
            logs=[f"Program log: Position: {position_mint}"],
        )

        assert classifier._position_id(tx, METEORA_DLMM, wallet) == position_mint

    def test_failed_transaction_resolves_position_account(self, classifier, dlmm_tx, wallet) -> None:
        tx = dlmm_tx(
            "failed-close",
            ("ClosePosition",),
            [POSITION_ACCOUNT, wallet],
            0,
            err={"InstructionError": [1, "Custom"]},
        )

        event = classifier.classify(tx, METEORA_DLMM, wallet_address=wallet, prices=PRICES)

        assert event.kind is EventKind.POSITION_CLOSE
        assert event.position_id == POSITION_ACCOUNT

    def test_skips_wallet_token_accounts_and_readonly(self, dlmm_tx, wallet, pool_address) -> None:
        tx = dlmm_tx(
            "claim",
            ("ClaimFee",),
            [wallet, WALLET_USDC, RESERVE_USDC, pool_address, METEORA_DLMM_PROGRAM],
            5,
        )

        assert position_id_from_instructions(tx, METEORA_DLMM, wallet) is None

    def test_disabled_by_protocol_flag(self, dlmm_tx, wallet, pool_address) -> None:
        protocol = replace(METEORA_DLMM, position_id_from_instructions=False)
        classifier = TransactionClassifier(ClassifierConfig(protocols=(protocol,)))
        tx = dlmm_tx("claim", ("ClaimFee",), [pool_address, POSITION_ACCOUNT], 5)

        event = classifier.classify(tx, protocol, wallet_address=wallet, prices=PRICES)

        assert event.kind is EventKind.FEE_CLAIM
        assert event.position_id is None
