"""Tests for protocol definitions and classifier configuration."""

import pytest

from defi_position_tracker.classifier.protocols import (
    BUILTIN_PROTOCOLS,
    METEORA_DLMM_PROGRAM,
    METEORA_POOLS_PROGRAM,
    SOL_MINT,
    USDC_MINT,
    ClassifierConfig,
    PriceClass,
    UnknownProtocolError,
    default_token_registry,
)


class TestClassifierConfig:
    def test_for_slugs_keeps_order(self) -> None:
        config = ClassifierConfig.for_slugs(["jupiter", "meteora-dlmm"])

        assert [p.slug for p in config.protocols] == ["jupiter", "meteora-dlmm"]
        assert config.protocol("meteora-dlmm") is BUILTIN_PROTOCOLS["meteora-dlmm"]

    def test_unknown_slug(self) -> None:
        with pytest.raises(UnknownProtocolError):
            ClassifierConfig.for_slugs(["orca"])

        with pytest.raises(UnknownProtocolError):
            ClassifierConfig.for_slugs(["jupiter"]).protocol("meteora-dlmm")


class TestBuiltins:
    def test_meteora_program_ids(self) -> None:
        meteora = BUILTIN_PROTOCOLS["meteora-dlmm"]

        assert meteora.matches_program(METEORA_DLMM_PROGRAM)
        assert meteora.matches_program(METEORA_POOLS_PROGRAM)
        assert not meteora.matches_program(SOL_MINT)

    def test_only_position_protocols_track_positions(self) -> None:
        tracking = {slug for slug, p in BUILTIN_PROTOCOLS.items() if p.tracks_positions}

        assert tracking == {"meteora-dlmm", "sanctum"}


class TestTokenRegistry:
    def test_price_classes(self) -> None:
        registry = default_token_registry()

        assert registry.price_class(SOL_MINT) is PriceClass.NATIVE
        assert registry.price_class(USDC_MINT) is PriceClass.STABLE
        assert registry.price_class("SomeMemeCoin") is PriceClass.UNPRICED
        assert registry.symbol(USDC_MINT) == "USDC"
        assert registry.symbol("SomeMemeCoin") is None

    def test_quote_rank_orders_base_native_stable(self) -> None:
        registry = default_token_registry()

        ranks = [registry.quote_rank(m) for m in ("SomeMemeCoin", SOL_MINT, USDC_MINT)]

        assert ranks == sorted(ranks)
        assert len(set(ranks)) == 3
