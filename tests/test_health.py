"""
test_health.py - Unit tests for health.py
"""

import pytest

from stableledger import (
    CollateralRegistry, PositionLedger, PriceResolver, HealthFactorEngine,
    EngineConfig, HealthFactorBrokenError, calculate_health_factor,
    MAX_HEALTH_FACTOR, MIN_HEALTH_FACTOR,
)

E18 = 10 ** 18


class TestCalculateHealthFactor:

    def test_no_debt_is_max(self):
        assert calculate_health_factor(0, 0) == MAX_HEALTH_FACTOR
        assert calculate_health_factor(0, 20_000 * E18) == MAX_HEALTH_FACTOR

    def test_reference_position(self):
        # 20,000 USD backing 100 DSC at a 50% threshold
        assert calculate_health_factor(100 * E18, 20_000 * E18) == 100 * E18

    def test_after_crash(self):
        # 10 ETH at 18 USD backing 100 DSC
        assert calculate_health_factor(100 * E18, 180 * E18) == 9 * 10 ** 17

    def test_debt_without_collateral(self):
        assert calculate_health_factor(1, 0) == 0

    def test_exactly_at_minimum(self):
        assert calculate_health_factor(100 * E18, 200 * E18) == MIN_HEALTH_FACTOR

    def test_floors(self):
        # 10,000 adjusted USD over 10,000 USD + 1 wei of debt
        assert calculate_health_factor(10_000 * E18 + 1, 20_000 * E18) == MIN_HEALTH_FACTOR - 1

    def test_custom_threshold(self):
        config = EngineConfig(liquidation_threshold=80)
        assert calculate_health_factor(100 * E18, 200 * E18, config) == 16 * 10 ** 17


class TestHealthFactorEngine:

    @pytest.fixture
    def setup(self, weth, eth_usd):
        registry = CollateralRegistry([weth], [eth_usd])
        ledger = PositionLedger(registry, PriceResolver(registry))
        return ledger, HealthFactorEngine(ledger)

    def test_fresh_account(self, setup):
        ledger, health = setup
        assert health.health_factor("alice") == MAX_HEALTH_FACTOR
        assert not health.is_liquidatable("alice")

    def test_follows_price(self, setup, weth, eth_usd):
        ledger, health = setup
        ledger.record_deposit("alice", weth, 10 * E18)
        ledger.record_mint("alice", 100 * E18)
        assert health.health_factor("alice") == 100 * E18
        eth_usd.update_price(18 * 10 ** 8)
        assert health.health_factor("alice") == 9 * 10 ** 17
        assert health.is_liquidatable("alice")

    def test_assert_healthy_returns_value(self, setup, weth):
        ledger, health = setup
        ledger.record_deposit("alice", weth, 10 * E18)
        ledger.record_mint("alice", 10_000 * E18)
        assert health.assert_healthy("alice") == MIN_HEALTH_FACTOR

    def test_assert_healthy_raises(self, setup, weth):
        ledger, health = setup
        ledger.record_deposit("alice", weth, 10 * E18)
        ledger.record_mint("alice", 10_000 * E18 + 1)
        with pytest.raises(HealthFactorBrokenError) as exc_info:
            health.assert_healthy("alice")
        assert exc_info.value.account == "alice"
        assert exc_info.value.health_factor == MIN_HEALTH_FACTOR - 1

    def test_uses_given_snapshot(self, setup, weth, eth_usd):
        ledger, health = setup
        ledger.record_deposit("alice", weth, 10 * E18)
        ledger.record_mint("alice", 100 * E18)
        snapshot = ledger.resolver.snapshot()
        assert health.health_factor("alice", snapshot) == 100 * E18
        eth_usd.update_price(18 * 10 ** 8)
        assert health.health_factor("alice", snapshot) == 100 * E18
        assert health.is_liquidatable("alice")
