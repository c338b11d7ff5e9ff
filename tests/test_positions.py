"""
test_positions.py - Unit tests for positions.py

Tests:
- record_deposit / record_redeem / record_mint / record_burn validation
- Collateral valuation and account information
- Event emission and subscription
- atomic(): rollback, nesting, deferred event publication
"""

import pytest

from stableledger import (
    CollateralRegistry, PositionLedger, PriceResolver, Erc20Token,
    CollateralDeposited, CollateralRedeemed, UnknownAssetError,
)

E18 = 10 ** 18


@pytest.fixture
def ledger(weth, wbtc, eth_usd, btc_usd):
    registry = CollateralRegistry([weth, wbtc], [eth_usd, btc_usd])
    return PositionLedger(registry, PriceResolver(registry))


class TestReads:

    def test_unknown_account_is_all_zero(self, ledger, weth):
        assert ledger.collateral_balance("nobody", weth) == 0
        assert ledger.debt_of("nobody") == 0
        assert ledger.account_information("nobody") == (0, 0)
        assert ledger.accounts() == set()

    def test_total_collateral_usd_sums_assets(self, ledger, weth, wbtc):
        ledger.record_deposit("alice", weth, 10 * E18)
        ledger.record_deposit("alice", wbtc, 1 * E18)
        # 10 * 2000 + 1 * 1000
        assert ledger.total_collateral_usd("alice") == 21_000 * E18

    def test_account_information(self, ledger, weth):
        ledger.record_deposit("alice", weth, 10 * E18)
        ledger.record_mint("alice", 100 * E18)
        assert ledger.account_information("alice") == (100 * E18, 20_000 * E18)

    def test_totals(self, ledger, weth):
        ledger.record_deposit("alice", weth, 3 * E18)
        ledger.record_deposit("bob", weth, 4 * E18)
        ledger.record_mint("alice", 5)
        ledger.record_mint("bob", 7)
        assert ledger.total_collateral(weth) == 7 * E18
        assert ledger.total_debt() == 12
        assert ledger.accounts() == {"alice", "bob"}


class TestRecordDeposit:

    def test_adds_to_balance(self, ledger, weth):
        ledger.record_deposit("alice", weth, 5)
        ledger.record_deposit("alice", weth, 7)
        assert ledger.collateral_balance("alice", weth) == 12

    def test_zero_amount(self, ledger, weth):
        with pytest.raises(ValueError):
            ledger.record_deposit("alice", weth, 0)

    def test_unknown_asset_is_value_error(self, ledger):
        with pytest.raises(ValueError):
            ledger.record_deposit("alice", Erc20Token("Random", "RAN"), 5)
        with pytest.raises(UnknownAssetError):
            ledger.record_deposit("alice", "RAN", 5)
        assert ledger.accounts() == set()

    def test_emits_event(self, ledger, weth):
        ledger.record_deposit("alice", weth, 5)
        assert ledger.event_log == [CollateralDeposited("alice", weth, 5)]


class TestRecordRedeem:

    def test_subtracts_and_emits(self, ledger, weth):
        ledger.record_deposit("alice", weth, 10)
        ledger.record_redeem("alice", "liquidator", weth, 4)
        assert ledger.collateral_balance("alice", weth) == 6
        assert ledger.event_log[-1] == CollateralRedeemed("alice", "liquidator", weth, 4)

    def test_can_redeem_entire_balance(self, ledger, weth):
        ledger.record_deposit("alice", weth, 10)
        ledger.record_redeem("alice", "alice", weth, 10)
        assert ledger.collateral_balance("alice", weth) == 0
        assert ledger.accounts() == set()

    def test_more_than_balance(self, ledger, weth):
        ledger.record_deposit("alice", weth, 10)
        with pytest.raises(ValueError, match="balance is 10"):
            ledger.record_redeem("alice", "alice", weth, 11)
        assert ledger.collateral_balance("alice", weth) == 10

    def test_zero_amount(self, ledger, weth):
        with pytest.raises(ValueError):
            ledger.record_redeem("alice", "alice", weth, 0)


class TestDebt:

    def test_mint_and_burn(self, ledger):
        ledger.record_mint("alice", 100)
        ledger.record_burn("alice", 40)
        assert ledger.debt_of("alice") == 60

    def test_mint_zero(self, ledger):
        with pytest.raises(ValueError):
            ledger.record_mint("alice", 0)

    def test_burn_zero(self, ledger):
        ledger.record_mint("alice", 100)
        with pytest.raises(ValueError):
            ledger.record_burn("alice", 0)

    def test_burn_more_than_debt(self, ledger):
        ledger.record_mint("alice", 100)
        with pytest.raises(ValueError, match="debt is 100"):
            ledger.record_burn("alice", 101)
        assert ledger.debt_of("alice") == 100

    def test_negative_amounts(self, ledger, weth):
        with pytest.raises(ValueError):
            ledger.record_mint("alice", -1)
        with pytest.raises(ValueError):
            ledger.record_deposit("alice", weth, -1)


class TestAtomic:

    def test_commit_keeps_changes(self, ledger, weth):
        with ledger.atomic():
            ledger.record_deposit("alice", weth, 10)
            ledger.record_mint("alice", 3)
        assert ledger.account_information("alice")[0] == 3
        assert ledger.collateral_balance("alice", weth) == 10

    def test_exception_restores_state(self, ledger, weth):
        ledger.record_deposit("alice", weth, 10)
        ledger.record_mint("alice", 3)
        with pytest.raises(RuntimeError):
            with ledger.atomic():
                ledger.record_redeem("alice", "alice", weth, 10)
                ledger.record_burn("alice", 3)
                ledger.record_deposit("bob", weth, 1)
                raise RuntimeError("abort")
        assert ledger.collateral_balance("alice", weth) == 10
        assert ledger.debt_of("alice") == 3
        assert ledger.collateral_balance("bob", weth) == 0
        assert ledger.accounts() == {"alice"}

    def test_events_published_on_commit_only(self, ledger, weth):
        seen = []
        ledger.subscribe(seen.append)
        with ledger.atomic():
            ledger.record_deposit("alice", weth, 10)
            assert seen == []
            assert ledger.event_log == []
        assert seen == [CollateralDeposited("alice", weth, 10)]

    def test_failing_listener_keeps_delivery_going(self, ledger, weth):
        seen = []

        def broken(event):
            raise RuntimeError("listener down")

        ledger.subscribe(broken)
        ledger.subscribe(seen.append)
        with ledger.atomic():
            ledger.record_deposit("alice", weth, 10)
            ledger.record_redeem("alice", "alice", weth, 4)
        assert seen == [
            CollateralDeposited("alice", weth, 10),
            CollateralRedeemed("alice", "alice", weth, 4),
        ]
        assert ledger.event_log == seen
        assert ledger.collateral_balance("alice", weth) == 6

    def test_deferred_publication(self, ledger, weth):
        with ledger.atomic(publish=False):
            ledger.record_deposit("alice", weth, 10)
        assert not ledger.in_transaction
        assert ledger.event_log == []
        ledger.publish()
        assert ledger.event_log == [CollateralDeposited("alice", weth, 10)]

    def test_events_discarded_on_rollback(self, ledger, weth):
        seen = []
        ledger.subscribe(seen.append)
        with pytest.raises(ValueError):
            with ledger.atomic():
                ledger.record_deposit("alice", weth, 10)
                ledger.record_redeem("alice", "alice", weth, 11)
        assert seen == []
        assert ledger.event_log == []

    def test_nested_inner_rollback(self, ledger, weth):
        with ledger.atomic():
            ledger.record_deposit("alice", weth, 10)
            with pytest.raises(ValueError):
                with ledger.atomic():
                    ledger.record_deposit("alice", weth, 5)
                    ledger.record_burn("alice", 1)
            assert ledger.collateral_balance("alice", weth) == 10
            assert ledger.in_transaction
        assert not ledger.in_transaction
        assert ledger.event_log == [CollateralDeposited("alice", weth, 10)]

    def test_outer_rollback_discards_committed_inner(self, ledger, weth):
        with pytest.raises(RuntimeError):
            with ledger.atomic():
                with ledger.atomic():
                    ledger.record_deposit("alice", weth, 10)
                raise RuntimeError("abort")
        assert ledger.collateral_balance("alice", weth) == 0
        assert ledger.event_log == []
