#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Learn the Stable-Asset Engine Step by Step

This is a pedagogical demonstration of a collateral-backed stable asset.
Each step builds on the previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3: Foundation  - Collateral, price feeds, deposits, minting
  4-5: Safety      - Health factors, rejected operations, atomic rollback
  6-7: Stress      - A price crash and a bonus-paying liquidation
  8:   Unwinding   - Burning debt, redeeming collateral, the solvency check

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
    python demo.py --debug   # Also show engine log records
"""

from dataclasses import dataclass
from decimal import Decimal
import logging
import sys

from stableledger import (
    # Engine
    DSCEngine, EngineError,
    # Reference collaborators
    Erc20Token, StableCoin, StaticPriceFeed,
    # Helpers
    to_units, format_units, format_health_factor,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    eth_price: Decimal = Decimal("2000")
    btc_price: Decimal = Decimal("1000")
    crash_price: Decimal = Decimal("18")
    feed_decimals: int = 8

    alice_collateral: Decimal = Decimal("10")
    alice_mint: Decimal = Decimal("100")

    bob_collateral: Decimal = Decimal("20")
    bob_mint: Decimal = Decimal("100")


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    """Print a step header with learning objective."""
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    """Print a section header within a step."""
    print(f"\n--- {text} ---\n")


def show_position(engine: DSCEngine, account: str):
    debt, collateral_usd = engine.get_account_information(account)
    print(f"{account:>10}: debt={format_units(debt):>8} DSC  "
          f"collateral={format_units(collateral_usd):>10} USD  "
          f"health={format_health_factor(engine.get_health_factor(account))}")


# ============================================================================
# PHASE 1: FOUNDATION (Steps 1-3)
# ============================================================================

def step_01_collateral_and_feeds():
    """Build the engine from its collaborators."""
    step_header(1, "Collateral and Price Feeds",
        "Understand what the engine accepts and how it values it.")

    print("""
    The engine is configured once with:

    1. COLLATERAL - the tokens it accepts (WETH, WBTC)
    2. FEEDS      - one USD price feed per collateral token
    3. DSC        - the stable asset it mints, which it must own
    """)

    weth = Erc20Token("Wrapped Ether", "WETH")
    wbtc = Erc20Token("Wrapped Bitcoin", "WBTC")
    eth_usd = StaticPriceFeed(to_units(CONFIG.eth_price, CONFIG.feed_decimals),
                              CONFIG.feed_decimals, description="ETH / USD")
    btc_usd = StaticPriceFeed(to_units(CONFIG.btc_price, CONFIG.feed_decimals),
                              CONFIG.feed_decimals, description="BTC / USD")
    dsc = StableCoin()

    print(">>> engine = DSCEngine([weth, wbtc], [eth_usd, btc_usd], dsc)")
    engine = DSCEngine([weth, wbtc], [eth_usd, btc_usd], dsc)
    dsc.transfer_ownership(engine.address)

    section_header("Valuation")
    print(f"15 WETH  = {format_units(engine.get_usd_value(weth, to_units(15)))} USD")
    print(f"100 USD  = {format_units(engine.get_token_amount_from_usd(weth, to_units(100)))} WETH")
    print(f"Threshold: {engine.get_liquidation_threshold()}%   "
          f"Bonus: {engine.get_liquidation_bonus()}%")

    return engine, weth, eth_usd, dsc


def step_02_deposit(engine: DSCEngine, weth: Erc20Token):
    step_header(2, "Depositing Collateral",
        "See collateral move from a wallet into engine custody.")

    weth.mint("alice", to_units(CONFIG.alice_collateral))
    weth.approve("alice", engine.address, to_units(CONFIG.alice_collateral))

    print(">>> engine.deposit_collateral('alice', weth, 10 WETH)")
    engine.deposit_collateral("alice", weth, to_units(CONFIG.alice_collateral))

    section_header("Custody")
    print(f"alice wallet:   {format_units(weth.balance_of('alice'))} WETH")
    print(f"engine custody: {format_units(weth.balance_of(engine.address))} WETH")
    show_position(engine, "alice")


def step_03_mint(engine: DSCEngine):
    step_header(3, "Minting the Stable Asset",
        "Borrow DSC against collateral and read the health factor.")

    print("""
    health_factor = (collateral_usd * 50 / 100) / debt

    An account is healthy while its health factor is at least 1.0.
    """)

    print(">>> engine.mint_dsc('alice', 100 DSC)")
    engine.mint_dsc("alice", to_units(CONFIG.alice_mint))
    show_position(engine, "alice")


# ============================================================================
# PHASE 2: SAFETY (Steps 4-5)
# ============================================================================

def step_04_rejected_mint(engine: DSCEngine):
    step_header(4, "Rejected Operations",
        "Observe that an operation breaking the health factor never happens.")

    before = engine.get_account_information("alice")
    print(">>> engine.mint_dsc('alice', 10,000 DSC)   # would push health below 1.0")
    try:
        engine.mint_dsc("alice", to_units(10_000))
    except EngineError as exc:
        print(f"Caught {type(exc).__name__}")

    section_header("Key Insight")
    print(f"Position before: {before}")
    print(f"Position after:  {engine.get_account_information('alice')}")
    print("""
    The debt was recorded, the health check failed, and the ledger was rolled
    back before any token moved. Nothing was minted.
    """)


def step_05_second_account(engine: DSCEngine, weth: Erc20Token, dsc: StableCoin):
    step_header(5, "A Well-Collateralized Account",
        "Prepare bob, who will later act as liquidator.")

    weth.mint("bob", to_units(CONFIG.bob_collateral))
    weth.approve("bob", engine.address, to_units(CONFIG.bob_collateral))
    print(">>> engine.deposit_collateral_and_mint_dsc('bob', weth, 20 WETH, 100 DSC)")
    engine.deposit_collateral_and_mint_dsc(
        "bob", weth, to_units(CONFIG.bob_collateral), to_units(CONFIG.bob_mint)
    )
    dsc.approve("bob", engine.address, to_units(CONFIG.bob_mint))
    show_position(engine, "alice")
    show_position(engine, "bob")


# ============================================================================
# PHASE 3: STRESS (Steps 6-7)
# ============================================================================

def step_06_crash(engine: DSCEngine, eth_usd: StaticPriceFeed):
    step_header(6, "Price Crash",
        "Watch health factors fall with the collateral price.")

    print(f">>> eth_usd.update_price({CONFIG.crash_price} USD)")
    eth_usd.update_price(to_units(CONFIG.crash_price, CONFIG.feed_decimals))
    show_position(engine, "alice")
    show_position(engine, "bob")

    section_header("Solvency Check")
    result = engine.verify_backing()
    for discrepancy in result['discrepancies']:
        print(f"  {discrepancy}")


def step_07_liquidation(engine: DSCEngine, weth: Erc20Token):
    step_header(7, "Liquidation",
        "Repay an unhealthy account's debt and collect its collateral plus a bonus.")

    print(">>> engine.liquidate('bob', 'alice', weth, 100 DSC)")
    receipt = engine.liquidate("bob", "alice", weth, to_units(CONFIG.alice_mint))

    covered = engine.get_token_amount_from_usd(weth, to_units(CONFIG.alice_mint))
    section_header("Payout")
    print(f"Debt covered:  {format_units(covered)} WETH")
    print(f"Bonus (10%):   {format_units(receipt.collateral_amount - covered)} WETH")
    print(f"bob received:  {format_units(weth.balance_of('bob'))} WETH")
    show_position(engine, "alice")
    show_position(engine, "bob")


# ============================================================================
# PHASE 4: UNWINDING (Step 8)
# ============================================================================

def step_08_unwind(engine: DSCEngine, weth: Erc20Token, dsc: StableCoin):
    step_header(8, "Unwinding",
        "Close positions and confirm the system is fully backed.")

    print(">>> engine.redeem_collateral('alice', weth, remaining)")
    remaining = engine.get_collateral_balance_of_user("alice", weth)
    engine.redeem_collateral("alice", weth, remaining)

    section_header("Solvency Check")
    result = engine.verify_backing()
    print(f"Valid:            {result['valid']}")
    print(f"Total debt:       {format_units(result['total_debt'])} DSC")
    print(f"Collateral value: {format_units(result['total_collateral_usd'])} USD")
    print(f"DSC supply:       {format_units(dsc.total_supply)} DSC")


def main():
    """Run the complete tutorial."""
    if "--debug" in sys.argv:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s %(levelname)s %(message)s")

    print("=" * 70)
    print("       STABLELEDGER - INTERACTIVE TUTORIAL")
    print("=" * 70)
    if QUICK_MODE:
        print("Running in QUICK mode (no pauses)")
    else:
        print("Running in INTERACTIVE mode (press Enter to advance)")
    wait_for_enter()

    engine, weth, eth_usd, dsc = step_01_collateral_and_feeds()
    wait_for_enter()
    step_02_deposit(engine, weth)
    wait_for_enter()
    step_03_mint(engine)
    wait_for_enter()
    step_04_rejected_mint(engine)
    wait_for_enter()
    step_05_second_account(engine, weth, dsc)
    wait_for_enter()
    step_06_crash(engine, eth_usd)
    wait_for_enter()
    step_07_liquidation(engine, weth)
    wait_for_enter()
    step_08_unwind(engine, weth, dsc)

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    You've learned:
      - Collateral is valued through per-asset price feeds, always rounding down
      - Minting and redeeming are refused if they break the health factor
      - Rejected operations leave no trace
      - Unhealthy accounts can be liquidated for a 10% collateral bonus
      - verify_backing() proves the system-wide solvency invariant

    Next steps:
      - Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
