"""
conftest.py - Shared pytest fixtures for engine tests

Provides:
- Collateral tokens (WETH, WBTC), their USD feeds, and the stable coin
- Engines at successive stages: fresh, with collateral, with debt, liquidated
- Helpers to fund and approve accounts
"""

import pytest

from stableledger import (
    DSCEngine, Erc20Token, StableCoin, StaticPriceFeed,
)


E18 = 10 ** 18

ETH_USD_PRICE = 2000 * 10 ** 8
BTC_USD_PRICE = 1000 * 10 ** 8
FEED_DECIMALS = 8

COLLATERAL_AMOUNT = 10 * E18
AMOUNT_TO_MINT = 100 * E18
COLLATERAL_TO_COVER = 20 * E18

# Price at which USER's position (10 WETH, 100 DSC) has a 0.9 health factor
CRASH_PRICE = 18 * 10 ** 8

USER = "alice"
LIQUIDATOR = "liquidator"


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def fund(token: Erc20Token, account: str, amount: int, spender: str) -> None:
    """Mint amount of token to account and approve spender for it."""
    token.mint(account, amount)
    token.approve(account, spender, token.allowance(account, spender) + amount)


def make_engine(collateral, feeds, dsc=None, **kwargs) -> DSCEngine:
    """Build a quiet engine that owns its stable coin."""
    dsc = dsc or StableCoin()
    kwargs.setdefault("verbose", False)
    engine = DSCEngine(collateral, feeds, dsc, **kwargs)
    dsc.transfer_ownership(engine.address)
    return engine


# =============================================================================
# COLLABORATORS
# =============================================================================

@pytest.fixture
def weth():
    return Erc20Token("Wrapped Ether", "WETH")


@pytest.fixture
def wbtc():
    return Erc20Token("Wrapped Bitcoin", "WBTC")


@pytest.fixture
def eth_usd():
    return StaticPriceFeed(ETH_USD_PRICE, FEED_DECIMALS, description="ETH / USD")


@pytest.fixture
def btc_usd():
    return StaticPriceFeed(BTC_USD_PRICE, FEED_DECIMALS, description="BTC / USD")


@pytest.fixture
def dsc():
    return StableCoin()


# =============================================================================
# ENGINES
# =============================================================================

@pytest.fixture
def engine(weth, wbtc, eth_usd, btc_usd, dsc):
    return make_engine([weth, wbtc], [eth_usd, btc_usd], dsc)


@pytest.fixture
def engine_deposited(engine, weth):
    """USER has 10 WETH deposited and no debt."""
    fund(weth, USER, COLLATERAL_AMOUNT, engine.address)
    engine.deposit_collateral(USER, weth, COLLATERAL_AMOUNT)
    return engine


@pytest.fixture
def engine_minted(engine_deposited):
    """USER has 10 WETH deposited and 100 DSC minted (health factor 100)."""
    engine_deposited.mint_dsc(USER, AMOUNT_TO_MINT)
    return engine_deposited


@pytest.fixture
def engine_liquidatable(engine_minted, weth, eth_usd, dsc):
    """
    LIQUIDATOR holds 100 DSC backed by 20 WETH, then ETH drops to 18 USD,
    leaving USER at a 0.9 health factor.
    """
    engine = engine_minted
    fund(weth, LIQUIDATOR, COLLATERAL_TO_COVER, engine.address)
    engine.deposit_collateral_and_mint_dsc(LIQUIDATOR, weth, COLLATERAL_TO_COVER, AMOUNT_TO_MINT)
    dsc.approve(LIQUIDATOR, engine.address, AMOUNT_TO_MINT)
    eth_usd.update_price(CRASH_PRICE)
    return engine


@pytest.fixture
def engine_liquidated(engine_liquidatable, weth):
    engine_liquidatable.liquidate(LIQUIDATOR, USER, weth, AMOUNT_TO_MINT)
    return engine_liquidatable
