"""
stableledger - Collateral-Backed Stable-Asset Engine

Accounts lock approved collateral, mint a stable asset against it, and stay
above a minimum health factor or become liquidatable.

Usage:
    from stableledger import DSCEngine, Erc20Token, StableCoin, StaticPriceFeed

    weth = Erc20Token("Wrapped Ether", "WETH")
    eth_usd = StaticPriceFeed(2000 * 10**8, decimals=8)
    dsc = StableCoin()

    engine = DSCEngine([weth], [eth_usd], dsc)
    dsc.transfer_ownership(engine.address)

    weth.mint("alice", 10 * 10**18)
    weth.approve("alice", engine.address, 10 * 10**18)
    engine.deposit_collateral_and_mint_dsc("alice", weth, 10 * 10**18, 100 * 10**18)

    engine.get_account_information("alice")   # (100e18, 20000e18)
    engine.get_health_factor("alice")         # 100e18
"""

# Core types
from .core import (
    PriceFeed,
    CollateralToken,
    StableAsset,
    EngineConfig,
    PriceQuote,
    CollateralDeposited,
    CollateralRedeemed,
    Operation,
    Receipt,
    EngineError,
    ConfigurationError,
    UnknownAssetError,
    TransferFailedError,
    MintFailedError,
    BurnFailedError,
    HealthFactorBrokenError,
    HealthFactorOkError,
    HealthFactorNotImprovedError,
    ReentrancyError,
    InvalidPriceError,
    StalePriceError,
    TokenError,
    DEFAULT_CONFIG,
    ENGINE_ADDRESS,
    LIQUIDATION_BONUS,
    LIQUIDATION_PRECISION,
    LIQUIDATION_THRESHOLD,
    MAX_HEALTH_FACTOR,
    MIN_HEALTH_FACTOR,
    PRECISION,
    STABLE_DECIMALS,
    to_units,
    format_units,
    format_health_factor,
)

# Collateral registry
from .registry import CollateralRegistry

# Pricing
from .pricing import (
    PriceResolver,
    PriceSnapshot,
    StaticPriceFeed,
    TimeSeriesPriceFeed,
    StaleCheckedFeed,
    calculate_usd_value,
    calculate_token_amount_from_usd,
    DEFAULT_FEED_TIMEOUT,
)

# Positions
from .positions import PositionLedger

# Health factor
from .health import HealthFactorEngine, calculate_health_factor

# Engine
from .engine import DSCEngine

# Reference token collaborators
from .tokens import Erc20Token, StableCoin


__all__ = [
    # Core
    'PriceFeed', 'CollateralToken', 'StableAsset',
    'EngineConfig', 'PriceQuote', 'Operation', 'Receipt',
    'CollateralDeposited', 'CollateralRedeemed',
    'EngineError', 'ConfigurationError', 'UnknownAssetError',
    'TransferFailedError', 'MintFailedError', 'BurnFailedError',
    'HealthFactorBrokenError', 'HealthFactorOkError', 'HealthFactorNotImprovedError',
    'ReentrancyError', 'InvalidPriceError', 'StalePriceError', 'TokenError',
    'DEFAULT_CONFIG', 'ENGINE_ADDRESS',
    'LIQUIDATION_BONUS', 'LIQUIDATION_PRECISION', 'LIQUIDATION_THRESHOLD',
    'MAX_HEALTH_FACTOR', 'MIN_HEALTH_FACTOR', 'PRECISION', 'STABLE_DECIMALS',
    'to_units', 'format_units', 'format_health_factor',
    # Registry
    'CollateralRegistry',
    # Pricing
    'PriceResolver', 'PriceSnapshot',
    'StaticPriceFeed', 'TimeSeriesPriceFeed', 'StaleCheckedFeed',
    'calculate_usd_value', 'calculate_token_amount_from_usd', 'DEFAULT_FEED_TIMEOUT',
    # Positions and health
    'PositionLedger', 'HealthFactorEngine', 'calculate_health_factor',
    # Engine
    'DSCEngine',
    # Tokens
    'Erc20Token', 'StableCoin',
]

__version__ = '0.1.0'
