"""
Core types and pure helpers for the stable-asset engine.

This module provides the foundational pieces every other module builds on:
1. Constants: fixed-point precisions and liquidation parameters
2. Protocols: collaborator interfaces for tokens and price feeds
3. Exceptions: EngineError and domain-specific error types
4. Immutable data structures: EngineConfig, PriceQuote, events, Receipt
5. Amount helpers: conversion between human-readable and fixed-point amounts

All amounts handled by the engine are non-negative ints scaled to a fixed
number of decimal places. Nothing in this module mutates engine state.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN
from enum import Enum
from typing import Any, Optional, Protocol, Tuple, runtime_checkable


# ============================================================================
# CONSTANTS
# ============================================================================

# Decimals of the stable asset; every USD value is expressed at this precision.
STABLE_DECIMALS = 18

# Fixed-point scale of health factors (1.0 == PRECISION).
PRECISION = 10 ** 18

# Collateral value is discounted to this percentage before comparing to debt.
# 50 means a position must be 200% overcollateralized.
LIQUIDATION_THRESHOLD = 50
LIQUIDATION_PRECISION = 100

# Extra collateral (percent of the debt covered) paid to a liquidator.
LIQUIDATION_BONUS = 10

MIN_HEALTH_FACTOR = PRECISION

# Health factor reported for accounts without debt.
MAX_HEALTH_FACTOR = 2 ** 256 - 1

# Default identity of the engine when it calls collaborators.
ENGINE_ADDRESS = "dsc_engine"


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class PriceFeed(Protocol):
    """
    Read-only source of an asset's USD price.

    latest_price() returns (price, decimals): the raw integer answer and the
    number of decimal places it carries. Staleness and liveness checks are
    the feed's own responsibility.
    """

    def latest_price(self) -> Tuple[int, int]:
        ...


@runtime_checkable
class CollateralToken(Protocol):
    """
    Token interface the engine needs from a collateral asset.

    Transfers signal failure by returning False. The keyword-only sender and
    spender name the caller, which is always the engine for engine-issued calls.
    """
    address: str

    def decimals(self) -> int:
        ...

    def transfer(self, to: str, amount: int, *, sender: str) -> bool:
        ...

    def transfer_from(self, source: str, dest: str, amount: int, *, spender: str) -> bool:
        ...


@runtime_checkable
class StableAsset(CollateralToken, Protocol):
    """Token interface of the stable asset minted and burned by the engine."""

    def balance_of(self, account: str) -> int:
        ...

    def mint(self, to: str, amount: int, *, sender: str) -> bool:
        ...

    def burn(self, amount: int, *, sender: str) -> bool:
        ...


# ============================================================================
# EXCEPTIONS
# ============================================================================

class EngineError(Exception):
    """Base exception for all engine-related errors."""
    pass


class ConfigurationError(EngineError):
    """Raised when the engine is constructed with inconsistent parameters."""
    pass


class UnknownAssetError(EngineError, ValueError):
    """Raised when an operation names a collateral asset that is not registered."""
    pass


class TransferFailedError(EngineError):
    """Raised when a token transfer or transfer_from returns False."""
    pass


class MintFailedError(EngineError):
    """Raised when the stable asset refuses to mint."""
    pass


class BurnFailedError(EngineError):
    """Raised when the stable asset refuses to burn."""
    pass


class HealthFactorBrokenError(EngineError):
    """Raised when an operation would leave an account under the minimum health factor."""

    def __init__(self, account: str, health_factor: int):
        self.account = account
        self.health_factor = health_factor
        super().__init__(
            f"Health factor of {account} broken: {format_health_factor(health_factor)}"
        )


class HealthFactorOkError(EngineError):
    """Raised when liquidation is attempted on a healthy account."""
    pass


class HealthFactorNotImprovedError(EngineError):
    """Raised when a liquidation does not restore the liquidated account."""
    pass


class ReentrancyError(EngineError):
    """Raised when a mutating operation is entered while another is in flight."""
    pass


class InvalidPriceError(EngineError):
    """Raised when a price feed returns an unusable answer."""
    pass


class StalePriceError(InvalidPriceError):
    """Raised when a price feed's last update is older than its timeout."""
    pass


class TokenError(EngineError):
    """Raised by reference token implementations on unauthorized calls."""
    pass


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass(frozen=True, slots=True)
class EngineConfig:
    """
    Immutable engine parameters, fixed at construction.

    Attributes:
        liquidation_threshold: Percent of collateral value counted toward solvency
        liquidation_precision: Denominator for threshold and bonus percentages
        liquidation_bonus: Percent of covered debt paid to liquidators in collateral
        precision: Fixed-point scale of health factors
        min_health_factor: Health factor below which an account is liquidatable
        stable_decimals: Decimals of the stable asset
    """
    liquidation_threshold: int = LIQUIDATION_THRESHOLD
    liquidation_precision: int = LIQUIDATION_PRECISION
    liquidation_bonus: int = LIQUIDATION_BONUS
    precision: int = PRECISION
    min_health_factor: int = MIN_HEALTH_FACTOR
    stable_decimals: int = STABLE_DECIMALS

    def __post_init__(self):
        if self.liquidation_precision <= 0:
            raise ConfigurationError("liquidation_precision must be positive")
        if not 0 < self.liquidation_threshold <= self.liquidation_precision:
            raise ConfigurationError(
                f"liquidation_threshold must be in (0, {self.liquidation_precision}], "
                f"got {self.liquidation_threshold}"
            )
        if self.liquidation_bonus < 0:
            raise ConfigurationError("liquidation_bonus cannot be negative")
        if self.precision <= 0 or self.min_health_factor <= 0:
            raise ConfigurationError("precision and min_health_factor must be positive")
        if self.stable_decimals < 0:
            raise ConfigurationError("stable_decimals cannot be negative")


DEFAULT_CONFIG = EngineConfig()


# ============================================================================
# PRICES AND EVENTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class PriceQuote:
    """A validated feed answer: integer price with its decimal places."""
    price: int
    decimals: int

    def __post_init__(self):
        if isinstance(self.price, bool) or not isinstance(self.price, int):
            raise InvalidPriceError(f"Price must be int, got {type(self.price).__name__}")
        if self.price <= 0:
            raise InvalidPriceError(f"Price must be positive, got {self.price}")
        if isinstance(self.decimals, bool) or not isinstance(self.decimals, int) or self.decimals < 0:
            raise InvalidPriceError(f"Feed decimals must be a non-negative int, got {self.decimals!r}")


@dataclass(frozen=True, slots=True)
class CollateralDeposited:
    """Emitted when collateral is credited to an account."""
    account: str
    asset: Any
    amount: int


@dataclass(frozen=True, slots=True)
class CollateralRedeemed:
    """Emitted when collateral leaves an account, to its owner or a liquidator."""
    redeemed_from: str
    redeemed_to: str
    asset: Any
    amount: int


class Operation(Enum):
    """State transitions performed by the engine."""
    DEPOSIT = "deposit"
    MINT = "mint"
    BURN = "burn"
    REDEEM = "redeem"
    DEPOSIT_AND_MINT = "deposit_and_mint"
    REDEEM_FOR_DSC = "redeem_for_dsc"
    LIQUIDATE = "liquidate"


@dataclass(frozen=True, slots=True)
class Receipt:
    """
    Record of a committed operation.

    Attributes:
        operation: Which transition was applied
        account: The account whose position changed
        asset: Collateral asset involved (None for mint/burn)
        collateral_amount: Collateral moved in or out
        debt_amount: Stable asset minted or burned
        health_factor: The account's health factor after commit (None if not checked)
        counterparty: Liquidator for LIQUIDATE, otherwise None
    """
    operation: Operation
    account: str
    asset: Optional[Any] = None
    collateral_amount: int = 0
    debt_amount: int = 0
    health_factor: Optional[int] = None
    counterparty: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.operation.value}:{self.account}"]
        if self.asset is not None:
            parts.append(f"asset={asset_label(self.asset)}")
        if self.collateral_amount:
            parts.append(f"collateral={self.collateral_amount}")
        if self.debt_amount:
            parts.append(f"debt={self.debt_amount}")
        if self.counterparty:
            parts.append(f"by={self.counterparty}")
        if self.health_factor is not None:
            parts.append(f"hf={format_health_factor(self.health_factor)}")
        return f"Receipt({', '.join(parts)})"


# ============================================================================
# HELPERS
# ============================================================================

def require_amount(amount: Any, what: str = "amount") -> int:
    """
    Validate a fixed-point amount and return it.

    Raises:
        ValueError: If amount is not an int, is a bool, or is not positive
    """
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValueError(f"{what} must be an int, got {type(amount).__name__}")
    if amount <= 0:
        raise ValueError(f"{what} must be more than zero, got {amount}")
    return amount


def asset_label(asset: Any) -> str:
    """Human-readable name of an asset handle (its symbol, else address, else repr)."""
    for attr in ("symbol", "address"):
        value = getattr(asset, attr, None)
        if isinstance(value, str) and value:
            return value
    return repr(asset)


def to_units(value: Any, decimals: int = STABLE_DECIMALS) -> int:
    """
    Convert a human-readable amount to fixed-point units, rounding down.

    Example:
        to_units("0.05") == 50_000_000_000_000_000
    """
    quantity = value if isinstance(value, Decimal) else Decimal(str(value))
    if quantity.is_nan() or quantity.is_infinite():
        raise ValueError(f"Amount must be finite, got {value}")
    return int(quantity.scaleb(decimals).to_integral_value(rounding=ROUND_DOWN))


def format_units(amount: int, decimals: int = STABLE_DECIMALS) -> str:
    """Render fixed-point units as a plain decimal string without trailing zeros."""
    normalized = Decimal(amount).scaleb(-decimals).normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def format_health_factor(health_factor: int, precision: int = PRECISION) -> str:
    if health_factor == MAX_HEALTH_FACTOR:
        return "max"
    return f"{Decimal(health_factor) / Decimal(precision):.4f}"
