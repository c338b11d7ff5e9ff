"""
health.py - Health factor derivation and solvency checks

Key Formulas:
    adjusted_collateral = collateral_usd * liquidation_threshold / liquidation_precision
    health_factor       = adjusted_collateral * precision / debt
    health_factor       = MAX_HEALTH_FACTOR when debt == 0

An account is healthy while health_factor >= min_health_factor. Both
divisions floor, so a health factor is never overstated.
"""

from __future__ import annotations
from typing import Optional

from .core import (
    DEFAULT_CONFIG, MAX_HEALTH_FACTOR,
    EngineConfig, HealthFactorBrokenError,
)
from .positions import Pricer, PositionLedger


def calculate_health_factor(
    total_debt: int,
    collateral_usd: int,
    config: EngineConfig = DEFAULT_CONFIG,
) -> int:
    """
    Health factor from explicit inputs.

    PURE FUNCTION - no ledger, no feeds.

    Example:
        # 20,000 USD of collateral backing 100 units of debt
        calculate_health_factor(100 * 10**18, 20_000 * 10**18) == 100 * 10**18
    """
    if total_debt == 0:
        return MAX_HEALTH_FACTOR
    adjusted = collateral_usd * config.liquidation_threshold // config.liquidation_precision
    return adjusted * config.precision // total_debt


class HealthFactorEngine:
    """
    Computes health factors from current ledger and feed state.

    Nothing is cached. Callers that need several reads to agree on prices
    pass the same PriceSnapshot to each call.
    """

    def __init__(self, ledger: PositionLedger, config: EngineConfig = DEFAULT_CONFIG):
        self.ledger = ledger
        self.config = config

    def health_factor(self, account: str, prices: Optional[Pricer] = None) -> int:
        debt, collateral_usd = self.ledger.account_information(account, prices)
        return calculate_health_factor(debt, collateral_usd, self.config)

    def is_liquidatable(self, account: str, prices: Optional[Pricer] = None) -> bool:
        return self.health_factor(account, prices) < self.config.min_health_factor

    def assert_healthy(self, account: str, prices: Optional[Pricer] = None) -> int:
        """
        Return the account's health factor, or raise if it is under the minimum.

        Raises:
            HealthFactorBrokenError: If health_factor < min_health_factor
        """
        health_factor = self.health_factor(account, prices)
        if health_factor < self.config.min_health_factor:
            raise HealthFactorBrokenError(account, health_factor)
        return health_factor
