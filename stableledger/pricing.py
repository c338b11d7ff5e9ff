"""
pricing.py - USD valuation of collateral through price feeds

Provides:
- calculate_usd_value / calculate_token_amount_from_usd: pure fixed-point math
- PriceResolver: values registered collateral by reading its feed on every call
- PriceSnapshot: same interface, reads each feed at most once (one per operation)
- StaticPriceFeed: settable feed, the usual stand-in for an oracle aggregator
- TimeSeriesPriceFeed: time-varying prices with point-in-time lookup
- StaleCheckedFeed: wraps a feed and rejects answers older than a timeout

Rounding: both conversions floor. A USD value is never overstated, and the
token amount for a USD value never exceeds the exact quotient, so a
round trip never returns more than was put in.
"""

from __future__ import annotations
import logging
from bisect import bisect_right
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from .core import (
    STABLE_DECIMALS,
    PriceFeed, PriceQuote,
    InvalidPriceError, StalePriceError,
)
from .registry import CollateralRegistry

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

# Default maximum age of a feed answer before it is considered stale.
DEFAULT_FEED_TIMEOUT = timedelta(hours=3)


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def _require_positive_price(price: int) -> None:
    if price <= 0:
        raise InvalidPriceError(f"Price must be positive, got {price}")


def calculate_usd_value(
    amount: int,
    price: int,
    feed_decimals: int,
    token_decimals: int,
    stable_decimals: int = STABLE_DECIMALS,
) -> int:
    """
    USD value of a token amount, in stable-asset precision.

    The feed price is brought up to the token's precision and multiplied
    before the single floor division:

        amount * price * 10**stable / (10**feed * 10**token)

    Example:
        # 15 ETH at 2000.00000000 USD (8-decimal feed)
        calculate_usd_value(15 * 10**18, 2000 * 10**8, 8, 18) == 30_000 * 10**18
    """
    _require_positive_price(price)
    numerator = amount * price * 10 ** stable_decimals
    return numerator // (10 ** feed_decimals * 10 ** token_decimals)


def calculate_token_amount_from_usd(
    usd_amount: int,
    price: int,
    feed_decimals: int,
    token_decimals: int,
    stable_decimals: int = STABLE_DECIMALS,
) -> int:
    """
    Token amount worth usd_amount, floored to the token's smallest unit.

    Inverse of calculate_usd_value:

        usd * 10**feed * 10**token / (price * 10**stable)
    """
    _require_positive_price(price)
    numerator = usd_amount * 10 ** feed_decimals * 10 ** token_decimals
    return numerator // (price * 10 ** stable_decimals)


def _token_decimals(asset: Any) -> int:
    decimals = asset.decimals()
    if isinstance(decimals, bool) or not isinstance(decimals, int) or decimals < 0:
        raise InvalidPriceError(f"Token decimals must be a non-negative int, got {decimals!r}")
    return decimals


# ============================================================================
# RESOLVER
# ============================================================================

class PriceResolver:
    """
    Values registered collateral using each asset's feed.

    Stateless: every call reads the feed again. Use snapshot() when several
    valuations must agree on one set of prices.
    """

    def __init__(self, registry: CollateralRegistry, stable_decimals: int = STABLE_DECIMALS):
        self.registry = registry
        self.stable_decimals = stable_decimals

    def latest_quote(self, asset: Any) -> PriceQuote:
        """
        Read and validate the current answer of the asset's feed.

        Raises:
            UnknownAssetError: If the asset is not registered
            InvalidPriceError: If the feed answer is not a positive price
        """
        feed = self.registry.feed_for(asset)
        price, decimals = feed.latest_price()
        return PriceQuote(price, decimals)

    def usd_value(self, asset: Any, amount: int) -> int:
        return self._usd_value(asset, amount, self.latest_quote(asset))

    def token_amount_from_usd(self, asset: Any, usd_amount: int) -> int:
        return self._token_amount(asset, usd_amount, self.latest_quote(asset))

    def snapshot(self) -> PriceSnapshot:
        """Return a view that reads each feed at most once."""
        return PriceSnapshot(self)

    def _usd_value(self, asset: Any, amount: int, quote: PriceQuote) -> int:
        if amount == 0:
            return 0
        return calculate_usd_value(
            amount, quote.price, quote.decimals, _token_decimals(asset), self.stable_decimals
        )

    def _token_amount(self, asset: Any, usd_amount: int, quote: PriceQuote) -> int:
        return calculate_token_amount_from_usd(
            usd_amount, quote.price, quote.decimals, _token_decimals(asset), self.stable_decimals
        )

    def __repr__(self):
        return f"PriceResolver({len(self.registry)} assets, stable_decimals={self.stable_decimals})"


class PriceSnapshot:
    """
    Consistent prices for the duration of one operation.

    The first lookup of an asset reads its feed; later lookups reuse that
    quote, so every valuation inside an operation sees the same price.
    """

    def __init__(self, resolver: PriceResolver):
        self.resolver = resolver
        self._quotes: Dict[Any, PriceQuote] = {}

    def latest_quote(self, asset: Any) -> PriceQuote:
        quote = self._quotes.get(asset)
        if quote is None:
            quote = self.resolver.latest_quote(asset)
            self._quotes[asset] = quote
            logger.debug("price snapshot: %r -> %s (%s decimals)", asset, quote.price, quote.decimals)
        return quote

    def usd_value(self, asset: Any, amount: int) -> int:
        return self.resolver._usd_value(asset, amount, self.latest_quote(asset))

    def token_amount_from_usd(self, asset: Any, usd_amount: int) -> int:
        return self.resolver._token_amount(asset, usd_amount, self.latest_quote(asset))

    def __repr__(self):
        return f"PriceSnapshot({len(self._quotes)} quotes)"


# ============================================================================
# REFERENCE FEEDS
# ============================================================================

class StaticPriceFeed:
    """
    Feed with a settable answer.

    Mirrors a mock aggregator: the price holds until update_price() is called.
    """

    def __init__(
        self,
        price: int,
        decimals: int = 8,
        description: str = "",
        updated_at: Optional[datetime] = None,
    ):
        self.price = price
        self.feed_decimals = decimals
        self.description = description
        self.updated_at = updated_at or datetime.now()
        self.round_id = 1

    def latest_price(self) -> Tuple[int, int]:
        return self.price, self.feed_decimals

    def update_price(self, price: int, updated_at: Optional[datetime] = None):
        """Publish a new answer."""
        self.price = price
        self.updated_at = updated_at or datetime.now()
        self.round_id += 1

    def __repr__(self):
        label = f"{self.description}, " if self.description else ""
        return f"StaticPriceFeed({label}{self.price}e-{self.feed_decimals})"


class TimeSeriesPriceFeed:
    """
    Feed replaying a price path against a clock.

    Answers with the most recent observation at or before clock().
    Useful for simulating a crash and checking liquidations along the way.
    """

    def __init__(
        self,
        path: Optional[List[Tuple[datetime, int]]] = None,
        decimals: int = 8,
        clock: Optional[Clock] = None,
    ):
        """
        Args:
            path: Optional list of (timestamp, price) observations
            decimals: Decimal places of every price in the path
            clock: Callable returning the current time (default: datetime.now)
        """
        self.feed_decimals = decimals
        self.clock = clock or datetime.now
        self.history: List[Tuple[datetime, int]] = sorted(path or [], key=lambda x: x[0])

    def add_price(self, timestamp: datetime, price: int):
        """Add an observation, keeping the history in time order."""
        self.history.append((timestamp, price))
        self.history.sort(key=lambda x: x[0])

    def _observation(self) -> Tuple[datetime, int]:
        now = self.clock()
        timestamps = [ts for ts, _ in self.history]
        idx = bisect_right(timestamps, now)
        if idx == 0:
            raise StalePriceError(f"No price observed at or before {now}")
        return self.history[idx - 1]

    @property
    def updated_at(self) -> datetime:
        return self._observation()[0]

    def latest_price(self) -> Tuple[int, int]:
        return self._observation()[1], self.feed_decimals

    def __repr__(self):
        return f"TimeSeriesPriceFeed({len(self.history)} observations)"


class StaleCheckedFeed:
    """
    Wraps a feed exposing updated_at and rejects stale answers.

    Raises StalePriceError from latest_price() once the wrapped feed has not
    updated for longer than timeout, which halts every engine operation that
    needs that price.
    """

    def __init__(self, feed: Any, timeout: timedelta = DEFAULT_FEED_TIMEOUT, clock: Optional[Clock] = None):
        self.feed = feed
        self.timeout = timeout
        self.clock = clock or datetime.now

    def latest_price(self) -> Tuple[int, int]:
        age = self.clock() - self.feed.updated_at
        if age > self.timeout:
            logger.warning("stale price feed %r: last update %s ago", self.feed, age)
            raise StalePriceError(f"Price feed {self.feed!r} is stale ({age} old, timeout {self.timeout})")
        return self.feed.latest_price()

    def __repr__(self):
        return f"StaleCheckedFeed({self.feed!r}, timeout={self.timeout})"
