"""
registry.py - Allowed collateral assets and their price feeds

The registry is built once from parallel sequences of collateral assets and
price feeds and never changes afterwards. It is shared by reference between
the price resolver, the position ledger and the engine.
"""

from __future__ import annotations
from typing import Any, Dict, Iterator, Sequence, Tuple

from .core import ConfigurationError, PriceFeed, UnknownAssetError, asset_label


class CollateralRegistry:
    """
    Immutable mapping from collateral asset to price feed.

    Assets are compared by identity/hash, so the token handle itself is the
    asset identifier. Ordering follows the construction sequence.

    Example:
        registry = CollateralRegistry([weth, wbtc], [eth_usd, btc_usd])
        registry.is_allowed(weth)   # True
        registry.feed_for(wbtc)     # btc_usd
    """

    __slots__ = ("_assets", "_feeds")

    def __init__(self, assets: Sequence[Any], feeds: Sequence[PriceFeed]):
        """
        Args:
            assets: Collateral asset handles, in order
            feeds: Price feed for each asset, parallel to assets

        Raises:
            ConfigurationError: If the sequences differ in length, are empty,
                or an asset appears twice
        """
        assets = tuple(assets)
        feeds = tuple(feeds)
        if len(assets) != len(feeds):
            raise ConfigurationError(
                f"Token addresses and price feed addresses must be the same length "
                f"({len(assets)} assets, {len(feeds)} feeds)"
            )
        if not assets:
            raise ConfigurationError("At least one collateral asset is required")

        mapping: Dict[Any, PriceFeed] = {}
        for asset, feed in zip(assets, feeds):
            if asset in mapping:
                raise ConfigurationError(f"Collateral {asset_label(asset)} registered twice")
            mapping[asset] = feed

        self._assets: Tuple[Any, ...] = assets
        self._feeds: Dict[Any, PriceFeed] = mapping

    @property
    def assets(self) -> Tuple[Any, ...]:
        """Allowed collateral assets in registration order."""
        return self._assets

    def is_allowed(self, asset: Any) -> bool:
        try:
            return asset in self._feeds
        except TypeError:
            # Unhashable handles can never be registered
            return False

    def require_allowed(self, asset: Any) -> Any:
        """Return asset unchanged, or raise UnknownAssetError."""
        if not self.is_allowed(asset):
            raise UnknownAssetError(f"Token not allowed as collateral: {asset_label(asset)}")
        return asset

    def feed_for(self, asset: Any) -> PriceFeed:
        """
        Return the price feed registered for an asset.

        Raises:
            UnknownAssetError: If the asset is not registered
        """
        return self._feeds[self.require_allowed(asset)]

    def __contains__(self, asset: Any) -> bool:
        return self.is_allowed(asset)

    def __iter__(self) -> Iterator[Any]:
        return iter(self._assets)

    def __len__(self) -> int:
        return len(self._assets)

    def __repr__(self) -> str:
        labels = ", ".join(asset_label(a) for a in self._assets)
        return f"CollateralRegistry([{labels}])"
