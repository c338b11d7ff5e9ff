"""
positions.py - Per-account collateral and debt bookkeeping

PositionLedger is the only mutable state of the system. It records collateral
deposits and redemptions, minted debt, and the events external observers see.

Key responsibilities:
    - Validates every record_* call (positive amounts, allowed assets, no overdraw)
    - Values an account's collateral through a PriceResolver or PriceSnapshot
    - Stages mutations inside atomic() blocks: on any exception the balances and
      pending events are restored exactly, and events are only published when
      the outermost block commits
"""

from __future__ import annotations
from collections import defaultdict
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Set, Tuple, Union
import logging

from .core import (
    CollateralDeposited, CollateralRedeemed,
    asset_label, require_amount,
)
from .pricing import PriceResolver, PriceSnapshot
from .registry import CollateralRegistry

logger = logging.getLogger(__name__)

Event = Union[CollateralDeposited, CollateralRedeemed]
Listener = Callable[[Event], None]
Pricer = Union[PriceResolver, PriceSnapshot]

# (collateral, debt, number of pending events) captured at a savepoint
_Checkpoint = Tuple[Dict[str, Dict[Any, int]], Dict[str, int], int]


class PositionLedger:
    """
    Collateral and debt positions of every account.

    Accounts need no registration: an account with no activity reads as zero
    collateral and zero debt.

    Thread Safety:
        Not thread-safe. Operations are assumed to run one at a time.

    Example:
        ledger = PositionLedger(registry, PriceResolver(registry))
        with ledger.atomic():
            ledger.record_deposit("alice", weth, 10 * 10**18)
            ledger.record_mint("alice", 100 * 10**18)
        ledger.account_information("alice")  # (100e18, 20000e18)
    """

    def __init__(self, registry: CollateralRegistry, resolver: PriceResolver):
        self.registry = registry
        self.resolver = resolver
        self._collateral: Dict[str, Dict[Any, int]] = defaultdict(dict)
        self._debt: Dict[str, int] = {}
        self._checkpoints: List[_Checkpoint] = []
        self._pending_events: List[Event] = []
        self.event_log: List[Event] = []
        self._listeners: List[Listener] = []

    # ========================================================================
    # READS
    # ========================================================================

    def collateral_balance(self, account: str, asset: Any) -> int:
        """Deposited amount of one asset (0 for unknown accounts or assets)."""
        return self._collateral.get(account, {}).get(asset, 0)

    def debt_of(self, account: str) -> int:
        """Stable asset minted by an account and not yet burned."""
        return self._debt.get(account, 0)

    def accounts(self) -> Set[str]:
        """Accounts that hold collateral or debt."""
        holders = {a for a, bals in self._collateral.items() if any(bals.values())}
        return holders | {a for a, debt in self._debt.items() if debt}

    def total_debt(self) -> int:
        """Sum of debt across all accounts, accumulated in sorted account order."""
        return sum(self._debt[a] for a in sorted(self._debt))

    def total_collateral(self, asset: Any) -> int:
        """Sum of one asset's deposits across all accounts."""
        return sum(self._collateral[a].get(asset, 0) for a in sorted(self._collateral))

    def total_collateral_usd(self, account: str, prices: Optional[Pricer] = None) -> int:
        """
        USD value of every allowed asset the account holds.

        Args:
            account: Account to value
            prices: Resolver or snapshot to price with (default: fresh feed reads)
        """
        prices = prices or self.resolver
        balances = self._collateral.get(account, {})
        total = 0
        for asset in self.registry.assets:
            amount = balances.get(asset, 0)
            if amount:
                total += prices.usd_value(asset, amount)
        return total

    def account_information(self, account: str, prices: Optional[Pricer] = None) -> Tuple[int, int]:
        """Return (debt_minted, collateral_value_in_usd)."""
        return self.debt_of(account), self.total_collateral_usd(account, prices)

    # ========================================================================
    # MUTATIONS
    # ========================================================================

    def record_deposit(self, account: str, asset: Any, amount: int) -> None:
        """
        Credit collateral to an account and emit CollateralDeposited.

        Raises:
            ValueError: If amount is not positive
            UnknownAssetError: If the asset is not registered (a ValueError)
        """
        require_amount(amount, "deposit amount")
        self.registry.require_allowed(asset)
        balances = self._collateral[account]
        balances[asset] = balances.get(asset, 0) + amount
        self._emit(CollateralDeposited(account, asset, amount))

    def record_redeem(self, account: str, to: str, asset: Any, amount: int) -> None:
        """
        Debit collateral from an account and emit CollateralRedeemed.

        Args:
            account: Account whose collateral is released
            to: Recipient of the collateral (the owner, or a liquidator)

        Raises:
            ValueError: If amount is not positive or exceeds the deposited balance
        """
        require_amount(amount, "redeem amount")
        self.registry.require_allowed(asset)
        current = self.collateral_balance(account, asset)
        if amount > current:
            raise ValueError(
                f"Cannot redeem {amount} {asset_label(asset)} from {account}: balance is {current}"
            )
        self._collateral[account][asset] = current - amount
        self._emit(CollateralRedeemed(account, to, asset, amount))

    def record_mint(self, account: str, amount: int) -> None:
        require_amount(amount, "mint amount")
        self._debt[account] = self.debt_of(account) + amount

    def record_burn(self, account: str, amount: int) -> None:
        """
        Reduce an account's debt.

        Raises:
            ValueError: If amount is not positive or exceeds the outstanding debt
        """
        require_amount(amount, "burn amount")
        current = self.debt_of(account)
        if amount > current:
            raise ValueError(f"Cannot burn {amount} for {account}: debt is {current}")
        self._debt[account] = current - amount

    # ========================================================================
    # ATOMICITY
    # ========================================================================

    @contextmanager
    def atomic(self, publish: bool = True) -> Iterator[PositionLedger]:
        """
        Stage every mutation made inside the block.

        If the block raises, balances and pending events go back to their
        values at entry and the exception propagates. Blocks nest: an inner
        failure restores the inner savepoint only; events are published once
        the outermost block exits cleanly.

        Args:
            publish: With False the outermost block leaves its events pending;
                the caller publishes them with publish() once it has settled
                the outcome.
        """
        self._checkpoints.append(self._checkpoint())
        try:
            yield self
        except BaseException:
            self._restore(self._checkpoints.pop())
            raise
        else:
            self._checkpoints.pop()
            if not self._checkpoints and publish:
                self.publish()

    @property
    def in_transaction(self) -> bool:
        return bool(self._checkpoints)

    def _checkpoint(self) -> _Checkpoint:
        collateral = {account: dict(bals) for account, bals in self._collateral.items()}
        return collateral, dict(self._debt), len(self._pending_events)

    def _restore(self, checkpoint: _Checkpoint) -> None:
        collateral, debt, n_events = checkpoint
        self._collateral = defaultdict(dict, collateral)
        self._debt = debt
        discarded = len(self._pending_events) - n_events
        del self._pending_events[n_events:]
        logger.debug("ledger rolled back (%d staged events discarded)", discarded)

    # ========================================================================
    # EVENTS
    # ========================================================================

    def subscribe(self, listener: Listener) -> None:
        """Call listener with every event published after this point."""
        self._listeners.append(listener)

    def _emit(self, event: Event) -> None:
        self._pending_events.append(event)
        if not self._checkpoints:
            self.publish()

    def publish(self) -> None:
        """
        Append committed events to event_log and deliver them to listeners.

        Listener errors are logged and do not stop delivery: every listener
        sees every event, and the committed state is never affected.
        """
        events, self._pending_events = self._pending_events, []
        for event in events:
            self.event_log.append(event)
            for listener in self._listeners:
                try:
                    listener(event)
                except Exception:
                    logger.exception("listener %r failed on %r", listener, event)

    def __repr__(self):
        return f"PositionLedger({len(self.accounts())} accounts, total_debt={self.total_debt()})"
