"""
engine.py - Collateralized stable-asset engine

DSCEngine is the entry point for every state transition: depositing and
redeeming collateral, minting and burning the stable asset, and liquidating
undercollateralized accounts.

Every operation runs in four phases:
    1. Guard: reject reentrant calls, take one price snapshot
    2. Checks and effects: validate inputs, mutate the PositionLedger,
       verify health factors against the snapshot
    3. Interactions: call token collaborators, in the order they were queued
    4. Commit: publish events and return a Receipt

Phases 2 and 3 run inside PositionLedger.atomic(). Any exception, including
a collaborator returning False, restores the ledger and is re-raised to the
caller. No external call happens before every ledger effect and health
check of the operation is done.

Each interaction that moves value back to the engine is queued with a
compensating call. When a later interaction fails, the compensations of
the completed ones run in reverse order, so wallets, custody and supply
return to where they stood before the operation. Transfers out of the
engine and mints have no compensation and are always queued last.
"""

from __future__ import annotations
from contextlib import contextmanager
from functools import partial
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple
import logging

from .core import (
    # Types
    EngineConfig, Operation, PriceFeed, Receipt, StableAsset,
    # Constants
    DEFAULT_CONFIG, ENGINE_ADDRESS,
    # Exceptions
    BurnFailedError, ConfigurationError, HealthFactorNotImprovedError,
    HealthFactorOkError, MintFailedError, ReentrancyError, TransferFailedError,
    # Helpers
    asset_label, format_health_factor, format_units, require_amount,
)
from .health import HealthFactorEngine, calculate_health_factor
from .positions import PositionLedger
from .pricing import PriceResolver, PriceSnapshot
from .registry import CollateralRegistry

logger = logging.getLogger(__name__)

Undo = Callable[[], None]


class _Operation:
    """In-flight operation: its price snapshot and the queued external calls."""

    __slots__ = ("kind", "prices", "interactions")

    def __init__(self, kind: Operation, prices: PriceSnapshot):
        self.kind = kind
        self.prices = prices
        self.interactions: List[Tuple[Callable[..., None], Tuple[Any, ...], Optional[Undo]]] = []

    def then(self, call: Callable[..., None], *args: Any, undo: Optional[Undo] = None) -> None:
        """
        Queue an external call to run after all checks and effects.

        undo reverses the call's effect on collaborators; it runs only if the
        call succeeded and a later interaction of the same operation fails.
        """
        self.interactions.append((call, args, undo))

    def run(self) -> None:
        completed: List[Undo] = []
        try:
            for call, args, undo in self.interactions:
                call(*args)
                if undo is not None:
                    completed.append(undo)
        except Exception:
            for undo in reversed(completed):
                try:
                    undo()
                except Exception:
                    logger.exception("%s: compensation %r failed", self.kind.value, undo)
            raise


class DSCEngine:
    """
    Issues a stable asset against overcollateralized positions.

    Thread Safety:
        Not thread-safe. Each thread should maintain its own engine instance.

    Example:
        engine = DSCEngine([weth, wbtc], [eth_usd, btc_usd], dsc)
        dsc.transfer_ownership(engine.address)

        weth.approve("alice", engine.address, 10 * 10**18)
        engine.deposit_collateral("alice", weth, 10 * 10**18)
        engine.mint_dsc("alice", 100 * 10**18)
        engine.get_health_factor("alice")   # 100e18 at 2000 USD/ETH
    """

    def __init__(
        self,
        collateral_assets: Sequence[Any],
        price_feeds: Sequence[PriceFeed],
        dsc: StableAsset,
        config: Optional[EngineConfig] = None,
        address: str = ENGINE_ADDRESS,
        verbose: bool = True,
    ):
        """
        Create an engine.

        Args:
            collateral_assets: Allowed collateral token handles
            price_feeds: USD price feed per collateral asset, parallel to collateral_assets
            dsc: The stable asset; the engine must be its owner to mint and burn
            config: Engine parameters (default: 50% threshold, 10% bonus)
            address: Identity the engine uses when calling collaborators
            verbose: Print a line per committed or rejected operation (default: True)

        Raises:
            ConfigurationError: If the sequences differ in length, or the stable
                asset's decimals do not match config.stable_decimals
        """
        self.config = config or DEFAULT_CONFIG
        self.registry = CollateralRegistry(collateral_assets, price_feeds)
        if dsc.decimals() != self.config.stable_decimals:
            raise ConfigurationError(
                f"Stable asset has {dsc.decimals()} decimals, "
                f"config expects {self.config.stable_decimals}"
            )
        self.dsc = dsc
        self.address = address
        self.verbose = verbose
        self.resolver = PriceResolver(self.registry, self.config.stable_decimals)
        self.ledger = PositionLedger(self.registry, self.resolver)
        self.health = HealthFactorEngine(self.ledger, self.config)
        self._entered = False

    # ========================================================================
    # OPERATION FRAMEWORK
    # ========================================================================

    @contextmanager
    def _operation(self, kind: Operation, account: str) -> Iterator[_Operation]:
        if self._entered:
            raise ReentrancyError(f"{kind.value} entered while another operation is in flight")
        self._entered = True
        op = _Operation(kind, self.resolver.snapshot())
        try:
            with self.ledger.atomic(publish=False):
                yield op
                op.run()
        except Exception as exc:
            logger.info("%s for %s rolled back: %s: %s", kind.value, account, type(exc).__name__, exc)
            if self.verbose:
                print(f"✗ REJECTED {kind.value} {account}: {type(exc).__name__}: {exc}")
            raise
        finally:
            self._entered = False

    def _commit(self, receipt: Receipt) -> Receipt:
        logger.info("committed %r", receipt)
        self.ledger.publish()
        if self.verbose:
            self._print_receipt(receipt)
        return receipt

    def _print_receipt(self, receipt: Receipt) -> None:
        parts = [f"✓ {receipt.operation.value.upper()} {receipt.account}"]
        if receipt.collateral_amount:
            decimals = receipt.asset.decimals() if receipt.asset is not None else self.config.stable_decimals
            parts.append(f"collateral={format_units(receipt.collateral_amount, decimals)} {asset_label(receipt.asset)}")
        if receipt.debt_amount:
            parts.append(f"debt={format_units(receipt.debt_amount, self.config.stable_decimals)}")
        if receipt.counterparty:
            parts.append(f"liquidator={receipt.counterparty}")
        if receipt.health_factor is not None:
            parts.append(f"hf={format_health_factor(receipt.health_factor, self.config.precision)}")
        print(" ".join(parts))

    # ========================================================================
    # CHECKS AND EFFECTS (queue interactions, never call collaborators)
    # ========================================================================

    def _deposit(self, op: _Operation, account: str, asset: Any, amount: int) -> None:
        require_amount(amount, "deposit amount")
        self.registry.require_allowed(asset)
        self.ledger.record_deposit(account, asset, amount)
        op.then(
            self._pull_collateral, asset, account, amount,
            undo=partial(self._push_collateral, asset, account, amount),
        )

    def _redeem(self, op: _Operation, asset: Any, amount: int, source: str, to: str) -> None:
        require_amount(amount, "redeem amount")
        self.registry.require_allowed(asset)
        self.ledger.record_redeem(source, to, asset, amount)
        op.then(self._push_collateral, asset, to, amount)

    def _mint(self, op: _Operation, account: str, amount: int) -> None:
        require_amount(amount, "mint amount")
        self.ledger.record_mint(account, amount)
        op.then(self._mint_stable, account, amount)

    def _burn(self, op: _Operation, amount: int, on_behalf_of: str, dsc_from: str) -> None:
        """Reduce on_behalf_of's debt, paid with dsc_from's stable asset."""
        require_amount(amount, "burn amount")
        self.ledger.record_burn(on_behalf_of, amount)
        op.then(self._pull_stable, dsc_from, amount, undo=partial(self._refund_stable, dsc_from, amount))
        op.then(self._burn_stable, amount, undo=partial(self._reissue_stable, amount))

    # ========================================================================
    # INTERACTIONS
    # ========================================================================

    def _pull_collateral(self, asset: Any, source: str, amount: int) -> None:
        if not asset.transfer_from(source, self.address, amount, spender=self.address):
            raise TransferFailedError(f"transfer_from {source} of {amount} {asset_label(asset)} failed")

    def _push_collateral(self, asset: Any, to: str, amount: int) -> None:
        if not asset.transfer(to, amount, sender=self.address):
            raise TransferFailedError(f"transfer to {to} of {amount} {asset_label(asset)} failed")

    def _mint_stable(self, to: str, amount: int) -> None:
        if not self.dsc.mint(to, amount, sender=self.address):
            raise MintFailedError(f"mint of {amount} {asset_label(self.dsc)} to {to} failed")

    def _pull_stable(self, dsc_from: str, amount: int) -> None:
        if not self.dsc.transfer_from(dsc_from, self.address, amount, spender=self.address):
            raise TransferFailedError(f"transfer_from {dsc_from} of {amount} {asset_label(self.dsc)} failed")

    def _burn_stable(self, amount: int) -> None:
        if not self.dsc.burn(amount, sender=self.address):
            raise BurnFailedError(f"burn of {amount} {asset_label(self.dsc)} failed")

    # Compensations: the allowance consumed by a pull is not restored

    def _refund_stable(self, dsc_from: str, amount: int) -> None:
        if not self.dsc.transfer(dsc_from, amount, sender=self.address):
            raise TransferFailedError(f"refund to {dsc_from} of {amount} {asset_label(self.dsc)} failed")

    def _reissue_stable(self, amount: int) -> None:
        if not self.dsc.mint(self.address, amount, sender=self.address):
            raise MintFailedError(f"reissue of {amount} burned {asset_label(self.dsc)} failed")

    # ========================================================================
    # OPERATIONS (Mutating)
    # ========================================================================

    def deposit_collateral(self, account: str, asset: Any, amount: int) -> Receipt:
        """
        Lock collateral for an account.

        The account must have approved the engine to pull amount of asset.

        Raises:
            ValueError: If amount is not positive
            UnknownAssetError: If asset is not allowed collateral
            TransferFailedError: If the token refuses the transfer
        """
        with self._operation(Operation.DEPOSIT, account) as op:
            self._deposit(op, account, asset, amount)
        return self._commit(Receipt(Operation.DEPOSIT, account, asset, collateral_amount=amount))

    def mint_dsc(self, account: str, amount: int) -> Receipt:
        """
        Mint stable asset to an account against its collateral.

        Raises:
            ValueError: If amount is not positive
            HealthFactorBrokenError: If the new debt breaks the account's health factor
            MintFailedError: If the stable asset refuses to mint
        """
        with self._operation(Operation.MINT, account) as op:
            self._mint(op, account, amount)
            health_factor = self.health.assert_healthy(account, op.prices)
        return self._commit(Receipt(
            Operation.MINT, account, debt_amount=amount, health_factor=health_factor,
        ))

    def burn_dsc(self, account: str, amount: int) -> Receipt:
        """
        Repay debt with the account's own stable asset.

        Raises:
            ValueError: If amount is not positive or exceeds the account's debt
            TransferFailedError: If the stable asset cannot be pulled from the account
            BurnFailedError: If the stable asset refuses to burn
            HealthFactorBrokenError: If the account is still unhealthy afterwards
        """
        with self._operation(Operation.BURN, account) as op:
            self._burn(op, amount, on_behalf_of=account, dsc_from=account)
            health_factor = self.health.assert_healthy(account, op.prices)
        return self._commit(Receipt(
            Operation.BURN, account, debt_amount=amount, health_factor=health_factor,
        ))

    def redeem_collateral(self, account: str, asset: Any, amount: int) -> Receipt:
        """
        Return collateral to its owner.

        Raises:
            ValueError: If amount is not positive or exceeds the deposited balance
            UnknownAssetError: If asset is not allowed collateral
            HealthFactorBrokenError: If the withdrawal breaks the account's health factor
            TransferFailedError: If the token refuses the transfer
        """
        with self._operation(Operation.REDEEM, account) as op:
            self._redeem(op, asset, amount, source=account, to=account)
            health_factor = self.health.assert_healthy(account, op.prices)
        return self._commit(Receipt(
            Operation.REDEEM, account, asset, collateral_amount=amount, health_factor=health_factor,
        ))

    def deposit_collateral_and_mint_dsc(
        self, account: str, asset: Any, collateral_amount: int, amount_to_mint: int
    ) -> Receipt:
        """Deposit collateral and mint against it in one atomic operation."""
        with self._operation(Operation.DEPOSIT_AND_MINT, account) as op:
            self._deposit(op, account, asset, collateral_amount)
            self._mint(op, account, amount_to_mint)
            health_factor = self.health.assert_healthy(account, op.prices)
        return self._commit(Receipt(
            Operation.DEPOSIT_AND_MINT, account, asset,
            collateral_amount=collateral_amount, debt_amount=amount_to_mint,
            health_factor=health_factor,
        ))

    def redeem_collateral_for_dsc(
        self, account: str, asset: Any, collateral_amount: int, amount_to_burn: int
    ) -> Receipt:
        """Burn debt and withdraw collateral in one atomic operation."""
        with self._operation(Operation.REDEEM_FOR_DSC, account) as op:
            self._burn(op, amount_to_burn, on_behalf_of=account, dsc_from=account)
            self._redeem(op, asset, collateral_amount, source=account, to=account)
            health_factor = self.health.assert_healthy(account, op.prices)
        return self._commit(Receipt(
            Operation.REDEEM_FOR_DSC, account, asset,
            collateral_amount=collateral_amount, debt_amount=amount_to_burn,
            health_factor=health_factor,
        ))

    def liquidate(self, liquidator: str, account: str, asset: Any, debt_to_cover: int) -> Receipt:
        """
        Repay part of an unhealthy account's debt in exchange for its collateral.

        The liquidator burns debt_to_cover of its own stable asset and receives
        the equivalent amount of asset plus the liquidation bonus.

        Args:
            liquidator: Account paying the debt and receiving the collateral
            account: Account being liquidated
            asset: Collateral asset to seize
            debt_to_cover: Stable asset amount to burn for the account

        Raises:
            ValueError: If debt_to_cover is not positive or exceeds the account's
                debt, or the account holds too little asset to pay the bonus
            HealthFactorOkError: If the account is not below the minimum health factor
            HealthFactorNotImprovedError: If the account's health factor does not
                strictly improve, or it keeps debt while staying under the minimum
            HealthFactorBrokenError: If the liquidator ends up unhealthy
            TransferFailedError, BurnFailedError: If a collaborator refuses
        """
        with self._operation(Operation.LIQUIDATE, account) as op:
            require_amount(debt_to_cover, "debt to cover")
            self.registry.require_allowed(asset)

            starting = self.health.health_factor(account, op.prices)
            if starting >= self.config.min_health_factor:
                raise HealthFactorOkError(
                    f"Health factor of {account} is ok: {format_health_factor(starting, self.config.precision)}"
                )

            covered = op.prices.token_amount_from_usd(asset, debt_to_cover)
            bonus = covered * self.config.liquidation_bonus // self.config.liquidation_precision
            seized = covered + bonus

            self._burn(op, debt_to_cover, on_behalf_of=account, dsc_from=liquidator)
            self._redeem(op, asset, seized, source=account, to=liquidator)

            ending = self.health.health_factor(account, op.prices)
            if ending <= starting:
                raise HealthFactorNotImprovedError(
                    f"Health factor of {account} not improved: "
                    f"{format_health_factor(starting, self.config.precision)} -> "
                    f"{format_health_factor(ending, self.config.precision)}"
                )
            if ending < self.config.min_health_factor and self.ledger.debt_of(account) > 0:
                raise HealthFactorNotImprovedError(
                    f"Health factor of {account} still below minimum after liquidation: "
                    f"{format_health_factor(ending, self.config.precision)}"
                )
            self.health.assert_healthy(liquidator, op.prices)
        return self._commit(Receipt(
            Operation.LIQUIDATE, account, asset,
            collateral_amount=seized, debt_amount=debt_to_cover,
            health_factor=ending, counterparty=liquidator,
        ))

    # ========================================================================
    # QUERIES (read-only)
    # ========================================================================

    def get_usd_value(self, asset: Any, amount: int) -> int:
        """USD value (stable-asset precision) of amount of asset at the current price."""
        return self.resolver.usd_value(asset, amount)

    def get_token_amount_from_usd(self, asset: Any, usd_amount: int) -> int:
        """Amount of asset worth usd_amount, floored."""
        return self.resolver.token_amount_from_usd(asset, usd_amount)

    def get_account_information(self, account: str) -> Tuple[int, int]:
        """Return (total_dsc_minted, collateral_value_in_usd)."""
        return self.ledger.account_information(account, self.resolver.snapshot())

    def get_health_factor(self, account: str) -> int:
        return self.health.health_factor(account, self.resolver.snapshot())

    def get_account_collateral_value(self, account: str) -> int:
        return self.ledger.total_collateral_usd(account, self.resolver.snapshot())

    def get_collateral_balance_of_user(self, account: str, asset: Any) -> int:
        return self.ledger.collateral_balance(account, asset)

    def get_collateral_tokens(self) -> Tuple[Any, ...]:
        return self.registry.assets

    def get_collateral_token_price_feed(self, asset: Any) -> PriceFeed:
        return self.registry.feed_for(asset)

    def get_dsc(self) -> StableAsset:
        return self.dsc

    def calculate_health_factor(self, total_dsc_minted: int, collateral_value_in_usd: int) -> int:
        return calculate_health_factor(total_dsc_minted, collateral_value_in_usd, self.config)

    def get_precision(self) -> int:
        return self.config.precision

    def get_liquidation_threshold(self) -> int:
        return self.config.liquidation_threshold

    def get_liquidation_bonus(self) -> int:
        return self.config.liquidation_bonus

    def get_liquidation_precision(self) -> int:
        return self.config.liquidation_precision

    def get_min_health_factor(self) -> int:
        return self.config.min_health_factor

    def verify_backing(self) -> Dict[str, Any]:
        """
        Check system-wide solvency and custody against one price snapshot.

        Checks performed:
        1. Total debt <= total collateral value discounted by the threshold
        2. No account with debt is under the minimum health factor
        3. The engine holds at least the collateral the ledger records
        4. The stable asset's supply equals the recorded debt (when exposed)

        Returns:
            Dict with keys:
            - 'valid': bool - True if no discrepancy was found
            - 'total_debt': int
            - 'total_collateral_usd': int
            - 'discrepancies': List[Dict] describing each violation

        Example:
            result = engine.verify_backing()
            assert result['valid'], result['discrepancies']
        """
        prices = self.resolver.snapshot()
        discrepancies: List[Dict[str, Any]] = []

        total_debt = self.ledger.total_debt()
        total_collateral_usd = 0
        for asset in self.registry.assets:
            recorded = self.ledger.total_collateral(asset)
            total_collateral_usd += prices.usd_value(asset, recorded)
            balance_of = getattr(asset, "balance_of", None)
            if balance_of is not None:
                held = balance_of(self.address)
                if held < recorded:
                    discrepancies.append({
                        'kind': 'custody',
                        'asset': asset_label(asset),
                        'recorded': recorded,
                        'held': held,
                    })

        backing_limit = (
            total_collateral_usd * self.config.liquidation_threshold // self.config.liquidation_precision
        )
        if total_debt > backing_limit:
            discrepancies.append({
                'kind': 'backing',
                'total_debt': total_debt,
                'limit': backing_limit,
            })

        for account in sorted(self.ledger.accounts()):
            health_factor = self.health.health_factor(account, prices)
            if health_factor < self.config.min_health_factor:
                discrepancies.append({
                    'kind': 'undercollateralized',
                    'account': account,
                    'health_factor': health_factor,
                })

        supply = getattr(self.dsc, "total_supply", None)
        if isinstance(supply, int) and supply != total_debt:
            discrepancies.append({
                'kind': 'supply',
                'total_supply': supply,
                'total_debt': total_debt,
            })

        return {
            'valid': len(discrepancies) == 0,
            'total_debt': total_debt,
            'total_collateral_usd': total_collateral_usd,
            'discrepancies': discrepancies,
        }

    def __repr__(self):
        return (
            f"DSCEngine({len(self.registry)} collaterals, "
            f"total_debt={format_units(self.ledger.total_debt(), self.config.stable_decimals)})"
        )
