"""
tokens.py - In-memory token collaborators

Reference implementations of the token interfaces the engine consumes:
- Erc20Token: fungible token with allowances; transfers return False on failure
- StableCoin: the stable asset, mintable and burnable only by its owner

These stand in for on-chain tokens in tests, demos and simulations. The
caller of each method is passed explicitly as sender/spender.
"""

from __future__ import annotations
from typing import Dict, Optional, Tuple

from .core import TokenError, STABLE_DECIMALS


def _check_quantity(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValueError(f"Token amount must be an int, got {type(amount).__name__}")
    if amount < 0:
        raise ValueError(f"Token amount cannot be negative, got {amount}")


class Erc20Token:
    """
    Fungible token with balances and allowances.

    transfer() and transfer_from() return False, rather than raising, when
    the balance or allowance is insufficient.
    """

    def __init__(self, name: str, symbol: str, decimals: int = 18, address: Optional[str] = None):
        self.name = name
        self.symbol = symbol
        self._decimals = decimals
        self.address = address or symbol.lower()
        self.total_supply = 0
        self.balances: Dict[str, int] = {}
        self.allowances: Dict[Tuple[str, str], int] = {}

    def decimals(self) -> int:
        return self._decimals

    def balance_of(self, account: str) -> int:
        """Returns the token balance of the given account."""
        return self.balances.get(account, 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self.allowances.get((owner, spender), 0)

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        """Allow spender to move up to amount of owner's tokens."""
        _check_quantity(amount)
        self.allowances[(owner, spender)] = amount
        return True

    def transfer(self, to: str, amount: int, *, sender: str) -> bool:
        """
        Move tokens from sender to a recipient.

        Returns:
            True if successful, False if the sender's balance is insufficient
        """
        _check_quantity(amount)
        if self.balance_of(sender) < amount:
            return False
        self._move(sender, to, amount)
        return True

    def transfer_from(self, source: str, dest: str, amount: int, *, spender: str) -> bool:
        """
        Move tokens on behalf of source, consuming spender's allowance.

        Returns:
            True if successful, False if balance or allowance is insufficient
        """
        _check_quantity(amount)
        allowed = self.allowance(source, spender)
        if source != spender and allowed < amount:
            return False
        if self.balance_of(source) < amount:
            return False
        if source != spender:
            self.allowances[(source, spender)] = allowed - amount
        self._move(source, dest, amount)
        return True

    def mint(self, to: str, amount: int, *, sender: Optional[str] = None) -> bool:
        """Create new tokens for an account. Unrestricted, like a test faucet."""
        _check_quantity(amount)
        self.balances[to] = self.balance_of(to) + amount
        self.total_supply += amount
        return True

    def burn(self, amount: int, *, sender: str) -> bool:
        """Destroy tokens from the sender's own balance; False if insufficient."""
        _check_quantity(amount)
        if self.balance_of(sender) < amount:
            return False
        self.balances[sender] = self.balance_of(sender) - amount
        self.total_supply -= amount
        return True

    def _move(self, source: str, dest: str, amount: int) -> None:
        self.balances[source] = self.balance_of(source) - amount
        self.balances[dest] = self.balance_of(dest) + amount

    def __repr__(self):
        return f"{type(self).__name__}({self.symbol}, supply={self.total_supply})"


class StableCoin(Erc20Token):
    """
    The stable asset. Only its owner (the engine) may mint or burn.

    Misuse raises instead of returning False: minting or burning a
    non-positive amount, minting to an empty address, burning more than
    the owner holds, or any call from a non-owner.
    """

    def __init__(
        self,
        name: str = "DecentralizedStableCoin",
        symbol: str = "DSC",
        owner: Optional[str] = None,
        address: Optional[str] = None,
    ):
        super().__init__(name, symbol, STABLE_DECIMALS, address)
        self.owner = owner

    def transfer_ownership(self, new_owner: str, *, sender: Optional[str] = None) -> None:
        if self.owner is not None and sender != self.owner:
            raise TokenError(f"{sender} is not the owner of {self.symbol}")
        self.owner = new_owner

    def _only_owner(self, sender: Optional[str]) -> None:
        if self.owner is None or sender != self.owner:
            raise TokenError(f"{sender} is not the owner of {self.symbol}")

    def mint(self, to: str, amount: int, *, sender: Optional[str] = None) -> bool:
        self._only_owner(sender)
        if not to:
            raise ValueError("Cannot mint to an empty address")
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValueError("Mint amount must be more than zero")
        return super().mint(to, amount)

    def burn(self, amount: int, *, sender: str) -> bool:
        self._only_owner(sender)
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValueError("Burn amount must be more than zero")
        if self.balance_of(sender) < amount:
            raise ValueError("Burn amount exceeds balance")
        return super().burn(amount, sender=sender)
