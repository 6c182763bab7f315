"""
Escrow bookkeeping.

`BalanceTable` tracks (identity, asset) -> amount. `BalanceEscrow` implements
the ledger's escrow collaborator on top of it: inputs move from participants
into a vault account at submit, the vault's input is converted into output at
clear, and outputs/refunds move from the vault to recipients.
"""

from __future__ import annotations

from typing import Dict, Protocol, Tuple

from ..core.errors import EscrowError


# Type aliases
Address = str  # participant identity (hex public key or account id)
AssetId = str
Amount = int  # non-negative, arbitrary precision

ZERO_ADDRESS: Address = "0x" + "00" * 20
VAULT_ADDRESS: Address = "vault"


def is_zero_address(address: object) -> bool:
    """True for a missing identity or an all-zero hex identity."""
    if not isinstance(address, str) or not address.strip():
        return True
    s = address.strip().lower()
    if s.startswith("0x"):
        s = s[2:]
        return not s or set(s) == {"0"}
    return False


class BalanceTable:
    """
    Balance table mapping (address, asset) -> amount.

    Zero balances are dropped to keep the table sparse.
    """

    def __init__(self) -> None:
        self._balances: Dict[Tuple[Address, AssetId], Amount] = {}

    def get(self, address: Address, asset: AssetId) -> Amount:
        return self._balances.get((address, asset), 0)

    def set(self, address: Address, asset: AssetId, amount: Amount) -> None:
        if amount < 0:
            raise ValueError(f"Balance cannot be negative: {amount}")
        if amount == 0:
            self._balances.pop((address, asset), None)
        else:
            self._balances[(address, asset)] = amount

    def add(self, address: Address, asset: AssetId, delta: Amount) -> None:
        current = self.get(address, asset)
        new_balance = current + delta
        if new_balance < 0:
            raise ValueError(f"Insufficient balance: {current} + {delta} = {new_balance} < 0")
        self.set(address, asset, new_balance)

    def transfer(self, asset: AssetId, src: Address, dst: Address, amount: Amount) -> None:
        """Move `amount` of `asset`; checks before touching either side."""
        if amount < 0:
            raise ValueError(f"Transfer amount must be non-negative: {amount}")
        if self.get(src, asset) < amount:
            raise ValueError(f"Insufficient balance for {src}: {self.get(src, asset)} < {amount}")
        self.add(src, asset, -amount)
        self.add(dst, asset, amount)

    def total(self, asset: AssetId) -> Amount:
        return sum(v for (_, a), v in self._balances.items() if a == asset)

    def get_all_balances(self) -> Dict[Tuple[Address, AssetId], Amount]:
        return dict(self._balances)

    def __repr__(self) -> str:
        return f"BalanceTable({len(self._balances)} entries)"


class Escrow(Protocol):
    """Value-transfer collaborator. Each call fully succeeds or raises `EscrowError`."""

    def collect(self, owner: Address, amount: Amount) -> None:
        ...

    def convert(self, window_id: int, total_in: Amount, total_out: Amount) -> None:
        ...

    def pay(self, recipient: Address, amount: Amount) -> None:
        ...

    def refund(self, owner: Address, amount: Amount) -> None:
        ...


class BalanceEscrow:
    """`Escrow` over a `BalanceTable` with one input asset and one output asset."""

    def __init__(
        self,
        balances: BalanceTable,
        *,
        asset_in: AssetId,
        asset_out: AssetId,
        vault: Address = VAULT_ADDRESS,
    ) -> None:
        if asset_in == asset_out:
            raise ValueError("asset_in and asset_out must differ")
        self.balances = balances
        self.asset_in = asset_in
        self.asset_out = asset_out
        self.vault = vault

    def collect(self, owner: Address, amount: Amount) -> None:
        self._move(self.asset_in, owner, self.vault, amount)

    def convert(self, window_id: int, total_in: Amount, total_out: Amount) -> None:
        # The execution venue is external: the vault's input leaves and the
        # window's aggregate output arrives in one step.
        held = self.balances.get(self.vault, self.asset_in)
        if held < total_in:
            raise EscrowError(f"vault holds {held} < total_in {total_in} for window {window_id}")
        self.balances.add(self.vault, self.asset_in, -total_in)
        self.balances.add(self.vault, self.asset_out, total_out)

    def pay(self, recipient: Address, amount: Amount) -> None:
        self._move(self.asset_out, self.vault, recipient, amount)

    def refund(self, owner: Address, amount: Amount) -> None:
        self._move(self.asset_in, self.vault, owner, amount)

    def _move(self, asset: AssetId, src: Address, dst: Address, amount: Amount) -> None:
        try:
            self.balances.transfer(asset, src, dst, amount)
        except ValueError as exc:
            raise EscrowError(str(exc)) from exc
