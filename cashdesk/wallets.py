"""
Expense funding across cashier wallets.

Wallets are drawn in order; the secondary wallet (deposits and credit
settlements collected during the shift) goes first so the primary float
stays available for cash payouts.
"""
from typing import Sequence

from pydantic import BaseModel

from cashdesk.schemas.app_schemas import WalletState

SECONDARY = "secondary"
PRIMARY = "primary"


class WalletBalance(BaseModel):
    name: str
    balance: int


class WalletDraw(BaseModel):
    name: str
    amount: int


class Allocation(BaseModel):
    amount: int
    draws: list[WalletDraw]
    total_available: int
    is_valid: bool
    shortfall: int

    def draw_from(self, name: str) -> int:
        return sum(draw.amount for draw in self.draws if draw.name == name)

    @property
    def from_secondary(self) -> int:
        return self.draw_from(SECONDARY)

    @property
    def from_primary(self) -> int:
        return self.draw_from(PRIMARY)


def ordered_wallets(state: WalletState) -> list[WalletBalance]:
    return [
        WalletBalance(name=SECONDARY, balance=state.secondary_wallet_balance),
        WalletBalance(name=PRIMARY, balance=state.primary_float_available),
    ]


def allocate(amount: int, wallets: Sequence[WalletBalance]) -> Allocation:
    if not wallets:
        raise ValueError("at least one wallet is required")
    remaining = max(0, amount)
    draws: list[WalletDraw] = []
    for wallet in wallets[:-1]:
        take = min(remaining, max(0, wallet.balance))
        draws.append(WalletDraw(name=wallet.name, amount=take))
        remaining -= take
    # the last wallet carries whatever is left, even beyond its balance
    draws.append(WalletDraw(name=wallets[-1].name, amount=remaining))

    total_available = sum(max(0, wallet.balance) for wallet in wallets)
    drawn = sum(draw.amount for draw in draws)
    return Allocation(
        amount=amount,
        draws=draws,
        total_available=total_available,
        is_valid=amount > 0 and drawn <= total_available,
        shortfall=max(0, amount - total_available),
    )


def allocate_expense(amount: int, state: WalletState) -> Allocation:
    return allocate(amount, ordered_wallets(state))
