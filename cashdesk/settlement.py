"""
Cash payout settlement.

Returned chip value repays outstanding credit first; only the excess is
paid out as cash. Every figure here is derived from its inputs on each call.
"""
from typing import Optional

from pydantic import BaseModel

from cashdesk.chips import BreakdownCheck, ChipBreakdown, resolve_chip_amount, validate_breakdown
from cashdesk.exceptions import ValidationError
from cashdesk.helpers import format_inr
from cashdesk.shortfall import float_warning


class CreditSettlement(BaseModel):
    total_chip_value: int
    outstanding_credit: int
    credit_to_settle: int
    net_cash_payout: int
    credit_remaining_after: int

    @property
    def is_noop(self) -> bool:
        return self.total_chip_value == 0


class CashPayoutPreview(BaseModel):
    physical_chips: int
    stored_used: int
    settlement: CreditSettlement
    breakdown_check: Optional[BreakdownCheck] = None
    float_warning: Optional[str] = None


def settle_credit(total_chip_value: int, outstanding_credit: int) -> CreditSettlement:
    if total_chip_value < 0 or outstanding_credit < 0:
        raise ValidationError("chip value and outstanding credit must not be negative")
    return CreditSettlement(
        total_chip_value=total_chip_value,
        outstanding_credit=outstanding_credit,
        credit_to_settle=min(total_chip_value, outstanding_credit),
        net_cash_payout=max(0, total_chip_value - outstanding_credit),
        credit_remaining_after=max(0, outstanding_credit - total_chip_value),
    )


def payout_value(physical_chips: int, stored_requested: int = 0, stored_available: int = 0) -> int:
    """Physical chips plus the portion of stored chips the player cashes out with them."""
    if stored_requested < 0:
        raise ValidationError("stored balance amount must not be negative")
    if stored_requested > stored_available:
        raise ValidationError(
            f"Stored balance amount (₹{stored_requested:,}) cannot exceed available "
            f"stored balance (₹{stored_available:,})"
        )
    return physical_chips + stored_requested


def preview_cash_payout(
    chips_amount: Optional[int],
    chip_breakdown: Optional[ChipBreakdown],
    outstanding_credit: int,
    stored_requested: int = 0,
    stored_available: int = 0,
    primary_float_available: Optional[int] = None,
) -> CashPayoutPreview:
    physical = resolve_chip_amount(chip_breakdown, chips_amount)
    check = None
    if chip_breakdown is not None and not chip_breakdown.is_empty():
        check = validate_breakdown(chip_breakdown, physical)
    total = payout_value(physical, stored_requested, stored_available)
    settlement = settle_credit(total, outstanding_credit)
    warning = None
    if primary_float_available is not None:
        warning = float_warning(settlement.net_cash_payout, primary_float_available)
    return CashPayoutPreview(
        physical_chips=physical,
        stored_used=stored_requested,
        settlement=settlement,
        breakdown_check=check,
        float_warning=warning,
    )


def payout_notes(physical_chips: int, stored_used: int, settlement: CreditSettlement) -> str:
    if settlement.credit_to_settle > 0:
        notes = f"Cash payout: Physical chips {format_inr(physical_chips)}"
        if stored_used > 0:
            notes += f" + Stored {format_inr(stored_used)}"
        return notes + f" - Credit {format_inr(settlement.credit_to_settle)} = Net {format_inr(settlement.net_cash_payout)}"
    if stored_used > 0:
        return (
            f"Cash payout: Physical chips {format_inr(physical_chips)} + Stored {format_inr(stored_used)} "
            f"= Total {format_inr(settlement.total_chip_value)}"
        )
    return "Cash payout from physical chips (winnings)"
