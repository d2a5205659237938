"""
Chip breakdown reconciliation.

A breakdown is a count per chip denomination. Its value must match the
monetary amount the cashier declares for the same chips.
"""
from typing import Mapping, Optional

from pydantic import BaseModel, field_validator

from cashdesk.exceptions import ValidationError

DENOMINATIONS = (100, 500, 1000, 5000, 10000)

# The 1000 chip is kept out of greedy fills; the floor does not stock it for payouts.
AUTO_FILL_DENOMINATIONS = (10000, 5000, 500, 100)


class ChipBreakdown(BaseModel):
    chips_100: int = 0
    chips_500: int = 0
    chips_1000: int = 0
    chips_5000: int = 0
    chips_10000: int = 0

    @field_validator("chips_100", "chips_500", "chips_1000", "chips_5000", "chips_10000", mode="before")
    @classmethod
    def _clamp_count(cls, value):
        if value is None or value == "":
            return 0
        return max(0, int(value))

    @classmethod
    def from_counts(cls, counts: Mapping[int, int]) -> "ChipBreakdown":
        unknown = set(counts) - set(DENOMINATIONS)
        if unknown:
            raise ValidationError(f"unknown chip denomination(s): {sorted(unknown)}")
        return cls(**{f"chips_{denomination}": count for denomination, count in counts.items()})

    def counts(self) -> dict[int, int]:
        return {denomination: getattr(self, f"chips_{denomination}") for denomination in DENOMINATIONS}

    @property
    def total(self) -> int:
        return breakdown_total(self.counts())

    @property
    def chip_count(self) -> int:
        return sum(self.counts().values())

    def is_empty(self) -> bool:
        return self.chip_count == 0


class BreakdownCheck(BaseModel):
    total: int
    target: int
    valid: bool
    difference: int


def breakdown_total(counts: Mapping[int, int]) -> int:
    return sum(max(0, int(count or 0)) * denomination for denomination, count in counts.items())


def validate_breakdown(breakdown: ChipBreakdown, target: int) -> BreakdownCheck:
    total = breakdown.total
    return BreakdownCheck(total=total, target=target, valid=total == target, difference=total - target)


def auto_fill(target: int) -> ChipBreakdown:
    """
    Greedy largest-first breakdown for ``target``.

    One canonical answer among many; any remainder below the smallest chip is dropped.
    """
    counts = {denomination: 0 for denomination in DENOMINATIONS}
    remaining = max(0, int(target or 0))
    for denomination in AUTO_FILL_DENOMINATIONS:
        counts[denomination] = remaining // denomination
        remaining -= counts[denomination] * denomination
    return ChipBreakdown.from_counts(counts)


def resolve_chip_amount(breakdown: Optional[ChipBreakdown], declared: Optional[int]) -> int:
    """
    Return the chip value an operation moves.

    A non-empty breakdown must agree with a declared amount; without a
    declared amount the breakdown total is used. An empty or missing
    breakdown leaves the declared amount authoritative.
    """
    declared = int(declared or 0)
    if breakdown is None or breakdown.is_empty():
        return declared
    if declared <= 0:
        return breakdown.total
    check = validate_breakdown(breakdown, declared)
    if not check.valid:
        raise ValidationError(
            f"chip breakdown totals ₹{check.total:,} but ₹{check.target:,} was declared "
            f"(difference {check.difference:+,})"
        )
    return declared
