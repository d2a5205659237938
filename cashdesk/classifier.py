"""
Transaction classification.

Every screen that shows a transaction (cashbook, chip ledger, credit
register, balance cards, exports) asks this module for its direction,
label and icon class so the answers never drift between call sites.
"""
import re
from typing import Iterable, Optional

from pydantic import BaseModel

from cashdesk.config import ActivityType, LedgerView, TransactionType
from cashdesk.schemas.app_schemas import Transaction

INFLOW_ICON = "text-green-600 bg-green-50"
OUTFLOW_ICON = "text-red-600 bg-red-50"
NEUTRAL_ICON = "text-zinc-700 bg-zinc-50"

INFLOW_TYPES = frozenset({
    TransactionType.BUY_IN,
    TransactionType.SETTLE_CREDIT,
    TransactionType.ADD_FLOAT,
    TransactionType.DEPOSIT_CASH,
    TransactionType.DEPOSIT_CHIPS,
    TransactionType.OPENING_CHIPS,
    TransactionType.REDEEM_STORED,
})

OUTFLOW_TYPES = frozenset({
    TransactionType.CASH_PAYOUT,
    TransactionType.CREDIT_ISSUED,
    TransactionType.ISSUE_CREDIT,
    TransactionType.RETURN_CHIPS,
    TransactionType.EXPENSE,
    TransactionType.RAKEBACK,
})

TYPE_LABELS = {
    TransactionType.BUY_IN: "Buy In",
    TransactionType.CASH_PAYOUT: "Cash Payout",
    TransactionType.RETURN_CHIPS: "Return Chips",
    TransactionType.CREDIT_ISSUED: "Credit Issued",
    TransactionType.ISSUE_CREDIT: "Credit Issued",
    TransactionType.SETTLE_CREDIT: "Settle Credit",
    TransactionType.ADD_FLOAT: "Add Float",
    TransactionType.DEPOSIT_CASH: "Deposit Cash",
    TransactionType.DEPOSIT_CHIPS: "Deposit Chips",
    TransactionType.OPENING_CHIPS: "Opening Chips",
    TransactionType.REDEEM_STORED: "Redeem Stored",
    TransactionType.EXPENSE: "Expense",
    TransactionType.RAKEBACK: "Rakeback",
}

ACTIVITY_LABELS = {
    ActivityType.DEALER_TIP: "Dealer Tip",
    ActivityType.PLAYER_EXPENSE: "Player Expense",
    ActivityType.RAKEBACK: "Rakeback",
}

EXPENSE_CATEGORIES = {
    "food_delivery": "Food Delivery",
    "salary_advance": "Salary Advance",
    "utilities": "Utilities",
    "supplies": "Supplies",
    "maintenance": "Maintenance",
    "miscellaneous": "Miscellaneous",
}

CHIPS_IN_HAND_ACTIVITIES = frozenset({ActivityType.DEALER_TIP, ActivityType.PLAYER_EXPENSE})

CASHBOOK_TYPES = frozenset({
    TransactionType.BUY_IN,
    TransactionType.CASH_PAYOUT,
    TransactionType.SETTLE_CREDIT,
    TransactionType.ADD_FLOAT,
    TransactionType.DEPOSIT_CASH,
    TransactionType.EXPENSE,
})

CHIP_LEDGER_TYPES = frozenset({
    TransactionType.BUY_IN,
    TransactionType.CASH_PAYOUT,
    TransactionType.CREDIT_ISSUED,
    TransactionType.ISSUE_CREDIT,
    TransactionType.DEPOSIT_CHIPS,
    TransactionType.RETURN_CHIPS,
    TransactionType.OPENING_CHIPS,
    TransactionType.REDEEM_STORED,
})

CREDIT_REGISTER_TYPES = frozenset({TransactionType.CREDIT_ISSUED, TransactionType.ISSUE_CREDIT, TransactionType.SETTLE_CREDIT})

_CATEGORY_TAG = re.compile(r"^\s*\[?\s*([A-Za-z][A-Za-z _-]*?)\s*\]?\s*[:\-|]")


class Classification(BaseModel):
    label: str
    is_inflow: Optional[bool]
    icon_class: str


def _coerce(enum_cls, value):
    try:
        return enum_cls(value)
    except ValueError:
        return None


def humanize(value: str) -> str:
    return value.replace("_", " ").title() if value else "Transaction"


def expense_category(notes: Optional[str]) -> Optional[str]:
    """
    Find the expense category in free-text notes.

    Accepts a leading tag (``Food Delivery: lunch for dealers``,
    ``[utilities] power bill``) or any known category mentioned in the text.
    """
    if not notes:
        return None
    match = _CATEGORY_TAG.match(notes)
    if match:
        key = match.group(1).strip().lower().replace(" ", "_").replace("-", "_")
        if key in EXPENSE_CATEGORIES:
            return EXPENSE_CATEGORIES[key]
    lowered = notes.lower()
    for key, label in EXPENSE_CATEGORIES.items():
        if key in lowered or label.lower() in lowered:
            return label
    return None


def direction(transaction_type: str, activity_type: Optional[str] = None) -> Optional[bool]:
    """True for inflow, False for outflow, None when the type is unknown."""
    kind = _coerce(TransactionType, transaction_type)
    activity = _coerce(ActivityType, activity_type) if activity_type else None

    if kind in INFLOW_TYPES:
        is_inflow = True
    elif kind in OUTFLOW_TYPES:
        is_inflow = False
    else:
        is_inflow = None

    # chips come back to the cage even though cash leaves it
    if activity in CHIPS_IN_HAND_ACTIVITIES:
        is_inflow = True
    if activity == ActivityType.RAKEBACK or kind == TransactionType.RAKEBACK:
        is_inflow = False
    return is_inflow


def label_for(transaction_type: str, activity_type: Optional[str] = None, notes: Optional[str] = None) -> str:
    activity = _coerce(ActivityType, activity_type) if activity_type else None
    if activity in ACTIVITY_LABELS:
        return ACTIVITY_LABELS[activity]
    if activity == ActivityType.CLUB_EXPENSE:
        category = expense_category(notes)
        return f"Club Expense · {category}" if category else "Club Expense"
    kind = _coerce(TransactionType, transaction_type)
    if kind in TYPE_LABELS:
        return TYPE_LABELS[kind]
    return humanize(transaction_type)


def classify(transaction_type: str, activity_type: Optional[str] = None, notes: Optional[str] = None) -> Classification:
    is_inflow = direction(transaction_type, activity_type)
    if is_inflow is None:
        icon_class = NEUTRAL_ICON
    else:
        icon_class = INFLOW_ICON if is_inflow else OUTFLOW_ICON
    return Classification(
        label=label_for(transaction_type, activity_type, notes),
        is_inflow=is_inflow,
        icon_class=icon_class,
    )


def classify_transaction(transaction: Transaction) -> Classification:
    return classify(transaction.transaction_type, transaction.activity_type, transaction.notes)


def signed_amount(transaction: Transaction) -> int:
    is_inflow = direction(transaction.transaction_type, transaction.activity_type)
    if is_inflow is False:
        return -abs(transaction.amount)
    return abs(transaction.amount)


def in_cashbook(transaction: Transaction) -> bool:
    kind = _coerce(TransactionType, transaction.transaction_type)
    activity = _coerce(ActivityType, transaction.activity_type) if transaction.activity_type else None
    if kind in CASHBOOK_TYPES:
        return True
    if activity == ActivityType.CLUB_EXPENSE:
        return True
    if activity == ActivityType.PLAYER_EXPENSE:
        return False
    return transaction.primary_amount != 0 or transaction.secondary_amount != 0


def in_chip_ledger(transaction: Transaction) -> bool:
    kind = _coerce(TransactionType, transaction.transaction_type)
    if kind in CHIP_LEDGER_TYPES:
        return True
    activity = _coerce(ActivityType, transaction.activity_type) if transaction.activity_type else None
    if activity in CHIPS_IN_HAND_ACTIVITIES or activity == ActivityType.RAKEBACK:
        return (transaction.chips_amount or 0) > 0
    if transaction.chip_breakdown is not None and not transaction.chip_breakdown.is_empty():
        return True
    return (transaction.chips_amount or 0) > 0


def in_credit_register(transaction: Transaction) -> bool:
    return _coerce(TransactionType, transaction.transaction_type) in CREDIT_REGISTER_TYPES


VIEW_FILTERS = {
    LedgerView.CASHBOOK: in_cashbook,
    LedgerView.CHIP_LEDGER: in_chip_ledger,
    LedgerView.CREDIT_REGISTER: in_credit_register,
}


def filter_view(transactions: Iterable[Transaction], view: LedgerView = LedgerView.ALL) -> list[Transaction]:
    ordered = sorted(transactions, key=lambda t: t.created_at.timestamp() if t.created_at else float("inf"))
    if view == LedgerView.ALL:
        return ordered
    keep = VIEW_FILTERS[view]
    return [t for t in ordered if keep(t)]
