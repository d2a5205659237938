from typing import Optional

from pydantic import BaseModel

from cashdesk.chips import ChipBreakdown
from cashdesk.schemas.app_schemas import (
    CashPayoutRequest,
    DepositRequest,
    ExpenseRequest,
    ReturnChipsRequest,
    Transaction,
)


class LedgerCashPayout(BaseModel):
    player_id: str
    player_name: str
    phone_number: str
    total_value: int
    chips_amount: int
    chip_breakdown: Optional[ChipBreakdown] = None
    stored_balance_amount: int = 0
    ceo_permission_confirmed: Optional[bool] = None
    notes: Optional[str] = None

    @classmethod
    def from_payout_request(cls, request: CashPayoutRequest, physical_chips: int, notes: str) -> "LedgerCashPayout":
        return cls(
            player_id=request.player_id,
            player_name=request.player_name.strip(),
            phone_number=request.phone_number.strip(),
            total_value=physical_chips + request.stored_balance_amount,
            chips_amount=physical_chips,
            chip_breakdown=request.chip_breakdown,
            stored_balance_amount=request.stored_balance_amount,
            ceo_permission_confirmed=True if request.is_house_player else None,
            notes=notes,
        )


class LedgerExpense(BaseModel):
    amount: int
    description: str

    @classmethod
    def from_expense_request(cls, request: ExpenseRequest) -> "LedgerExpense":
        return cls(amount=request.amount, description=request.description.strip())


class LedgerDeposit(BaseModel):
    player_id: str
    player_name: str
    phone_number: str
    amount: int
    chip_breakdown: Optional[ChipBreakdown] = None
    notes: Optional[str] = None

    @classmethod
    def from_deposit_request(cls, request: DepositRequest, amount: int) -> "LedgerDeposit":
        return cls(
            player_id=request.player_id,
            player_name=request.player_name.strip(),
            phone_number=request.phone_number.strip(),
            amount=amount,
            chip_breakdown=request.chip_breakdown if request.kind == "chips" else None,
            notes=(request.notes or "").strip() or None,
        )


class LedgerReturnChips(BaseModel):
    player_id: str
    player_name: str
    phone_number: str
    amount: int
    chip_breakdown: Optional[ChipBreakdown] = None
    notes: Optional[str] = None

    @classmethod
    def from_return_request(cls, request: ReturnChipsRequest, amount: int) -> "LedgerReturnChips":
        return cls(
            player_id=request.player_id,
            player_name=request.player_name.strip(),
            phone_number=request.phone_number.strip(),
            amount=amount,
            chip_breakdown=request.chip_breakdown,
            notes=(request.notes or "").strip() or None,
        )


class LedgerAddFloat(BaseModel):
    amount: int
    notes: str


class LedgerReversal(BaseModel):
    reason: str


class PayoutReceipt(BaseModel):
    transaction: Transaction
    credit_settled: int = 0
    net_cash_paid: int = 0


class ExpenseReceipt(BaseModel):
    transaction: Transaction
    secondary_draw: int = 0
    primary_draw: int = 0


class DepositReceipt(BaseModel):
    transaction: Transaction
    new_stored_balance: Optional[int] = None


class ReturnReceipt(BaseModel):
    transaction: Transaction


class FloatReceipt(BaseModel):
    transaction: Optional[Transaction] = None
    new_float_available: int


class ReversalReceipt(BaseModel):
    original_locked: bool
    reversal_entry_id: str
