from datetime import datetime
from pydantic import BaseModel, Field
from typing import Optional, Any

from cashdesk.chips import ChipBreakdown
from cashdesk.config import ReversalReason, TransactionStatus


class Transaction(BaseModel):
    transaction_id: str
    transaction_type: str
    activity_type: Optional[str] = None
    amount: int = 0
    chips_amount: Optional[int] = None
    chip_breakdown: Optional[ChipBreakdown] = None
    player_id: Optional[str] = None
    player_name: Optional[str] = None
    wallet_source: Optional[str] = None
    wallet_destination: Optional[str] = None
    primary_amount: int = 0
    secondary_amount: int = 0
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    status: TransactionStatus = TransactionStatus.ACTIVE
    is_edited: bool = False
    reversal_of: Optional[str] = None
    reversal_reason: Optional[str] = None

    @property
    def is_reversed(self) -> bool:
        return self.status == TransactionStatus.REVERSED


class ChipBalance(BaseModel):
    player_id: str
    chip_balance: int = 0
    stored_chips: int = 0
    outstanding_credit: int = Field(0, ge=0)
    can_cash_out: bool = False


class WalletState(BaseModel):
    primary_float_available: int = 0
    secondary_wallet_balance: int = 0


class CashPayoutRequest(BaseModel):
    player_id: str
    player_name: str
    phone_number: str
    chips_amount: Optional[int] = None
    chip_breakdown: Optional[ChipBreakdown] = None
    stored_balance_amount: int = 0
    is_house_player: bool = False
    ceo_permission_confirmed: bool = False
    notes: Optional[str] = None


class ExpenseRequest(BaseModel):
    amount: int
    description: str


class DepositRequest(BaseModel):
    player_id: str
    player_name: str
    phone_number: str
    kind: str = Field("chips", pattern="^(chips|cash)$")
    amount: Optional[int] = None
    chip_breakdown: Optional[ChipBreakdown] = None
    notes: Optional[str] = None


class ReturnChipsRequest(BaseModel):
    player_id: str
    player_name: str
    phone_number: str
    amount: Optional[int] = None
    chip_breakdown: Optional[ChipBreakdown] = None
    notes: Optional[str] = None


class AddFloatRequest(BaseModel):
    intent_id: str
    amount: int
    notes: Optional[str] = None


class ResubmitRequest(BaseModel):
    confirmed: bool = False


class ReversalRequest(BaseModel):
    reason: Optional[ReversalReason] = None


class ChipCheckRequest(BaseModel):
    chip_breakdown: ChipBreakdown = ChipBreakdown()
    target: int = 0


class AutoFillRequest(BaseModel):
    target: int


class CashPayoutPreviewRequest(BaseModel):
    chips_amount: Optional[int] = None
    chip_breakdown: Optional[ChipBreakdown] = None
    outstanding_credit: int = Field(0, ge=0)
    stored_balance_amount: int = 0
    stored_chips: int = 0
    primary_float_available: Optional[int] = None


class ExpensePreviewRequest(BaseModel):
    amount: int
    wallets: WalletState


class SubmissionResponse(BaseModel):
    intent_id: str
    status: str
    transaction: Optional[Transaction] = None
    detail: Optional[dict[str, Any]] = None
    warning: Optional[str] = None
