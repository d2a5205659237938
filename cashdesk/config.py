from enum import Enum
from pydantic import AnyHttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ledger_base_url: AnyHttpUrl = "http://mock-ledger:8001"
    ledger_token: Optional[str] = None
    bearer_token: Optional[str] = None
    db_url: str = "sqlite:///./cashdesk.db"
    max_retries: int = 3
    retry_backoff_seconds: float = 1.0
    rate_limit_per_minute: int = 120
    request_timeout_seconds: float = 10.0
    phone_number_length: int = 10
    float_top_up_note: str = "Added for cash payout"
    log_level: str = "INFO"

settings = Settings()


class TransactionType(str, Enum):
    BUY_IN = "buy_in"
    CASH_PAYOUT = "cash_payout"
    RETURN_CHIPS = "return_chips"
    CREDIT_ISSUED = "credit_issued"
    ISSUE_CREDIT = "issue_credit"
    SETTLE_CREDIT = "settle_credit"
    ADD_FLOAT = "add_float"
    DEPOSIT_CASH = "deposit_cash"
    DEPOSIT_CHIPS = "deposit_chips"
    OPENING_CHIPS = "opening_chips"
    REDEEM_STORED = "redeem_stored"
    EXPENSE = "expense"
    RAKEBACK = "rakeback"


class ActivityType(str, Enum):
    DEALER_TIP = "dealer_tip"
    PLAYER_EXPENSE = "player_expense"
    CLUB_EXPENSE = "club_expense"
    RAKEBACK = "rakeback"


class TransactionStatus(str, Enum):
    ACTIVE = "active"
    REVERSED = "reversed"


class ReversalReason(str, Enum):
    WRONG_AMOUNT = "wrong_amount"
    DUPLICATE_ENTRY = "duplicate_entry"
    UPI_FAILED = "upi_failed"
    WRONG_PLAYER = "wrong_player"
    SYSTEM_ERROR = "system_error"
    OTHER = "other"


class IntentStatus(str, Enum):
    SUBMITTED = "submitted"
    COMMITTED = "committed"
    REJECTED = "rejected"
    AWAITING_FLOAT = "awaiting_float"
    REARMED = "rearmed"
    FAILED = "failed"


class Operation(str, Enum):
    CASH_PAYOUT = "cash_payout"
    EXPENSE = "expense"
    DEPOSIT = "deposit"
    RETURN_CHIPS = "return_chips"


class LedgerView(str, Enum):
    ALL = "all"
    CASHBOOK = "cashbook"
    CHIP_LEDGER = "chip_ledger"
    CREDIT_REGISTER = "credit_register"

