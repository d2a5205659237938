"""
Transaction reversal.

A committed transaction is corrected by a compensating entry on the ledger;
the original is locked as ``reversed`` and both stay visible. A reversed
transaction cannot be reversed again.
"""
from typing import Optional, Union

from pydantic import BaseModel

from cashdesk.config import ReversalReason, TransactionStatus
from cashdesk.exceptions import AlreadyReversedError, ValidationError
from cashdesk.logging_config import get_logger
from cashdesk.schemas.app_schemas import Transaction

logger = get_logger(__name__)

REASON_LABELS = {
    ReversalReason.WRONG_AMOUNT: "Wrong amount entered",
    ReversalReason.DUPLICATE_ENTRY: "Duplicate entry",
    ReversalReason.UPI_FAILED: "UPI failed",
    ReversalReason.WRONG_PLAYER: "Wrong player selected",
    ReversalReason.SYSTEM_ERROR: "System error",
    ReversalReason.OTHER: "Other",
}


class ReversalOutcome(BaseModel):
    original: Transaction
    reversal_entry_id: str
    reason: ReversalReason


def parse_reason(reason: Union[ReversalReason, str, None]) -> ReversalReason:
    if reason is None or (isinstance(reason, str) and not reason.strip()):
        raise ValidationError("Please select a reversal reason")
    try:
        return ReversalReason(reason.strip() if isinstance(reason, str) else reason)
    except ValueError:
        raise ValidationError(f"Unknown reversal reason: {reason}") from None


def reversal_reason_label(reason: Optional[str]) -> str:
    if not reason:
        return "No reason provided"
    try:
        return REASON_LABELS[ReversalReason(reason)]
    except ValueError:
        return reason.replace("_", " ").title()


class ReversalEngine:
    def __init__(self, ledger):
        self.ledger = ledger

    def check(self, transaction: Transaction, reason: Union[ReversalReason, str, None]) -> ReversalReason:
        """Local guards; nothing reaches the ledger unless these pass."""
        parsed = parse_reason(reason)
        if transaction.is_reversed:
            raise AlreadyReversedError(f"transaction {transaction.transaction_id} is already reversed")
        if transaction.reversal_of:
            raise ValidationError("a reversal entry cannot itself be reversed")
        return parsed

    async def reverse(self, transaction: Transaction, reason: Union[ReversalReason, str, None]) -> ReversalOutcome:
        parsed = self.check(transaction, reason)
        receipt = await self.ledger.reverse_transaction(transaction.transaction_id, parsed.value)
        logger.info(
            "Reversed transaction: transaction_id=%s reversal_entry_id=%s reason=%s",
            transaction.transaction_id,
            receipt.reversal_entry_id,
            parsed.value,
        )
        locked = transaction.model_copy(
            update={"status": TransactionStatus.REVERSED, "reversal_reason": parsed.value}
        )
        return ReversalOutcome(original=locked, reversal_entry_id=receipt.reversal_entry_id, reason=parsed)
