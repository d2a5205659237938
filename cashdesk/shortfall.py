"""
Float shortfall handling for cash payouts.

The ledger decides whether the float covers a payout. When it refuses, the
payout intent waits for a float top-up; once the top-up has committed the
intent is re-armed and the operator confirms the resubmission.
"""
from typing import Optional

from pydantic import BaseModel
from sqlalchemy.orm import Session

from cashdesk.config import IntentStatus, Operation, settings
from cashdesk.db import get_intent, update_intent
from cashdesk.exceptions import InsufficientFundsSignal, ValidationError
from cashdesk.helpers import format_inr, parse_inr
from cashdesk.logging_config import get_logger

logger = get_logger(__name__)


class TopUpProposal(BaseModel):
    intent_id: str
    required_amount: int
    suggested_amount: int
    note: str


class TopUpResult(BaseModel):
    intent_id: str
    status: str
    topped_up: int
    new_float_available: int


def float_warning(payout: int, available_float: int) -> Optional[str]:
    """Local float comparison; a deficit is reported, never enforced."""
    if payout <= available_float:
        return None
    return (
        f"Payout {format_inr(payout)} exceeds the known float {format_inr(available_float)} "
        f"by {format_inr(payout - available_float)}; the ledger will confirm"
    )


def parse_required_amount(payload: dict, requested: Optional[int] = None, known_float: Optional[int] = None) -> int:
    required = payload.get("required_amount")
    if required is None and isinstance(payload.get("data"), dict):
        required = payload["data"].get("required_amount")
    message = payload.get("message") or ""
    if required is None and "Need" in message:
        required = parse_inr(message[message.index("Need"):])
    if required is None and requested is not None and known_float is not None:
        required = requested - known_float
    return max(0, int(required or 0))


class FloatShortfallHandler:
    def __init__(self, db: Session, ledger):
        self.db = db
        self.ledger = ledger

    def on_insufficient_funds(
        self,
        intent,
        signal: InsufficientFundsSignal,
        requested: Optional[int] = None,
        known_float: Optional[int] = None,
    ) -> TopUpProposal:
        required = signal.required_amount
        if required <= 0:
            required = parse_required_amount({}, requested, known_float)
        update_intent(self.db, intent, IntentStatus.AWAITING_FLOAT, required_amount=required, last_error=str(signal))
        logger.info(
            "Payout held for float top-up: intent_id=%s required_amount=%s",
            intent.intent_id,
            required,
        )
        return TopUpProposal(
            intent_id=intent.intent_id,
            required_amount=required,
            suggested_amount=required,
            note=settings.float_top_up_note,
        )

    async def top_up(self, intent_id: str, amount: int, note: Optional[str] = None) -> TopUpResult:
        intent = get_intent(self.db, intent_id)
        if intent.operation != Operation.CASH_PAYOUT.value or intent.status != IntentStatus.AWAITING_FLOAT.value:
            raise ValidationError(f"intent {intent_id} is not waiting for a float top-up")
        if amount <= 0 or amount < (intent.required_amount or 0):
            raise ValidationError(f"Top-up must be at least {format_inr(intent.required_amount or 0)}")

        receipt = await self.ledger.add_float(amount, note or settings.float_top_up_note, intent_id=f"{intent_id}:float:{intent.attempt_count}")
        update_intent(self.db, intent, IntentStatus.REARMED, last_error=None)
        logger.info(
            "Float topped up, payout re-armed: intent_id=%s amount=%s new_float_available=%s",
            intent_id,
            amount,
            receipt.new_float_available,
        )
        return TopUpResult(
            intent_id=intent_id,
            status=intent.status,
            topped_up=amount,
            new_float_available=receipt.new_float_available,
        )

    def ensure_rearmed(self, intent, confirmed: bool):
        if intent.status != IntentStatus.REARMED.value:
            raise ValidationError(f"intent {intent.intent_id} is not ready for resubmission (status {intent.status})")
        if not confirmed:
            raise ValidationError("Operator confirmation is required to resubmit the payout")
