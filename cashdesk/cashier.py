"""
Cashier operations.

Each operation validates locally, registers an intent, then submits it to the
ledger exactly once. Ledger failures are recorded on the intent and raised to
the operator; nothing is retried behind their back.
"""
import uuid
from typing import Awaitable, Callable, Optional

from pydantic import BaseModel
from sqlalchemy.orm import Session

from cashdesk.chips import resolve_chip_amount
from cashdesk.classifier import filter_view
from cashdesk.config import IntentStatus, LedgerView, Operation
from cashdesk.contracts.contracts import (
    LedgerCashPayout,
    LedgerDeposit,
    LedgerExpense,
    LedgerReturnChips,
)
from cashdesk.db import create_intent, find_intent, get_intent, update_intent
from cashdesk.exceptions import (
    InsufficientChipsError,
    InsufficientFundsSignal,
    LedgerRejectedError,
    TransientRemoteError,
    ValidationError,
)
from cashdesk.helpers import format_inr, hash_request, require_positive, validate_phone
from cashdesk.logging_config import get_logger
from cashdesk.models import SubmissionIntent
from cashdesk.reversal import ReversalEngine, ReversalOutcome, parse_reason
from cashdesk.schemas.app_schemas import (
    CashPayoutRequest,
    ChipBalance,
    DepositRequest,
    ExpenseRequest,
    ReturnChipsRequest,
    SubmissionResponse,
    Transaction,
)
from cashdesk.settlement import payout_notes, payout_value, settle_credit
from cashdesk.shortfall import FloatShortfallHandler, TopUpResult, float_warning
from cashdesk.wallets import allocate_expense

logger = get_logger(__name__)


def _require_player(player_name: str, phone_number: str):
    if not (player_name or "").strip():
        raise ValidationError("Player name is required")
    validate_phone(phone_number)


def _rejection(exc: Exception) -> dict:
    if isinstance(exc, InsufficientChipsError):
        return {"kind": "insufficient_chips", "requested": exc.requested, "available": exc.available}
    if isinstance(exc, ValidationError):
        return {"kind": "validation"}
    return {"kind": "ledger_rejected", "status_code": getattr(exc, "status_code", 400)}


def _raise_rejection(intent: SubmissionIntent):
    rejection = intent.rejection or {}
    message = intent.last_error or "rejected by ledger"
    kind = rejection.get("kind")
    if kind == "insufficient_chips":
        raise InsufficientChipsError(rejection["requested"], rejection["available"])
    if kind == "validation":
        raise ValidationError(message)
    raise LedgerRejectedError(rejection.get("status_code", 400), message)


class CashierService:
    def __init__(self, db: Session, ledger):
        self.db = db
        self.ledger = ledger
        self.shortfall = FloatShortfallHandler(db, ledger)
        self.reversals = ReversalEngine(ledger)

    # intents

    def _lookup(
        self,
        operation: Operation,
        request: BaseModel,
        intent_id: Optional[str],
    ) -> tuple[str, str, Optional[SubmissionIntent]]:
        body_hash = hash_request({"operation": operation.value, **request.model_dump(mode="json")})
        key = intent_id or str(uuid.uuid4())
        return key, body_hash, find_intent(self.db, key, body_hash)

    async def _replay(self, intent: SubmissionIntent) -> SubmissionResponse:
        """Answer a repeated submission from the stored outcome."""
        if intent.status == IntentStatus.FAILED.value:
            # same attempt key, so the ledger drops it if the first send did land
            update_intent(self.db, intent, IntentStatus.SUBMITTED)
            return await self._dispatch(intent)
        if intent.status == IntentStatus.REJECTED.value:
            _raise_rejection(intent)
        if intent.response_body:
            return SubmissionResponse(**{**intent.response_body, "status": intent.status})
        return SubmissionResponse(intent_id=intent.intent_id, status=intent.status)

    async def _dispatch(self, intent: SubmissionIntent) -> SubmissionResponse:
        operation = Operation(intent.operation)
        if operation == Operation.CASH_PAYOUT:
            return await self._submit_payout(intent)
        if operation == Operation.EXPENSE:
            return await self._submit_expense(intent)
        if operation == Operation.DEPOSIT:
            return await self._submit_deposit(intent)
        if operation == Operation.RETURN_CHIPS:
            return await self._submit_return(intent)
        raise ValidationError(f"intent {intent.intent_id} cannot be submitted ({intent.operation})")

    async def _submit(
        self,
        intent: SubmissionIntent,
        send: Callable[[str], Awaitable],
        on_commit: Callable[..., SubmissionResponse],
    ) -> SubmissionResponse:
        attempt_key = f"{intent.intent_id}:{intent.attempt_count}"
        logger.info(
            "Submitting intent: intent_id=%s operation=%s attempt=%s",
            intent.intent_id,
            intent.operation,
            intent.attempt_count,
        )
        try:
            receipt = await send(attempt_key)
        except TransientRemoteError as exc:
            update_intent(self.db, intent, IntentStatus.FAILED, last_error=str(exc))
            logger.warning("Ledger unavailable, intent failed: intent_id=%s error=%s", intent.intent_id, exc)
            raise
        except InsufficientFundsSignal as signal:
            if intent.operation == Operation.CASH_PAYOUT.value:
                raise
            rejected = LedgerRejectedError(400, str(signal))
            update_intent(self.db, intent, IntentStatus.REJECTED, last_error=str(signal), rejection=_rejection(rejected))
            logger.info("Ledger rejected intent: intent_id=%s reason=%s", intent.intent_id, signal)
            raise rejected from signal
        except (LedgerRejectedError, InsufficientChipsError, ValidationError) as exc:
            update_intent(self.db, intent, IntentStatus.REJECTED, last_error=str(exc), rejection=_rejection(exc))
            logger.info("Ledger rejected intent: intent_id=%s reason=%s", intent.intent_id, exc)
            raise

        response = on_commit(receipt)
        update_intent(
            self.db,
            intent,
            IntentStatus.COMMITTED,
            response_body=response.model_dump(mode="json"),
            last_error=None,
        )
        logger.info(
            "Intent committed: intent_id=%s operation=%s transaction_id=%s",
            intent.intent_id,
            intent.operation,
            response.transaction.transaction_id if response.transaction else None,
        )
        return response

    async def _known_balance(self, player_id: str) -> Optional[ChipBalance]:
        try:
            return await self.ledger.fetch_chip_balance(player_id, strict=True)
        except (TransientRemoteError, LedgerRejectedError) as exc:
            logger.warning("Chip balance unknown, leaving checks to the ledger: player_id=%s error=%s", player_id, exc)
            return None

    # reads

    async def chip_balance(self, player_id: str) -> ChipBalance:
        return await self.ledger.fetch_chip_balance(player_id)

    async def list_transactions(self, view: LedgerView = LedgerView.ALL, player_id: Optional[str] = None) -> list[Transaction]:
        transactions = await self.ledger.list_transactions(player_id)
        return filter_view(transactions, view)

    # cash payout

    async def cash_payout(self, request: CashPayoutRequest, intent_id: Optional[str] = None) -> SubmissionResponse:
        key, body_hash, existing = self._lookup(Operation.CASH_PAYOUT, request, intent_id)
        if existing:
            return await self._replay(existing)

        _require_player(request.player_name, request.phone_number)
        physical = resolve_chip_amount(request.chip_breakdown, request.chips_amount)
        require_positive(physical, "chip amount")
        if request.is_house_player and not request.ceo_permission_confirmed:
            raise ValidationError("CEO permission is required before paying out a house player")

        balance = await self._known_balance(request.player_id)
        if balance is not None:
            if physical > balance.chip_balance:
                raise InsufficientChipsError(physical, balance.chip_balance)
            total = payout_value(physical, request.stored_balance_amount, balance.stored_chips)
            settlement = settle_credit(total, balance.outstanding_credit)
        else:
            if request.stored_balance_amount < 0:
                raise ValidationError("stored balance amount must not be negative")
            settlement = settle_credit(physical + request.stored_balance_amount, 0)

        wallets = await self.ledger.fetch_wallet_state()
        notes = (request.notes or "").strip() or payout_notes(physical, request.stored_balance_amount, settlement)
        payout = LedgerCashPayout.from_payout_request(request, physical, notes)
        intent = create_intent(self.db, key, Operation.CASH_PAYOUT.value, body_hash, {
            "ledger": payout.model_dump(mode="json"),
            "net_cash_payout": settlement.net_cash_payout,
            "known_float": wallets.primary_float_available,
            "warning": float_warning(settlement.net_cash_payout, wallets.primary_float_available),
        })
        return await self._submit_payout(intent)

    async def _submit_payout(self, intent: SubmissionIntent) -> SubmissionResponse:
        payout = LedgerCashPayout(**intent.payload["ledger"])
        warning = intent.payload.get("warning")

        def committed(receipt) -> SubmissionResponse:
            return SubmissionResponse(
                intent_id=intent.intent_id,
                status=IntentStatus.COMMITTED.value,
                transaction=receipt.transaction,
                detail={"credit_settled": receipt.credit_settled, "net_cash_paid": receipt.net_cash_paid},
                warning=warning,
            )

        try:
            return await self._submit(intent, lambda key: self.ledger.submit_cash_payout(payout, key), committed)
        except InsufficientFundsSignal as signal:
            proposal = self.shortfall.on_insufficient_funds(
                intent,
                signal,
                requested=intent.payload.get("net_cash_payout"),
                known_float=intent.payload.get("known_float"),
            )
            response = SubmissionResponse(
                intent_id=intent.intent_id,
                status=IntentStatus.AWAITING_FLOAT.value,
                detail={"top_up": proposal.model_dump(), "message": str(signal)},
                warning=warning,
            )
            update_intent(self.db, intent, IntentStatus.AWAITING_FLOAT, response_body=response.model_dump(mode="json"))
            return response

    async def top_up_float(self, intent_id: str, amount: int, notes: Optional[str] = None) -> TopUpResult:
        return await self.shortfall.top_up(intent_id, amount, notes)

    async def resubmit(self, intent_id: str, confirmed: bool) -> SubmissionResponse:
        intent = get_intent(self.db, intent_id)
        self.shortfall.ensure_rearmed(intent, confirmed)
        update_intent(self.db, intent, IntentStatus.SUBMITTED, attempt_count=intent.attempt_count + 1)
        return await self._submit_payout(intent)

    # expense

    async def expense(self, request: ExpenseRequest, intent_id: Optional[str] = None) -> SubmissionResponse:
        key, body_hash, existing = self._lookup(Operation.EXPENSE, request, intent_id)
        if existing:
            return await self._replay(existing)

        require_positive(request.amount, "expense amount")
        if not (request.description or "").strip():
            raise ValidationError("Expense description is required")

        wallets = await self.ledger.fetch_wallet_state(strict=True)
        allocation = allocate_expense(request.amount, wallets)
        if not allocation.is_valid:
            raise ValidationError(
                f"Insufficient funds. Total available {format_inr(allocation.total_available)}, "
                f"short by {format_inr(allocation.shortfall)}"
            )

        expense = LedgerExpense.from_expense_request(request)
        intent = create_intent(self.db, key, Operation.EXPENSE.value, body_hash, {
            "ledger": expense.model_dump(mode="json"),
            "allocation": allocation.model_dump(mode="json"),
        })
        return await self._submit_expense(intent)

    async def _submit_expense(self, intent: SubmissionIntent) -> SubmissionResponse:
        expense = LedgerExpense(**intent.payload["ledger"])

        def committed(receipt) -> SubmissionResponse:
            return SubmissionResponse(
                intent_id=intent.intent_id,
                status=IntentStatus.COMMITTED.value,
                transaction=receipt.transaction,
                detail={"secondary_draw": receipt.secondary_draw, "primary_draw": receipt.primary_draw},
            )

        return await self._submit(intent, lambda key: self.ledger.submit_expense(expense, key), committed)

    # deposits and returns

    async def deposit(self, request: DepositRequest, intent_id: Optional[str] = None) -> SubmissionResponse:
        key, body_hash, existing = self._lookup(Operation.DEPOSIT, request, intent_id)
        if existing:
            return await self._replay(existing)

        _require_player(request.player_name, request.phone_number)
        if request.kind == "chips":
            amount = resolve_chip_amount(request.chip_breakdown, request.amount)
            require_positive(amount, "chip amount")
        else:
            amount = request.amount
            require_positive(amount, "cash amount")

        deposit = LedgerDeposit.from_deposit_request(request, amount)
        intent = create_intent(self.db, key, Operation.DEPOSIT.value, body_hash, {
            "ledger": deposit.model_dump(mode="json"),
            "kind": request.kind,
        })
        return await self._submit_deposit(intent)

    async def _submit_deposit(self, intent: SubmissionIntent) -> SubmissionResponse:
        deposit = LedgerDeposit(**intent.payload["ledger"])
        kind = intent.payload["kind"]

        def committed(receipt) -> SubmissionResponse:
            return SubmissionResponse(
                intent_id=intent.intent_id,
                status=IntentStatus.COMMITTED.value,
                transaction=receipt.transaction,
                detail={"new_stored_balance": receipt.new_stored_balance},
            )

        return await self._submit(intent, lambda key: self.ledger.submit_deposit(deposit, kind, key), committed)

    async def return_chips(self, request: ReturnChipsRequest, intent_id: Optional[str] = None) -> SubmissionResponse:
        key, body_hash, existing = self._lookup(Operation.RETURN_CHIPS, request, intent_id)
        if existing:
            return await self._replay(existing)

        _require_player(request.player_name, request.phone_number)
        amount = resolve_chip_amount(request.chip_breakdown, request.amount)
        require_positive(amount, "chip amount")

        balance = await self._known_balance(request.player_id)
        if balance is not None and amount > balance.chip_balance:
            raise InsufficientChipsError(amount, balance.chip_balance)

        returned = LedgerReturnChips.from_return_request(request, amount)
        intent = create_intent(self.db, key, Operation.RETURN_CHIPS.value, body_hash, {
            "ledger": returned.model_dump(mode="json"),
        })
        return await self._submit_return(intent)

    async def _submit_return(self, intent: SubmissionIntent) -> SubmissionResponse:
        returned = LedgerReturnChips(**intent.payload["ledger"])

        def committed(receipt) -> SubmissionResponse:
            return SubmissionResponse(
                intent_id=intent.intent_id,
                status=IntentStatus.COMMITTED.value,
                transaction=receipt.transaction,
            )

        return await self._submit(intent, lambda key: self.ledger.submit_return_chips(returned, key), committed)

    # reversal

    async def reverse(self, transaction_id: str, reason) -> ReversalOutcome:
        parsed = parse_reason(reason)
        transaction = await self.ledger.get_transaction(transaction_id)
        return await self.reversals.reverse(transaction, parsed)
