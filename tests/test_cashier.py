import asyncio

import pytest

from cashdesk.cashier import CashierService
from cashdesk.contracts.contracts import ExpenseReceipt
from cashdesk.exceptions import (
    DuplicateSubmissionError,
    InsufficientChipsError,
    LedgerRejectedError,
    TransientRemoteError,
)
from cashdesk.schemas.app_schemas import (
    ExpenseRequest,
    ReturnChipsRequest,
    SubmissionResponse,
    Transaction,
    WalletState,
)

PLAYER = {"player_id": "player-4", "player_name": "Asha", "phone_number": "9876501234"}


class SlowLedger:
    """Yields on every call so two submissions interleave."""

    def __init__(self):
        self.sent = []

    async def fetch_wallet_state(self, strict=False):
        await asyncio.sleep(0)
        return WalletState(primary_float_available=10000)

    async def submit_expense(self, expense, intent_id):
        self.sent.append(intent_id)
        await asyncio.sleep(0)
        return ExpenseReceipt(
            transaction=Transaction(transaction_id="txn-1", transaction_type="expense", amount=expense.amount),
            primary_draw=expense.amount,
        )


class RefusingLedger:
    def __init__(self, error):
        self.error = error
        self.calls = 0

    async def fetch_chip_balance(self, player_id, strict=False):
        raise TransientRemoteError("balance unavailable")

    async def submit_return_chips(self, request, intent_id):
        self.calls += 1
        raise self.error


def test_double_click_with_same_key_submits_once(app_module):
    _, database, models = app_module
    ledger = SlowLedger()
    request = ExpenseRequest(amount=500, description="Tea for dealers")
    first_db, second_db = database.SessionLocal(), database.SessionLocal()

    async def both():
        return await asyncio.gather(
            CashierService(first_db, ledger).expense(request, intent_id="same-key"),
            CashierService(second_db, ledger).expense(request, intent_id="same-key"),
            return_exceptions=True,
        )

    try:
        results = asyncio.run(both())
    finally:
        first_db.close()
        second_db.close()

    committed = [r for r in results if isinstance(r, SubmissionResponse)]
    refused = [r for r in results if isinstance(r, DuplicateSubmissionError)]
    assert len(committed) == 1
    assert len(refused) == 1
    assert committed[0].status == "committed"
    assert ledger.sent == ["same-key:1"]

    with database.SessionLocal() as db:
        assert db.query(models.SubmissionIntent).count() == 1


def test_create_intent_refuses_taken_key(app_module):
    _, database, _ = app_module
    from cashdesk.db import create_intent

    with database.SessionLocal() as db:
        create_intent(db, "taken", "expense", "hash", {})
    with database.SessionLocal() as db:
        with pytest.raises(DuplicateSubmissionError):
            create_intent(db, "taken", "expense", "hash", {})


def test_replayed_rejection_keeps_insufficient_chips(app_module):
    _, database, _ = app_module
    ledger = RefusingLedger(InsufficientChipsError(5000, 100))
    request = ReturnChipsRequest(**PLAYER, amount=5000)

    with database.SessionLocal() as db:
        service = CashierService(db, ledger)
        for _ in range(2):
            with pytest.raises(InsufficientChipsError) as exc:
                asyncio.run(service.return_chips(request, intent_id="return-1"))
            assert exc.value.requested == 5000
            assert exc.value.available == 100

    assert ledger.calls == 1


def test_replayed_rejection_keeps_status_code(app_module):
    _, database, _ = app_module
    ledger = RefusingLedger(LedgerRejectedError(404, "player not found"))
    request = ReturnChipsRequest(**PLAYER, amount=500)

    with database.SessionLocal() as db:
        service = CashierService(db, ledger)
        for _ in range(2):
            with pytest.raises(LedgerRejectedError) as exc:
                asyncio.run(service.return_chips(request, intent_id="return-2"))
            assert exc.value.status_code == 404
            assert str(exc.value) == "player not found"

    assert ledger.calls == 1
