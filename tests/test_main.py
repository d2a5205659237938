import csv
from io import StringIO

import httpx
from fastapi.testclient import TestClient


PLAYER = {"player_id": "player-1", "player_name": "Ravi Kumar", "phone_number": "9876543210"}


def _seed(ledger_admin, chip_balance=0, stored_chips=0, outstanding_credit=0, primary=0, secondary=0):
    ledger_admin.post("/admin/players", json={
        **PLAYER,
        "chip_balance": chip_balance,
        "stored_chips": stored_chips,
        "outstanding_credit": outstanding_credit,
    })
    ledger_admin.post("/admin/wallets", json={
        "primary_float_available": primary,
        "secondary_wallet_balance": secondary,
    })


def _ledger_transactions(ledger_admin):
    return ledger_admin.get("/transactions").json()["data"]


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_bearer_token_enforced(client, app_module):
    main, _, _ = app_module
    main.app.dependency_overrides.pop(main.require_bearer_token, None)

    resp = client.get("/intents")
    assert resp.status_code == 401
    assert resp.headers["WWW-Authenticate"] == "Bearer"
    assert client.get("/intents", headers={"Authorization": "Basic dGVzdHRva2Vu"}).status_code == 401
    assert client.get("/intents", headers={"Authorization": "Bearer wrong"}).status_code == 401
    assert client.get("/intents", headers={"Authorization": "Bearer testtoken"}).status_code == 200


# previews

def test_preview_chips(client):
    body = {"chip_breakdown": {"chips_100": 2, "chips_500": 1}, "target": 700}
    resp = client.post("/preview/chips", json=body)
    assert resp.status_code == 200
    assert resp.json() == {"total": 700, "target": 700, "valid": True, "difference": 0}

    resp = client.post("/preview/chips", json={**body, "target": 800})
    assert resp.json()["valid"] is False
    assert resp.json()["difference"] == -100


def test_preview_auto_fill(client):
    resp = client.post("/preview/chips/auto-fill", json={"target": 7600})
    assert resp.status_code == 200
    body = resp.json()
    assert body["chip_breakdown"] == {
        "chips_100": 1,
        "chips_500": 5,
        "chips_1000": 0,
        "chips_5000": 1,
        "chips_10000": 0,
    }
    assert body["total"] == 7600


def test_preview_cash_payout(client):
    resp = client.post("/preview/cash-payout", json={"chips_amount": 5000, "outstanding_credit": 3000})
    assert resp.status_code == 200
    settlement = resp.json()["settlement"]
    assert settlement["credit_to_settle"] == 3000
    assert settlement["net_cash_payout"] == 2000
    assert settlement["credit_remaining_after"] == 0

    resp = client.post("/preview/cash-payout", json={"chips_amount": 5000, "outstanding_credit": 8000})
    settlement = resp.json()["settlement"]
    assert (settlement["credit_to_settle"], settlement["net_cash_payout"], settlement["credit_remaining_after"]) == (5000, 0, 3000)

    resp = client.post("/preview/cash-payout", json={
        "chips_amount": 800,
        "chip_breakdown": {"chips_100": 2, "chips_500": 1},
    })
    assert resp.status_code == 422


def test_preview_expense(client):
    resp = client.post("/preview/expense", json={
        "amount": 12000,
        "wallets": {"secondary_wallet_balance": 4000, "primary_float_available": 20000},
    })
    assert resp.status_code == 200
    body = resp.json()
    assert body["from_secondary"] == 4000
    assert body["from_primary"] == 8000
    assert body["is_valid"] is True


# cash payout

def test_cash_payout_settles_credit_first(client, ledger_admin):
    _seed(ledger_admin, chip_balance=5000, outstanding_credit=3000, primary=10000)

    resp = client.post("/cash-payout", json={**PLAYER, "chips_amount": 5000})
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "committed"
    assert body["detail"] == {"credit_settled": 3000, "net_cash_paid": 2000}
    assert body["transaction"]["transaction_type"] == "cash_payout"
    assert "Credit ₹3,000 = Net ₹2,000" in body["transaction"]["notes"]

    balance = client.get("/players/player-1/chip-balance").json()
    assert balance["outstanding_credit"] == 0
    assert balance["chip_balance"] == 0

    wallets = ledger_admin.get("/cashier/wallets").json()["data"]
    assert wallets["primary_float_available"] == 8000


def test_cash_payout_with_stored_chips(client, ledger_admin):
    _seed(ledger_admin, chip_balance=4000, stored_chips=1500, primary=10000)

    resp = client.post("/cash-payout", json={**PLAYER, "chips_amount": 4000, "stored_balance_amount": 1000})
    assert resp.status_code == 200
    assert resp.json()["detail"]["net_cash_paid"] == 5000

    resp = client.post("/cash-payout", json={**PLAYER, "chips_amount": 0, "stored_balance_amount": 1000})
    assert resp.status_code == 422


def test_cash_payout_local_validation(client, ledger_admin):
    _seed(ledger_admin, chip_balance=5000, stored_chips=500, primary=10000)

    resp = client.post("/cash-payout", json={**PLAYER, "phone_number": "12345", "chips_amount": 1000})
    assert resp.status_code == 422
    assert "10-digit" in resp.json()["detail"]

    resp = client.post("/cash-payout", json={**PLAYER, "chips_amount": 0})
    assert resp.status_code == 422

    resp = client.post("/cash-payout", json={
        **PLAYER,
        "chips_amount": 800,
        "chip_breakdown": {"chips_100": 2, "chips_500": 1},
    })
    assert resp.status_code == 422

    resp = client.post("/cash-payout", json={**PLAYER, "chips_amount": 1000, "is_house_player": True})
    assert resp.status_code == 422
    assert "CEO" in resp.json()["detail"]

    resp = client.post("/cash-payout", json={**PLAYER, "chips_amount": 1000, "stored_balance_amount": 600})
    assert resp.status_code == 422

    resp = client.post("/cash-payout", json={**PLAYER, "chips_amount": 6000})
    assert resp.status_code == 422
    assert resp.json()["detail"]["available"] == 5000

    assert [t for t in _ledger_transactions(ledger_admin) if t["transaction_type"] == "cash_payout"] == []


def test_house_player_with_ceo_permission(client, ledger_admin):
    _seed(ledger_admin, chip_balance=5000, primary=10000)
    resp = client.post("/cash-payout", json={
        **PLAYER,
        "chips_amount": 1000,
        "is_house_player": True,
        "ceo_permission_confirmed": True,
    })
    assert resp.status_code == 200


def test_float_shortfall_top_up_and_resubmit(client, ledger_admin):
    _seed(ledger_admin, chip_balance=5000, primary=500)

    resp = client.post("/cash-payout", json={**PLAYER, "chips_amount": 2000})
    assert resp.status_code == 409
    body = resp.json()
    assert body["status"] == "awaiting_float"
    proposal = body["detail"]["top_up"]
    assert proposal["required_amount"] == 1500
    assert proposal["note"] == "Added for cash payout"
    intent_id = body["intent_id"]

    resp = client.post(f"/intents/{intent_id}/resubmit", json={"confirmed": True})
    assert resp.status_code == 422

    resp = client.post("/float/top-up", json={"intent_id": intent_id, "amount": 1000})
    assert resp.status_code == 422

    resp = client.post("/float/top-up", json={"intent_id": intent_id, "amount": 1500})
    assert resp.status_code == 200
    assert resp.json()["status"] == "rearmed"
    assert resp.json()["new_float_available"] == 2000

    resp = client.post(f"/intents/{intent_id}/resubmit", json={"confirmed": False})
    assert resp.status_code == 422

    resp = client.post(f"/intents/{intent_id}/resubmit", json={"confirmed": True})
    assert resp.status_code == 200
    assert resp.json()["status"] == "committed"
    assert resp.json()["detail"]["net_cash_paid"] == 2000

    intents = client.get("/intents").json()
    assert intents[0]["intentId"] == intent_id
    assert intents[0]["status"] == "committed"
    assert intents[0]["attemptCount"] == 2

    payouts = [t for t in _ledger_transactions(ledger_admin) if t["transaction_type"] == "cash_payout"]
    assert len(payouts) == 1


def test_idempotency_key_reuses_existing_response(client, ledger_admin):
    _seed(ledger_admin, chip_balance=5000, primary=10000)
    headers = {"Idempotency-Key": "payout-key"}
    payload = {**PLAYER, "chips_amount": 1000}

    first = client.post("/cash-payout", json=payload, headers=headers)
    second = client.post("/cash-payout", json=payload, headers=headers)

    assert first.status_code == 200
    assert second.status_code == 200
    assert first.json() == second.json()
    payouts = [t for t in _ledger_transactions(ledger_admin) if t["transaction_type"] == "cash_payout"]
    assert len(payouts) == 1

    conflict = client.post("/cash-payout", json={**payload, "chips_amount": 2000}, headers=headers)
    assert conflict.status_code == 422


def test_in_flight_intent_is_refused(client, app_module):
    _, database, _ = app_module
    from cashdesk.db import create_intent
    from cashdesk.helpers import hash_request

    payload = {**PLAYER, "chips_amount": 1000}
    # mirror what the hub hashes for a payout body
    body = {
        "operation": "cash_payout",
        **PLAYER,
        "chips_amount": 1000,
        "chip_breakdown": None,
        "stored_balance_amount": 0,
        "is_house_player": False,
        "ceo_permission_confirmed": False,
        "notes": None,
    }
    with database.SessionLocal() as db:
        create_intent(db, "busy-key", "cash_payout", hash_request(body), {})

    resp = client.post("/cash-payout", json=payload, headers={"Idempotency-Key": "busy-key"})
    assert resp.status_code == 409


def test_ledger_down_fails_write_and_degrades_reads(app_module):
    main, database, models = app_module
    from cashdesk.clients.ledger_client import LedgerClient

    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    down = LedgerClient(base_url="http://mock-ledger", transport=httpx.MockTransport(handler), retry_backoff_seconds=0)
    main.app.dependency_overrides[main.get_ledger] = lambda: down
    try:
        with TestClient(main.app) as client:
            resp = client.get("/players/player-1/chip-balance")
            assert resp.status_code == 200
            assert resp.json()["chip_balance"] == 0

            assert client.get("/transactions").json() == []

            resp = client.post("/cash-payout", json={**PLAYER, "chips_amount": 1000})
            assert resp.status_code == 502

            resp = client.post("/expense", json={"amount": 500, "description": "Tea for dealers"})
            assert resp.status_code == 502
    finally:
        main.app.dependency_overrides.pop(main.get_ledger, None)

    with database.SessionLocal() as db:
        intents = db.query(models.SubmissionIntent).all()
        assert len(intents) == 1
        assert intents[0].status == "failed"


# expense

def test_expense_draws_secondary_first(client, ledger_admin):
    _seed(ledger_admin, primary=20000, secondary=4000)

    resp = client.post("/expense", json={"amount": 12000, "description": "Food Delivery: dinner for dealers"})
    assert resp.status_code == 200
    assert resp.json()["detail"] == {"secondary_draw": 4000, "primary_draw": 8000}

    wallets = ledger_admin.get("/cashier/wallets").json()["data"]
    assert wallets == {"primary_float_available": 12000, "secondary_wallet_balance": 0}


def test_expense_over_available_is_blocked(client, ledger_admin):
    _seed(ledger_admin, primary=2000, secondary=1000)

    resp = client.post("/expense", json={"amount": 5000, "description": "supplies"})
    assert resp.status_code == 422
    assert "₹2,000" in resp.json()["detail"]

    resp = client.post("/expense", json={"amount": 500, "description": "  "})
    assert resp.status_code == 422
    assert _ledger_transactions(ledger_admin) == []


# deposits and returns

def test_deposit_chips_and_cash(client, ledger_admin):
    _seed(ledger_admin, chip_balance=5000)

    resp = client.post("/deposit", json={
        **PLAYER,
        "kind": "chips",
        "chip_breakdown": {"chips_1000": 2, "chips_500": 1},
    })
    assert resp.status_code == 200
    assert resp.json()["detail"]["new_stored_balance"] == 2500

    resp = client.post("/deposit", json={**PLAYER, "kind": "cash", "amount": 1000})
    assert resp.status_code == 200
    assert resp.json()["detail"]["new_stored_balance"] == 3500

    resp = client.post("/deposit", json={**PLAYER, "kind": "chips", "amount": 3000, "chip_breakdown": {"chips_1000": 2}})
    assert resp.status_code == 422

    resp = client.post("/deposit", json={**PLAYER, "kind": "cash", "amount": 0})
    assert resp.status_code == 422


def test_return_chips_checks_known_balance(client, ledger_admin):
    _seed(ledger_admin, chip_balance=1000)

    resp = client.post("/return-chips", json={**PLAYER, "amount": 5000})
    assert resp.status_code == 422
    assert resp.json()["detail"]["requested"] == 5000

    resp = client.post("/return-chips", json={**PLAYER, "amount": 1000})
    assert resp.status_code == 200
    assert resp.json()["transaction"]["transaction_type"] == "return_chips"


# reversal

def test_reversal_locks_original_and_adds_one_entry(client, ledger_admin):
    _seed(ledger_admin, chip_balance=5000, primary=10000)
    payout = client.post("/cash-payout", json={**PLAYER, "chips_amount": 2000}).json()
    transaction_id = payout["transaction"]["transaction_id"]

    resp = client.post(f"/transactions/{transaction_id}/reverse", json={})
    assert resp.status_code == 422

    resp = client.post(f"/transactions/{transaction_id}/reverse", json={"reason": "wrong_amount"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["original"]["status"] == "reversed"
    assert body["original"]["amount"] == 2000
    assert body["reason"] == "wrong_amount"

    resp = client.post(f"/transactions/{transaction_id}/reverse", json={"reason": "wrong_amount"})
    assert resp.status_code == 409

    entries = [t for t in _ledger_transactions(ledger_admin) if t["reversal_of"] == transaction_id]
    assert len(entries) == 1
    assert entries[0]["amount"] == -2000
    assert entries[0]["transaction_id"] == body["reversal_entry_id"]

    wallets = ledger_admin.get("/cashier/wallets").json()["data"]
    assert wallets["primary_float_available"] == 10000


def test_reversal_with_unknown_reason_rejected(client, ledger_admin):
    _seed(ledger_admin, chip_balance=5000, primary=10000)
    payout = client.post("/cash-payout", json={**PLAYER, "chips_amount": 1000}).json()

    resp = client.post(f"/transactions/{payout['transaction']['transaction_id']}/reverse", json={"reason": "oops"})
    assert resp.status_code == 422
    assert all(t["status"] == "active" for t in _ledger_transactions(ledger_admin))


# ledger views

def test_transactions_view_and_csv_export(client, ledger_admin):
    _seed(ledger_admin, primary=20000, secondary=0)
    ledger_admin.post("/transactions/buy-in", json={**PLAYER, "amount": 5000})
    ledger_admin.post("/transactions/issue-credit", json={**PLAYER, "amount": 3000})
    client.post("/cash-payout", json={**PLAYER, "chips_amount": 8000})
    client.post("/expense", json={"amount": 500, "description": "Utilities: power bill"})

    rows = client.get("/transactions").json()
    assert [r["transaction_type"] for r in rows] == ["buy_in", "credit_issued", "cash_payout", "expense"]
    assert rows[0]["is_inflow"] is True
    assert rows[2]["signed_amount"] == -5000
    assert rows[3]["label"] == "Club Expense · Utilities"

    cashbook = client.get("/transactions", params={"view": "cashbook"}).json()
    assert [r["transaction_type"] for r in cashbook] == ["buy_in", "cash_payout", "expense"]

    credit = client.get("/transactions", params={"view": "credit_register"}).json()
    assert [r["transaction_type"] for r in credit] == ["credit_issued"]

    resp = client.get("/ledger/chip_ledger.csv")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    assert resp.headers["X-Row-Count"] == "3"
    exported = list(csv.DictReader(StringIO(resp.text)))
    assert [r["type"] for r in exported] == ["buy_in", "credit_issued", "cash_payout"]
    assert exported[1]["direction"] == "out"


def test_reversal_refused_when_credit_already_settled(client, ledger_admin):
    _seed(ledger_admin, primary=10000)
    credit = ledger_admin.post("/transactions/issue-credit", json={**PLAYER, "amount": 5000}).json()["data"]
    resp = client.post("/cash-payout", json={**PLAYER, "chips_amount": 5000})
    assert resp.json()["detail"]["credit_settled"] == 5000

    credit_id = credit["transaction"]["transaction_id"]
    resp = client.post(f"/transactions/{credit_id}/reverse", json={"reason": "wrong_amount"})
    assert resp.status_code == 400

    resp = client.get("/players/player-1/chip-balance")
    assert resp.status_code == 200
    assert resp.json()["outstanding_credit"] == 0
    assert resp.json()["chip_balance"] == 0
