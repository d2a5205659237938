import logging
import os
import uuid
from typing import List, Optional

from fastapi import Depends, FastAPI, Header
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.sql import func

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("mock-ledger")

PRIMARY = "primary"
SECONDARY = "secondary"

DB_URL = os.getenv("MOCK_LEDGER_DB_URL", "sqlite:////data/ledger.db")
STARTING_FLOAT = int(os.getenv("MOCK_LEDGER_STARTING_FLOAT", "0"))
engine = create_engine(DB_URL, connect_args={"check_same_thread": False})
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

app = FastAPI(title="Mock Ledger")


class LedgerTransaction(Base):
    __tablename__ = "transactions"
    id = Column(Integer, primary_key=True)
    transaction_id = Column(String, unique=True, index=True, nullable=False)
    transaction_type = Column(String, nullable=False)
    activity_type = Column(String, nullable=True)
    amount = Column(Integer, nullable=False)
    chips_amount = Column(Integer, nullable=True)
    chip_breakdown = Column(JSON, nullable=True)
    player_id = Column(String, index=True, nullable=True)
    player_name = Column(String, nullable=True)
    wallet_source = Column(String, nullable=True)
    wallet_destination = Column(String, nullable=True)
    primary_amount = Column(Integer, default=0)
    secondary_amount = Column(Integer, default=0)
    # signed deltas applied to the player row, undone by a reversal
    player_effects = Column(JSON, nullable=True)
    notes = Column(String, nullable=True)
    status = Column(String, nullable=False, default="active")
    is_edited = Column(Boolean, default=False)
    reversal_of = Column(String, nullable=True)
    reversal_reason = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Player(Base):
    __tablename__ = "players"
    player_id = Column(String, primary_key=True)
    player_name = Column(String, nullable=True)
    phone_number = Column(String, nullable=True)
    chip_balance = Column(Integer, default=0)
    stored_chips = Column(Integer, default=0)
    outstanding_credit = Column(Integer, default=0)


class Wallet(Base):
    __tablename__ = "wallets"
    name = Column(String, primary_key=True)
    balance = Column(Integer, default=0)


class IdempotencyRecord(Base):
    __tablename__ = "idempotency_keys"
    key = Column(String, primary_key=True)
    response = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


Base.metadata.create_all(bind=engine)


class PlayerBody(BaseModel):
    player_id: str
    player_name: str = ""
    phone_number: str = ""
    amount: int
    chip_breakdown: Optional[dict] = None
    notes: Optional[str] = None


class CashPayoutBody(BaseModel):
    player_id: str
    player_name: str = ""
    phone_number: str = ""
    total_value: int
    chips_amount: int
    chip_breakdown: Optional[dict] = None
    stored_balance_amount: int = 0
    ceo_permission_confirmed: Optional[bool] = None
    notes: Optional[str] = None


class ExpenseBody(BaseModel):
    amount: int
    description: str


class FloatBody(BaseModel):
    amount: int
    notes: str = ""


class ReverseBody(BaseModel):
    reason: str


class SeedPlayer(BaseModel):
    player_id: str
    player_name: str = ""
    phone_number: str = ""
    chip_balance: int = 0
    stored_chips: int = 0
    outstanding_credit: int = 0


class SeedWallets(BaseModel):
    primary_float_available: int = 0
    secondary_wallet_balance: int = 0


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _ok(data, message: str = "OK") -> dict:
    return {"success": True, "data": data, "message": message}


def _error(status_code: int, code: str, message: str, **extra) -> JSONResponse:
    logger.info("Rejecting request code=%s message=%s", code, message)
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "code": code, "message": message, "data": None, **extra},
    )


def _inr(amount: int) -> str:
    return f"₹{amount:,}"


def _wallet(db: Session, name: str) -> Wallet:
    wallet = db.get(Wallet, name)
    if not wallet:
        wallet = Wallet(name=name, balance=STARTING_FLOAT if name == PRIMARY else 0)
        db.add(wallet)
        db.flush()
    return wallet


def _player(db: Session, player_id: str, player_name: str = "", phone_number: str = "") -> Player:
    player = db.get(Player, player_id)
    if not player:
        player = Player(
            player_id=player_id,
            player_name=player_name,
            phone_number=phone_number,
            chip_balance=0,
            stored_chips=0,
            outstanding_credit=0,
        )
        db.add(player)
        db.flush()
    return player


def _wallet_state(db: Session) -> dict:
    return {
        "primary_float_available": _wallet(db, PRIMARY).balance,
        "secondary_wallet_balance": _wallet(db, SECONDARY).balance,
    }


def _serialize_transaction(txn: LedgerTransaction) -> dict:
    return {
        "transaction_id": txn.transaction_id,
        "transaction_type": txn.transaction_type,
        "activity_type": txn.activity_type,
        "amount": txn.amount,
        "chips_amount": txn.chips_amount,
        "chip_breakdown": txn.chip_breakdown,
        "player_id": txn.player_id,
        "player_name": txn.player_name,
        "wallet_source": txn.wallet_source,
        "wallet_destination": txn.wallet_destination,
        "primary_amount": txn.primary_amount or 0,
        "secondary_amount": txn.secondary_amount or 0,
        "notes": txn.notes,
        "created_at": txn.created_at.isoformat() if txn.created_at else None,
        "status": txn.status,
        "is_edited": bool(txn.is_edited),
        "reversal_of": txn.reversal_of,
        "reversal_reason": txn.reversal_reason,
    }


def _apply(db: Session, player: Optional[Player], primary: int = 0, secondary: int = 0, effects: Optional[dict] = None):
    if primary:
        _wallet(db, PRIMARY).balance += primary
    if secondary:
        _wallet(db, SECONDARY).balance += secondary
    if player is not None:
        for field, delta in (effects or {}).items():
            setattr(player, field, getattr(player, field) + delta)


def _record(db: Session, player: Optional[Player] = None, **fields) -> LedgerTransaction:
    txn = LedgerTransaction(
        transaction_id=str(uuid.uuid4()),
        player_id=player.player_id if player is not None else None,
        player_name=player.player_name if player is not None else None,
        status="active",
        **fields,
    )
    _apply(db, player, txn.primary_amount or 0, txn.secondary_amount or 0, txn.player_effects)
    db.add(txn)
    return txn


def _replayed(db: Session, key: Optional[str]) -> Optional[dict]:
    if not key:
        return None
    record = db.get(IdempotencyRecord, key)
    if record:
        logger.info("Replaying stored response for idempotency_key=%s", key)
        return record.response
    return None


def _commit(db: Session, key: Optional[str], response: dict) -> dict:
    if key:
        db.add(IdempotencyRecord(key=key, response=response))
    db.commit()
    return response


# reads

@app.get("/transactions")
async def list_transactions(db: Session = Depends(get_db)):
    txns: List[LedgerTransaction] = db.query(LedgerTransaction).order_by(LedgerTransaction.id).all()
    logger.info("Listing %s ledger transactions", len(txns))
    return _ok([_serialize_transaction(t) for t in txns])


@app.get("/transactions/player/{player_id}/chip-balance")
async def chip_balance(player_id: str, db: Session = Depends(get_db)):
    player = db.get(Player, player_id)
    if not player:
        return _ok({"chip_balance": 0, "stored_chips": 0, "outstanding_credit": 0, "can_cash_out": False})
    return _ok({
        "chip_balance": player.chip_balance,
        "stored_chips": player.stored_chips,
        "outstanding_credit": player.outstanding_credit,
        "can_cash_out": player.chip_balance > 0 or player.stored_chips > 0,
    })


@app.get("/transactions/player/{player_id}")
async def player_transactions(player_id: str, db: Session = Depends(get_db)):
    txns = (
        db.query(LedgerTransaction)
        .filter(LedgerTransaction.player_id == player_id)
        .order_by(LedgerTransaction.id)
        .all()
    )
    return _ok([_serialize_transaction(t) for t in txns])


@app.get("/transactions/{transaction_id}")
async def get_transaction(transaction_id: str, db: Session = Depends(get_db)):
    txn = db.query(LedgerTransaction).filter_by(transaction_id=transaction_id).first()
    if not txn:
        return _error(404, "NOT_FOUND", f"Transaction {transaction_id} not found")
    return _ok(_serialize_transaction(txn))


@app.get("/cashier/wallets")
async def wallets(db: Session = Depends(get_db)):
    state = _wallet_state(db)
    db.commit()
    return _ok(state)


# writes

@app.post("/transactions/buy-in")
async def buy_in(body: PlayerBody, db: Session = Depends(get_db), idempotency_key: str | None = Header(None)):
    replay = _replayed(db, idempotency_key)
    if replay:
        return replay
    player = _player(db, body.player_id, body.player_name, body.phone_number)
    txn = _record(
        db,
        player,
        transaction_type="buy_in",
        amount=body.amount,
        chips_amount=body.amount,
        chip_breakdown=body.chip_breakdown,
        wallet_destination=PRIMARY,
        primary_amount=body.amount,
        player_effects={"chip_balance": body.amount},
        notes=body.notes,
    )
    db.flush()
    return _commit(db, idempotency_key, _ok({"transaction": _serialize_transaction(txn)}))


@app.post("/transactions/issue-credit")
async def issue_credit(body: PlayerBody, db: Session = Depends(get_db), idempotency_key: str | None = Header(None)):
    replay = _replayed(db, idempotency_key)
    if replay:
        return replay
    player = _player(db, body.player_id, body.player_name, body.phone_number)
    txn = _record(
        db,
        player,
        transaction_type="credit_issued",
        amount=body.amount,
        chips_amount=body.amount,
        chip_breakdown=body.chip_breakdown,
        player_effects={"chip_balance": body.amount, "outstanding_credit": body.amount},
        notes=body.notes,
    )
    db.flush()
    return _commit(db, idempotency_key, _ok({"transaction": _serialize_transaction(txn)}))


@app.post("/transactions/cash-payout")
async def cash_payout(body: CashPayoutBody, db: Session = Depends(get_db), idempotency_key: str | None = Header(None)):
    replay = _replayed(db, idempotency_key)
    if replay:
        return replay
    logger.info(
        "Received cash payout player_id=%s total_value=%s stored=%s",
        body.player_id,
        body.total_value,
        body.stored_balance_amount,
    )
    if body.total_value <= 0:
        return _error(400, "VALIDATION", "Payout amount must be positive")
    player = _player(db, body.player_id, body.player_name, body.phone_number)
    if body.stored_balance_amount > player.stored_chips:
        return _error(
            400,
            "VALIDATION",
            f"Stored balance amount ({_inr(body.stored_balance_amount)}) exceeds stored balance ({_inr(player.stored_chips)})",
        )
    credit_settled = min(body.total_value, player.outstanding_credit)
    net_cash = body.total_value - credit_settled
    available = _wallet(db, PRIMARY).balance
    if net_cash > available:
        required = net_cash - available
        db.rollback()
        return _error(
            400,
            "INSUFFICIENT_CASH",
            f"INSUFFICIENT_CASH: float has {_inr(available)}. Need {_inr(required)} more to pay {_inr(net_cash)}",
            required_amount=required,
        )

    txn = _record(
        db,
        player,
        transaction_type="cash_payout",
        amount=net_cash,
        chips_amount=body.total_value,
        chip_breakdown=body.chip_breakdown,
        wallet_source=PRIMARY,
        primary_amount=-net_cash,
        player_effects={
            "chip_balance": -min(body.chips_amount, player.chip_balance),
            "stored_chips": -body.stored_balance_amount,
            "outstanding_credit": -credit_settled,
        },
        notes=body.notes,
    )
    db.flush()
    response = _ok({
        "transaction": _serialize_transaction(txn),
        "credit_settled": credit_settled,
        "net_cash_paid": net_cash,
    })
    return _commit(db, idempotency_key, response)


@app.post("/transactions/expense")
async def expense(body: ExpenseBody, db: Session = Depends(get_db), idempotency_key: str | None = Header(None)):
    replay = _replayed(db, idempotency_key)
    if replay:
        return replay
    secondary = _wallet(db, SECONDARY).balance
    primary = _wallet(db, PRIMARY).balance
    if body.amount <= 0 or body.amount > secondary + primary:
        db.rollback()
        return _error(
            400,
            "INSUFFICIENT_CASH",
            f"Insufficient funds. Total available {_inr(secondary + primary)}. Need {_inr(max(0, body.amount - secondary - primary))} more",
            required_amount=max(0, body.amount - secondary - primary),
        )
    from_secondary = min(body.amount, secondary)
    from_primary = body.amount - from_secondary
    txn = _record(
        db,
        None,
        transaction_type="expense",
        activity_type="club_expense",
        amount=body.amount,
        wallet_source=SECONDARY if from_primary == 0 else f"{SECONDARY}+{PRIMARY}",
        primary_amount=-from_primary,
        secondary_amount=-from_secondary,
        notes=body.description,
    )
    db.flush()
    response = _ok({
        "transaction": _serialize_transaction(txn),
        "secondary_draw": from_secondary,
        "primary_draw": from_primary,
    })
    return _commit(db, idempotency_key, response)


@app.post("/transactions/deposit-chips")
async def deposit_chips(body: PlayerBody, db: Session = Depends(get_db), idempotency_key: str | None = Header(None)):
    replay = _replayed(db, idempotency_key)
    if replay:
        return replay
    player = _player(db, body.player_id, body.player_name, body.phone_number)
    txn = _record(
        db,
        player,
        transaction_type="deposit_chips",
        amount=body.amount,
        chips_amount=body.amount,
        chip_breakdown=body.chip_breakdown,
        player_effects={"chip_balance": -min(body.amount, player.chip_balance), "stored_chips": body.amount},
        notes=body.notes,
    )
    db.flush()
    response = _ok({"transaction": _serialize_transaction(txn), "new_stored_balance": player.stored_chips})
    return _commit(db, idempotency_key, response)


@app.post("/transactions/deposit-cash")
async def deposit_cash(body: PlayerBody, db: Session = Depends(get_db), idempotency_key: str | None = Header(None)):
    replay = _replayed(db, idempotency_key)
    if replay:
        return replay
    player = _player(db, body.player_id, body.player_name, body.phone_number)
    txn = _record(
        db,
        player,
        transaction_type="deposit_cash",
        amount=body.amount,
        wallet_destination=SECONDARY,
        secondary_amount=body.amount,
        player_effects={"stored_chips": body.amount},
        notes=body.notes,
    )
    db.flush()
    response = _ok({"transaction": _serialize_transaction(txn), "new_stored_balance": player.stored_chips})
    return _commit(db, idempotency_key, response)


@app.post("/transactions/return-chips")
async def return_chips(body: PlayerBody, db: Session = Depends(get_db), idempotency_key: str | None = Header(None)):
    replay = _replayed(db, idempotency_key)
    if replay:
        return replay
    player = _player(db, body.player_id, body.player_name, body.phone_number)
    if body.amount > player.chip_balance:
        requested, available = body.amount, player.chip_balance
        db.rollback()
        return _error(
            400,
            "INSUFFICIENT_CHIPS",
            f"Player holds {_inr(available)} in chips, cannot return {_inr(requested)}",
            requested=requested,
            available=available,
        )
    txn = _record(
        db,
        player,
        transaction_type="return_chips",
        amount=body.amount,
        chips_amount=body.amount,
        chip_breakdown=body.chip_breakdown,
        player_effects={"chip_balance": -body.amount},
        notes=body.notes,
    )
    db.flush()
    return _commit(db, idempotency_key, _ok({"transaction": _serialize_transaction(txn)}))


@app.post("/cashier/add-cash-float")
async def add_cash_float(body: FloatBody, db: Session = Depends(get_db), idempotency_key: str | None = Header(None)):
    replay = _replayed(db, idempotency_key)
    if replay:
        return replay
    if body.amount <= 0:
        return _error(400, "VALIDATION", "Float amount must be positive")
    txn = _record(
        db,
        None,
        transaction_type="add_float",
        amount=body.amount,
        wallet_destination=PRIMARY,
        primary_amount=body.amount,
        notes=body.notes,
    )
    db.flush()
    response = _ok({"transaction": _serialize_transaction(txn), "new_float_available": _wallet(db, PRIMARY).balance})
    logger.info("Added float amount=%s new_float_available=%s", body.amount, response["data"]["new_float_available"])
    return _commit(db, idempotency_key, response)


@app.post("/transactions/{transaction_id}/reverse")
async def reverse(transaction_id: str, body: ReverseBody, db: Session = Depends(get_db)):
    original = db.query(LedgerTransaction).filter_by(transaction_id=transaction_id).first()
    if not original:
        return _error(404, "NOT_FOUND", f"Transaction {transaction_id} not found")
    if original.status == "reversed":
        return _error(409, "ALREADY_REVERSED", f"Transaction {transaction_id} is already reversed")
    if original.reversal_of:
        return _error(400, "VALIDATION", "A reversal entry cannot be reversed")

    player = db.get(Player, original.player_id) if original.player_id else None
    effects = {field: -delta for field, delta in (original.player_effects or {}).items()}
    if player is not None:
        for field, delta in effects.items():
            current = getattr(player, field) or 0
            if current + delta < 0:
                return _error(
                    400,
                    "NEGATIVE_BALANCE",
                    f"Reversing {transaction_id} would leave {field} at {_inr(current + delta)}",
                    field=field,
                    current=current,
                )

    entry = _record(
        db,
        player,
        transaction_type=original.transaction_type,
        activity_type=original.activity_type,
        amount=-original.amount,
        chips_amount=-original.chips_amount if original.chips_amount is not None else None,
        chip_breakdown=original.chip_breakdown,
        wallet_source=original.wallet_destination,
        wallet_destination=original.wallet_source,
        primary_amount=-(original.primary_amount or 0),
        secondary_amount=-(original.secondary_amount or 0),
        player_effects=effects,
        notes=f"Reversal of {transaction_id}: {body.reason}",
        reversal_of=transaction_id,
        reversal_reason=body.reason,
    )
    original.status = "reversed"
    original.reversal_reason = body.reason
    db.add(original)
    db.commit()
    logger.info(
        "Reversed transaction_id=%s reversal_entry_id=%s reason=%s",
        transaction_id,
        entry.transaction_id,
        body.reason,
    )
    return _ok({"original_locked": True, "reversal_entry_id": entry.transaction_id})


# admin

@app.post("/admin/players")
async def seed_player(body: SeedPlayer, db: Session = Depends(get_db)):
    player = _player(db, body.player_id, body.player_name, body.phone_number)
    player.player_name = body.player_name or player.player_name
    player.phone_number = body.phone_number or player.phone_number
    player.chip_balance = body.chip_balance
    player.stored_chips = body.stored_chips
    player.outstanding_credit = body.outstanding_credit
    db.commit()
    return _ok({"player_id": body.player_id})


@app.post("/admin/wallets")
async def seed_wallets(body: SeedWallets, db: Session = Depends(get_db)):
    _wallet(db, PRIMARY).balance = body.primary_float_available
    _wallet(db, SECONDARY).balance = body.secondary_wallet_balance
    db.commit()
    return _ok(_wallet_state(db))


@app.post("/admin/clear-db")
async def clear_db(db: Session = Depends(get_db)):
    """
    Dangerous: clears all mock ledger tables.
    """
    db.query(LedgerTransaction).delete()
    db.query(Player).delete()
    db.query(Wallet).delete()
    db.query(IdempotencyRecord).delete()
    db.commit()
    logger.warning("Cleared mock ledger tables via admin endpoint")
    return {"status": "cleared"}
