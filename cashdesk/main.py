from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Response
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from cashdesk import models
from cashdesk.cashier import CashierService
from cashdesk.chips import auto_fill, validate_breakdown
from cashdesk.clients.ledger_client import ledger_client
from cashdesk.config import IntentStatus, LedgerView
from cashdesk.database import engine, get_db
from cashdesk.db import list_intents
from cashdesk.exceptions import (
    AlreadyReversedError,
    CashdeskError,
    DuplicateSubmissionError,
    InsufficientChipsError,
    InsufficientFundsSignal,
    IntentNotFoundError,
    LedgerRejectedError,
    TransientRemoteError,
    ValidationError,
)
from cashdesk.helpers import serialize_intent
from cashdesk.logging_config import get_logger
from cashdesk.reports import generate_ledger_csv, serialize_transaction
from cashdesk.schemas.app_schemas import (
    AddFloatRequest,
    AutoFillRequest,
    CashPayoutPreviewRequest,
    CashPayoutRequest,
    ChipCheckRequest,
    DepositRequest,
    ExpensePreviewRequest,
    ExpenseRequest,
    ResubmitRequest,
    ReturnChipsRequest,
    ReversalRequest,
    SubmissionResponse,
)
from cashdesk.security import require_bearer_token
from cashdesk.settlement import preview_cash_payout
from cashdesk.wallets import allocate_expense


logger = get_logger(__name__)

models.Base.metadata.create_all(bind=engine)
app = FastAPI(title="Cashdesk")


def get_ledger():
    return ledger_client


def get_service(db: Session = Depends(get_db), ledger=Depends(get_ledger)) -> CashierService:
    return CashierService(db, ledger)


def to_http_exception(exc: CashdeskError) -> HTTPException:
    if isinstance(exc, AlreadyReversedError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, InsufficientChipsError):
        return HTTPException(
            status_code=422,
            detail={"message": str(exc), "requested": exc.requested, "available": exc.available},
        )
    if isinstance(exc, InsufficientFundsSignal):
        return HTTPException(status_code=409, detail={"message": str(exc), "required_amount": exc.required_amount})
    if isinstance(exc, LedgerRejectedError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, TransientRemoteError):
        return HTTPException(status_code=502, detail=str(exc))
    if isinstance(exc, DuplicateSubmissionError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, IntentNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


async def _run(awaitable):
    try:
        return await awaitable
    except CashdeskError as exc:
        raise to_http_exception(exc) from exc


def _submission(response: SubmissionResponse):
    # a payout held for a float top-up is a conflict the operator has to resolve
    if response.status == IntentStatus.AWAITING_FLOAT.value:
        return JSONResponse(status_code=409, content=response.model_dump(mode="json"))
    return response


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Closing ledger client")
    await ledger_client.aclose()

# previews

@app.post("/preview/chips")
async def preview_chips(request: ChipCheckRequest, _auth=Depends(require_bearer_token)):
    return validate_breakdown(request.chip_breakdown, request.target)

@app.post("/preview/chips/auto-fill")
async def preview_auto_fill(request: AutoFillRequest, _auth=Depends(require_bearer_token)):
    breakdown = auto_fill(request.target)
    return {"chip_breakdown": breakdown, "total": breakdown.total, "chip_count": breakdown.chip_count}

@app.post("/preview/cash-payout")
async def preview_payout(request: CashPayoutPreviewRequest, _auth=Depends(require_bearer_token)):
    try:
        return preview_cash_payout(
            request.chips_amount,
            request.chip_breakdown,
            request.outstanding_credit,
            stored_requested=request.stored_balance_amount,
            stored_available=request.stored_chips,
            primary_float_available=request.primary_float_available,
        )
    except CashdeskError as exc:
        raise to_http_exception(exc) from exc

@app.post("/preview/expense")
async def preview_expense(request: ExpensePreviewRequest, _auth=Depends(require_bearer_token)):
    allocation = allocate_expense(request.amount, request.wallets)
    body = allocation.model_dump()
    body["from_secondary"] = allocation.from_secondary
    body["from_primary"] = allocation.from_primary
    return body

# submissions

@app.post("/cash-payout", response_model=SubmissionResponse)
async def cash_payout(
    request: CashPayoutRequest,
    _auth=Depends(require_bearer_token),
    service: CashierService = Depends(get_service),
    idempotency_key: str | None = Header(None),
):
    response = await _run(service.cash_payout(request, intent_id=idempotency_key))
    return _submission(response)

@app.post("/expense", response_model=SubmissionResponse)
async def expense(
    request: ExpenseRequest,
    _auth=Depends(require_bearer_token),
    service: CashierService = Depends(get_service),
    idempotency_key: str | None = Header(None),
):
    return await _run(service.expense(request, intent_id=idempotency_key))

@app.post("/deposit", response_model=SubmissionResponse)
async def deposit(
    request: DepositRequest,
    _auth=Depends(require_bearer_token),
    service: CashierService = Depends(get_service),
    idempotency_key: str | None = Header(None),
):
    return await _run(service.deposit(request, intent_id=idempotency_key))

@app.post("/return-chips", response_model=SubmissionResponse)
async def return_chips(
    request: ReturnChipsRequest,
    _auth=Depends(require_bearer_token),
    service: CashierService = Depends(get_service),
    idempotency_key: str | None = Header(None),
):
    return await _run(service.return_chips(request, intent_id=idempotency_key))

@app.post("/float/top-up")
async def float_top_up(
    request: AddFloatRequest,
    _auth=Depends(require_bearer_token),
    service: CashierService = Depends(get_service),
):
    return await _run(service.top_up_float(request.intent_id, request.amount, request.notes))

@app.post("/intents/{intent_id}/resubmit", response_model=SubmissionResponse)
async def resubmit_intent(
    intent_id: str,
    request: ResubmitRequest,
    _auth=Depends(require_bearer_token),
    service: CashierService = Depends(get_service),
):
    response = await _run(service.resubmit(intent_id, request.confirmed))
    return _submission(response)

@app.get("/intents")
async def get_intents(
    status: str | None = None,
    limit: int = Query(100, ge=1, le=500),
    _auth=Depends(require_bearer_token),
    db: Session = Depends(get_db),
):
    return [serialize_intent(r) for r in list_intents(db, status=status, limit=limit)]

@app.post("/transactions/{transaction_id}/reverse")
async def reverse_transaction(
    transaction_id: str,
    request: ReversalRequest,
    _auth=Depends(require_bearer_token),
    service: CashierService = Depends(get_service),
):
    outcome = await _run(service.reverse(transaction_id, request.reason))
    return {
        "original": serialize_transaction(outcome.original),
        "reversal_entry_id": outcome.reversal_entry_id,
        "reason": outcome.reason.value,
    }

# reads

@app.get("/players/{player_id}/chip-balance")
async def player_chip_balance(
    player_id: str,
    _auth=Depends(require_bearer_token),
    service: CashierService = Depends(get_service),
):
    return await _run(service.chip_balance(player_id))

@app.get("/transactions")
async def list_transactions(
    view: LedgerView = LedgerView.ALL,
    player_id: Optional[str] = None,
    _auth=Depends(require_bearer_token),
    service: CashierService = Depends(get_service),
):
    transactions = await _run(service.list_transactions(view, player_id))
    return [serialize_transaction(t) for t in transactions]

@app.get("/ledger/{view}.csv")
async def download_ledger_csv(
    view: LedgerView,
    _auth=Depends(require_bearer_token),
    service: CashierService = Depends(get_service),
):
    transactions = await _run(service.list_transactions())
    csv_text, row_count = generate_ledger_csv(transactions, view)
    return Response(
        content=csv_text,
        media_type="text/csv",
        headers={
            "Content-Disposition": f'attachment; filename="{view.value}.csv"',
            "X-Row-Count": str(row_count),
        },
    )

@app.get("/swagger", include_in_schema=False)
async def swagger_ui():
    return get_swagger_ui_html(openapi_url=str(app.openapi_url), title="Cashdesk - Swagger UI")

@app.get("/health")
async def health():
    return {"status": "ok"}
