import asyncio
import time
from collections import deque
from typing import Any, Optional

import httpx
import pydantic

from cashdesk.config import settings
from cashdesk.contracts.contracts import (
    DepositReceipt,
    ExpenseReceipt,
    FloatReceipt,
    LedgerAddFloat,
    LedgerCashPayout,
    LedgerDeposit,
    LedgerExpense,
    LedgerReturnChips,
    LedgerReversal,
    PayoutReceipt,
    ReturnReceipt,
    ReversalReceipt,
)
from cashdesk.exceptions import (
    AlreadyReversedError,
    InsufficientChipsError,
    InsufficientFundsSignal,
    LedgerRejectedError,
    TransientRemoteError,
)
from cashdesk.logging_config import get_logger
from cashdesk.schemas.app_schemas import ChipBalance, Transaction, WalletState
from cashdesk.shortfall import parse_required_amount

logger = get_logger(__name__)

RETRYABLE_READ_STATUSES = frozenset({429, 500, 502, 503, 504})


class LedgerClient:
    """
    Async client for the remote ledger.

    Reads retry on 429/5xx and connection errors with exponential backoff.
    Writes are sent exactly once; any failure is raised to the operator.
    Both share one per-minute request budget.
    """

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        rate_limit_per_minute: int | None = None,
        max_retries: int | None = None,
        retry_backoff_seconds: float | None = None,
    ):
        base_url = base_url or str(settings.ledger_base_url)
        token = token if token is not None else settings.ledger_token
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self.client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=settings.request_timeout_seconds,
            transport=transport,
        )
        self._sent: deque[float] = deque()
        self.rate_limit_per_minute = rate_limit_per_minute if rate_limit_per_minute is not None else settings.rate_limit_per_minute
        self.max_retries = max_retries if max_retries is not None else settings.max_retries
        self.retry_backoff_seconds = retry_backoff_seconds if retry_backoff_seconds is not None else settings.retry_backoff_seconds

    async def aclose(self):
        await self.client.aclose()

    def _take_slot(self) -> bool:
        """Claim a slot in the sliding one-minute window, False when it is full."""
        now = time.monotonic()
        while self._sent and now - self._sent[0] >= 60:
            self._sent.popleft()
        if len(self._sent) >= self.rate_limit_per_minute:
            return False
        self._sent.append(now)
        return True

    def _wait_for(self, response: httpx.Response | None, attempt: int) -> float:
        backoff = self.retry_backoff_seconds * (2 ** attempt)
        if response is not None and response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            if retry_after:
                return float(retry_after)
        return backoff

    async def _read(self, url: str, params: dict | None = None) -> httpx.Response:
        """
        GET with retries.

        The last retryable response is returned for unwrapping once retries run
        out; a full local budget or a dead connection raises TransientRemoteError.
        """
        for attempt in range(self.max_retries + 1):
            last_try = attempt == self.max_retries
            if not self._take_slot():
                if last_try:
                    raise TransientRemoteError("ledger rate limit reached, try again shortly")
                await asyncio.sleep(self._wait_for(None, attempt))
                continue
            try:
                response = await self.client.request("GET", url, params=params)
            except httpx.RequestError as exc:
                if last_try:
                    raise TransientRemoteError(f"ledger request error: {exc}") from exc
                logger.info("Ledger read failed, retrying: url=%s attempt=%s error=%s", url, attempt + 1, exc)
                await asyncio.sleep(self._wait_for(None, attempt))
                continue
            if response.status_code not in RETRYABLE_READ_STATUSES or last_try:
                return response
            logger.info("Ledger read got %s, retrying: url=%s attempt=%s", response.status_code, url, attempt + 1)
            await asyncio.sleep(self._wait_for(response, attempt))
        raise TransientRemoteError("ledger read retries exhausted")

    async def _send_once(self, url: str, payload: dict, intent_id: str | None = None) -> httpx.Response:
        if not self._take_slot():
            raise TransientRemoteError("ledger rate limit reached, try again shortly")
        headers = {"Idempotency-Key": intent_id} if intent_id else None
        try:
            return await self.client.post(url, json=payload, headers=headers)
        except httpx.RequestError as exc:
            raise TransientRemoteError(f"ledger request error: {exc}") from exc

    @staticmethod
    def _unwrap(response: httpx.Response) -> Any:
        try:
            body = response.json()
        except ValueError:
            body = {"message": response.text}
        if not isinstance(body, dict):
            body = {"data": body}
        if response.status_code == 429 or response.status_code >= 500:
            raise TransientRemoteError(f"ledger error {response.status_code}: {body.get('message')}")
        if response.status_code >= 400 or body.get("success") is False:
            message = body.get("message") or f"HTTP {response.status_code}"
            code = body.get("code") or ""
            if code == "INSUFFICIENT_CASH" or "INSUFFICIENT_CASH" in message:
                raise InsufficientFundsSignal(parse_required_amount(body), message)
            if code == "INSUFFICIENT_CHIPS":
                raise InsufficientChipsError(int(body.get("requested") or 0), int(body.get("available") or 0))
            if code == "ALREADY_REVERSED":
                raise AlreadyReversedError(message)
            raise LedgerRejectedError(response.status_code, message)
        return body.get("data", body)

    async def _get(self, url: str, params: dict | None = None) -> Any:
        response = await self._read(url, params=params)
        return self._unwrap(response)

    async def _post(self, url: str, payload: dict, intent_id: str | None = None) -> Any:
        response = await self._send_once(url, payload, intent_id)
        return self._unwrap(response)

    # reads

    async def fetch_chip_balance(self, player_id: str, strict: bool = False) -> ChipBalance:
        """
        Player balances. A failed or malformed read degrades to a zero balance
        unless ``strict`` is set, in which case TransientRemoteError or
        LedgerRejectedError is raised.
        """
        try:
            data = await self._get(f"/transactions/player/{player_id}/chip-balance")
            try:
                return ChipBalance(player_id=player_id, **{k: v for k, v in data.items() if k != "player_id"})
            except pydantic.ValidationError as exc:
                raise TransientRemoteError(f"ledger sent an unusable chip balance: {exc.error_count()} errors") from exc
        except (TransientRemoteError, LedgerRejectedError) as exc:
            if strict:
                raise
            logger.warning("Chip balance unavailable, using zero balance: player_id=%s error=%s", player_id, exc)
            return ChipBalance(player_id=player_id)

    async def fetch_wallet_state(self, strict: bool = False) -> WalletState:
        try:
            data = await self._get("/cashier/wallets")
            try:
                return WalletState(**data)
            except pydantic.ValidationError as exc:
                raise TransientRemoteError(f"ledger sent unusable wallet state: {exc.error_count()} errors") from exc
        except (TransientRemoteError, LedgerRejectedError) as exc:
            if strict:
                raise
            logger.warning("Wallet state unavailable, using empty wallets: error=%s", exc)
            return WalletState()

    async def list_transactions(self, player_id: Optional[str] = None) -> list[Transaction]:
        url = f"/transactions/player/{player_id}" if player_id else "/transactions"
        try:
            data = await self._get(url)
        except (TransientRemoteError, LedgerRejectedError) as exc:
            logger.warning("Transaction history unavailable: player_id=%s error=%s", player_id, exc)
            return []
        if isinstance(data, dict):
            data = data.get("transactions", [])
        return [Transaction(**item) for item in data or []]

    async def get_transaction(self, transaction_id: str) -> Transaction:
        data = await self._get(f"/transactions/{transaction_id}")
        if isinstance(data, dict) and "transaction" in data:
            data = data["transaction"]
        return Transaction(**data)

    # writes

    async def submit_cash_payout(self, payout: LedgerCashPayout, intent_id: str) -> PayoutReceipt:
        data = await self._post("/transactions/cash-payout", payout.model_dump(exclude_none=True), intent_id)
        return PayoutReceipt(**data)

    async def submit_expense(self, expense: LedgerExpense, intent_id: str) -> ExpenseReceipt:
        data = await self._post("/transactions/expense", expense.model_dump(), intent_id)
        return ExpenseReceipt(**data)

    async def submit_deposit(self, deposit: LedgerDeposit, kind: str, intent_id: str) -> DepositReceipt:
        url = "/transactions/deposit-chips" if kind == "chips" else "/transactions/deposit-cash"
        data = await self._post(url, deposit.model_dump(exclude_none=True), intent_id)
        return DepositReceipt(**data)

    async def submit_return_chips(self, request: LedgerReturnChips, intent_id: str) -> ReturnReceipt:
        data = await self._post("/transactions/return-chips", request.model_dump(exclude_none=True), intent_id)
        return ReturnReceipt(**data)

    async def add_float(self, amount: int, notes: str, intent_id: str | None = None) -> FloatReceipt:
        data = await self._post("/cashier/add-cash-float", LedgerAddFloat(amount=amount, notes=notes).model_dump(), intent_id)
        return FloatReceipt(**data)

    async def reverse_transaction(self, transaction_id: str, reason: str) -> ReversalReceipt:
        data = await self._post(f"/transactions/{transaction_id}/reverse", LedgerReversal(reason=reason).model_dump())
        return ReversalReceipt(**data)


ledger_client = LedgerClient()
