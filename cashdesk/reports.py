import csv
from io import StringIO
from typing import Iterable, List, Tuple

from cashdesk.classifier import classify_transaction, filter_view, signed_amount
from cashdesk.config import LedgerView
from cashdesk.logging_config import get_logger
from cashdesk.reversal import reversal_reason_label
from cashdesk.schemas.app_schemas import Transaction


logger = get_logger(__name__)

CSV_COLUMNS = [
    "transactionId",
    "createdAt",
    "type",
    "label",
    "direction",
    "amount",
    "signedAmount",
    "chipsAmount",
    "playerId",
    "playerName",
    "status",
    "reversalOf",
    "reversalReason",
    "notes",
]


def serialize_transaction(transaction: Transaction) -> dict:
    classification = classify_transaction(transaction)
    body = transaction.model_dump(mode="json")
    body["label"] = classification.label
    body["is_inflow"] = classification.is_inflow
    body["icon_class"] = classification.icon_class
    body["signed_amount"] = signed_amount(transaction)
    return body


def _direction(is_inflow) -> str:
    if is_inflow is None:
        return ""
    return "in" if is_inflow else "out"


def generate_ledger_csv(transactions: Iterable[Transaction], view: LedgerView = LedgerView.ALL) -> Tuple[str, int]:
    """
    Render one ledger view as CSV text and return it with the row count.
    """
    rows: List[list] = []
    for txn in filter_view(transactions, view):
        classification = classify_transaction(txn)
        rows.append([
            txn.transaction_id,
            txn.created_at.isoformat() if txn.created_at else "",
            txn.transaction_type,
            classification.label,
            _direction(classification.is_inflow),
            txn.amount,
            signed_amount(txn),
            txn.chips_amount if txn.chips_amount is not None else "",
            txn.player_id or "",
            txn.player_name or "",
            txn.status.value,
            txn.reversal_of or "",
            reversal_reason_label(txn.reversal_reason) if txn.reversal_reason else "",
            txn.notes or "",
        ])

    logger.info("Ledger export complete: view=%s rows=%s", view.value, len(rows))
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(CSV_COLUMNS)
    for row in rows:
        writer.writerow(row)

    return output.getvalue(), len(rows)
