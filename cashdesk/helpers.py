import hashlib
import json
import re

from cashdesk.config import settings
from cashdesk.exceptions import ValidationError
from cashdesk import models

_AMOUNT_RE = re.compile(r"₹\s?([\d,]+)")


def hash_request(body: dict) -> str:
    return hashlib.sha256(json.dumps(body, sort_keys=True, default=str).encode()).hexdigest()


def validate_phone(phone_number: str):
    phone = (phone_number or "").strip()
    if len(phone) != settings.phone_number_length or not phone.isdigit():
        raise ValidationError(f"Valid {settings.phone_number_length}-digit phone number is required")


def require_positive(amount, label: str = "amount"):
    if amount is None or amount <= 0:
        raise ValidationError(f"Valid {label} is required")


def format_inr(amount: int) -> str:
    return f"₹{amount:,}"


def parse_inr(text: str):
    """Pull the first rupee figure (``₹12,500``) out of free text."""
    match = _AMOUNT_RE.search(text or "")
    if not match:
        return None
    return int(match.group(1).replace(",", ""))


def serialize_intent(record: models.SubmissionIntent) -> dict:
    return {
        "intentId": record.intent_id,
        "operation": record.operation,
        "status": record.status,
        "attemptCount": record.attempt_count,
        "requiredAmount": record.required_amount,
        "lastError": record.last_error,
        "rejection": record.rejection,
        "createdAt": record.created_at.isoformat() if record.created_at else None,
        "updatedAt": record.updated_at.isoformat() if record.updated_at else None,
        "payload": record.payload,
    }
