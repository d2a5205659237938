from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cashdesk import models
from cashdesk.config import IntentStatus
from cashdesk.exceptions import DuplicateSubmissionError, IntentNotFoundError, ValidationError


def get_intent(db: Session, intent_id: str) -> models.SubmissionIntent:
    intent = db.query(models.SubmissionIntent).filter_by(intent_id=intent_id).first()
    if not intent:
        raise IntentNotFoundError(f"intent {intent_id} not found")
    return intent


def find_intent(db: Session, intent_id: str, body_hash: str) -> Optional[models.SubmissionIntent]:
    """
    Look up a previous attempt under the same key.

    Replays of a finished intent return it; a different body under the same
    key or a replay while the first attempt is in flight are refused.
    """
    existing = db.query(models.SubmissionIntent).filter_by(intent_id=intent_id).first()
    if not existing:
        return None
    if existing.request_hash != body_hash:
        raise ValidationError("idempotency conflict: key reused with a different request")
    if existing.status == IntentStatus.SUBMITTED.value:
        raise DuplicateSubmissionError(f"intent {intent_id} is already being submitted")
    return existing


def create_intent(db: Session, intent_id: str, operation: str, body_hash: str, payload: dict) -> models.SubmissionIntent:
    record = models.SubmissionIntent(
        intent_id=intent_id,
        operation=operation,
        request_hash=body_hash,
        payload=payload,
        status=IntentStatus.SUBMITTED.value,
        attempt_count=1,
    )
    db.add(record)
    try:
        db.commit()
    except IntegrityError as exc:
        # another request registered the same key between lookup and insert
        db.rollback()
        raise DuplicateSubmissionError(f"intent {intent_id} is already being submitted") from exc
    db.refresh(record)
    return record


def update_intent(db: Session, intent: models.SubmissionIntent, status: IntentStatus, **fields) -> models.SubmissionIntent:
    intent.status = status.value
    for key, value in fields.items():
        setattr(intent, key, value)
    db.add(intent)
    db.commit()
    db.refresh(intent)
    return intent


def list_intents(db: Session, status: Optional[str] = None, limit: int = 100) -> list[models.SubmissionIntent]:
    query = db.query(models.SubmissionIntent)
    if status:
        query = query.filter(models.SubmissionIntent.status == status)
    return query.order_by(models.SubmissionIntent.id.desc()).limit(limit).all()
