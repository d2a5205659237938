from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func

from cashdesk.database import Base


class SubmissionIntent(Base):
    __tablename__ = "submission_intents"
    id = Column(Integer, primary_key=True)
    intent_id = Column(String, unique=True, index=True, nullable=False)
    operation = Column(String, nullable=False)
    request_hash = Column(String, nullable=False)
    payload = Column(JSON, nullable=False)
    status = Column(String, nullable=False)  # see config.IntentStatus
    attempt_count = Column(Integer, default=0)
    required_amount = Column(Integer, nullable=True)
    response_body = Column(JSON, nullable=True)
    last_error = Column(String, nullable=True)
    # kind of ledger refusal, replayed as the same error class
    rejection = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
