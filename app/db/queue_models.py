"""SQLAlchemy model for the local offline submission queue."""
from datetime import datetime
from sqlalchemy import Column, Integer, Text, DateTime, Boolean, Index
from app.db.database import QueueBase


class OfflineQueueEntry(QueueBase):
    """A progression update waiting to be replayed against the record store.

    Entries are replayed strictly in ``id`` order and deleted only after the
    replay's write has been confirmed.
    """
    __tablename__ = "offline_queue"

    id = Column(Integer, primary_key=True, autoincrement=True)
    submission_id = Column(Text, unique=True, nullable=False)
    user_id = Column(Text, nullable=False)
    payload = Column(Text, nullable=False)  # ProgressionUpdate JSON
    immediate = Column(Boolean, nullable=False, default=True)  # False: buffer on replay until the next flush
    enqueued_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    attempts = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)

    __table_args__ = (
        Index('idx_offline_queue_user', 'user_id', 'id'),
    )
