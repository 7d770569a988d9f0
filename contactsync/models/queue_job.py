"""
Database model backing the durable upload queue.
"""
from enum import Enum

from sqlalchemy import Column, String, JSON, Integer, Text, DateTime, Enum as SQLEnum

from contactsync.models.base import Base


class QueueJobState(str, Enum):
    """Queue entry states. Completed entries are removed, not stored."""
    WAITING = "waiting"
    ACTIVE = "active"
    FAILED = "failed"


class QueueJob(Base):
    """A unit of queued upload work."""
    __tablename__ = "upload_queue_job"

    # Integer ids double as the public job id
    id = Column(Integer, primary_key=True, autoincrement=True)

    name = Column(String, nullable=False, default="upload-job")
    payload = Column(JSON, nullable=False)
    state = Column(SQLEnum(QueueJobState), nullable=False, default=QueueJobState.WAITING, index=True)

    attempts_made = Column(Integer, nullable=False, default=0)
    failed_reason = Column(Text, nullable=True)

    locked_at = Column(DateTime(timezone=True), nullable=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)
