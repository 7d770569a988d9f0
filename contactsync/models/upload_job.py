"""
Database model for upload job tracking.
"""
from enum import Enum

from sqlalchemy import Column, String, JSON, Integer, Text, Enum as SQLEnum

from contactsync.models.base import Base


class JobStatus(str, Enum):
    """Upload job status enum."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class UploadJob(Base):
    """
    Durable record of an upload job's lifecycle.

    Keyed by the queue job id rather than a foreign key: the most recently
    created row for a job id is the authoritative one.
    """
    __tablename__ = "upload_job"

    job_id = Column(Integer, nullable=False, index=True)
    location_id = Column(String, nullable=True, index=True)

    status = Column(SQLEnum(JobStatus), nullable=False, default=JobStatus.PENDING, index=True)
    message = Column(Text, nullable=True)
    result = Column(JSON, nullable=True)

    # Counters
    success_count = Column(Integer, nullable=True)
    failure_count = Column(Integer, nullable=True)
    total_records = Column(Integer, nullable=True)

    file_name = Column(String, nullable=True)
