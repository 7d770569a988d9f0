# contactsync/services/uploads/events.py
"""
Progress event schema for upload processing.

Events are broadcast to clients of the owning location and are not stored;
the Job Store row mirrors the latest one.
"""
from enum import Enum
from typing import Any, Dict, Optional, TypedDict

__all__ = ["ProgressStatus", "JobProgressEvent", "create_progress_event", "PROGRESS_EVENT_NAME"]

PROGRESS_EVENT_NAME = "job-progress"


class ProgressStatus(str, Enum):
    """Status values carried by progress events."""
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobProgressEvent(TypedDict, total=False):
    """
    Wire shape of a progress event.

    progress and status are always present; the rest only when known.
    """
    progress: int                      # 0-100, non-decreasing within a job
    status: str                        # processing | completed | failed
    message: str                       # Human-readable step description
    result: Dict[str, Any]             # Final counts on completion
    successCount: int
    failureCount: int
    totalRecords: int


def create_progress_event(
    progress: float,
    status: ProgressStatus,
    message: Optional[str] = None,
    result: Optional[Dict[str, Any]] = None,
    success_count: Optional[int] = None,
    failure_count: Optional[int] = None,
    total_records: Optional[int] = None,
) -> JobProgressEvent:
    """
    Build a progress event, dropping fields that are not set.

    Args:
        progress: Completion percentage, clamped to 0-100 and rounded
        status: Job status
        message: Optional status message
        result: Optional result payload
        success_count: Optional success counter
        failure_count: Optional failure counter
        total_records: Optional total record count

    Returns:
        JobProgressEvent: Event ready for broadcasting
    """
    event: JobProgressEvent = {
        "progress": int(round(max(0.0, min(100.0, float(progress))))),
        "status": ProgressStatus(status).value,
    }

    optional = {
        "message": message,
        "result": result,
        "successCount": success_count,
        "failureCount": failure_count,
        "totalRecords": total_records,
    }
    for key, value in optional.items():
        if value is not None:
            event[key] = value

    return event
