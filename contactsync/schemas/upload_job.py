"""
Pydantic schemas for upload job-related API operations.
"""
from typing import Optional, Dict, Any
from datetime import datetime
from pydantic import BaseModel, Field, field_validator

from contactsync.models.upload_job import JobStatus


class UploadJobCreate(BaseModel):
    """Schema for creating a Job Store row."""
    job_id: int = Field(..., description="Queue job id")
    location_id: Optional[str] = Field(None, description="Owning CRM location")
    status: JobStatus = Field(JobStatus.PENDING, description="Job status")
    message: Optional[str] = Field(None, description="Human-readable status message")
    result: Optional[Dict[str, Any]] = Field(None, description="Result payload")
    success_count: Optional[int] = Field(None, description="Contacts upserted")
    failure_count: Optional[int] = Field(None, description="Contacts that failed")
    total_records: Optional[int] = Field(None, description="Normalized contacts in the file")
    file_name: Optional[str] = Field(None, description="Stored file name")


class UploadJobUpdate(BaseModel):
    """
    Schema for partial Job Store updates.

    Only fields that are provided and not None are applied.
    """
    location_id: Optional[str] = None
    status: Optional[JobStatus] = None
    message: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    success_count: Optional[int] = None
    failure_count: Optional[int] = None
    total_records: Optional[int] = None
    file_name: Optional[str] = None

    @field_validator("success_count", "failure_count", "total_records")
    def validate_counts(cls, v):
        """Validate counters."""
        if v is not None and v < 0:
            raise ValueError("Counts cannot be negative")
        return v


class UploadJobResponse(BaseModel):
    """Schema for upload job responses."""
    job_id: int = Field(..., alias="jobId", description="Queue job id")
    location_id: Optional[str] = Field(None, alias="locationId")
    status: JobStatus
    message: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    success_count: Optional[int] = Field(None, alias="successCount")
    failure_count: Optional[int] = Field(None, alias="failureCount")
    total_records: Optional[int] = Field(None, alias="totalRecords")
    file_name: Optional[str] = Field(None, alias="fileName")
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")

    class Config:
        """Pydantic config."""
        from_attributes = True
        populate_by_name = True
