# contactsync/api/v1/endpoints/contacts.py
"""
Contact upload, job status and workflow endpoints.
"""
import os
import logging
import time
import uuid
from pathlib import Path
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status

from contactsync.api.v1.dependencies import (
    get_location,
    get_upload_service_dependency,
    get_workflow_service,
)
from contactsync.core.config import settings
from contactsync.core.exceptions import CRMRequestError, NotFoundError, map_upstream_error
from contactsync.db.repositories.upload_jobs import UploadJobRepository
from contactsync.db.session import get_repository_context
from contactsync.models.location import Location
from contactsync.schemas.upload import UploadAcceptedResponse
from contactsync.schemas.upload_job import UploadJobResponse
from contactsync.schemas.workflow import WorkflowEvent, WorkflowResult
from contactsync.services.contacts.workflow import ContactWorkflowService
from contactsync.services.crm.client import crm_client_for_location
from contactsync.services.uploads.service import UploadService

router = APIRouter()
logger = logging.getLogger("contactsync.api.contacts")

ALLOWED_EXTENSIONS = {".csv", ".txt"}
CHUNK_SIZE = 8192  # 8KB chunks for streaming
RECENT_JOBS_LIMIT = 5


@router.post(
    "/upload/{location_id}",
    response_model=UploadAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def upload_contacts(
    file: UploadFile = File(..., description="CSV file containing contact data"),
    mappings: str = Form(..., description="JSON object of column -> target field"),
    tags: str = Form("[]", description="JSON array of {id, name} tags"),
    location: Location = Depends(get_location),
    upload_service: UploadService = Depends(get_upload_service_dependency),
) -> Any:
    """
    Accept a CSV upload for asynchronous processing.

    Custom fields and new tags are created before the job is queued; the
    response carries the job id to follow progress with.
    """
    _validate_uploaded_file(file)
    file_path, file_name = await _store_upload(file)

    job_id = await upload_service.accept_upload(
        location_id=location.id,
        file_path=file_path,
        file_name=file_name,
        mappings_json=mappings,
        tags_json=tags,
    )
    return UploadAcceptedResponse(job_id=job_id)


@router.get("/custom-fields/{location_id}")
async def list_custom_fields(location: Location = Depends(get_location)) -> Dict[str, Any]:
    """List the location's custom fields."""
    try:
        async with crm_client_for_location(location.id) as crm:
            return await crm.list_custom_fields(location.id)
    except CRMRequestError as e:
        raise map_upstream_error(e)


@router.get("/tags/{location_id}")
async def list_tags(location: Location = Depends(get_location)) -> Dict[str, Any]:
    """List the location's tags."""
    try:
        async with crm_client_for_location(location.id) as crm:
            return await crm.list_tags(location.id)
    except CRMRequestError as e:
        raise map_upstream_error(e)


@router.get("/jobs/{location_id}", response_model=List[UploadJobResponse])
async def list_recent_jobs(location: Location = Depends(get_location)) -> Any:
    """Get the latest upload jobs of a location."""
    async with get_repository_context(UploadJobRepository) as job_repo:
        return await job_repo.list_recent_for_location(location.id, limit=RECENT_JOBS_LIMIT)


@router.get("/jobs/{location_id}/{job_id}", response_model=UploadJobResponse)
async def get_job(job_id: int, location: Location = Depends(get_location)) -> Any:
    """Get the current state of an upload job."""
    async with get_repository_context(UploadJobRepository) as job_repo:
        job = await job_repo.find_latest_by_job_id(job_id)

    if not job or job.location_id != location.id:
        raise NotFoundError(message=f"Job {job_id} not found")
    return job


@router.post("/workflow/dnd", response_model=WorkflowResult)
async def workflow_dnd(
    event: WorkflowEvent,
    workflow_service: ContactWorkflowService = Depends(get_workflow_service),
) -> Any:
    """Flag every first-name sibling of the triggering contact as DND."""
    return await workflow_service.run(event, "DND")


@router.post("/workflow/delete", response_model=WorkflowResult)
async def workflow_delete(
    event: WorkflowEvent,
    workflow_service: ContactWorkflowService = Depends(get_workflow_service),
) -> Any:
    """Delete every first-name sibling of the triggering contact."""
    return await workflow_service.run(event, "DELETE")


def _validate_uploaded_file(file: UploadFile) -> None:
    """
    Reject uploads that are obviously not CSV files.

    Raises:
        HTTPException: Missing name, unsupported extension or unsafe name
    """
    if not file.filename:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No file provided"
        )

    file_extension = Path(file.filename).suffix.lower()
    if file_extension not in ALLOWED_EXTENSIONS:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"File type '{file_extension}' not supported. "
                   f"Allowed types: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
        )

    if any(char in file.filename for char in ['..', '/', '\\', '\0']):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Filename contains invalid characters"
        )


async def _store_upload(file: UploadFile) -> tuple:
    """
    Stream an upload to UPLOAD_DIR under a unique name.

    Returns:
        tuple: (file path, stored file name)
    """
    file_name = f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}-{file.filename}"
    file_path = os.path.join(settings.UPLOAD_DIR, file_name)
    size = 0

    try:
        with open(file_path, "wb") as out:
            while True:
                chunk = await file.read(CHUNK_SIZE)
                if not chunk:
                    break
                size += len(chunk)
                if size > settings.MAX_UPLOAD_SIZE:
                    raise HTTPException(
                        status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                        detail=f"File exceeds the {settings.MAX_UPLOAD_SIZE // (1024 * 1024)}MB limit"
                    )
                out.write(chunk)
    except HTTPException:
        os.remove(file_path)
        raise

    logger.info(f"Stored upload {file_name} ({size} bytes)")
    return file_path, file_name
