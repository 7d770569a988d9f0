"""
UploadJob repository: the durable Job Store for upload processing.
"""
import logging
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import select, desc
from sqlalchemy.ext.asyncio import AsyncSession

from contactsync.db.repositories.base import BaseRepository
from contactsync.models.upload_job import UploadJob, JobStatus
from contactsync.schemas.upload_job import UploadJobCreate, UploadJobUpdate

logger = logging.getLogger("contactsync.db")


class UploadJobRepository(BaseRepository[UploadJob, UploadJobCreate, UploadJobUpdate]):
    """
    Job Store repository.

    Rows are addressed by queue job id. Several rows may exist for one job id;
    the most recently created one is authoritative and is the one mutated.
    """

    def __init__(self, session: AsyncSession):
        """Initialize with session and UploadJob model."""
        super().__init__(session=session, model=UploadJob)

    async def create_job(
        self,
        *,
        job_id: int,
        location_id: Optional[str] = None,
        status: JobStatus = JobStatus.PENDING,
        message: Optional[str] = None,
        result: Optional[Dict[str, Any]] = None,
        success_count: Optional[int] = None,
        failure_count: Optional[int] = None,
        total_records: Optional[int] = None,
        file_name: Optional[str] = None,
        commit: bool = True,
    ) -> UploadJob:
        """
        Create a Job Store row.

        Args:
            job_id: Queue job id
            location_id: Owning CRM location
            status: Initial status
            message: Status message
            result: Optional result payload
            success_count: Optional success counter
            failure_count: Optional failure counter
            total_records: Optional total record count
            file_name: Stored file name
            commit: Commit immediately; False leaves the row in the caller's transaction

        Returns:
            UploadJob: Created row
        """
        db_obj = UploadJob(
            job_id=job_id,
            location_id=location_id,
            status=status,
            message=message,
            result=result,
            success_count=success_count,
            failure_count=failure_count,
            total_records=total_records,
            file_name=file_name,
        )
        self.session.add(db_obj)

        if commit:
            await self.session.commit()
            await self.session.refresh(db_obj)

        logger.debug(f"Created job entry for job ID {job_id}")
        return db_obj

    async def find_latest_by_job_id(self, job_id: int) -> Optional[UploadJob]:
        """
        Get the most recently created row for a queue job id.

        Args:
            job_id: Queue job id

        Returns:
            UploadJob: Latest row or None
        """
        result = await self.session.execute(
            select(UploadJob)
            .where(UploadJob.job_id == job_id)
            .order_by(desc(UploadJob.created_at))
            .limit(1)
        )
        return result.scalars().first()

    async def update_by_job_id(
        self,
        job_id: int,
        obj_in: Union[UploadJobUpdate, Dict[str, Any]]
    ) -> UploadJob:
        """
        Partially update the latest row for a job id, creating one if absent.

        Args:
            job_id: Queue job id
            obj_in: Fields to apply; None values keep the stored value

        Returns:
            UploadJob: Updated or created row
        """
        if isinstance(obj_in, dict):
            obj_in = UploadJobUpdate(**obj_in)

        existing = await self.find_latest_by_job_id(job_id)
        if existing:
            updated = await self._apply_update(existing, obj_in)
            logger.debug(f"Updated job entry for job ID {job_id} to status {updated.status.value}")
            return updated

        fields = obj_in.model_dump(exclude_none=True)
        logger.debug(f"No job entry for job ID {job_id}, creating one")
        return await self.create_job(job_id=job_id, **fields)

    async def upsert_by_job_id(self, job_id: int, **fields: Any) -> UploadJob:
        """
        Idempotent create-or-update entry point for the Job Store.

        Usage:
            await repo.upsert_by_job_id(7, status=JobStatus.PROCESSING, message="Starting")

        Args:
            job_id: Queue job id
            **fields: UploadJobUpdate fields

        Returns:
            UploadJob: Current row for the job id
        """
        return await self.update_by_job_id(job_id, UploadJobUpdate(**fields))

    async def list_recent_for_location(self, location_id: str, limit: int = 5) -> List[UploadJob]:
        """
        Get the most recent job rows of a location.

        Args:
            location_id: CRM location id
            limit: Maximum number of rows

        Returns:
            List[UploadJob]: Rows, newest first
        """
        result = await self.session.execute(
            select(UploadJob)
            .where(UploadJob.location_id == location_id)
            .order_by(desc(UploadJob.created_at))
            .limit(limit)
        )
        return result.scalars().all()
