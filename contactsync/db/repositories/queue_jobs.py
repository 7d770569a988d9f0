"""
QueueJob repository for the durable upload queue.
"""
import logging
from datetime import datetime, timezone, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from contactsync.db.repositories.base import BaseRepository
from contactsync.models.queue_job import QueueJob, QueueJobState

logger = logging.getLogger("contactsync.db")

# Claim attempts per poll before giving up to the next cycle
CLAIM_CANDIDATES = 5


class QueueJobRepository(BaseRepository[QueueJob, Any, Any]):
    """QueueJob repository for database operations."""

    def __init__(self, session: AsyncSession):
        """Initialize with session and QueueJob model."""
        super().__init__(session=session, model=QueueJob)

    async def add_job(self, payload: Dict[str, Any], name: str = "upload-job") -> QueueJob:
        """
        Add a waiting job and flush it so the integer id is assigned.

        The caller owns the commit, which lets the Job Store row be written
        in the same transaction.

        Args:
            payload: Job payload (JSON-serializable)
            name: Job name

        Returns:
            QueueJob: Pending job with its id populated
        """
        db_obj = QueueJob(name=name, payload=payload, state=QueueJobState.WAITING, attempts_made=0)
        self.session.add(db_obj)
        await self.session.flush()
        return db_obj

    async def claim_next(self) -> Optional[QueueJob]:
        """
        Atomically move the oldest waiting job to active.

        The state check in the UPDATE makes the claim a compare-and-set, so a
        job is handed to exactly one worker.

        Returns:
            QueueJob: Claimed job or None when the queue is empty
        """
        result = await self.session.execute(
            select(QueueJob.id)
            .where(QueueJob.state == QueueJobState.WAITING)
            .order_by(QueueJob.id)
            .limit(CLAIM_CANDIDATES)
        )
        candidate_ids = result.scalars().all()

        for job_id in candidate_ids:
            now = datetime.now(timezone.utc)
            claimed = await self.session.execute(
                update(QueueJob)
                .where(QueueJob.id == job_id, QueueJob.state == QueueJobState.WAITING)
                .values(
                    state=QueueJobState.ACTIVE,
                    locked_at=now,
                    attempts_made=QueueJob.attempts_made + 1,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount == 1:
                await self.session.commit()
                logger.debug(f"Claimed queue job {job_id}")
                return await self.get_by_id(job_id)

        await self.session.commit()
        return None

    async def remove_job(self, job_id: int) -> bool:
        """
        Remove a successfully processed job.

        Args:
            job_id: Queue job id

        Returns:
            bool: True if removed
        """
        return await self.delete(id=job_id)

    async def mark_failed(self, job_id: int, reason: str) -> Optional[QueueJob]:
        """
        Keep a failed job for inspection.

        Args:
            job_id: Queue job id
            reason: Failure message

        Returns:
            QueueJob: Updated job or None
        """
        return await self.update(
            id=job_id,
            obj_in={
                "state": QueueJobState.FAILED,
                "failed_reason": reason,
                "finished_at": datetime.now(timezone.utc),
            },
        )

    async def renew_lock(self, job_id: int) -> bool:
        """
        Refresh the lock of a job that is still being processed.

        Args:
            job_id: Queue job id

        Returns:
            bool: False if the job is no longer active
        """
        now = datetime.now(timezone.utc)
        result = await self.session.execute(
            update(QueueJob)
            .where(QueueJob.id == job_id, QueueJob.state == QueueJobState.ACTIVE)
            .values(locked_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return result.rowcount == 1

    async def release_job(self, job_id: int) -> bool:
        """
        Put an interrupted active job back in the queue.

        Args:
            job_id: Queue job id

        Returns:
            bool: True if the job was released
        """
        result = await self.session.execute(
            update(QueueJob)
            .where(QueueJob.id == job_id, QueueJob.state == QueueJobState.ACTIVE)
            .values(state=QueueJobState.WAITING, locked_at=None, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return result.rowcount == 1

    async def recover_stalled(self, stalled_after_seconds: float) -> int:
        """
        Return active jobs whose lock expired to the waiting state.

        Args:
            stalled_after_seconds: Lock age after which a job counts as stalled

        Returns:
            int: Number of recovered jobs
        """
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=stalled_after_seconds)
        result = await self.session.execute(
            update(QueueJob)
            .where(QueueJob.state == QueueJobState.ACTIVE, QueueJob.locked_at < cutoff)
            .values(state=QueueJobState.WAITING, locked_at=None)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()

        recovered = result.rowcount or 0
        if recovered:
            logger.warning(f"Recovered {recovered} stalled queue jobs")
        return recovered

    async def get_failed_jobs(self, limit: int = 100) -> List[QueueJob]:
        """
        Get retained failed jobs, newest first.

        Args:
            limit: Maximum number of jobs to return

        Returns:
            List[QueueJob]: Failed jobs
        """
        result = await self.session.execute(
            select(QueueJob)
            .where(QueueJob.state == QueueJobState.FAILED)
            .order_by(QueueJob.id.desc())
            .limit(limit)
        )
        return result.scalars().all()
