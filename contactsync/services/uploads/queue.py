# contactsync/services/uploads/queue.py
"""
Durable upload queue and its worker.

Producers enqueue an UploadJobPayload; the queue row and the pending Job
Store row are written in one transaction so a job is never visible in one
without the other. Workers claim jobs one at a time, remove them on success
and keep them (state "failed") on failure. Delivery is at-least-once: a
job whose worker died is returned to the queue once its lock goes stale,
and a job interrupted by shutdown is released back to the queue at once.
"""
import asyncio
import logging
import time
from typing import Any, Dict, Optional

from contactsync.core.config import settings
from contactsync.db.repositories.queue_jobs import QueueJobRepository
from contactsync.db.repositories.upload_jobs import UploadJobRepository
from contactsync.db.session import get_repository_context, get_session
from contactsync.models.queue_job import QueueJob
from contactsync.models.upload_job import JobStatus
from contactsync.schemas.upload import UploadJobPayload
from contactsync.services.uploads.events import ProgressStatus
from contactsync.services.uploads.processor import ProgressHeartbeat, UploadProcessor

logger = logging.getLogger("contactsync.uploads.queue")

UPLOAD_JOB_NAME = "upload-job"


class UploadQueue:
    """Producer side of the upload queue."""

    async def enqueue(self, payload: UploadJobPayload) -> int:
        """
        Add an upload job to the queue.

        Args:
            payload: Validated job payload

        Returns:
            int: Assigned job id
        """
        async with get_session() as session:
            queue_job = await QueueJobRepository(session).add_job(
                payload.to_wire(), name=UPLOAD_JOB_NAME
            )
            await UploadJobRepository(session).create_job(
                job_id=queue_job.id,
                location_id=payload.location_id,
                status=JobStatus.PENDING,
                message="Queued for processing",
                file_name=payload.file_name,
                commit=False,
            )
            job_id = queue_job.id

        logger.info(f"📥 Queued upload job {job_id} for location {payload.location_id}")
        return job_id


class UploadQueueWorker:
    """
    Consumer side of the upload queue.

    Polls for waiting jobs and runs them through the processor one at a
    time per worker. The lock of the running job is renewed while it
    runs; jobs whose lock went stale are swept back to "waiting" at start
    and every `stalled_check_interval` seconds.
    """

    def __init__(
        self,
        processor: UploadProcessor,
        poll_interval: Optional[float] = None,
        stalled_timeout: Optional[float] = None,
        lock_renew_interval: Optional[float] = None,
        stalled_check_interval: Optional[float] = None,
    ):
        """
        Initialize queue worker.

        Args:
            processor: Upload processor that runs each job
            poll_interval: Seconds to wait when the queue is empty
            stalled_timeout: Seconds after which an unrenewed lock is considered abandoned
            lock_renew_interval: Seconds between lock renewals of the running job
            stalled_check_interval: Seconds between stalled job sweeps
        """
        self.processor = processor
        self.poll_interval = poll_interval or settings.QUEUE_POLL_INTERVAL_SECONDS
        self.stalled_timeout = stalled_timeout or settings.QUEUE_STALLED_TIMEOUT_SECONDS
        self.lock_renew_interval = lock_renew_interval or settings.QUEUE_LOCK_RENEW_SECONDS
        self.stalled_check_interval = stalled_check_interval or settings.QUEUE_STALLED_CHECK_SECONDS
        self._running = False
        self._last_stalled_check: Optional[float] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the worker loop."""
        if self._running:
            return

        self._running = True
        self._last_stalled_check = None
        logger.info("Starting upload queue worker")

        while self._running:
            await self._check_stalled()

            try:
                processed = await self.run_once()
            except Exception as e:
                logger.error(f"Error in upload queue worker: {e}", exc_info=True)
                processed = False

            if not processed:
                await asyncio.sleep(self.poll_interval)

    async def stop(self) -> None:
        """Stop the worker loop after the current job."""
        self._running = False
        logger.info("Upload queue worker stopped")

    async def recover_stalled(self) -> int:
        """Return abandoned active jobs to the queue."""
        async with get_repository_context(QueueJobRepository) as queue_repo:
            return await queue_repo.recover_stalled(self.stalled_timeout)

    async def _check_stalled(self) -> None:
        now = time.monotonic()
        if self._last_stalled_check is not None and now - self._last_stalled_check < self.stalled_check_interval:
            return

        self._last_stalled_check = now
        try:
            await self.recover_stalled()
        except Exception as e:
            logger.error(f"Error recovering stalled jobs: {e}", exc_info=True)

    async def run_once(self) -> bool:
        """
        Claim and process a single job.

        Returns:
            bool: True if a job was claimed
        """
        async with get_repository_context(QueueJobRepository) as queue_repo:
            job = await queue_repo.claim_next()

        if job is None:
            return False

        await self._handle(job)
        return True

    async def _handle(self, job: QueueJob) -> None:
        async def renew() -> None:
            async with get_repository_context(QueueJobRepository) as queue_repo:
                if not await queue_repo.renew_lock(job.id):
                    logger.warning(f"Lock of job {job.id} could not be renewed")

        payload: Optional[UploadJobPayload] = None
        try:
            async with ProgressHeartbeat(self.lock_renew_interval, renew):
                await self.on_active(job)
                payload = UploadJobPayload.model_validate(job.payload)
                result = await self.processor.process(job.id, payload)
        except asyncio.CancelledError:
            await self.on_interrupted(job)
            raise
        except Exception as e:
            async with get_repository_context(QueueJobRepository) as queue_repo:
                await queue_repo.mark_failed(job.id, str(e))
            # Once the processor ran it has broadcast its own failure event
            await self.on_failed(job, e, broadcast=payload is None)
            return

        async with get_repository_context(QueueJobRepository) as queue_repo:
            await queue_repo.remove_job(job.id)
        await self.on_completed(job, result)

    async def on_active(self, job: QueueJob) -> None:
        """Announce that a job has been picked up."""
        logger.info(f"Job {job.id} started processing")

        location_id = _payload_location(job)
        if location_id:
            await self.processor.emit_progress(
                job.id, location_id, 0, ProgressStatus.PROCESSING, "Job started processing"
            )

    async def on_interrupted(self, job: QueueJob) -> None:
        """Return a job cut off by shutdown to the queue so it runs again."""
        logger.warning(f"Job {job.id} interrupted, returning it to the queue")

        try:
            async with get_repository_context(QueueJobRepository) as queue_repo:
                await queue_repo.release_job(job.id)
            async with get_repository_context(UploadJobRepository) as job_repo:
                await job_repo.upsert_by_job_id(
                    job.id, status=JobStatus.PENDING, message="Interrupted, queued for processing"
                )
        except Exception as e:
            logger.error(f"Failed to release interrupted job {job.id}: {e}")

    async def on_completed(self, job: QueueJob, result: Dict[str, Any]) -> None:
        """Record the final outcome of a successful job."""
        processed = result.get("processedCount", 0)
        message = f"Job {job.id} completed. Processed {processed} contacts."
        logger.info(message)

        try:
            async with get_repository_context(UploadJobRepository) as job_repo:
                await job_repo.upsert_by_job_id(
                    job.id,
                    status=JobStatus.COMPLETED,
                    message=message,
                    result=result,
                    success_count=result.get("successCount"),
                    failure_count=result.get("failureCount"),
                    total_records=result.get("totalRecords"),
                )
        except Exception as e:
            logger.error(f"Failed to update job entry on completion for job ID {job.id}: {e}")

    async def on_failed(self, job: QueueJob, error: Exception, broadcast: bool = True) -> None:
        """
        Record a failure the processor did not already record.

        A job that failed before the processor ran (e.g. an invalid payload)
        still ends up "failed" in the Job Store and on the wire. Its only
        earlier event is the 0% start, so the failure is reported at 0%.
        """
        message = f"Job {job.id} failed with error: {error}"
        logger.error(message)
        location_id = _payload_location(job)

        try:
            async with get_repository_context(UploadJobRepository) as job_repo:
                existing = await job_repo.find_latest_by_job_id(job.id)
                if existing is not None and existing.status == JobStatus.FAILED:
                    return
                await job_repo.upsert_by_job_id(
                    job.id,
                    status=JobStatus.FAILED,
                    message=message,
                    location_id=location_id,
                )
        except Exception as e:
            logger.error(f"Failed to update job entry on failure for job ID {job.id}: {e}")
            return

        if broadcast and location_id:
            await self.processor.emit_progress(
                job.id, location_id, 0, ProgressStatus.FAILED, message
            )


def _payload_location(job: QueueJob) -> Optional[str]:
    payload = job.payload if isinstance(job.payload, dict) else {}
    return payload.get("locationId")


# Singleton instances
_upload_queue: Optional[UploadQueue] = None
_upload_worker: Optional[UploadQueueWorker] = None


def get_upload_queue() -> UploadQueue:
    """Get the singleton upload queue."""
    global _upload_queue

    if _upload_queue is None:
        _upload_queue = UploadQueue()
    return _upload_queue


def get_upload_worker() -> UploadQueueWorker:
    """Get the singleton upload queue worker."""
    global _upload_worker

    if _upload_worker is None:
        _upload_worker = UploadQueueWorker(processor=UploadProcessor())
    return _upload_worker
