# contactsync/services/uploads/processor.py
"""
Upload processor: the worker side of the CSV upload pipeline.

One call to UploadProcessor.process() takes a dequeued job from
"processing" to "completed" or "failed":

    0%      job marked processing
    10%     reading CSV
    10-30%  parsing, reported every PARSE_PROGRESS_ROW_THRESHOLD rows
    30%     total known
    30-80%  contact submission heartbeat
    85%     all submissions settled
    95%     cleanup
    100%    completed

Per-contact failures are counted and never fail the job. Only
infrastructure failures (unreadable CSV, missing location, file deletion)
do, and those keep the counters already stored in the Job Store.
"""
import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any, AsyncContextManager, Awaitable, Callable, Dict, List, Optional

from contactsync.core.config import settings
from contactsync.db.repositories.upload_jobs import UploadJobRepository
from contactsync.db.session import get_repository_context
from contactsync.models.upload_job import JobStatus
from contactsync.schemas.upload import UploadJobPayload
from contactsync.services.broadcaster import ProgressBroadcaster, get_broadcaster
from contactsync.services.crm.client import CRMClient, crm_client_for_location
from contactsync.services.uploads.events import ProgressStatus, create_progress_event
from contactsync.services.uploads.mapper import NormalizedContact, iter_csv_rows, normalize_row

logger = logging.getLogger("contactsync.uploads.processor")

# Progress checkpoints
PROGRESS_STARTED = 0
PROGRESS_READING = 10
PROGRESS_PARSE_CEILING = 30
PROGRESS_SUBMIT_START = 30
PROGRESS_SUBMIT_CEILING = 80
PROGRESS_SETTLED = 85
PROGRESS_CLEANUP = 95
PROGRESS_DONE = 100

CRMClientFactory = Callable[[str], AsyncContextManager[CRMClient]]


@dataclass
class SubmissionCounter:
    """
    Success/failure tally shared by the concurrent submissions of one job.

    Submissions run on a single event loop, so plain increments between
    awaits are atomic.
    """
    success: int = 0
    failure: int = 0

    def record_success(self) -> None:
        self.success += 1

    def record_failure(self) -> None:
        self.failure += 1

    @property
    def settled(self) -> int:
        return self.success + self.failure


class ProgressHeartbeat:
    """
    Scoped periodic timer.

    Calls `callback` every `interval` seconds while the context is open.
    Leaving the context (normally or through an exception) lets an
    in-flight tick finish and guarantees no tick fires afterwards.

    Usage:
        async with ProgressHeartbeat(1.0, report):
            await long_running_work()
    """

    def __init__(self, interval: float, callback: Callable[[], Awaitable[None]]):
        self.interval = interval
        self.callback = callback
        self.ticks = 0
        self._stopped = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    async def __aenter__(self) -> "ProgressHeartbeat":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    def start(self) -> None:
        if self._task is not None:
            return
        self._stopped.clear()
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stopped.set()
        task, self._task = self._task, None
        try:
            await task
        except asyncio.CancelledError:
            task.cancel()
            raise

    @property
    def running(self) -> bool:
        return self._task is not None

    async def _run(self) -> None:
        while not self._stopped.is_set():
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.interval)
                break
            except asyncio.TimeoutError:
                pass

            self.ticks += 1
            try:
                await self.callback()
            except Exception as e:
                logger.warning(f"Progress heartbeat tick failed: {e}")


class _JobRun:
    """Per-job emission state."""

    def __init__(self, job_id: int, location_id: str):
        self.job_id = job_id
        self.location_id = location_id
        self.progress = PROGRESS_STARTED
        self.total_records: Optional[int] = None


class UploadProcessor:
    """
    Processes queued CSV uploads into CRM contacts.

    Drives parsing, bounded-concurrency upserts, progress broadcasting and
    Job Store updates for one job at a time per call.
    """

    def __init__(
        self,
        broadcaster: Optional[ProgressBroadcaster] = None,
        crm_client_factory: CRMClientFactory = crm_client_for_location,
        concurrency: Optional[int] = None,
        heartbeat_interval: Optional[float] = None,
        row_report_threshold: Optional[int] = None,
    ):
        """
        Initialize upload processor.

        Args:
            broadcaster: Progress broadcaster, defaults to the singleton
            crm_client_factory: Opens a CRM client for a location id
            concurrency: Maximum in-flight contact upserts
            heartbeat_interval: Seconds between submission progress reports
            row_report_threshold: Rows between parse progress reports
        """
        self.broadcaster = broadcaster or get_broadcaster()
        self.crm_client_factory = crm_client_factory
        self.concurrency = concurrency or settings.UPLOAD_CONCURRENCY
        self.heartbeat_interval = heartbeat_interval or settings.PROGRESS_INTERVAL_SECONDS
        self.row_report_threshold = row_report_threshold or settings.PARSE_PROGRESS_ROW_THRESHOLD

    async def process(self, job_id: int, payload: UploadJobPayload) -> Dict[str, int]:
        """
        Run one upload job to completion.

        Args:
            job_id: Queue job id
            payload: Validated queue payload

        Returns:
            Dict: processedCount, successCount, failureCount, totalRecords

        Raises:
            Exception: Any infrastructure failure, after the job is marked failed
        """
        logger.debug(f"Processing upload job {job_id}")

        run = _JobRun(job_id, payload.location_id)
        mappings = payload.mapping_dict()
        counter = SubmissionCounter()

        await self._update_job(
            job_id,
            location_id=payload.location_id,
            status=JobStatus.PROCESSING,
            message="Starting CSV processing",
            file_name=payload.file_name,
        )

        try:
            await self._emit(run, PROGRESS_STARTED, ProgressStatus.PROCESSING, "Starting CSV processing")

            await self._emit(run, PROGRESS_READING, ProgressStatus.PROCESSING, "Reading CSV file")
            contacts = await self._parse_csv(
                run, payload.file_path, mappings, payload.tags, payload.phone_type_field
            )
            total = len(contacts)
            run.total_records = total

            progress_message = f"Started processing of {total} contacts"
            await self._emit(
                run, PROGRESS_SUBMIT_START, ProgressStatus.PROCESSING, progress_message,
                success_count=0, failure_count=0, total_records=total,
            )
            await self._update_job(
                job_id, status=JobStatus.PROCESSING, message=progress_message, total_records=total
            )

            if contacts:
                await self._submit_contacts(run, contacts, counter)

            logger.debug(f"✅ Success: {counter.success}, ❌ Failed: {counter.failure}")

            settled_message = f"CSV processed with {total} records"
            await self._emit(
                run, PROGRESS_SETTLED, ProgressStatus.PROCESSING, settled_message,
                success_count=counter.success, failure_count=counter.failure, total_records=total,
            )
            await self._update_job(
                job_id,
                status=JobStatus.PROCESSING,
                message=settled_message,
                success_count=counter.success,
                failure_count=counter.failure,
                total_records=total,
            )
            logger.info(f"Processed {total} contacts for location {payload.location_id}")

            cleanup_message = "Cleaning up temporary files"
            await self._emit(
                run, PROGRESS_CLEANUP, ProgressStatus.PROCESSING, cleanup_message,
                success_count=counter.success, failure_count=counter.failure, total_records=total,
            )
            await self._update_job(job_id, status=JobStatus.PROCESSING, message=cleanup_message)

            os.remove(payload.file_path)

            result = {
                "processedCount": total,
                "successCount": counter.success,
                "failureCount": counter.failure,
                "totalRecords": total,
            }

            completion_message = "Upload completed successfully"
            await self._emit(
                run, PROGRESS_DONE, ProgressStatus.COMPLETED, completion_message, result=result,
                success_count=counter.success, failure_count=counter.failure, total_records=total,
            )
            await self._update_job(
                job_id,
                status=JobStatus.COMPLETED,
                message=completion_message,
                result=result,
                success_count=counter.success,
                failure_count=counter.failure,
                total_records=total,
            )
            return result

        except Exception as e:
            logger.error(f"Error processing upload job {job_id}: {e}", exc_info=True)

            error_message = f"Processing failed: {e}"
            await self._emit(
                run, run.progress, ProgressStatus.FAILED, error_message,
                success_count=counter.success, failure_count=counter.failure, total_records=run.total_records,
            )
            await self._update_job(job_id, status=JobStatus.FAILED, message=error_message)
            raise

    async def emit_progress(
        self,
        job_id: int,
        location_id: str,
        progress: float,
        status: ProgressStatus,
        message: str,
        **counts: Any,
    ) -> None:
        """Broadcast a progress event for a job outside of a processing run."""
        event = create_progress_event(progress, status, message, **counts)
        await self.broadcaster.emit(location_id, event, job_id=job_id)

    async def _emit(
        self,
        run: _JobRun,
        progress: float,
        status: ProgressStatus,
        message: str,
        result: Optional[Dict[str, Any]] = None,
        success_count: Optional[int] = None,
        failure_count: Optional[int] = None,
        total_records: Optional[int] = None,
    ) -> None:
        """Broadcast progress, never going below what this job already reported."""
        run.progress = max(run.progress, int(round(progress)))
        await self.emit_progress(
            run.job_id,
            run.location_id,
            run.progress,
            status,
            message,
            result=result,
            success_count=success_count,
            failure_count=failure_count,
            total_records=total_records,
        )

    async def _update_job(self, job_id: int, **fields: Any) -> None:
        """Mirror the job state into the Job Store. Store errors are logged, not raised."""
        try:
            async with get_repository_context(UploadJobRepository) as job_repo:
                await job_repo.upsert_by_job_id(job_id, **fields)
        except Exception as e:
            logger.error(f"Failed to update job entry in DB for job ID {job_id}: {e}")

    async def _parse_csv(
        self,
        run: _JobRun,
        file_path: str,
        mappings: Dict[str, Optional[str]],
        tags: List[str],
        phone_type_key: Optional[str] = None,
    ) -> List[NormalizedContact]:
        """
        Stream the CSV and normalize it row by row.

        Only the normalized contacts are kept in memory.
        """
        contacts: List[NormalizedContact] = []
        row_count = 0

        for row in iter_csv_rows(file_path):
            contacts.extend(normalize_row(row, mappings, tags, phone_type_key))
            row_count += 1

            if row_count % self.row_report_threshold == 0:
                progress = min(PROGRESS_READING + row_count / 100, PROGRESS_PARSE_CEILING)
                await self._emit(
                    run, progress, ProgressStatus.PROCESSING, f"Parsed {row_count} rows from CSV",
                    success_count=0, failure_count=0, total_records=len(contacts),
                )
                # Yield to the loop between chunks of rows
                await asyncio.sleep(0)

        logger.info(f"CSV parsed with {row_count} rows into {len(contacts)} contacts")
        return contacts

    async def _submit_contacts(
        self,
        run: _JobRun,
        contacts: List[NormalizedContact],
        counter: SubmissionCounter,
    ) -> None:
        """
        Upsert every contact with at most `concurrency` calls in flight.

        Waits for every submission to settle; failures are counted, not raised.
        """
        total = len(contacts)
        semaphore = asyncio.Semaphore(self.concurrency)

        async def submit(crm: CRMClient, contact: NormalizedContact) -> None:
            async with semaphore:
                try:
                    await crm.upsert_contact(run.location_id, contact)
                except Exception as e:
                    counter.record_failure()
                    logger.error(f"Failed to create contact: {e}")
                    raise
                counter.record_success()

        async def report() -> None:
            percentage = min(
                PROGRESS_SUBMIT_START + round(counter.settled / total * (PROGRESS_SUBMIT_CEILING - PROGRESS_SUBMIT_START)),
                PROGRESS_SUBMIT_CEILING,
            )
            await self._emit(
                run, percentage, ProgressStatus.PROCESSING,
                f"Processing contacts ({counter.settled}/{total})",
                success_count=counter.success, failure_count=counter.failure, total_records=total,
            )
            await self._update_job(
                run.job_id,
                status=JobStatus.PROCESSING,
                success_count=counter.success,
                failure_count=counter.failure,
            )

        async with self.crm_client_factory(run.location_id) as crm:
            async with ProgressHeartbeat(self.heartbeat_interval, report):
                await asyncio.gather(
                    *(submit(crm, contact) for contact in contacts),
                    return_exceptions=True,
                )
