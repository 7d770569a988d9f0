import pytest
from pydantic import ValidationError

from contactsync.db.repositories.upload_jobs import UploadJobRepository
from contactsync.db.session import get_repository_context
from contactsync.models.upload_job import JobStatus
from contactsync.schemas.upload_job import UploadJobUpdate


@pytest.mark.asyncio
async def test_disjoint_updates_do_not_overwrite_each_other():
    async with get_repository_context(UploadJobRepository) as repo:
        await repo.create_job(job_id=1, location_id="loc-1", message="Queued", file_name="a.csv")
        await repo.upsert_by_job_id(1, status=JobStatus.PROCESSING)
        job = await repo.upsert_by_job_id(1, success_count=3)

    assert job.status == JobStatus.PROCESSING
    assert job.success_count == 3
    assert job.message == "Queued"
    assert job.file_name == "a.csv"


@pytest.mark.asyncio
async def test_disjoint_updates_commute():
    async with get_repository_context(UploadJobRepository) as repo:
        await repo.create_job(job_id=1, location_id="loc-1")
        await repo.create_job(job_id=2, location_id="loc-1")

        await repo.upsert_by_job_id(1, status=JobStatus.PROCESSING)
        await repo.upsert_by_job_id(1, success_count=3)
        await repo.upsert_by_job_id(2, success_count=3)
        await repo.upsert_by_job_id(2, status=JobStatus.PROCESSING)

        first = await repo.find_latest_by_job_id(1)
        second = await repo.find_latest_by_job_id(2)

    assert (first.status, first.success_count) == (second.status, second.success_count)


@pytest.mark.asyncio
async def test_update_creates_missing_row():
    async with get_repository_context(UploadJobRepository) as repo:
        job = await repo.upsert_by_job_id(
            9, status=JobStatus.PROCESSING, message="Starting CSV processing", location_id="loc-1"
        )
        found = await repo.find_latest_by_job_id(9)

    assert found.id == job.id
    assert found.status == JobStatus.PROCESSING
    assert found.message == "Starting CSV processing"
    assert found.success_count is None


@pytest.mark.asyncio
async def test_none_values_keep_stored_fields():
    async with get_repository_context(UploadJobRepository) as repo:
        await repo.create_job(job_id=3, success_count=4, failure_count=1)
        job = await repo.update_by_job_id(3, {"status": JobStatus.FAILED, "success_count": None})

    assert job.status == JobStatus.FAILED
    assert (job.success_count, job.failure_count) == (4, 1)


@pytest.mark.asyncio
async def test_latest_row_is_authoritative():
    async with get_repository_context(UploadJobRepository) as repo:
        await repo.create_job(job_id=5, message="old")
        newest = await repo.create_job(job_id=5, message="new")

        await repo.upsert_by_job_id(5, status=JobStatus.COMPLETED)
        found = await repo.find_latest_by_job_id(5)

    assert found.id == newest.id
    assert found.status == JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_recent_jobs_for_location():
    async with get_repository_context(UploadJobRepository) as repo:
        for job_id in range(1, 8):
            await repo.create_job(job_id=job_id, location_id="loc-1")
        await repo.create_job(job_id=99, location_id="loc-2")

        recent = await repo.list_recent_for_location("loc-1")

    assert [job.job_id for job in recent] == [7, 6, 5, 4, 3]


def test_negative_counts_are_rejected():
    with pytest.raises(ValidationError):
        UploadJobUpdate(success_count=-1)
