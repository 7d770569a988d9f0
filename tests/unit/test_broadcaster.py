import pytest

from contactsync.services.broadcaster import ProgressBroadcaster, job_room, location_room
from contactsync.services.uploads.events import ProgressStatus, create_progress_event


class Subscriber:
    def __init__(self, fail=False):
        self.fail = fail
        self.received = []

    async def send_json(self, data):
        if self.fail:
            raise ConnectionError("socket closed")
        self.received.append(data)


@pytest.mark.asyncio
async def test_emit_reaches_location_subscribers_only():
    broadcaster = ProgressBroadcaster()
    ours, theirs = Subscriber(), Subscriber()
    await broadcaster.connect(ours, location_id="loc-1")
    await broadcaster.connect(theirs, location_id="loc-2")

    event = create_progress_event(10, ProgressStatus.PROCESSING, "Reading CSV file")
    delivered = await broadcaster.emit("loc-1", event, job_id=7)

    assert delivered == 1
    assert ours.received == [{"event": "job-progress", "data": event}]
    assert theirs.received == []


@pytest.mark.asyncio
async def test_job_subscribers_receive_job_events_once():
    broadcaster = ProgressBroadcaster()
    subscriber = Subscriber()
    rooms = await broadcaster.connect(subscriber, location_id="loc-1", job_id=7)

    await broadcaster.emit("loc-1", create_progress_event(30, ProgressStatus.PROCESSING), job_id=7)

    assert rooms == {location_room("loc-1"), job_room(7)}
    assert len(subscriber.received) == 1


@pytest.mark.asyncio
async def test_late_subscriber_gets_no_replay():
    broadcaster = ProgressBroadcaster()
    await broadcaster.emit("loc-1", create_progress_event(50, ProgressStatus.PROCESSING))

    late = Subscriber()
    await broadcaster.connect(late, location_id="loc-1")

    assert late.received == []


@pytest.mark.asyncio
async def test_failing_subscriber_is_dropped():
    broadcaster = ProgressBroadcaster()
    healthy, broken = Subscriber(), Subscriber(fail=True)
    await broadcaster.connect(healthy, location_id="loc-1")
    await broadcaster.connect(broken, location_id="loc-1")

    delivered = await broadcaster.emit("loc-1", create_progress_event(80, ProgressStatus.PROCESSING))

    assert delivered == 1
    assert broadcaster.get_subscriber_count("loc-1") == 1
    assert broadcaster.get_subscriber_count() == 1


@pytest.mark.asyncio
async def test_disconnect_removes_subscriber():
    broadcaster = ProgressBroadcaster()
    subscriber = Subscriber()
    await broadcaster.connect(subscriber, location_id="loc-1")
    await broadcaster.disconnect(subscriber)

    assert await broadcaster.emit("loc-1", create_progress_event(1, ProgressStatus.PROCESSING)) == 0
    assert broadcaster.get_subscriber_count("loc-1") == 0


def test_progress_event_drops_unset_fields():
    event = create_progress_event(42.6, ProgressStatus.PROCESSING, success_count=0, total_records=5)

    assert event == {"progress": 43, "status": "processing", "successCount": 0, "totalRecords": 5}


def test_progress_event_is_clamped():
    assert create_progress_event(140, ProgressStatus.COMPLETED)["progress"] == 100
    assert create_progress_event(-5, ProgressStatus.FAILED)["progress"] == 0
