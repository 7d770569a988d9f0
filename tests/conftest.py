import asyncio
import os
import tempfile
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient

# Settings are read at import time, so point them at a throwaway database first
_TEST_DIR = tempfile.mkdtemp(prefix="contactsync-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TEST_DIR, 'test.db')}"
os.environ["UPLOAD_DIR"] = _TEST_DIR
os.environ["QUEUE_WORKER_ENABLED"] = "false"

from contactsync.core.exceptions import CRMRequestError  # noqa: E402
from contactsync.db.base import Base  # noqa: E402
from contactsync.db.session import async_session_factory, engine  # noqa: E402
from contactsync.main import app  # noqa: E402
from contactsync.models.location import Company, Location  # noqa: E402
from contactsync.services.broadcaster import ProgressBroadcaster  # noqa: E402

TEST_LOCATION_ID = "loc-test-1"
TEST_COMPANY_ID = "company-test-1"


class FakeCRMClient:
    """In-memory stand-in for CRMClient that records every call."""

    def __init__(self):
        self.calls: List[tuple] = []
        self.fail_phones: set = set()
        self.fail_with: Optional[CRMRequestError] = None
        self.search_results: List[Dict[str, Any]] = []
        self.delay = 0.0
        self.in_flight = 0
        self.max_in_flight = 0
        self.upserted: List[Dict[str, Any]] = []

    async def create_custom_field(self, location_id: str, name: str) -> str:
        self.calls.append(("create_custom_field", location_id, name))
        if self.fail_with:
            raise self.fail_with
        return "contact." + name.lower().replace(" ", "_")

    async def create_tag(self, location_id: str, name: str) -> str:
        self.calls.append(("create_tag", location_id, name))
        if self.fail_with:
            raise self.fail_with
        return f"tag-{name}"

    async def list_custom_fields(self, location_id: str) -> Dict[str, Any]:
        return {"customFields": []}

    async def list_tags(self, location_id: str) -> Dict[str, Any]:
        return {"tags": []}

    async def upsert_contact(self, location_id: str, contact: Dict[str, Any]) -> str:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if contact.get("phone") in self.fail_phones:
                raise CRMRequestError(message="Invalid phone", status_code=422)
            self.upserted.append(contact)
            return f"contact-{len(self.upserted)}"
        finally:
            self.in_flight -= 1

    async def search_contacts_by_first_name(self, location_id: str, first_name: str, page_limit: int = 20):
        self.calls.append(("search", location_id, first_name))
        if self.fail_with:
            raise self.fail_with
        return self.search_results

    async def set_contact_dnd(self, contact_id: str) -> Dict[str, Any]:
        self.calls.append(("dnd", contact_id))
        if contact_id in self.fail_phones:
            raise CRMRequestError(message="Not found", status_code=404)
        return {"contact": {"id": contact_id, "dnd": True}}

    async def delete_contact(self, contact_id: str) -> Dict[str, Any]:
        self.calls.append(("delete", contact_id))
        if contact_id in self.fail_phones:
            raise CRMRequestError(message="Not found", status_code=404)
        return {"succeded": True}


class RecordingSubscriber:
    """Broadcaster subscriber that keeps every message it receives."""

    def __init__(self):
        self.messages: List[Dict[str, Any]] = []

    async def send_json(self, data: Any) -> None:
        self.messages.append(data)

    @property
    def events(self) -> List[Dict[str, Any]]:
        return [message["data"] for message in self.messages]


@pytest_asyncio.fixture(autouse=True)
async def database() -> AsyncGenerator[None, None]:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture()
async def seeded_location() -> Location:
    async with async_session_factory() as session:
        session.add(Company(id=TEST_COMPANY_ID, access_token="company-token", refresh_token="company-refresh"))
        location = Location(
            id=TEST_LOCATION_ID,
            name="Test Location",
            company_id=TEST_COMPANY_ID,
            access_token="location-token",
            refresh_token="location-refresh",
        )
        session.add(location)
        await session.commit()
    return location


@pytest.fixture()
def fake_crm() -> FakeCRMClient:
    return FakeCRMClient()


@pytest.fixture()
def crm_factory(fake_crm: FakeCRMClient):
    @asynccontextmanager
    async def _factory(location_id: str):
        yield fake_crm
    return _factory


@pytest.fixture()
def broadcaster() -> ProgressBroadcaster:
    return ProgressBroadcaster()


@pytest_asyncio.fixture()
async def progress_recorder(broadcaster: ProgressBroadcaster) -> RecordingSubscriber:
    subscriber = RecordingSubscriber()
    await broadcaster.connect(subscriber, location_id=TEST_LOCATION_ID)
    return subscriber


@pytest.fixture()
def upload_dir() -> str:
    return _TEST_DIR


@pytest_asyncio.fixture()
async def async_client() -> AsyncGenerator[AsyncClient, None]:
    from httpx import ASGITransport
    transport = ASGITransport(app=app)
    async with AsyncClient(base_url="http://testserver", transport=transport) as client:
        yield client
    app.dependency_overrides.clear()
