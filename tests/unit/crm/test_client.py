import json

import httpx
import pytest

from contactsync.core.exceptions import BadRequestError, CRMRequestError
from contactsync.services.crm.client import CRMClient, crm_client_for_location

BASE_URL = "https://crm.test"


def _client(handler):
    return CRMClient("token-123", base_url=BASE_URL, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_requests_carry_token_and_version():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(201, json={"customField": {"fieldKey": "contact.phone_type"}})

    async with _client(handler) as crm:
        key = await crm.create_custom_field("loc-1", "Phone Type")

    assert key == "contact.phone_type"
    request = seen[0]
    assert request.url.path == "/locations/loc-1/customFields"
    assert request.headers["Authorization"] == "Bearer token-123"
    assert request.headers["Version"] == "2021-07-28"
    assert json.loads(request.content) == {"name": "Phone Type", "dataType": "TEXT"}


@pytest.mark.asyncio
async def test_upsert_contact_adds_location():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"contact": {"id": "c-1"}, "new": True})

    async with _client(handler) as crm:
        contact_id = await crm.upsert_contact("loc-1", {"phone": "555", "tags": [], "customFields": []})

    assert contact_id == "c-1"
    assert bodies == [{"phone": "555", "tags": [], "customFields": [], "locationId": "loc-1"}]


@pytest.mark.asyncio
async def test_create_tag_returns_id():
    def handler(request):
        return httpx.Response(201, json={"tag": {"id": "tag-9", "name": "Leads"}})

    async with _client(handler) as crm:
        assert await crm.create_tag("loc-1", "Leads") == "tag-9"


@pytest.mark.asyncio
async def test_search_filters_on_lowercased_first_name():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"contacts": [{"id": "a"}, {"id": "b"}]})

    async with _client(handler) as crm:
        contacts = await crm.search_contacts_by_first_name("loc-1", "Ann")

    assert [c["id"] for c in contacts] == ["a", "b"]
    assert bodies[0]["filters"] == [{"field": "firstNameLowerCase", "operator": "eq", "value": "ann"}]


@pytest.mark.asyncio
async def test_dnd_and_delete_methods():
    seen = []

    def handler(request):
        seen.append((request.method, request.url.path, request.content))
        return httpx.Response(200, json={"succeded": True})

    async with _client(handler) as crm:
        await crm.set_contact_dnd("c-1")
        await crm.delete_contact("c-2")

    assert seen[0][:2] == ("PUT", "/contacts/c-1")
    assert json.loads(seen[0][2]) == {"dnd": True}
    assert seen[1][:2] == ("DELETE", "/contacts/c-2")


@pytest.mark.asyncio
async def test_error_status_surfaces_upstream_code_and_message():
    def handler(request):
        return httpx.Response(401, json={"message": "Invalid JWT"})

    async with _client(handler) as crm:
        with pytest.raises(CRMRequestError) as exc_info:
            await crm.create_tag("loc-1", "Leads")

    assert exc_info.value.status_code == 401
    assert exc_info.value.message == "Invalid JWT"
    assert exc_info.value.details["upstream_status"] == 401


@pytest.mark.asyncio
async def test_transport_error_is_bad_gateway():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    async with _client(handler) as crm:
        with pytest.raises(CRMRequestError) as exc_info:
            await crm.list_tags("loc-1")

    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_client_for_unknown_location():
    with pytest.raises(BadRequestError):
        async with crm_client_for_location("missing"):
            pass


@pytest.mark.asyncio
async def test_client_for_known_location(seeded_location):
    async with crm_client_for_location(seeded_location.id) as crm:
        assert crm._client.headers["Authorization"] == "Bearer location-token"
