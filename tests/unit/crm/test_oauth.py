from urllib.parse import parse_qs

import httpx
import pytest

from contactsync.core.exceptions import BadRequestError, NotFoundError
from contactsync.db.repositories.locations import CompanyRepository, LocationRepository
from contactsync.db.session import get_repository_context
from contactsync.schemas.auth import InstallEvent
from contactsync.services.crm.oauth import OAuthService


def _token_response(**extra):
    body = {"access_token": "new-access", "refresh_token": "new-refresh", "expires_in": 86399}
    body.update(extra)
    return httpx.Response(200, json=body)


@pytest.mark.asyncio
async def test_exchange_code_registers_company_and_locations():
    forms = []

    def handler(request):
        if request.url.path == "/oauth/token":
            forms.append(parse_qs(request.content.decode()))
            return _token_response(companyId="comp-1")
        if request.url.path == "/oauth/installedLocations":
            assert request.headers["Authorization"] == "Bearer new-access"
            assert request.url.params["companyId"] == "comp-1"
            return httpx.Response(200, json={"locations": [{"_id": "loc-a", "name": "Alpha"}]})
        return httpx.Response(404)

    result = await OAuthService(transport=httpx.MockTransport(handler)).exchange_code_for_token("code-1")

    assert result == {"companyId": "comp-1", "locations": ["loc-a"]}
    assert forms[0]["grant_type"] == ["authorization_code"]
    assert forms[0]["code"] == ["code-1"]

    async with get_repository_context(CompanyRepository) as company_repo:
        company = await company_repo.get_by_id("comp-1")
    async with get_repository_context(LocationRepository) as location_repo:
        location = await location_repo.get_by_id("loc-a")

    assert company.access_token == "new-access"
    assert location.name == "Alpha"
    assert location.company_id == "comp-1"


@pytest.mark.asyncio
async def test_rejected_grant_is_bad_request():
    def handler(request):
        return httpx.Response(400, json={"error": "invalid_grant"})

    with pytest.raises(BadRequestError):
        await OAuthService(transport=httpx.MockTransport(handler)).exchange_code_for_token("bad")


@pytest.mark.asyncio
async def test_refresh_location_token(seeded_location):
    forms = []

    def handler(request):
        forms.append(parse_qs(request.content.decode()))
        return _token_response()

    result = await OAuthService(transport=httpx.MockTransport(handler)).refresh_token(
        seeded_location.id, "Location"
    )

    assert result["data"]["access_token"] == "new-access"
    assert forms[0]["refresh_token"] == ["location-refresh"]

    async with get_repository_context(LocationRepository) as location_repo:
        location = await location_repo.get_by_id(seeded_location.id)
    assert location.access_token == "new-access"
    assert location.refresh_token == "new-refresh"
    assert location.token_expiry is not None


@pytest.mark.asyncio
async def test_refresh_unknown_owner():
    with pytest.raises(NotFoundError):
        await OAuthService(transport=httpx.MockTransport(lambda r: _token_response())).refresh_token(
            "nobody", "Agency"
        )


@pytest.mark.asyncio
async def test_location_install_registers_location():
    event = InstallEvent(
        appId="app-1", installType="Location", locationId="loc-new", companyId="comp-9"
    )

    location_id = await OAuthService().handle_install(event)

    assert location_id == "loc-new"
    async with get_repository_context(LocationRepository) as location_repo:
        assert await location_repo.get_by_id("loc-new") is not None


@pytest.mark.asyncio
async def test_company_install_is_ignored():
    event = InstallEvent(appId="app-1", installType="Company", companyId="comp-9")

    assert await OAuthService().handle_install(event) is None
