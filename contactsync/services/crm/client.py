# contactsync/services/crm/client.py
"""
Thin async client for the CRM's REST API.
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, List, Optional

import httpx

from contactsync.core.config import settings
from contactsync.core.exceptions import BadRequestError, CRMRequestError
from contactsync.db.repositories.locations import LocationRepository
from contactsync.db.session import get_repository_context

logger = logging.getLogger("contactsync.crm")


def _error_message(response: httpx.Response) -> str:
    """Best-effort extraction of the upstream error message."""
    try:
        body = response.json()
    except ValueError:
        return response.text or f"CRM request failed with status {response.status_code}"

    if isinstance(body, dict):
        message = body.get("message") or body.get("error")
        if isinstance(message, list):
            message = "; ".join(str(m) for m in message)
        if message:
            return str(message)
    return f"CRM request failed with status {response.status_code}"


class CRMClient:
    """
    Async CRM API client bound to one access token.

    Every request carries the bearer token and the API version header.
    Non-2xx answers raise CRMRequestError with the upstream status code.

    Usage:
        async with CRMClient(access_token) as crm:
            field_key = await crm.create_custom_field(location_id, "Phone Type")
    """

    def __init__(
        self,
        access_token: str,
        *,
        base_url: Optional[str] = None,
        api_version: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            access_token: OAuth access token of the location
            base_url: API base URL, defaults to settings.CRM_BASE_URL
            api_version: Value of the Version header, defaults to settings.CRM_API_VERSION
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.CRM_BASE_URL,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Version": api_version or settings.CRM_API_VERSION,
                "Accept": "application/json",
            },
            timeout=timeout or settings.CRM_REQUEST_TIMEOUT,
            transport=transport,
        )

    async def __aenter__(self) -> "CRMClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        """
        Send a request and decode the JSON body.

        Raises:
            CRMRequestError: On transport failures and non-2xx responses
        """
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"CRM {method} {url} failed: {e}")
            raise CRMRequestError(message=f"CRM unreachable: {e}", details={"url": url})

        if response.is_error:
            message = _error_message(response)
            logger.warning(f"CRM {method} {url} returned {response.status_code}: {message}")
            raise CRMRequestError(
                message=message,
                status_code=response.status_code,
                details={"upstream_status": response.status_code, "url": url},
            )

        if not response.content:
            return {}
        return response.json()

    async def create_custom_field(self, location_id: str, name: str) -> str:
        """
        Create a text custom field.

        Args:
            location_id: CRM location id
            name: Field display name

        Returns:
            str: Field key of the created field (e.g. "contact.phone_type")
        """
        data = await self._request(
            "POST",
            f"/locations/{location_id}/customFields",
            json={"name": name, "dataType": "TEXT"},
        )
        field_key = (data.get("customField") or {}).get("fieldKey")
        if not field_key:
            raise CRMRequestError(message=f"CRM returned no field key for custom field '{name}'")
        return field_key

    async def create_tag(self, location_id: str, name: str) -> str:
        """
        Create a tag.

        Args:
            location_id: CRM location id
            name: Tag name

        Returns:
            str: Id of the created tag
        """
        data = await self._request("POST", f"/locations/{location_id}/tags", json={"name": name})
        return (data.get("tag") or {}).get("id", "")

    async def list_custom_fields(self, location_id: str) -> Dict[str, Any]:
        """Get the custom fields of a location as returned by the CRM."""
        return await self._request("GET", f"/locations/{location_id}/customFields")

    async def list_tags(self, location_id: str) -> Dict[str, Any]:
        """Get the tags of a location as returned by the CRM."""
        return await self._request("GET", f"/locations/{location_id}/tags")

    async def upsert_contact(self, location_id: str, contact: Dict[str, Any]) -> str:
        """
        Create or update a contact.

        Args:
            location_id: CRM location id
            contact: Normalized contact payload

        Returns:
            str: Contact id
        """
        data = await self._request(
            "POST",
            "/contacts/upsert",
            json={**contact, "locationId": location_id},
        )
        return (data.get("contact") or {}).get("id", "")

    async def search_contacts_by_first_name(
        self,
        location_id: str,
        first_name: str,
        page_limit: int = 20,
    ) -> List[Dict[str, Any]]:
        """
        Search contacts whose first name matches, case-insensitively.

        Args:
            location_id: CRM location id
            first_name: First name to match
            page_limit: Maximum contacts returned

        Returns:
            List[Dict]: Matching contacts
        """
        data = await self._request(
            "POST",
            "/contacts/search",
            json={
                "locationId": location_id,
                "page": 1,
                "pageLimit": page_limit,
                "filters": [
                    {"field": "firstNameLowerCase", "operator": "eq", "value": first_name.lower()}
                ],
            },
        )
        return data.get("contacts") or []

    async def set_contact_dnd(self, contact_id: str) -> Dict[str, Any]:
        """Flag a contact as do-not-disturb."""
        return await self._request("PUT", f"/contacts/{contact_id}", json={"dnd": True})

    async def delete_contact(self, contact_id: str) -> Dict[str, Any]:
        """Delete a contact."""
        return await self._request("DELETE", f"/contacts/{contact_id}")


@asynccontextmanager
async def crm_client_for_location(location_id: str) -> AsyncGenerator[CRMClient, None]:
    """
    Open a CRM client with the stored access token of a location.

    Usage:
        async with crm_client_for_location(location_id) as crm:
            await crm.upsert_contact(location_id, contact)

    Raises:
        BadRequestError: If the location is unknown or has no token
    """
    async with get_repository_context(LocationRepository) as location_repo:
        location = await location_repo.get_by_id(location_id)

    if location is None:
        raise BadRequestError(
            message=f"No location found with the provided ID: {location_id}. Please verify the ID and try again."
        )
    if not location.access_token:
        raise BadRequestError(message=f"Location {location_id} has no access token. Reinstall the app.")

    async with CRMClient(location.access_token) as client:
        yield client
