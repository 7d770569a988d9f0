# contactsync/services/crm/oauth.py
"""
OAuth token exchange and refresh against the CRM's token endpoint.
"""
import logging
from typing import Any, Dict, List, Literal, Optional

import httpx

from contactsync.core.config import settings
from contactsync.core.exceptions import BadRequestError, CRMRequestError, NotFoundError
from contactsync.db.repositories.locations import CompanyRepository, LocationRepository
from contactsync.db.session import get_repository_context
from contactsync.schemas.auth import InstallEvent

logger = logging.getLogger("contactsync.oauth")

TokenScope = Literal["Agency", "Location"]


class OAuthService:
    """
    Service for the OAuth lifecycle of companies and locations.

    Token grants are plain form posts; installed locations are fetched with
    the fresh company token and registered locally.
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize OAuth service.

        Args:
            transport: Optional httpx transport (used by tests)
        """
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=settings.CRM_BASE_URL,
            timeout=settings.CRM_REQUEST_TIMEOUT,
            transport=self._transport,
        )

    async def _token_request(self, form: Dict[str, str]) -> Dict[str, Any]:
        """POST a grant to the token endpoint."""
        payload = {
            "client_id": settings.CRM_CLIENT_ID,
            "client_secret": settings.CRM_CLIENT_SECRET,
            **form,
        }
        async with self._client() as client:
            try:
                response = await client.post("/oauth/token", data=payload)
            except httpx.HTTPError as e:
                raise CRMRequestError(message=f"Token endpoint unreachable: {e}")

        if response.is_error:
            logger.error(f"Token request failed: {response.status_code} - {response.text}")
            raise BadRequestError(
                message="Token request rejected by CRM",
                details={"upstream_status": response.status_code, "body": response.text},
            )
        return response.json()

    async def _get_installed_locations(
        self,
        access_token: str,
        company_id: str,
        plan_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Get the locations that have the app installed."""
        params = {
            "companyId": company_id,
            "appId": settings.CRM_APP_ID,
            "isInstalled": "true",
            "limit": 10000,
        }
        if plan_id:
            params["planId"] = plan_id

        async with self._client() as client:
            response = await client.get(
                "/oauth/installedLocations",
                params=params,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Version": settings.CRM_API_VERSION,
                },
            )

        if response.is_error:
            raise CRMRequestError(
                message="Failed to fetch installed locations",
                status_code=response.status_code,
            )
        return response.json().get("locations") or []

    async def exchange_code_for_token(self, code: str) -> Dict[str, Any]:
        """
        Exchange an authorization code for company tokens.

        Stores the company tokens and registers every installed location.

        Args:
            code: Authorization code from the OAuth callback

        Returns:
            Dict: Company id and registered location ids
        """
        data = await self._token_request({
            "user_type": "Company",
            "grant_type": "authorization_code",
            "code": code,
        })
        company_id = data.get("companyId")
        if not company_id:
            raise BadRequestError(message="Token response did not include a company id")

        async with get_repository_context(CompanyRepository) as company_repo:
            await company_repo.upsert_tokens(
                company_id,
                access_token=data["access_token"],
                refresh_token=data.get("refresh_token"),
                expires_in=data.get("expires_in"),
            )

        locations = await self._get_installed_locations(
            data["access_token"], company_id, data.get("planId")
        )

        registered = []
        async with get_repository_context(LocationRepository) as location_repo:
            for item in locations:
                location = await location_repo.ensure_location(
                    item["_id"], company_id=company_id, name=item.get("name")
                )
                registered.append(location.id)

        logger.info(f"Company {company_id} authorized with {len(registered)} installed locations")
        return {"companyId": company_id, "locations": registered}

    async def refresh_token(self, id: str, scope: TokenScope) -> Dict[str, Any]:
        """
        Refresh the tokens of a company or a location.

        Args:
            id: CRM company id or location id
            scope: "Agency" for companies, "Location" for locations

        Returns:
            Dict: Success message and the new access token

        Raises:
            NotFoundError: If the owner is unknown or has no refresh token
        """
        repo_type = CompanyRepository if scope == "Agency" else LocationRepository

        async with get_repository_context(repo_type) as repo:
            owner = await repo.get_by_id(id)
            if owner is None or not owner.refresh_token:
                raise NotFoundError(message="Agency/Location not found or refresh token missing")

            data = await self._token_request({
                "grant_type": "refresh_token",
                "refresh_token": owner.refresh_token,
            })

            if scope == "Agency":
                await repo.upsert_tokens(
                    id,
                    access_token=data["access_token"],
                    refresh_token=data.get("refresh_token"),
                    expires_in=data.get("expires_in"),
                )
            else:
                await repo.update_tokens(
                    id,
                    access_token=data["access_token"],
                    refresh_token=data.get("refresh_token"),
                    expires_in=data.get("expires_in"),
                )

        logger.info(f"Refreshed {scope} token for {id}")
        return {"success": "Token refreshed successfully", "data": {"access_token": data["access_token"]}}

    async def handle_install(self, event: InstallEvent) -> Optional[str]:
        """
        Register a location from an app-install webhook.

        Company-level installs are ignored; their locations arrive through the
        authorization-code exchange.

        Returns:
            str: Registered location id, or None
        """
        if event.install_type != "Location" or not event.location_id:
            return None

        async with get_repository_context(LocationRepository) as location_repo:
            location = await location_repo.ensure_location(
                event.location_id, company_id=event.company_id
            )
        return location.id
