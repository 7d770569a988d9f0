"""
API endpoints for the CRM OAuth lifecycle.
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends, Query, status

from contactsync.api.v1.dependencies import get_oauth_service
from contactsync.schemas.auth import InstallEvent
from contactsync.services.crm.oauth import OAuthService

router = APIRouter()


@router.get("/oauth/callback")
async def oauth_callback(
    code: str = Query(..., min_length=1),
    oauth_service: OAuthService = Depends(get_oauth_service),
) -> Dict[str, Any]:
    """
    Exchange the authorization code sent back by the CRM after install.
    """
    return await oauth_service.exchange_code_for_token(code)


@router.post("/refresh-company/{company_id}")
async def refresh_company_token(
    company_id: str,
    oauth_service: OAuthService = Depends(get_oauth_service),
) -> Dict[str, Any]:
    """Refresh a company's access token."""
    return await oauth_service.refresh_token(company_id, "Agency")


@router.post("/refresh-location/{location_id}")
async def refresh_location_token(
    location_id: str,
    oauth_service: OAuthService = Depends(get_oauth_service),
) -> Dict[str, Any]:
    """Refresh a location's access token."""
    return await oauth_service.refresh_token(location_id, "Location")


@router.post("/app-installed", status_code=status.HTTP_200_OK)
async def app_installed(
    event: InstallEvent,
    oauth_service: OAuthService = Depends(get_oauth_service),
) -> Dict[str, Any]:
    """
    App-install webhook. Registers the installing location.
    """
    location_id = await oauth_service.handle_install(event)
    return {"status": "ok", "locationId": location_id}
