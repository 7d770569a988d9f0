"""
Dependencies for API endpoints.
"""
from fastapi import Depends, Path

from contactsync.core.exceptions import BadRequestError
from contactsync.db.repositories.locations import LocationRepository
from contactsync.db.session import get_repository_factory
from contactsync.models.location import Location
from contactsync.services.broadcaster import ProgressBroadcaster, get_broadcaster
from contactsync.services.contacts.workflow import ContactWorkflowService
from contactsync.services.crm.oauth import OAuthService
from contactsync.services.uploads.service import UploadService, get_upload_service

get_location_repository = get_repository_factory(LocationRepository)


async def get_location(
    location_id: str = Path(..., min_length=1),
    location_repository: LocationRepository = Depends(get_location_repository),
) -> Location:
    """
    Resolve the location named in the path.

    Raises:
        BadRequestError: If the location has not installed the app
    """
    location = await location_repository.get_by_id(location_id)
    if not location:
        raise BadRequestError(
            message=f"No location found with the provided ID: {location_id}. Please verify the ID and try again."
        )
    return location


async def get_oauth_service() -> OAuthService:
    """Get OAuth service."""
    return OAuthService()


async def get_workflow_service() -> ContactWorkflowService:
    """Get contact workflow service."""
    return ContactWorkflowService()


async def get_upload_service_dependency() -> UploadService:
    """Get upload service."""
    return get_upload_service()


async def get_progress_broadcaster() -> ProgressBroadcaster:
    """Get the progress broadcaster."""
    return get_broadcaster()
