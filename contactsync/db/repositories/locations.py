"""
Location and Company repositories for CRM tenant records.
"""
import logging
from datetime import datetime, timezone, timedelta
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from contactsync.db.repositories.base import BaseRepository
from contactsync.models.location import Company, Location

logger = logging.getLogger("contactsync.db")


def token_expiry_from(expires_in: Optional[int]) -> Optional[datetime]:
    """Absolute expiry for an expires_in value in seconds."""
    if expires_in is None:
        return None
    return datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))


class CompanyRepository(BaseRepository[Company, Any, Any]):
    """Company repository for database operations."""

    def __init__(self, session: AsyncSession):
        """Initialize with session and Company model."""
        super().__init__(session=session, model=Company)

    async def upsert_tokens(
        self,
        company_id: str,
        *,
        access_token: str,
        refresh_token: Optional[str],
        expires_in: Optional[int],
    ) -> Company:
        """
        Store tokens for a company, creating it when missing.

        Args:
            company_id: CRM company id
            access_token: OAuth access token
            refresh_token: OAuth refresh token
            expires_in: Token lifetime in seconds

        Returns:
            Company: Stored company
        """
        company = await self.get_by_id(company_id)
        if company is None:
            company = Company(id=company_id)

        company.access_token = access_token
        company.refresh_token = refresh_token
        company.token_expiry = token_expiry_from(expires_in)

        self.session.add(company)
        await self.session.commit()
        await self.session.refresh(company)
        return company


class LocationRepository(BaseRepository[Location, Any, Any]):
    """Location repository for database operations."""

    def __init__(self, session: AsyncSession):
        """Initialize with session and Location model."""
        super().__init__(session=session, model=Location)

    async def ensure_location(
        self,
        location_id: str,
        *,
        company_id: Optional[str] = None,
        name: Optional[str] = None,
    ) -> Location:
        """
        Create a location if it does not exist yet; existing rows are left untouched.

        Args:
            location_id: CRM location id
            company_id: Owning company id
            name: Display name

        Returns:
            Location: Existing or created location
        """
        location = await self.get_by_id(location_id)
        if location is not None:
            return location

        location = Location(id=location_id, company_id=company_id, name=name or "default")
        self.session.add(location)
        await self.session.commit()
        await self.session.refresh(location)

        logger.info(f"Registered location {location_id} for company {company_id}")
        return location

    async def update_tokens(
        self,
        location_id: str,
        *,
        access_token: str,
        refresh_token: Optional[str],
        expires_in: Optional[int],
    ) -> Optional[Location]:
        """
        Store refreshed tokens for a location.

        Args:
            location_id: CRM location id
            access_token: OAuth access token
            refresh_token: OAuth refresh token
            expires_in: Token lifetime in seconds

        Returns:
            Location: Updated location or None
        """
        return await self.update(
            id=location_id,
            obj_in={
                "access_token": access_token,
                "refresh_token": refresh_token,
                "token_expiry": token_expiry_from(expires_in),
            },
        )
