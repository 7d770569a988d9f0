# contactsync/services/contacts/workflow.py
"""
Post-processing actions triggered by CRM automation webhooks.

When a workflow fires for a contact, every other contact in the location
sharing its first name is flagged do-not-disturb or deleted.
"""
import asyncio
import logging
from typing import Any, Dict, Optional

from contactsync.core.config import settings
from contactsync.core.exceptions import CRMRequestError, map_upstream_error
from contactsync.schemas.workflow import WorkflowAction, WorkflowEvent, WorkflowResult
from contactsync.services.crm.client import CRMClient, crm_client_for_location
from contactsync.services.crm.oauth import OAuthService
from contactsync.services.uploads.processor import CRMClientFactory, SubmissionCounter

logger = logging.getLogger("contactsync.contacts.workflow")


class ContactWorkflowService:
    """Runs DND/delete actions over a contact's first-name siblings."""

    def __init__(
        self,
        oauth_service: Optional[OAuthService] = None,
        crm_client_factory: CRMClientFactory = crm_client_for_location,
        concurrency: Optional[int] = None,
    ):
        self.oauth_service = oauth_service or OAuthService()
        self.crm_client_factory = crm_client_factory
        self.concurrency = concurrency or settings.WORKFLOW_CONCURRENCY

    async def run(self, event: WorkflowEvent, action: WorkflowAction) -> WorkflowResult:
        """
        Apply an action to every contact matching the event's first name.

        The triggering contact itself is skipped. Per-contact failures are
        counted and do not stop the others.

        Args:
            event: Workflow webhook payload
            action: "DND" or "DELETE"

        Returns:
            WorkflowResult: Success and failure counts

        Raises:
            BadRequestError: If the search is rejected (400) or the location is unknown
            AuthenticationError: If the token is rejected (401)
        """
        location_id = event.location.id
        await self.oauth_service.refresh_token(location_id, "Location")

        counter = SubmissionCounter()
        semaphore = asyncio.Semaphore(self.concurrency)

        async with self.crm_client_factory(location_id) as crm:
            try:
                contacts = await crm.search_contacts_by_first_name(location_id, event.first_name)
            except CRMRequestError as e:
                logger.error(f"Contact search failed for location {location_id}: {e.message}")
                raise map_upstream_error(e)

            targets = [c["id"] for c in contacts if c.get("id") and c["id"] != event.contact_id]
            logger.info(f"Applying {action} to {len(targets)} contacts in location {location_id}")

            async def apply(contact_id: str) -> Dict[str, Any]:
                async with semaphore:
                    try:
                        result = await self._apply_action(crm, contact_id, action)
                    except Exception as e:
                        counter.record_failure()
                        logger.error(f"Failed to apply {action} to contact {contact_id}: {e}")
                        raise
                    counter.record_success()
                    return result

            await asyncio.gather(*(apply(contact_id) for contact_id in targets), return_exceptions=True)

        logger.info(f"{action} workflow done: {counter.success} succeeded, {counter.failure} failed")
        return WorkflowResult(success=counter.success, failure=counter.failure)

    async def _apply_action(self, crm: CRMClient, contact_id: str, action: WorkflowAction) -> Dict[str, Any]:
        if action == "DND":
            return await crm.set_contact_dnd(contact_id)
        return await crm.delete_contact(contact_id)
