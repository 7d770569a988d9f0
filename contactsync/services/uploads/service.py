# contactsync/services/uploads/service.py
"""
Upload accept flow: validate, provision, enqueue.

Everything here runs inside the upload request. Once enqueue returns, the
request is answered and the worker takes over.
"""
import json
import logging
import os
from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError

from contactsync.core.exceptions import ValidationError
from contactsync.schemas.upload import UploadJobPayload, parse_mapping_document
from contactsync.services.crm.client import crm_client_for_location
from contactsync.services.uploads.processor import CRMClientFactory
from contactsync.services.uploads.provisioner import CustomFieldProvisioner, TagReference
from contactsync.services.uploads.queue import UploadQueue, get_upload_queue

logger = logging.getLogger("contactsync.uploads.service")


def parse_tag_document(raw: str) -> List[TagReference]:
    """
    Decode the selected tags sent as a JSON array of {id, name}.

    Raises:
        ValidationError: If the document is malformed
    """
    try:
        items = json.loads(raw) if raw else []
    except json.JSONDecodeError as e:
        raise ValidationError(message=f"tags is not valid JSON: {e}")

    if not isinstance(items, list):
        raise ValidationError(message="tags must be a JSON array")

    try:
        return [TagReference.model_validate(item) for item in items]
    except PydanticValidationError as e:
        raise ValidationError(message="tags must be objects with id and name", details={"errors": e.errors()})


class UploadService:
    """Accepts CSV uploads and hands them to the queue."""

    def __init__(
        self,
        queue: Optional[UploadQueue] = None,
        crm_client_factory: CRMClientFactory = crm_client_for_location,
    ):
        self.queue = queue or get_upload_queue()
        self.crm_client_factory = crm_client_factory

    async def accept_upload(
        self,
        location_id: str,
        file_path: str,
        file_name: str,
        mappings_json: str,
        tags_json: str,
    ) -> int:
        """
        Provision custom fields/tags and queue the upload.

        Args:
            location_id: CRM location id
            file_path: Where the uploaded CSV was stored
            file_name: Stored file name
            mappings_json: Column mapping as a JSON object string
            tags_json: Selected tags as a JSON array string

        Returns:
            int: Queued job id

        Raises:
            ValidationError: Malformed mappings or tags
            BadRequestError: Upstream rejected provisioning
            AuthenticationError: Upstream rejected the token
        """
        try:
            mappings = parse_mapping_document(mappings_json)
        except ValueError as e:
            self._discard(file_path)
            raise ValidationError(message=str(e))

        try:
            tags = parse_tag_document(tags_json)
            async with self.crm_client_factory(location_id) as crm:
                provisioned = await CustomFieldProvisioner(crm).provision(location_id, mappings, tags)
        except Exception:
            self._discard(file_path)
            raise

        payload = UploadJobPayload(
            file_name=file_name,
            file_path=file_path,
            mappings=json.dumps(provisioned.mappings),
            location_id=location_id,
            tags=[tag.name for tag in tags],
            phone_type_field=provisioned.phone_type_key,
        )
        return await self.queue.enqueue(payload)

    def _discard(self, file_path: str) -> None:
        try:
            os.remove(file_path)
        except OSError as e:
            logger.warning(f"Could not remove rejected upload {file_path}: {e}")


def get_upload_service() -> UploadService:
    """Get an upload service instance."""
    return UploadService()
