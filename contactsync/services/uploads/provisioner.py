# contactsync/services/uploads/provisioner.py
"""
Custom field and tag provisioning for uploads.

Runs synchronously in the upload request before a job is queued: every
mapping column set to the placeholder token gets an upstream custom field,
and new custom tags are created, so the queued mapping only references real
field keys.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel

from contactsync.core.exceptions import CRMRequestError, map_upstream_error
from contactsync.services.crm.client import CRMClient
from contactsync.services.uploads.mapper import (
    PLACEHOLDER_TOKEN,
    PHONE_TYPE_FIELD_NAME,
    is_phone_type_column,
)

logger = logging.getLogger("contactsync.uploads.provisioner")

NEW_TAG_PREFIX = "custom"


class TagReference(BaseModel):
    """Tag chosen by the uploader; ids starting with "custom" are not yet in the CRM."""
    id: str
    name: str

    @property
    def is_new(self) -> bool:
        return self.id.startswith(NEW_TAG_PREFIX)


@dataclass
class ProvisioningPlan:
    """Custom fields to create for a mapping."""
    field_names: List[str] = field(default_factory=list)
    phone_type_columns: List[str] = field(default_factory=list)
    # column -> field name it resolves to
    column_fields: Dict[str, str] = field(default_factory=dict)


@dataclass
class ProvisionedMapping:
    """Mapping with every placeholder resolved to an upstream field key."""
    mappings: Dict[str, Optional[str]]
    # Key shared by all phone-type columns, None when no "Phone Type" field was created
    phone_type_key: Optional[str] = None


def plan_custom_fields(mappings: Dict[str, Optional[str]]) -> ProvisioningPlan:
    """
    Work out which custom fields a mapping needs.

    Phone-type columns collapse onto one shared "Phone Type" field; every
    other placeholder column gets a field named after the column.

    Args:
        mappings: Column name -> target, placeholder columns carry PLACEHOLDER_TOKEN

    Returns:
        ProvisioningPlan: Deduplicated field names in first-seen order
    """
    plan = ProvisioningPlan()

    for column, target in mappings.items():
        if target != PLACEHOLDER_TOKEN:
            continue

        if is_phone_type_column(column):
            plan.phone_type_columns.append(column)
            field_name = PHONE_TYPE_FIELD_NAME
        else:
            field_name = column

        plan.column_fields[column] = field_name
        if field_name not in plan.field_names:
            plan.field_names.append(field_name)

    return plan


def select_new_tags(tags: Sequence[TagReference]) -> List[TagReference]:
    """Tags that must be created upstream before use."""
    return [tag for tag in tags if tag.is_new]


class CustomFieldProvisioner:
    """
    Creates the custom fields and tags an upload references.

    All creation calls are issued concurrently; the set is small and chosen
    by the uploader.
    """

    def __init__(self, crm_client: CRMClient):
        """
        Initialize provisioner.

        Args:
            crm_client: CRM client bound to the location's token
        """
        self.crm_client = crm_client

    async def provision(
        self,
        location_id: str,
        mappings: Dict[str, Optional[str]],
        tags: Sequence[TagReference],
    ) -> ProvisionedMapping:
        """
        Create missing fields and tags and resolve placeholder mappings.

        Args:
            location_id: CRM location id
            mappings: Uploaded column mapping
            tags: Tags selected for the upload

        Returns:
            ProvisionedMapping: Mapping with every placeholder replaced by a field key

        Raises:
            BadRequestError: Upstream rejected a creation call with 400
            AuthenticationError: Upstream rejected the token (401)
            CRMRequestError: Any other upstream failure
        """
        plan = plan_custom_fields(mappings)
        new_tags = select_new_tags(tags)

        logger.info(
            f"🔧 Provisioning {len(plan.field_names)} custom fields and "
            f"{len(new_tags)} tags for location {location_id}"
        )

        try:
            results: List[Any] = await asyncio.gather(
                *(self.crm_client.create_custom_field(location_id, name) for name in plan.field_names),
                *(self.crm_client.create_tag(location_id, tag.name) for tag in new_tags),
            )
        except CRMRequestError as e:
            logger.error(f"Provisioning failed for location {location_id}: {e.message}")
            raise map_upstream_error(e)

        field_keys = dict(zip(plan.field_names, results[:len(plan.field_names)]))
        logger.info(f"✅ {len(field_keys)} custom fields and {len(new_tags)} tags created")

        resolved = dict(mappings)
        for column, field_name in plan.column_fields.items():
            resolved[column] = field_keys[field_name]

        return ProvisionedMapping(
            mappings=resolved,
            phone_type_key=field_keys.get(PHONE_TYPE_FIELD_NAME),
        )
