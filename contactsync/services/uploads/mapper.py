# contactsync/services/uploads/mapper.py
"""
Field mapping for CSV contact uploads.

Turns one raw CSV row plus a column -> target mapping into normalized CRM
contact payloads. A row expands into one contact per phone group: columns
sharing a numeric index ("Phone 1", "Phone 1 Type") form a group, and every
group with a phone value becomes its own contact carrying the row's other
fields.
"""
import csv
import logging
import re
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, TypedDict, Union

logger = logging.getLogger("contactsync.uploads.mapper")

PLACEHOLDER_TOKEN = "custom"
PHONE_TARGET = "phone"
PHONE_TYPE_FIELD_NAME = "Phone Type"
PHONE_TYPE_FIELD_KEY = "contact.phone_type"
PHONE_TYPE_CUSTOM_KEY = "phone_type"
CUSTOM_FIELD_PREFIX = "contact."

# Contact attributes the CRM accepts at the top level of an upsert
DEFAULT_CONTACT_FIELDS = frozenset({
    "firstName",
    "lastName",
    "name",
    "email",
    "address1",
    "city",
    "state",
    "postalCode",
    "country",
    "website",
    "timezone",
    "companyName",
    "source",
    "gender",
    "dateOfBirth",
    "dnd",
    "assignedTo",
})

NAME_FIELDS = frozenset({"firstName", "lastName"})

# Groups built from unsuffixed phone columns
DEFAULT_GROUP = ""

_INDEX_RGX = re.compile(r"(\d+)")

FieldValue = Union[str, bool]


class CustomFieldValue(TypedDict):
    key: str
    field_value: FieldValue


class NormalizedContact(TypedDict, total=False):
    phone: str
    tags: List[str]
    customFields: List[CustomFieldValue]


def is_phone_type_column(column: str) -> bool:
    """Whether a column name denotes a phone type ("Phone 2 Type", "phone_type")."""
    lowered = column.lower()
    return "phone" in lowered and "type" in lowered


def column_index(column: str) -> Optional[str]:
    """First run of digits in a column name, used to correlate phone groups."""
    match = _INDEX_RGX.search(column)
    return match.group(1) if match else None


def coerce_value(column: str, target: str, value: Any) -> Any:
    """
    Coerce boolean-like strings for non-name fields.

    "true"/"false" in any case become booleans so flags such as dnd reach
    the CRM with the right type. Name fields are left verbatim.
    """
    if column in NAME_FIELDS or target in NAME_FIELDS:
        return value

    lowered = str(value).lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    return value


def resolve_target(column: str, mappings: Dict[str, Optional[str]]) -> str:
    """Mapped target of a column; unmapped columns pass through under their own name."""
    target = mappings.get(column)
    return column if target is None else target


def is_phone_type_target(target: str, phone_type_key: Optional[str] = None) -> bool:
    """Whether a target is the shared phone-type field (the well-known key or the provisioned one)."""
    return target == PHONE_TYPE_FIELD_KEY or (phone_type_key is not None and target == phone_type_key)


def normalize_row(
    row: Dict[str, Any],
    mappings: Dict[str, Optional[str]],
    tags: List[str],
    phone_type_key: Optional[str] = None,
) -> List[NormalizedContact]:
    """
    Normalize one CSV row into CRM contact payloads.

    Args:
        row: Raw CSV record keyed by header name
        mappings: Column name -> target field (well-known field, custom field key or None)
        tags: Tag names applied to every contact of the job
        phone_type_key: Field key provisioned for "Phone Type", when the upload created one

    Returns:
        List[NormalizedContact]: One contact per phone group with a phone value
    """
    groups: Dict[str, Dict[str, Any]] = {}
    common_fields: Dict[str, Any] = {}
    custom_fields: List[CustomFieldValue] = []

    for column, raw_value in row.items():
        # csv.DictReader files extra cells under a None key
        if column is None:
            continue

        target = resolve_target(column, mappings)
        value = coerce_value(column, target, raw_value if raw_value is not None else "")

        if target == PHONE_TARGET:
            group = groups.setdefault(column_index(column) or DEFAULT_GROUP, {})
            group["phone"] = value
        elif is_phone_type_target(target, phone_type_key):
            group = groups.setdefault(column_index(column) or DEFAULT_GROUP, {})
            group["phone_type"] = value
        elif target in DEFAULT_CONTACT_FIELDS:
            common_fields[target] = value
        else:
            custom_fields.append({
                "key": target[len(CUSTOM_FIELD_PREFIX):] if target.startswith(CUSTOM_FIELD_PREFIX) else target,
                "field_value": value,
            })

    contacts: List[NormalizedContact] = []
    for group in groups.values():
        phone = group.get("phone")
        if phone is None or phone is False or str(phone).strip() == "":
            continue

        group_custom_fields = list(custom_fields)
        phone_type = group.get("phone_type")
        if phone_type not in (None, ""):
            group_custom_fields.append({"key": PHONE_TYPE_CUSTOM_KEY, "field_value": phone_type})

        contact: NormalizedContact = {
            **common_fields,
            "phone": str(phone).strip(),
            "tags": list(tags),
            "customFields": group_custom_fields,
        }
        contacts.append(contact)

    return contacts


def iter_csv_rows(file_path: Union[str, Path], encoding: str = "utf-8-sig") -> Iterator[Dict[str, Any]]:
    """
    Stream rows of a CSV file as dicts keyed by the header row.

    Args:
        file_path: Path to the CSV file
        encoding: File encoding; the default strips a UTF-8 BOM

    Yields:
        Dict: One record per data row
    """
    with open(file_path, "r", encoding=encoding, newline="") as csv_file:
        reader = csv.DictReader(csv_file)
        for row in reader:
            yield row
