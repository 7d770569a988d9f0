"""
Pydantic schemas for upload requests and queued upload jobs.
"""
import json
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, field_validator


def parse_mapping_document(raw: str) -> Dict[str, Optional[str]]:
    """
    Decode a column mapping sent as a JSON string.

    Raises:
        ValueError: If the document is not a JSON object of column -> target
    """
    try:
        mappings = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as e:
        raise ValueError(f"mappings is not valid JSON: {e}")

    if not isinstance(mappings, dict):
        raise ValueError("mappings must be a JSON object of column -> target")

    for column, target in mappings.items():
        if target is not None and not isinstance(target, str):
            raise ValueError(f"mapping target for column '{column}' must be a string or null")
    return mappings


class UploadJobPayload(BaseModel):
    """
    Producer -> consumer contract of a queued upload.

    mappings travels as a serialized JSON string and is decoded by the worker.
    """
    file_name: str = Field(..., alias="fileName")
    file_path: str = Field(..., alias="filePath")
    mappings: str = Field(..., description="JSON object of column -> target field")
    location_id: str = Field(..., alias="locationId", min_length=1)
    tags: List[str] = Field(default_factory=list)
    phone_type_field: Optional[str] = Field(
        None, alias="phoneTypeField", description="Provisioned field key phone-type columns resolve to"
    )

    @field_validator("mappings")
    def validate_mappings(cls, v: str) -> str:
        """Reject malformed mapping documents before any processing starts."""
        parse_mapping_document(v)
        return v

    def mapping_dict(self) -> Dict[str, Optional[str]]:
        """Decoded column mapping."""
        return parse_mapping_document(self.mappings)

    def to_wire(self) -> Dict[str, Any]:
        """Payload as stored in the queue (camelCase keys, unset optionals dropped)."""
        return self.model_dump(by_alias=True, exclude_none=True)

    class Config:
        """Pydantic config."""
        populate_by_name = True


class UploadAcceptedResponse(BaseModel):
    """Response for an accepted upload."""
    message: str = "Upload queued successfully."
    job_id: int = Field(..., alias="jobId")

    class Config:
        """Pydantic config."""
        populate_by_name = True
