"""
Pydantic schemas for CRM automation (workflow) webhooks.
"""
from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

WorkflowAction = Literal["DND", "DELETE"]


class WorkflowLocation(BaseModel):
    """Location block of a workflow webhook."""
    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1)
    name: Optional[str] = None


class WorkflowEvent(BaseModel):
    """
    Workflow webhook payload.

    Only the fields needed to find sibling contacts are declared; the CRM
    sends many more, which are kept as extras.
    """
    model_config = ConfigDict(extra="allow")

    contact_id: str
    first_name: str = Field(..., min_length=1)
    last_name: Optional[str] = None
    phone: Optional[str] = None
    location: WorkflowLocation


class WorkflowResult(BaseModel):
    """Outcome counters of a workflow run."""
    success: int = 0
    failure: int = 0
