"""
Pydantic schemas for OAuth and app lifecycle webhooks.
"""
from typing import Any, Dict, Literal, Optional
from pydantic import BaseModel, Field


class InstallEvent(BaseModel):
    """App-install webhook payload sent by the CRM marketplace."""
    type: Literal["INSTALL"] = "INSTALL"
    app_id: str = Field(..., alias="appId")
    install_type: Literal["Location", "Company"] = Field(..., alias="installType")
    location_id: Optional[str] = Field(None, alias="locationId")
    company_id: str = Field(..., alias="companyId")
    user_id: Optional[str] = Field(None, alias="userId")
    plan_id: Optional[str] = Field(None, alias="planId")
    trial: Dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[str] = None
    webhook_id: Optional[str] = Field(None, alias="webhookId")

    class Config:
        """Pydantic config."""
        populate_by_name = True
