"""
Pydantic schemas for API responses.

The webhook itself answers with plain text or ErrorResponse; the read
endpoints serialize ORM rows through the models below.
"""

from typing import Dict, List, Optional

from pydantic import AliasChoices, BaseModel, Field


class ErrorResponse(BaseModel):
    """Response model for webhook error responses."""
    error: str = Field(..., description="Error description")


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")


class ContactResponse(BaseModel):
    """A contact row as read by the dashboard."""
    id: str
    phone_number: str = Field(..., description="Canonical phone identifier (WaId)")
    display_name: Optional[str] = Field(None, description="Provider-supplied profile name")
    platform: str
    metadata: Dict[str, str] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("metadata_", "metadata"),
        description="Routing addresses from the last callback",
    )
    created_at: str
    updated_at: str

    model_config = {"from_attributes": True}


class MessageResponse(BaseModel):
    """A message row as read by the dashboard."""
    id: str
    contact_id: str
    platform: str
    direction: str = Field(..., description="inbound or outbound")
    body: Optional[str] = None
    media_urls: List[str] = Field(default_factory=list)
    status: str
    provider_message_id: Optional[str] = Field(None, description="Twilio MessageSid")
    raw_payload: Dict[str, str] = Field(default_factory=dict)
    created_at: str

    model_config = {"from_attributes": True}


class StatsResponse(BaseModel):
    """Response model for GET /stats endpoint."""
    total_contacts: int = Field(..., ge=0)
    total_messages: int = Field(..., ge=0)
    inbound_messages: int = Field(..., ge=0)
    outbound_messages: int = Field(..., ge=0)
