from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from shared.geo_service import GeoLocation


# Required fields are checked in the routes so they answer 400, not 422
class VisitorRequest(BaseModel):
    session_id: Optional[str] = Field(None, max_length=100)
    user_agent: Optional[str] = Field(None, max_length=1000)
    referrer: Optional[str] = Field(None, max_length=2000)
    page_path: Optional[str] = Field(None, max_length=2000)


class EventRequest(BaseModel):
    session_id: Optional[str] = Field(None, max_length=100)
    event_type: Optional[str] = Field(None, max_length=50)
    event_name: Optional[str] = Field(None, max_length=100)
    page_path: Optional[str] = Field(None, max_length=2000)
    element_id: Optional[str] = Field(None, max_length=100)
    element_text: Optional[str] = Field(None, max_length=1000)
    user_agent: Optional[str] = Field(None, max_length=1000)
    referrer: Optional[str] = Field(None, max_length=2000)
    event_data: dict[str, Any] = Field(default_factory=dict)


class BlockedResponse(BaseModel):
    blocked: bool = True
    reason: str = "california_restriction"
    message: str = "Access restricted in your region due to local regulations."


class VisitorResponse(BaseModel):
    success: bool = True
    visitor_id: UUID
    location: GeoLocation


class EventResponse(BaseModel):
    success: bool = True
    event_id: UUID
