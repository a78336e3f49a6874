"""Pydantic schemas for inbound ALIS webhooks."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AlisEvent(BaseModel):
    """ALIS webhook body. Field names on the wire are PascalCase."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    company_key: str = Field(..., alias="CompanyKey", min_length=1)
    community_id: int | None = Field(None, alias="CommunityId")
    event_type: str = Field(..., alias="EventType", min_length=1)
    event_message_id: str = Field(..., alias="EventMessageId", min_length=1)
    event_message_date: str = Field(..., alias="EventMessageDate", min_length=1)
    notification_data: dict[str, Any] | None = Field(None, alias="NotificationData")

    @field_validator("event_message_id", mode="before")
    @classmethod
    def coerce_event_message_id(cls, v: Any) -> Any:
        """ALIS sends numeric ids for some tenants."""
        if isinstance(v, bool):
            return v
        if isinstance(v, (int, float)):
            return str(int(v)) if float(v).is_integer() else str(v)
        return v

    @field_validator("company_key", "event_type", "event_message_id")
    @classmethod
    def strip_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class EventLogRead(BaseModel):
    """Ledger entry response schema."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    company_id: UUID
    community_id: int | None
    event_type: str
    event_message_id: str
    status: str
    error: str | None
    received_at: datetime
    processed_at: datetime | None


class EventLogDetail(EventLogRead):
    payload: dict[str, Any]
