"""Pydantic schemas for background jobs."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class JobRead(BaseModel):
    """Job response schema."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    job_type: str
    payload: dict
    run_at: datetime
    status: str
    attempts: int
    max_attempts: int
    last_error: str | None
    result: dict | None = None
    idempotency_key: str | None
    created_at: datetime
    completed_at: datetime | None


class BackfillRequest(BaseModel):
    """Enqueue a resident backfill for one community."""
    company_key: str = Field(..., min_length=1)
    community_id: int = Field(..., gt=0)
    page_size: int = Field(100, ge=1, le=500)
