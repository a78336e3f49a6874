"""Intake ledger model."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import BigInteger, ForeignKey, Index, String, Text, Uuid, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from resident_sync.db.base import Base
from resident_sync.db.enums import DEFAULT_EVENT_STATUS
from resident_sync.db.models.companies import Company


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventLog(Base):
    """
    One row per unique ALIS EventMessageId.

    The unique constraint on event_message_id is what makes webhook
    re-delivery a no-op.
    """

    __tablename__ = "event_logs"
    __table_args__ = (
        Index("idx_event_logs_status_received", "status", "received_at"),
        Index("idx_event_logs_company", "company_id", "received_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False
    )
    community_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    event_message_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    payload: Mapped[dict[str, Any]] = mapped_column(nullable=False, default=dict)

    status: Mapped[str] = mapped_column(
        String(20),
        default=DEFAULT_EVENT_STATUS.value,
        server_default=text(f"'{DEFAULT_EVENT_STATUS.value}'"),
        nullable=False,
    )
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    received_at: Mapped[datetime] = mapped_column(
        default=_utcnow, server_default=func.now(), nullable=False
    )
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    company: Mapped[Company] = relationship()
