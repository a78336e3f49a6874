"""Structured logging helpers (PHI-safe)."""

import logging
from typing import Any

from resident_sync.core.config import settings


def configure_logging() -> None:
    """Fallback stdout logging for the API and worker processes."""
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def build_log_context(
    *,
    event_message_id: str | None = None,
    event_type: str | None = None,
    company_key: str | None = None,
    community_id: int | None = None,
    resident_id: int | None = None,
    job_id: str | None = None,
) -> dict[str, Any]:
    """Return a PHI-safe log context dict."""
    context: dict[str, Any] = {}
    if event_message_id:
        context["event_message_id"] = event_message_id
    if event_type:
        context["event_type"] = event_type
    if company_key:
        context["company_key"] = company_key
    if community_id is not None:
        context["community_id"] = community_id
    if resident_id is not None:
        context["resident_id"] = resident_id
    if job_id:
        context["job_id"] = job_id
    return context
