"""SQLAlchemy ORM models."""

from resident_sync.db.models.companies import AlisCredential, Company
from resident_sync.db.models.events import EventLog
from resident_sync.db.models.jobs import Job

__all__ = [
    "AlisCredential",
    "Company",
    "EventLog",
    "Job",
]
