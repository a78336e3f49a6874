"""Service layer modules."""

from resident_sync.services import (
    alis_client,
    caspio_client,
    credential_service,
    event_orchestrator,
    event_service,
    job_service,
)

__all__ = [
    "alis_client",
    "caspio_client",
    "credential_service",
    "event_orchestrator",
    "event_service",
    "job_service",
]
