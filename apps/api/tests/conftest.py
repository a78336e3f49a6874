"""
Test configuration and fixtures.

Provides:
- SQLite-backed database session (tables created and dropped per test)
- HTTPX AsyncClient wired to the app with the test session
- Authentication headers for the webhook and admin endpoints
- Sample ALIS webhook bodies
"""
import base64
import os
import uuid
from typing import AsyncGenerator, Generator

# Settings are read at import time; configure the environment first.
os.environ["DATABASE_URL"] = "sqlite:///./.pytest_resident_sync.db"
os.environ["ENV"] = "test"
os.environ["WEBHOOK_BASIC_USER"] = "alis-hook"
os.environ["WEBHOOK_BASIC_PASS"] = "hook-secret"
os.environ["ADMIN_API_TOKEN"] = "admin-test-token"
os.environ["CREDENTIAL_ENCRYPTION_KEY"] = base64.urlsafe_b64encode(
    b"resident-sync-test-key-000000000"
).decode()
os.environ["CASPIO_BASE_URL"] = "https://caspio.test"
os.environ["CASPIO_TOKEN_URL"] = "https://caspio.test/oauth/token"
os.environ["CASPIO_CLIENT_ID"] = "caspio-client"
os.environ["CASPIO_CLIENT_SECRET"] = "caspio-secret"
os.environ["ALIS_API_BASE"] = "https://alis.test"
os.environ["IP_ALLOWLIST"] = ""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from resident_sync.core.deps import get_db
from resident_sync.db.base import Base
from resident_sync.db.session import SessionLocal, engine
from resident_sync.jobs.utils import set_caspio_client
from resident_sync.main import app


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Create a database session on a fresh schema.

    Tables are dropped after the test so every test starts empty.
    """
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        set_caspio_client(None)


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    """
    Create AsyncClient for testing endpoints against the test session.
    """
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()


# =============================================================================
# Payload Fixtures
# =============================================================================

def make_event(
    event_type: str = "residents.move_in",
    *,
    resident_id: int | None = 1001,
    community_id: int | None = 77,
    event_message_id: str | None = None,
    event_message_date: str = "2026-01-19T19:23:35.2101857",
    company_key: str = "acme",
    **notification,
) -> dict:
    """ALIS webhook body with PascalCase wire names."""
    data = dict(notification)
    if resident_id is not None:
        data["ResidentId"] = resident_id
    body = {
        "CompanyKey": company_key,
        "CommunityId": community_id,
        "EventType": event_type,
        "EventMessageId": event_message_id or f"msg-{uuid.uuid4().hex[:12]}",
        "EventMessageDate": event_message_date,
        "NotificationData": data,
    }
    return body


@pytest.fixture
def move_in_body() -> dict:
    return make_event("residents.move_in", event_message_id="msg-move-in-1")


@pytest.fixture
def event_factory():
    return make_event
