"""FastAPI dependencies: database session, webhook and admin authentication."""

import ipaddress
import logging
import secrets
from typing import Generator

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from sqlalchemy.orm import Session

from resident_sync.core.config import settings
from resident_sync.db.session import SessionLocal

logger = logging.getLogger(__name__)

webhook_basic = HTTPBasic(auto_error=False, realm="ALIS Webhook")


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_client_ip(request: Request) -> str | None:
    """
    Extract client IP from request.

    Only trusts X-Forwarded-For when TRUST_PROXY_HEADERS=True (behind reverse proxy).
    """
    if settings.TRUST_PROXY_HEADERS:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            # X-Forwarded-For: client, proxy1, proxy2 - take first
            return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def ip_allowed(ip: str | None, allowlist: list[str]) -> bool:
    """True when the allowlist is empty or `ip` matches an address or CIDR entry."""
    if not allowlist:
        return True
    if not ip:
        return False
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return False
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped:
        address = address.ipv4_mapped

    for entry in allowlist:
        try:
            if "/" in entry:
                if address in ipaddress.ip_network(entry, strict=False):
                    return True
            elif address == ipaddress.ip_address(entry):
                return True
        except ValueError:
            logger.warning("Ignoring invalid IP_ALLOWLIST entry %r", entry)
    return False


def _same(given: str, expected: str) -> bool:
    return secrets.compare_digest(given.encode("utf-8"), expected.encode("utf-8"))


def require_webhook_auth(
    request: Request,
    credentials: HTTPBasicCredentials | None = Depends(webhook_basic),
) -> None:
    """IP allowlist, then HTTP basic credentials."""
    client_ip = get_client_ip(request)
    if not ip_allowed(client_ip, settings.ip_allowlist):
        logger.warning("Webhook request blocked for ip=%s", client_ip)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")

    if not settings.WEBHOOK_BASIC_USER or not settings.WEBHOOK_BASIC_PASS:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Webhook authentication not configured",
        )

    valid = credentials is not None and (
        _same(credentials.username, settings.WEBHOOK_BASIC_USER)
        & _same(credentials.password, settings.WEBHOOK_BASIC_PASS)
    )
    if not valid:
        logger.warning("Webhook basic auth failed for ip=%s", client_ip)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": 'Basic realm="ALIS Webhook"'},
        )


def require_admin_token(x_admin_token: str | None = Header(None)) -> None:
    """Verify the X-Admin-Token header."""
    if not settings.ADMIN_API_TOKEN:
        raise HTTPException(status_code=501, detail="ADMIN_API_TOKEN not configured")
    if not x_admin_token or not _same(x_admin_token, settings.ADMIN_API_TOKEN):
        raise HTTPException(status_code=403, detail="Invalid admin token")
