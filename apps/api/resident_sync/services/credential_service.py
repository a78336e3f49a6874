"""Resolve and store per-company ALIS credentials."""

import logging
from uuid import UUID

from sqlalchemy.orm import Session

from resident_sync.core.config import settings
from resident_sync.core.encryption import decrypt_secret, encrypt_secret
from resident_sync.db.models import AlisCredential, Company
from resident_sync.services.alis_client import AlisCredentials

logger = logging.getLogger(__name__)


class CredentialError(Exception):
    """Credentials for a company are unusable. Fatal for the event being processed."""


def get_credential(db: Session, company_id: UUID) -> AlisCredential | None:
    return db.query(AlisCredential).filter(AlisCredential.company_id == company_id).first()


def default_credentials() -> AlisCredentials:
    if not settings.ALIS_TEST_USERNAME or not settings.ALIS_TEST_PASSWORD:
        raise CredentialError(
            "No stored ALIS credentials and ALIS_TEST_USERNAME/ALIS_TEST_PASSWORD are not configured"
        )
    return AlisCredentials(
        username=settings.ALIS_TEST_USERNAME,
        password=settings.ALIS_TEST_PASSWORD,
    )


def resolve_alis_credentials(db: Session, company_id: UUID, company_key: str) -> AlisCredentials:
    """
    Return the ALIS credentials to use for a company.

    Stored credentials win and must decrypt; there is no fallback to the
    shared default when they don't. Companies with no stored row use the
    shared default credentials.
    """
    credential = get_credential(db, company_id)

    if credential is None:
        logger.debug("No stored credentials for company_key=%s; using defaults", company_key)
        return default_credentials()

    if not credential.password_ciphertext:
        if credential.password_hash:
            logger.warning(
                "Credential row for company_key=%s only has a password hash", company_key
            )
            raise CredentialError(
                "Stored credentials are hashed; configure runtime secrets for ALIS access."
            )
        raise CredentialError(f"Stored credentials for '{company_key}' have no password")

    try:
        password = decrypt_secret(credential.password_ciphertext)
    except (ValueError, RuntimeError) as exc:
        logger.error("Failed to decrypt ALIS credentials for company_key=%s", company_key)
        raise CredentialError(
            f"Failed to decrypt ALIS credentials for '{company_key}'"
        ) from exc

    return AlisCredentials(username=credential.username, password=password)


def upsert_credentials(
    db: Session,
    company_key: str,
    username: str,
    password: str,
    company_name: str | None = None,
) -> AlisCredential:
    """Encrypt and store credentials for a company, creating the company if needed."""
    company = db.query(Company).filter(Company.company_key == company_key).first()
    if company is None:
        company = Company(company_key=company_key, name=company_name)
        db.add(company)
        db.flush()
    elif company_name:
        company.name = company_name

    ciphertext = encrypt_secret(password)
    credential = get_credential(db, company.id)
    if credential is None:
        credential = AlisCredential(company_id=company.id, username=username)
        db.add(credential)
    credential.username = username
    credential.password_ciphertext = ciphertext
    credential.password_hash = None

    db.commit()
    db.refresh(credential)
    logger.info("Stored ALIS credentials for company_key=%s", company_key)
    return credential
