"""FastAPI application entry point."""
import logging

from fastapi import FastAPI

from resident_sync.core.config import settings
from resident_sync.core.structured_logging import configure_logging

configure_logging()

# ============================================================================
# Sentry Integration (optional, for production error tracking)
# ============================================================================

if settings.SENTRY_DSN and settings.ENV != "dev":
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=0.1,
        send_default_pii=False,  # resident PHI must never leave the service
    )
    logging.info("Sentry initialized for error tracking")

# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="Resident Sync API",
    description="ALIS resident event intake and Caspio sync",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
)

from resident_sync.routers import admin_router, health_router, webhooks_router  # noqa: E402

app.include_router(health_router)
app.include_router(webhooks_router, prefix="/webhook", tags=["webhooks"])
app.include_router(admin_router)
