"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"
    VERSION: str = "0.01.00"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    # ALIS (source system)
    ALIS_API_BASE: str = "https://api.alisonline.com"
    ALIS_TEST_USERNAME: str = ""  # Shared default credentials when a company has none stored
    ALIS_TEST_PASSWORD: str = ""
    ALIS_TIMEOUT_SECONDS: float = 15.0
    ALIS_RETRY_MAX: int = 2

    # Caspio (sink system)
    CASPIO_BASE_URL: str = ""
    CASPIO_TOKEN_URL: str = ""
    CASPIO_CLIENT_ID: str = ""
    CASPIO_CLIENT_SECRET: str = ""
    CASPIO_TABLE_NAME: str = "AlisAPITestTable"
    CASPIO_COMMUNITY_TABLE_NAME: str = "CommunityTable1"
    CASPIO_TIMEOUT_SECONDS: float = 10.0
    CASPIO_RETRY_MAX: int = 3

    # Credential Encryption (Fernet key for stored ALIS passwords)
    CREDENTIAL_ENCRYPTION_KEY: str = ""  # Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"

    # Worker / dispatch queue
    WORKER_CONCURRENCY: int = 5
    WORKER_POLL_INTERVAL: float = 2.0
    WORKER_BATCH_SIZE: int = 20
    JOB_MAX_ATTEMPTS: int = 5
    JOB_BACKOFF_BASE_SECONDS: float = 1.0
    JOB_STALE_AFTER_SECONDS: float = 600.0  # Running jobs without a heartbeat for this long are released
    BACKFILL_DELAY_SECONDS: float = 0.2  # Pause between residents during backfill

    # Webhook authentication
    WEBHOOK_BASIC_USER: str = ""
    WEBHOOK_BASIC_PASS: str = ""
    IP_ALLOWLIST: str = ""  # Comma-separated; empty allows any address

    # Proxy/Load Balancer Settings
    # Set to True when running behind nginx/Cloudflare to trust X-Forwarded-For
    TRUST_PROXY_HEADERS: bool = False

    # Admin endpoints (X-Admin-Token header)
    ADMIN_API_TOKEN: str = ""

    @property
    def ip_allowlist(self) -> list[str]:
        """Parse IP_ALLOWLIST into a list."""
        return [ip.strip() for ip in self.IP_ALLOWLIST.split(",") if ip.strip()]

    @property
    def caspio_configured(self) -> bool:
        return bool(self.CASPIO_CLIENT_ID and self.CASPIO_CLIENT_SECRET and self.CASPIO_TOKEN_URL)

    @property
    def is_dev(self) -> bool:
        return self.ENV == "dev"


settings = Settings()
