"""
Application configuration.
All settings are loaded from environment variables.
Use env.example as a reference for required variables.
"""
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    IMPORTANT: Credentials have no defaults - they MUST be set in .env file.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"
    # CORS: comma-separated list. Empty = no cross-origin access.
    cors_origins: str = ""
    # Public base URL used in notification links
    app_url: str = "https://beautonomi.com"

    # ===========================================
    # DATABASE (PostgreSQL)
    # ===========================================
    database_url: str  # Required, no default

    # Docker-compose variables (not used by app directly)
    postgres_db: str | None = None
    postgres_user: str | None = None
    postgres_password: str | None = None
    # Connection pool (per API replica / worker process)
    db_pool_size: int = 10
    db_max_overflow: int = 20

    # ===========================================
    # REDIS & CELERY
    # ===========================================
    redis_url: str  # Required, no default
    celery_broker_url: str  # Required, no default
    celery_result_backend: str  # Required, no default

    # ===========================================
    # PAYSTACK GATEWAY
    # ===========================================
    paystack_secret_key: str  # Required, no default. Also the webhook HMAC key.
    paystack_api_base: str = "https://api.paystack.co"
    paystack_timeout: float = 30.0

    # ===========================================
    # WEBHOOK INGESTION
    # ===========================================
    webhook_source: str = "paystack"
    webhook_signature_header: str = "X-Paystack-Signature"
    # A claimed event older than this may be re-claimed by a later delivery
    webhook_claim_lease_seconds: int = 600

    # ===========================================
    # SETTLEMENT
    # ===========================================
    default_currency: str = "ZAR"
    # Used by custom-offer and additional-charge flows when platform settings carry no rate
    default_commission_percentage: float = 15.0
    gift_card_code_attempts: int = 5

    # ===========================================
    # RECONCILIATION QUEUE
    # ===========================================
    reconciliation_initial_delay_seconds: int = 300  # 5 minutes
    reconciliation_max_attempts: int = 5
    reconciliation_batch_size: int = 50
    reconciliation_interval_minutes: int = 5
    # A processing entry older than this is assumed abandoned by a dead worker
    reconciliation_processing_lease_seconds: int = 900

    # ===========================================
    # NOTIFICATIONS & ANALYTICS (empty URL = disabled)
    # ===========================================
    notifications_api_url: str = ""
    notifications_api_key: str = ""
    analytics_api_url: str = ""
    analytics_api_key: str = ""
    http_client_timeout: float = 10.0

    # ===========================================
    # CIRCUIT BREAKER
    # ===========================================
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30

    # ===========================================
    # LOGGING
    # ===========================================
    request_id_header: str = "X-Request-Id"
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @field_validator("paystack_secret_key")
    @classmethod
    def validate_paystack_secret(cls, v: str) -> str:
        """Webhook verification is only as strong as this key."""
        if len(v) < 16:
            raise ValueError("paystack_secret_key must be at least 16 characters")
        return v

    @field_validator("default_currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.upper().strip()

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
