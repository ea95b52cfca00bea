# config.py
# ============================================================================
# RESCISAO CHECKOUT SERVICE — CONFIGURATION
# ============================================================================
# Environment-driven settings shared by the API, the pipeline agents and the
# maintenance sweeper. Validation is startup-only: a missing processor
# credential stops the process before any connection is opened.
# ============================================================================

import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from pipeline.errors import ConfigurationError


SUPPORTED_PROCESSORS = ("mercadopago", "stripe")


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class AppConfig:
    """Service configuration loaded from the environment."""

    # Payment processor
    payment_processor: str = "mercadopago"
    mercadopago_access_token: Optional[str] = None
    mercadopago_api_url: str = "https://api.mercadopago.com"
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None

    # Public URLs
    site_url: str = "http://localhost:3000"
    webhook_url: str = "http://localhost:3000/webhook"
    public_base_url: str = "http://localhost:3000"

    # Product
    product_title: str = "Cálculo de Rescisão Trabalhista Detalhado"
    product_price: Decimal = Decimal("29.90")
    product_currency: str = "BRL"

    # Persistence
    database_url: Optional[str] = None
    db_acquire_timeout_seconds: float = 10.0
    artifact_backend: str = "local"
    artifact_dir: str = "completed_pdfs"
    artifact_one_time_download: bool = False
    s3_bucket: Optional[str] = None
    s3_prefix: str = "artifacts/"
    aws_region: str = "us-east-1"

    # Email
    sendgrid_api_key: Optional[str] = None
    email_from: str = "no-reply@localhost"

    # Timeouts (seconds)
    processor_timeout_seconds: float = 15.0
    render_timeout_seconds: float = 10.0
    email_timeout_seconds: float = 10.0
    lock_timeout_seconds: float = 30.0

    # Maintenance sweep
    sweeper_enabled: bool = False
    sweeper_interval_seconds: int = 300
    pending_order_stale_hours: int = 72

    # Server
    host: str = "0.0.0.0"
    port: int = 3000
    env: str = "development"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> "AppConfig":
        site_url = os.getenv("SITE_URL", "http://localhost:3000").rstrip("/")
        return cls(
            payment_processor=os.getenv("PAYMENT_PROCESSOR", "mercadopago").strip().lower(),
            mercadopago_access_token=os.getenv("MERCADOPAGO_ACCESS_TOKEN") or None,
            mercadopago_api_url=os.getenv("MERCADOPAGO_API_URL", "https://api.mercadopago.com"),
            stripe_secret_key=os.getenv("STRIPE_SECRET_KEY") or None,
            stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET") or None,
            site_url=site_url,
            webhook_url=os.getenv("WEBHOOK_URL", f"{site_url}/webhook"),
            public_base_url=os.getenv("PUBLIC_BASE_URL", site_url).rstrip("/"),
            product_title=os.getenv("PRODUCT_TITLE", "Cálculo de Rescisão Trabalhista Detalhado"),
            product_price=Decimal(os.getenv("PRODUCT_PRICE", "29.90")),
            product_currency=os.getenv("PRODUCT_CURRENCY", "BRL"),
            database_url=os.getenv("DATABASE_URL") or None,
            db_acquire_timeout_seconds=float(os.getenv("DB_ACQUIRE_TIMEOUT_SECONDS", "10")),
            artifact_backend=os.getenv("ARTIFACT_BACKEND", "local").strip().lower(),
            artifact_dir=os.getenv("ARTIFACT_DIR", "completed_pdfs"),
            artifact_one_time_download=_env_bool("ARTIFACT_ONE_TIME_DOWNLOAD"),
            s3_bucket=os.getenv("S3_BUCKET") or None,
            s3_prefix=os.getenv("S3_PREFIX", "artifacts/"),
            aws_region=os.getenv("AWS_REGION", "us-east-1"),
            sendgrid_api_key=os.getenv("SENDGRID_API_KEY") or None,
            email_from=os.getenv("EMAIL_FROM", "no-reply@localhost"),
            processor_timeout_seconds=float(os.getenv("PROCESSOR_TIMEOUT_SECONDS", "15")),
            render_timeout_seconds=float(os.getenv("RENDER_TIMEOUT_SECONDS", "10")),
            email_timeout_seconds=float(os.getenv("EMAIL_TIMEOUT_SECONDS", "10")),
            lock_timeout_seconds=float(os.getenv("LOCK_TIMEOUT_SECONDS", "30")),
            sweeper_enabled=_env_bool("SWEEPER_ENABLED"),
            sweeper_interval_seconds=int(os.getenv("SWEEPER_INTERVAL_SECONDS", "300")),
            pending_order_stale_hours=int(os.getenv("PENDING_ORDER_STALE_HOURS", "72")),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "3000")),
            env=os.getenv("ENV", "development"),
            cors_origins=os.getenv("CORS_ORIGINS", "*").split(","),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )

    def validate(self) -> None:
        """Raise ConfigurationError if the service cannot start."""
        if self.payment_processor not in SUPPORTED_PROCESSORS:
            raise ConfigurationError(
                f"Unknown PAYMENT_PROCESSOR '{self.payment_processor}'. "
                f"Expected one of: {', '.join(SUPPORTED_PROCESSORS)}"
            )
        if self.payment_processor == "mercadopago" and not self.mercadopago_access_token:
            raise ConfigurationError("MERCADOPAGO_ACCESS_TOKEN is not configured")
        if self.payment_processor == "stripe" and not self.stripe_secret_key:
            raise ConfigurationError("STRIPE_SECRET_KEY is not configured")
        if self.artifact_backend not in ("local", "s3"):
            raise ConfigurationError(f"Unknown ARTIFACT_BACKEND '{self.artifact_backend}'")
        if self.artifact_backend == "s3" and not self.s3_bucket:
            raise ConfigurationError("S3_BUCKET is required when ARTIFACT_BACKEND=s3")
        if not self.database_url and self.env != "development":
            # In-memory orders do not survive a restart
            raise ConfigurationError(f"DATABASE_URL is required when ENV={self.env}")

    @property
    def debug(self) -> bool:
        return self.env == "development"

    def summary(self) -> dict:
        """Non-sensitive view for startup logs."""
        return {
            "payment_processor": self.payment_processor,
            "processor_credentials": "present" if (
                self.mercadopago_access_token or self.stripe_secret_key
            ) else "missing",
            "site_url": self.site_url,
            "webhook_url": self.webhook_url,
            "database": "postgres" if self.database_url else "in_memory",
            "artifact_backend": self.artifact_backend,
            "one_time_download": self.artifact_one_time_download,
            "email": "sendgrid" if self.sendgrid_api_key else "disabled",
            "sweeper_enabled": self.sweeper_enabled,
        }
