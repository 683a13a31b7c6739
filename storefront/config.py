import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Force-load .env from the repository root
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"


@dataclass(frozen=True)
class StripeSettings:
    secret: str
    key: str = ""
    currency: str = "eur"


@dataclass(frozen=True)
class SmtpSettings:
    host: str = "localhost"
    port: int = 587
    username: Optional[str] = None
    password: Optional[str] = None
    use_tls: bool = True
    timeout: float = 10.0


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, built once at startup and never mutated."""

    database_url: str
    stripe: StripeSettings
    smtp: SmtpSettings = field(default_factory=SmtpSettings)
    secret_key: str = "change-me"
    frontend_url: str = "http://localhost:4000"
    mail_from: str = "info@widgets.com"
    invoice_dir: Path = Path("./invoices")
    token_ttl_hours: int = 24
    reset_link_ttl_minutes: int = 60
    log_level: str = "INFO"


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_settings(env_path: Path = ENV_PATH) -> Settings:
    load_dotenv(dotenv_path=env_path)

    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        raise RuntimeError("DATABASE_URL is not set. Check your .env file.")

    stripe_settings = StripeSettings(
        secret=os.getenv("STRIPE_SECRET_KEY", ""),
        key=os.getenv("STRIPE_KEY", ""),
        currency=os.getenv("STRIPE_CURRENCY", "eur"),
    )
    smtp_settings = SmtpSettings(
        host=os.getenv("SMTP_HOST", "localhost"),
        port=int(os.getenv("SMTP_PORT", "587")),
        username=os.getenv("SMTP_USERNAME") or None,
        password=os.getenv("SMTP_PASSWORD") or None,
        use_tls=_as_bool(os.getenv("SMTP_USE_TLS", "true")),
        timeout=float(os.getenv("SMTP_TIMEOUT", "10")),
    )

    return Settings(
        database_url=database_url,
        stripe=stripe_settings,
        smtp=smtp_settings,
        secret_key=os.getenv("SECRET_KEY", "change-me"),
        frontend_url=os.getenv("FRONTEND_URL", "http://localhost:4000").rstrip("/"),
        mail_from=os.getenv("MAIL_FROM", "info@widgets.com"),
        invoice_dir=Path(os.getenv("INVOICE_DIR", "./invoices")),
        token_ttl_hours=int(os.getenv("TOKEN_TTL_HOURS", "24")),
        reset_link_ttl_minutes=int(os.getenv("RESET_LINK_TTL_MINUTES", "60")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
