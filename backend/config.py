"""Runtime configuration loaded from the environment (backend/.env in development).

Stripe keys are mandatory: the app refuses to start without them instead of
failing on the first checkout.
"""
import os
import logging
from pathlib import Path
from typing import List
from dotenv import load_dotenv

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger(__name__)

REQUIRED_STRIPE_VARS = (
    "STRIPE_SECRET_KEY",
    "STRIPE_WEBHOOK_SECRET",
    "STRIPE_PUBLISHABLE_KEY",
)


class ConfigurationError(RuntimeError):
    """Raised at startup when required configuration is missing."""
    pass


def _env(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def get_stripe_secret_key() -> str:
    return _env("STRIPE_SECRET_KEY")


def get_stripe_webhook_secret() -> str:
    return _env("STRIPE_WEBHOOK_SECRET")


def get_stripe_publishable_key() -> str:
    return _env("STRIPE_PUBLISHABLE_KEY")


def get_frontend_url() -> str:
    return _env("FRONTEND_URL", "http://localhost:3000").rstrip("/")


def get_public_api_url() -> str:
    return _env("PUBLIC_API_URL", "http://localhost:8000").rstrip("/")


def get_cors_origins() -> List[str]:
    return [o.strip() for o in _env("CORS_ORIGINS", "*").split(",") if o.strip()]


def get_payment_currency() -> str:
    return _env("PAYMENT_CURRENCY", "usd").lower()


def get_wizard_session_ttl_hours() -> int:
    try:
        return int(_env("WIZARD_SESSION_TTL_HOURS", "24"))
    except ValueError:
        logger.warning("WIZARD_SESSION_TTL_HOURS is not an integer, using 24")
        return 24


def get_password_reset_ttl_minutes() -> int:
    try:
        return int(_env("PASSWORD_RESET_TTL_MINUTES", "60"))
    except ValueError:
        logger.warning("PASSWORD_RESET_TTL_MINUTES is not an integer, using 60")
        return 60


def password_reset_links_logged() -> bool:
    """Development only: write reset links to the log when no mailer is wired up."""
    return _env("PASSWORD_RESET_LOG_LINKS").lower() == "true"


def admin_signup_enabled() -> bool:
    return _env("ADMIN_SIGNUP_ENABLED").lower() == "true"


def validate_required_config() -> None:
    """Fail fast when a required secret is absent."""
    missing = [name for name in REQUIRED_STRIPE_VARS if not _env(name)]
    if missing:
        raise ConfigurationError(
            f"Missing required environment variables: {', '.join(missing)}"
        )
    mode = "test" if get_stripe_secret_key().startswith("sk_test_") else "live"
    logger.info("STRIPE_MODE = %s (from Stripe key prefix)", mode)
