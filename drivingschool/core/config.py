import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./drivingschool.db")

CORS_ORIGINS = _get_list(os.getenv("CORS_ORIGINS", "http://localhost:5173"))
FRONTEND_BASE_URL = os.getenv("FRONTEND_BASE_URL", "/")

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
SESSION_TTL_MINUTES = int(os.getenv("SESSION_TTL_MINUTES", str(7 * 24 * 60)))
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")
SESSION_COOKIE_SECURE = _get_bool(os.getenv("SESSION_COOKIE_SECURE"), default=True)
OIDC_STATE_TTL_MINUTES = int(os.getenv("OIDC_STATE_TTL_MINUTES", "10"))
OIDC_NONCE_COOKIE_NAME = os.getenv("OIDC_NONCE_COOKIE_NAME", "oidc_nonce")

BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "10"))

OIDC_ISSUER_URL = os.getenv("OIDC_ISSUER_URL", "").rstrip("/")
OIDC_CLIENT_ID = os.getenv("OIDC_CLIENT_ID", "")
OIDC_CLIENT_SECRET = os.getenv("OIDC_CLIENT_SECRET", "")
OIDC_REDIRECT_URI = os.getenv("OIDC_REDIRECT_URI", "http://localhost:8000/api/callback")
OIDC_SCOPES = os.getenv("OIDC_SCOPES", "openid email profile")
OIDC_DISCOVERY_TTL_SECONDS = int(os.getenv("OIDC_DISCOVERY_TTL_SECONDS", "3600"))

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")
STRIPE_API_BASE = os.getenv("STRIPE_API_BASE", "https://api.stripe.com/v1").rstrip("/")
STRIPE_WEBHOOK_TOLERANCE_SECONDS = int(os.getenv("STRIPE_WEBHOOK_TOLERANCE_SECONDS", "300"))
PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "usd")

HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "10"))

DEFAULT_PASSING_PERCENTAGE = int(os.getenv("DEFAULT_PASSING_PERCENTAGE", "70"))
DEFAULT_RANDOM_QUESTION_COUNT = int(os.getenv("DEFAULT_RANDOM_QUESTION_COUNT", "10"))

SCHOOL_NAME = os.getenv("SCHOOL_NAME", "Driving School Academy")


def oidc_enabled() -> bool:
    return bool(OIDC_ISSUER_URL and OIDC_CLIENT_ID)


def payments_enabled() -> bool:
    return bool(STRIPE_SECRET_KEY)


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
