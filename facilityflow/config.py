import os


def _bool_env(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


class Config:
    BASE_DIR = os.path.dirname(os.path.dirname(__file__))
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_DIR = None if DATABASE_URL else os.path.join(BASE_DIR, "database")
    DB_PATH = DATABASE_URL or os.path.join(DATABASE_DIR, "facilityflow.db")
    DB_AUTO_INIT = _bool_env("DB_AUTO_INIT", True)

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-facilityflow")
    ACCESS_TOKEN_MAX_AGE_SECONDS = _int_env("ACCESS_TOKEN_MAX_AGE_SECONDS", 12 * 60 * 60)
    PUBLIC_BASE_URL = os.environ.get("PUBLIC_BASE_URL", "http://localhost:5000")

    RFQ_INVITE_TTL_DAYS = _int_env("RFQ_INVITE_TTL_DAYS", 14)
    ORDER_INVITE_TTL_DAYS = _int_env("ORDER_INVITE_TTL_DAYS", 7)

    RFQ_NUMBER_PREFIX = os.environ.get("RFQ_NUMBER_PREFIX", "PMRFQ")
    QUOTATION_NUMBER_PREFIX = os.environ.get("QUOTATION_NUMBER_PREFIX", "QUO")
    ORDER_NUMBER_PREFIX = os.environ.get("ORDER_NUMBER_PREFIX", "PMO")
    INVOICE_NUMBER_PREFIX = os.environ.get("INVOICE_NUMBER_PREFIX", "INV")
    SETTINGS_CACHE_TTL_SECONDS = _int_env("SETTINGS_CACHE_TTL_SECONDS", 30)

    UPLOAD_URL_TTL_SECONDS = _int_env("UPLOAD_URL_TTL_SECONDS", 600)
    UPLOAD_FOLDER = os.environ.get("UPLOAD_FOLDER") or os.path.join(BASE_DIR, "uploads")
    MAX_CONTENT_LENGTH = _int_env("MAX_UPLOAD_BYTES", 16 * 1024 * 1024)

    RATE_LIMIT_ENABLED = _bool_env("RATE_LIMIT_ENABLED", True)
    RATE_LIMIT_WINDOW_SECONDS = _int_env("RATE_LIMIT_WINDOW_SECONDS", 60)
    RATE_LIMIT_MAX_REQUESTS = _int_env("RATE_LIMIT_MAX_REQUESTS", 300)
    EXTERNAL_RATE_LIMIT_MAX_REQUESTS = _int_env("EXTERNAL_RATE_LIMIT_MAX_REQUESTS", 30)
    SECURITY_HEADERS_ENABLED = _bool_env("SECURITY_HEADERS_ENABLED", True)

    LOG_JSON = _bool_env("LOG_JSON", True)
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    def __init__(self):
        env = os.environ.get("FLASK_ENV", "development").lower()
        if env == "production" and not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL must be set in production.")
        if env == "production" and self.SECRET_KEY == "dev-secret-facilityflow":
            raise RuntimeError("SECRET_KEY is not safe for production.")
