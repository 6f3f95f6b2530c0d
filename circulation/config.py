import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    api_key: str = os.getenv("API_KEY", "super-secret-key")

    # Store settings
    # sqlite: local file (LIBRARY_DB_FILE), rest: PostgREST-compatible backend (STORE_URL)
    store_backend: str = os.getenv("STORE_BACKEND", "sqlite")
    database_file: str = os.getenv("LIBRARY_DB_FILE", "library.db")
    store_url: Optional[str] = os.getenv("STORE_URL")
    store_api_key: Optional[str] = os.getenv("STORE_API_KEY")
    store_timeout: float = float(os.getenv("STORE_TIMEOUT", "10"))

    # Circulation policy
    fine_per_day: Decimal = Decimal(os.getenv("FINE_PER_DAY", "0.50"))
    fine_cap: Decimal = Decimal(os.getenv("FINE_CAP", "25.00"))
    max_renewals: int = int(os.getenv("MAX_RENEWALS", "2"))

    # Membership settings
    membership_term_days: int = int(os.getenv("MEMBERSHIP_TERM_DAYS", "365"))
    membership_number_attempts: int = int(os.getenv("MEMBERSHIP_NUMBER_ATTEMPTS", "10"))

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Library Circulation Desk")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    debug: bool = _flag("DEBUG", "False")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # Pagination
    default_page_size: int = int(os.getenv("DEFAULT_PAGE_SIZE", "50"))
    max_page_size: int = int(os.getenv("MAX_PAGE_SIZE", "500"))


settings = Settings()
