import os
from dataclasses import dataclass, field
from typing import List
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "3000"))

    # Database settings
    data_file: str = os.getenv("LIBRARY_DB_FILE", "library.db")
    database_busy_timeout: float = float(os.getenv("DATABASE_BUSY_TIMEOUT", "30"))

    # Remote catalog (Pyxis) settings
    catalog_base_url: str = os.getenv(
        "CATALOG_BASE_URL",
        "https://pyxis.knu.ac.kr/pyxis-api/1/collections/1/search"
    )
    catalog_timeout: float = float(os.getenv("CATALOG_TIMEOUT", "10"))
    catalog_max_retries: int = int(os.getenv("CATALOG_MAX_RETRIES", "3"))
    catalog_backoff_seconds: float = float(os.getenv("CATALOG_BACKOFF_SECONDS", "1.0"))
    # The Pyxis host has historically served an incomplete certificate chain
    catalog_verify_ssl: bool = _env_bool("CATALOG_VERIFY_SSL", "False")

    # Ingestion settings
    ingest_page_size: int = int(os.getenv("INGEST_PAGE_SIZE", "20"))
    ingest_concurrency: int = int(os.getenv("INGEST_CONCURRENCY", "5"))
    ingest_keywords: List[str] = field(
        default_factory=lambda: _env_list("INGEST_KEYWORDS", "0,1,2,3,4,5,6,7,8,9")
    )

    # Lending rules
    max_reservations: int = int(os.getenv("MAX_RESERVATIONS", "3"))
    loan_days: int = int(os.getenv("LOAN_DAYS", "7"))

    # Query caps
    search_limit: int = int(os.getenv("SEARCH_LIMIT", "20"))

    # Normalization sentinels for records missing volume data
    no_call_number: str = os.getenv("NO_CALL_NUMBER", "청구기호 없음")
    default_location: str = os.getenv("DEFAULT_LOCATION", "도서관")

    # Static front-end directory served by the API when present
    static_dir: str = os.getenv("STATIC_DIR", "public")

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Pyxis Library")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    debug: bool = _env_bool("DEBUG", "False")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
