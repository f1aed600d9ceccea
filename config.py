import os
from functools import lru_cache
from pathlib import Path

DEFAULT_TIMEZONE = "Europe/Berlin"


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        secret_key: str,
        token_max_age_hours: int = 168,
        log_level: str = "INFO",
        cors_origins: tuple[str, ...] = ("*",),
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.secret_key = secret_key
        self.token_max_age_hours = token_max_age_hours
        self.log_level = log_level
        self.cors_origins = cors_origins


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("EXPENSES_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _parse_origins(raw: str) -> tuple[str, ...]:
    origins = tuple(part.strip() for part in raw.split(",") if part.strip())
    return origins or ("*",)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("EXPENSES_DATABASE_URL")
    if not database_url:
        default_db = _ensure_data_dir() / "expenses.db"
        database_url = f"sqlite:///{default_db}"
    timezone = os.getenv("EXPENSES_TIMEZONE", DEFAULT_TIMEZONE)
    secret_key = os.getenv(
        "EXPENSES_SECRET_KEY",
        "5d0c3f1e8a9b47b2a6e4f1c9d2b8e7a0c4f6d1e3b5a7c9e2f4d6b8a1c3e5f7a9",
    )
    token_max_age_hours = int(os.getenv("EXPENSES_TOKEN_MAX_AGE_HOURS", "168"))
    log_level = os.getenv("EXPENSES_LOG_LEVEL", "INFO").upper()
    cors_origins = _parse_origins(os.getenv("EXPENSES_CORS_ORIGINS", "*"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        secret_key=secret_key,
        token_max_age_hours=token_max_age_hours,
        log_level=log_level,
        cors_origins=cors_origins,
    )
