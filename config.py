import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        log_level: str,
        default_note: str,
        seed_categories: bool,
    ) -> None:
        self.database_url = database_url
        self.log_level = log_level
        self.default_note = default_note
        self.seed_categories = seed_categories


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("MONEY_TRACKER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("MONEY_TRACKER_DATABASE_URL")
    if not database_url:
        default_db = _ensure_data_dir() / "money_tracker.db"
        database_url = f"sqlite:///{default_db}"
    log_level = os.getenv("MONEY_TRACKER_LOG_LEVEL", "INFO").upper()
    default_note = os.getenv("MONEY_TRACKER_DEFAULT_NOTE", "Recurring")
    seed_categories = _env_flag("MONEY_TRACKER_SEED_CATEGORIES", "1")
    return Settings(
        database_url=database_url,
        log_level=log_level,
        default_note=default_note,
        seed_categories=seed_categories,
    )
