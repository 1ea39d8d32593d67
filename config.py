import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        auth_secret: str,
        token_max_age_secs: int,
        default_page_size: int,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.auth_secret = auth_secret
        self.token_max_age_secs = token_max_age_secs
        self.default_page_size = default_page_size
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("EXPENSES_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("EXPENSES_DATABASE_URL")
    if not database_url:
        default_db = _ensure_data_dir() / "expenses.db"
        database_url = f"sqlite:///{default_db}"
    auth_secret = os.getenv(
        "EXPENSES_AUTH_SECRET",
        "3f9c2d7e18b04a6c95e1d0b7a4c8f2e6d1b9a0c3e5f7182d4c6b8a0e2f4d6c8b",
    )
    token_max_age_secs = int(os.getenv("EXPENSES_TOKEN_MAX_AGE_SECS", "3600"))
    default_page_size = int(os.getenv("EXPENSES_DEFAULT_PAGE_SIZE", "10"))
    log_level = os.getenv("EXPENSES_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        auth_secret=auth_secret,
        token_max_age_secs=token_max_age_secs,
        default_page_size=default_page_size,
        log_level=log_level,
    )
