import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        secret_key: str,
        token_max_age_hours: int,
        cache_ttl_secs: float,
        cache_purge_secs: float,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.secret_key = secret_key
        self.token_max_age_hours = token_max_age_hours
        self.cache_ttl_secs = cache_ttl_secs
        self.cache_purge_secs = cache_purge_secs


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANCE_TIMEZONE", "UTC")
    secret_key = os.getenv(
        "FINANCE_SECRET_KEY",
        "6f1d0c8e3b9a4e27a5c2d7f08e61b3c94d2a7e5f1b8c06d3e9a4f72c15b8d0e3",
    )
    token_max_age_hours = int(os.getenv("FINANCE_TOKEN_MAX_AGE_HOURS", "24"))
    cache_ttl_secs = float(os.getenv("FINANCE_CACHE_TTL_SECS", "60"))
    cache_purge_secs = float(os.getenv("FINANCE_CACHE_PURGE_SECS", "120"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        secret_key=secret_key,
        token_max_age_hours=token_max_age_hours,
        cache_ttl_secs=cache_ttl_secs,
        cache_purge_secs=cache_purge_secs,
    )
