import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str = "UTC",
        secret_key: str = "dev-only-secret-key",
        token_max_age_secs: int = 7 * 24 * 60 * 60,
        bcrypt_rounds: int = 12,
        aggregation_timeout_secs: float = 5.0,
        aggregation_workers: int = 5,
        max_upload_bytes: int = 10 * 1024 * 1024,
        cookie_secure: bool = False,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.secret_key = secret_key
        self.token_max_age_secs = token_max_age_secs
        self.bcrypt_rounds = bcrypt_rounds
        self.aggregation_timeout_secs = aggregation_timeout_secs
        self.aggregation_workers = aggregation_workers
        self.max_upload_bytes = max_upload_bytes
        self.cookie_secure = cookie_secure


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANCE_TIMEZONE", "UTC")
    secret_key = os.getenv(
        "FINANCE_SECRET_KEY",
        "4f1c9a7e2b8d6053e1a4c7b9d2f08e6a5c3b1d9f7e2a4c6b8d0f1e3a5c7b9d2f",
    )
    token_max_age_secs = int(os.getenv("FINANCE_TOKEN_MAX_AGE_SECS", "604800"))
    bcrypt_rounds = int(os.getenv("FINANCE_BCRYPT_ROUNDS", "12"))
    aggregation_timeout_secs = float(
        os.getenv("FINANCE_AGGREGATION_TIMEOUT_SECS", "5")
    )
    aggregation_workers = int(os.getenv("FINANCE_AGGREGATION_WORKERS", "5"))
    max_upload_bytes = int(os.getenv("FINANCE_MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        secret_key=secret_key,
        token_max_age_secs=token_max_age_secs,
        bcrypt_rounds=bcrypt_rounds,
        aggregation_timeout_secs=aggregation_timeout_secs,
        aggregation_workers=aggregation_workers,
        max_upload_bytes=max_upload_bytes,
        cookie_secure=_env_flag("FINANCE_COOKIE_SECURE"),
    )
