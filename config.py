import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        secret_key: str,
        token_max_age_secs: int,
        log_level: str,
        login_max_attempts: int,
        login_window_secs: int,
        signup_max_attempts: int,
        signup_window_secs: int,
        rate_limit_max_keys: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.secret_key = secret_key
        self.token_max_age_secs = token_max_age_secs
        self.log_level = log_level
        self.login_max_attempts = login_max_attempts
        self.login_window_secs = login_window_secs
        self.signup_max_attempts = signup_max_attempts
        self.signup_window_secs = signup_window_secs
        self.rate_limit_max_keys = rate_limit_max_keys


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _database_url() -> str:
    url = os.getenv("LEDGER_DATABASE_URL")
    if url:
        return url
    return f"sqlite:///{_ensure_data_dir() / 'ledger.db'}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings(
        database_url=_database_url(),
        timezone=os.getenv("LEDGER_TIMEZONE", "Europe/Berlin"),
        secret_key=os.getenv(
            "LEDGER_SECRET_KEY",
            "3f0c1e9a7d5b48c2a6e1f09b8d7c6a5e4f3b2a1908d7c6b5a4f3e2d1c0b9a8f7",
        ),
        token_max_age_secs=int(os.getenv("LEDGER_TOKEN_MAX_AGE_SECS", "86400")),
        log_level=os.getenv("LEDGER_LOG_LEVEL", "INFO").upper(),
        login_max_attempts=int(os.getenv("LEDGER_LOGIN_MAX_ATTEMPTS", "5")),
        login_window_secs=int(os.getenv("LEDGER_LOGIN_WINDOW_SECS", "900")),
        signup_max_attempts=int(os.getenv("LEDGER_SIGNUP_MAX_ATTEMPTS", "3")),
        signup_window_secs=int(os.getenv("LEDGER_SIGNUP_WINDOW_SECS", "3600")),
        rate_limit_max_keys=int(os.getenv("LEDGER_RATE_LIMIT_MAX_KEYS", "500")),
    )
