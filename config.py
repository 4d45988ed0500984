import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        csrf_secret: str,
        fx_primary_url: str,
        fx_fallback_url: str,
        fx_timeout_secs: float,
        fx_refresh_hours: int,
        import_max_bytes: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.csrf_secret = csrf_secret
        self.fx_primary_url = fx_primary_url
        self.fx_fallback_url = fx_fallback_url
        self.fx_timeout_secs = fx_timeout_secs
        self.fx_refresh_hours = fx_refresh_hours
        self.import_max_bytes = import_max_bytes


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGER_TIMEZONE", "Asia/Tokyo")
    csrf_secret = os.getenv(
        "LEDGER_CSRF_SECRET",
        "3f0c2a9d8e41b7c65d2e90a1f4b83c7e6d5a2b19c08f7e6d4c3b2a1908f7e6d5",
    )
    # {base} is substituted with the base currency code
    fx_primary_url = os.getenv(
        "LEDGER_FX_PRIMARY_URL", "https://api.exchangerate-api.com/v4/latest/{base}"
    )
    fx_fallback_url = os.getenv(
        "LEDGER_FX_FALLBACK_URL", "https://api.exchangerate.host/latest?base={base}"
    )
    fx_timeout_secs = float(os.getenv("LEDGER_FX_TIMEOUT_SECS", "5"))
    fx_refresh_hours = int(os.getenv("LEDGER_FX_REFRESH_HOURS", "12"))
    import_max_bytes = int(os.getenv("LEDGER_IMPORT_MAX_BYTES", str(5 * 1024 * 1024)))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        csrf_secret=csrf_secret,
        fx_primary_url=fx_primary_url,
        fx_fallback_url=fx_fallback_url,
        fx_timeout_secs=fx_timeout_secs,
        fx_refresh_hours=fx_refresh_hours,
        import_max_bytes=import_max_bytes,
    )
