import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        csrf_secret: str,
        snapshot_window_days: int,
        carry_forward_warn_months: int,
        max_carry_forward_months: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.csrf_secret = csrf_secret
        self.snapshot_window_days = snapshot_window_days
        self.carry_forward_warn_months = carry_forward_warn_months
        self.max_carry_forward_months = max_carry_forward_months


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
        "6f0d3c1a9b4e44c2a8d7e5b1f3c9a2d4e6b8f0a1c3e5d7b9f1a3c5e7d9b1f3a5",
    )
    snapshot_window_days = int(os.getenv("LEDGER_SNAPSHOT_WINDOW_DAYS", "3"))
    carry_forward_warn_months = int(
        os.getenv("LEDGER_CARRY_FORWARD_WARN_MONTHS", "120")
    )
    max_carry_forward_months = int(
        os.getenv("LEDGER_MAX_CARRY_FORWARD_MONTHS", "1200")
    )
    return Settings(
        database_url=database_url,
        timezone=timezone,
        csrf_secret=csrf_secret,
        snapshot_window_days=snapshot_window_days,
        carry_forward_warn_months=carry_forward_warn_months,
        max_carry_forward_months=max_carry_forward_months,
    )
