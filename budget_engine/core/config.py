from functools import lru_cache
from pathlib import Path
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment with defaults.

    Environment variable mapping follows pydantic's rules (e.g., APP_NAME, DEBUG, DATA_DIR, DB_FILENAME, ENFORCE_BUDGET_ALLOCATION).
    """

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Basic app metadata
    app_name: str = "Budget Allocation Engine"
    debug: bool = False
    version: str = "0.1.0"

    # Data & persistence
    data_dir: Path = Path("data")
    db_filename: str = "ledger.sqlite3"
    db_path: Optional[Path] = None  # derived if not provided
    db_timeout_seconds: float = 5.0  # sqlite busy timeout for write locks
    storage_retry_attempts: int = 1

    # Approval rules
    admin_role: str = "admin"
    # Reject categories whose allocations would exceed the budget total
    enforce_budget_allocation: bool = True

    # Reporting thresholds (percent of allocation used)
    budget_warn_pct: int = 80
    budget_danger_pct: int = 90
    default_page_size: int = 50
    max_page_size: int = 200

    # Allowed: 'database' (notifications table), 'log' (log line only)
    notification_sink: str = "database"

    def init_post_load(self) -> None:
        """Finalize derived fields and ensure directories exist."""
        if self.db_path is None:
            self.db_path = self.data_dir / self.db_filename
        self.db_path = Path(self.db_path)
        # Ensure persistence directory exists
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        allowed = {"database", "log"}
        if self.notification_sink not in allowed:
            raise ValueError(
                f"Unsupported notification_sink '{self.notification_sink}'. Allowed: {allowed}"
            )
        if not (1 <= self.budget_warn_pct < self.budget_danger_pct <= 100):
            raise ValueError("Invalid budget thresholds: require 1 <= warn < danger <= 100")
        if self.storage_retry_attempts < 0:
            raise ValueError("storage_retry_attempts cannot be negative")


@lru_cache
def get_settings() -> Settings:
    settings = Settings()
    settings.init_post_load()
    return settings
