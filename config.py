import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        log_level: str,
        templates_dir: str,
        max_import_bytes: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.log_level = log_level
        self.templates_dir = templates_dir
        self.max_import_bytes = max_import_bytes


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGER_TIMEZONE", "UTC")
    log_level = os.getenv("LEDGER_LOG_LEVEL", "INFO").upper()
    templates_dir = os.getenv(
        "LEDGER_TEMPLATES_DIR", str(Path(__file__).resolve().parent / "templates")
    )
    max_import_bytes = int(os.getenv("LEDGER_MAX_IMPORT_BYTES", str(5 * 1024 * 1024)))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        log_level=log_level,
        templates_dir=templates_dir,
        max_import_bytes=max_import_bytes,
    )
