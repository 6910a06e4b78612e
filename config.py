import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

SQLITE_SYNCHRONOUS_MODES = ("OFF", "NORMAL", "FULL", "EXTRA")


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    api_key: str = os.getenv("API_KEY", "super-secret-key")

    # Database settings
    database_file: str = os.getenv("LIBRARY_DB_FILE", "libtrack.db")
    sqlite_busy_timeout: float = float(os.getenv("SQLITE_BUSY_TIMEOUT", "30"))
    # FULL keeps a completed issue/return on disk across power loss
    sqlite_synchronous: str = os.getenv("SQLITE_SYNCHRONOUS", "FULL")
    seed_demo_data: bool = _env_flag("SEED_DEMO_DATA", "True")

    # Application settings
    app_name: str = os.getenv("APP_NAME", "LibTrack Lending Ledger")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    debug: bool = _env_flag("DEBUG", "False")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Dashboard settings
    recent_issues_limit: int = int(os.getenv("RECENT_ISSUES_LIMIT", "5"))

    def __post_init__(self) -> None:
        # interpolated into a PRAGMA, so only the documented modes are accepted
        self.sqlite_synchronous = self.sqlite_synchronous.strip().upper()
        if self.sqlite_synchronous not in SQLITE_SYNCHRONOUS_MODES:
            raise ValueError(
                f"SQLITE_SYNCHRONOUS must be one of {', '.join(SQLITE_SYNCHRONOUS_MODES)}, "
                f"got {self.sqlite_synchronous!r}"
            )


settings = Settings()


def configure_logging(level: Optional[str] = None) -> None:
    """Install a single stream handler on the root logger.

    Safe to call more than once; later calls only adjust the level.
    """
    root = logging.getLogger()
    root.setLevel((level or settings.log_level).upper())
    if any(getattr(h, "_libtrack", False) for h in root.handlers):
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s"))
    handler._libtrack = True  # type: ignore[attr-defined]
    root.addHandler(handler)
