"""
Application configuration
"""

from typing import Optional
from pydantic_settings import BaseSettings
from pathlib import Path


class Settings(BaseSettings):
    """Application settings"""

    # Logging Settings
    LOG_LEVEL: str = "INFO"

    # Environment
    ENVIRONMENT: str = "development"  # development, staging, production

    # NSDL IndiaBondInfo upstream
    NSDL_BASE_URL: str = "https://www.indiabondinfo.nsdl.com/bds-service/v1/public/bdsinfo"
    NSDL_REFERER: str = "https://www.indiabondinfo.nsdl.com/CBDServices/"

    # NSDL session cookies (rotated by the auto-login collaborator)
    NSDL_COOKIE_NL01: str = ""
    NSDL_COOKIE_NL1E: str = ""

    # Request pacing (milliseconds)
    REQUEST_TIMEOUT: float = 45.0
    REQUEST_DELAY_MS: int = 1200
    JITTER_MAX_MS: int = 600

    # Retry settings
    MAX_RETRIES: int = 3
    BASE_BACKOFF_MS: int = 2500
    BACKOFF_JITTER_MS: int = 1000

    # Circuit breaker
    FAILURE_THRESHOLD: int = 4
    RESET_TIMEOUT_MS: int = 90000
    MONITORING_WINDOW_MS: Optional[int] = None  # None = consecutive-failure counting

    # Sync settings
    SYNC_MAX_CONCURRENCY: int = 2
    LISTED_PAGE_SIZE: int = 100
    MAX_PAGES: int = 2000

    # Scheduler
    BOND_SYNC_INTERVAL_DAYS: int = 12
    BOND_SYNC_TIME: str = "02:00"
    DEEP_SYNC_WEEKDAY: str = "sunday"
    DEEP_SYNC_TIME: str = "03:00"
    BOND_SYNC_TIMEZONE: str = "Asia/Kolkata"
    STARTUP_SYNC_DELAY_SECONDS: int = 15

    # Field Mapping
    FIELD_MAPPING_CONFIG_PATH: str = "./config/field_mappings.yaml"

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def has_session_cookies(self) -> bool:
        """True when both NSDL session cookies are configured"""
        return bool(self.NSDL_COOKIE_NL01 and self.NSDL_COOKIE_NL1E)


# Create global settings instance
settings = Settings()


# Helper function to get absolute path
def get_absolute_path(relative_path: str) -> Path:
    """Convert relative path to absolute path"""
    path = Path(relative_path)
    if path.is_absolute():
        return path
    return Path.cwd() / path
