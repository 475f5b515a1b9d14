"""Application configuration using Pydantic settings."""

from functools import lru_cache
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Literal["development", "production", "test"] = "production"
    version: str = "1.0.0"
    debug: bool = False
    port: int = Field(3190, ge=1, le=65535)

    # Database (sqlite+aiosqlite or postgresql+asyncpg)
    database_url: str = "sqlite+aiosqlite:///./data/health_dashboard.db"

    # Sync schedule
    tz: str = "America/New_York"
    sync_schedule_time: str = Field("10:00", pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    sync_retry_attempts: int = Field(3, ge=0, le=10)
    sync_timeout_seconds: float = Field(30.0, ge=5, le=300)

    # Manual refresh policy
    manual_refresh_max_per_hour: int = Field(3, ge=0, le=20)
    rate_limit_window_minutes: int = Field(60, ge=30, le=1440)
    admin_bypass_rate_limit: bool = True
    buffer_immediate_first_request: bool = True
    burst_protection_enabled: bool = True
    burst_limit_per_minute: int = Field(10, ge=1)
    buffer_sweep_interval_minutes: int = Field(5, ge=1)

    # Caching
    cache_ttl_hours: int = Field(24, ge=1, le=168)
    csv_cache_path: str = "./data/csv_cache"
    csv_cache_max_size_mb: int = Field(500, ge=10, le=5000)

    # Push channel
    ws_heartbeat_interval_seconds: float = Field(30.0, ge=5, le=300)
    ws_max_connections: int = Field(100, ge=10, le=1000)

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_dir: str | None = None

    # API settings
    api_prefix: str = "/api"
    cors_origins: list[str] = ["*"]  # Restrict in production

    # Upstream sources
    nndss_url: str = "https://data.cdc.gov/resource/x9gk-5huc.json"
    nyc_covid_url: str = "https://data.cityofnewyork.us/resource/rc75-m7u3.json"
    delphi_fluview_url: str = "https://api.delphi.cmu.edu/epidata/fluview/"
    wastewater_url: str = "https://health.data.ny.gov/resource/hdxs-icuh.json"
    nys_vaccination_url: str = "https://health.data.ny.gov/resource/xrhr-cy84.json"
    childhood_vaccination_csv_url: str = (
        "https://raw.githubusercontent.com/nychealth/immunization-data/"
        "main/demo/Main_Routine_Vaccine_Demo.csv"
    )
    nyc_news_url: str = "https://www.nyc.gov/site/doh/about/press/recent-press-releases.page"
    nys_news_url: str = "https://info.nystateofhealth.ny.gov/news"
    cdc_rss_url: str = "https://tools.cdc.gov/api/v2/resources/media/132608.rss"

    @field_validator("tz")
    @classmethod
    def _validate_tz(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown time zone: {value}") from e
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.upper() if isinstance(value, str) else value

    @property
    def schedule_hour_minute(self) -> tuple[int, int]:
        """Daily sync time as (hour, minute)."""
        hour, minute = self.sync_schedule_time.split(":")
        return int(hour), int(minute)

    @property
    def csv_cache_max_bytes(self) -> int:
        return self.csv_cache_max_size_mb * 1024 * 1024


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
