import os
from pathlib import Path

from apscheduler.triggers.cron import CronTrigger
from pydantic import BaseModel, Field, field_validator

DEFAULT_CRON_SCHEDULE = "0 0 1 * *"  # monthly, 1st day of the month at midnight
DEFAULT_DOWNLOAD_URL = "https://download.maxmind.com/app/geoip_download"


class Settings(BaseModel):
    """Runtime configuration for the GeoPal service.

    Values are normally read from the environment with `Settings.from_env()`;
    tests construct the model directly.
    """

    host: str = "0.0.0.0"
    port: int = Field(default=3000, ge=1, le=65535)
    license_key: str | None = None
    cron_schedule: str = DEFAULT_CRON_SCHEDULE
    data_dir: Path = Path("data")
    download_url: str = DEFAULT_DOWNLOAD_URL
    download_timeout_seconds: float = Field(default=120.0, gt=0)

    @field_validator("license_key", mode="before")
    @classmethod
    def _blank_license_key_is_none(cls, value: str | None) -> str | None:
        """An empty MAXMIND_LICENSE_KEY disables downloads, same as an unset one."""
        if value is None:
            return None
        value_str = str(value).strip()
        return value_str or None

    @field_validator("cron_schedule")
    @classmethod
    def _validate_cron_schedule(cls, value: str) -> str:
        value = value.strip()
        try:
            CronTrigger.from_crontab(value)
        except ValueError as exc:
            raise ValueError(f"cron_schedule must be a valid crontab expression: {exc}") from exc
        return value

    @property
    def has_license_key(self) -> bool:
        return self.license_key is not None

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from process environment variables, falling back to defaults."""
        env = {
            "host": os.getenv("HOST"),
            "port": os.getenv("PORT"),
            "license_key": os.getenv("MAXMIND_LICENSE_KEY"),
            "cron_schedule": os.getenv("CRON_SCHEDULE"),
            "data_dir": os.getenv("DATA_DIR"),
            "download_url": os.getenv("MAXMIND_DOWNLOAD_URL"),
            "download_timeout_seconds": os.getenv("DOWNLOAD_TIMEOUT_SECONDS"),
        }
        return cls(**{key: value for key, value in env.items() if value is not None})
