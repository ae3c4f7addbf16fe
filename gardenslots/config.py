"""
Configuration management using Pydantic models loaded from YAML.
"""

from pathlib import Path
from typing import Dict, List

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from .domain.models import MissingLocationPolicy, WorkingDay


class WorkingDayConfig(BaseModel):
    """Bookable hours of every day."""
    open_hour: int = 8
    close_hour: int = 20

    @field_validator("open_hour", "close_hour")
    @classmethod
    def validate_hour(cls, v: int) -> int:
        """Validate hour is between 0 and 24."""
        if not 0 <= v <= 24:
            raise ValueError(f"Hour must be between 0 and 24, got {v}")
        return v

    @model_validator(mode="after")
    def validate_hours_order(self) -> "WorkingDayConfig":
        """Ensure the day opens before it closes."""
        if self.close_hour <= self.open_hour:
            raise ValueError("close_hour must be later than open_hour")
        return self

    def to_domain(self) -> WorkingDay:
        return WorkingDay(open_hour=self.open_hour, close_hour=self.close_hour)


class EligibilityConfig(BaseModel):
    default_work_radius_km: float = 20.0
    missing_location_policy: MissingLocationPolicy = MissingLocationPolicy.ELIGIBLE

    @field_validator("default_work_radius_km")
    @classmethod
    def validate_radius(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("default_work_radius_km must be greater than zero")
        return value


class SearchConfig(BaseModel):
    """Defaults for merged-slot and horizon searches."""
    max_days_to_search: int = 14
    max_results: int = 7
    merge_timeout_seconds: float = 10.0

    @field_validator("max_days_to_search", "max_results")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("search limits must be greater than zero")
        return value

    @field_validator("merge_timeout_seconds")
    @classmethod
    def validate_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("merge_timeout_seconds must be greater than zero")
        return value


class RecurringConfig(BaseModel):
    weeks_to_maintain: int = 2
    min_notice_hours: int = 0

    @field_validator("weeks_to_maintain")
    @classmethod
    def validate_weeks(cls, value: int) -> int:
        if not 1 <= value <= 12:
            raise ValueError(f"weeks_to_maintain must be between 1 and 12, got {value}")
        return value

    @field_validator("min_notice_hours")
    @classmethod
    def validate_notice(cls, value: int) -> int:
        if value < 0:
            raise ValueError("min_notice_hours cannot be negative")
        return value


class BookingConfig(BaseModel):
    pending_ttl_hours: int = 24
    trailing_margin_hours: int = 1

    @field_validator("pending_ttl_hours")
    @classmethod
    def validate_ttl(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("pending_ttl_hours must be greater than zero")
        return value

    @field_validator("trailing_margin_hours")
    @classmethod
    def validate_margin(cls, value: int) -> int:
        if value < 0:
            raise ValueError("trailing_margin_hours cannot be negative")
        return value


class StorageConfig(BaseModel):
    backend: str = "memory"
    url: str = ""
    api_key: str = ""
    timeout_seconds: float = 10.0
    data_file: Path | None = None

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, value: str) -> str:
        value = value.lower()
        if value not in ("memory", "rest"):
            raise ValueError(f"storage backend must be 'memory' or 'rest', got '{value}'")
        return value

    @model_validator(mode="after")
    def validate_rest_settings(self) -> "StorageConfig":
        if self.backend == "rest" and not (self.url and self.api_key):
            raise ValueError("rest storage requires url and api_key")
        return self


class GeocodingConfig(BaseModel):
    provider: str = "static"
    api_key: str = ""
    timeout_seconds: float = 10.0
    region: str = "es"
    static_locations: Dict[str, List[float]] = Field(default_factory=dict)

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, value: str) -> str:
        value = value.lower()
        if value not in ("google", "static"):
            raise ValueError(f"geocoding provider must be 'google' or 'static', got '{value}'")
        return value

    @field_validator("static_locations")
    @classmethod
    def validate_locations(cls, value: Dict[str, List[float]]) -> Dict[str, List[float]]:
        for address, coords in value.items():
            if len(coords) != 2:
                raise ValueError(f"Location for '{address}' must be [lat, lng]")
        return value

    @model_validator(mode="after")
    def validate_google_key(self) -> "GeocodingConfig":
        if self.provider == "google" and not self.api_key:
            raise ValueError("google geocoding requires api_key")
        return self


class AppConfig(BaseModel):
    """Application configuration."""
    timezone: str = "Europe/Madrid"
    working_day: WorkingDayConfig = Field(default_factory=WorkingDayConfig)
    eligibility: EligibilityConfig = Field(default_factory=EligibilityConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    recurring: RecurringConfig = Field(default_factory=RecurringConfig)
    bookings: BookingConfig = Field(default_factory=BookingConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    geocoding: GeocodingConfig = Field(default_factory=GeocodingConfig)

    @classmethod
    def load_from_yaml(cls, config_path: Path) -> "AppConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to the YAML config file

        Returns:
            AppConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create a config.yaml file. See config.example.yaml for reference."
            )

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError("Config file must contain a mapping at the root level.")

        config = cls(**data)

        # Relative fixture paths are resolved against the config file
        data_file = config.storage.data_file
        if data_file is not None and not data_file.is_absolute():
            config.storage.data_file = (config_path.parent / data_file).resolve()

        return config


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    # Look for config.yaml in current directory
    current_dir = Path.cwd()
    config_path = current_dir / "config.yaml"

    if not config_path.exists():
        # Try in the project root (parent of the package)
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config.yaml"

    return config_path
