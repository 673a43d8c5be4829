import os
from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from services.trauma_engine.definitions import DEFAULT_TRAUMA_TYPE, TraumaType
from services.trauma_engine.loader import DEFAULT_CATALOG_PATH

# Load .env file if it exists, for local development
# In production, environment variables should be set directly.
if os.path.exists(".env"):
    from dotenv import load_dotenv
    load_dotenv()


class TraumaEngineSettings(BaseSettings):
    catalog_path: Path = DEFAULT_CATALOG_PATH
    default_trauma_type: TraumaType = DEFAULT_TRAUMA_TYPE

    store_backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379/0"
    key_prefix: str = "voidbloom:"

    jitter_min: float = 0.05
    jitter_max: float = 0.10
    baseline_min: float = 0.35
    baseline_max: float = 0.85

    auto_advance_missing: bool = True
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix='TRAUMA_')

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.upper()

    @model_validator(mode="after")
    def _check_ranges(self) -> "TraumaEngineSettings":
        if self.jitter_min > self.jitter_max:
            raise ValueError("jitter_min must not exceed jitter_max")
        if not 0.0 <= self.baseline_min <= self.baseline_max <= 1.0:
            raise ValueError("baseline range must satisfy 0 <= baseline_min <= baseline_max <= 1")
        return self

    @property
    def jitter_range(self):
        return (self.jitter_min, self.jitter_max)

    @property
    def baseline_range(self):
        return (self.baseline_min, self.baseline_max)


# Instantiate settings
engine_settings = TraumaEngineSettings()
