import json
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "work-orders"
    app_env: Literal["dev", "prod"] = Field("prod")
    testing: bool = Field(False)
    log_level: str = Field("INFO")
    cors_origins_raw: str | None = Field(None, validation_alias="cors_origins")
    strict_cors: bool = Field(False)
    database_url: str = Field("sqlite+aiosqlite:///./work_orders.db")
    database_pool_size: int = Field(5)
    database_max_overflow: int = Field(5)
    database_pool_timeout_seconds: float = Field(30.0)
    database_statement_timeout_ms: int = Field(5000)
    principal_id_header: str = Field("X-Principal-Id")
    order_number_prefix: str = Field("WO")
    order_number_max_attempts: int = Field(5)
    regular_order_photo_limit: int = Field(15)
    post_construction_photo_limit: int = Field(50)
    daily_report_min_chars: int = Field(10)
    daily_report_max_chars: int = Field(2000)
    cancellation_default_reason: str = Field("No reason given")
    outbox_max_attempts: int = Field(5)
    outbox_base_backoff_seconds: float = Field(30.0)
    job_outbox_batch_size: int = Field(50)
    metrics_enabled: bool = Field(True)
    metrics_token: str | None = Field(None)

    model_config = SettingsConfigDict(env_file=".env", enable_decoding=False)

    @field_validator("cors_origins_raw", mode="before")
    @classmethod
    def normalize_list_raw(cls, value: object) -> str | None:
        return cls._normalize_raw_list(value)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError("log_level must be one of DEBUG, INFO, WARNING, ERROR, CRITICAL")
        return normalized

    @field_validator("order_number_prefix")
    @classmethod
    def validate_order_number_prefix(cls, value: str) -> str:
        normalized = value.strip().upper()
        if not normalized or not normalized.isalnum():
            raise ValueError("order_number_prefix must be a non-empty alphanumeric string")
        return normalized

    @field_validator(
        "order_number_max_attempts",
        "regular_order_photo_limit",
        "post_construction_photo_limit",
        "outbox_max_attempts",
        "job_outbox_batch_size",
    )
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("value must be positive")
        return value

    @model_validator(mode="after")
    def validate_report_bounds(self) -> "Settings":
        if self.daily_report_min_chars < 0 or self.daily_report_max_chars < self.daily_report_min_chars:
            raise ValueError("daily_report_max_chars must be >= daily_report_min_chars >= 0")
        return self

    @model_validator(mode="after")
    def validate_prod_settings(self) -> "Settings":
        if self.app_env != "prod":
            return self

        if self.strict_cors:
            if not self.cors_origins:
                raise ValueError("STRICT_CORS=true in prod requires explicit CORS_ORIGINS")
            if any(origin == "*" for origin in self.cors_origins):
                raise ValueError(
                    "STRICT_CORS=true in prod does not allow wildcard CORS_ORIGINS entries"
                )

        if self.metrics_enabled and (not self.metrics_token or not self.metrics_token.strip()):
            raise ValueError("METRICS_TOKEN is required when METRICS_ENABLED=true in prod")

        if self.testing:
            raise ValueError("APP_ENV=prod disables testing mode")

        return self

    @property
    def cors_origins(self) -> list[str]:
        return self._parse_list(self.cors_origins_raw)

    @cors_origins.setter
    def cors_origins(self, value: list[str] | str | None) -> None:
        self.cors_origins_raw = self._normalize_raw_list(value)

    def photo_limit_for(self, order_type: str) -> int:
        if order_type == "regular":
            return self.regular_order_photo_limit
        return self.post_construction_photo_limit

    @staticmethod
    def _normalize_raw_list(value: object) -> str | None:
        if value is None:
            return None
        if isinstance(value, str):
            return value
        if isinstance(value, list):
            return json.dumps(value)
        return str(value)

    @staticmethod
    def _parse_list(raw: str | None) -> list[str]:
        if raw is None:
            return []
        stripped = raw.strip()
        if not stripped:
            return []
        if stripped.startswith("["):
            try:
                parsed = json.loads(stripped)
            except json.JSONDecodeError:
                parsed = None
            if isinstance(parsed, list):
                return [str(item).strip() for item in parsed if str(item).strip()]
        return [item.strip() for item in stripped.split(",") if item.strip()]


settings = Settings()
