from __future__ import annotations

import json
import warnings
from decimal import Decimal, InvalidOperation
from typing import Annotated, Any, Dict, List, Mapping, Optional

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

_TRUE_STRINGS = {"1", "true", "yes", "on"}
_FALSE_STRINGS = {"0", "false", "no", "off"}


def _warn_invalid(setting: str, value: Any, fallback: Any) -> None:
    warnings.warn(
        f"{setting}={value!r} is not valid; using {fallback!r} instead.",
        RuntimeWarning,
        stacklevel=2,
    )


def _finite_decimal(raw: Any) -> Optional[Decimal]:
    if isinstance(raw, bool) or raw is None:
        return None
    try:
        value = raw if isinstance(raw, Decimal) else Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        return None
    return value if value.is_finite() else None


def _parse_mapping(value: str) -> Dict[str, str]:
    """Parse `key=value,key=value` into a dict, dropping malformed pairs."""
    parsed: Dict[str, str] = {}
    for chunk in value.split(","):
        if not chunk.strip():
            continue
        key, sep, raw = chunk.partition("=")
        if not sep or not key.strip() or not raw.strip():
            warnings.warn(
                f"Ignoring malformed category override {chunk.strip()!r}.",
                RuntimeWarning,
                stacklevel=2,
            )
            continue
        parsed[key.strip()] = raw.strip()
    return parsed


class Settings(BaseSettings):
    """
    Application settings, loaded from environment variables and/or .env file.
    """

    # Environment settings
    APP_NAME: str = "BloodWatch Alerts"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Database settings
    DATABASE_URL: Optional[str] = None
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "password"
    POSTGRES_DB: str = "bloodwatch"
    POSTGRES_SERVER: Optional[str] = None
    POSTGRES_PORT: int = 5432

    # Celery settings
    CELERY_BROKER_URL: str = "redis://redis:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://redis:6379/0"

    # Observability settings
    SENTRY_DSN: Optional[str] = None

    # Alert thresholds
    ALERT_BASE_CRITICAL_UNITS: Decimal = Decimal("100")
    ALERT_WARNING_MULTIPLIER: Decimal = Decimal("1.2")
    ALERT_CRITICAL_STEP_DOWN_PERCENT: Decimal = Decimal("0.10")
    ALERT_REMINDER_INTERVAL_HOURS: int = 24  # reserved for periodic re-alerts
    ALERT_WORSENING_BUCKET_DELTA: int = 1
    ALERT_SEND_RECOVERY_NOTIFICATION: bool = True
    ALERT_CATEGORY_CRITICAL_UNITS_OVERRIDES: Annotated[
        Dict[str, Decimal], NoDecode
    ] = Field(
        default_factory=dict,
        description="JSON object or comma-delimited key=value critical units",
    )

    # Dispatch
    DISPATCH_MAX_ATTEMPTS: int = 3
    DISPATCH_BACKOFF_SCHEDULE_SECONDS: Annotated[List[float], NoDecode] = Field(
        default_factory=lambda: [0.5, 1.0, 2.0]
    )
    DISPATCH_MAX_CONCURRENCY: int = 4

    # Ingestion loop
    INGESTION_SOURCE_KEYS: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: ["pt-transparencia-sns"]
    )
    INGESTION_INTERVAL_MINUTES: int = 10

    # Notifier channels
    TELEGRAM_BOT_TOKEN: Optional[str] = Field(default=None, repr=False)
    TELEGRAM_API_BASE_URL: str = "https://api.telegram.org"
    NOTIFIER_HTTP_TIMEOUT_SECONDS: float = 10.0

    @property
    def database_url(self) -> str:
        """Resolve the database URL, preferring an explicit DATABASE_URL."""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        if self.POSTGRES_SERVER:
            return f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        return "sqlite:///./bloodwatch.db"

    @property
    def ingestion_interval_seconds(self) -> int:
        minutes = min(max(self.INGESTION_INTERVAL_MINUTES, 1), 24 * 60)
        return minutes * 60

    @classmethod
    def _fallback(cls, info: ValidationInfo, value: Any) -> Any:
        default = cls.model_fields[info.field_name].get_default(
            call_default_factory=True
        )
        _warn_invalid(info.field_name, value, default)
        return default

    @field_validator(
        "ALERT_BASE_CRITICAL_UNITS",
        "ALERT_WARNING_MULTIPLIER",
        "ALERT_CRITICAL_STEP_DOWN_PERCENT",
        mode="before",
    )
    @classmethod
    def _decimal_or_default(cls, value: Any, info: ValidationInfo) -> Any:
        """Unparseable threshold values degrade to the field default."""
        parsed = _finite_decimal(value)
        return parsed if parsed is not None else cls._fallback(info, value)

    @field_validator("NOTIFIER_HTTP_TIMEOUT_SECONDS", mode="before")
    @classmethod
    def _float_or_default(cls, value: Any, info: ValidationInfo) -> Any:
        parsed = _finite_decimal(value)
        return float(parsed) if parsed is not None else cls._fallback(info, value)

    @field_validator(
        "ALERT_REMINDER_INTERVAL_HOURS",
        "ALERT_WORSENING_BUCKET_DELTA",
        "DISPATCH_MAX_ATTEMPTS",
        "DISPATCH_MAX_CONCURRENCY",
        "INGESTION_INTERVAL_MINUTES",
        mode="before",
    )
    @classmethod
    def _int_or_default(cls, value: Any, info: ValidationInfo) -> Any:
        parsed = _finite_decimal(value)
        if parsed is None or parsed != parsed.to_integral_value():
            return cls._fallback(info, value)
        return int(parsed)

    @field_validator("ALERT_SEND_RECOVERY_NOTIFICATION", mode="before")
    @classmethod
    def _bool_or_default(cls, value: Any, info: ValidationInfo) -> Any:
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in _TRUE_STRINGS:
                return True
            if lowered in _FALSE_STRINGS:
                return False
            return cls._fallback(info, value)
        return value

    @field_validator("INGESTION_SOURCE_KEYS", mode="before")
    @classmethod
    def _split_source_keys(cls, value: Any, info: ValidationInfo) -> Any:
        """Allow comma-separated strings for the source keys env var."""
        if isinstance(value, str):
            stripped = value.strip()
            if stripped.startswith("["):
                try:
                    return json.loads(stripped)
                except ValueError:
                    return cls._fallback(info, value)
            return [key.strip() for key in stripped.split(",") if key.strip()]
        return value

    @field_validator("DISPATCH_BACKOFF_SCHEDULE_SECONDS", mode="before")
    @classmethod
    def _split_backoff_schedule(cls, value: Any, info: ValidationInfo) -> Any:
        """Comma-separated or JSON delays; invalid entries are dropped."""
        if isinstance(value, str):
            stripped = value.strip()
            if stripped.startswith("["):
                try:
                    value = json.loads(stripped)
                except ValueError:
                    return cls._fallback(info, value)
            else:
                value = [delay for delay in stripped.split(",") if delay.strip()]
        if not isinstance(value, (list, tuple)):
            return cls._fallback(info, value)

        delays: List[float] = []
        for raw in value:
            delay = _finite_decimal(raw)
            if delay is None or delay < 0:
                warnings.warn(
                    f"Ignoring invalid backoff delay {raw!r}.", RuntimeWarning
                )
                continue
            delays.append(float(delay))
        return delays or cls._fallback(info, value)

    @field_validator("ALERT_CATEGORY_CRITICAL_UNITS_OVERRIDES", mode="before")
    @classmethod
    def _parse_overrides(cls, value: Any, info: ValidationInfo) -> Any:
        """Accept a JSON object or `category=units` pairs; bad entries are dropped."""
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                return {}
            if stripped.startswith("{"):
                try:
                    value = json.loads(stripped)
                except ValueError:
                    return cls._fallback(info, value)
            else:
                value = _parse_mapping(stripped)
        if not isinstance(value, Mapping):
            return cls._fallback(info, value)

        overrides: Dict[str, Decimal] = {}
        for key, raw in value.items():
            units = _finite_decimal(raw)
            if not str(key).strip() or units is None:
                warnings.warn(
                    f"Ignoring invalid category override {key!r}={raw!r}.",
                    RuntimeWarning,
                )
                continue
            overrides[str(key).strip()] = units
        return overrides

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


settings = Settings()
