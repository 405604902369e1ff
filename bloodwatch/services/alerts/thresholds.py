"""
Threshold profile resolution for the low-stock rule.

Every input is clamped to a safe positive range, so resolution never fails:
bad configuration degrades to defaults.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from bloodwatch.services.alerts.catalogs import (
    DEFAULT_PRIORITY_CATALOG,
    OVERALL_CATEGORY,
    PriorityCatalog,
)
from bloodwatch.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_BASE_CRITICAL_UNITS = Decimal("100")
MIN_WARNING_MULTIPLIER = Decimal("1.01")
MAX_WARNING_MULTIPLIER = Decimal("10")
MIN_STEP_DOWN_PERCENT = Decimal("0.01")
MAX_STEP_DOWN_PERCENT = Decimal("1")
MIN_STEP_DOWN_UNITS = Decimal("1")


def _as_decimal(value: Any, fallback: Decimal) -> Decimal:
    if value is None:
        return fallback
    try:
        parsed = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        logger.warning("threshold_value_invalid", value=str(value))
        return fallback
    return parsed if parsed.is_finite() else fallback


def _clamp(value: Decimal, minimum: Decimal, maximum: Decimal) -> Decimal:
    return min(maximum, max(minimum, value))


def _positive_or(value: Decimal, fallback: Decimal) -> Decimal:
    return value if value > 0 else fallback


@dataclass(frozen=True)
class ThresholdConfig:
    """Raw threshold configuration, before clamping."""

    base_critical_units: Decimal = DEFAULT_BASE_CRITICAL_UNITS
    warning_multiplier: Decimal = Decimal("1.2")
    critical_step_down_percent: Decimal = Decimal("0.10")
    category_overrides: Mapping[str, Decimal] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings: Any) -> "ThresholdConfig":
        overrides = {}
        for key, raw in (settings.ALERT_CATEGORY_CRITICAL_UNITS_OVERRIDES or {}).items():
            overrides[str(key).strip().lower()] = _as_decimal(raw, Decimal("0"))
        return cls(
            base_critical_units=_as_decimal(
                settings.ALERT_BASE_CRITICAL_UNITS, DEFAULT_BASE_CRITICAL_UNITS
            ),
            warning_multiplier=_as_decimal(
                settings.ALERT_WARNING_MULTIPLIER, Decimal("1.2")
            ),
            critical_step_down_percent=_as_decimal(
                settings.ALERT_CRITICAL_STEP_DOWN_PERCENT, Decimal("0.10")
            ),
            category_overrides=overrides,
        )


@dataclass(frozen=True)
class ThresholdProfile:
    critical_units: Decimal
    warning_units: Decimal
    step_down_units: Decimal
    priority_weight: Decimal
    has_override: bool = False


class ThresholdProfileResolver:
    """Computes critical/warning/step-down units per category."""

    def __init__(
        self,
        config: Optional[ThresholdConfig] = None,
        priorities: PriorityCatalog = DEFAULT_PRIORITY_CATALOG,
    ):
        self.config = config or ThresholdConfig()
        self.priorities = priorities

    def resolve(self, category_key: Optional[str]) -> ThresholdProfile:
        key = (category_key or "").strip() or OVERALL_CATEGORY
        config = self.config

        base_critical = _positive_or(
            _as_decimal(config.base_critical_units, DEFAULT_BASE_CRITICAL_UNITS),
            DEFAULT_BASE_CRITICAL_UNITS,
        )
        warning_multiplier = _clamp(
            _as_decimal(config.warning_multiplier, Decimal("1.2")),
            MIN_WARNING_MULTIPLIER,
            MAX_WARNING_MULTIPLIER,
        )
        step_down_percent = _clamp(
            _as_decimal(config.critical_step_down_percent, Decimal("0.10")),
            MIN_STEP_DOWN_PERCENT,
            MAX_STEP_DOWN_PERCENT,
        )

        weight = self.priorities.weight(key)
        override = _as_decimal(
            _lookup_override(config.category_overrides, key), Decimal("0")
        )
        has_override = override > 0
        critical_units = override if has_override else base_critical * weight
        critical_units = _positive_or(critical_units, base_critical)

        return ThresholdProfile(
            critical_units=critical_units,
            warning_units=critical_units * warning_multiplier,
            step_down_units=max(critical_units * step_down_percent, MIN_STEP_DOWN_UNITS),
            priority_weight=weight,
            has_override=has_override,
        )


def _lookup_override(overrides: Mapping[str, Any], key: str) -> Any:
    if key in overrides:
        return overrides[key]
    lowered = key.lower()
    for candidate, value in overrides.items():
        if str(candidate).strip().lower() == lowered:
            return value
    return None
