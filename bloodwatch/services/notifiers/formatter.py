"""
Channel-neutral message formatting.

Builds the title, description and labelled fields for an event; each
channel only decides how to lay them out.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Tuple

from bloodwatch.services.contracts import (
    KIND_CRITICAL_ALERT,
    KIND_CRITICAL_WORSENING,
    KIND_RECOVERY,
    SIGNAL_CRITICAL_ACTIVE,
    SIGNAL_RECOVERY,
    TRANSITION_NON_NORMAL_PRESENCE,
    TRANSITION_WORSENED,
    DispatchEvent,
    ensure_utc,
    format_decimal,
)

COLOR_RECOVERY = 3066993
COLOR_ALERT = 15158332

_BLOOD_GROUP_PREFIX = "blood-group-"
_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M UTC"


@dataclass(frozen=True)
class FormattedMessage:
    title: str
    description: str
    category_label: str
    region_label: str
    source_label: str
    captured_at_label: str
    previous_label: str
    current_label: str
    change_summary: str
    color: int

    def fields(self) -> List[Tuple[str, str, bool]]:
        """(name, value, inline) triples in display order."""
        return [
            ("Blood group", self.category_label, True),
            ("Region", self.region_label, False),
            ("Current", self.current_label, True),
            ("Previous", self.previous_label, True),
            ("Change", self.change_summary, False),
            ("Source", self.source_label, False),
            ("Captured at", self.captured_at_label, False),
        ]


def friendly_category_label(category_key: Optional[str]) -> str:
    """`blood-group-o-minus` -> `O-`; other keys are returned unchanged."""
    if not category_key or not category_key.strip():
        return "Unknown"
    normalized = category_key.strip().lower()
    if not normalized.startswith(_BLOOD_GROUP_PREFIX):
        return category_key
    suffix = normalized[len(_BLOOD_GROUP_PREFIX) :]
    suffix = suffix.replace("-minus", "-").replace("-plus", "+")
    return suffix.upper()


def _units_label(value: Optional[Decimal], unit: str) -> Optional[str]:
    text = format_decimal(value)
    return f"{text} {unit}" if text is not None else None


def build_message(event: DispatchEvent) -> FormattedMessage:
    payload = event.payload
    category_label = friendly_category_label(event.category.key)
    region_label = event.region.display_name or event.region.key or "Unknown region"
    captured_at = ensure_utc(payload.captured_at or event.created_at)

    title, description, color = _template(event, category_label, region_label)

    if payload.current_status_key is not None:
        previous_label = payload.previous_status_label or "Unknown"
        current_label = payload.current_status_label or "Unknown"
    else:
        unit = event.category.unit
        previous_label = _units_label(payload.previous_units, unit) or "Unknown"
        current_label = _units_label(payload.current_units, unit) or "Unknown"
        if payload.current_critical_bucket is not None:
            current_label = f"{current_label} (level {payload.current_critical_bucket})"

    return FormattedMessage(
        title=title,
        description=description,
        category_label=category_label,
        region_label=region_label,
        source_label=event.source.name or event.source.adapter_key,
        captured_at_label=captured_at.strftime(_TIMESTAMP_FORMAT),
        previous_label=previous_label,
        current_label=current_label,
        change_summary=f"{previous_label} -> {current_label}",
        color=color,
    )


def _template(
    event: DispatchEvent, category_label: str, region_label: str
) -> Tuple[str, str, int]:
    payload = event.payload
    kind = event.notification_kind

    if payload.signal == SIGNAL_RECOVERY or kind == KIND_RECOVERY:
        return (
            "Reserve status recovered",
            f"{category_label} returned to normal in {region_label}.",
            COLOR_RECOVERY,
        )

    if kind == KIND_CRITICAL_WORSENING:
        return (
            "Critical reserve worsening",
            f"{category_label} dropped further below the critical level in {region_label}.",
            COLOR_ALERT,
        )

    if payload.signal == SIGNAL_CRITICAL_ACTIVE or kind == KIND_CRITICAL_ALERT:
        critical = format_decimal(payload.critical_units)
        threshold = f" (threshold {critical} {event.category.unit})" if critical else ""
        return (
            "Critical reserve level",
            f"{category_label} is at a critical level in {region_label}{threshold}.",
            COLOR_ALERT,
        )

    if payload.transition_kind == TRANSITION_WORSENED:
        return (
            "Reserve status worsened",
            f"{category_label} status worsened in {region_label}.",
            COLOR_ALERT,
        )

    if payload.transition_kind == TRANSITION_NON_NORMAL_PRESENCE:
        return (
            "Reserve status alert",
            f"{category_label} is currently in a non-normal status in {region_label}.",
            COLOR_ALERT,
        )

    return (
        "Reserve status alert",
        f"{category_label} entered a non-normal status in {region_label}.",
        COLOR_ALERT,
    )
