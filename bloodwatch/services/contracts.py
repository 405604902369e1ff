"""
Data contracts shared by the rules, the ingestion cycle and the dispatcher.

Snapshots are produced by adapters and passed by value; `EventPayload` is the
tagged payload persisted as JSON on every event, keyed by rule and signal.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

# Signals
SIGNAL_CRITICAL_ACTIVE = "critical-active"
SIGNAL_STATUS_ALERT = "status-alert"
SIGNAL_RECOVERY = "recovery"
SIGNAL_UNKNOWN = "unknown"

# Transition kinds
TRANSITION_INITIAL_CRITICAL = "initial-critical"
TRANSITION_ENTERED_CRITICAL = "entered-critical"
TRANSITION_STILL_CRITICAL = "still-critical"
TRANSITION_RECOVERED_FROM_CRITICAL = "recovered-from-critical"
TRANSITION_ENTERED_NON_NORMAL = "entered-non-normal"
TRANSITION_WORSENED = "worsened"
TRANSITION_NON_NORMAL_PRESENCE = "non-normal-presence"
TRANSITION_RECOVERED_TO_NORMAL = "recovered-to-normal"
TRANSITION_UNKNOWN = "unknown"

# Transitions that mean "still abnormal, nothing new"
STEADY_STATE_TRANSITIONS = frozenset(
    {TRANSITION_STILL_CRITICAL, TRANSITION_NON_NORMAL_PRESENCE}
)

# Notification kinds chosen per subscription at dispatch time
KIND_CRITICAL_ALERT = "critical-alert"
KIND_CRITICAL_WORSENING = "critical-worsening"
KIND_STATUS_ALERT = "status-alert"
KIND_RECOVERY = "recovery"


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo) and convert others."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_decimal(value: Any) -> Optional[Decimal]:
    """Best-effort Decimal conversion; None for anything unparseable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    try:
        parsed = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return parsed if parsed.is_finite() else None


def format_decimal(value: Optional[Decimal]) -> Optional[str]:
    """Canonical text for a Decimal so 90, 90.0 and 90.00 compare equal."""
    if value is None:
        return None
    normalized = value.normalize()
    if normalized == normalized.to_integral_value():
        return str(normalized.quantize(Decimal(1)))
    return format(normalized, "f")


@dataclass(frozen=True)
class SourceRef:
    adapter_key: str
    name: str


@dataclass(frozen=True)
class RegionRef:
    key: str
    display_name: str


@dataclass(frozen=True)
class Category:
    key: str
    label: str
    unit: str = "units"


@dataclass(frozen=True)
class SnapshotItem:
    """
    One (region, category) observation.

    Sources populate the numeric value, the categorical status, or both.
    """

    region: RegionRef
    category: Category
    value: Optional[Decimal] = None
    status_key: Optional[str] = None
    status_label: Optional[str] = None

    @property
    def unit(self) -> str:
        return self.category.unit

    @property
    def pair_key(self) -> Tuple[str, str]:
        return (self.region.key, self.category.key)


@dataclass(frozen=True)
class Snapshot:
    """Immutable point-in-time read of every observation from one source."""

    source: SourceRef
    captured_at: datetime
    items: Tuple[SnapshotItem, ...] = ()
    reference_date: Optional[date] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "items", tuple(self.items))
        object.__setattr__(self, "captured_at", ensure_utc(self.captured_at))

    def index(self) -> Dict[Tuple[str, str], SnapshotItem]:
        """Items keyed by (region key, category key); the last duplicate wins."""
        return {item.pair_key: item for item in self.items}

    def ordered_items(self) -> Tuple[SnapshotItem, ...]:
        return tuple(sorted(self.items, key=lambda item: item.pair_key))


# camelCase names used in the persisted JSON
_JSON_NAMES: Dict[str, str] = {
    "source": "source",
    "region": "region",
    "category": "metric",
    "signal": "signal",
    "transition_kind": "transitionKind",
    "captured_at": "capturedAtUtc",
    "reference_date": "referenceDate",
    "previous_units": "previousUnits",
    "current_units": "currentUnits",
    "critical_units": "criticalUnits",
    "warning_units": "warningUnits",
    "step_down_units": "stepDownUnits",
    "previous_state": "previousState",
    "current_state": "currentState",
    "previous_critical_bucket": "previousCriticalBucket",
    "current_critical_bucket": "currentCriticalBucket",
    "previous_status_key": "previousStatusKey",
    "previous_status_label": "previousStatusLabel",
    "current_status_key": "currentStatusKey",
    "current_status_label": "currentStatusLabel",
    "notification_kind": "notificationKind",
}

_DECIMAL_FIELDS = frozenset(
    {
        "previous_units",
        "current_units",
        "critical_units",
        "warning_units",
        "step_down_units",
    }
)
_INT_FIELDS = frozenset({"previous_critical_bucket", "current_critical_bucket"})


@dataclass(frozen=True)
class EventPayload:
    """
    Rule-specific transition detail carried by an event.

    Numeric fields are filled by the low-stock rule, status fields by the
    status-transition rule; `signal` and `transition_kind` are always set.
    """

    signal: str = SIGNAL_UNKNOWN
    transition_kind: str = TRANSITION_UNKNOWN
    source: Optional[str] = None
    region: Optional[str] = None
    category: Optional[str] = None
    captured_at: Optional[datetime] = None
    reference_date: Optional[date] = None
    previous_units: Optional[Decimal] = None
    current_units: Optional[Decimal] = None
    critical_units: Optional[Decimal] = None
    warning_units: Optional[Decimal] = None
    step_down_units: Optional[Decimal] = None
    previous_state: Optional[str] = None
    current_state: Optional[str] = None
    previous_critical_bucket: Optional[int] = None
    current_critical_bucket: Optional[int] = None
    previous_status_key: Optional[str] = None
    previous_status_label: Optional[str] = None
    current_status_key: Optional[str] = None
    current_status_label: Optional[str] = None
    notification_kind: Optional[str] = None

    @property
    def is_recovery(self) -> bool:
        return self.signal == SIGNAL_RECOVERY

    @property
    def is_steady_state(self) -> bool:
        return self.transition_kind in STEADY_STATE_TRANSITIONS

    def with_notification_kind(self, kind: Optional[str]) -> "EventPayload":
        if not kind:
            return self
        return replace(self, notification_kind=kind)

    def fingerprint(self) -> Dict[str, Optional[str]]:
        """
        Stable signal fingerprint used for idempotency keys.

        Excludes thresholds, labels and the previous side so that metadata
        changes do not produce a new key for the same logical change.
        """
        captured_at = ensure_utc(self.captured_at)
        if captured_at is not None:
            captured_at = captured_at.replace(microsecond=0)
        return {
            "signal": self.signal,
            "transitionKind": self.transition_kind,
            "currentState": self.current_state,
            "currentCriticalBucket": (
                None
                if self.current_critical_bucket is None
                else str(self.current_critical_bucket)
            ),
            "currentStatusKey": self.current_status_key,
            "currentUnits": format_decimal(self.current_units),
            "capturedAt": captured_at.isoformat() if captured_at else None,
        }

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        for name, value in asdict(self).items():
            if value is None:
                continue
            if isinstance(value, Decimal):
                value = _json_number(value)
            elif isinstance(value, datetime):
                value = ensure_utc(value).isoformat()
            elif isinstance(value, date):
                value = value.isoformat()
            data[_JSON_NAMES[name]] = value
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def parse(cls, raw: Optional[str]) -> "EventPayload":
        """Parse persisted JSON; malformed input yields an `unknown` payload."""
        try:
            document = json.loads(raw) if raw else None
        except (TypeError, ValueError):
            return cls()
        if not isinstance(document, dict):
            return cls()
        return cls.from_mapping(document)

    @classmethod
    def from_mapping(cls, document: Mapping[str, Any]) -> "EventPayload":
        values: Dict[str, Any] = {}
        for item in fields(cls):
            raw_value = document.get(_JSON_NAMES[item.name])
            if raw_value is None:
                continue
            if item.name in _DECIMAL_FIELDS:
                values[item.name] = to_decimal(raw_value)
            elif item.name in _INT_FIELDS:
                values[item.name] = _read_int(raw_value)
            elif item.name == "captured_at":
                values[item.name] = _read_datetime(raw_value)
            elif item.name == "reference_date":
                values[item.name] = _read_date(raw_value)
            elif isinstance(raw_value, str):
                values[item.name] = raw_value

        if not values.get("signal"):
            values["signal"] = _legacy_signal(values.get("transition_kind"))
        values.setdefault("transition_kind", TRANSITION_UNKNOWN)
        return cls(**values)


def _json_number(value: Decimal) -> Any:
    if value == value.to_integral_value():
        return int(value)
    return float(value)


def _read_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _read_datetime(value: Any) -> Optional[datetime]:
    if not isinstance(value, str):
        return None
    try:
        return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        return None


def _read_date(value: Any) -> Optional[date]:
    if not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def _legacy_signal(transition_kind: Optional[str]) -> str:
    """Older payloads carried only a transition kind."""
    if not transition_kind:
        return SIGNAL_UNKNOWN
    lowered = transition_kind.lower()
    if "recover" in lowered:
        return SIGNAL_RECOVERY
    if "critical" in lowered:
        return SIGNAL_CRITICAL_ACTIVE
    return SIGNAL_UNKNOWN


@dataclass(frozen=True)
class RuleEvent:
    """A rule's output for one (region, category) pair, before persistence."""

    rule_key: str
    source: SourceRef
    region: RegionRef
    category: Category
    payload: EventPayload
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def pair_key(self) -> Tuple[str, str]:
        return (self.region.key, self.category.key)


class FailureKind(str, Enum):
    """How a failed send should be treated by the retry loop"""

    NONE = "none"
    TRANSIENT = "transient"  # Rate limiting, 5xx, timeouts: retry
    PERMANENT = "permanent"  # Auth, unknown target, malformed target: stop


class OutcomeStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"


@dataclass(frozen=True)
class NotificationOutcome:
    status: OutcomeStatus
    failure_kind: FailureKind = FailureKind.NONE
    error: Optional[str] = None
    sent_at: Optional[datetime] = None

    @property
    def is_sent(self) -> bool:
        return self.status == OutcomeStatus.SENT

    @classmethod
    def sent(cls, sent_at: Optional[datetime] = None) -> "NotificationOutcome":
        return cls(
            status=OutcomeStatus.SENT,
            sent_at=sent_at or datetime.now(timezone.utc),
        )

    @classmethod
    def failed(
        cls, error: str, failure_kind: FailureKind = FailureKind.TRANSIENT
    ) -> "NotificationOutcome":
        return cls(status=OutcomeStatus.FAILED, failure_kind=failure_kind, error=error)


@dataclass(frozen=True)
class DispatchEvent:
    """What a notifier receives: a persisted event resolved to display refs."""

    event_id: str
    rule_key: str
    source: SourceRef
    region: RegionRef
    category: Category
    created_at: datetime
    payload: EventPayload

    @property
    def notification_kind(self) -> Optional[str]:
        return self.payload.notification_kind

    def with_notification_kind(self, kind: Optional[str]) -> "DispatchEvent":
        return replace(self, payload=self.payload.with_notification_kind(kind))


def sort_rule_events(events: Iterable[RuleEvent]) -> list[RuleEvent]:
    """Deterministic order: region key, then category key; stable across rules."""
    return sorted(events, key=lambda event: event.pair_key)
