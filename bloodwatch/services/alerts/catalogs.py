"""
Static lookup tables for reserve severity and category priority.

Both tables are built once at import time and exposed read-only; callers
receive them by reference and never mutate them.
"""

from decimal import Decimal
from types import MappingProxyType
from typing import Mapping, Optional

CRITICAL = "critical"
WARNING = "warning"
WATCH = "watch"
NORMAL = "normal"
UNKNOWN = "unknown"

STATUS_LABELS: Mapping[str, str] = MappingProxyType(
    {
        CRITICAL: "Critical",
        WARNING: "Warning",
        WATCH: "Watch",
        NORMAL: "Normal",
        UNKNOWN: "Unknown",
    }
)

# unknown sits with watch so that it compares below warning/critical
STATUS_RANKS: Mapping[str, int] = MappingProxyType(
    {
        NORMAL: 0,
        WATCH: 1,
        UNKNOWN: 1,
        WARNING: 2,
        CRITICAL: 3,
    }
)


def normalize_status(raw_status: Optional[str]) -> str:
    """Map a raw status code to its canonical key; unrecognized -> `unknown`."""
    if raw_status is None:
        return UNKNOWN
    normalized = str(raw_status).strip().lower()
    return normalized if normalized in STATUS_RANKS else UNKNOWN


def status_label(raw_status: Optional[str]) -> str:
    return STATUS_LABELS[normalize_status(raw_status)]


def status_rank(raw_status: Optional[str]) -> int:
    return STATUS_RANKS[normalize_status(raw_status)]


def is_normal(raw_status: Optional[str]) -> bool:
    return normalize_status(raw_status) == NORMAL


OVERALL_CATEGORY = "overall"

DEFAULT_PRIORITY_WEIGHTS: Mapping[str, Decimal] = MappingProxyType(
    {
        "blood-group-o-minus": Decimal("1.4"),
        "blood-group-o-plus": Decimal("1.2"),
        "blood-group-a-minus": Decimal("1.1"),
        "blood-group-b-minus": Decimal("1.1"),
        "blood-group-a-plus": Decimal("1.0"),
        "blood-group-b-plus": Decimal("1.0"),
        "blood-group-ab-minus": Decimal("0.9"),
        "blood-group-ab-plus": Decimal("0.8"),
        OVERALL_CATEGORY: Decimal("1.0"),
    }
)


class PriorityCatalog:
    """
    Relative notification priority per category.

    Scarcer, more widely compatible groups get a higher weight so their
    critical threshold is raised proportionally.
    """

    DEFAULT_WEIGHT = Decimal("1.0")

    def __init__(self, weights: Mapping[str, Decimal] = DEFAULT_PRIORITY_WEIGHTS):
        self._weights = MappingProxyType(dict(weights))

    def weight(self, category_key: Optional[str]) -> Decimal:
        if not category_key or not category_key.strip():
            return self.DEFAULT_WEIGHT
        return self._weights.get(category_key.strip(), self.DEFAULT_WEIGHT)


DEFAULT_PRIORITY_CATALOG = PriorityCatalog()
