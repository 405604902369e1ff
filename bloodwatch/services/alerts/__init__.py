from .catalogs import (
    DEFAULT_PRIORITY_CATALOG,
    PriorityCatalog,
    is_normal,
    normalize_status,
    status_label,
    status_rank,
)
from .thresholds import ThresholdConfig, ThresholdProfile, ThresholdProfileResolver

__all__ = [
    "DEFAULT_PRIORITY_CATALOG",
    "PriorityCatalog",
    "ThresholdConfig",
    "ThresholdProfile",
    "ThresholdProfileResolver",
    "is_normal",
    "normalize_status",
    "status_label",
    "status_rank",
]
