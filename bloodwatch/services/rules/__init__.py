from typing import List, Optional

from bloodwatch.services.alerts.thresholds import ThresholdProfileResolver

from .base import BaseRule
from .low_stock import LowStockThresholdRule, StockState, StockStateKind, classify_stock
from .status_transition import StatusTransitionRule, resolve_status_transition


def create_default_rules(
    resolver: Optional[ThresholdProfileResolver] = None,
) -> List[BaseRule]:
    """The fixed rule set evaluated every cycle, numeric rule first."""
    return [LowStockThresholdRule(resolver), StatusTransitionRule()]


__all__ = [
    "BaseRule",
    "LowStockThresholdRule",
    "StatusTransitionRule",
    "StockState",
    "StockStateKind",
    "classify_stock",
    "create_default_rules",
    "resolve_status_transition",
]
