"""
Numeric low-stock rule: a state machine over value thresholds.

States per (region, category):
- normal:   value > warning units
- warning:  critical units < value <= warning units
- critical: value <= critical units, with a bucket counting how many
            step-down units the value sits below the critical threshold
"""

import math
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from bloodwatch.services.alerts.thresholds import (
    ThresholdProfile,
    ThresholdProfileResolver,
)
from bloodwatch.services.contracts import (
    SIGNAL_CRITICAL_ACTIVE,
    SIGNAL_RECOVERY,
    TRANSITION_ENTERED_CRITICAL,
    TRANSITION_INITIAL_CRITICAL,
    TRANSITION_RECOVERED_FROM_CRITICAL,
    TRANSITION_STILL_CRITICAL,
    EventPayload,
    RuleEvent,
    Snapshot,
)
from bloodwatch.services.rules.base import BaseRule


class StockStateKind(str, Enum):
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class StockState:
    kind: StockStateKind
    critical_bucket: Optional[int] = None

    @property
    def is_critical(self) -> bool:
        return self.kind == StockStateKind.CRITICAL


def classify_stock(value: Decimal, profile: ThresholdProfile) -> StockState:
    if value > profile.warning_units:
        return StockState(StockStateKind.NORMAL)
    if value > profile.critical_units:
        return StockState(StockStateKind.WARNING)

    bucket = math.floor((profile.critical_units - value) / profile.step_down_units)
    return StockState(StockStateKind.CRITICAL, max(bucket, 0))


class LowStockThresholdRule(BaseRule):
    """Emits while a category is critical, and once when it leaves critical."""

    rule_key = "low-stock-threshold.v1"

    def __init__(self, resolver: Optional[ThresholdProfileResolver] = None):
        self.resolver = resolver or ThresholdProfileResolver()

    async def evaluate(
        self, previous: Optional[Snapshot], current: Snapshot
    ) -> List[RuleEvent]:
        previous_items = self.previous_index(previous)
        events: List[RuleEvent] = []

        async for item in self.iterate(current):
            if item.value is None:
                continue

            profile = self.resolver.resolve(item.category.key)
            prior_item = previous_items.get(item.pair_key)
            has_prior = prior_item is not None and prior_item.value is not None
            prior_state = (
                classify_stock(prior_item.value, profile)
                if has_prior
                else StockState(StockStateKind.NORMAL)
            )
            current_state = classify_stock(item.value, profile)

            if current_state.is_critical:
                signal = SIGNAL_CRITICAL_ACTIVE
                if not has_prior:
                    transition = TRANSITION_INITIAL_CRITICAL
                elif prior_state.is_critical:
                    transition = TRANSITION_STILL_CRITICAL
                else:
                    transition = TRANSITION_ENTERED_CRITICAL
            elif prior_state.is_critical:
                signal = SIGNAL_RECOVERY
                transition = TRANSITION_RECOVERED_FROM_CRITICAL
            else:
                continue

            payload = EventPayload(
                signal=signal,
                transition_kind=transition,
                source=current.source.adapter_key,
                region=item.region.key,
                category=item.category.key,
                captured_at=current.captured_at,
                reference_date=current.reference_date,
                previous_units=prior_item.value if has_prior else None,
                current_units=item.value,
                critical_units=profile.critical_units,
                warning_units=profile.warning_units,
                step_down_units=profile.step_down_units,
                previous_state=prior_state.kind.value,
                current_state=current_state.kind.value,
                previous_critical_bucket=prior_state.critical_bucket,
                current_critical_bucket=current_state.critical_bucket,
            )
            events.append(
                RuleEvent(
                    rule_key=self.rule_key,
                    source=current.source,
                    region=item.region,
                    category=item.category,
                    payload=payload,
                )
            )

        return events
