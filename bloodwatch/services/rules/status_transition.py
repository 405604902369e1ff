"""
Categorical status rule: a state machine over the canonical severity scale.

A missing prior observation counts as `normal`, so the first sighting of a
non-normal status alerts instead of being absorbed.
"""

from typing import List, Optional, Tuple

from bloodwatch.services.alerts.catalogs import (
    NORMAL,
    is_normal,
    normalize_status,
    status_label,
    status_rank,
)
from bloodwatch.services.contracts import (
    SIGNAL_RECOVERY,
    SIGNAL_STATUS_ALERT,
    TRANSITION_ENTERED_NON_NORMAL,
    TRANSITION_RECOVERED_TO_NORMAL,
    TRANSITION_WORSENED,
    EventPayload,
    RuleEvent,
    Snapshot,
)
from bloodwatch.services.rules.base import BaseRule


def resolve_status_transition(
    previous_key: str, current_key: str
) -> Optional[Tuple[str, str]]:
    """Return (signal, transition kind), or None when nothing should be emitted."""
    previous_normal = is_normal(previous_key)
    current_normal = is_normal(current_key)

    if previous_normal and not current_normal:
        return SIGNAL_STATUS_ALERT, TRANSITION_ENTERED_NON_NORMAL
    if not previous_normal and not current_normal:
        if status_rank(current_key) > status_rank(previous_key):
            return SIGNAL_STATUS_ALERT, TRANSITION_WORSENED
        return None
    if not previous_normal and current_normal:
        return SIGNAL_RECOVERY, TRANSITION_RECOVERED_TO_NORMAL
    return None


class StatusTransitionRule(BaseRule):
    rule_key = "reserve-status-transition.v1"

    async def evaluate(
        self, previous: Optional[Snapshot], current: Snapshot
    ) -> List[RuleEvent]:
        previous_items = self.previous_index(previous)
        events: List[RuleEvent] = []

        async for item in self.iterate(current):
            if item.status_key is None or not item.status_key.strip():
                continue

            prior_item = previous_items.get(item.pair_key)
            if prior_item is None or not (prior_item.status_key or "").strip():
                previous_key = NORMAL
            else:
                previous_key = normalize_status(prior_item.status_key)
            current_key = normalize_status(item.status_key)

            resolved = resolve_status_transition(previous_key, current_key)
            if resolved is None:
                continue
            signal, transition = resolved

            payload = EventPayload(
                signal=signal,
                transition_kind=transition,
                source=current.source.adapter_key,
                region=item.region.key,
                category=item.category.key,
                captured_at=current.captured_at,
                reference_date=current.reference_date,
                current_units=item.value,
                previous_state=previous_key,
                current_state=current_key,
                previous_status_key=previous_key,
                previous_status_label=status_label(previous_key),
                current_status_key=current_key,
                current_status_label=item.status_label or status_label(current_key),
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
