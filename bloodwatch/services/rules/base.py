"""
Base class for rule evaluators.

A rule turns a (previous, current) snapshot pair into zero or more
`RuleEvent`s, one per (region, category) pair at most. Rules hold no state
between calls.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import AsyncIterator, Dict, List, Optional, Tuple

from bloodwatch.services.contracts import RuleEvent, Snapshot, SnapshotItem


class BaseRule(ABC):
    """Abstract base class for all rule evaluators."""

    rule_key: str = ""

    @abstractmethod
    async def evaluate(
        self, previous: Optional[Snapshot], current: Snapshot
    ) -> List[RuleEvent]:
        """
        Evaluate the snapshot pair.

        Args:
            previous: Last known state, or None on the first cycle
            current: Freshly captured snapshot

        Returns:
            Events ordered by (region key, category key)
        """

    @staticmethod
    def previous_index(
        previous: Optional[Snapshot],
    ) -> Dict[Tuple[str, str], SnapshotItem]:
        return previous.index() if previous is not None else {}

    @staticmethod
    async def iterate(current: Snapshot) -> AsyncIterator[SnapshotItem]:
        """Yield items in deterministic order, yielding control between steps."""
        for item in current.ordered_items():
            # cancellation checkpoint
            await asyncio.sleep(0)
            yield item

    def __repr__(self) -> str:
        return f"{type(self).__name__}(rule_key={self.rule_key!r})"
