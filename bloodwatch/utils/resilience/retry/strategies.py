from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, Sequence, Tuple


@dataclass
class ScheduledBackoffStrategy:
    """
    Explicit delay schedule; the last entry repeats once the schedule runs out.

    An empty or all-negative schedule degrades to no waiting.
    """

    schedule_seconds: Tuple[float, ...] = field(default=(0.5, 1.0, 2.0))

    def __post_init__(self) -> None:
        self.schedule_seconds = tuple(
            max(0.0, float(delay)) for delay in self.schedule_seconds
        )

    @classmethod
    def from_sequence(cls, delays: Sequence[float]) -> "ScheduledBackoffStrategy":
        return cls(schedule_seconds=tuple(delays))

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given 1-based attempt failed."""
        if not self.schedule_seconds:
            return 0.0
        index = min(max(attempt, 1), len(self.schedule_seconds)) - 1
        return self.schedule_seconds[index]

    def delays(self, max_attempts: int) -> Iterator[float]:
        for attempt in range(1, max_attempts + 1):
            yield self.delay_for(attempt)
