"""
Resilience utilities: backoff schedules and bulkheads.

Async-first, structured-logging enabled and exporting Prometheus metrics.
Keep modules small, composable, and configuration-driven via
`bloodwatch.core.config`.
"""

from .bulkhead.isolator import Bulkhead
from .retry.strategies import ScheduledBackoffStrategy

__all__ = [
    "Bulkhead",
    "ScheduledBackoffStrategy",
]
