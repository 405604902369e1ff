from .strategies import ScheduledBackoffStrategy

__all__ = ["ScheduledBackoffStrategy"]
