from .isolator import Bulkhead

__all__ = ["Bulkhead"]
