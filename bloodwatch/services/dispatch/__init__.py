from .engine import DispatchEngine, category_matches, trim_error
from .suppression import DispatchDecision, SuppressionPolicy

__all__ = [
    "DispatchDecision",
    "DispatchEngine",
    "SuppressionPolicy",
    "category_matches",
    "trim_error",
]
