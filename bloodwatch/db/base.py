# Import all the models, so that Base has them before being
# imported by Alembic
from bloodwatch.db.base_class import Base
from bloodwatch.models.delivery import Delivery
from bloodwatch.models.event import Event
from bloodwatch.models.reserve import CurrentReserve
from bloodwatch.models.source import Institution, Region, Source
from bloodwatch.models.subscription import Subscription, SubscriptionNotificationState

__all__ = [
    "Base",
    "Source",
    "Region",
    "Institution",
    "CurrentReserve",
    "Event",
    "Subscription",
    "SubscriptionNotificationState",
    "Delivery",
]  # noqa: F401
