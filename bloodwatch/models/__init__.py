from .delivery import Delivery, DeliveryStatus
from .event import Event
from .reserve import CurrentReserve
from .source import Institution, Region, Source
from .subscription import (
    WILDCARD_CATEGORY,
    Subscription,
    SubscriptionNotificationState,
    SubscriptionScope,
)

__all__ = [
    "Source",
    "Region",
    "Institution",
    "CurrentReserve",
    "Event",
    "Subscription",
    "SubscriptionNotificationState",
    "SubscriptionScope",
    "WILDCARD_CATEGORY",
    "Delivery",
    "DeliveryStatus",
]
