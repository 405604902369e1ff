from enum import Enum

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from bloodwatch.db.base_class import Base


class DeliveryStatus(str, Enum):
    """Status of a delivery"""

    PENDING = "pending"  # Created, no attempt concluded yet
    SENT = "sent"  # Terminal success
    FAILED = "failed"  # Terminal failure, never retried across cycles


class Delivery(Base):
    """Attempt record for one (event, subscription) pair."""

    __tablename__ = "deliveries"

    event_id = Column(String(36), ForeignKey("events.id"), nullable=False)
    subscription_id = Column(
        String(36), ForeignKey("subscriptions.id"), nullable=False
    )
    attempt_count = Column(Integer, nullable=False, default=0)
    status = Column(String(16), nullable=False, default=DeliveryStatus.PENDING.value)
    last_error = Column(Text, nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)

    event = relationship("Event", back_populates="deliveries")
    subscription = relationship("Subscription", back_populates="deliveries")

    __table_args__ = (
        UniqueConstraint(
            "event_id", "subscription_id", name="uq_deliveries_event_subscription"
        ),
        Index("idx_deliveries_event_status", "event_id", "status"),
        Index("idx_deliveries_subscription_created", "subscription_id", "created_at"),
    )

    @property
    def is_sent(self) -> bool:
        return self.status == DeliveryStatus.SENT.value
