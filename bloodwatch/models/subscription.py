from enum import Enum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from bloodwatch.db.base_class import Base, utcnow

WILDCARD_CATEGORY = "*"


class SubscriptionScope(str, Enum):
    """Which field of the subscription resolves to regions"""

    REGION = "region"
    INSTITUTION = "institution"


class Subscription(Base):
    """
    Durable notifier registration.

    Soft-deleted only: `is_enabled` flips to False and `disabled_at` is set.
    """

    __tablename__ = "subscriptions"

    source_id = Column(String(36), ForeignKey("sources.id"), nullable=False)
    type_key = Column(String(64), nullable=False)
    target = Column(String(1024), nullable=False)
    scope_type = Column(
        String(32), nullable=False, default=SubscriptionScope.REGION.value
    )
    region_filter = Column(String(128), nullable=True)
    institution_id = Column(String(36), ForeignKey("institutions.id"), nullable=True)
    category_filter = Column(String(128), nullable=False, default=WILDCARD_CATEGORY)
    is_enabled = Column(Boolean, nullable=False, default=True)
    disabled_at = Column(DateTime(timezone=True), nullable=True)

    source = relationship("Source", back_populates="subscriptions")
    institution = relationship("Institution")
    deliveries = relationship("Delivery", back_populates="subscription")

    __table_args__ = (
        Index("idx_subscriptions_source_enabled", "source_id", "is_enabled"),
        Index(
            "idx_subscriptions_scope",
            "source_id",
            "scope_type",
            "region_filter",
            "institution_id",
            "category_filter",
            "is_enabled",
        ),
    )

    def disable(self) -> None:
        self.is_enabled = False
        self.disabled_at = utcnow()


class SubscriptionNotificationState(Base):
    """
    Alert episode per (subscription, region, category, rule).

    An episode opens when an alert is delivered and closes on recovery; while
    open, steady-state signals are not re-sent.
    """

    __tablename__ = "subscription_notification_states"

    subscription_id = Column(
        String(36), ForeignKey("subscriptions.id"), nullable=False
    )
    region_id = Column(String(36), ForeignKey("regions.id"), nullable=False)
    category_key = Column(String(128), nullable=False)
    rule_key = Column(String(128), nullable=False)
    is_open = Column(Boolean, nullable=False, default=False)
    last_notified_at = Column(DateTime(timezone=True), nullable=True)
    last_notified_bucket = Column(Integer, nullable=True)
    last_notified_value = Column(Numeric(14, 2), nullable=True)
    last_recovery_notified_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "subscription_id",
            "region_id",
            "category_key",
            "rule_key",
            name="uq_notification_states_scope",
        ),
    )
