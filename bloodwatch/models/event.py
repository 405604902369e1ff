from sqlalchemy import Column, ForeignKey, Index, String, Text
from sqlalchemy.orm import relationship

from bloodwatch.db.base_class import Base


class Event(Base):
    """
    Immutable record of a detected state change.

    `idempotency_key` is globally unique; a second insert with the same key is
    a duplicate and is skipped.
    """

    __tablename__ = "events"

    source_id = Column(String(36), ForeignKey("sources.id"), nullable=False)
    region_id = Column(String(36), ForeignKey("regions.id"), nullable=True)
    current_reserve_id = Column(
        String(36), ForeignKey("current_reserves.id"), nullable=False
    )
    rule_key = Column(String(128), nullable=False)
    category_key = Column(String(128), nullable=False)
    payload_json = Column(Text, nullable=False, default="{}")
    idempotency_key = Column(String(64), nullable=False, unique=True)

    source = relationship("Source")
    region = relationship("Region")
    current_reserve = relationship("CurrentReserve", back_populates="events")
    deliveries = relationship("Delivery", back_populates="event")

    __table_args__ = (
        Index("idx_events_current_reserve", "current_reserve_id"),
        Index("idx_events_source_created", "source_id", "created_at"),
    )
