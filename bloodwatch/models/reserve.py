from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from bloodwatch.db.base_class import Base, utcnow


class CurrentReserve(Base):
    """
    Latest known state per (source, region, category).

    Upserted in place every cycle and never deleted; it is the left side of
    every diff and the anchor of the event history.
    """

    __tablename__ = "current_reserves"

    source_id = Column(String(36), ForeignKey("sources.id"), nullable=False)
    region_id = Column(String(36), ForeignKey("regions.id"), nullable=False)
    category_key = Column(String(128), nullable=False)
    value = Column(Numeric(14, 2), nullable=True)
    unit = Column(String(32), nullable=False, default="units")
    status_key = Column(String(32), nullable=True)
    status_label = Column(String(64), nullable=True)
    reference_date = Column(Date, nullable=True)
    captured_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    source = relationship("Source")
    region = relationship("Region")
    events = relationship("Event", back_populates="current_reserve")

    __table_args__ = (
        UniqueConstraint(
            "source_id",
            "region_id",
            "category_key",
            name="uq_current_reserves_source_region_category",
        ),
        Index("idx_current_reserves_source_captured", "source_id", "captured_at"),
    )
