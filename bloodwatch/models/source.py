from sqlalchemy import Column, DateTime, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import relationship

from bloodwatch.db.base_class import Base


class Source(Base):
    """A data source polled by one adapter."""

    __tablename__ = "sources"

    adapter_key = Column(String(128), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    last_polled_at = Column(DateTime(timezone=True), nullable=True)

    regions = relationship("Region", back_populates="source")
    subscriptions = relationship("Subscription", back_populates="source")


class Region(Base):
    """Geographic scope; created lazily the first time a snapshot mentions it."""

    __tablename__ = "regions"

    source_id = Column(String(36), ForeignKey("sources.id"), nullable=False)
    key = Column(String(128), nullable=False)
    display_name = Column(String(255), nullable=False)

    source = relationship("Source", back_populates="regions")
    institutions = relationship("Institution", back_populates="region")

    __table_args__ = (
        UniqueConstraint("source_id", "key", name="uq_regions_source_key"),
    )


class Institution(Base):
    """Donation institution; subscriptions scoped to it resolve to its region."""

    __tablename__ = "institutions"

    source_id = Column(String(36), ForeignKey("sources.id"), nullable=False)
    region_id = Column(String(36), ForeignKey("regions.id"), nullable=False)
    code = Column(String(64), nullable=False)
    name = Column(String(255), nullable=False)

    region = relationship("Region", back_populates="institutions")

    __table_args__ = (
        UniqueConstraint("source_id", "code", name="uq_institutions_source_code"),
        Index("idx_institutions_source_region", "source_id", "region_id"),
    )
