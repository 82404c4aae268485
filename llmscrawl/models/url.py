"""Url model: one discovered page."""

import uuid

from sqlalchemy import Column, DateTime, Float, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import relationship

from llmscrawl.database import Base, utcnow


class Url(Base):
    """A discovered page and its crawl state."""

    __tablename__ = "urls"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    url = Column(Text, nullable=False, unique=True)
    domain = Column(String(255), nullable=False)
    status = Column(String(16), nullable=False, default="new")  # 'new', 'processing', 'done', 'failed'
    priority = Column(Float, nullable=False, default=0.0)
    retries = Column(Integer, nullable=False, default=0)
    worker_id = Column(Uuid)  # Usage reference to workers.id, not a foreign key
    batch_id = Column(String(64))
    worker_type = Column(String(64))
    classification = Column(String(64), nullable=False, default="page")
    lastmod = Column(String(64))
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    page_metadata = relationship(
        "Metadata",
        back_populates="url",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("idx_urls_status", "status"),
        Index("idx_urls_domain", "domain"),
        Index("idx_urls_batch_id", "batch_id"),
        Index("idx_urls_worker_id", "worker_id"),
        Index("idx_urls_worker_type", "worker_type"),
    )

    @property
    def is_assigned(self) -> bool:
        return self.batch_id is not None and self.worker_id is not None
