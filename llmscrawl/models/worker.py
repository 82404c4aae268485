"""Worker model: a numbered capacity slot of a worker type."""

import uuid

from sqlalchemy import Column, DateTime, Index, Integer, String, UniqueConstraint, Uuid

from llmscrawl.database import Base, utcnow


class Worker(Base):
    """One slot per configured (type, instance_number)."""

    __tablename__ = "workers"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    type = Column(String(64), nullable=False)
    instance_number = Column(Integer, nullable=False)
    status = Column(String(16), nullable=False, default="idle")  # 'idle', 'active', 'failed', 'completed'
    current_batch_id = Column(String(64))
    urls_processed = Column(Integer, nullable=False, default=0)
    last_heartbeat = Column(DateTime, nullable=False, default=utcnow)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("type", "instance_number", name="uq_workers_type_instance"),
        Index("idx_workers_status", "status"),
        Index("idx_workers_last_heartbeat", "last_heartbeat"),
    )

    @property
    def slot_name(self) -> str:
        return f"{self.type}#{self.instance_number}"
