"""Task model for the global pipeline."""

from sqlalchemy import Column, DateTime, Index, String, Text

from llmscrawl.database import Base, JSONType, utcnow


class Task(Base):
    """Task represents one step of the global crawl pipeline."""

    __tablename__ = "tasks"

    id = Column(String(64), primary_key=True)  # From the predefined task set
    type = Column(String(64), nullable=False)
    status = Column(String(16), nullable=False, default="todo")  # 'todo', 'processing', 'done', 'error'
    details = Column(JSONType, nullable=False, default=dict)
    error = Column(Text)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_tasks_type", "type"),
        Index("idx_tasks_status", "status"),
    )

    @property
    def order(self) -> int:
        return int((self.details or {}).get("order", 0))
