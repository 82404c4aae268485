"""Metadata model: parsed fields of a processed page."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import relationship

from llmscrawl.database import Base, JSONType, utcnow


class Metadata(Base):
    """Page metadata, one-to-one with a successfully processed Url."""

    __tablename__ = "metadata"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    url_id = Column(Uuid, ForeignKey("urls.id", ondelete="CASCADE"), nullable=False, unique=True)
    title = Column(Text)
    description = Column(Text)
    author = Column(String(255))
    date = Column(String(64))
    additional_data = Column(JSONType)
    parsed_at = Column(DateTime, nullable=False, default=utcnow)

    # Relationships
    url = relationship("Url", back_populates="page_metadata")
