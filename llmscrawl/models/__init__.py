"""SQLAlchemy ORM models."""

from llmscrawl.models.metadata import Metadata
from llmscrawl.models.task import Task
from llmscrawl.models.url import Url
from llmscrawl.models.worker import Worker

__all__ = [
    "Metadata",
    "Task",
    "Url",
    "Worker",
]
