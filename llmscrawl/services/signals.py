"""Redis-backed phase flag shared by the master and the workers."""

import logging
from typing import Optional

from redis import Redis

from llmscrawl.config import settings

logger = logging.getLogger(__name__)

EXTRACTION_STATUS_KEY = "metadata_extraction_status"

NOT_RUNNING = "not_running"
RUNNING = "running"
COMPLETED = "completed"

EXTRACTION_STATES = (NOT_RUNNING, RUNNING, COMPLETED)


class SignalStore:
    """Reads and writes the metadata extraction phase flag."""

    def __init__(self, client: Optional[Redis] = None):
        """Initialize with a Redis client (defaults to settings.REDIS_URL)."""
        self.client = client if client is not None else Redis.from_url(settings.REDIS_URL, decode_responses=True)

    def ping(self) -> bool:
        return bool(self.client.ping())

    def get_extraction_status(self) -> str:
        """Current phase; a missing key reads as not running."""
        value = self.client.get(EXTRACTION_STATUS_KEY)
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        if value not in EXTRACTION_STATES:
            return NOT_RUNNING
        return value

    def set_extraction_status(self, status: str) -> None:
        if status not in EXTRACTION_STATES:
            raise ValueError(f"Unknown extraction status: {status}")
        self.client.set(EXTRACTION_STATUS_KEY, status)
        logger.info(f"Extraction status set to {status}")

    def is_extraction_running(self) -> bool:
        return self.get_extraction_status() == RUNNING

    def close(self) -> None:
        self.client.close()
