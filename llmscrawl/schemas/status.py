"""Status API Pydantic schemas."""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel


class TaskResponse(BaseModel):
    """A pipeline task."""

    id: str
    type: str
    status: str
    order: int
    details: Dict[str, Any]
    error: Optional[str] = None
    updated_at: Optional[datetime] = None


class TaskResetResponse(BaseModel):
    id: str
    status: str
    message: str


class WorkerResponse(BaseModel):
    """A worker slot."""

    id: UUID
    type: str
    instance_number: int
    status: str
    current_batch_id: Optional[str] = None
    urls_processed: int
    last_heartbeat: datetime
    stale: bool


class UrlStats(BaseModel):
    """URL counts overall and per domain."""

    total: int
    by_status: Dict[str, int]  # {'new': X, 'processing': Y, 'done': Z, 'failed': W}
    by_domain: Dict[str, Dict[str, int]]
    assigned: int


class SignalResponse(BaseModel):
    metadata_extraction_status: str


class WorkerListResponse(BaseModel):
    workers: List[WorkerResponse]
