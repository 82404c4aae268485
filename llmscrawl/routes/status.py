"""Pipeline status routes."""

import logging
from datetime import timedelta
from typing import Dict, List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session

from llmscrawl.config import settings
from llmscrawl.database import get_db, utcnow
from llmscrawl.models.task import Task
from llmscrawl.models.url import Url
from llmscrawl.models.worker import Worker
from llmscrawl.pipeline.tasks import reset_task
from llmscrawl.schemas.status import (
    SignalResponse,
    TaskResetResponse,
    TaskResponse,
    UrlStats,
    WorkerListResponse,
    WorkerResponse,
)
from llmscrawl.services.signals import SignalStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["status"])

URL_STATUSES = ["new", "processing", "done", "failed"]


def get_signals():
    signals = SignalStore()
    try:
        yield signals
    finally:
        signals.close()


@router.get("/tasks", response_model=List[TaskResponse])
def list_tasks(db: Session = Depends(get_db)):
    """List pipeline tasks in execution order."""
    tasks = sorted(db.query(Task).all(), key=lambda t: t.order)
    return [
        TaskResponse(
            id=t.id,
            type=t.type,
            status=t.status,
            order=t.order,
            details=t.details or {},
            error=t.error,
            updated_at=t.updated_at,
        )
        for t in tasks
    ]


@router.post("/tasks/{task_id}/reset", response_model=TaskResetResponse)
def reset_pipeline_task(task_id: str, db: Session = Depends(get_db)):
    """Put a task back to todo so the pipeline can continue."""
    try:
        task = reset_task(db, task_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="Task not found")

    return TaskResetResponse(id=task.id, status=task.status, message="Task reset to todo")


@router.get("/workers", response_model=WorkerListResponse)
def list_workers(db: Session = Depends(get_db)):
    """List worker slots with their lease state."""
    stale_before = utcnow() - timedelta(seconds=settings.STALE_THRESHOLD_SECONDS)
    workers = db.query(Worker).order_by(Worker.type, Worker.instance_number).all()
    return WorkerListResponse(
        workers=[
            WorkerResponse(
                id=w.id,
                type=w.type,
                instance_number=w.instance_number,
                status=w.status,
                current_batch_id=w.current_batch_id,
                urls_processed=w.urls_processed,
                last_heartbeat=w.last_heartbeat,
                stale=w.status == "active" and w.last_heartbeat < stale_before,
            )
            for w in workers
        ]
    )


@router.get("/urls/stats", response_model=UrlStats)
def url_stats(db: Session = Depends(get_db)):
    """Count URLs by status, overall and per domain."""
    by_status = {status: 0 for status in URL_STATUSES}
    by_domain: Dict[str, Dict[str, int]] = {}

    rows = db.query(Url.domain, Url.status, func.count(Url.id)).group_by(Url.domain, Url.status).all()
    for domain, status, count in rows:
        by_status[status] = by_status.get(status, 0) + count
        by_domain.setdefault(domain, {s: 0 for s in URL_STATUSES})[status] = count

    assigned = (
        db.query(func.count(Url.id))
        .filter(Url.worker_id.isnot(None), Url.batch_id.isnot(None))
        .scalar()
    )

    return UrlStats(
        total=sum(by_status.values()),
        by_status=by_status,
        by_domain=by_domain,
        assigned=assigned,
    )


@router.get("/signal", response_model=SignalResponse)
def extraction_signal(signals: SignalStore = Depends(get_signals)):
    """Current metadata extraction phase."""
    return SignalResponse(metadata_extraction_status=signals.get_extraction_status())
