"""Predefined pipeline tasks and their bootstrap/reset helpers."""

import logging
from typing import List

from sqlalchemy.orm import Session

from llmscrawl.models.task import Task
from llmscrawl.schemas.config import CrawlConfig
from llmscrawl.schemas.task import (
    BaseTaskDetails,
    CleanupDetails,
    FileGenerationDetails,
    MetadataExtractionDetails,
    SetNextScheduleDetails,
    SetupDetails,
    UrlDiscoveryDetails,
    dump_details,
)

logger = logging.getLogger(__name__)


def predefined_tasks(config: CrawlConfig) -> List[BaseTaskDetails]:
    """The fixed task set, in pipeline order."""
    paths = config.storage.paths
    return [
        SetupDetails(
            name="Initial Setup",
            description="Initialize system and create necessary directories",
            order=1,
            directories=[paths.current, paths.temp, paths.archive],
        ),
        UrlDiscoveryDetails(
            name="URL Discovery",
            description="Discover and collect URLs from all configured domains",
            order=2,
        ),
        MetadataExtractionDetails(
            name="Metadata Extraction",
            description="Extract metadata from discovered URLs",
            order=3,
        ),
        FileGenerationDetails(
            name="File Generation",
            description="Generate final output files",
            order=4,
        ),
        SetNextScheduleDetails(
            name="Set Next Schedule",
            description="Calculate and set next run time for cleanup task",
            order=5,
        ),
        CleanupDetails(
            name="Cleanup",
            description="Clean up crawl state and start the next cycle",
            order=6,
            next_run=None,
        ),
    ]


def bootstrap_tasks(db: Session, config: CrawlConfig) -> int:
    """
    Create any predefined task that does not exist yet.

    Returns:
        Number of tasks created
    """
    existing = {task_id for (task_id,) in db.query(Task.id).all()}
    created = 0
    for details in predefined_tasks(config):
        if details.type in existing:
            continue
        db.add(Task(id=details.type, type=details.type, status="todo", details=dump_details(details)))
        created += 1
    db.commit()

    if created:
        logger.info(f"Initialized {created} predefined tasks")
    return created


def reset_task(db: Session, task_id: str) -> Task:
    """
    Put a task back to todo and clear its error.

    Raises:
        ValueError: If the task does not exist
    """
    task = db.query(Task).filter(Task.id == task_id).with_for_update().first()
    if not task:
        raise ValueError(f"Task {task_id} not found")

    previous = task.status
    details = dict(task.details or {})
    details.pop("error", None)
    task.details = details
    task.error = None
    task.status = "todo"
    db.commit()

    logger.info(f"Reset task {task_id} from {previous} to todo")
    return task
