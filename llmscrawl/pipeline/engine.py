"""Single-flight task pipeline engine."""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Type

from sqlalchemy.orm import Session

from llmscrawl.database import SessionLocal
from llmscrawl.exceptions import UnknownTaskTypeError
from llmscrawl.models.task import Task
from llmscrawl.pipeline.handlers import HANDLERS, BaseTaskHandler, PipelineContext
from llmscrawl.schemas.task import parse_details

logger = logging.getLogger(__name__)


@dataclass
class StepResult:
    """Outcome of one advance() call that ran a task."""

    task_id: str
    task_type: str
    status: str
    error: Optional[str] = None


class PipelineEngine:
    """Advances the global pipeline by exactly one step per call."""

    def __init__(
        self,
        context: PipelineContext,
        session_factory: Callable[[], Session] = SessionLocal,
        handlers: Optional[Dict[str, Type[BaseTaskHandler]]] = None,
    ):
        """
        Initialize the engine.

        Args:
            context: Collaborators passed to handlers
            session_factory: Callable returning a new Session
            handlers: Task type -> handler class registry
        """
        self.context = context
        self.session_factory = session_factory
        self.handlers = handlers if handlers is not None else HANDLERS

    def advance(self) -> Optional[StepResult]:
        """
        Run the next todo task, unless a task is already processing.

        Returns:
            StepResult, or None when nothing ran
        """
        task_id = self._start_next_task()
        if task_id is None:
            return None
        return self._run_task(task_id)

    def _start_next_task(self) -> Optional[str]:
        """Mark the lowest-order todo task processing, under a lock on every task row."""
        db = self.session_factory()
        try:
            tasks = db.query(Task).order_by(Task.id).with_for_update().all()

            processing = [t for t in tasks if t.status == "processing"]
            if processing:
                logger.info(f"Task {processing[0].id} is currently being processed, skipping...")
                db.rollback()
                return None

            errored = [t for t in tasks if t.status == "error"]
            if errored:
                logger.warning(f"Task {errored[0].id} is in error, pipeline halted until it is reset")
                db.rollback()
                return None

            todo = sorted((t for t in tasks if t.status == "todo"), key=lambda t: t.order)
            if not todo:
                logger.info("No pending tasks found")
                db.rollback()
                return None

            task_id, task_type = todo[0].id, todo[0].type
            started = (
                db.query(Task)
                .filter(Task.id == task_id, Task.status == "todo")
                .update({Task.status: "processing"}, synchronize_session=False)
            )
            db.commit()
            if not started:
                logger.info(f"Task {task_id} was started by another invocation, skipping...")
                return None

            logger.info(f"Processing task {task_id} (type: {task_type})")
            return task_id
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _run_task(self, task_id: str) -> StepResult:
        db = self.session_factory()
        try:
            task = db.query(Task).filter(Task.id == task_id).first()
            task_type = task.type

            try:
                handler_class = self.handlers.get(task_type)
                if not handler_class:
                    raise UnknownTaskTypeError(f"Unknown task type: {task_type}")

                details = parse_details(task_type, task.details)
                handler = handler_class(self.context, db)
                finished = handler.execute(task, details)

                task.status = "done" if finished else "todo"
                db.commit()

                if finished:
                    logger.info(f"Task {task_id} completed successfully")
                else:
                    logger.info(f"Task {task_id} not finished, left todo for the next invocation")
                return StepResult(task_id=task_id, task_type=task_type, status=task.status)

            except Exception as e:
                logger.error(f"Error processing task {task_id}: {e}", exc_info=True)
                db.rollback()

                message = str(e) or type(e).__name__
                task = db.query(Task).filter(Task.id == task_id).first()
                task.status = "error"
                task.error = message
                task.details = {**(task.details or {}), "error": message}
                db.commit()
                return StepResult(task_id=task_id, task_type=task_type, status="error", error=message)
        finally:
            db.close()
