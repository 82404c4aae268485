"""Worker slot leasing with heartbeat-based reclamation."""

import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional

from sqlalchemy import and_, case, or_
from sqlalchemy.orm import Session

from llmscrawl.config import settings
from llmscrawl.database import SessionLocal, utcnow
from llmscrawl.models.url import Url
from llmscrawl.models.worker import Worker
from llmscrawl.schemas.config import CrawlConfig, WorkerTypeConfig

logger = logging.getLogger(__name__)


@dataclass
class Lease:
    """The right of one process to act as a worker slot."""

    worker_id: uuid.UUID
    worker_type: str
    instance_number: int
    config: WorkerTypeConfig

    @property
    def slot_name(self) -> str:
        return f"{self.worker_type}#{self.instance_number}"


class LeaseManager:
    """Claims, refreshes and releases worker slots."""

    def __init__(
        self,
        crawl_config: CrawlConfig,
        session_factory: Callable[[], Session] = SessionLocal,
        stale_threshold: Optional[int] = None,
    ):
        """
        Initialize the lease manager.

        Args:
            crawl_config: Crawl topology (worker types)
            session_factory: Callable returning a new Session
            stale_threshold: Heartbeat age in seconds after which an active slot is reclaimable
        """
        self.config = crawl_config
        self.session_factory = session_factory
        self.stale_threshold = stale_threshold if stale_threshold is not None else settings.STALE_THRESHOLD_SECONDS

    def claim(self) -> Optional[Lease]:
        """
        Lease one idle or stale slot.

        Returns:
            Lease, or None when no capacity is available
        """
        if not self.config.workers:
            logger.info("No worker types configured")
            return None

        # Slots past a type's configured instance count are retired and never leased
        configured_slots = or_(
            *[
                and_(Worker.type == w.name, Worker.instance_number <= w.instances)
                for w in self.config.workers
            ]
        )

        db = self.session_factory()
        try:
            now = utcnow()
            stale_before = now - timedelta(seconds=self.stale_threshold)

            worker = (
                db.query(Worker)
                .filter(
                    configured_slots,
                    Worker.status != "completed",
                    or_(
                        Worker.status == "idle",
                        and_(Worker.status == "active", Worker.last_heartbeat < stale_before),
                    ),
                )
                .order_by(
                    case((Worker.status == "idle", 0), else_=1),
                    Worker.type,
                    Worker.instance_number,
                )
                .with_for_update(skip_locked=True)
                .first()
            )

            if not worker:
                db.rollback()
                logger.info("No available worker slots to claim")
                return None

            if worker.status == "active":
                logger.warning(
                    f"Reclaiming stale worker {worker.slot_name} "
                    f"(last heartbeat {worker.last_heartbeat.isoformat()})"
                )

            # A crashed predecessor may have left URLs mid-flight; hand them back to the batch
            orphaned = (
                db.query(Url)
                .filter(Url.worker_id == worker.id, Url.status == "processing")
                .update({Url.status: "new"}, synchronize_session=False)
            )
            if orphaned:
                logger.warning(f"Returned {orphaned} orphaned URLs of {worker.slot_name} to its batches")

            worker.status = "active"
            worker.last_heartbeat = now
            worker.urls_processed = 0
            worker.current_batch_id = None

            lease = Lease(
                worker_id=worker.id,
                worker_type=worker.type,
                instance_number=worker.instance_number,
                config=self.config.worker_type(worker.type),
            )
            db.commit()

            logger.info(f"Claimed worker {lease.slot_name} ({lease.worker_id})")
            return lease

        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def heartbeat(self, lease: Lease) -> bool:
        """Refresh the slot's heartbeat while it is still active."""
        db = self.session_factory()
        try:
            updated = (
                db.query(Worker)
                .filter(Worker.id == lease.worker_id, Worker.status == "active")
                .update({Worker.last_heartbeat: utcnow()}, synchronize_session=False)
            )
            db.commit()
            return updated > 0
        finally:
            db.close()

    def release(self, lease: Lease) -> None:
        """Return the slot to idle unless it has completed."""
        db = self.session_factory()
        try:
            db.query(Worker).filter(
                Worker.id == lease.worker_id,
                Worker.status != "completed",
            ).update(
                {Worker.status: "idle", Worker.current_batch_id: None},
                synchronize_session=False,
            )
            db.commit()
            logger.info(f"Released worker {lease.slot_name}")
        finally:
            db.close()


class Heartbeat(threading.Thread):
    """Background thread refreshing a lease at a fixed period."""

    def __init__(self, lease_manager: LeaseManager, lease: Lease, interval: Optional[float] = None):
        super().__init__(name=f"heartbeat-{lease.slot_name}", daemon=True)
        self.lease_manager = lease_manager
        self.lease = lease
        self.interval = interval if interval is not None else settings.HEARTBEAT_INTERVAL
        self._stop_event = threading.Event()

    def run(self):
        while not self._stop_event.wait(self.interval):
            try:
                if not self.lease_manager.heartbeat(self.lease):
                    logger.info(f"Worker {self.lease.slot_name} no longer active, stopping heartbeat")
                    return
            except Exception as e:
                logger.error(f"Failed to send heartbeat: {e}")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        if self.is_alive():
            self.join(timeout=timeout)
