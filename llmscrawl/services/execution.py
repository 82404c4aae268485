"""Batch execution for a leased worker slot."""

import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol

from sqlalchemy.orm import Session

from llmscrawl.database import SessionLocal, utcnow
from llmscrawl.models.metadata import Metadata
from llmscrawl.models.url import Url
from llmscrawl.models.worker import Worker
from llmscrawl.schemas.page import PageMetadata
from llmscrawl.services.lease import Lease

logger = logging.getLogger(__name__)

DONE = "done"
FAILED = "failed"
SKIPPED = "skipped"


class MetadataExtractor(Protocol):
    def get_metadata(self, url: str) -> PageMetadata: ...


@dataclass
class ClaimedBatch:
    batch_id: str
    url_ids: List[uuid.UUID] = field(default_factory=list)


@dataclass
class BatchOutcome:
    """Result of one worker invocation."""

    batch_id: Optional[str] = None
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    completed: bool = False  # Slot has no unfinished URLs left


class BatchExecutor:
    """Claims a slot's next batch and processes it with bounded concurrency."""

    def __init__(
        self,
        extractor: MetadataExtractor,
        session_factory: Callable[[], Session] = SessionLocal,
        stop_event: Optional[threading.Event] = None,
    ):
        """
        Initialize the executor.

        Args:
            extractor: Collaborator providing get_metadata(url)
            session_factory: Callable returning a new Session
            stop_event: Once set, URLs not yet started are skipped
        """
        self.extractor = extractor
        self.session_factory = session_factory
        self.stop_event = stop_event or threading.Event()

    def run_once(self, lease: Lease) -> BatchOutcome:
        """Process at most one batch, or retire the slot when nothing is left."""
        batch = self.claim_next_batch(lease)
        if batch is None:
            completed = self.complete_if_exhausted(lease)
            return BatchOutcome(completed=completed)

        try:
            outcome = self.process_batch(lease, batch)
        finally:
            self.finish_batch(lease)
        return outcome

    def claim_next_batch(self, lease: Lease) -> Optional[ClaimedBatch]:
        """Lock the smallest batch id still holding new URLs owned by this slot."""
        db = self.session_factory()
        try:
            batch_id = (
                db.query(Url.batch_id)
                .filter(
                    Url.worker_id == lease.worker_id,
                    Url.status == "new",
                    Url.batch_id.isnot(None),
                )
                .order_by(Url.batch_id)
                .limit(1)
                .scalar()
            )
            if batch_id is None:
                db.rollback()
                return None

            urls = (
                db.query(Url)
                .filter(
                    Url.worker_id == lease.worker_id,
                    Url.batch_id == batch_id,
                    Url.status == "new",
                )
                .order_by(Url.priority.desc(), Url.url)
                .with_for_update()
                .all()
            )
            if not urls:
                db.rollback()
                return None

            db.query(Worker).filter(Worker.id == lease.worker_id).update(
                {Worker.current_batch_id: batch_id},
                synchronize_session=False,
            )
            batch = ClaimedBatch(batch_id=batch_id, url_ids=[u.id for u in urls])
            db.commit()

            logger.info(f"Worker {lease.slot_name} claimed batch {batch_id} with {len(batch.url_ids)} URLs")
            return batch
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def complete_if_exhausted(self, lease: Lease) -> bool:
        """Mark the slot completed when it owns no new or processing URLs."""
        db = self.session_factory()
        try:
            worker = (
                db.query(Worker)
                .filter(Worker.id == lease.worker_id)
                .with_for_update()
                .first()
            )
            if worker is None:
                db.rollback()
                logger.warning(f"Worker {lease.slot_name} no longer exists")
                return False

            remaining = (
                db.query(Url)
                .filter(Url.worker_id == lease.worker_id, Url.status.in_(("new", "processing")))
                .count()
            )
            if remaining:
                db.rollback()
                logger.info(f"Worker {lease.slot_name} has {remaining} URLs in flight elsewhere, nothing to claim")
                return False

            worker.status = "completed"
            worker.current_batch_id = None
            worker.last_heartbeat = utcnow()
            db.commit()

            logger.info(f"Worker {lease.slot_name} has completed all assigned URLs")
            return True
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def process_batch(self, lease: Lease, batch: ClaimedBatch) -> BatchOutcome:
        """Process every URL of the batch, at most `concurrency` at a time."""
        concurrency = lease.config.concurrency if lease.config else 1
        logger.info(f"Processing batch {batch.batch_id} ({len(batch.url_ids)} URLs, concurrency {concurrency})")

        with ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix=f"url-{lease.slot_name}") as pool:
            results = list(pool.map(lambda url_id: self.process_url(lease, url_id), batch.url_ids))

        outcome = BatchOutcome(
            batch_id=batch.batch_id,
            processed=results.count(DONE),
            failed=results.count(FAILED),
            skipped=results.count(SKIPPED),
        )
        logger.info(
            f"Completed batch {batch.batch_id}: {outcome.processed} done, "
            f"{outcome.failed} failed, {outcome.skipped} skipped"
        )
        return outcome

    def process_url(self, lease: Lease, url_id: uuid.UUID) -> str:
        """
        Extract one URL's metadata.

        On failure the URL is marked failed and its ownership cleared, so the
        next distribution pass can hand it out again. Results are only written
        while the slot still owns the URL; a URL taken away mid-fetch is skipped.
        """
        if self.stop_event.is_set():
            return SKIPPED

        db = self.session_factory()
        try:
            started = (
                db.query(Url)
                .filter(Url.id == url_id, Url.worker_id == lease.worker_id, Url.status == "new")
                .update({Url.status: "processing"}, synchronize_session=False)
            )
            if not started:
                db.rollback()
                return SKIPPED

            address = db.query(Url.url).filter(Url.id == url_id).scalar()
            db.commit()

            try:
                page = self.extractor.get_metadata(address)
                finished = self._owned(db, lease, url_id).update({Url.status: "done"}, synchronize_session=False)
                if not finished:
                    db.rollback()
                    logger.warning(f"Worker {lease.slot_name} no longer owns {address}, discarding its metadata")
                    return SKIPPED

                db.add(
                    Metadata(
                        url_id=url_id,
                        title=page.title,
                        description=page.description,
                        author=page.author,
                        date=page.date,
                        additional_data=page.extras or None,
                    )
                )
                db.query(Worker).filter(Worker.id == lease.worker_id).update(
                    {Worker.urls_processed: Worker.urls_processed + 1},
                    synchronize_session=False,
                )
                db.commit()
            except Exception as e:
                db.rollback()
                logger.error(f"Error processing URL {address}: {e}")
                if not self._mark_failed(db, lease, url_id):
                    logger.warning(f"Worker {lease.slot_name} no longer owns {address}, leaving it as is")
                    return SKIPPED
                return FAILED

            logger.info(f"Successfully processed URL: {address}")
            return DONE
        finally:
            db.close()

    def _owned(self, db: Session, lease: Lease, url_id: uuid.UUID):
        """Query for the URL while this slot is processing it."""
        return db.query(Url).filter(
            Url.id == url_id,
            Url.worker_id == lease.worker_id,
            Url.status == "processing",
        )

    def _mark_failed(self, db: Session, lease: Lease, url_id: uuid.UUID) -> bool:
        marked = self._owned(db, lease, url_id).update(
            {
                Url.status: "failed",
                Url.retries: Url.retries + 1,
                Url.worker_id: None,
                Url.batch_id: None,
                Url.worker_type: None,
            },
            synchronize_session=False,
        )
        db.commit()
        return marked > 0

    def finish_batch(self, lease: Lease) -> None:
        """Clear the current batch and return the slot to idle for the next invocation."""
        db = self.session_factory()
        try:
            db.query(Worker).filter(Worker.id == lease.worker_id, Worker.status == "active").update(
                {Worker.current_batch_id: None, Worker.status: "idle"},
                synchronize_session=False,
            )
            db.commit()
        finally:
            db.close()
