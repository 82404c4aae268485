"""Partitioning of unassigned URLs into per-slot batches."""

import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple, TypeVar

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from llmscrawl.config import settings
from llmscrawl.database import SessionLocal, utcnow
from llmscrawl.models.url import Url
from llmscrawl.models.worker import Worker
from llmscrawl.schemas.config import CrawlConfig, WorkerTypeConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Keeps IN (...) lists under SQLite's bound-parameter limit
UPDATE_CHUNK_SIZE = 500

UNFINISHED_STATUSES = ("new", "processing")


def chunk(items: Sequence[T], size: int) -> List[List[T]]:
    """Split items into consecutive chunks of at most size."""
    if size < 1:
        raise ValueError(f"Chunk size must be positive, got {size}")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def split_evenly(items: Sequence[T], parts: int) -> List[List[T]]:
    """
    Split items across parts using ceil-division chunking.

    Always returns exactly `parts` lists; trailing parts may be empty.
    """
    if parts < 1:
        raise ValueError(f"Parts must be positive, got {parts}")
    size = max(1, math.ceil(len(items) / parts))
    shares = chunk(items, size) if items else []
    return shares + [[] for _ in range(parts - len(shares))]


def new_batch_id(stamp: str, seq: int) -> str:
    """Batch ids sort by distribution pass, then by position within the pass."""
    return f"{stamp}-{seq:06d}-{uuid.uuid4().hex[:8]}"


@dataclass
class DistributionResult:
    """Outcome of one distribution pass."""

    assigned: int = 0
    unmatched: int = 0
    batches: Dict[str, int] = field(default_factory=dict)  # worker type -> batch count
    created_slots: List[str] = field(default_factory=list)
    removed_slots: List[str] = field(default_factory=list)
    deferred_slots: List[str] = field(default_factory=list)  # Retired but still leased
    deleted_idle_slots: List[str] = field(default_factory=list)


class DistributionEngine:
    """Assigns status=new, unassigned URLs to worker slots in exclusive batches."""

    def __init__(
        self,
        crawl_config: CrawlConfig,
        session_factory: Callable[[], Session] = SessionLocal,
        max_retries: Optional[int] = None,
        stale_threshold: Optional[int] = None,
    ):
        """
        Initialize the distribution engine.

        Args:
            crawl_config: Crawl topology (worker types in configuration order)
            session_factory: Callable returning a new Session
            max_retries: Failed URLs below this many attempts are redistributed
            stale_threshold: Heartbeat age in seconds after which a lease is considered dead
        """
        self.config = crawl_config
        self.session_factory = session_factory
        self.max_retries = max_retries if max_retries is not None else settings.MAX_URL_RETRIES
        self.stale_threshold = stale_threshold if stale_threshold is not None else settings.STALE_THRESHOLD_SECONDS

    def distribute(self) -> DistributionResult:
        """
        Run one distribution pass in a single transaction.

        Idempotent: a second pass with no intervening status change assigns nothing.
        """
        result = DistributionResult()
        db = self.session_factory()
        try:
            slots = self._reconcile_workers(db, result)

            candidates = self._candidates(db)
            groups, unmatched = self.classify(candidates)
            result.unmatched = len(unmatched)
            if unmatched:
                logger.warning(f"{len(unmatched)} URLs match no worker type and no default type exists")

            stamp = utcnow().strftime("%Y%m%dT%H%M%S%f")
            seq = 0
            received: Set[uuid.UUID] = set()

            for worker_config in self.config.workers:
                urls = groups.get(worker_config.name, [])
                instances = slots.get(worker_config.name, [])
                if not urls or not instances:
                    continue

                for worker, share in zip(instances, split_evenly(urls, len(instances))):
                    for batch in chunk(share, worker_config.batch_size):
                        seq += 1
                        batch_id = new_batch_id(stamp, seq)
                        assigned = self._assign(db, batch, worker, batch_id)
                        if assigned:
                            received.add(worker.id)
                            result.assigned += assigned
                            result.batches[worker_config.name] = result.batches.get(worker_config.name, 0) + 1
                            logger.debug(f"Batch {batch_id}: {assigned} URLs -> {worker.slot_name}")

            for worker_list in slots.values():
                for worker in worker_list:
                    if worker.id in received and worker.status == "completed":
                        worker.status = "idle"
                        logger.info(f"Worker {worker.slot_name} received new URLs, back to idle")

            self._delete_empty_slots(db, slots, received, result)

            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        logger.info(
            f"Distributed {result.assigned} URLs in {sum(result.batches.values())} batches "
            f"{result.batches}; removed {len(result.removed_slots) + len(result.deleted_idle_slots)} slots"
        )
        return result

    def classify(self, urls: List[Url]) -> Tuple[Dict[str, List[Url]], List[Url]]:
        """
        Group URLs by worker type, testing patterns in configuration order.

        Returns:
            (type name -> URLs, URLs that match nothing and have no default type)
        """
        default_type = self.config.worker_type(self.config.default_worker_type)
        groups: Dict[str, List[Url]] = {}
        unmatched = []

        for url in urls:
            worker_config = self.match_worker_type(url.url) or default_type
            if worker_config is None:
                unmatched.append(url)
                continue
            groups.setdefault(worker_config.name, []).append(url)

        return groups, unmatched

    def match_worker_type(self, url: str) -> Optional[WorkerTypeConfig]:
        for worker_config in self.config.workers:
            if worker_config.matches(url):
                return worker_config
        return None

    def _candidates(self, db: Session) -> List[Url]:
        return (
            db.query(Url)
            .filter(
                Url.worker_id.is_(None),
                or_(
                    Url.status == "new",
                    and_(Url.status == "failed", Url.retries < self.max_retries),
                ),
            )
            .order_by(Url.priority.desc(), Url.url)
            .with_for_update(skip_locked=True)
            .all()
        )

    def _assign(self, db: Session, batch: List[Url], worker: Worker, batch_id: str) -> int:
        assigned = 0
        for ids in chunk([u.id for u in batch], UPDATE_CHUNK_SIZE):
            assigned += (
                db.query(Url)
                .filter(Url.id.in_(ids), Url.worker_id.is_(None))
                .update(
                    {
                        Url.batch_id: batch_id,
                        Url.worker_id: worker.id,
                        Url.worker_type: worker.type,
                        Url.status: "new",
                    },
                    synchronize_session=False,
                )
            )
        return assigned

    def _reconcile_workers(self, db: Session, result: DistributionResult) -> Dict[str, List[Worker]]:
        """Make worker rows match the configured (type, instance) slots."""
        wanted = {
            (worker_config.name, instance)
            for worker_config in self.config.workers
            for instance in range(1, worker_config.instances + 1)
        }

        existing = db.query(Worker).order_by(Worker.type, Worker.instance_number).with_for_update().all()
        existing_keys = set()
        stale_before = utcnow() - timedelta(seconds=self.stale_threshold)

        for worker in existing:
            key = (worker.type, worker.instance_number)
            if key in wanted:
                existing_keys.add(key)
                continue
            if self._holds_live_lease(worker, stale_before):
                # Its processing URLs stay with it until the lease ends
                released = self._release_urls(db, worker, ("new",))
                logger.info(
                    f"Retired worker slot {worker.slot_name} is still leased, deferring removal "
                    f"(released {released} unstarted URLs)"
                )
                result.deferred_slots.append(worker.slot_name)
                continue
            released = self._release_urls(db, worker, UNFINISHED_STATUSES)
            logger.info(f"Removing retired worker slot {worker.slot_name} (released {released} URLs)")
            result.removed_slots.append(worker.slot_name)
            db.delete(worker)

        for worker_type, instance in sorted(wanted - existing_keys):
            db.add(Worker(type=worker_type, instance_number=instance, status="idle", last_heartbeat=utcnow()))
            result.created_slots.append(f"{worker_type}#{instance}")
        db.flush()

        slots: Dict[str, List[Worker]] = {}
        for worker in db.query(Worker).order_by(Worker.type, Worker.instance_number).all():
            if (worker.type, worker.instance_number) in wanted:
                slots.setdefault(worker.type, []).append(worker)
        return slots

    @staticmethod
    def _holds_live_lease(worker: Worker, stale_before: datetime) -> bool:
        return worker.status == "active" and worker.last_heartbeat >= stale_before

    def _release_urls(self, db: Session, worker: Worker, statuses: Sequence[str]) -> int:
        return (
            db.query(Url)
            .filter(Url.worker_id == worker.id, Url.status.in_(statuses))
            .update(
                {Url.worker_id: None, Url.batch_id: None, Url.worker_type: None, Url.status: "new"},
                synchronize_session=False,
            )
        )

    def _delete_empty_slots(
        self,
        db: Session,
        slots: Dict[str, List[Worker]],
        received: Set[uuid.UUID],
        result: DistributionResult,
    ) -> None:
        """Delete slots that got nothing this pass, keeping ones with unfinished work or a live lease."""
        stale_before = utcnow() - timedelta(seconds=self.stale_threshold)

        for worker_list in slots.values():
            for worker in worker_list:
                if worker.id in received:
                    continue
                outstanding = (
                    db.query(Url)
                    .filter(Url.worker_id == worker.id, Url.status.in_(UNFINISHED_STATUSES))
                    .count()
                )
                if outstanding:
                    continue
                if self._holds_live_lease(worker, stale_before):
                    continue
                result.deleted_idle_slots.append(worker.slot_name)
                db.delete(worker)
        db.flush()
