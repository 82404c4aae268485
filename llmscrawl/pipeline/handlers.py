"""Task handlers, one per pipeline step type."""

import logging
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Tuple, Type

from sqlalchemy.orm import Session

from llmscrawl.database import utcnow
from llmscrawl.models.metadata import Metadata
from llmscrawl.models.task import Task
from llmscrawl.models.url import Url
from llmscrawl.models.worker import Worker
from llmscrawl.schemas.config import CrawlConfig, DomainConfig
from llmscrawl.schemas.page import SiteURL
from llmscrawl.schemas.task import CleanupDetails, dump_details, parse_details
from llmscrawl.services.discovery import DiscoveryService
from llmscrawl.services.distribution import DistributionEngine, chunk
from llmscrawl.services.publisher import OutputPublisher
from llmscrawl.services.schedule import next_run_for
from llmscrawl.services.signals import COMPLETED, NOT_RUNNING, RUNNING, SignalStore

logger = logging.getLogger(__name__)

# Steps the cleanup task re-arms to start the next crawl cycle
CYCLE_TASK_TYPES = ("url_discovery", "metadata_extraction", "file_generation", "set_next_schedule")


@dataclass
class PipelineContext:
    """Collaborators available to every handler."""

    config: CrawlConfig
    signals: SignalStore
    discovery: DiscoveryService
    distribution: DistributionEngine
    publisher: OutputPublisher
    clock: Callable[[], datetime] = utcnow


class BaseTaskHandler:
    """Base class for task handlers."""

    def __init__(self, context: PipelineContext, db_session: Session):
        """Initialize the handler."""
        self.context = context
        self.db = db_session

    def execute(self, task: Task, details) -> bool:
        """
        Run the step.

        Args:
            task: The task row (status=processing)
            details: Typed details for the task's type

        Returns:
            True when the step is done, False to leave it todo for the next invocation
        """
        raise NotImplementedError


class SetupHandler(BaseTaskHandler):
    """Creates the storage directories."""

    def execute(self, task: Task, details) -> bool:
        for directory in details.directories:
            path = Path(directory).resolve()
            path.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created directory: {path}")
        return True


class UrlDiscoveryHandler(BaseTaskHandler):
    """Discovers every configured domain's URLs and upserts them."""

    def execute(self, task: Task, details) -> bool:
        domains = sorted(self.context.config.domains, key=lambda d: d.priority, reverse=True)
        for domain in domains:
            site_urls = self.context.discovery.get_urls(domain)
            inserted, updated = upsert_site_urls(self.db, domain, site_urls)
            self.db.commit()
            logger.info(f"Discovered {len(site_urls)} URLs for {domain.domain}: {inserted} new, {updated} updated")

        self.context.signals.set_extraction_status(NOT_RUNNING)
        return True


class MetadataExtractionHandler(BaseTaskHandler):
    """Opens the extraction phase, distributes work and polls until it is drained."""

    def execute(self, task: Task, details) -> bool:
        self.context.signals.set_extraction_status(RUNNING)

        result = self.context.distribution.distribute()
        if result.assigned:
            logger.info(f"Assigned {result.assigned} URLs to workers")

        pending = (
            self.db.query(Url)
            .filter(Url.status.in_(("new", "processing")), Url.worker_id.isnot(None))
            .count()
        )
        if pending:
            logger.info(f"{pending} URLs still pending, checking again next invocation")
            return False

        self.context.signals.set_extraction_status(COMPLETED)
        logger.info("All assigned URLs processed, metadata extraction complete")
        return True


class FileGenerationHandler(BaseTaskHandler):
    """Publishes every domain; failures are isolated per domain."""

    def execute(self, task: Task, details) -> bool:
        results = self.context.publisher.publish_all()
        failed = [domain for domain, ok in results.items() if not ok]
        if failed:
            logger.warning(f"Publishing failed for {len(failed)} domains: {failed}")
        logger.info(f"Published {len(results) - len(failed)}/{len(results)} domains")
        return True


class SetNextScheduleHandler(BaseTaskHandler):
    """Stores the next cleanup time and re-arms the cleanup task."""

    def execute(self, task: Task, details) -> bool:
        cleanup_task = self.db.query(Task).filter(Task.type == "cleanup").first()
        if not cleanup_task:
            raise ValueError("Cleanup task not found")

        next_run = next_run_for(self.context.config.schedule, now=self.context.clock())
        cleanup_details = parse_details(cleanup_task.type, cleanup_task.details)
        cleanup_details.next_run = next_run
        cleanup_task.details = dump_details(cleanup_details)
        cleanup_task.status = "todo"

        logger.info(f"Next cleanup scheduled for: {next_run.isoformat()} UTC")
        return True


class CleanupHandler(BaseTaskHandler):
    """Resets crawl state once the scheduled time has passed."""

    def execute(self, task: Task, details: CleanupDetails) -> bool:
        now = self.context.clock()
        if details.next_run is None or _naive_utc(details.next_run) > now:
            logger.info(f"Cleanup not due yet (next run: {details.next_run})")
            return False

        metadata_count = self.db.query(Metadata).delete(synchronize_session=False)
        url_count = self.db.query(Url).delete(synchronize_session=False)
        worker_count = self.db.query(Worker).delete(synchronize_session=False)
        logger.info(f"Deleted {metadata_count} metadata, {url_count} URLs, {worker_count} workers")

        temp_dir = Path(self.context.config.storage.paths.temp)
        if temp_dir.exists():
            for child in temp_dir.iterdir():
                if child.is_dir():
                    shutil.rmtree(child)
                else:
                    child.unlink()

        for cycle_task in self.db.query(Task).filter(Task.type.in_(CYCLE_TASK_TYPES)).all():
            cycle_details = dict(cycle_task.details or {})
            cycle_details.pop("error", None)
            cycle_task.details = cycle_details
            cycle_task.status = "todo"
            cycle_task.error = None

        details.next_run = None
        task.details = dump_details(details)

        self.context.signals.set_extraction_status(NOT_RUNNING)
        logger.info("Cleanup complete, next crawl cycle armed")
        return True


def _naive_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def upsert_site_urls(db: Session, domain: DomainConfig, site_urls: List[SiteURL]) -> Tuple[int, int]:
    """
    Insert new URLs and refresh priority, classification and lastmod of known ones.

    Crawl state (status, ownership, retries) of existing rows is left alone.

    Returns:
        (inserted, updated)
    """
    inserted = updated = 0
    for site_batch in chunk(site_urls, 500):
        addresses = [s.url for s in site_batch]
        existing = {u.url: u for u in db.query(Url).filter(Url.url.in_(addresses)).all()}

        for site_url in site_batch:
            classification = site_url.classification or domain.default_classification
            priority = site_url.priority if site_url.priority is not None else 0.0
            row = existing.get(site_url.url)
            if row is None:
                row = Url(
                    url=site_url.url,
                    domain=domain.domain,
                    status="new",
                    priority=priority,
                    classification=classification,
                    lastmod=site_url.lastmod,
                )
                db.add(row)
                existing[site_url.url] = row
                inserted += 1
            else:
                row.priority = priority
                row.classification = classification
                row.lastmod = site_url.lastmod
                updated += 1
        db.flush()

    return inserted, updated


HANDLERS: Dict[str, Type[BaseTaskHandler]] = {
    "setup": SetupHandler,
    "url_discovery": UrlDiscoveryHandler,
    "metadata_extraction": MetadataExtractionHandler,
    "file_generation": FileGenerationHandler,
    "set_next_schedule": SetNextScheduleHandler,
    "cleanup": CleanupHandler,
}
