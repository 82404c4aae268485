"""Worker process: leases a slot and processes at most one batch."""

import logging
import signal
import sys
import threading
from typing import Callable, Optional

from sqlalchemy.orm import Session

from llmscrawl.config import get_crawl_config, settings
from llmscrawl.database import SessionLocal, engine
from llmscrawl.schemas.config import CrawlConfig
from llmscrawl.services.execution import BatchExecutor, BatchOutcome, MetadataExtractor
from llmscrawl.services.fetcher import FetcherService
from llmscrawl.services.lease import Heartbeat, Lease, LeaseManager
from llmscrawl.services.signals import SignalStore

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


class WorkerProcess:
    """One worker invocation."""

    def __init__(
        self,
        crawl_config: CrawlConfig,
        signals: Optional[SignalStore] = None,
        extractor: Optional[MetadataExtractor] = None,
        session_factory: Callable[[], Session] = SessionLocal,
        heartbeat_interval: Optional[float] = None,
    ):
        """Initialize worker."""
        self.config = crawl_config
        self.signals = signals or SignalStore()
        self.extractor = extractor or FetcherService()
        self.session_factory = session_factory
        self.heartbeat_interval = heartbeat_interval

        self.stop_event = threading.Event()
        self.lease_manager = LeaseManager(crawl_config, session_factory=session_factory)
        self.executor = BatchExecutor(self.extractor, session_factory=session_factory, stop_event=self.stop_event)

        self.lease: Optional[Lease] = None
        self.heartbeat: Optional[Heartbeat] = None
        self._stopped = False

    def run(self) -> Optional[BatchOutcome]:
        """
        Lease a slot and process one batch.

        Returns:
            BatchOutcome, or None when extraction is not running or no slot is free
        """
        if not self.signals.is_extraction_running():
            logger.info("Metadata extraction is not running. Waiting for signal...")
            return None

        self.lease = self.lease_manager.claim()
        if self.lease is None:
            logger.info("No worker capacity available, exiting")
            return None

        self.heartbeat = Heartbeat(self.lease_manager, self.lease, interval=self.heartbeat_interval)
        self.heartbeat.start()
        logger.info(f"Worker {self.lease.slot_name} started")

        outcome = self.executor.run_once(self.lease)
        if outcome.batch_id is None and not outcome.completed:
            logger.info("No batch available to process, exiting...")
        elif outcome.completed:
            logger.info(f"Worker {self.lease.slot_name} completed, exiting...")
        else:
            logger.info("Batch processing completed, exiting...")
        return outcome

    def request_stop(self) -> None:
        """Stop heartbeats and new URL starts; in-flight URLs finish."""
        self.stop_event.set()
        if self.heartbeat is not None:
            self.heartbeat.stop(timeout=0)

    def stop(self) -> None:
        """Stop heartbeats, release the slot and close connections."""
        if self._stopped:
            return
        self._stopped = True
        self.stop_event.set()
        logger.info("Stopping worker...")

        if self.heartbeat is not None:
            self.heartbeat.stop()

        if self.lease is not None:
            try:
                self.lease_manager.release(self.lease)
            except Exception as e:
                logger.error(f"Error updating worker status during shutdown: {e}")

        try:
            close = getattr(self.extractor, "close", None)
            if close:
                close()
            self.signals.close()
            engine.dispose()
        except Exception as e:
            logger.error(f"Error closing connections during shutdown: {e}")

        logger.info("Worker stopped")


def main() -> int:
    """Entry point for the worker process."""
    try:
        worker = WorkerProcess(get_crawl_config())
    except Exception as e:
        logger.error(f"Worker failed to start: {e}", exc_info=True)
        return 1

    def handle_signal(signum, frame):
        logger.info(f"Received {signal.Signals(signum).name}. Starting graceful shutdown...")
        worker.request_stop()

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)

    try:
        worker.run()
        return 0
    except Exception as e:
        logger.error(f"Worker failed: {e}", exc_info=True)
        return 1
    finally:
        worker.stop()


if __name__ == "__main__":
    sys.exit(main())
