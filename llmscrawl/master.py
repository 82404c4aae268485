"""Master process: initializes the store and runs one pipeline step."""

import argparse
import logging
import os
import sys
from typing import Callable, Optional

import sqlalchemy
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from llmscrawl.config import get_crawl_config, settings
from llmscrawl.database import SessionLocal, engine
from llmscrawl.pipeline.engine import PipelineEngine, StepResult
from llmscrawl.pipeline.handlers import PipelineContext
from llmscrawl.pipeline.tasks import bootstrap_tasks, reset_task
from llmscrawl.schemas.config import CrawlConfig
from llmscrawl.services.discovery import DiscoveryService
from llmscrawl.services.distribution import DistributionEngine
from llmscrawl.services.publisher import OutputPublisher
from llmscrawl.services.signals import SignalStore
from llmscrawl.services.storage import S3Uploader

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

ALEMBIC_INI = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "alembic.ini")


def _alembic_config():
    from alembic.config import Config

    return Config(ALEMBIC_INI)


def run_migrations() -> None:
    """Upgrade the schema to the latest revision."""
    from alembic import command

    logger.info("Running database migrations...")
    command.upgrade(_alembic_config(), "head")
    logger.info("Database migrations completed successfully")


def reset_database() -> None:
    """Drop every table and recreate the schema from scratch."""
    from alembic import command

    logger.warning("Resetting database...")
    command.downgrade(_alembic_config(), "base")
    command.upgrade(_alembic_config(), "head")


class MasterProcess:
    """One master invocation: initialize, advance the pipeline one step, exit."""

    def __init__(
        self,
        crawl_config: CrawlConfig,
        signals: Optional[SignalStore] = None,
        discovery: Optional[DiscoveryService] = None,
        session_factory: Callable[[], Session] = SessionLocal,
        db_engine: Engine = engine,
    ):
        """Initialize collaborators."""
        self.config = crawl_config
        self.signals = signals or SignalStore()
        self.session_factory = session_factory
        self.db_engine = db_engine
        self.context = PipelineContext(
            config=crawl_config,
            signals=self.signals,
            discovery=discovery or DiscoveryService(),
            distribution=DistributionEngine(crawl_config, session_factory=session_factory),
            publisher=OutputPublisher(crawl_config, session_factory=session_factory, uploader=S3Uploader()),
        )
        self.pipeline = PipelineEngine(self.context, session_factory=session_factory)

    def initialize(self) -> None:
        """Create the schema and predefined tasks on first run, then check the signal store."""
        inspector = sqlalchemy.inspect(self.db_engine)
        if not inspector.has_table("tasks"):
            logger.info("Tables not found, performing initial setup...")
            run_migrations()

        db = self.session_factory()
        try:
            bootstrap_tasks(db, self.config)
        finally:
            db.close()

        self.signals.ping()
        logger.info("Signal store connection established")

    def run(self) -> Optional[StepResult]:
        self.initialize()
        return self.pipeline.advance()

    def close(self) -> None:
        try:
            self.context.discovery.close()
            self.signals.close()
        except Exception as e:
            logger.error(f"Error closing connections during shutdown: {e}")
        self.db_engine.dispose()


def main(argv=None) -> int:
    """Entry point for the master process."""
    parser = argparse.ArgumentParser(description="Advance the crawl pipeline by one step")
    parser.add_argument("--reset", action="store_true", help="drop all data and re-create the predefined tasks")
    parser.add_argument("--reset-task", metavar="TASK_ID", help="put an errored task back to todo and exit")
    args = parser.parse_args(argv)

    try:
        crawl_config = get_crawl_config()

        if args.reset:
            reset_database()
            db = SessionLocal()
            try:
                bootstrap_tasks(db, crawl_config)
            finally:
                db.close()
            return 0

        if args.reset_task:
            db = SessionLocal()
            try:
                reset_task(db, args.reset_task)
            finally:
                db.close()
            return 0

        master = MasterProcess(crawl_config)
        try:
            result = master.run()
        finally:
            master.close()

        if result:
            logger.info(f"Step finished: {result.task_id} -> {result.status}")
        return 0
    except Exception as e:
        logger.error(f"Master failed: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
