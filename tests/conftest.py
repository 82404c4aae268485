"""Pytest configuration and fixtures."""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from llmscrawl.database import Base
from llmscrawl.models import Url
from llmscrawl.schemas.config import (
    CrawlConfig,
    DomainConfig,
    ScheduleConfig,
    SitemapConfig,
    StorageConfig,
    StoragePaths,
    WorkerTypeConfig,
)
from llmscrawl.services.signals import SignalStore


class FakeRedis:
    """In-memory stand-in for the few Redis commands the signal store uses."""

    def __init__(self):
        self.store = {}
        self.closed = False

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value):
        self.store[key] = value
        return True

    def ping(self):
        return True

    def close(self):
        self.closed = True


@pytest.fixture(scope="function")
def db_engine(tmp_path):
    """File-backed SQLite so worker threads get their own connections."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)

    yield engine

    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def test_db(session_factory):
    """Create a test database session for each test."""
    db = session_factory()

    yield db

    db.close()


@pytest.fixture
def signals():
    return SignalStore(client=FakeRedis())


@pytest.fixture
def crawl_config(tmp_path):
    """One domain, one worker type with a single slot and batches of two."""
    return CrawlConfig(
        schedule=ScheduleConfig(type="weekly", time_of_day="00:00", timezone="UTC"),
        domains=[
            DomainConfig(
                domain="example.com",
                priority=1,
                segment_size=2,
                title="LLMS.TXT for example.com",
                description="Example pages",
                sitemaps=[
                    SitemapConfig(name="page", title="General Pages", description="Core website pages."),
                    SitemapConfig(name="blog", title="Blog", description="Articles and news."),
                ],
            ),
        ],
        workers=[WorkerTypeConfig(name="default", batch_size=2, concurrency=1, instances=1)],
        storage=StorageConfig(
            retain_versions=2,
            paths=StoragePaths(
                current=str(tmp_path / "data" / "current"),
                temp=str(tmp_path / "data" / "temp"),
                archive=str(tmp_path / "data" / "archive"),
            ),
        ),
    )


@pytest.fixture
def make_urls(test_db):
    """Insert Url rows and return them in the given order."""

    def _make(addresses, domain="example.com", **fields):
        rows = [Url(url=address, domain=domain, **fields) for address in addresses]
        test_db.add_all(rows)
        test_db.commit()
        return rows

    return _make
