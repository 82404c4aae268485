"""Tests for worker slot leasing."""

import os
import threading
import time
from datetime import timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from llmscrawl.database import Base, utcnow
from llmscrawl.models import Url, Worker
from llmscrawl.services.lease import Heartbeat, LeaseManager


def add_worker(db, instance_number=1, status="idle", heartbeat_age=timedelta(0), worker_type="default"):
    worker = Worker(
        type=worker_type,
        instance_number=instance_number,
        status=status,
        last_heartbeat=utcnow() - heartbeat_age,
        urls_processed=7,
        current_batch_id="old-batch",
    )
    db.add(worker)
    db.commit()
    return worker


def test_claim_idle_slot(crawl_config, session_factory, test_db):
    """Test an idle slot is leased and reset."""
    worker = add_worker(test_db)
    manager = LeaseManager(crawl_config, session_factory=session_factory, stale_threshold=600)

    lease = manager.claim()

    assert lease is not None
    assert lease.worker_id == worker.id
    assert lease.slot_name == "default#1"
    assert lease.config.name == "default"

    test_db.expire_all()
    assert worker.status == "active"
    assert worker.urls_processed == 0
    assert worker.current_batch_id is None


def test_claim_without_capacity_returns_none(crawl_config, session_factory, test_db):
    """Test a second claim on a single slot finds nothing."""
    add_worker(test_db)
    manager = LeaseManager(crawl_config, session_factory=session_factory, stale_threshold=600)

    assert manager.claim() is not None
    assert manager.claim() is None


def test_stale_active_slot_is_reclaimable(crawl_config, session_factory, test_db):
    """Test an active slot with an 11 minute old heartbeat can be claimed."""
    worker = add_worker(test_db, status="active", heartbeat_age=timedelta(minutes=11))
    manager = LeaseManager(crawl_config, session_factory=session_factory, stale_threshold=600)

    lease = manager.claim()

    assert lease is not None
    assert lease.worker_id == worker.id
    test_db.expire_all()
    assert worker.last_heartbeat > utcnow() - timedelta(minutes=1)


def test_recent_active_slot_is_not_reclaimable(crawl_config, session_factory, test_db):
    """Test an active slot with a 5 minute old heartbeat is left alone."""
    add_worker(test_db, status="active", heartbeat_age=timedelta(minutes=5))
    manager = LeaseManager(crawl_config, session_factory=session_factory, stale_threshold=600)

    assert manager.claim() is None


def test_completed_slot_is_never_claimed(crawl_config, session_factory, test_db):
    """Test completed slots are excluded even when their heartbeat is old."""
    add_worker(test_db, status="completed", heartbeat_age=timedelta(hours=1))
    manager = LeaseManager(crawl_config, session_factory=session_factory, stale_threshold=600)

    assert manager.claim() is None


def test_unconfigured_worker_type_is_not_claimed(crawl_config, session_factory, test_db):
    """Test slots of a type missing from the configuration are skipped."""
    add_worker(test_db, worker_type="retired")
    manager = LeaseManager(crawl_config, session_factory=session_factory, stale_threshold=600)

    assert manager.claim() is None


def test_slot_beyond_instance_count_is_not_claimed(crawl_config, session_factory, test_db):
    """Test an idle slot retired by a smaller instance count is skipped."""
    add_worker(test_db, instance_number=2)
    manager = LeaseManager(crawl_config, session_factory=session_factory, stale_threshold=600)

    assert manager.claim() is None


def test_idle_slot_preferred_over_stale(crawl_config, session_factory, test_db):
    """Test idle capacity is used before reclaiming a stale slot."""
    add_worker(test_db, instance_number=1, status="active", heartbeat_age=timedelta(minutes=30))
    idle = add_worker(test_db, instance_number=2, status="idle")
    config = crawl_config.model_copy(
        update={"workers": [crawl_config.workers[0].model_copy(update={"instances": 2})]}
    )
    manager = LeaseManager(config, session_factory=session_factory, stale_threshold=600)

    lease = manager.claim()

    assert lease.worker_id == idle.id


def test_reclaim_returns_orphaned_urls_to_batch(crawl_config, session_factory, test_db):
    """Test URLs left processing by a crashed lease become claimable again."""
    worker = add_worker(test_db, status="active", heartbeat_age=timedelta(minutes=15))
    url = Url(
        url="https://example.com/orphan",
        domain="example.com",
        status="processing",
        worker_id=worker.id,
        batch_id="20260101T000000000000-000001-abcd1234",
        worker_type="default",
    )
    test_db.add(url)
    test_db.commit()
    manager = LeaseManager(crawl_config, session_factory=session_factory, stale_threshold=600)

    lease = manager.claim()

    assert lease.worker_id == worker.id
    test_db.expire_all()
    assert url.status == "new"
    assert url.worker_id == worker.id
    assert url.batch_id == "20260101T000000000000-000001-abcd1234"


def test_heartbeat_and_release(crawl_config, session_factory, test_db):
    """Test heartbeats refresh only while active and release returns the slot to idle."""
    worker = add_worker(test_db)
    manager = LeaseManager(crawl_config, session_factory=session_factory, stale_threshold=600)
    lease = manager.claim()

    assert manager.heartbeat(lease)

    manager.release(lease)
    test_db.expire_all()
    assert worker.status == "idle"
    assert not manager.heartbeat(lease)


def test_release_keeps_completed_status(crawl_config, session_factory, test_db):
    """Test a slot retired during the run stays completed after release."""
    worker = add_worker(test_db)
    manager = LeaseManager(crawl_config, session_factory=session_factory, stale_threshold=600)
    lease = manager.claim()

    test_db.expire_all()
    worker.status = "completed"
    test_db.commit()

    manager.release(lease)
    test_db.expire_all()
    assert worker.status == "completed"


def test_heartbeat_thread_refreshes_lease(crawl_config, session_factory, test_db):
    """Test the background heartbeat keeps last_heartbeat moving."""
    worker = add_worker(test_db)
    manager = LeaseManager(crawl_config, session_factory=session_factory, stale_threshold=600)
    lease = manager.claim()

    test_db.expire_all()
    worker.last_heartbeat = utcnow() - timedelta(minutes=5)
    test_db.commit()

    heartbeat = Heartbeat(manager, lease, interval=0.05)
    heartbeat.start()
    time.sleep(0.3)
    heartbeat.stop()

    assert not heartbeat.is_alive()
    test_db.expire_all()
    assert worker.last_heartbeat > utcnow() - timedelta(minutes=1)


@pytest.mark.skipif(not os.getenv("TEST_DATABASE_URL"), reason="Requires Postgres (set TEST_DATABASE_URL)")
def test_concurrent_claims_lease_one_slot_once(crawl_config):
    """Test N concurrent claimants on one eligible slot produce exactly one lease."""
    engine = create_engine(os.environ["TEST_DATABASE_URL"])
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    db = factory()
    add_worker(db)
    db.close()

    manager = LeaseManager(crawl_config, session_factory=factory, stale_threshold=600)
    claimants = 8
    barrier = threading.Barrier(claimants)
    leases = []
    lock = threading.Lock()

    def claim():
        barrier.wait()
        lease = manager.claim()
        with lock:
            leases.append(lease)

    threads = [threading.Thread(target=claim) for _ in range(claimants)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    try:
        assert len([lease for lease in leases if lease is not None]) == 1
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()
