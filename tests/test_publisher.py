"""Tests for output publishing."""

from datetime import datetime, timedelta
from pathlib import Path

import pytest

from llmscrawl.exceptions import PublishError
from llmscrawl.models import Metadata
from llmscrawl.schemas.config import DomainConfig
from llmscrawl.services.publisher import OutputPublisher, archive_stamp, render_index, segment_filename


class Clock:
    """Advances one minute per call so every archive slot gets its own stamp."""

    def __init__(self, start=datetime(2026, 10, 14, 12, 0)):
        self.now = start

    def __call__(self):
        self.now += timedelta(minutes=1)
        return self.now


class FakeUploader:
    def __init__(self):
        self.uploads = []

    def upload_tree(self, local_dir, domain):
        self.uploads.append((Path(local_dir), domain))
        return 1


def add_done_pages(db, make_urls, addresses, classification="page", domain="example.com"):
    urls = make_urls(addresses, domain=domain, status="done", classification=classification)
    for url in urls:
        db.add(Metadata(url_id=url.id, title=f"Title {url.url}", description=f"About {url.url}", author="Jane"))
    db.commit()


@pytest.fixture
def publisher(crawl_config, session_factory):
    return OutputPublisher(crawl_config, session_factory=session_factory, clock=Clock())


def test_segment_filename():
    assert segment_filename("bbn_state", 3) == "bbn_state-segment-3.md"


def test_archive_stamp_sorts_in_time_order():
    earlier = archive_stamp(datetime(2026, 9, 30, 23, 59, 59))
    later = archive_stamp(datetime(2026, 10, 1, 0, 0, 0))

    assert earlier < later
    assert later == "20261001T000000.000000Z"


def test_publish_writes_segments_and_index(publisher, crawl_config, test_db, make_urls):
    """Test each group is paginated by segment size and linked from llms.txt."""
    add_done_pages(test_db, make_urls, [f"https://example.com/p{i}" for i in range(3)])
    add_done_pages(test_db, make_urls, ["https://example.com/blog/a"], classification="blog")
    make_urls(["https://example.com/pending"], status="new")

    current = publisher.publish("example.com")

    assert current == Path(crawl_config.storage.paths.current) / "example.com"
    assert sorted(p.name for p in (current / "page").iterdir()) == ["page-segment-1.md", "page-segment-2.md"]
    assert [p.name for p in (current / "blog").iterdir()] == ["blog-segment-1.md"]

    first = (current / "page" / "page-segment-1.md").read_text()
    assert first.startswith("# General Pages (Part 1 of 2)")
    assert "## [Title https://example.com/p0](https://example.com/p0)" in first
    assert "- Author: Jane" in first
    assert "pending" not in first

    index = (current / "llms.txt").read_text()
    assert index.startswith("# LLMS.TXT for example.com")
    assert "> Example pages" in index
    assert "https://example.com/llms/page/page-segment-2.md" in index
    assert "https://example.com/llms/blog/blog-segment-1.md" in index
    # Configured sitemap order
    assert index.index("## General Pages") < index.index("## Blog")


def test_unconfigured_group_uses_its_name(publisher, test_db, make_urls):
    add_done_pages(test_db, make_urls, ["https://example.com/x"], classification="misc")

    current = publisher.publish("example.com")

    assert (current / "misc" / "misc-segment-1.md").read_text().startswith("# misc (Part 1 of 1)")


def test_archive_keeps_newest_versions(publisher, crawl_config, test_db, make_urls):
    """Test N+1 publications leave exactly the N newest archive slots."""
    add_done_pages(test_db, make_urls, ["https://example.com/p0"])
    retain = crawl_config.storage.retain_versions

    stamps = []
    for _ in range(retain + 1):
        publisher.publish("example.com")
        stamps.append(archive_stamp(publisher.clock.now))

    archive = Path(crawl_config.storage.paths.archive) / "example.com"
    remaining = sorted(p.name for p in archive.iterdir())
    assert remaining == stamps[-retain:]
    assert (archive / remaining[-1] / "llms.txt").is_file()


def test_scratch_trees_are_removed(publisher, crawl_config, test_db, make_urls):
    add_done_pages(test_db, make_urls, ["https://example.com/p0"])

    publisher.publish("example.com")
    publisher.publish("example.com")

    assert list(Path(crawl_config.storage.paths.temp).iterdir()) == []


def test_unknown_domain(publisher):
    with pytest.raises(PublishError):
        publisher.publish("unknown.example")


def test_failing_domain_is_isolated(crawl_config, session_factory, test_db, make_urls, monkeypatch):
    """Test one domain's fault leaves its live tree alone and siblings publish."""
    config = crawl_config.model_copy(
        update={
            "domains": crawl_config.domains + [DomainConfig(domain="other.com", title="Other", priority=0)],
        }
    )
    uploader = FakeUploader()
    publisher = OutputPublisher(config, session_factory=session_factory, uploader=uploader, clock=Clock())
    add_done_pages(test_db, make_urls, ["https://example.com/p0"])
    add_done_pages(test_db, make_urls, ["https://other.com/p0"], domain="other.com")

    assert publisher.publish_all() == {"example.com": True, "other.com": True}
    live_index = (Path(config.storage.paths.current) / "example.com" / "llms.txt").read_text()

    add_done_pages(test_db, make_urls, ["https://example.com/p1"])
    original_render = publisher.render_tree

    def render_tree(root, domain, groups):
        if domain.domain == "example.com":
            root.mkdir(parents=True)
            raise OSError("disk full")
        return original_render(root, domain, groups)

    monkeypatch.setattr(publisher, "render_tree", render_tree)
    results = publisher.publish_all()

    assert results == {"example.com": False, "other.com": True}
    assert (Path(config.storage.paths.current) / "example.com" / "llms.txt").read_text() == live_index
    assert list(Path(config.storage.paths.temp).iterdir()) == []
    assert [domain for _, domain in uploader.uploads] == ["example.com", "other.com", "other.com"]


def test_render_index_without_description():
    domain = DomainConfig(domain="plain.com")
    sections = [{"name": "page", "title": "page", "description": "", "segments": [("page-segment-1.md", 4)]}]

    index = render_index(domain, sections)

    assert index.startswith("# plain.com\n")
    assert "- [page (Part 1 of 1)](https://plain.com/llms/page/page-segment-1.md): 4 pages" in index


def test_domain_without_finished_pages_keeps_live_version(publisher, crawl_config, test_db, make_urls):
    """Test an empty domain neither replaces the live tree nor takes an archive slot."""
    add_done_pages(test_db, make_urls, ["https://example.com/p0"])
    publisher.publish("example.com")
    live_index = (Path(crawl_config.storage.paths.current) / "example.com" / "llms.txt").read_text()

    test_db.query(Metadata).delete()
    test_db.commit()

    with pytest.raises(PublishError):
        publisher.publish("example.com")

    assert (Path(crawl_config.storage.paths.current) / "example.com" / "llms.txt").read_text() == live_index
    assert len(list((Path(crawl_config.storage.paths.archive) / "example.com").iterdir())) == 1
    assert publisher.publish_all() == {"example.com": False}
