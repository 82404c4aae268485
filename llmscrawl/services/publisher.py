"""Versioned output rendering: segments, llms.txt index, live swap and archive."""

import logging
import os
import shutil
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from llmscrawl.database import SessionLocal, utcnow
from llmscrawl.exceptions import PublishError
from llmscrawl.models.metadata import Metadata
from llmscrawl.models.url import Url
from llmscrawl.schemas.config import CrawlConfig, DomainConfig
from llmscrawl.services.storage import S3Uploader

logger = logging.getLogger(__name__)

INDEX_FILENAME = "llms.txt"


@dataclass
class PageEntry:
    url: str
    title: str
    description: Optional[str] = None
    author: Optional[str] = None
    date: Optional[str] = None


def segment_filename(classification: str, number: int) -> str:
    return f"{classification}-segment-{number}.md"


def archive_stamp(moment: datetime) -> str:
    """ISO-8601 basic timestamp; sorts lexicographically in time order."""
    return moment.strftime("%Y%m%dT%H%M%S.%fZ")


def render_segment(title: str, description: str, pages: List[PageEntry], number: int, total: int) -> str:
    lines = [f"# {title} (Part {number} of {total})", ""]
    if description:
        lines += [description, ""]

    for page in pages:
        lines += [f"## [{page.title or page.url}]({page.url})", ""]
        if page.description:
            lines += [page.description, ""]
        details = []
        if page.author:
            details.append(f"- Author: {page.author}")
        if page.date:
            details.append(f"- Date: {page.date}")
        if details:
            lines += details + [""]

    return "\n".join(lines).rstrip() + "\n"


def render_index(domain: DomainConfig, sections: List[Dict]) -> str:
    """Render llms.txt linking every segment of every group."""
    lines = [f"# {domain.title or domain.domain}", ""]
    if domain.description:
        lines += [f"> {domain.description}", ""]

    base = f"https://{domain.domain}/{domain.llms_path.strip('/')}".rstrip("/")
    for section in sections:
        lines += [f"## {section['title']}", ""]
        if section["description"]:
            lines += [section["description"], ""]
        total = len(section["segments"])
        for number, (filename, count) in enumerate(section["segments"], start=1):
            lines.append(
                f"- [{section['title']} (Part {number} of {total})]"
                f"({base}/{section['name']}/{filename}): {count} pages"
            )
        lines.append("")

    return "\n".join(lines).rstrip() + "\n"


class OutputPublisher:
    """Renders a domain's finished pages and publishes them as a new version."""

    def __init__(
        self,
        crawl_config: CrawlConfig,
        session_factory: Callable[[], Session] = SessionLocal,
        uploader: Optional[S3Uploader] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the publisher.

        Args:
            crawl_config: Domains and storage layout
            session_factory: Callable returning a new Session
            uploader: Optional object storage uploader
            clock: Source of archive timestamps
        """
        self.config = crawl_config
        self.session_factory = session_factory
        self.uploader = uploader
        self.clock = clock

        paths = crawl_config.storage.paths
        self.current_root = Path(paths.current)
        self.temp_root = Path(paths.temp)
        self.archive_root = Path(paths.archive)
        self.retain_versions = crawl_config.storage.retain_versions

    def publish_all(self) -> Dict[str, bool]:
        """Publish every domain; a failing domain is logged and skipped."""
        results = {}
        for domain in sorted(self.config.domains, key=lambda d: d.priority, reverse=True):
            try:
                current = self.publish(domain.domain)
                if self.uploader is not None:
                    self.uploader.upload_tree(current, domain.domain)
                results[domain.domain] = True
            except Exception as e:
                logger.error(f"Failed to publish {domain.domain}: {e}", exc_info=True)
                results[domain.domain] = False
        return results

    def publish(self, domain: str) -> Path:
        """
        Render, swap live and archive one domain's output.

        Returns:
            Path of the domain's new current directory

        Raises:
            PublishError: If the domain is not configured or has no finished pages
        """
        domain_config = self.config.domain(domain)
        if domain_config is None:
            raise PublishError(f"Domain {domain} is not configured")

        groups = self.load_groups(domain)
        if not groups:
            raise PublishError(f"No finished pages for {domain}, keeping the published version")
        self.temp_root.mkdir(parents=True, exist_ok=True)
        scratch = self.temp_root / f"{domain}-{uuid.uuid4().hex}"

        try:
            self.render_tree(scratch, domain_config, groups)
            current = self.swap_live(domain, scratch)
        except Exception:
            shutil.rmtree(scratch, ignore_errors=True)
            raise

        self.archive(domain, current)
        logger.info(f"Published {sum(len(p) for p in groups.values())} pages for {domain} in {len(groups)} groups")
        return current

    def load_groups(self, domain: str) -> Dict[str, List[PageEntry]]:
        """Done pages of a domain with metadata, grouped by classification."""
        db = self.session_factory()
        try:
            rows = (
                db.query(Url, Metadata)
                .join(Metadata, Metadata.url_id == Url.id)
                .filter(Url.domain == domain, Url.status == "done")
                .order_by(Url.classification, Url.url)
                .all()
            )
        finally:
            db.close()

        groups: Dict[str, List[PageEntry]] = {}
        for url, metadata in rows:
            groups.setdefault(url.classification, []).append(
                PageEntry(
                    url=url.url,
                    title=metadata.title or url.url,
                    description=metadata.description,
                    author=metadata.author,
                    date=metadata.date,
                )
            )
        return groups

    def render_tree(self, root: Path, domain: DomainConfig, groups: Dict[str, List[PageEntry]]) -> None:
        """Write segment files and llms.txt under root."""
        root.mkdir(parents=True)

        # Configured sitemap order first, then any other groups by name
        configured = [s.name for s in domain.sitemaps if s.name in groups]
        ordered = configured + sorted(name for name in groups if name not in configured)

        sections = []
        for name in ordered:
            sitemap = domain.sitemap(name)
            title = sitemap.title if sitemap else name
            description = sitemap.description if sitemap else ""

            group_dir = root / name
            group_dir.mkdir()
            segments = _paginate(groups[name], domain.segment_size)
            section = {"name": name, "title": title, "description": description, "segments": []}
            for number, pages in enumerate(segments, start=1):
                filename = segment_filename(name, number)
                (group_dir / filename).write_text(
                    render_segment(title, description, pages, number, len(segments)),
                    encoding="utf-8",
                )
                section["segments"].append((filename, len(pages)))
            sections.append(section)

        (root / INDEX_FILENAME).write_text(render_index(domain, sections), encoding="utf-8")

    def swap_live(self, domain: str, scratch: Path) -> Path:
        """
        Replace current/<domain> with the scratch tree.

        Each rename is atomic, but current/<domain> is briefly absent between
        the two. Readers must tolerate a missing directory for that window.
        """
        self.current_root.mkdir(parents=True, exist_ok=True)
        target = self.current_root / domain
        previous = self.temp_root / f"{domain}-previous-{uuid.uuid4().hex}"

        if target.exists():
            os.replace(target, previous)
        try:
            os.replace(scratch, target)
        except OSError:
            if previous.exists():
                os.replace(previous, target)
            raise

        shutil.rmtree(previous, ignore_errors=True)
        return target

    def archive(self, domain: str, current: Path) -> Path:
        """Snapshot the current tree and prune snapshots beyond the retention count."""
        domain_archive = self.archive_root / domain
        domain_archive.mkdir(parents=True, exist_ok=True)

        stamp = archive_stamp(self.clock())
        snapshot = domain_archive / stamp
        suffix = 1
        while snapshot.exists():
            snapshot = domain_archive / f"{stamp}-{suffix}"
            suffix += 1
        shutil.copytree(current, snapshot)

        self.prune_archive(domain)
        return snapshot

    def prune_archive(self, domain: str) -> List[Path]:
        """Delete the oldest snapshots so at most retain_versions remain."""
        domain_archive = self.archive_root / domain
        if not domain_archive.exists():
            return []

        snapshots = sorted(p for p in domain_archive.iterdir() if p.is_dir())
        expired = snapshots[: max(len(snapshots) - self.retain_versions, 0)]
        for path in expired:
            shutil.rmtree(path)
            logger.info(f"Removed archived version {path.name} of {domain}")
        return expired


def _paginate(pages: List[PageEntry], size: int) -> List[List[PageEntry]]:
    return [pages[i:i + size] for i in range(0, len(pages), size)]
