"""Sitemap-based URL discovery."""

import logging
import re
from typing import List, Optional, Set

import httpx
from bs4 import BeautifulSoup

from llmscrawl.config import settings
from llmscrawl.schemas.config import DomainConfig
from llmscrawl.schemas.page import SiteURL

logger = logging.getLogger(__name__)

MAX_SITEMAP_DEPTH = 3


def classify_sitemap(sitemap_url: str, domain: DomainConfig) -> str:
    """
    Derive a classification tag from a sitemap file name.

    `.../bbn_state-sitemap2.xml` maps to `bbn_state` when that name is
    configured for the domain; anything else gets the domain's default.
    """
    filename = sitemap_url.rstrip("/").rsplit("/", 1)[-1].lower()
    stem = re.sub(r"(\.xml)?(\.gz)?$", "", filename)
    stem = re.sub(r"[-_]?sitemap\d*$", "", stem)

    for sitemap in domain.sitemaps:
        if stem == sitemap.name.lower():
            return sitemap.name
    return domain.default_classification


class SitemapLoader:
    """Default loader: walks /sitemap.xml and any nested sitemap indexes."""

    name = "sitemap"
    priority = 0
    url_patterns: List[str] = [".*"]

    def __init__(self, client: Optional[httpx.Client] = None):
        """Initialize the loader."""
        self.client = client or httpx.Client(
            timeout=settings.FETCH_TIMEOUT,
            follow_redirects=True,
            headers={"User-Agent": settings.USER_AGENT},
        )

    def matches(self, url: str) -> bool:
        return any(re.search(pattern, url) for pattern in self.url_patterns)

    def get_urls(self, domain: DomainConfig) -> List[SiteURL]:
        """
        Collect every URL listed in the domain's sitemaps.

        Best-effort: any failure is logged and yields an empty list.
        """
        sitemap_url = f"https://{domain.domain}/{domain.sitemap_path.lstrip('/')}"
        try:
            urls = self._load(sitemap_url, domain, depth=0, seen=set())
        except Exception as e:
            logger.warning(f"Failed to fetch sitemap for {domain.domain}: {e}")
            return []
        return self.filter_urls(urls)

    def filter_urls(self, urls: List[SiteURL]) -> List[SiteURL]:
        """De-duplicate, keeping the first occurrence."""
        unique = {}
        for site_url in urls:
            unique.setdefault(site_url.url, site_url)
        return list(unique.values())

    def _load(self, sitemap_url: str, domain: DomainConfig, depth: int, seen: Set[str]) -> List[SiteURL]:
        if sitemap_url in seen or depth > MAX_SITEMAP_DEPTH:
            return []
        seen.add(sitemap_url)

        response = self.client.get(sitemap_url)
        response.raise_for_status()
        soup = BeautifulSoup(response.content, "xml")

        urls = []
        index = soup.find("sitemapindex")
        if index is not None:
            for loc in index.find_all("loc"):
                child = loc.get_text().strip()
                if not child:
                    continue
                try:
                    urls.extend(self._load(child, domain, depth + 1, seen))
                except httpx.HTTPError as e:
                    logger.warning(f"Skipping sitemap {child}: {e}")
            return urls

        classification = classify_sitemap(sitemap_url, domain)
        for entry in soup.find_all("url"):
            loc = entry.find("loc")
            if loc is None or not loc.get_text().strip():
                continue
            lastmod = entry.find("lastmod")
            priority = entry.find("priority")
            urls.append(
                SiteURL(
                    url=loc.get_text().strip(),
                    lastmod=lastmod.get_text().strip() if lastmod else None,
                    priority=_parse_priority(priority.get_text() if priority else None),
                    classification=classification,
                )
            )
        logger.info(f"Loaded {len(urls)} URLs from {sitemap_url} ({classification})")
        return urls

    def close(self) -> None:
        self.client.close()


def _parse_priority(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(value.strip())
    except ValueError:
        return None


class DiscoveryService:
    """Selects the loader for a domain: first match by descending priority, else the default."""

    def __init__(self, loaders: Optional[List[SitemapLoader]] = None):
        """Initialize with loaders (defaults to the plain SitemapLoader)."""
        loaders = loaders or [SitemapLoader()]
        self.loaders = sorted(loaders, key=lambda l: l.priority, reverse=True)

    def get_urls(self, domain: DomainConfig) -> List[SiteURL]:
        clean_domain = re.sub(r"^https?://", "", domain.domain).split("/", 1)[0]
        site = f"https://{clean_domain}"
        loader = next((l for l in self.loaders if l.matches(site)), self.loaders[-1])
        logger.info(f"Using {loader.name} loader for {clean_domain}")
        return loader.get_urls(domain.model_copy(update={"domain": clean_domain}))

    def close(self) -> None:
        for loader in self.loaders:
            loader.close()
