"""Page fetchers and the metadata extraction service."""

import logging
import re
from typing import List, Optional

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from llmscrawl.config import settings
from llmscrawl.exceptions import ExtractionError
from llmscrawl.schemas.page import FetchResponse, PageMetadata
from llmscrawl.services.parsers import PageParser

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


def is_retryable(error: BaseException) -> bool:
    """Transport errors, rate limits and 5xx are retried; other 4xx are definitive."""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code in RETRYABLE_STATUS_CODES
    return isinstance(error, httpx.TransportError)


class PageFetcher:
    """Default fetcher: plain HTTP GET for any URL."""

    name = "default"
    priority = 0
    url_patterns: List[str] = [".*"]
    parser_class = PageParser

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        timeout: Optional[float] = None,
        retries: Optional[int] = None,
        backoff: float = 1.0,
    ):
        """Initialize the fetcher."""
        self.timeout = timeout if timeout is not None else settings.FETCH_TIMEOUT
        self.retries = retries if retries is not None else settings.FETCH_RETRIES
        self.client = client or httpx.Client(
            timeout=self.timeout,
            follow_redirects=True,
            max_redirects=5,
            headers={
                "User-Agent": settings.USER_AGENT,
                "Accept": "text/html,application/xhtml+xml",
            },
        )
        self.backoff = backoff
        self.parser = self.parser_class()

    def matches(self, url: str) -> bool:
        return any(re.search(pattern, url) for pattern in self.url_patterns)

    def fetch(self, url: str) -> FetchResponse:
        """
        Fetch a page with bounded retries.

        Raises:
            httpx.HTTPError: After retries are exhausted, or at once on a definitive 4xx
        """
        fetch_with_retry = retry(
            stop=stop_after_attempt(max(self.retries, 1)),
            wait=wait_exponential(multiplier=self.backoff, min=self.backoff, max=10),
            retry=retry_if_exception(is_retryable),
            reraise=True,
        )(self._fetch_once)
        return fetch_with_retry(url)

    def _fetch_once(self, url: str) -> FetchResponse:
        response = self.client.get(url)
        if response.status_code in RETRYABLE_STATUS_CODES:
            logger.warning(f"Retryable status {response.status_code} fetching {url}")
        response.raise_for_status()
        return FetchResponse(
            url=url,
            final_url=str(response.url),
            html=response.text,
            status_code=response.status_code,
        )

    def get_metadata(self, url: str) -> PageMetadata:
        """
        Fetch and parse a page.

        Raises:
            ExtractionError: If the page cannot be fetched or parsed
        """
        try:
            page = self.fetch(url)
        except httpx.HTTPStatusError as e:
            raise ExtractionError(url, f"HTTP {e.response.status_code}", status_code=e.response.status_code)
        except httpx.HTTPError as e:
            raise ExtractionError(url, f"{type(e).__name__}: {e}")

        try:
            fields = self.parser.parse(page.html)
        except Exception as e:
            raise ExtractionError(url, f"Failed to parse page: {e}")

        extras = fields.pop("extras", {})
        if page.final_url != url:
            extras["final_url"] = page.final_url
        return PageMetadata(url=url, extras=extras, **fields)

    def close(self) -> None:
        self.client.close()


class FetcherService:
    """Selects the fetcher for a URL: first match by descending priority, else the default."""

    def __init__(self, fetchers: Optional[List[PageFetcher]] = None):
        """Initialize with fetchers (defaults to the plain PageFetcher)."""
        fetchers = fetchers or [PageFetcher()]
        self.fetchers = sorted(fetchers, key=lambda f: f.priority, reverse=True)

    def select(self, url: str) -> PageFetcher:
        for fetcher in self.fetchers:
            if fetcher.matches(url):
                return fetcher
        return self.fetchers[-1]

    def get_metadata(self, url: str) -> PageMetadata:
        fetcher = self.select(url)
        logger.debug(f"Using fetcher {fetcher.name} for {url}")
        return fetcher.get_metadata(url)

    def close(self) -> None:
        for fetcher in self.fetchers:
            fetcher.close()
