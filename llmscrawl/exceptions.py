"""Exception types raised across the crawl pipeline."""


class ConfigError(ValueError):
    """Crawl configuration is missing or invalid."""


class UnknownTaskTypeError(ValueError):
    """A task row carries a type with no registered handler."""


class ExtractionError(Exception):
    """Metadata could not be extracted from a page."""

    def __init__(self, url: str, message: str, status_code: int = None):
        super().__init__(f"{url}: {message}")
        self.url = url
        self.status_code = status_code


class PublishError(Exception):
    """Output for a domain could not be rendered or swapped live."""
