"""Crawl topology schemas (schedule, domains, worker types, storage)."""

import re
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

ScheduleType = Literal["daily", "two_days", "weekly", "two_weeks", "monthly"]


class ScheduleConfig(BaseModel):
    """Cadence of the cleanup step that restarts the crawl cycle."""

    type: ScheduleType = "weekly"
    time_of_day: str = "00:00"  # HH:MM
    timezone: str = "UTC"

    @field_validator("time_of_day")
    @classmethod
    def check_time_of_day(cls, value: str) -> str:
        if not re.fullmatch(r"([01]\d|2[0-3]):[0-5]\d", value):
            raise ValueError(f"time_of_day must be HH:MM, got {value!r}")
        return value


class SitemapConfig(BaseModel):
    """One classification group of a domain's output."""

    name: str
    title: str
    description: str = ""


class DomainConfig(BaseModel):
    """A crawled domain and how its output is laid out."""

    domain: str
    priority: int = 0  # Higher number = discovered first
    segment_size: int = Field(default=500, ge=1)
    title: str = ""
    description: str = ""
    llms_path: str = "llms"
    sitemap_path: str = "sitemap.xml"
    default_classification: str = "page"
    sitemaps: List[SitemapConfig] = Field(default_factory=list)

    def sitemap(self, name: str) -> Optional[SitemapConfig]:
        for sitemap in self.sitemaps:
            if sitemap.name == name:
                return sitemap
        return None


class WorkerTypeConfig(BaseModel):
    """A pool of numbered worker slots sharing URL patterns and limits."""

    name: str
    url_patterns: List[str] = Field(default_factory=lambda: [".*"])
    priority: int = 0
    batch_size: int = Field(default=100, ge=1)
    concurrency: int = Field(default=1, ge=1)
    instances: int = Field(default=1, ge=0)

    @field_validator("url_patterns")
    @classmethod
    def check_patterns(cls, patterns: List[str]) -> List[str]:
        for pattern in patterns:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"Invalid URL pattern {pattern!r}: {e}")
        return patterns

    def matches(self, url: str) -> bool:
        return any(re.search(pattern, url) for pattern in self.url_patterns)


class StoragePaths(BaseModel):
    current: str = "data/current"
    temp: str = "data/temp"
    archive: str = "data/archive"


class StorageConfig(BaseModel):
    retain_versions: int = Field(default=3, ge=1)
    paths: StoragePaths = Field(default_factory=StoragePaths)


class CrawlConfig(BaseModel):
    """Top-level crawl configuration file."""

    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    domains: List[DomainConfig] = Field(default_factory=list)
    workers: List[WorkerTypeConfig] = Field(default_factory=list)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    default_worker_type: str = "default"

    @model_validator(mode="after")
    def check_unique_names(self) -> "CrawlConfig":
        names = [w.name for w in self.workers]
        if len(names) != len(set(names)):
            raise ValueError(f"Worker type names must be unique: {names}")
        domains = [d.domain for d in self.domains]
        if len(domains) != len(set(domains)):
            raise ValueError(f"Domains must be unique: {domains}")
        return self

    def worker_type(self, name: str) -> Optional[WorkerTypeConfig]:
        for worker in self.workers:
            if worker.name == name:
                return worker
        return None

    def domain(self, name: str) -> Optional[DomainConfig]:
        for domain in self.domains:
            if domain.domain == name:
                return domain
        return None
