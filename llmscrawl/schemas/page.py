"""Collaborator payloads: discovered URLs and extracted page metadata."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class SiteURL(BaseModel):
    """One URL found in a domain's sitemap."""

    url: str
    lastmod: Optional[str] = None
    priority: Optional[float] = None
    classification: Optional[str] = None


class PageMetadata(BaseModel):
    """Metadata parsed from a fetched page."""

    url: str
    title: str = "Untitled"
    description: Optional[str] = None
    author: Optional[str] = None
    date: Optional[str] = None
    extras: Dict[str, Any] = Field(default_factory=dict)


class FetchResponse(BaseModel):
    """Raw page fetched by a fetcher."""

    url: str
    final_url: str
    html: str
    status_code: int = 200
