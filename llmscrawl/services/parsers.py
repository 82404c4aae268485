"""HTML metadata parsing helpers."""

from typing import Any, Dict, Optional

from bs4 import BeautifulSoup


def _meta_content(soup: BeautifulSoup, attr: str, value: str) -> Optional[str]:
    tag = soup.find("meta", attrs={attr: value})
    if tag and tag.get("content"):
        content = tag["content"].strip()
        return content or None
    return None


def _first(*values: Optional[str]) -> Optional[str]:
    for value in values:
        if value:
            return value
    return None


class PageParser:
    """Default page parser reading common meta tags."""

    def parse_title(self, soup: BeautifulSoup) -> str:
        title_tag = soup.title.get_text().strip() if soup.title else None
        return _first(_meta_content(soup, "property", "og:title"), title_tag) or "Untitled"

    def parse_description(self, soup: BeautifulSoup) -> Optional[str]:
        return _first(
            _meta_content(soup, "name", "description"),
            _meta_content(soup, "property", "og:description"),
        )

    def parse_author(self, soup: BeautifulSoup) -> Optional[str]:
        return _first(
            _meta_content(soup, "name", "author"),
            _meta_content(soup, "property", "article:author"),
        )

    def parse_date(self, soup: BeautifulSoup) -> Optional[str]:
        time_tag = soup.find("time", attrs={"datetime": True})
        return _first(
            _meta_content(soup, "property", "article:modified_time"),
            _meta_content(soup, "property", "article:published_time"),
            time_tag["datetime"].strip() if time_tag else None,
        )

    def parse_extras(self, soup: BeautifulSoup) -> Dict[str, Any]:
        extras = {}
        canonical = soup.find("link", attrs={"rel": "canonical"})
        if canonical and canonical.get("href"):
            extras["canonical_url"] = canonical["href"].strip()
        html_tag = soup.find("html")
        if html_tag and html_tag.get("lang"):
            extras["language"] = html_tag["lang"]
        return extras

    def parse(self, html: str) -> Dict[str, Any]:
        """
        Parse metadata fields from page markup.

        Args:
            html: Raw HTML

        Returns:
            Dict with title, description, author, date and extras
        """
        soup = BeautifulSoup(html, "lxml")
        return {
            "title": self.parse_title(soup),
            "description": self.parse_description(soup),
            "author": self.parse_author(soup),
            "date": self.parse_date(soup),
            "extras": self.parse_extras(soup),
        }
