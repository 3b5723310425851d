"""
Content fetchers that turn a linked page into a short readable summary.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup

from spamguard.errors import EnrichmentFailure
from spamguard.schemas.messages import WebSummary

logger = logging.getLogger(__name__)

FIRECRAWL_URL = "https://api.firecrawl.dev/v1/scrape"
NOISE_TAGS = ["script", "style", "noscript", "nav", "footer", "header", "aside", "form"]
# Download cap, in bytes per character of summary.
BODY_BYTES_PER_CHAR = 128
MIN_BODY_BYTES = 64 * 1024


class ContentFetcher(Protocol):
    async def fetch(self, url: str, timeout: float) -> Optional[WebSummary]: ...


def is_fetchable(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def extract_summary(url: str, html: str, max_length: int) -> Optional[WebSummary]:
    """
    Reduce an HTML page to title, site name and main text.

    The main text is the `<article>` element when present, otherwise the longest `<div>`.
    """

    soup = BeautifulSoup(html, "html.parser")
    title = _meta(soup, "og:title") or (soup.title.get_text(strip=True) if soup.title else None)
    site_name = _meta(soup, "og:site_name")

    for tag in soup(NOISE_TAGS):
        tag.decompose()

    article = soup.find("article")
    if article:
        text = article.get_text(" ", strip=True)
    else:
        text = ""
        for div in soup.find_all("div"):
            candidate = div.get_text(" ", strip=True)
            if len(candidate) > len(text):
                text = candidate
        if not text:
            text = soup.get_text(" ", strip=True)
    text = _normalize_text(text)[:max_length].rstrip()

    summary = WebSummary(url=url, title=_clean(title), site_name=_clean(site_name), content=text or None)
    if not (summary.title or summary.site_name or summary.content):
        return None
    return summary


def _meta(soup: BeautifulSoup, prop: str) -> Optional[str]:
    tag = soup.find("meta", attrs={"property": prop})
    if tag and tag.get("content"):
        return str(tag["content"])
    return None


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = _normalize_text(value)
    return value or None


def _normalize_text(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


@dataclass
class HtmlContentFetcher:
    content_max_length: int = 2000
    _http_client: Optional[httpx.AsyncClient] = field(default=None, repr=False)

    @property
    def max_body_bytes(self) -> int:
        return max(self.content_max_length * BODY_BYTES_PER_CHAR, MIN_BODY_BYTES)

    async def fetch(self, url: str, timeout: float) -> Optional[WebSummary]:
        """
        Fetch a page directly and extract readable text.

        At most `max_body_bytes` are downloaded, and parsing runs in a worker thread
        so a large page never stalls the event loop.

        Returns None for non-http URLs, error statuses and non-HTML bodies.
        Raises EnrichmentFailure on transport errors.
        """

        if not is_fetchable(url):
            return None

        try:
            if self._http_client is not None:
                page = await self._download(self._http_client, url, timeout)
            else:
                async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
                    page = await self._download(client, url, timeout)
        except httpx.HTTPError as exc:
            raise EnrichmentFailure(url, str(exc) or type(exc).__name__) from exc

        if page is None:
            return None
        return await asyncio.to_thread(extract_summary, url, page, self.content_max_length)

    async def _download(self, client: httpx.AsyncClient, url: str, timeout: float) -> Optional[str]:
        async with client.stream("GET", url, timeout=timeout) as resp:
            if not resp.is_success:
                logger.debug("Skipping %s: HTTP %s", url, resp.status_code)
                return None
            content_type = resp.headers.get("content-type", "")
            if content_type and "html" not in content_type:
                logger.debug("Skipping %s: content type %s", url, content_type)
                return None

            limit = self.max_body_bytes
            body = bytearray()
            async for chunk in resp.aiter_bytes():
                body.extend(chunk)
                if len(body) >= limit:
                    logger.debug("Truncated %s at %s bytes", url, limit)
                    break
            return bytes(body[:limit]).decode(resp.charset_encoding or "utf-8", errors="replace")

    def with_client(self, client: httpx.AsyncClient) -> "HtmlContentFetcher":
        """Return a new instance using the provided HTTP client."""
        return HtmlContentFetcher(content_max_length=self.content_max_length, _http_client=client)


@dataclass
class FirecrawlContentFetcher:
    api_key: str
    base_url: str = FIRECRAWL_URL
    content_max_length: int = 2000
    _http_client: Optional[httpx.AsyncClient] = field(default=None, repr=False)

    async def fetch(self, url: str, timeout: float) -> Optional[WebSummary]:
        """
        Scrape the page through Firecrawl, which renders JavaScript-heavy landing pages.
        """

        if not is_fetchable(url):
            return None

        headers = {"Authorization": f"Bearer {self.api_key}"}
        payload: dict[str, Any] = {
            "url": url,
            "formats": ["markdown"],
            "onlyMainContent": True,
            "timeout": int(timeout * 1000),
        }

        try:
            if self._http_client is not None:
                resp = await self._http_client.post(self.base_url, json=payload, headers=headers, timeout=timeout)
            else:
                async with httpx.AsyncClient(timeout=timeout) as client:
                    resp = await client.post(self.base_url, json=payload, headers=headers)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise EnrichmentFailure(url, str(exc) or type(exc).__name__) from exc

        inner = data.get("data") or {}
        metadata = inner.get("metadata") or {}
        text = _normalize_text(inner.get("markdown") or inner.get("content") or "")
        content = text[: self.content_max_length].rstrip()
        summary = WebSummary(
            url=url,
            title=_clean(metadata.get("title")),
            site_name=_clean(metadata.get("ogSiteName")),
            content=content or None,
        )
        if not (summary.title or summary.site_name or summary.content):
            logger.warning("Firecrawl returned no content for %s", url)
            return None
        return summary

    def with_client(self, client: httpx.AsyncClient) -> "FirecrawlContentFetcher":
        """Return a new instance using the provided HTTP client."""
        return FirecrawlContentFetcher(
            api_key=self.api_key,
            base_url=self.base_url,
            content_max_length=self.content_max_length,
            _http_client=client,
        )
