"""
URL source adapter.

Accepts absolute http(s) URLs, optionally honours robots.txt, and fetches
the page at run time. The HTML itself goes through the extraction
coordinator like any uploaded HTML file.
"""

import asyncio
import logging
import time
from typing import Optional
from urllib.parse import urljoin, urlparse
from urllib.robotparser import RobotFileParser

import requests

from content_ingestion.core.config import ExtractionConfig
from content_ingestion.core.exceptions import ContentValidationError, ExtractionError
from content_ingestion.models import ContentItem, ContentSourceType, ExtractionMethod
from content_ingestion.schemas.ingestion import URLIngestionRequest
from content_ingestion.services.sources.base import (
    DraftContentItem,
    RawPayload,
    SourceAdapter,
    classification_fields,
)

logger = logging.getLogger(__name__)


class URLSourceAdapter(SourceAdapter[URLIngestionRequest]):
    """
    Web pages.

    robots.txt files are cached per domain for an hour. A robots.txt that
    cannot be read allows the fetch.
    """

    source_type = ContentSourceType.URL
    request_type = URLIngestionRequest

    USER_AGENT = "ContentIngestionBot/1.0 (+https://github.com/content-ingestion)"

    def __init__(
        self,
        timeout_seconds: int = 30,
        respect_robots_txt: bool = True,
        config: Optional[ExtractionConfig] = None,
        session: Optional[requests.Session] = None,
    ):
        self.timeout_seconds = timeout_seconds
        self.respect_robots_txt = respect_robots_txt
        self.config = config or ExtractionConfig()
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": self.USER_AGENT})

        self._robots_cache: dict[str, tuple[RobotFileParser, float]] = {}
        self._robots_cache_ttl = 3600  # 1 hour

    async def ingest(self, request: URLIngestionRequest) -> list[DraftContentItem]:
        url = self.validate_url(request.url)

        if self.respect_robots_txt and not await asyncio.to_thread(self.is_allowed_by_robots, url):
            raise ExtractionError(
                f"robots.txt forbids access to: {url}",
                code="ROBOTS_DISALLOWED",
                details={"url": url},
            )

        method = request.extraction_method
        parsed = urlparse(url)
        return [
            DraftContentItem(
                source_id=url,
                source_type=self.source_type,
                source_metadata={"url": url, "domain": parsed.netloc},
                title=request.title,
                description=request.description,
                extraction_method=None if method == ExtractionMethod.AUTO else method,
                **classification_fields(request),
            )
        ]

    async def fetch_payload(self, item: ContentItem) -> RawPayload:
        url = (item.source_metadata or {}).get("url") or item.source_id
        return await asyncio.to_thread(self._download, url)

    def _download(self, url: str) -> RawPayload:
        logger.info(f"Fetching {url}")
        try:
            response = self.session.get(url, timeout=self.timeout_seconds, allow_redirects=True)
            response.raise_for_status()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise ExtractionError(
                f"Failed to fetch {url}: HTTP {status}",
                code="URL_FETCH_FAILED",
                details={"url": url, "status_code": status},
            ) from e
        except requests.RequestException as e:
            raise ExtractionError(
                f"Failed to fetch {url}: {e}",
                code="URL_UNREACHABLE",
                details={"url": url},
            ) from e

        content = response.content
        if len(content) > self.config.max_file_size:
            raise ExtractionError(
                f"Page too large: {len(content)} bytes",
                code="URL_TOO_LARGE",
                details={"url": url, "size": len(content)},
            )

        mime_type = (response.headers.get("Content-Type") or "text/html").split(";")[0].strip().lower()
        return RawPayload(
            name=urlparse(response.url or url).path.rsplit("/", 1)[-1] or url,
            mime_type=mime_type,
            size=len(content),
            content=content,
        )

    # ========================================
    # URL Validation and Robots.txt
    # ========================================

    @staticmethod
    def validate_url(url: str) -> str:
        url = url.strip()
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ContentValidationError(
                f"Invalid URL: {url}",
                code="INVALID_URL",
                details={"url": url},
            )
        return url

    def is_allowed_by_robots(self, url: str) -> bool:
        parsed = urlparse(url)
        domain = f"{parsed.scheme}://{parsed.netloc}"

        now = time.time()
        cached = self._robots_cache.get(domain)
        if cached and now - cached[1] < self._robots_cache_ttl:
            return cached[0].can_fetch(self.USER_AGENT, url)

        robot_parser = RobotFileParser()
        robot_parser.set_url(urljoin(domain, "/robots.txt"))
        try:
            robot_parser.read()
        except OSError as e:
            logger.debug(f"Could not read robots.txt for {domain}: {e}")
            return True

        self._robots_cache[domain] = (robot_parser, now)
        return robot_parser.can_fetch(self.USER_AGENT, url)

    async def close(self) -> None:
        self.session.close()
