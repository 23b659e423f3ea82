"""
Extraction Engines

Turn a raw payload into plain text. The extraction coordinator picks the
method and enforces the timeout; an engine only has to honour

    extract(buffer, mime_type, method) -> ExtractionResult

Engines:
--------
- LocalExtractionEngine: PDF (PyMuPDF), HTML (trafilatura, BeautifulSoup
  fallback), Markdown (markdown -> HTML -> text), plain text
- RemoteExtractionEngine: OCR and speech-to-text through the extraction
  service over HTTP
"""

import abc
import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

import fitz
import httpx
import markdown
import trafilatura
from bs4 import BeautifulSoup

from content_ingestion.core.exceptions import ExtractionError
from content_ingestion.models import ExtractionMethod


logger = logging.getLogger(__name__)


_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_HORIZONTAL_SPACE = re.compile(r"[ \t ]+")
_EXCESS_NEWLINES = re.compile(r"\n\s*\n(\s*\n)+")


def clean_text(text: str) -> str:
    """
    Normalise extracted text.

    Control characters are dropped, curly quotes straightened, runs of
    spaces collapsed and paragraph breaks capped at one blank line.
    """
    if not text:
        return ""

    text = _CONTROL_CHARS.sub("", text)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = text.replace("“", '"').replace("”", '"')
    text = text.replace("‘", "'").replace("’", "'")
    text = _HORIZONTAL_SPACE.sub(" ", text)
    text = "\n".join(line.strip() for line in text.split("\n"))
    text = _EXCESS_NEWLINES.sub("\n\n", text)
    return text.strip()


@dataclass
class ExtractionResult:
    content: str
    confidence: float
    content_type: Optional[str] = None
    language: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


class ExtractionEngine(abc.ABC):
    """Interface consumed by ``ExtractionCoordinator``."""

    @abc.abstractmethod
    async def extract(
        self,
        buffer: bytes,
        mime_type: str,
        method: ExtractionMethod,
    ) -> ExtractionResult:
        """Extract text; raise ``ExtractionError`` on failure."""

    async def close(self) -> None:
        """Release network resources, if any."""


class RemoteExtractionEngine(ExtractionEngine):
    """
    Client for the extraction service (OCR, speech-to-text).

    POST {base_url}/extract, multipart ``file`` plus ``method`` field.
    Response: {"content", "confidence", "language"?, "contentType"?, "title"?}
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 300.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
        )

    async def extract(
        self,
        buffer: bytes,
        mime_type: str,
        method: ExtractionMethod,
    ) -> ExtractionResult:
        try:
            response = await self.client.post(
                "/extract",
                files={"file": ("payload", buffer, mime_type)},
                data={"method": str(method)},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise ExtractionError(
                f"Extraction service returned {e.response.status_code}",
                details={"method": str(method), "mime_type": mime_type},
            ) from e
        except httpx.HTTPError as e:
            raise ExtractionError(
                f"Extraction service unreachable: {e}",
                details={"method": str(method)},
            ) from e
        except ValueError as e:
            raise ExtractionError("Extraction service returned invalid JSON") from e

        return ExtractionResult(
            content=clean_text(data.get("content") or ""),
            confidence=float(data.get("confidence", 0.0)),
            content_type=data.get("contentType") or data.get("content_type") or "text/plain",
            language=data.get("language"),
            title=data.get("title"),
            description=data.get("description"),
        )

    async def close(self) -> None:
        await self.client.aclose()


class LocalExtractionEngine(ExtractionEngine):
    """
    In-process extraction for text-bearing formats.

    OCR and speech-to-text need the remote engine; without one they fail
    with ``ExtractionError``.
    """

    def __init__(self, remote: Optional[ExtractionEngine] = None):
        self.remote = remote

    async def extract(
        self,
        buffer: bytes,
        mime_type: str,
        method: ExtractionMethod,
    ) -> ExtractionResult:
        if method in (ExtractionMethod.OCR, ExtractionMethod.SPEECH_TO_TEXT):
            if self.remote is None:
                raise ExtractionError(
                    f"No extraction service configured for {method}",
                    details={"method": str(method), "mime_type": mime_type},
                )
            return await self.remote.extract(buffer, mime_type, method)

        if method == ExtractionMethod.PDF_JS:
            return await asyncio.to_thread(self._extract_pdf, buffer)
        if method == ExtractionMethod.HTML_PARSER:
            return await asyncio.to_thread(self._extract_html, buffer)
        if method == ExtractionMethod.MARKDOWN_PARSER:
            return self._extract_markdown(buffer)
        if method == ExtractionMethod.PLAIN_TEXT:
            return self._extract_plain_text(buffer)

        raise ExtractionError(f"Unsupported extraction method: {method}")

    # ========================================
    # PDF
    # ========================================

    def _extract_pdf(self, buffer: bytes) -> ExtractionResult:
        try:
            document = fitz.open(stream=buffer, filetype="pdf")
        except Exception as e:
            raise ExtractionError(f"Could not open PDF: {e}") from e

        pages = []
        try:
            for page_number, page in enumerate(document, start=1):
                page_text = page.get_text().strip()
                if page_text:
                    pages.append(page_text)
            metadata = document.metadata or {}
            page_count = document.page_count
        finally:
            document.close()

        return ExtractionResult(
            content=clean_text("\n\n".join(pages)),
            # Text layer extraction is exact when there is one
            confidence=1.0 if pages else 0.0,
            content_type="application/pdf",
            title=(metadata.get("title") or "").strip() or None,
            description=(metadata.get("subject") or "").strip() or None,
            metadata={"page_count": page_count, "pages_with_text": len(pages)},
        )

    # ========================================
    # HTML
    # ========================================

    def _extract_html(self, buffer: bytes) -> ExtractionResult:
        html = buffer.decode("utf-8", errors="replace")

        result = self._extract_html_with_trafilatura(html)
        if result is None or not result.content:
            logger.debug("trafilatura found no main content, falling back to BeautifulSoup")
            result = self._extract_html_with_bs4(html)
        return result

    def _extract_html_with_trafilatura(self, html: str) -> Optional[ExtractionResult]:
        try:
            extracted = trafilatura.extract(
                html,
                include_comments=False,
                include_tables=True,
                output_format="json",
                with_metadata=True,
            )
        except Exception as e:
            logger.debug(f"trafilatura extraction failed: {e}")
            return None

        if not extracted:
            return None

        data = json.loads(extracted)
        return ExtractionResult(
            content=clean_text(data.get("text") or ""),
            confidence=0.9,
            content_type="text/html",
            language=data.get("language") or self._html_language(html),
            title=(data.get("title") or "").strip() or None,
            description=(data.get("description") or data.get("excerpt") or "").strip() or None,
            metadata={"extractor": "trafilatura"},
        )

    def _extract_html_with_bs4(self, html: str) -> ExtractionResult:
        soup = BeautifulSoup(html, "lxml")

        title = ""
        if soup.title and soup.title.string:
            title = soup.title.string
        elif soup.find("h1"):
            title = soup.find("h1").get_text(strip=True)

        description = None
        for attrs in ({"name": "description"}, {"property": "og:description"}):
            meta = soup.find("meta", attrs=attrs)
            if meta and meta.get("content"):
                description = meta["content"].strip()
                break

        keywords_meta = soup.find("meta", attrs={"name": "keywords"})
        keywords = []
        if keywords_meta and keywords_meta.get("content"):
            keywords = [k.strip() for k in keywords_meta["content"].split(",") if k.strip()]

        language = soup.html.get("lang") if soup.html else None

        for tag in soup(["script", "style", "nav", "header", "footer", "aside"]):
            tag.decompose()

        content = ""
        for selector in ("main", "article", ".content", "#content", ".post-content", ".entry-content"):
            element = soup.select_one(selector)
            if element:
                content = element.get_text(separator="\n", strip=True)
                if content:
                    break

        if not content and soup.body:
            content = soup.body.get_text(separator="\n", strip=True)

        return ExtractionResult(
            content=clean_text(content),
            confidence=0.9,
            content_type="text/html",
            language=language or "en",
            title=title.strip() or None,
            description=description,
            metadata={"extractor": "beautifulsoup", "keywords": keywords},
        )

    @staticmethod
    def _html_language(html: str) -> Optional[str]:
        match = re.search(r"<html[^>]*\blang=[\"']?([a-zA-Z-]+)", html, re.IGNORECASE)
        return match.group(1) if match else None

    # ========================================
    # Markdown & Plain Text
    # ========================================

    def _extract_markdown(self, buffer: bytes) -> ExtractionResult:
        source = buffer.decode("utf-8", errors="replace")
        html = markdown.markdown(source, extensions=["extra"])
        soup = BeautifulSoup(html, "lxml")

        heading = soup.find("h1")
        return ExtractionResult(
            content=clean_text(soup.get_text(separator="\n")),
            confidence=1.0,
            content_type="text/markdown",
            language="en",
            title=heading.get_text(strip=True) if heading else None,
        )

    def _extract_plain_text(self, buffer: bytes) -> ExtractionResult:
        return ExtractionResult(
            content=clean_text(buffer.decode("utf-8", errors="replace")),
            confidence=1.0,
            content_type="text/plain",
            language="en",
        )

    async def close(self) -> None:
        if self.remote is not None:
            await self.remote.close()
