"""
Tests for URLSourceAdapter.

HTTP goes through a mocked ``requests.Session``; robots.txt handling is
tested by patching ``RobotFileParser``.
"""

from unittest.mock import MagicMock, Mock, patch

import pytest
import requests

from content_ingestion.core.config import ExtractionConfig
from content_ingestion.core.exceptions import ContentValidationError, ExtractionError
from content_ingestion.models import ContentItem, ContentSourceType, ExtractionMethod
from content_ingestion.schemas import URLIngestionRequest
from content_ingestion.services.sources import URLSourceAdapter


def mock_response(content: bytes = b"<html><body>Hi</body></html>", status_code: int = 200, content_type="text/html"):
    response = Mock()
    response.content = content
    response.status_code = status_code
    response.url = "https://example.com/docs/page.html"
    response.headers = {"Content-Type": f"{content_type}; charset=utf-8"}
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(response=response)
    else:
        response.raise_for_status.return_value = None
    return response


def url_item(url: str = "https://example.com/docs/page.html") -> ContentItem:
    return ContentItem(source_id=url, source_type=ContentSourceType.URL, source_metadata={"url": url})


class TestURLValidation:
    @pytest.mark.parametrize("url", ["ftp://example.com/file", "https://", "example.com/page"])
    def test_invalid_urls(self, url):
        with pytest.raises(ContentValidationError):
            URLSourceAdapter.validate_url(url)

    def test_valid_url_is_stripped(self):
        assert URLSourceAdapter.validate_url("  https://example.com/a ") == "https://example.com/a"


class TestIngest:
    @pytest.mark.asyncio
    async def test_draft_without_robots_check(self):
        adapter = URLSourceAdapter(respect_robots_txt=False, session=MagicMock())
        request = URLIngestionRequest(
            url="https://example.com/docs/page.html",
            title="Docs",
            extraction_method=ExtractionMethod.PLAIN_TEXT,
        )

        [draft] = await adapter.ingest(request)

        assert draft.source_id == "https://example.com/docs/page.html"
        assert draft.source_metadata == {"url": "https://example.com/docs/page.html", "domain": "example.com"}
        assert draft.extraction_method == ExtractionMethod.PLAIN_TEXT
        assert draft.content == ""

    @pytest.mark.asyncio
    async def test_robots_disallowed(self):
        with patch("content_ingestion.services.sources.url.RobotFileParser") as parser_class:
            parser_class.return_value.can_fetch.return_value = False
            adapter = URLSourceAdapter(respect_robots_txt=True, session=MagicMock())

            with pytest.raises(ExtractionError) as exc_info:
                await adapter.ingest(URLIngestionRequest(url="https://example.com/private"))

        assert exc_info.value.code == "ROBOTS_DISALLOWED"

    def test_unreadable_robots_allows_fetch(self):
        with patch("content_ingestion.services.sources.url.RobotFileParser") as parser_class:
            parser_class.return_value.read.side_effect = OSError("timed out")
            adapter = URLSourceAdapter(session=MagicMock())

            assert adapter.is_allowed_by_robots("https://example.com/page") is True

    def test_robots_cached_per_domain(self):
        with patch("content_ingestion.services.sources.url.RobotFileParser") as parser_class:
            parser_class.return_value.can_fetch.return_value = True
            adapter = URLSourceAdapter(session=MagicMock())

            adapter.is_allowed_by_robots("https://example.com/a")
            adapter.is_allowed_by_robots("https://example.com/b")

        assert parser_class.return_value.read.call_count == 1


class TestFetchPayload:
    @pytest.mark.asyncio
    async def test_download(self):
        session = MagicMock()
        session.get.return_value = mock_response(b"<html><body>Hello</body></html>")
        adapter = URLSourceAdapter(respect_robots_txt=False, timeout_seconds=7, session=session)

        payload = await adapter.fetch_payload(url_item())

        session.get.assert_called_once_with(
            "https://example.com/docs/page.html", timeout=7, allow_redirects=True
        )
        assert payload.mime_type == "text/html"
        assert payload.name == "page.html"
        assert payload.content == b"<html><body>Hello</body></html>"

    @pytest.mark.asyncio
    async def test_http_error(self):
        session = MagicMock()
        session.get.return_value = mock_response(status_code=404)
        adapter = URLSourceAdapter(respect_robots_txt=False, session=session)

        with pytest.raises(ExtractionError) as exc_info:
            await adapter.fetch_payload(url_item())

        assert exc_info.value.code == "URL_FETCH_FAILED"
        assert exc_info.value.details["status_code"] == 404

    @pytest.mark.asyncio
    async def test_unreachable(self):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("no route to host")
        adapter = URLSourceAdapter(respect_robots_txt=False, session=session)

        with pytest.raises(ExtractionError) as exc_info:
            await adapter.fetch_payload(url_item())

        assert exc_info.value.code == "URL_UNREACHABLE"

    @pytest.mark.asyncio
    async def test_page_too_large(self):
        session = MagicMock()
        session.get.return_value = mock_response(b"x" * 100)
        adapter = URLSourceAdapter(
            respect_robots_txt=False,
            config=ExtractionConfig(max_file_size=10),
            session=session,
        )

        with pytest.raises(ExtractionError) as exc_info:
            await adapter.fetch_payload(url_item())

        assert exc_info.value.code == "URL_TOO_LARGE"
