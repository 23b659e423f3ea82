"""
Tests for FileSourceAdapter and FileServiceClient.

The file service is served by ``httpx.MockTransport`` (see conftest).
"""

import httpx
import pytest

from content_ingestion.core.config import ExtractionConfig
from content_ingestion.core.exceptions import ContentValidationError, ExtractionError
from content_ingestion.models import ContentItem, ContentSourceType, ExtractionMethod, ProcessingStatus
from content_ingestion.schemas import FileIngestionRequest
from content_ingestion.services.clients.file_service import FileServiceClient
from content_ingestion.services.sources import FileSourceAdapter

from tests.fakes import make_file_service


class TestFileServiceClient:
    @pytest.mark.asyncio
    async def test_metadata(self):
        stored = await make_file_service().get_file("file-notes")

        assert stored.original_name == "lecture-notes.txt"
        assert stored.mime_type == "text/plain"
        assert stored.size > 0
        assert stored.content is None

    @pytest.mark.asyncio
    async def test_with_content(self):
        stored = await make_file_service().get_file("file-page", include_content=True)

        assert stored.content.startswith(b"<html")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "file_id,code,status_code",
        [
            ("file-missing", "FILE_NOT_FOUND", 404),
            ("file-forbidden", "FILE_ACCESS_DENIED", 403),
        ],
    )
    async def test_errors(self, file_id, code, status_code):
        with pytest.raises(ExtractionError) as exc_info:
            await make_file_service().get_file(file_id)

        assert exc_info.value.code == code
        assert exc_info.value.status_code == status_code

    @pytest.mark.asyncio
    async def test_server_error(self):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
            base_url="http://file-service.test",
        )
        service = FileServiceClient("http://file-service.test", client=client)

        with pytest.raises(ExtractionError) as exc_info:
            await service.get_file("anything")

        assert exc_info.value.code == "FILE_SERVICE_ERROR"

    @pytest.mark.asyncio
    async def test_unreachable(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(refuse), base_url="http://file-service.test")
        service = FileServiceClient("http://file-service.test", client=client)

        with pytest.raises(ExtractionError) as exc_info:
            await service.get_file("file-notes")

        assert exc_info.value.code == "FILE_SERVICE_ERROR"


class TestFileSourceAdapter:
    @pytest.mark.asyncio
    async def test_ingest_builds_pending_draft(self):
        adapter = FileSourceAdapter(make_file_service())
        request = FileIngestionRequest(
            file_id="file-page",
            title="Intro",
            course_id="bio-101",
            extraction_method=ExtractionMethod.HTML_PARSER,
        )

        [draft] = await adapter.ingest(request)

        assert draft.source_type == ContentSourceType.FILE
        assert draft.source_id == "file-page"
        assert draft.source_metadata["mime_type"] == "text/html"
        assert draft.extraction_method == ExtractionMethod.HTML_PARSER
        assert draft.course_id == "bio-101"
        assert draft.initial_status == ProcessingStatus.PENDING

    @pytest.mark.asyncio
    async def test_auto_method_left_unset(self):
        [draft] = await FileSourceAdapter(make_file_service()).ingest(FileIngestionRequest(file_id="file-notes"))

        assert draft.extraction_method is None

    @pytest.mark.asyncio
    async def test_disallowed_mime_type(self):
        with pytest.raises(ContentValidationError) as exc_info:
            await FileSourceAdapter(make_file_service()).ingest(FileIngestionRequest(file_id="file-zip"))

        assert exc_info.value.code == "UNSUPPORTED_MIME_TYPE"

    @pytest.mark.asyncio
    async def test_file_too_large(self):
        adapter = FileSourceAdapter(make_file_service(), ExtractionConfig(max_file_size=10))

        with pytest.raises(ContentValidationError) as exc_info:
            await adapter.ingest(FileIngestionRequest(file_id="file-notes"))

        assert exc_info.value.code == "FILE_TOO_LARGE"

    @pytest.mark.asyncio
    async def test_fetch_payload(self):
        item = ContentItem(
            source_id="file-notes",
            source_type=ContentSourceType.FILE,
            source_metadata={"file_id": "file-notes"},
        )

        payload = await FileSourceAdapter(make_file_service()).fetch_payload(item)

        assert payload.name == "lecture-notes.txt"
        assert payload.mime_type == "text/plain"
        assert payload.content.startswith(b"Photosynthesis")

    @pytest.mark.asyncio
    async def test_fetch_empty_file(self):
        item = ContentItem(source_id="file-empty", source_type=ContentSourceType.FILE, source_metadata={})

        with pytest.raises(ExtractionError) as exc_info:
            await FileSourceAdapter(make_file_service()).fetch_payload(item)

        assert exc_info.value.code == "EMPTY_FILE"
