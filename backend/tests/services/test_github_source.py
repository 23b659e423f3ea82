"""
Tests for GitHubSourceAdapter.

A small fake GitHub REST API is served through ``httpx.MockTransport``.
"""

import base64

import httpx
import pytest

from content_ingestion.core.exceptions import ExtractionError
from content_ingestion.models import ContentSourceType, ExtractionMethod, ProcessingStatus
from content_ingestion.schemas import GitHubIngestionRequest
from content_ingestion.services.sources import GitHubSourceAdapter
from content_ingestion.services.sources.github import (
    MAX_FILE_CHARS,
    TRUNCATION_MARKER,
    content_type_for,
    format_file_size,
    generate_title,
    should_process_file,
)

API_URL = "https://api.github.test"

REPOSITORY = {
    "full_name": "acme/docs",
    "description": "Course material",
    "language": "Python",
    "stargazers_count": 12,
    "forks_count": 3,
}

FILE_TEXT = {
    "README.md": "# Acme docs\n\nHow to use the course material.",
    "setup.py": "from setuptools import setup\n\nsetup()",
    "docs/guide.md": "Step one: read the guide.",
    "docs/empty.md": "   \n",
    "docs/huge.txt": "a" * (MAX_FILE_CHARS + 10),
}

LISTINGS = {
    "": [
        {"type": "file", "name": "README.md", "path": "README.md", "size": 2048, "sha": "r1"},
        {"type": "file", "name": "setup.py", "path": "setup.py", "size": 40, "sha": "s1"},
        {"type": "file", "name": "logo.png", "path": "logo.png", "size": 900, "sha": "l1"},
        {"type": "dir", "name": "docs", "path": "docs"},
    ],
    "docs": [
        {"type": "file", "name": "guide.md", "path": "docs/guide.md", "size": 25, "sha": "g1"},
        {"type": "file", "name": "empty.md", "path": "docs/empty.md", "size": 4, "sha": "e1"},
    ],
}


def github_handler(repo_status: int = 200):
    prefix = "/repos/acme/docs/contents/"

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/repos/acme/docs":
            if repo_status != 200:
                return httpx.Response(repo_status, json={"message": "nope"})
            return httpx.Response(200, json=REPOSITORY)

        if path.startswith(prefix):
            assert request.url.params["ref"] == "main"
            target = path[len(prefix):]
            if target in LISTINGS:
                return httpx.Response(200, json=LISTINGS[target])
            if target in FILE_TEXT:
                encoded = base64.b64encode(FILE_TEXT[target].encode("utf-8")).decode("ascii")
                return httpx.Response(200, json={"type": "file", "path": target, "content": encoded})

        return httpx.Response(404, json={"message": "Not Found"})

    return handler


def make_adapter(repo_status: int = 200, max_files: int = 100) -> GitHubSourceAdapter:
    client = httpx.AsyncClient(transport=httpx.MockTransport(github_handler(repo_status)), base_url=API_URL)
    return GitHubSourceAdapter(max_files=max_files, client=client)


class TestHelpers:
    @pytest.mark.parametrize(
        "name,include_code,expected",
        [
            ("guide.md", False, True),
            ("LICENSE", False, True),
            ("CHANGELOG.rst", False, True),
            ("setup.py", False, False),
            ("setup.py", True, True),
            ("logo.png", True, False),
        ],
    )
    def test_should_process_file(self, name, include_code, expected):
        assert should_process_file(name, include_code) is expected

    def test_generate_title(self):
        assert generate_title("README.md", "README.md", "acme/docs") == "docs - README"
        assert generate_title("README.md", "docs/api/README.md", "acme/docs") == "api - README"
        assert generate_title("guide.md", "docs/guide.md", "acme/docs") == "guide (docs)"
        assert generate_title("notes.txt", "notes.txt", "acme/docs") == "notes"

    @pytest.mark.parametrize(
        "size,expected",
        [(0, "0 Bytes"), (512, "512 Bytes"), (2048, "2 KB"), (1536, "1.5 KB"), (3 * 1024 * 1024, "3 MB")],
    )
    def test_format_file_size(self, size, expected):
        assert format_file_size(size) == expected

    def test_content_type_for(self):
        assert content_type_for("README.md") == "text/markdown"
        assert content_type_for("Makefile") == "text/plain"


class TestIngest:
    @pytest.mark.asyncio
    async def test_documentation_files(self):
        drafts = await make_adapter().ingest(GitHubIngestionRequest(repository="acme/docs"))

        assert [draft.source_id for draft in drafts] == ["acme/docs:README.md", "acme/docs:docs/guide.md"]

        readme = drafts[0]
        assert readme.source_type == ContentSourceType.GITHUB
        assert readme.title == "docs - README"
        assert readme.content == FILE_TEXT["README.md"]
        assert readme.content_type == "text/markdown"
        assert readme.extraction_method == ExtractionMethod.PLAIN_TEXT
        assert readme.initial_status == ProcessingStatus.PROCESSING
        assert readme.tags == ["github", "Python"]
        assert readme.categories == ["documentation"]
        assert "File size: 2 KB" in readme.description
        assert readme.source_metadata["repo_info"]["stars"] == 12
        assert readme.source_metadata["sha"] == "r1"

    @pytest.mark.asyncio
    async def test_include_code(self):
        drafts = await make_adapter().ingest(GitHubIngestionRequest(repository="acme/docs", include_code=True))

        assert "acme/docs:setup.py" in [draft.source_id for draft in drafts]

    @pytest.mark.asyncio
    async def test_requested_paths(self):
        drafts = await make_adapter().ingest(GitHubIngestionRequest(repository="acme/docs", paths=["/docs/"]))

        assert [draft.title for draft in drafts] == ["guide (docs)"]

    @pytest.mark.asyncio
    async def test_file_limit(self):
        drafts = await make_adapter(max_files=1).ingest(GitHubIngestionRequest(repository="acme/docs"))

        assert len(drafts) == 1

    @pytest.mark.asyncio
    async def test_nothing_matches(self):
        with pytest.raises(ExtractionError) as exc_info:
            await make_adapter().ingest(GitHubIngestionRequest(repository="acme/docs", paths=["missing"]))

        assert exc_info.value.code == "EMPTY_EXTRACTION"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "repo_status,code",
        [(404, "REPOSITORY_NOT_FOUND"), (403, "GITHUB_ACCESS_DENIED"), (502, "GITHUB_API_ERROR")],
    )
    async def test_repository_errors(self, repo_status, code):
        with pytest.raises(ExtractionError) as exc_info:
            await make_adapter(repo_status=repo_status).ingest(GitHubIngestionRequest(repository="acme/docs"))

        assert exc_info.value.code == code


class TestFileContent:
    @pytest.mark.asyncio
    async def test_large_file_truncated(self):
        content = await make_adapter().get_file_content("acme", "docs", "main", "docs/huge.txt")

        assert len(content) == MAX_FILE_CHARS + len(TRUNCATION_MARKER)
        assert content.endswith(TRUNCATION_MARKER)

    @pytest.mark.asyncio
    async def test_missing_file(self):
        with pytest.raises(ExtractionError) as exc_info:
            await make_adapter().get_file_content("acme", "docs", "main", "nope.md")

        assert exc_info.value.code == "FILE_NOT_FOUND"

    def test_token_header(self):
        adapter = GitHubSourceAdapter(token="ghp_test", api_url=API_URL)

        assert adapter.client.headers["Authorization"] == "Bearer ghp_test"
