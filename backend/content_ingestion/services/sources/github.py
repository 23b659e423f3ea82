"""
GitHub source adapter.

Walks the requested paths of a repository branch through the GitHub REST
API and turns every selected file into its own content item. Files carry
their text, so the items skip extraction and start at PROCESSING.

Selection rules:
- documentation extensions (md, txt, rst, adoc, wiki): always
- well-known project files (README, LICENSE, CHANGELOG, ...): always
- code and config extensions: only with ``include_code``
"""

import base64
import binascii
from pathlib import PurePosixPath
from typing import Any, Optional

import httpx

from content_ingestion.core.exceptions import ExtractionError
from content_ingestion.core.logging import get_logger
from content_ingestion.models import ContentSourceType, ExtractionMethod
from content_ingestion.schemas.ingestion import GitHubIngestionRequest
from content_ingestion.services.sources.base import (
    DraftContentItem,
    SourceAdapter,
    classification_fields,
)

logger = get_logger(__name__)

MAX_FILE_CHARS = 1024 * 1024
TRUNCATION_MARKER = "\n\n[Content truncated due to size limit]"

DOC_EXTENSIONS = frozenset({"md", "txt", "rst", "adoc", "wiki"})

CODE_EXTENSIONS = frozenset({
    "js", "ts", "jsx", "tsx", "py", "java", "cpp", "c", "h", "cs", "php",
    "rb", "go", "rs", "swift", "kt", "scala", "clj", "hs", "ml", "r",
    "sql", "html", "css", "scss", "less", "json", "xml", "yaml", "yml",
    "toml", "ini", "cfg", "conf",
})

IMPORTANT_FILES = frozenset({
    "readme", "license", "changelog", "contributing", "code_of_conduct",
    "security", "support", "authors", "contributors", "maintainers",
})

CONTENT_TYPES = {
    "md": "text/markdown",
    "txt": "text/plain",
    "rst": "text/x-rst",
    "adoc": "text/asciidoc",
    "html": "text/html",
    "xml": "text/xml",
    "json": "application/json",
    "yaml": "text/yaml",
    "yml": "text/yaml",
    "js": "text/javascript",
    "ts": "text/typescript",
    "py": "text/x-python",
    "java": "text/x-java",
    "cpp": "text/x-c++",
    "c": "text/x-c",
    "cs": "text/x-csharp",
    "php": "text/x-php",
    "rb": "text/x-ruby",
    "go": "text/x-go",
    "rs": "text/x-rust",
    "sql": "text/x-sql",
}


def file_extension(name: str) -> str:
    return name.rsplit(".", 1)[-1].lower() if "." in name else ""


def should_process_file(name: str, include_code: bool) -> bool:
    extension = file_extension(name)
    if extension in DOC_EXTENSIONS:
        return True
    if PurePosixPath(name.lower()).stem in IMPORTANT_FILES:
        return True
    return include_code and extension in CODE_EXTENSIONS


def content_type_for(name: str) -> str:
    return CONTENT_TYPES.get(file_extension(name), "text/plain")


def generate_title(name: str, path: str, full_name: str) -> str:
    """``<dir> - README`` for readmes, ``<name> (<dir>)`` for nested files."""
    stem = name.rsplit(".", 1)[0] if "." in name else name
    parts = path.split("/")

    if stem.lower() == "readme":
        dir_name = parts[-2] if len(parts) > 1 else full_name.split("/")[-1]
        return f"{dir_name} - README"

    if len(parts) > 1:
        return f"{stem} ({parts[-2]})"
    return stem


def format_file_size(size: int) -> str:
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(units) - 1:
        value /= 1024
        unit += 1
    return f"{round(value, 2):g} {units[unit]}"


class GitHubSourceAdapter(SourceAdapter[GitHubIngestionRequest]):
    source_type = ContentSourceType.GITHUB
    request_type = GitHubIngestionRequest

    def __init__(
        self,
        token: Optional[str] = None,
        api_url: str = "https://api.github.com",
        max_files: int = 100,
        timeout_seconds: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.max_files = max_files

        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": "content-ingestion-service/0.1",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self.client = client or httpx.AsyncClient(
            base_url=api_url.rstrip("/"),
            headers=headers,
            timeout=timeout_seconds,
        )

    async def ingest(self, request: GitHubIngestionRequest) -> list[DraftContentItem]:
        owner, repo = request.repository.split("/", 1)
        repo_info = await self.get_repository_info(owner, repo)

        files: list[dict[str, Any]] = []
        for path in request.paths or [""]:
            await self._collect_files(owner, repo, request.branch, path.strip("/"), request.include_code, files)
            if len(files) >= self.max_files:
                logger.warning(
                    "github_file_limit_reached",
                    repository=request.repository,
                    max_files=self.max_files,
                )
                break
        files = files[:self.max_files]

        drafts = []
        for file in files:
            try:
                content = await self.get_file_content(owner, repo, request.branch, file["path"])
            except ExtractionError as e:
                logger.warning(
                    "github_file_skipped",
                    repository=request.repository,
                    path=file["path"],
                    error=e.message,
                )
                continue

            if not content.strip():
                continue
            drafts.append(self._draft(request, repo_info, file, content))

        if not drafts:
            raise ExtractionError(
                f"No matching files found in {request.repository}@{request.branch}",
                code="EMPTY_EXTRACTION",
                details={"repository": request.repository, "branch": request.branch, "paths": request.paths},
            )

        logger.info(
            "github_source_accepted",
            repository=request.repository,
            branch=request.branch,
            files=len(drafts),
        )
        return drafts

    def _draft(
        self,
        request: GitHubIngestionRequest,
        repo_info: dict[str, Any],
        file: dict[str, Any],
        content: str,
    ) -> DraftContentItem:
        fields = classification_fields(request)
        fields["tags"] = fields["tags"] + ["github", repo_info.get("language") or "unknown"]
        fields["categories"] = fields["categories"] or ["documentation"]

        description_parts = [f"File from GitHub repository {repo_info['full_name']}"]
        if repo_info.get("description"):
            description_parts.append(f"Repository: {repo_info['description']}")
        if repo_info.get("language"):
            description_parts.append(f"Primary language: {repo_info['language']}")
        description_parts.append(f"File path: {file['path']}")
        description_parts.append(f"File size: {format_file_size(file['size'])}")

        return DraftContentItem(
            source_id=f"{request.repository}:{file['path']}",
            source_type=self.source_type,
            source_metadata={
                "repository": request.repository,
                "path": file["path"],
                "branch": request.branch,
                "sha": file.get("sha"),
                "size": file["size"],
                "download_url": file.get("download_url"),
                "repo_info": {
                    "description": repo_info.get("description"),
                    "language": repo_info.get("language"),
                    "stars": repo_info.get("stars"),
                    "forks": repo_info.get("forks"),
                },
            },
            title=generate_title(file["name"], file["path"], repo_info["full_name"]),
            description=". ".join(description_parts),
            content=content,
            content_type=content_type_for(file["name"]),
            language="en",
            extraction_method=ExtractionMethod.PLAIN_TEXT,
            estimated_size=len(content.encode("utf-8")),
            **fields,
        )

    # ========================================
    # GitHub API
    # ========================================

    async def get_repository_info(self, owner: str, repo: str) -> dict[str, Any]:
        response = await self._request(f"/repos/{owner}/{repo}")

        if response.status_code == 404:
            raise ExtractionError(
                "Repository not found or not accessible",
                code="REPOSITORY_NOT_FOUND",
                details={"repository": f"{owner}/{repo}"},
            )
        if response.status_code == 403:
            raise ExtractionError(
                "GitHub API rate limit exceeded or insufficient permissions",
                code="GITHUB_ACCESS_DENIED",
                details={"repository": f"{owner}/{repo}"},
            )
        self._raise_for_status(response, f"{owner}/{repo}")

        data = response.json()
        return {
            "full_name": data.get("full_name", f"{owner}/{repo}"),
            "description": data.get("description"),
            "language": data.get("language"),
            "stars": data.get("stargazers_count", 0),
            "forks": data.get("forks_count", 0),
            "updated_at": data.get("updated_at"),
        }

    async def _collect_files(
        self,
        owner: str,
        repo: str,
        branch: str,
        path: str,
        include_code: bool,
        files: list[dict[str, Any]],
    ) -> None:
        """Depth-first walk of ``path``, appending selected files until the limit."""
        response = await self._request(f"/repos/{owner}/{repo}/contents/{path}", params={"ref": branch})
        if response.status_code == 404:
            logger.warning("github_path_not_found", repository=f"{owner}/{repo}", branch=branch, path=path)
            return
        self._raise_for_status(response, f"{owner}/{repo}/{path}")

        data = response.json()
        entries = data if isinstance(data, list) else [data]

        for entry in entries:
            if len(files) >= self.max_files:
                return
            if entry.get("type") == "file":
                if should_process_file(entry["name"], include_code):
                    files.append({
                        "name": entry["name"],
                        "path": entry["path"],
                        "sha": entry.get("sha"),
                        "size": entry.get("size") or 0,
                        "download_url": entry.get("download_url"),
                    })
            elif entry.get("type") == "dir":
                await self._collect_files(owner, repo, branch, entry["path"], include_code, files)

    async def get_file_content(self, owner: str, repo: str, branch: str, path: str) -> str:
        """Decoded file text, truncated at 1 MiB characters with a marker."""
        response = await self._request(f"/repos/{owner}/{repo}/contents/{path}", params={"ref": branch})
        if response.status_code == 404:
            raise ExtractionError("File not found", code="FILE_NOT_FOUND", details={"path": path})
        self._raise_for_status(response, f"{owner}/{repo}/{path}")

        data = response.json()
        if not isinstance(data, dict) or data.get("type") != "file" or data.get("content") is None:
            raise ExtractionError("Invalid file data", details={"path": path})

        try:
            content = base64.b64decode(data["content"]).decode("utf-8", errors="replace")
        except (binascii.Error, ValueError) as e:
            raise ExtractionError(f"Could not decode {path}: {e}", details={"path": path}) from e

        if len(content) > MAX_FILE_CHARS:
            logger.warning(
                "github_file_truncated",
                path=path,
                original_size=len(content),
                truncated_size=MAX_FILE_CHARS,
            )
            content = content[:MAX_FILE_CHARS] + TRUNCATION_MARKER
        return content

    async def _request(self, path: str, params: Optional[dict[str, str]] = None) -> httpx.Response:
        try:
            return await self.client.get(path, params=params)
        except httpx.HTTPError as e:
            raise ExtractionError(
                f"GitHub API unreachable: {e}",
                code="GITHUB_UNREACHABLE",
                details={"path": path},
            ) from e

    @staticmethod
    def _raise_for_status(response: httpx.Response, target: str) -> None:
        if response.status_code == 403:
            raise ExtractionError(
                "GitHub API rate limit exceeded or insufficient permissions",
                code="GITHUB_ACCESS_DENIED",
                details={"target": target},
            )
        if response.is_error:
            raise ExtractionError(
                f"GitHub API error {response.status_code} for {target}",
                code="GITHUB_API_ERROR",
                details={"target": target, "status_code": response.status_code},
            )

    async def close(self) -> None:
        await self.client.aclose()
