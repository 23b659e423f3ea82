"""
File Service Client

The file service stores uploaded binaries. This service only reads them:

    GET /api/v1/files/{file_id}           -> {id, originalName, mimeType, size, url}
    GET /api/v1/files/{file_id}/download  -> raw bytes
"""

import asyncio
from dataclasses import dataclass
from typing import Optional

import httpx

from content_ingestion.core.exceptions import ExtractionError
from content_ingestion.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class StoredFile:
    file_id: str
    original_name: str
    mime_type: str
    size: int
    content: Optional[bytes] = None


class FileServiceClient:
    """Async client for the file service."""

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout_seconds,
            headers={"User-Agent": "content-ingestion-service/0.1"},
        )

    async def get_file_metadata(self, file_id: str) -> StoredFile:
        response = await self._get(f"/api/v1/files/{file_id}", file_id)
        data = response.json()
        return StoredFile(
            file_id=str(data.get("id", file_id)),
            original_name=data.get("originalName") or data.get("original_name") or file_id,
            mime_type=data.get("mimeType") or data.get("mime_type") or "application/octet-stream",
            size=int(data.get("size") or 0),
        )

    async def download_file(self, file_id: str) -> bytes:
        response = await self._get(f"/api/v1/files/{file_id}/download", file_id)
        return response.content

    async def get_file(self, file_id: str, include_content: bool = False) -> StoredFile:
        """
        Metadata, plus the bytes when ``include_content`` is set.

        Raises:
            ExtractionError: file missing, access denied, or service unreachable
        """
        if not include_content:
            return await self.get_file_metadata(file_id)

        stored, content = await asyncio.gather(
            self.get_file_metadata(file_id),
            self.download_file(file_id),
        )
        stored.content = content
        stored.size = stored.size or len(content)
        return stored

    async def _get(self, path: str, file_id: str) -> httpx.Response:
        try:
            response = await self.client.get(path)
        except httpx.HTTPError as e:
            logger.error("file_service_unreachable", file_id=file_id, error=str(e))
            raise ExtractionError(
                f"File service unreachable: {e}",
                code="FILE_SERVICE_ERROR",
                details={"file_id": file_id},
            ) from e

        if response.status_code == 404:
            raise ExtractionError(
                f"File {file_id} not found",
                code="FILE_NOT_FOUND",
                status_code=404,
                details={"file_id": file_id},
            )
        if response.status_code in (401, 403):
            raise ExtractionError(
                f"Access denied to file {file_id}",
                code="FILE_ACCESS_DENIED",
                status_code=403,
                details={"file_id": file_id},
            )
        if response.is_error:
            logger.error(
                "file_service_error",
                file_id=file_id,
                status_code=response.status_code,
            )
            raise ExtractionError(
                f"File service returned {response.status_code}",
                code="FILE_SERVICE_ERROR",
                details={"file_id": file_id, "status_code": response.status_code},
            )
        return response

    async def close(self) -> None:
        await self.client.aclose()
