"""
YouTube source adapter.

The transcript is the content, so YouTube items skip extraction and start
at PROCESSING. Transcript selection falls back in this order:

1. Manual transcript in the requested / preferred languages
2. Auto-generated transcript in the requested / preferred languages
3. Manual transcript in any language
4. Auto-generated transcript in any language

Video metadata (title, description, duration, statistics) comes from the
YouTube Data API when an API key is configured; without one the item is
titled after the video id.
"""

import asyncio
import logging
import re
from typing import Optional
from urllib.parse import parse_qs, urlparse

import isodate
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from youtube_transcript_api import (
    CouldNotRetrieveTranscript,
    NoTranscriptFound,
    TranscriptsDisabled,
    VideoUnavailable,
    YouTubeTranscriptApi,
)

from content_ingestion.core.exceptions import ContentValidationError, ExtractionError
from content_ingestion.models import ContentSourceType, ExtractionMethod
from content_ingestion.schemas.ingestion import YOUTUBE_VIDEO_ID_PATTERN, YouTubeIngestionRequest
from content_ingestion.services.sources.base import (
    DraftContentItem,
    SourceAdapter,
    classification_fields,
)

logger = logging.getLogger(__name__)


def extract_video_id(value: str) -> Optional[str]:
    """
    Video id from a bare id or a YouTube URL.

    Supports:
    - dQw4w9WgXcQ
    - https://www.youtube.com/watch?v=VIDEO_ID
    - https://youtu.be/VIDEO_ID
    - https://www.youtube.com/embed/VIDEO_ID
    - https://www.youtube.com/shorts/VIDEO_ID
    """
    value = value.strip()
    if re.match(YOUTUBE_VIDEO_ID_PATTERN, value):
        return value

    parsed = urlparse(value if "://" in value else f"https://{value}")
    candidate = None

    if "youtube.com" in parsed.netloc:
        query_params = parse_qs(parsed.query)
        if "v" in query_params:
            candidate = query_params["v"][0]
        else:
            for prefix in ("/embed/", "/shorts/", "/v/", "/live/"):
                if prefix in parsed.path:
                    candidate = parsed.path.split(prefix)[1].split("/")[0]
                    break
    elif "youtu.be" in parsed.netloc:
        candidate = parsed.path.lstrip("/").split("/")[0]

    if candidate and re.match(YOUTUBE_VIDEO_ID_PATTERN, candidate):
        return candidate
    return None


def clean_transcript(text: str) -> str:
    """Drop [Music]-style tags and timestamps, normalise whitespace."""
    if not text:
        return ""

    text = re.sub(r"\[.*?\]", "", text)
    text = re.sub(r"\d{1,2}:\d{2}(?::\d{2})?", "", text)
    text = re.sub(r"\s+", " ", text).strip()
    text = re.sub(r"([.!?])\1+", r"\1", text)

    text = text.replace("&nbsp;", " ")
    text = text.replace("&amp;", "&")
    text = text.replace("&lt;", "<")
    text = text.replace("&gt;", ">")
    return text


def format_duration(iso_duration: str) -> tuple[int, str]:
    """
    ISO 8601 duration to (seconds, "H:MM:SS" / "M:SS").

    >>> format_duration("PT15M33S")
    (933, '15:33')
    """
    try:
        total_seconds = int(isodate.parse_duration(iso_duration).total_seconds())
    except (isodate.ISO8601Error, TypeError):
        return 0, "0:00"

    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours:
        return total_seconds, f"{hours}:{minutes:02d}:{seconds:02d}"
    return total_seconds, f"{minutes}:{seconds:02d}"


class YouTubeSourceAdapter(SourceAdapter[YouTubeIngestionRequest]):
    source_type = ContentSourceType.YOUTUBE
    request_type = YouTubeIngestionRequest

    def __init__(
        self,
        api_key: Optional[str] = None,
        preferred_languages: Optional[list[str]] = None,
        transcript_api: Optional[YouTubeTranscriptApi] = None,
        youtube_client=None,
    ):
        self.api_key = api_key
        self.preferred_languages = preferred_languages or ["en"]
        self.transcript_api = transcript_api or YouTubeTranscriptApi()
        self._youtube = youtube_client

    async def ingest(self, request: YouTubeIngestionRequest) -> list[DraftContentItem]:
        video_id = extract_video_id(request.video_id)
        if not video_id:
            raise ContentValidationError(
                f"Could not find a video id in: {request.video_id}",
                code="INVALID_VIDEO_ID",
                details={"video_id": request.video_id},
            )

        languages = ([request.language] if request.language else []) + [
            lang for lang in self.preferred_languages if lang != request.language
        ]

        transcript, transcript_info = await asyncio.to_thread(
            self.get_transcript, video_id, languages
        )
        if not transcript:
            raise ExtractionError(
                f"Transcript for video {video_id} is empty",
                code="EMPTY_EXTRACTION",
                details={"video_id": video_id},
            )

        details: dict = {}
        if request.extract_metadata and (self.api_key or self._youtube is not None):
            details = await asyncio.to_thread(self.get_video_details, video_id)

        logger.info(
            f"Fetched {transcript_info['type']} transcript for {video_id} "
            f"({transcript_info['language']}, {len(transcript)} chars)"
        )

        return [
            DraftContentItem(
                source_id=video_id,
                source_type=self.source_type,
                source_metadata={
                    "url": f"https://www.youtube.com/watch?v={video_id}",
                    "transcript": transcript_info,
                    **{key: value for key, value in details.items() if key not in ("title", "description", "tags")},
                },
                title=details.get("title") or f"YouTube video {video_id}",
                description=details.get("description") or None,
                content=transcript,
                content_type="text/plain",
                language=(transcript_info.get("language") or request.language or "en")[:2],
                extraction_method=ExtractionMethod.PLAIN_TEXT,
                estimated_size=len(transcript.encode("utf-8")),
                **self._labels(request, details),
            )
        ]

    @staticmethod
    def _labels(request: YouTubeIngestionRequest, details: dict) -> dict:
        fields = classification_fields(request)
        video_tags = [tag for tag in details.get("tags", []) if tag not in fields["tags"]]
        fields["tags"] = fields["tags"] + video_tags[:20]
        return fields

    # ========================================
    # Transcripts
    # ========================================

    def get_transcript(self, video_id: str, languages: list[str]) -> tuple[str, dict]:
        """
        Transcript text and ``{language, type, available_languages}``.

        Raises:
            ExtractionError: video unavailable or no transcript in any language
        """
        try:
            transcript_list = self.transcript_api.list(video_id)
            available = [transcript.language_code for transcript in transcript_list]

            for finder, kind in (
                (transcript_list.find_manually_created_transcript, "manual"),
                (transcript_list.find_generated_transcript, "auto"),
            ):
                for lang in languages:
                    try:
                        transcript = finder([lang])
                    except NoTranscriptFound:
                        continue
                    return self._fetch_text(transcript), self._info(transcript, kind, available)

            for generated, kind in ((False, "manual"), (True, "auto")):
                for transcript in transcript_list:
                    if transcript.is_generated == generated:
                        logger.info(
                            f"Using {kind} transcript in non-preferred language "
                            f"{transcript.language_code} for video {video_id}"
                        )
                        return self._fetch_text(transcript), self._info(transcript, kind, available)

        except TranscriptsDisabled as e:
            raise ExtractionError(
                f"Transcripts are disabled for video {video_id}",
                code="TRANSCRIPT_UNAVAILABLE",
                details={"video_id": video_id},
            ) from e
        except VideoUnavailable as e:
            raise ExtractionError(
                f"Video {video_id} is unavailable",
                code="VIDEO_UNAVAILABLE",
                details={"video_id": video_id},
            ) from e
        except CouldNotRetrieveTranscript as e:
            logger.error(f"Error fetching transcript for {video_id}: {e}")
            raise ExtractionError(
                f"Failed to get transcript for video {video_id}",
                code="TRANSCRIPT_UNAVAILABLE",
                details={"video_id": video_id},
            ) from e

        raise ExtractionError(
            f"No transcript available for video {video_id} in any language",
            code="TRANSCRIPT_UNAVAILABLE",
            details={"video_id": video_id},
        )

    @staticmethod
    def _fetch_text(transcript) -> str:
        fetched = transcript.fetch()
        return clean_transcript(" ".join(snippet.text for snippet in fetched))

    @staticmethod
    def _info(transcript, kind: str, available: list[str]) -> dict:
        return {
            "language": transcript.language_code,
            "type": kind,
            "is_translatable": transcript.is_translatable,
            "available_languages": available,
        }

    # ========================================
    # Video Metadata
    # ========================================

    @property
    def youtube(self):
        if self._youtube is None:
            self._youtube = build("youtube", "v3", developerKey=self.api_key, cache_discovery=False)
        return self._youtube

    def get_video_details(self, video_id: str) -> dict:
        """Snippet, duration and statistics of a video; empty on API errors."""
        try:
            response = self.youtube.videos().list(
                part="snippet,contentDetails,statistics",
                id=video_id,
            ).execute()
        except HttpError as e:
            logger.warning(f"YouTube API error for {video_id}: {e}")
            return {}

        if not response.get("items"):
            raise ExtractionError(
                f"Video not found: {video_id}",
                code="VIDEO_UNAVAILABLE",
                details={"video_id": video_id},
            )

        item = response["items"][0]
        snippet = item.get("snippet", {})
        content_details = item.get("contentDetails", {})
        statistics = item.get("statistics", {})

        duration_seconds, duration_formatted = format_duration(content_details.get("duration", "PT0S"))

        return {
            "title": snippet.get("title", ""),
            "description": snippet.get("description", ""),
            "tags": snippet.get("tags", []),
            "channel_id": snippet.get("channelId"),
            "channel_title": snippet.get("channelTitle", ""),
            "published_at": snippet.get("publishedAt"),
            "duration_seconds": duration_seconds,
            "duration_formatted": duration_formatted,
            "view_count": int(statistics.get("viewCount", 0)),
            "like_count": int(statistics.get("likeCount", 0)),
        }
