"""
Content Chunking Service

Splits extracted text into overlapping, fixed-size windows ready for
embedding.

Algorithm:
----------
step = chunk_size - overlap
chunk i spans [i * step, min(i * step + chunk_size, len(content)))
and the loop stops once a span reaches the end of the content.
A trailing chunk shorter than min_chunk_size is folded into the previous
chunk by extending that chunk's end to len(content).

Positions are character offsets into ``ContentItem.content``; ``tokens``
is counted from each chunk's own text with tiktoken. The same content and
configuration always produce the same spans, so rerunning chunking on an
unchanged item replaces its chunks with identical ones.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

import tiktoken

from content_ingestion.core.config import ChunkingConfig


@dataclass(frozen=True)
class TextChunk:
    """One span of the parent content."""

    index: int
    text: str
    tokens: int
    start_position: int
    end_position: int
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def length(self) -> int:
        return self.end_position - self.start_position


class ContentChunker:
    """
    Deterministic sliding-window chunker.

    Usage:
    ------
    chunker = ContentChunker(ChunkingConfig(chunk_size=500, overlap=50))
    for chunk in chunker.chunk(item.content):
        ...
    """

    def __init__(self, config: Optional[ChunkingConfig] = None):
        self.config = config or ChunkingConfig()
        self._validate_config(self.config)

        # cl100k_base is a good general-purpose approximation
        try:
            self.tokenizer = tiktoken.get_encoding("cl100k_base")
        except Exception:
            # Encoding files unavailable (offline)
            self.tokenizer = None

    @staticmethod
    def _validate_config(config: ChunkingConfig) -> None:
        values = {
            "chunk_size": config.chunk_size,
            "overlap": config.overlap,
            "min_chunk_size": config.min_chunk_size,
            "max_chunk_size": config.max_chunk_size,
        }
        for name, value in values.items():
            if value < 0:
                raise ValueError(f"{name} must not be negative (got {value})")
        if config.chunk_size == 0:
            raise ValueError("chunk_size must be positive")
        if config.overlap >= config.chunk_size:
            raise ValueError(
                f"overlap ({config.overlap}) must be smaller than chunk_size ({config.chunk_size})"
            )
        if config.chunk_size > config.max_chunk_size:
            raise ValueError(
                f"chunk_size ({config.chunk_size}) exceeds max_chunk_size ({config.max_chunk_size})"
            )
        if config.min_chunk_size > config.chunk_size:
            raise ValueError(
                f"min_chunk_size ({config.min_chunk_size}) exceeds chunk_size ({config.chunk_size})"
            )

    def count_tokens(self, text: str) -> int:
        """
        Count tokens in text using tiktoken.

        Falls back to roughly four characters per token when the encoding
        could not be loaded.
        """
        if self.tokenizer:
            return len(self.tokenizer.encode(text))
        return len(text) // 4

    def compute_spans(self, length: int) -> list[tuple[int, int]]:
        """Chunk boundaries for content of ``length`` characters."""
        if length <= 0:
            return []

        size = self.config.chunk_size
        step = size - self.config.overlap

        spans: list[tuple[int, int]] = []
        start = 0
        while True:
            end = min(start + size, length)
            spans.append((start, end))
            if end == length:
                break
            start += step

        # Fold an undersized tail into its predecessor
        if len(spans) > 1:
            last_start, last_end = spans[-1]
            if last_end - last_start < self.config.min_chunk_size:
                spans.pop()
                previous_start, _ = spans[-1]
                spans[-1] = (previous_start, length)

        return spans

    def chunk(self, content: str, metadata: Optional[dict[str, Any]] = None) -> list[TextChunk]:
        """
        Split ``content`` into chunks.

        Args:
            content: Extracted plain text
            metadata: Extra keys copied into every chunk's metadata

        Returns:
            Chunks in index order; empty list for empty content
        """
        chunks = []
        for index, (start, end) in enumerate(self.compute_spans(len(content))):
            text = content[start:end]
            chunks.append(
                TextChunk(
                    index=index,
                    text=text,
                    tokens=self.count_tokens(text),
                    start_position=start,
                    end_position=end,
                    metadata={**(metadata or {}), "char_count": end - start},
                )
            )
        return chunks

    @staticmethod
    def get_chunk_stats(chunks: list[TextChunk]) -> dict[str, Any]:
        """Summary recorded in the item's processing metadata."""
        if not chunks:
            return {
                "total_chunks": 0,
                "total_tokens": 0,
                "average_tokens_per_chunk": 0,
                "min_tokens": 0,
                "max_tokens": 0,
                "average_chunk_length": 0,
            }

        token_counts = [chunk.tokens for chunk in chunks]
        total_tokens = sum(token_counts)
        return {
            "total_chunks": len(chunks),
            "total_tokens": total_tokens,
            "average_tokens_per_chunk": round(total_tokens / len(chunks)),
            "min_tokens": min(token_counts),
            "max_tokens": max(token_counts),
            "average_chunk_length": round(sum(chunk.length for chunk in chunks) / len(chunks)),
        }
