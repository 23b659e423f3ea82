"""
Tests for ContentChunker.

This test module verifies:
1. Configuration validation
2. Span computation (the 1100 and 520 character scenarios)
3. Coverage, determinism and index contiguity
4. Chunk statistics
"""

import pytest

from content_ingestion.core.config import ChunkingConfig
from content_ingestion.services.processors.chunker import ContentChunker


def default_chunker() -> ContentChunker:
    return ContentChunker(ChunkingConfig(chunk_size=500, overlap=50, min_chunk_size=100, max_chunk_size=1000))


class TestContentChunkerBasics:
    """Test basic ContentChunker functionality."""

    def test_initialization_defaults(self):
        chunker = ContentChunker()
        assert chunker.config.chunk_size == 500
        assert chunker.config.overlap == 50
        assert chunker.config.min_chunk_size == 100

    @pytest.mark.parametrize(
        "config",
        [
            ChunkingConfig(chunk_size=100, overlap=100, min_chunk_size=10),
            ChunkingConfig(chunk_size=100, overlap=150, min_chunk_size=10),
            ChunkingConfig(chunk_size=2000, overlap=50, max_chunk_size=1000),
            ChunkingConfig(chunk_size=100, overlap=10, min_chunk_size=200),
            ChunkingConfig(chunk_size=100, overlap=-1, min_chunk_size=10),
        ],
    )
    def test_invalid_configuration_rejected(self, config):
        with pytest.raises(ValueError):
            ContentChunker(config)

    def test_count_tokens(self):
        chunker = default_chunker()

        short = chunker.count_tokens("Hello world")
        longer = chunker.count_tokens("This is a much longer piece of text that should have more tokens.")

        assert 0 < short < 10
        assert longer > short


class TestChunkSpans:
    """Span layout for the reference scenarios."""

    def test_1100_characters_give_three_chunks(self):
        spans = default_chunker().compute_spans(1100)

        assert spans == [(0, 500), (450, 950), (900, 1100)]

    def test_520_characters_merge_short_tail(self):
        spans = default_chunker().compute_spans(520)

        assert spans == [(0, 520)]

    def test_content_shorter_than_chunk_size(self):
        assert default_chunker().compute_spans(80) == [(0, 80)]

    def test_exact_chunk_size(self):
        assert default_chunker().compute_spans(500) == [(0, 500)]

    def test_empty_content(self):
        chunker = default_chunker()
        assert chunker.compute_spans(0) == []
        assert chunker.chunk("") == []

    def test_tail_of_exactly_min_size_is_kept(self):
        # Second window starts at 450; a 100-character tail is not merged
        spans = default_chunker().compute_spans(550)
        assert spans == [(0, 500), (450, 550)]


class TestChunkProperties:
    """Invariants that hold for any content."""

    @pytest.mark.parametrize("length", [1, 99, 450, 501, 949, 1100, 2345, 10000])
    def test_chunks_cover_content(self, length):
        content = "".join(chr(ord("a") + i % 26) for i in range(length))
        chunks = default_chunker().chunk(content)

        assert chunks[0].start_position == 0
        assert chunks[-1].end_position == length
        for previous, current in zip(chunks, chunks[1:]):
            # Consecutive chunks overlap or touch, never leave a gap
            assert current.start_position <= previous.end_position
        for chunk in chunks:
            assert chunk.text == content[chunk.start_position:chunk.end_position]

    def test_indices_are_contiguous(self, long_text):
        chunks = default_chunker().chunk(long_text)

        assert [chunk.index for chunk in chunks] == list(range(len(chunks)))

    def test_chunking_is_deterministic(self, long_text):
        first = default_chunker().chunk(long_text, metadata={"source_type": "manual"})
        second = default_chunker().chunk(long_text, metadata={"source_type": "manual"})

        assert first == second

    def test_metadata_copied_into_each_chunk(self):
        chunks = default_chunker().chunk("x" * 1100, metadata={"source_type": "file"})

        assert all(chunk.metadata["source_type"] == "file" for chunk in chunks)
        assert [chunk.metadata["char_count"] for chunk in chunks] == [500, 500, 200]

    def test_tokens_counted_per_chunk(self, long_text):
        chunker = default_chunker()
        for chunk in chunker.chunk(long_text):
            assert chunk.tokens == chunker.count_tokens(chunk.text)


class TestChunkStats:
    def test_stats_for_chunks(self):
        chunks = default_chunker().chunk("word " * 220)
        stats = ContentChunker.get_chunk_stats(chunks)

        assert stats["total_chunks"] == len(chunks)
        assert stats["total_tokens"] == sum(chunk.tokens for chunk in chunks)
        assert stats["min_tokens"] <= stats["average_tokens_per_chunk"] <= stats["max_tokens"]

    def test_stats_for_no_chunks(self):
        stats = ContentChunker.get_chunk_stats([])

        assert stats["total_chunks"] == 0
        assert stats["total_tokens"] == 0
