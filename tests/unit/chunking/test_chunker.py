import pytest

from outline_kit.chunking import Chunk, DocumentChunker
from outline_kit.config import ChunkingConfig
from outline_kit.observability import InMemoryMetricsHook, names

# 80 usable tokens -> 320 chars per chunk, 40 chars overlap, single chunk up to 400 chars.
SMALL = ChunkingConfig(
    max_single_chunk_tokens=100,
    max_single_chunk_chars=400,
    overlap_tokens=10,
    prompt_overhead_tokens=0,
)


def assert_covers(text: str, chunks: list[Chunk]) -> None:
    assert chunks[0].start_offset == 0
    assert chunks[-1].end_offset == len(text)
    assert [c.chunk_index for c in chunks] == list(range(len(chunks)))
    for chunk in chunks:
        assert chunk.text == text[chunk.start_offset : chunk.end_offset]
    for prev, nxt in zip(chunks, chunks[1:]):
        assert prev.start_offset < nxt.start_offset
        assert nxt.start_offset < prev.end_offset


class TestDocumentChunker:
    def test_small_text_is_one_chunk(self) -> None:
        chunker = DocumentChunker(SMALL)

        chunks = chunker.chunk("short text", "doc1")

        assert chunks == [Chunk(text="short text", start_offset=0, end_offset=10, chunk_index=0)]

    def test_empty_text_is_one_empty_chunk(self) -> None:
        chunks = DocumentChunker(SMALL).chunk("", "doc1")

        assert len(chunks) == 1
        assert chunks[0].length == 0
        assert (chunks[0].start_offset, chunks[0].end_offset) == (0, 0)

    def test_chunk_sizes_derive_from_token_budget(self) -> None:
        chunker = DocumentChunker(SMALL)

        assert chunker.max_chunk_chars == 320
        assert chunker.overlap_chars == 40

    def test_default_budget(self) -> None:
        chunker = DocumentChunker()

        assert chunker.max_chunk_chars == 121_600
        assert chunker.overlap_chars == 20_000

    def test_long_text_is_covered_without_gaps(self) -> None:
        text = "word " * 200
        chunks = DocumentChunker(SMALL).chunk(text, "doc1")

        assert len(chunks) > 1
        assert all(c.length <= 320 for c in chunks)
        assert_covers(text, chunks)

    def test_prefers_paragraph_break(self) -> None:
        text = ("x" * 98 + "\n\n") * 10
        chunks = DocumentChunker(SMALL).chunk(text, "doc1")

        assert chunks[0].end_offset == 300
        assert chunks[0].text.endswith("\n\n")
        assert chunks[1].start_offset == 260

    def test_breaks_before_chapter_heading(self) -> None:
        text = "a" * 250 + "\nChapter 2\n" + "b" * 300
        chunks = DocumentChunker(SMALL).chunk(text, "doc1")

        assert chunks[0].end_offset == 250
        assert text[chunks[0].end_offset :].startswith("\nChapter 2")

    def test_falls_back_to_word_boundary(self) -> None:
        text = " ".join(["abcdefghi"] * 60)
        chunks = DocumentChunker(SMALL).chunk(text, "doc1")

        # Every cut lands right after a space.
        for chunk in chunks[:-1]:
            assert text[chunk.end_offset - 1] == " "
        assert_covers(text, chunks)

    def test_text_without_spaces_is_cut_at_window(self) -> None:
        text = "z" * 1000
        chunks = DocumentChunker(SMALL).chunk(text, "doc1")

        assert chunks[0].end_offset == 320
        assert_covers(text, chunks)

    def test_emergency_split_halves_oversized_chunks(self) -> None:
        config = ChunkingConfig(
            max_single_chunk_tokens=100,
            max_single_chunk_chars=400,
            overlap_tokens=10,
            prompt_overhead_tokens=0,
            emergency_chunk_chars=100,
        )
        text = "z" * 1000
        chunks = DocumentChunker(config).chunk(text, "doc1")

        assert all(c.length <= 100 for c in chunks)
        assert_covers(text, chunks)

    def test_emergency_split_can_be_disabled(self) -> None:
        config = ChunkingConfig(
            max_single_chunk_tokens=100,
            max_single_chunk_chars=400,
            overlap_tokens=10,
            prompt_overhead_tokens=0,
            emergency_chunk_chars=100,
            enable_emergency_chunking=False,
        )
        chunks = DocumentChunker(config).chunk("z" * 1000, "doc1")

        assert max(c.length for c in chunks) == 320

    def test_overlap_must_be_less_than_half_chunk(self) -> None:
        config = ChunkingConfig(
            max_single_chunk_tokens=100, overlap_tokens=50, prompt_overhead_tokens=0
        )

        with pytest.raises(ValueError, match="overlap"):
            DocumentChunker(config)

    @pytest.mark.parametrize("overlap_tokens", [0, -5])
    def test_overlap_is_required(self, overlap_tokens: int) -> None:
        with pytest.raises(ValueError, match="overlap_tokens must be > 0"):
            ChunkingConfig(overlap_tokens=overlap_tokens)

    def test_overlap_rounding_to_zero_chars_rejected(self) -> None:
        config = ChunkingConfig(
            max_single_chunk_tokens=1000,
            overlap_tokens=1,
            prompt_overhead_tokens=0,
            chars_per_token=0.5,
        )

        with pytest.raises(ValueError, match="at least one character"):
            DocumentChunker(config)

    def test_estimate_chunk_count(self) -> None:
        chunker = DocumentChunker(SMALL)

        assert chunker.estimate_chunk_count("tiny") == 1
        assert chunker.estimate_chunk_count("") == 1
        assert chunker.estimate_chunk_count("z" * 1000) == 4

    def test_records_metrics(self) -> None:
        hook = InMemoryMetricsHook()
        chunks = DocumentChunker(SMALL, metrics_hook=hook).chunk("word " * 200, "doc1")

        assert hook.count(names.CHUNKING_CHUNKS_CREATED) == len(chunks)
        assert len(hook.latencies[names.CHUNKING_DURATION]) == 1

    def test_chunk_str(self) -> None:
        chunk = Chunk(text="abc", start_offset=10, end_offset=13, chunk_index=2)

        assert str(chunk) == "Chunk[2: 10-13, 3 chars]"
