# tests/unit/structure/test_chunked.py

import pytest

from outline_kit.chunking import Chunk, DocumentChunker
from outline_kit.config import ChunkingConfig
from outline_kit.errors import NO_NODES_GENERATED, ChunkProcessingError, GenerationError
from outline_kit.models import NodeProposal, NodeType, StructureOptions
from outline_kit.observability import InMemoryMetricsHook, names
from outline_kit.structure import ChunkedStructureOrchestrator
from outline_kit.structure.chunked import (
    filter_content_nodes,
    is_non_content_title,
    placeholder_node,
)

SMALL = ChunkingConfig(
    max_single_chunk_tokens=100,
    max_single_chunk_chars=400,
    overlap_tokens=10,
    prompt_overhead_tokens=0,
)

LONG_TEXT = "word " * 200


def node(title: str, start: int = 0, end: int = 10) -> NodeProposal:
    return NodeProposal(
        type=NodeType.SECTION,
        title=title,
        start_anchor=f"{title} begins here",
        end_anchor=f"{title} ends here",
        depth=0,
        start_offset=start,
        end_offset=end,
    )


class FakeGenerator:
    """Returns ``results[chunk_index]``; exceptions in the list are raised."""

    def __init__(self, results: list | None = None) -> None:
        self.results = results or []
        self.single_calls: list[str] = []
        self.context_calls: list[tuple[int, int, list[NodeProposal]]] = []

    async def generate_structure(self, text, options):
        self.single_calls.append(text)
        return list(self.results[0])

    async def generate_structure_with_context(
        self, text, options, previous_nodes, chunk_index, total_chunks
    ):
        self.context_calls.append((chunk_index, total_chunks, previous_nodes))
        result = self.results[chunk_index]
        if isinstance(result, Exception):
            raise result
        return list(result)


class TestNonContentFilter:
    @pytest.mark.parametrize(
        "title",
        ["Table of Contents", "About the Author", "INDEX", "Appendix B", "Copyright"],
    )
    def test_non_content_titles(self, title: str) -> None:
        assert is_non_content_title(title)

    @pytest.mark.parametrize("title", ["Chapter 1", "The Voyage", None, ""])
    def test_content_titles(self, title) -> None:
        assert not is_non_content_title(title)

    def test_filter_content_nodes(self) -> None:
        kept = filter_content_nodes([node("Preface"), node("Chapter 1"), node("Glossary")])

        assert [n.title for n in kept] == ["Chapter 1"]


class TestPlaceholderNode:
    def test_spans_whole_chunk(self) -> None:
        chunk = Chunk(text="  some body text  ", start_offset=50, end_offset=68, chunk_index=2)

        placeholder = placeholder_node(chunk)

        assert placeholder is not None
        assert placeholder.title == "Chunk 3 (unstructured)"
        assert placeholder.type == NodeType.OTHER
        assert placeholder.confidence == 0.0
        assert (placeholder.start_offset, placeholder.end_offset) == (0, 18)
        assert placeholder.start_anchor == "some body text"
        assert placeholder.metadata == {"fallback": True, "chunk_index": 2}

    def test_whitespace_chunk_has_no_placeholder(self) -> None:
        chunk = Chunk(text=" \n\t ", start_offset=0, end_offset=4, chunk_index=0)

        assert placeholder_node(chunk) is None


class TestNeedsChunking:
    def test_small_text(self) -> None:
        orchestrator = ChunkedStructureOrchestrator(FakeGenerator(), SMALL)

        assert not orchestrator.needs_chunking("x" * 400)
        assert orchestrator.needs_chunking("x" * 401)
        assert not orchestrator.needs_chunking("")
        assert not orchestrator.needs_chunking(None)

    def test_aggressive_lowers_limits(self) -> None:
        config = ChunkingConfig(
            max_single_chunk_tokens=100,
            max_single_chunk_chars=400,
            overlap_tokens=10,
            prompt_overhead_tokens=0,
            aggressive_chunking=True,
        )
        orchestrator = ChunkedStructureOrchestrator(FakeGenerator(), config)

        assert orchestrator.needs_chunking("x" * 350)

    def test_forced_above_hard_limit(self) -> None:
        config = ChunkingConfig(
            max_single_chunk_tokens=10_000_000, max_single_chunk_chars=10_000_000
        )
        orchestrator = ChunkedStructureOrchestrator(FakeGenerator(), config)

        assert not orchestrator.needs_chunking("a" * 1_250_000)
        assert orchestrator.needs_chunking("a" * 1_250_001)

    def test_estimate_chunk_count(self) -> None:
        orchestrator = ChunkedStructureOrchestrator(FakeGenerator(), SMALL)

        assert orchestrator.estimate_chunk_count("short") == 1
        assert orchestrator.estimate_chunk_count(LONG_TEXT) == DocumentChunker(
            SMALL
        ).estimate_chunk_count(LONG_TEXT)


class TestProcessLargeDocument:
    @pytest.mark.asyncio
    async def test_single_chunk_uses_plain_call(self) -> None:
        generator = FakeGenerator([[node("Table of Contents"), node("Chapter 1")]])
        orchestrator = ChunkedStructureOrchestrator(generator, SMALL)

        nodes = await orchestrator.process_large_document(
            "short document", StructureOptions(), "doc1"
        )

        assert [n.title for n in nodes] == ["Chapter 1"]
        assert generator.single_calls == ["short document"]
        assert generator.context_calls == []

    @pytest.mark.asyncio
    async def test_chunks_processed_in_order_with_context(self) -> None:
        chunks = DocumentChunker(SMALL).chunk(LONG_TEXT)
        results = [[node(f"Part {i}")] for i in range(len(chunks))]
        results[0].insert(0, node("Table of Contents"))
        generator = FakeGenerator(results)
        orchestrator = ChunkedStructureOrchestrator(generator, SMALL)

        nodes = await orchestrator.process_large_document(
            LONG_TEXT, StructureOptions(), "doc1"
        )

        assert len(chunks) > 1
        assert [c[0] for c in generator.context_calls] == list(range(len(chunks)))
        assert all(c[1] == len(chunks) for c in generator.context_calls)
        # Each call sees the filtered nodes of all earlier chunks.
        assert [len(c[2]) for c in generator.context_calls] == list(range(len(chunks)))
        assert [n.title for n in nodes] == [f"Part {i}" for i in range(len(chunks))]
        assert [n.start_offset for n in nodes] == [c.start_offset for c in chunks]

    @pytest.mark.asyncio
    async def test_no_nodes_chunk_gets_placeholder(self) -> None:
        chunks = DocumentChunker(SMALL).chunk(LONG_TEXT)
        results: list = [[node(f"Part {i}")] for i in range(len(chunks))]
        results[1] = GenerationError(NO_NODES_GENERATED)
        hook = InMemoryMetricsHook()
        orchestrator = ChunkedStructureOrchestrator(
            FakeGenerator(results), SMALL, metrics_hook=hook
        )

        nodes = await orchestrator.process_large_document(
            LONG_TEXT, StructureOptions(), "doc1"
        )

        placeholder = next(n for n in nodes if n.metadata.get("fallback"))
        assert placeholder.title == "Chunk 2 (unstructured)"
        assert placeholder.start_offset == chunks[1].start_offset
        assert placeholder.end_offset == chunks[1].end_offset
        assert len(nodes) == len(chunks)
        assert hook.count(names.CHUNKING_FALLBACK_NODES) == 1

    @pytest.mark.asyncio
    async def test_other_failures_abort(self) -> None:
        chunks = DocumentChunker(SMALL).chunk(LONG_TEXT)
        results: list = [[node(f"Part {i}")] for i in range(len(chunks))]
        failure = RuntimeError("model unavailable")
        results[1] = failure
        generator = FakeGenerator(results)
        orchestrator = ChunkedStructureOrchestrator(generator, SMALL)

        with pytest.raises(ChunkProcessingError, match="Chunk processing failed") as exc_info:
            await orchestrator.process_large_document(LONG_TEXT, StructureOptions(), "doc1")

        assert exc_info.value.__cause__ is failure
        assert len(generator.context_calls) == 2
