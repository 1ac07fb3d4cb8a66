# src/outline_kit/structure/chunked.py

import logging
from collections.abc import Sequence

from outline_kit.chunking import Chunk, DocumentChunker
from outline_kit.config import ChunkingConfig
from outline_kit.errors import ChunkProcessingError, is_no_nodes_error
from outline_kit.models import NodeProposal, NodeType, StructureOptions
from outline_kit.observability import names
from outline_kit.observability.base import MetricsHook, NoOpMetricsHook
from outline_kit.tokens import TokenCounter

from .generator import StructureGenerator
from .merger import NodeMerger

logger = logging.getLogger(__name__)

# Above this size a document is always chunked, whatever the token estimate.
FORCE_CHUNKING_CHARS = 1_250_000
AGGRESSIVE_LIMIT_FACTOR = 0.75
PLACEHOLDER_ANCHOR_CHARS = 100

NON_CONTENT_KEYWORDS = (
    "author",
    "acknowledgment",
    "acknowledgement",
    "thanks",
    "thank you",
    "table of contents",
    "contents",
    "index",
    "glossary",
    "bibliography",
    "appendix",
    "appendices",
    "preface",
    "foreword",
    "abstract",
    "dedication",
    "copyright",
    "license",
    "permission",
    "biography",
    "biographies",
    "contact",
    "email",
    "website",
    "publisher",
    "publication",
    "edition",
    "isbn",
    "doi:",
    "chapter 0",
    "chapter zero",
    "preliminary",
    "front matter",
    "back matter",
)


def is_non_content_title(title: str | None) -> bool:
    """True for titles of front/back matter such as indexes or author bios."""
    if not title:
        return False
    lowered = title.lower()
    return any(keyword in lowered for keyword in NON_CONTENT_KEYWORDS)


def filter_content_nodes(nodes: Sequence[NodeProposal]) -> list[NodeProposal]:
    kept = []
    for node in nodes:
        if is_non_content_title(node.title):
            logger.debug("Filtering out non-content node: %s", node.title)
            continue
        kept.append(node)
    return kept


def placeholder_node(chunk: Chunk) -> NodeProposal | None:
    """A node spanning the whole chunk, in chunk-local offsets."""
    stripped = chunk.text.strip()
    if not stripped:
        return None
    return NodeProposal(
        type=NodeType.OTHER,
        title=f"Chunk {chunk.chunk_index + 1} (unstructured)",
        start_anchor=stripped[:PLACEHOLDER_ANCHOR_CHARS],
        end_anchor=stripped[-PLACEHOLDER_ANCHOR_CHARS:],
        depth=0,
        confidence=0.0,
        start_offset=0,
        end_offset=chunk.length,
        metadata={"fallback": True, "chunk_index": chunk.chunk_index},
    )


class ChunkedStructureOrchestrator:
    """Runs the structure model over a document too large for one call.

    Chunks are processed strictly in order so each call can see the nodes
    found so far. A chunk for which the model finds no nodes is covered by
    a placeholder; any other failure stops the whole run.

    Args:
        generator: Model collaborator producing proposals per chunk.
        config: Chunking budgets.
        chunker: Optional chunker; built from ``config`` when omitted.
        merger: Optional merger for per-chunk results.
        metrics_hook: Optional metrics hook for observability.
    """

    def __init__(
        self,
        generator: StructureGenerator,
        config: ChunkingConfig = ChunkingConfig(),
        chunker: DocumentChunker | None = None,
        merger: NodeMerger | None = None,
        metrics_hook: MetricsHook = NoOpMetricsHook(),
    ) -> None:
        self.generator = generator
        self.config = config
        self.chunker = chunker or DocumentChunker(config, metrics_hook=metrics_hook)
        self.merger = merger or NodeMerger()
        self.token_counter = TokenCounter.from_config(config)
        self.metrics_hook = metrics_hook

    def needs_chunking(self, text: str | None) -> bool:
        if not text:
            return False
        if len(text) > FORCE_CHUNKING_CHARS:
            logger.info(
                "Document has %d chars, above %d: chunking forced",
                len(text),
                FORCE_CHUNKING_CHARS,
            )
            return True

        factor = AGGRESSIVE_LIMIT_FACTOR if self.config.aggressive_chunking else 1.0
        token_limit = int(self.config.max_single_chunk_tokens * factor)
        char_limit = int(self.config.max_single_chunk_chars * factor)
        tokens = self.token_counter.estimate_tokens(text)
        needed = tokens > token_limit or len(text) > char_limit
        logger.debug(
            "needs_chunking=%s (chars=%d/%d, tokens=%d/%d, aggressive=%s)",
            needed,
            len(text),
            char_limit,
            tokens,
            token_limit,
            self.config.aggressive_chunking,
        )
        return needed

    def estimate_chunk_count(self, text: str | None) -> int:
        if not self.needs_chunking(text):
            return 1
        return self.chunker.estimate_chunk_count(text or "")

    async def process_large_document(
        self, text: str, options: StructureOptions, document_id: str
    ) -> list[NodeProposal]:
        """Return filtered proposals in document-global offsets.

        Raises:
            ChunkProcessingError: A chunk failed for a reason other than
                the model producing no nodes.
        """
        chunks = self.chunker.chunk(text, document_id)

        if len(chunks) == 1:
            logger.info("Document %s fits one chunk, single model call", document_id)
            nodes = await self.generator.generate_structure(chunks[0].text, options)
            return filter_content_nodes(nodes)

        logger.info(
            "Processing document %s in %d chunks sequentially", document_id, len(chunks)
        )
        chunk_results: list[list[NodeProposal]] = []
        previous: list[NodeProposal] = []
        for chunk in chunks:
            nodes = await self._process_chunk(chunk, options, previous, len(chunks), document_id)
            kept = filter_content_nodes(nodes)
            chunk_results.append(kept)
            previous.extend(kept)
            logger.info(
                "Chunk %d of %d completed with %d nodes (%d after filtering)",
                chunk.chunk_index + 1,
                len(chunks),
                len(nodes),
                len(kept),
            )

        merged = self.merger.merge(chunk_results, chunks)
        logger.info(
            "Document %s: %d nodes from %d chunks", document_id, len(merged), len(chunks)
        )
        return merged

    async def _process_chunk(
        self,
        chunk: Chunk,
        options: StructureOptions,
        previous: list[NodeProposal],
        total_chunks: int,
        document_id: str,
    ) -> list[NodeProposal]:
        logger.info(
            "Processing chunk %d of %d for document %s (%d chars)",
            chunk.chunk_index + 1,
            total_chunks,
            document_id,
            chunk.length,
        )
        try:
            return await self.generator.generate_structure_with_context(
                chunk.text, options, list(previous), chunk.chunk_index, total_chunks
            )
        except Exception as e:
            if not is_no_nodes_error(e):
                logger.error(
                    "Failed to process chunk %d of document %s",
                    chunk.chunk_index + 1,
                    document_id,
                    exc_info=True,
                )
                raise ChunkProcessingError("Chunk processing failed") from e

            logger.warning(
                "No nodes generated for chunk %d of document %s, using placeholder",
                chunk.chunk_index + 1,
                document_id,
            )
            placeholder = placeholder_node(chunk)
            if placeholder is None:
                return []
            self.metrics_hook.increment(names.CHUNKING_FALLBACK_NODES)
            return [placeholder]
