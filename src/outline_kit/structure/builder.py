# src/outline_kit/structure/builder.py

import logging
from collections import defaultdict
from collections.abc import Sequence
from time import monotonic

from outline_kit.config import ChunkingConfig
from outline_kit.errors import (
    InvalidDocumentStateError,
    InvalidRangeError,
    NodeValidationError,
    OutlineKitError,
    PersistenceError,
    ResourceNotFoundError,
    StructureBuildError,
)
from outline_kit.models import (
    Document,
    DocumentStatus,
    ExtractResult,
    FlatStructure,
    NodeProposal,
    PersistedNode,
    ResolvedNode,
    StructureOptions,
    StructureTree,
    TreeNode,
)
from outline_kit.observability import names
from outline_kit.observability.base import MetricsHook, NoOpMetricsHook
from outline_kit.storage.base import DocumentRepository, NodeRepository

from .anchors import AnchorOffsetResolver
from .chunked import ChunkedStructureOrchestrator
from .generator import StructureGenerator
from .hierarchy import NodeHierarchyBuilder, find_parent

logger = logging.getLogger(__name__)


def validate_proposals(proposals: Sequence[NodeProposal]) -> None:
    """Reject proposals missing the fields a persisted node needs.

    Raises:
        InvalidRangeError: naming the first offending node.
    """
    for node in proposals:
        title = (node.title or "").strip()
        if not title:
            raise InvalidRangeError("Node title is required")
        if node.type is None:
            raise InvalidRangeError(f"Node type is required: {title}")
        if not node.end_anchor or not node.end_anchor.strip():
            raise InvalidRangeError(f"Node end anchor is required: {title}")
        if node.depth is None or node.depth < 0:
            raise InvalidRangeError(f"Node depth must be non-negative: {title}")


class StructureBuildOrchestrator:
    """Builds and persists the outline of one document, one depth at a time.

    All anchors are resolved before anything is written. Each depth layer
    is then parented against the layers already stored and saved before
    the next one starts. A failure at layer N therefore leaves layers
    0..N-1 in the repository.

    Args:
        documents: Where documents are loaded from and status is written.
        nodes: Where outline nodes are persisted.
        generator: Model collaborator producing proposals.
        config: Chunking budgets, used when no chunk orchestrator is given.
        chunked: Optional orchestrator for oversized documents.
        resolver: Optional anchor resolver.
        hierarchy: Optional hierarchy builder used for validation.
        metrics_hook: Optional metrics hook for observability.
    """

    def __init__(
        self,
        documents: DocumentRepository,
        nodes: NodeRepository,
        generator: StructureGenerator,
        config: ChunkingConfig = ChunkingConfig(),
        chunked: ChunkedStructureOrchestrator | None = None,
        resolver: AnchorOffsetResolver | None = None,
        hierarchy: NodeHierarchyBuilder | None = None,
        metrics_hook: MetricsHook = NoOpMetricsHook(),
    ) -> None:
        self.documents = documents
        self.nodes = nodes
        self.generator = generator
        self.chunked = chunked or ChunkedStructureOrchestrator(
            generator, config, metrics_hook=metrics_hook
        )
        self.resolver = resolver or AnchorOffsetResolver(metrics_hook=metrics_hook)
        self.hierarchy = hierarchy or NodeHierarchyBuilder()
        self.metrics_hook = metrics_hook

    async def build_structure(
        self, document_id: str, options: StructureOptions = StructureOptions()
    ) -> FlatStructure:
        """Generate, resolve and persist the outline of a document.

        Returns the persisted nodes in document order.

        Raises:
            ResourceNotFoundError: Unknown document, or the model produced
                no nodes at all.
            InvalidDocumentStateError: Document not NORMALIZED or empty.
            InvalidRangeError: A proposal is missing required fields, or
                its anchors resolve to an empty range.
            AnchorNotFoundError: An anchor could not be resolved.
            PersistenceError: A layer could not be written.
            StructureBuildError: Anything unexpected.
        """
        start = monotonic()
        logger.info("Building structure for document %s with options %s", document_id, options)
        try:
            document = await self._load_document(document_id)
            proposals = await self._generate(document, options)
            if not proposals:
                raise ResourceNotFoundError(
                    f"Document not found or no nodes generated by AI: {document_id}"
                )
            validate_proposals(proposals)
            resolved = self.resolver.resolve(proposals, document.text)

            deleted = await self.nodes.delete_by_document(document_id)
            if deleted:
                logger.info("Cleared %d existing nodes of document %s", deleted, document_id)

            persisted = await self._persist_by_depth(document.id, resolved)
            self._validate_persisted(document_id, persisted)

            document.status = DocumentStatus.STRUCTURED
            await self.documents.save(document)
        except OutlineKitError as e:
            self.metrics_hook.increment(
                names.BUILD_FAILURES_TOTAL, labels={"error": type(e).__name__}
            )
            logger.error("Structure build failed for document %s: %s", document_id, e)
            raise
        except Exception as e:
            self.metrics_hook.increment(
                names.BUILD_FAILURES_TOTAL, labels={"error": "unexpected"}
            )
            logger.exception("Unexpected error building structure for document %s", document_id)
            raise StructureBuildError("Unexpected error during structure building") from e

        elapsed_ms = 1000 * (monotonic() - start)
        self.metrics_hook.record_latency(names.BUILD_DURATION, elapsed_ms)
        logger.info(
            "Built structure for document %s: %d nodes in %.0fms",
            document_id,
            len(persisted),
            elapsed_ms,
        )
        return FlatStructure(
            document_id=document_id, nodes=persisted, total_nodes=len(persisted)
        )

    async def get_tree(self, document_id: str) -> StructureTree:
        await self._require_document(document_id)
        nodes = await self.nodes.find_by_document_order_by_start_offset(document_id)
        known = {n.id for n in nodes}
        grouped = self.hierarchy.children_by_parent(nodes)

        def build(node: PersistedNode) -> TreeNode:
            return TreeNode(node=node, children=[build(c) for c in grouped.get(node.id, [])])

        # Nodes whose parent is missing are shown as roots rather than dropped.
        roots = [n for n in nodes if n.parent_id is None or n.parent_id not in known]
        roots.sort(key=lambda n: (n.sibling_index, n.start_offset))
        return StructureTree(
            document_id=document_id,
            roots=[build(r) for r in roots],
            total_nodes=len(nodes),
        )

    async def get_flat(self, document_id: str) -> FlatStructure:
        await self._require_document(document_id)
        nodes = await self.nodes.find_by_document_order_by_start_offset(document_id)
        return FlatStructure(document_id=document_id, nodes=nodes, total_nodes=len(nodes))

    async def extract_by_node(self, document_id: str, node_id: str) -> ExtractResult:
        """Return the exact text a node covers.

        Raises:
            ResourceNotFoundError: Unknown document or node.
            InvalidRangeError: The node belongs to another document, or its
                offsets do not fit the document text.
        """
        logger.debug("Extracting text by node: document=%s, node=%s", document_id, node_id)
        document = await self._require_document(document_id)
        node = await self.nodes.find_by_id(node_id)
        if node is None:
            raise ResourceNotFoundError(f"Node not found: {node_id}")
        if node.document_id != document_id:
            raise InvalidRangeError(
                f"Node {node_id} does not belong to document {document_id}"
            )
        if not 0 <= node.start_offset < node.end_offset <= len(document.text):
            raise InvalidRangeError(f"Node has invalid offsets: {node_id}")

        return ExtractResult(
            document_id=document_id,
            node_id=node_id,
            title=node.title,
            start_offset=node.start_offset,
            end_offset=node.end_offset,
            text=document.text[node.start_offset : node.end_offset],
        )

    async def _require_document(self, document_id: str) -> Document:
        document = await self.documents.find_by_id(document_id)
        if document is None:
            raise ResourceNotFoundError(f"Document not found: {document_id}")
        return document

    async def _load_document(self, document_id: str) -> Document:
        document = await self._require_document(document_id)
        if not document.text:
            raise InvalidDocumentStateError(f"Document has no normalized text: {document_id}")
        if document.status != DocumentStatus.NORMALIZED:
            raise InvalidDocumentStateError(
                f"Document must be in NORMALIZED status, but was: {document.status.value}"
            )
        return document

    async def _generate(
        self, document: Document, options: StructureOptions
    ) -> list[NodeProposal]:
        if self.chunked.needs_chunking(document.text):
            logger.info(
                "Document %s is large (%d chars), using chunked processing",
                document.id,
                document.char_count,
            )
            return await self.chunked.process_large_document(
                document.text, options, document.id
            )

        logger.info(
            "Document %s is small (%d chars), using single-pass processing",
            document.id,
            document.char_count,
        )
        return await self.generator.generate_structure(document.text, options)

    async def _persist_by_depth(
        self, document_id: str, resolved: Sequence[ResolvedNode]
    ) -> list[PersistedNode]:
        by_depth: dict[int, list[ResolvedNode]] = defaultdict(list)
        for node in resolved:
            by_depth[node.depth].append(node)

        saved = 0
        for depth in sorted(by_depth):
            layer = by_depth[depth]
            logger.info("Processing depth level %d with %d nodes", depth, len(layer))

            parents = await self.nodes.find_by_document_and_depth_less_than(
                document_id, depth
            )
            layer_nodes, widened = self._attach_layer(document_id, layer, parents)

            try:
                await self.nodes.save_all(layer_nodes)
                if widened:
                    await self.nodes.update_end_offsets(widened)
            except Exception as e:
                logger.error(
                    "Failed to persist depth level %d with %d nodes", depth, len(layer_nodes)
                )
                if saved:
                    logger.warning(
                        "Layer-by-layer processing failed at depth %d, but %d nodes "
                        "from previous levels were successfully saved",
                        depth,
                        saved,
                    )
                raise PersistenceError(
                    f"Level-by-level processing failed at depth {depth} after saving "
                    f"{saved} nodes from previous levels: {e}",
                    depth=depth,
                    persisted_count=saved,
                ) from e

            saved += len(layer_nodes)
            self.metrics_hook.increment(names.BUILD_LAYERS_PERSISTED)
            self.metrics_hook.increment(names.BUILD_NODES_PERSISTED, len(layer_nodes))
            logger.info("Saved depth level %d with %d nodes", depth, len(layer_nodes))

        # Re-read so that ancestors widened by later layers carry their final ends.
        return await self.nodes.find_by_document_order_by_start_offset(document_id)

    @staticmethod
    def _attach_layer(
        document_id: str,
        layer: Sequence[ResolvedNode],
        parents: Sequence[PersistedNode],
    ) -> tuple[list[PersistedNode], dict[str, int]]:
        """Parent a layer against stored shallower nodes.

        Returns the layer as persisted nodes plus the new end offsets of
        any ancestors that had to be widened.
        """
        by_id = {p.id: p for p in parents}
        # Sibling numbering continues after children stored by earlier layers.
        child_counts: dict[str | None, int] = defaultdict(int)
        for p in parents:
            child_counts[p.parent_id] += 1

        widened: dict[str, int] = {}
        result: list[PersistedNode] = []
        for node in sorted(layer, key=lambda n: n.start_offset):
            parent = find_parent(parents, node)
            parent_id = parent.id if parent is not None else None
            child_counts[parent_id] += 1
            result.append(
                PersistedNode.from_resolved(
                    node,
                    document_id=document_id,
                    parent_id=parent_id,
                    sibling_index=child_counts[parent_id],
                )
            )
            logger.debug(
                "Assigned parent '%s' and index %d to node '%s'",
                parent.title if parent is not None else "ROOT",
                child_counts[parent_id],
                node.title,
            )

            ancestor = parent
            while ancestor is not None and node.end_offset > ancestor.end_offset:
                ancestor.end_offset = node.end_offset
                widened[ancestor.id] = node.end_offset
                ancestor = by_id.get(ancestor.parent_id) if ancestor.parent_id else None

        if widened:
            logger.info("Widening %d ancestors to contain their children", len(widened))
        return result, widened

    def _validate_persisted(
        self, document_id: str, persisted: Sequence[PersistedNode]
    ) -> None:
        # Layers are already committed; a failed check is reported, not rolled back.
        try:
            self.hierarchy.validate_parent_child_containment(persisted)
            self.resolver.validate_sibling_non_overlap(persisted)
        except NodeValidationError as e:
            self.metrics_hook.increment(names.BUILD_VALIDATION_WARNINGS)
            logger.warning(
                "Global validation failed for document %s, keeping %d saved nodes: %s",
                document_id,
                len(persisted),
                e,
            )
