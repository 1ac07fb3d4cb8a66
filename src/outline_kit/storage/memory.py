# src/outline_kit/storage/memory.py

import copy
from collections.abc import Mapping, Sequence

from outline_kit.models import Document, PersistedNode
from outline_kit.observability import names
from outline_kit.observability.base import MetricsHook, NoOpMetricsHook

from .base import DocumentRepository, NodeRepository


class InMemoryNodeRepository(NodeRepository):
    """Dict-backed node repository.

    Stores copies so that callers mutating their objects after a save do
    not change what is "on disk".
    """

    def __init__(self, metrics_hook: MetricsHook = NoOpMetricsHook()) -> None:
        self.metrics_hook = metrics_hook
        self._nodes: dict[str, PersistedNode] = {}

    async def save_all(self, nodes: Sequence[PersistedNode]) -> list[PersistedNode]:
        batch_ids = [n.id for n in nodes]
        duplicates = {i for i in batch_ids if i in self._nodes or batch_ids.count(i) > 1}
        if duplicates:
            raise ValueError(f"Duplicate node ids: {sorted(duplicates)}")
        for node in nodes:
            self._nodes[node.id] = copy.deepcopy(node)
        self.metrics_hook.increment(
            names.REPOSITORY_OPERATIONS_TOTAL, labels={"operation": "save_all"}
        )
        return list(nodes)

    async def find_by_id(self, node_id: str) -> PersistedNode | None:
        node = self._nodes.get(node_id)
        return copy.deepcopy(node) if node is not None else None

    async def find_by_document_and_depth_less_than(
        self, document_id: str, depth: int
    ) -> list[PersistedNode]:
        return [
            copy.deepcopy(n)
            for n in self._ordered(document_id)
            if n.depth < depth
        ]

    async def find_by_document_order_by_start_offset(
        self, document_id: str
    ) -> list[PersistedNode]:
        return [copy.deepcopy(n) for n in self._ordered(document_id)]

    async def count_by_document(self, document_id: str) -> int:
        return sum(1 for n in self._nodes.values() if n.document_id == document_id)

    async def delete_by_document(self, document_id: str) -> int:
        doomed = [i for i, n in self._nodes.items() if n.document_id == document_id]
        for node_id in doomed:
            del self._nodes[node_id]
        self.metrics_hook.increment(
            names.REPOSITORY_OPERATIONS_TOTAL, labels={"operation": "delete"}
        )
        return len(doomed)

    async def update_end_offsets(self, end_offsets: Mapping[str, int]) -> None:
        missing = [i for i in end_offsets if i not in self._nodes]
        if missing:
            raise KeyError(f"Unknown node ids: {missing}")
        for node_id, end_offset in end_offsets.items():
            self._nodes[node_id].end_offset = end_offset

    def _ordered(self, document_id: str) -> list[PersistedNode]:
        return sorted(
            (n for n in self._nodes.values() if n.document_id == document_id),
            key=lambda n: (n.start_offset, n.depth),
        )


class InMemoryDocumentRepository(DocumentRepository):
    def __init__(self, documents: Sequence[Document] = ()) -> None:
        self._documents: dict[str, Document] = {d.id: copy.copy(d) for d in documents}

    async def find_by_id(self, document_id: str) -> Document | None:
        document = self._documents.get(document_id)
        return copy.copy(document) if document is not None else None

    async def save(self, document: Document) -> None:
        self._documents[document.id] = copy.copy(document)
