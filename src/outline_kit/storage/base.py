# src/outline_kit/storage/base.py

from collections.abc import Mapping, Sequence
from typing import Protocol

from outline_kit.models import Document, PersistedNode
from outline_kit.observability.base import MetricsHook


class NodeRepository(Protocol):
    """Persistence for outline nodes.

    ``save_all`` is all-or-nothing for the given batch. Node ids are
    unique; saving an existing id is an error, not an update.
    """

    metrics_hook: MetricsHook

    async def save_all(self, nodes: Sequence[PersistedNode]) -> list[PersistedNode]: ...

    async def find_by_id(self, node_id: str) -> PersistedNode | None: ...

    async def find_by_document_and_depth_less_than(
        self, document_id: str, depth: int
    ) -> list[PersistedNode]: ...

    async def find_by_document_order_by_start_offset(
        self, document_id: str
    ) -> list[PersistedNode]: ...

    async def count_by_document(self, document_id: str) -> int: ...

    async def delete_by_document(self, document_id: str) -> int:
        """Delete every node of a document. Returns number of rows deleted."""
        ...

    async def update_end_offsets(self, end_offsets: Mapping[str, int]) -> None:
        """Set ``end_offset`` for each node id in the mapping."""
        ...


class DocumentRepository(Protocol):
    async def find_by_id(self, document_id: str) -> Document | None: ...

    async def save(self, document: Document) -> None: ...
