# src/outline_kit/storage/sqlite.py

"""SQLite-backed repositories using apsw."""

import asyncio
import json
from collections.abc import Mapping, Sequence
from pathlib import Path
from time import monotonic
from typing import Any

import apsw

from outline_kit.models import Document, DocumentStatus, NodeType, PersistedNode
from outline_kit.observability import names
from outline_kit.observability.base import MetricsHook, NoOpMetricsHook

from .base import DocumentRepository, NodeRepository

_NODE_COLUMNS = (
    "id, document_id, parent_id, sibling_index, type, title, start_anchor, "
    "end_anchor, depth, start_offset, end_offset, confidence, metadata"
)


def _row_to_node(row: tuple[Any, ...]) -> PersistedNode:
    (
        node_id,
        document_id,
        parent_id,
        sibling_index,
        node_type,
        title,
        start_anchor,
        end_anchor,
        depth,
        start_offset,
        end_offset,
        confidence,
        metadata_json,
    ) = row
    return PersistedNode(
        id=node_id,
        document_id=document_id,
        parent_id=parent_id,
        sibling_index=sibling_index,
        type=NodeType(node_type),
        title=title,
        start_anchor=start_anchor,
        end_anchor=end_anchor,
        depth=depth,
        start_offset=start_offset,
        end_offset=end_offset,
        confidence=confidence,
        metadata=json.loads(metadata_json),
    )


class SQLiteNodeRepository(NodeRepository):
    """Node repository on a single SQLite file.

    All database work runs in a worker thread so the event loop is never
    blocked.

    Example:
        >>> repo = SQLiteNodeRepository(db_path="outline.db")
        >>> await repo.save_all(nodes)
        >>> nodes = await repo.find_by_document_order_by_start_offset("doc-1")
    """

    def __init__(
        self,
        db_path: str | Path = ":memory:",
        metrics_hook: MetricsHook = NoOpMetricsHook(),
    ) -> None:
        self.metrics_hook = metrics_hook
        self._db_path = str(db_path)
        self._conn: apsw.Connection | None = None

    def _get_connection(self) -> apsw.Connection:
        """Get or create the connection (lazy initialization)."""
        if self._conn is None:
            self._conn = apsw.Connection(self._db_path)
            self._initialize_schema()
        return self._conn

    def _initialize_schema(self) -> None:
        if self._conn is None:
            return

        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS document_nodes (
                id TEXT PRIMARY KEY,
                document_id TEXT NOT NULL,
                parent_id TEXT,
                sibling_index INTEGER NOT NULL,
                type TEXT NOT NULL,
                title TEXT NOT NULL,
                start_anchor TEXT NOT NULL,
                end_anchor TEXT NOT NULL,
                depth INTEGER NOT NULL,
                start_offset INTEGER NOT NULL,
                end_offset INTEGER NOT NULL,
                confidence REAL NOT NULL,
                metadata TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_document_nodes_document_depth
                ON document_nodes (document_id, depth);
            CREATE INDEX IF NOT EXISTS idx_document_nodes_document_start
                ON document_nodes (document_id, start_offset);
            """
        )

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            await asyncio.to_thread(self._conn.close)
            self._conn = None

    async def save_all(self, nodes: Sequence[PersistedNode]) -> list[PersistedNode]:
        start = monotonic()
        node_list = list(nodes)
        if not node_list:
            return []

        rows = [
            (
                n.id,
                n.document_id,
                n.parent_id,
                n.sibling_index,
                n.type.value,
                n.title,
                n.start_anchor,
                n.end_anchor,
                n.depth,
                n.start_offset,
                n.end_offset,
                n.confidence,
                json.dumps(dict(n.metadata)),
            )
            for n in node_list
        ]

        def _save() -> None:
            conn = self._get_connection()
            # One transaction: either the whole batch lands or none of it.
            with conn:
                conn.executemany(
                    f"INSERT INTO document_nodes ({_NODE_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    rows,
                )

        await asyncio.to_thread(_save)

        elapsed_ms = 1000 * (monotonic() - start)
        self.metrics_hook.record_latency(names.REPOSITORY_SAVE_DURATION, elapsed_ms)
        self.metrics_hook.increment(
            names.REPOSITORY_OPERATIONS_TOTAL, labels={"operation": "save_all"}
        )
        return node_list

    async def find_by_id(self, node_id: str) -> PersistedNode | None:
        def _find() -> PersistedNode | None:
            conn = self._get_connection()
            rows = list(
                conn.execute(
                    f"SELECT {_NODE_COLUMNS} FROM document_nodes WHERE id = ?",
                    (node_id,),
                )
            )
            return _row_to_node(rows[0]) if rows else None

        return await asyncio.to_thread(_find)

    async def find_by_document_and_depth_less_than(
        self, document_id: str, depth: int
    ) -> list[PersistedNode]:
        return await self._query(
            f"""
            SELECT {_NODE_COLUMNS} FROM document_nodes
            WHERE document_id = ? AND depth < ?
            ORDER BY start_offset, depth
            """,
            (document_id, depth),
        )

    async def find_by_document_order_by_start_offset(
        self, document_id: str
    ) -> list[PersistedNode]:
        return await self._query(
            f"""
            SELECT {_NODE_COLUMNS} FROM document_nodes
            WHERE document_id = ?
            ORDER BY start_offset, depth
            """,
            (document_id,),
        )

    async def count_by_document(self, document_id: str) -> int:
        def _count() -> int:
            conn = self._get_connection()
            result = list(
                conn.execute(
                    "SELECT COUNT(*) FROM document_nodes WHERE document_id = ?",
                    (document_id,),
                )
            )
            count: int = result[0][0]
            return count

        return await asyncio.to_thread(_count)

    async def delete_by_document(self, document_id: str) -> int:
        def _delete() -> int:
            conn = self._get_connection()
            with conn:
                conn.execute(
                    "DELETE FROM document_nodes WHERE document_id = ?", (document_id,)
                )
                return conn.changes()

        deleted = await asyncio.to_thread(_delete)
        self.metrics_hook.increment(
            names.REPOSITORY_OPERATIONS_TOTAL, labels={"operation": "delete"}
        )
        return deleted

    async def update_end_offsets(self, end_offsets: Mapping[str, int]) -> None:
        if not end_offsets:
            return

        def _update() -> None:
            conn = self._get_connection()
            with conn:
                conn.executemany(
                    "UPDATE document_nodes SET end_offset = ? WHERE id = ?",
                    [(end, node_id) for node_id, end in end_offsets.items()],
                )

        await asyncio.to_thread(_update)
        self.metrics_hook.increment(
            names.REPOSITORY_OPERATIONS_TOTAL, labels={"operation": "update_end_offsets"}
        )

    async def _query(self, query: str, params: tuple[Any, ...]) -> list[PersistedNode]:
        start = monotonic()

        def _run() -> list[PersistedNode]:
            conn = self._get_connection()
            return [_row_to_node(row) for row in conn.execute(query, params)]

        nodes = await asyncio.to_thread(_run)

        elapsed_ms = 1000 * (monotonic() - start)
        self.metrics_hook.record_latency(names.REPOSITORY_QUERY_DURATION, elapsed_ms)
        self.metrics_hook.increment(
            names.REPOSITORY_OPERATIONS_TOTAL, labels={"operation": "query"}
        )
        return nodes


class SQLiteDocumentRepository(DocumentRepository):
    """Documents table living next to the nodes table."""

    def __init__(self, db_path: str | Path = ":memory:") -> None:
        self._db_path = str(db_path)
        self._conn: apsw.Connection | None = None

    def _get_connection(self) -> apsw.Connection:
        if self._conn is None:
            self._conn = apsw.Connection(self._db_path)
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    id TEXT PRIMARY KEY,
                    title TEXT,
                    text TEXT NOT NULL,
                    status TEXT NOT NULL
                )
                """
            )
        return self._conn

    async def close(self) -> None:
        if self._conn:
            await asyncio.to_thread(self._conn.close)
            self._conn = None

    async def find_by_id(self, document_id: str) -> Document | None:
        def _find() -> Document | None:
            conn = self._get_connection()
            rows = list(
                conn.execute(
                    "SELECT id, title, text, status FROM documents WHERE id = ?",
                    (document_id,),
                )
            )
            if not rows:
                return None
            doc_id, title, text, status = rows[0]
            return Document(
                id=doc_id, text=text, status=DocumentStatus(status), title=title
            )

        return await asyncio.to_thread(_find)

    async def save(self, document: Document) -> None:
        def _save() -> None:
            conn = self._get_connection()
            conn.execute(
                """
                INSERT INTO documents (id, title, text, status) VALUES (?, ?, ?, ?)
                ON CONFLICT (id) DO UPDATE SET
                    title = excluded.title,
                    text = excluded.text,
                    status = excluded.status
                """,
                (document.id, document.title, document.text, document.status.value),
            )

        await asyncio.to_thread(_save)
