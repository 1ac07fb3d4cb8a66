# src/outline_kit/storage/postgres.py

import asyncio
import os
from collections.abc import Mapping, Sequence
from time import monotonic
from typing import Any

from psycopg import sql
from psycopg.types.json import Json
from psycopg_pool import ConnectionPool

from outline_kit.models import NodeType, PersistedNode
from outline_kit.observability import names
from outline_kit.observability.base import MetricsHook, NoOpMetricsHook

from .base import NodeRepository

SCHEMA_SQL = """
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
    confidence DOUBLE PRECISION NOT NULL,
    metadata JSONB NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_document_nodes_document_depth
    ON document_nodes (document_id, depth);
"""

_COLUMNS = [
    "id",
    "document_id",
    "parent_id",
    "sibling_index",
    "type",
    "title",
    "start_anchor",
    "end_anchor",
    "depth",
    "start_offset",
    "end_offset",
    "confidence",
    "metadata",
]


def _row_to_node(row: tuple[Any, ...]) -> PersistedNode:
    values = dict(zip(_COLUMNS, row))
    values["type"] = NodeType(values["type"])
    values["metadata"] = values["metadata"] or {}
    return PersistedNode(**values)


class PgNodeRepository(NodeRepository):
    """Node repository on Postgres via a psycopg connection pool.

    Pool calls are blocking, so each operation runs in a worker thread.
    The schema is expected to exist; ``create_schema`` is provided for
    tests and first-time setup.
    """

    def __init__(
        self,
        dsn: str,
        pool_min_size: int | None = None,
        pool_max_size: int | None = None,
        metrics_hook: MetricsHook = NoOpMetricsHook(),
    ) -> None:
        self.metrics_hook = metrics_hook
        pool_min_size = self._get_param_value(
            pool_min_size, "OUTLINE_KIT_PG_POOL_MIN_SIZE", 1
        )
        pool_max_size = self._get_param_value(
            pool_max_size, "OUTLINE_KIT_PG_POOL_MAX_SIZE", 10
        )
        self._pool = ConnectionPool(
            dsn, min_size=pool_min_size, max_size=pool_max_size, open=True
        )

    def close(self) -> None:
        """Close the connection pool."""
        self._pool.close()

    def create_schema(self) -> None:
        with self._pool.connection() as conn:
            conn.execute(SCHEMA_SQL)

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
                Json(dict(n.metadata)),
            )
            for n in node_list
        ]
        query = sql.SQL("INSERT INTO document_nodes ({columns}) VALUES ({values})").format(
            columns=sql.SQL(", ").join(map(sql.Identifier, _COLUMNS)),
            values=sql.SQL(", ").join(sql.Placeholder() * len(_COLUMNS)),
        )

        def _save() -> None:
            # The pool commits on clean exit and rolls back on error.
            with self._pool.connection() as conn, conn.cursor() as cur:
                cur.executemany(query, rows)

        await asyncio.to_thread(_save)

        elapsed_ms = 1000 * (monotonic() - start)
        self.metrics_hook.record_latency(names.REPOSITORY_SAVE_DURATION, elapsed_ms)
        self.metrics_hook.increment(
            names.REPOSITORY_OPERATIONS_TOTAL, labels={"operation": "save_all"}
        )
        return node_list

    async def find_by_id(self, node_id: str) -> PersistedNode | None:
        nodes = await self._select(sql.SQL("id = %s"), [node_id])
        return nodes[0] if nodes else None

    async def find_by_document_and_depth_less_than(
        self, document_id: str, depth: int
    ) -> list[PersistedNode]:
        return await self._select(
            sql.SQL("document_id = %s AND depth < %s"), [document_id, depth]
        )

    async def find_by_document_order_by_start_offset(
        self, document_id: str
    ) -> list[PersistedNode]:
        return await self._select(sql.SQL("document_id = %s"), [document_id])

    async def count_by_document(self, document_id: str) -> int:
        def _count() -> int:
            with self._pool.connection() as conn, conn.cursor() as cur:
                cur.execute(
                    "SELECT COUNT(*) FROM document_nodes WHERE document_id = %s",
                    [document_id],
                )
                row = cur.fetchone()
            return int(row[0]) if row else 0

        return await asyncio.to_thread(_count)

    async def delete_by_document(self, document_id: str) -> int:
        def _delete() -> int:
            with self._pool.connection() as conn, conn.cursor() as cur:
                cur.execute(
                    "DELETE FROM document_nodes WHERE document_id = %s", [document_id]
                )
                deleted: int = cur.rowcount
            return deleted

        deleted = await asyncio.to_thread(_delete)
        self.metrics_hook.increment(
            names.REPOSITORY_OPERATIONS_TOTAL, labels={"operation": "delete"}
        )
        return deleted

    async def update_end_offsets(self, end_offsets: Mapping[str, int]) -> None:
        if not end_offsets:
            return
        params = [(end, node_id) for node_id, end in end_offsets.items()]

        def _update() -> None:
            with self._pool.connection() as conn, conn.cursor() as cur:
                cur.executemany(
                    "UPDATE document_nodes SET end_offset = %s WHERE id = %s", params
                )

        await asyncio.to_thread(_update)
        self.metrics_hook.increment(
            names.REPOSITORY_OPERATIONS_TOTAL, labels={"operation": "update_end_offsets"}
        )

    async def _select(
        self, where_clause: sql.Composable, params: list[Any]
    ) -> list[PersistedNode]:
        start = monotonic()
        query = sql.SQL(
            """
        SELECT {columns}
        FROM document_nodes
        WHERE {where_clause}
        ORDER BY start_offset, depth;
        """
        ).format(
            columns=sql.SQL(", ").join(map(sql.Identifier, _COLUMNS)),
            where_clause=where_clause,
        )

        def _run() -> list[PersistedNode]:
            with self._pool.connection() as conn, conn.cursor() as cur:
                cur.execute(query, params)
                rows = cur.fetchall()
            return [_row_to_node(row) for row in rows]

        nodes = await asyncio.to_thread(_run)

        elapsed_ms = 1000 * (monotonic() - start)
        self.metrics_hook.record_latency(names.REPOSITORY_QUERY_DURATION, elapsed_ms)
        return nodes

    @staticmethod
    def _get_param_value(passed_value: int | None, env_var: str, default: int) -> int:
        if passed_value is not None:
            return passed_value
        env_value = os.environ.get(env_var)
        if env_value is not None:
            return int(env_value)
        return default
