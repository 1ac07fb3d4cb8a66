# tests/unit/storage/test_sqlite_repository.py

from pathlib import Path

import apsw
import pytest

from outline_kit.models import Document, DocumentStatus, NodeType, PersistedNode
from outline_kit.observability import InMemoryMetricsHook, names
from outline_kit.storage.sqlite import SQLiteDocumentRepository, SQLiteNodeRepository


def node(
    node_id: str,
    depth: int = 0,
    start: int = 0,
    end: int = 10,
    document_id: str = "doc1",
    parent_id: str | None = None,
) -> PersistedNode:
    return PersistedNode(
        id=node_id,
        document_id=document_id,
        parent_id=parent_id,
        sibling_index=2,
        type=NodeType.CHAPTER,
        title=f"Title {node_id}",
        start_anchor="Once upon a time",
        end_anchor="happily ever after",
        depth=depth,
        start_offset=start,
        end_offset=end,
        confidence=0.75,
        metadata={"fallback": True, "chunk_index": 3},
    )


class TestSQLiteNodeRepository:
    @pytest.mark.asyncio
    async def test_round_trips_all_fields(self) -> None:
        repo = SQLiteNodeRepository(db_path=":memory:")
        saved = node("a", parent_id="p")

        await repo.save_all([saved])

        assert await repo.find_by_id("a") == saved
        assert await repo.find_by_id("missing") is None
        await repo.close()

    @pytest.mark.asyncio
    async def test_ordered_queries(self) -> None:
        repo = SQLiteNodeRepository()
        await repo.save_all(
            [
                node("late", start=50, end=60),
                node("child", depth=1, start=0, end=5, parent_id="root"),
                node("root", start=0, end=40),
                node("other-doc", document_id="doc2"),
            ]
        )

        ordered = await repo.find_by_document_order_by_start_offset("doc1")
        shallow = await repo.find_by_document_and_depth_less_than("doc1", 1)

        assert [n.id for n in ordered] == ["root", "child", "late"]
        assert [n.id for n in shallow] == ["root", "late"]
        assert await repo.count_by_document("doc1") == 3
        await repo.close()

    @pytest.mark.asyncio
    async def test_duplicate_batch_rolls_back(self) -> None:
        repo = SQLiteNodeRepository()
        await repo.save_all([node("a")])

        with pytest.raises(apsw.ConstraintError):
            await repo.save_all([node("b"), node("a")])

        assert await repo.find_by_id("b") is None
        await repo.close()

    @pytest.mark.asyncio
    async def test_delete_and_update(self) -> None:
        hook = InMemoryMetricsHook()
        repo = SQLiteNodeRepository(metrics_hook=hook)
        await repo.save_all([node("a"), node("b", start=10, end=20), node("c", document_id="doc2")])

        await repo.update_end_offsets({"a": 15})
        assert (await repo.find_by_id("a")).end_offset == 15

        assert await repo.delete_by_document("doc1") == 2
        assert await repo.count_by_document("doc1") == 0
        assert await repo.count_by_document("doc2") == 1
        assert hook.count(names.REPOSITORY_OPERATIONS_TOTAL, operation="delete") == 1
        assert len(hook.latencies[names.REPOSITORY_SAVE_DURATION]) == 1
        await repo.close()

    @pytest.mark.asyncio
    async def test_persists_to_file(self, tmp_path: Path) -> None:
        db_path = tmp_path / "outline.db"
        repo = SQLiteNodeRepository(db_path=db_path)
        await repo.save_all([node("a")])
        await repo.close()

        reopened = SQLiteNodeRepository(db_path=db_path)
        assert await reopened.count_by_document("doc1") == 1
        await reopened.close()


class TestSQLiteDocumentRepository:
    @pytest.mark.asyncio
    async def test_upsert(self) -> None:
        repo = SQLiteDocumentRepository()
        await repo.save(Document(id="doc1", text="hello", title="Greeting"))

        document = await repo.find_by_id("doc1")
        assert document == Document(id="doc1", text="hello", title="Greeting")

        document.status = DocumentStatus.STRUCTURED
        await repo.save(document)
        assert (await repo.find_by_id("doc1")).status == DocumentStatus.STRUCTURED
        assert await repo.find_by_id("nope") is None
        await repo.close()
