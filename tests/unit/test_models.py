# tests/unit/test_models.py

import pytest
from pydantic import ValidationError

from outline_kit.models import (
    DEFAULT_CONFIDENCE,
    Document,
    NodeProposal,
    NodeType,
    PersistedNode,
    ResolvedNode,
    StructureOptions,
)


class TestNodeProposal:
    @pytest.mark.parametrize(
        "raw, expected",
        [("Chapter", NodeType.CHAPTER), (" section ", NodeType.SECTION), ("scene", NodeType.OTHER)],
    )
    def test_type_coercion(self, raw: str, expected: NodeType) -> None:
        assert NodeProposal(type=raw).type == expected

    @pytest.mark.parametrize(
        "raw, expected",
        [(1.7, 1.0), (-0.2, 0.0), ("0.4", 0.4), (None, DEFAULT_CONFIDENCE), ("high", DEFAULT_CONFIDENCE)],
    )
    def test_confidence_clamped(self, raw, expected: float) -> None:
        assert NodeProposal(confidence=raw).confidence == pytest.approx(expected)

    def test_nan_confidence_uses_default(self) -> None:
        assert NodeProposal(confidence=float("nan")).confidence == DEFAULT_CONFIDENCE

    def test_unknown_fields_ignored(self) -> None:
        proposal = NodeProposal(title="T", children=[], page=3)

        assert proposal.title == "T"

    def test_frozen(self) -> None:
        proposal = NodeProposal(title="T")

        with pytest.raises(ValidationError):
            proposal.title = "U"

    def test_shifted(self) -> None:
        proposal = NodeProposal(title="T", start_offset=5, end_offset=9)

        moved = proposal.shifted(100)

        assert (moved.start_offset, moved.end_offset) == (105, 109)
        assert (proposal.start_offset, proposal.end_offset) == (5, 9)
        assert proposal.shifted(0) is proposal

    def test_shifted_without_offsets(self) -> None:
        moved = NodeProposal(title="T").shifted(100)

        assert moved.start_offset is None and moved.end_offset is None


class TestResolvedAndPersisted:
    def test_from_proposal_fills_defaults(self) -> None:
        proposal = NodeProposal(title=None, type=None, depth=None, metadata={"k": 1})

        node = ResolvedNode.from_proposal(proposal, 3, 8)

        assert node.type == NodeType.OTHER
        assert node.title == ""
        assert node.depth == 0
        assert (node.start_offset, node.end_offset) == (3, 8)
        assert node.metadata == {"k": 1}
        assert node.parent_id is None
        assert node.id

    def test_ids_are_unique(self) -> None:
        proposal = NodeProposal(title="T")

        assert ResolvedNode.from_proposal(proposal, 0, 1).id != ResolvedNode.from_proposal(
            proposal, 0, 1
        ).id

    def test_from_resolved_keeps_id_and_offsets(self) -> None:
        resolved = ResolvedNode.from_proposal(NodeProposal(title="T", depth=2), 3, 8)

        persisted = PersistedNode.from_resolved(
            resolved, document_id="doc1", parent_id="p", sibling_index=4
        )

        assert persisted.id == resolved.id
        assert persisted.depth == 2
        assert (persisted.start_offset, persisted.end_offset) == (3, 8)
        assert (persisted.parent_id, persisted.sibling_index) == ("p", 4)

    def test_contains(self) -> None:
        outer = ResolvedNode.from_proposal(NodeProposal(title="O"), 0, 10)
        inner = ResolvedNode.from_proposal(NodeProposal(title="I"), 0, 10)
        outside = ResolvedNode.from_proposal(NodeProposal(title="X"), 5, 11)

        assert outer.contains(inner)
        assert not outer.contains(outside)


class TestOptionsAndDocument:
    def test_structure_options_forbid_unknown(self) -> None:
        with pytest.raises(ValidationError):
            StructureOptions(colour="blue")

    def test_document_char_count(self) -> None:
        assert Document(id="d", text="hello").char_count == 5
