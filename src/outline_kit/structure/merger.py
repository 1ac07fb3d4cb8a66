# src/outline_kit/structure/merger.py

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from outline_kit.chunking import Chunk
from outline_kit.models import NodeProposal

logger = logging.getLogger(__name__)


@dataclass
class _MergedEntry:
    proposal: NodeProposal
    chunk_indices: set[int] = field(default_factory=set)
    confidences: list[float] = field(default_factory=list)
    sort_key: int = 0


def _title_key(proposal: NodeProposal) -> str:
    return (proposal.title or "").strip().casefold()


def _ranges_touch(a: NodeProposal, b: NodeProposal) -> bool:
    if None in (a.start_offset, a.end_offset, b.start_offset, b.end_offset):
        return False
    return a.start_offset <= b.end_offset and b.start_offset <= a.end_offset  # type: ignore[operator]


class NodeMerger:
    """Moves per-chunk proposals into document coordinates and fuses duplicates.

    A section that straddles the overlap between two chunks is usually
    reported by both. Such copies share a title and have touching or
    overlapping ranges once shifted; they are fused into one proposal
    spanning both. Copies from the same chunk are never fused.
    """

    def merge(
        self,
        chunk_results: Sequence[Sequence[NodeProposal]],
        chunks: Sequence[Chunk],
    ) -> list[NodeProposal]:
        if len(chunk_results) != len(chunks):
            raise ValueError(
                f"Got {len(chunk_results)} chunk results for {len(chunks)} chunks"
            )

        total = sum(len(r) for r in chunk_results)
        logger.info("Merging %d chunk results with %d total nodes", len(chunks), total)

        merged: list[_MergedEntry] = []
        fused = 0
        for chunk, proposals in zip(chunks, chunk_results):
            for proposal in proposals:
                shifted = proposal.shifted(chunk.start_offset)
                target = self._find_fusion_target(merged, shifted, chunk.chunk_index)
                if target is None:
                    merged.append(
                        _MergedEntry(
                            proposal=shifted,
                            chunk_indices={chunk.chunk_index},
                            confidences=[shifted.confidence],
                            sort_key=shifted.start_offset
                            if shifted.start_offset is not None
                            else chunk.start_offset,
                        )
                    )
                else:
                    self._fuse(target, shifted, chunk.chunk_index)
                    fused += 1

        merged.sort(key=lambda e: e.sort_key)
        logger.info("Merged %d nodes into %d (%d fused)", total, len(merged), fused)
        return [entry.proposal for entry in merged]

    @staticmethod
    def _find_fusion_target(
        merged: list[_MergedEntry], proposal: NodeProposal, chunk_index: int
    ) -> _MergedEntry | None:
        key = _title_key(proposal)
        if not key:
            return None
        for entry in merged:
            if chunk_index in entry.chunk_indices:
                continue
            if _title_key(entry.proposal) == key and _ranges_touch(entry.proposal, proposal):
                return entry
        return None

    @staticmethod
    def _fuse(entry: _MergedEntry, other: NodeProposal, chunk_index: int) -> None:
        current = entry.proposal
        first = current if current.start_offset <= other.start_offset else other  # type: ignore[operator]
        last = current if current.end_offset >= other.end_offset else other  # type: ignore[operator]
        keeper = current if current.confidence >= other.confidence else other

        entry.chunk_indices.add(chunk_index)
        entry.confidences.append(other.confidence)
        entry.proposal = keeper.model_copy(
            update={
                "start_offset": first.start_offset,
                "end_offset": last.end_offset,
                "start_anchor": first.start_anchor,
                "end_anchor": last.end_anchor,
                "confidence": sum(entry.confidences) / len(entry.confidences),
            }
        )
        entry.sort_key = first.start_offset  # type: ignore[assignment]
        logger.debug(
            "Fused '%s' across chunks %s into [%d, %d)",
            keeper.title,
            sorted(entry.chunk_indices),
            first.start_offset,
            last.end_offset,
        )
