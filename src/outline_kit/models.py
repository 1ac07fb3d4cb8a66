# src/outline_kit/models.py

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, field_validator

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.5


def new_node_id() -> str:
    return str(uuid.uuid4())


class DocumentStatus(str, Enum):
    """Lifecycle of a document as seen by the structure builder."""

    NORMALIZED = "normalized"
    STRUCTURED = "structured"
    FAILED = "failed"


class NodeType(str, Enum):
    CHAPTER = "chapter"
    SECTION = "section"
    SUBSECTION = "subsection"
    PARAGRAPH = "paragraph"
    UTTERANCE = "utterance"
    OTHER = "other"


@dataclass
class Document:
    """Normalized text blob. Text is immutable once normalized."""

    id: str
    text: str
    status: DocumentStatus = DocumentStatus.NORMALIZED
    title: str | None = None

    @property
    def char_count(self) -> int:
        return len(self.text)


class StructureOptions(BaseModel):
    """Options passed through to the model collaborator."""

    model: str = "gpt-4o-mini"
    profile: str = "general"
    granularity: str = "auto"
    temperature: float = 0.0
    max_tokens: int | None = None

    class Config:
        extra = "forbid"
        frozen = True


class NodeProposal(BaseModel):
    """A node as proposed by the model, before anchors are resolved.

    Offsets, when present, are hints from the model and are only trusted
    as a last resort.
    """

    type: NodeType | None = NodeType.OTHER
    title: str | None = None
    start_anchor: str | None = None
    end_anchor: str | None = None
    depth: int | None = 0
    confidence: float = DEFAULT_CONFIDENCE
    start_offset: int | None = None
    end_offset: int | None = None
    metadata: dict[str, Any] = {}

    class Config:
        extra = "ignore"
        frozen = True

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value: Any) -> Any:
        if value is None or isinstance(value, NodeType):
            return value
        try:
            return NodeType(str(value).strip().lower())
        except ValueError:
            logger.debug("Unknown node type %r, using 'other'", value)
            return NodeType.OTHER

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        if value is None:
            return DEFAULT_CONFIDENCE
        try:
            number = float(value)
        except (TypeError, ValueError):
            return DEFAULT_CONFIDENCE
        if number != number:  # NaN
            return DEFAULT_CONFIDENCE
        return min(1.0, max(0.0, number))

    def shifted(self, delta: int) -> "NodeProposal":
        """Return a copy with AI offsets moved by ``delta`` characters."""
        if delta == 0:
            return self
        return self.model_copy(
            update={
                "start_offset": None
                if self.start_offset is None
                else self.start_offset + delta,
                "end_offset": None if self.end_offset is None else self.end_offset + delta,
            }
        )


@dataclass
class ResolvedNode:
    """A proposal whose anchors have been turned into exact offsets.

    ``parent_id`` is a lookup key into the node arena, never an owning
    reference.
    """

    type: NodeType
    title: str
    start_anchor: str
    end_anchor: str
    depth: int
    start_offset: int
    end_offset: int
    confidence: float = DEFAULT_CONFIDENCE
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_node_id)
    parent_id: str | None = None

    @classmethod
    def from_proposal(
        cls, proposal: NodeProposal, start_offset: int, end_offset: int
    ) -> "ResolvedNode":
        return cls(
            type=proposal.type or NodeType.OTHER,
            title=proposal.title or "",
            start_anchor=proposal.start_anchor or "",
            end_anchor=proposal.end_anchor or "",
            depth=proposal.depth if proposal.depth is not None else 0,
            start_offset=start_offset,
            end_offset=end_offset,
            confidence=proposal.confidence,
            metadata=dict(proposal.metadata),
        )

    def contains(self, other: "ResolvedNode | PersistedNode") -> bool:
        return (
            self.start_offset <= other.start_offset
            and other.end_offset <= self.end_offset
        )


@dataclass
class PersistedNode:
    """A node as stored by a ``NodeRepository``."""

    id: str
    document_id: str
    parent_id: str | None
    sibling_index: int
    type: NodeType
    title: str
    start_anchor: str
    end_anchor: str
    depth: int
    start_offset: int
    end_offset: int
    confidence: float = DEFAULT_CONFIDENCE
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_resolved(
        cls,
        node: ResolvedNode,
        *,
        document_id: str,
        parent_id: str | None,
        sibling_index: int,
    ) -> "PersistedNode":
        return cls(
            id=node.id,
            document_id=document_id,
            parent_id=parent_id,
            sibling_index=sibling_index,
            type=node.type,
            title=node.title,
            start_anchor=node.start_anchor,
            end_anchor=node.end_anchor,
            depth=node.depth,
            start_offset=node.start_offset,
            end_offset=node.end_offset,
            confidence=node.confidence,
            metadata=dict(node.metadata),
        )

    def contains(self, other: "ResolvedNode | PersistedNode") -> bool:
        return (
            self.start_offset <= other.start_offset
            and other.end_offset <= self.end_offset
        )


@dataclass(frozen=True)
class TreeNode:
    """Read-only nested view of a persisted node."""

    node: PersistedNode
    children: list["TreeNode"]


@dataclass(frozen=True)
class StructureTree:
    document_id: str
    roots: list[TreeNode]
    total_nodes: int


@dataclass(frozen=True)
class FlatStructure:
    document_id: str
    nodes: list[PersistedNode]
    total_nodes: int


@dataclass(frozen=True)
class ExtractResult:
    document_id: str
    node_id: str
    title: str
    start_offset: int
    end_offset: int
    text: str
