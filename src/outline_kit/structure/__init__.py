# src/outline_kit/structure/__init__.py

from .anchors import AnchorMatch, AnchorOffsetResolver, find_next_major_section
from .builder import StructureBuildOrchestrator
from .chunked import ChunkedStructureOrchestrator
from .generator import LLMStructureGenerator, StructureGenerator
from .hierarchy import NodeHierarchyBuilder
from .merger import NodeMerger

__all__ = [
    "AnchorMatch",
    "AnchorOffsetResolver",
    "ChunkedStructureOrchestrator",
    "LLMStructureGenerator",
    "NodeHierarchyBuilder",
    "NodeMerger",
    "StructureBuildOrchestrator",
    "StructureGenerator",
    "find_next_major_section",
]
