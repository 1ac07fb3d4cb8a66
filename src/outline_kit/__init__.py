# Chunking
from .chunking import Chunk, DocumentChunker

# Configuration
from .config import ChunkingConfig, RetryConfig

# Errors
from .errors import (
    AnchorNotFoundError,
    ChunkProcessingError,
    GenerationError,
    GenerationTimeoutError,
    InvalidDocumentStateError,
    InvalidRangeError,
    NodeValidationError,
    OutlineKitError,
    PersistenceError,
    ResourceNotFoundError,
    StructureBuildError,
)

# Models
from .models import (
    Document,
    DocumentStatus,
    ExtractResult,
    FlatStructure,
    NodeProposal,
    NodeType,
    PersistedNode,
    ResolvedNode,
    StructureOptions,
    StructureTree,
    TreeNode,
)

# Observability
from .observability import InMemoryMetricsHook, MetricsHook, NoOpMetricsHook

# Prompts
from .prompts import Prompt, PromptsLibrary

# Storage
from .storage import (
    DocumentRepository,
    InMemoryDocumentRepository,
    InMemoryNodeRepository,
    NodeRepository,
)

# Structure
from .structure import (
    AnchorOffsetResolver,
    ChunkedStructureOrchestrator,
    LLMStructureGenerator,
    NodeHierarchyBuilder,
    NodeMerger,
    StructureBuildOrchestrator,
    StructureGenerator,
)

# Tokens
from .tokens import TokenCounter

__all__ = [
    # Chunking
    "Chunk",
    "DocumentChunker",
    # Configuration
    "ChunkingConfig",
    "RetryConfig",
    # Errors
    "AnchorNotFoundError",
    "ChunkProcessingError",
    "GenerationError",
    "GenerationTimeoutError",
    "InvalidDocumentStateError",
    "InvalidRangeError",
    "NodeValidationError",
    "OutlineKitError",
    "PersistenceError",
    "ResourceNotFoundError",
    "StructureBuildError",
    # Models
    "Document",
    "DocumentStatus",
    "ExtractResult",
    "FlatStructure",
    "NodeProposal",
    "NodeType",
    "PersistedNode",
    "ResolvedNode",
    "StructureOptions",
    "StructureTree",
    "TreeNode",
    # Observability
    "InMemoryMetricsHook",
    "MetricsHook",
    "NoOpMetricsHook",
    # Prompts
    "Prompt",
    "PromptsLibrary",
    # Storage
    "DocumentRepository",
    "InMemoryDocumentRepository",
    "InMemoryNodeRepository",
    "NodeRepository",
    # Structure
    "AnchorOffsetResolver",
    "ChunkedStructureOrchestrator",
    "LLMStructureGenerator",
    "NodeHierarchyBuilder",
    "NodeMerger",
    "StructureBuildOrchestrator",
    "StructureGenerator",
    # Tokens
    "TokenCounter",
]
