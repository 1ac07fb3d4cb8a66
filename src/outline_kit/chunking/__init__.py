from .chunker import Chunk, DocumentChunker

__all__ = [
    "Chunk",
    "DocumentChunker",
]
