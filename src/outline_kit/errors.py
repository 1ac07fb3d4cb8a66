# src/outline_kit/errors.py

"""Error taxonomy for structure building.

Every error raised by the pipeline derives from ``OutlineKitError`` so that
callers can handle one base type. Only the model call is ever retried.
"""


class OutlineKitError(Exception):
    """Base class for all outline-kit errors."""


class AnchorNotFoundError(OutlineKitError):
    """An anchor could not be resolved and no valid AI-provided offsets exist."""


class InvalidRangeError(OutlineKitError, ValueError):
    """A resolved range is inconsistent, or node metadata failed validation."""


class NodeValidationError(OutlineKitError):
    """Sibling overlap or parent/child containment check failed."""


class ChunkProcessingError(OutlineKitError):
    """A chunk's model call failed with something other than 'no nodes'."""


class PersistenceError(OutlineKitError):
    """A depth layer could not be written. Earlier layers stay committed."""

    def __init__(self, message: str, *, depth: int, persisted_count: int) -> None:
        super().__init__(message)
        self.depth = depth
        self.persisted_count = persisted_count


class GenerationError(OutlineKitError):
    """The model collaborator failed to produce a usable structure."""


class GenerationTimeoutError(GenerationError):
    """All retry attempts of the model call were exhausted."""

    def __init__(self, message: str, *, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


class ResourceNotFoundError(OutlineKitError):
    """A document, node, or any structure to build was not found."""


class InvalidDocumentStateError(OutlineKitError):
    """The document is not in a state that allows structure building."""


class StructureBuildError(OutlineKitError):
    """Catch-all wrapper for unexpected failures during a build."""


NO_NODES_GENERATED = "No nodes generated"


def is_no_nodes_error(exc: BaseException) -> bool:
    """Return True if ``exc`` or anything in its cause chain reports no nodes."""
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, GenerationError) and NO_NODES_GENERATED in str(current):
            return True
        current = current.__cause__ or current.__context__
    return False
