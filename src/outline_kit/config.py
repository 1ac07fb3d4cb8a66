# src/outline_kit/config.py

from dataclasses import dataclass


@dataclass(frozen=True)
class ChunkingConfig:
    """Budgets for splitting documents before they reach the model.

    Immutable. Explicit. No magic defaults from environment.
    """

    max_single_chunk_tokens: int = 40_000
    max_single_chunk_chars: int = 150_000
    overlap_tokens: int = 5_000
    prompt_overhead_tokens: int = 2_000
    aggressive_chunking: bool = False
    enable_emergency_chunking: bool = True
    emergency_chunk_chars: int = 2_000_000
    chars_per_token: float = 4.0

    def __post_init__(self) -> None:
        if self.max_single_chunk_tokens <= 0:
            raise ValueError("max_single_chunk_tokens must be > 0")
        if self.max_single_chunk_chars <= 0:
            raise ValueError("max_single_chunk_chars must be > 0")
        if self.overlap_tokens <= 0:
            raise ValueError("overlap_tokens must be > 0")
        if self.chars_per_token <= 0:
            raise ValueError("chars_per_token must be > 0")


@dataclass(frozen=True)
class RetryConfig:
    """Backoff policy for the model call."""

    max_attempts: int = 3
    base_delay_s: float = 1.0
    max_delay_s: float = 30.0
    jitter_s: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
