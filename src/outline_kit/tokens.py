# src/outline_kit/tokens.py

import math

from outline_kit.config import ChunkingConfig

DEFAULT_CHARS_PER_TOKEN = 4.0

# Fraction of the model window kept free for the completion itself.
_SAFETY_MARGIN = 0.8


class TokenCounter:
    """Character-ratio token estimator.

    Deliberately tokenizer-free: one token is assumed to cover a fixed
    number of characters, which is accurate enough for budgeting chunks.
    """

    def __init__(self, chars_per_token: float = DEFAULT_CHARS_PER_TOKEN) -> None:
        if chars_per_token <= 0:
            raise ValueError("chars_per_token must be > 0")
        self.chars_per_token = chars_per_token

    @classmethod
    def from_config(cls, config: ChunkingConfig) -> "TokenCounter":
        return cls(chars_per_token=config.chars_per_token)

    def estimate_tokens(self, text: str | None) -> int:
        if not text:
            return 0
        return math.ceil(len(text) / self.chars_per_token)

    def exceeds_limit(self, text: str | None, token_limit: int) -> bool:
        return self.estimate_tokens(text) > token_limit

    def max_chars_for_tokens(self, token_count: int) -> int:
        if token_count <= 0:
            return 0
        return int(token_count * self.chars_per_token)

    def safe_chunk_size_chars(
        self, model_max_tokens: int, prompt_overhead_tokens: int = 0
    ) -> int:
        """Largest chunk, in characters, that fits next to the prompt."""
        available = int((model_max_tokens - prompt_overhead_tokens) * _SAFETY_MARGIN)
        if available <= 0:
            raise ValueError(
                f"prompt overhead ({prompt_overhead_tokens} tokens) leaves no room "
                f"in a {model_max_tokens} token window"
            )
        return self.max_chars_for_tokens(available)
