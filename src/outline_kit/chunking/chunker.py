# src/outline_kit/chunking/chunker.py

import logging
import math
import re
from dataclasses import dataclass
from time import monotonic

from outline_kit.config import ChunkingConfig
from outline_kit.observability import names
from outline_kit.observability.base import MetricsHook, NoOpMetricsHook
from outline_kit.tokens import TokenCounter

logger = logging.getLogger(__name__)

# Breaks must land in the last 30% of a window, otherwise we cut on words.
_MIN_BREAK_RATIO = 0.7
_WORD_LOOKBACK_CHARS = 1000

_CHAPTER_BREAK = re.compile(r"\n[ \t]*(?:chapter|part)\s+[\dIVXLC]+", re.IGNORECASE)
_SECTION_BREAK = re.compile(r"\n[ \t]*[A-Z][A-Z \t]{3,}\n")
_PARAGRAPH_BREAK = re.compile(r"\n[ \t]*\n")
_SENTENCE_END = re.compile(r"[.!?][\"')\]]?\s")


@dataclass(frozen=True)
class Chunk:
    text: str
    start_offset: int
    end_offset: int
    chunk_index: int

    @property
    def length(self) -> int:
        return len(self.text)

    def __str__(self) -> str:
        return (
            f"Chunk[{self.chunk_index}: {self.start_offset}-{self.end_offset}, "
            f"{self.length} chars]"
        )


class DocumentChunker:
    """Splits documents into overlapping windows that fit a token budget.

    Offsets are document-global. Consecutive chunks overlap by a fixed
    number of characters so the model sees context across the cut, and
    together the chunks cover the whole text without gaps.
    """

    def __init__(
        self,
        config: ChunkingConfig = ChunkingConfig(),
        token_counter: TokenCounter | None = None,
        metrics_hook: MetricsHook = NoOpMetricsHook(),
    ) -> None:
        self.config = config
        self.token_counter = token_counter or TokenCounter.from_config(config)
        self.metrics_hook = metrics_hook

        self.max_chunk_chars = min(
            self.token_counter.safe_chunk_size_chars(
                config.max_single_chunk_tokens, config.prompt_overhead_tokens
            ),
            config.max_single_chunk_chars,
        )
        self.overlap_chars = self.token_counter.max_chars_for_tokens(
            config.overlap_tokens
        )
        if self.overlap_chars < 1:
            raise ValueError("overlap must cover at least one character")
        if self.overlap_chars * 2 >= self.max_chunk_chars:
            raise ValueError(
                f"overlap ({self.overlap_chars} chars) must be less than half the "
                f"chunk size ({self.max_chunk_chars} chars)"
            )
        logger.debug(
            "DocumentChunker ready: max_chunk_chars=%d, overlap_chars=%d",
            self.max_chunk_chars,
            self.overlap_chars,
        )

    def fits_single_chunk(self, text: str) -> bool:
        return (
            not self.token_counter.exceeds_limit(text, self.config.max_single_chunk_tokens)
            and len(text) <= self.config.max_single_chunk_chars
        )

    def chunk(self, text: str, document_id: str = "unknown") -> list[Chunk]:
        start = monotonic()
        if not text:
            logger.warning("Received empty text for chunking (document %s)", document_id)
            return [Chunk(text="", start_offset=0, end_offset=0, chunk_index=0)]

        logger.info(
            "Chunking document %s: %d chars, ~%d tokens",
            document_id,
            len(text),
            self.token_counter.estimate_tokens(text),
        )

        if self.fits_single_chunk(text):
            logger.info("Document %s fits in a single chunk", document_id)
            chunks = [Chunk(text=text, start_offset=0, end_offset=len(text), chunk_index=0)]
        else:
            chunks = self._split(text)
            if self.config.enable_emergency_chunking:
                chunks = self._enforce_emergency_limit(text, chunks, document_id)

        elapsed_ms = 1000 * (monotonic() - start)
        self.metrics_hook.record_latency(names.CHUNKING_DURATION, elapsed_ms)
        self.metrics_hook.increment(names.CHUNKING_CHUNKS_CREATED, len(chunks))
        logger.info("Document %s chunked into %d pieces", document_id, len(chunks))
        return chunks

    def estimate_chunk_count(self, text: str) -> int:
        if not text or self.fits_single_chunk(text):
            return 1
        step = self.max_chunk_chars - self.overlap_chars
        return max(1, math.ceil((len(text) - self.overlap_chars) / step))

    def _split(self, text: str) -> list[Chunk]:
        chunks: list[Chunk] = []
        text_len = len(text)
        position = 0

        while True:
            end = self._chunk_end(text, position)
            chunks.append(
                Chunk(
                    text=text[position:end],
                    start_offset=position,
                    end_offset=end,
                    chunk_index=len(chunks),
                )
            )
            if end >= text_len:
                break
            position = max(end - self.overlap_chars, position + 1)

        return chunks

    def _chunk_end(self, text: str, position: int) -> int:
        max_end = min(position + self.max_chunk_chars, len(text))
        if max_end >= len(text):
            return len(text)

        window = text[position:max_end]
        best_break = self._find_break(window)
        if best_break > 0:
            return position + best_break
        return self._word_boundary(text, position, max_end)

    @staticmethod
    def _find_break(window: str) -> int:
        threshold = len(window) * _MIN_BREAK_RATIO

        # Headings break before the heading; prose breaks after the separator.
        for pattern, use_start in (
            (_CHAPTER_BREAK, True),
            (_SECTION_BREAK, True),
            (_PARAGRAPH_BREAK, False),
            (_SENTENCE_END, False),
        ):
            last = -1
            for match in pattern.finditer(window):
                last = match.start() if use_start else match.end()
            if last > threshold:
                return last
        return -1

    @staticmethod
    def _word_boundary(text: str, position: int, max_end: int) -> int:
        floor = max(
            position + int((max_end - position) * _MIN_BREAK_RATIO),
            max_end - _WORD_LOOKBACK_CHARS,
        )
        for i in range(max_end, floor, -1):
            if text[i - 1].isspace():
                return i
        return max_end

    def _enforce_emergency_limit(
        self, text: str, chunks: list[Chunk], document_id: str
    ) -> list[Chunk]:
        limit = self.config.emergency_chunk_chars
        if all(c.length <= limit for c in chunks):
            return chunks

        logger.warning(
            "Document %s produced chunks above %d chars, forcing emergency split",
            document_id,
            limit,
        )
        spans: list[tuple[int, int]] = []
        for c in chunks:
            spans.extend(self._halve(c.start_offset, c.end_offset, limit))
        return [
            Chunk(text=text[s:e], start_offset=s, end_offset=e, chunk_index=i)
            for i, (s, e) in enumerate(spans)
        ]

    def _halve(self, start: int, end: int, limit: int) -> list[tuple[int, int]]:
        if end - start <= limit:
            return [(start, end)]
        mid = start + (end - start) // 2
        overlap = min(self.overlap_chars, (end - start) // 4)
        return self._halve(start, mid, limit) + self._halve(
            max(start + 1, mid - overlap), end, limit
        )
