# src/outline_kit/structure/anchors.py

"""Turns fuzzy model anchors into exact character offsets.

The model describes each node by a short excerpt of where it starts and
where it ends. Those excerpts are often slightly wrong: re-wrapped, with
escaped quotes, different casing, or simply longer than the real text.
``AnchorOffsetResolver`` tries a cascade of increasingly lenient string
strategies and stops at the first hit. Every lenient strategy requires a
unique match so that a duplicated phrase never silently picks the wrong
occurrence.
"""

import logging
import re
import unicodedata
from bisect import bisect_right
from collections import defaultdict
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass

from outline_kit.errors import AnchorNotFoundError, InvalidRangeError, NodeValidationError
from outline_kit.models import NodeProposal, PersistedNode, ResolvedNode
from outline_kit.observability import names
from outline_kit.observability.base import MetricsHook, NoOpMetricsHook

logger = logging.getLogger(__name__)

MIN_ANCHOR_LENGTH = 20
SHORTENED_PREFIX_LENGTHS = (50, 40, 30, 25, 20)
FUZZY_MAX_WINDOW = 80
FUZZY_MIN_WINDOW = 15
FUZZY_WINDOW_STEP = 5
WORD_MATCH_MAX_WORDS = 5
WORD_MATCH_MIN_WORDS = 3

_WHITESPACE_RUN = re.compile(r"\s+")

# Given the document text and a position, return the offset of the next
# heading-like boundary after it, or None.
SectionMarkerPredicate = Callable[[str, int], "int | None"]

_MAJOR_SECTION = re.compile(
    r"^[ \t]*("
    r"(?:chapter|part|book|section)\s+(?:\d+|[ivxlc]+|one|two|three|four|five|six|seven|eight|nine|ten)\b"
    r"|(?:introduction|conclusion|prologue|epilogue|afterword|acknowledge?ments|about the authors?)[ \t]*$"
    r")",
    re.IGNORECASE | re.MULTILINE,
)


def find_next_major_section(text: str, from_position: int) -> int | None:
    """Default end-boundary heuristic: the next chapter-like heading line."""
    if from_position >= len(text):
        return None
    match = _MAJOR_SECTION.search(text, from_position + 1)
    if match is None:
        return None
    return match.start(1)


def normalize_whitespace(text: str) -> str:
    return _WHITESPACE_RUN.sub(" ", text).strip()


def unescape_anchor(anchor: str) -> str:
    """Undo JSON-style escaping the model sometimes leaves in anchors."""
    return anchor.replace('\\"', '"').replace("\\n", " ").replace("\n", " ")


def _lower_same_length(text: str) -> str:
    lowered = text.lower()
    if len(lowered) == len(text):
        return lowered
    # A few code points lower to two characters; keep those as-is so that
    # offsets in the lowered text stay valid for the original.
    return "".join(c.lower() if len(c.lower()) == 1 else c for c in text)


def _count_from(haystack: str, needle: str, start: int, limit: int = 2) -> tuple[int, int]:
    """Return (first position, occurrences up to ``limit``) from ``start``."""
    first = haystack.find(needle, start)
    if first == -1:
        return -1, 0
    count = 1
    pos = first
    while count < limit:
        pos = haystack.find(needle, pos + 1)
        if pos == -1:
            break
        count += 1
    return first, count


@dataclass(frozen=True)
class AnchorMatch:
    start: int
    end: int
    strategy: str


class _SearchSpace:
    """The document text in the forms the strategies search.

    Holds the original, a lowercased copy, and a whitespace-collapsed copy
    with enough bookkeeping to map collapsed positions back to the
    original. Built once per ``resolve`` call.
    """

    def __init__(self, text: str) -> None:
        self.text = text
        self.lower = _lower_same_length(text)

        pieces: list[str] = []
        self._run_orig_start: list[int] = []
        self._run_orig_end: list[int] = []
        self._run_coll_pos: list[int] = []
        self._run_coll_break: list[int] = []
        self._shift_after: list[int] = []

        removed = 0
        last = 0
        collapsed_len = 0
        for match in _WHITESPACE_RUN.finditer(text):
            s, e = match.span()
            pieces.append(text[last:s])
            collapsed_len += s - last
            pieces.append(" ")
            if e - s > 1:
                self._run_orig_start.append(s)
                self._run_orig_end.append(e)
                self._run_coll_pos.append(collapsed_len)
                self._run_coll_break.append(collapsed_len + 1)
                removed += e - s - 1
                self._shift_after.append(removed)
            collapsed_len += 1
            last = e
        pieces.append(text[last:])

        self.collapsed = "".join(pieces)
        self.collapsed_lower = _lower_same_length(self.collapsed)

    def to_original(self, collapsed_pos: int) -> int:
        k = bisect_right(self._run_coll_break, collapsed_pos)
        shift = self._shift_after[k - 1] if k else 0
        return min(collapsed_pos + shift, len(self.text))

    def to_collapsed(self, original_pos: int) -> int:
        if original_pos <= 0:
            return 0
        k = bisect_right(self._run_orig_start, original_pos) - 1
        if k >= 0 and original_pos < self._run_orig_end[k]:
            # Inside a collapsed run: land just after its single space.
            return self._run_coll_pos[k] + 1
        k = bisect_right(self._run_orig_end, original_pos)
        shift = self._shift_after[k - 1] if k else 0
        return min(original_pos - shift, len(self.collapsed))

    def span_from_collapsed(self, start: int, length: int) -> tuple[int, int]:
        orig_start = self.to_original(start)
        if length <= 0:
            return orig_start, orig_start
        orig_end = self.to_original(start + length - 1) + 1
        return orig_start, min(orig_end, len(self.text))


class AnchorOffsetResolver:
    """Resolves node anchors to exact ``[start, end)`` offsets.

    Args:
        section_marker: Predicate used when an end anchor cannot be found.
            Returns the next heading-like boundary after a position.
        metrics_hook: Optional metrics hook for observability.
    """

    def __init__(
        self,
        section_marker: SectionMarkerPredicate = find_next_major_section,
        metrics_hook: MetricsHook = NoOpMetricsHook(),
    ) -> None:
        self.section_marker = section_marker
        self.metrics_hook = metrics_hook

    def resolve(
        self, nodes: Iterable[NodeProposal], document_text: str
    ) -> list[ResolvedNode]:
        """Resolve every proposal against ``document_text``.

        Falls back to the model's own offsets when anchors cannot be
        matched and those offsets are in bounds.

        Raises:
            AnchorNotFoundError: An anchor is blank, or could not be
                matched and no valid AI-provided offsets exist.
            InvalidRangeError: Anchors matched but the end lies at or
                before the start.
        """
        space = _SearchSpace(document_text)
        resolved: list[ResolvedNode] = []
        anchor_successes = 0
        offset_fallbacks = 0

        for node in nodes:
            self._require_anchors(node)
            try:
                start, end = self._resolve_node(node, space)
                anchor_successes += 1
            except AnchorNotFoundError as exc:
                start, end = self._ai_offsets_or_raise(node, len(document_text), exc)
                offset_fallbacks += 1
                self.metrics_hook.increment(names.ANCHOR_AI_OFFSET_FALLBACKS)
            resolved.append(ResolvedNode.from_proposal(node, start, end))

        logger.info(
            "Offset calculation completed: %d anchor successes, %d AI offset fallbacks",
            anchor_successes,
            offset_fallbacks,
        )
        return resolved

    def find_anchor(
        self,
        document_text: str,
        anchor: str,
        from_index: int = 0,
    ) -> AnchorMatch | None:
        """Locate a single anchor at or after ``from_index``."""
        return self._find(_SearchSpace(document_text), anchor, from_index, "", "start")

    def validate_sibling_non_overlap(
        self, nodes: Sequence[ResolvedNode] | Sequence[PersistedNode]
    ) -> None:
        """Check that no two nodes sharing a parent overlap.

        Roots form one sibling group. Parent/child overlap is expected and
        not checked here.

        Raises:
            NodeValidationError: naming the first overlapping pair.
        """
        titles = {node.id: node.title for node in nodes}
        by_parent: dict[str | None, list[ResolvedNode | PersistedNode]] = defaultdict(list)
        for node in nodes:
            by_parent[node.parent_id].append(node)

        for parent_id, siblings in by_parent.items():
            parent_name = titles.get(parent_id, parent_id) if parent_id else "ROOT"
            ordered = sorted(siblings, key=lambda n: (n.start_offset, n.end_offset))
            for current, following in zip(ordered, ordered[1:]):
                if current.end_offset > following.start_offset:
                    raise NodeValidationError(
                        f"Overlapping siblings in {parent_name}: "
                        f"{current.title} [{current.start_offset},{current.end_offset}) and "
                        f"{following.title} [{following.start_offset},{following.end_offset})"
                    )
            logger.debug(
                "Validated %d siblings under %s for non-overlap", len(siblings), parent_name
            )

    @staticmethod
    def _require_anchors(node: NodeProposal) -> None:
        if not node.start_anchor or not node.start_anchor.strip():
            raise AnchorNotFoundError(
                f"Start anchor is null or empty for node: {node.title}"
            )
        if not node.end_anchor or not node.end_anchor.strip():
            raise AnchorNotFoundError(f"End anchor is null or empty for node: {node.title}")

    def _resolve_node(self, node: NodeProposal, space: _SearchSpace) -> tuple[int, int]:
        title = node.title or ""
        start_anchor = node.start_anchor or ""
        end_anchor = node.end_anchor or ""
        text_len = len(space.text)

        start_match = self._find(space, start_anchor, 0, title, "start")
        if start_match is None:
            raise AnchorNotFoundError(
                f"Start anchor not found: '{start_anchor[:50]}' for node: {title}"
            )
        start = start_match.start

        end_match = self._find(space, end_anchor, start, title, "end")
        if end_match is not None:
            end = end_match.end
        else:
            logger.warning(
                "End anchor not found: '%s' for node: %s. Attempting fallback positioning.",
                end_anchor[:50],
                title,
            )
            marker = self.section_marker(space.text, start)
            if marker is not None and 0 <= marker <= text_len:
                end = marker
                self.metrics_hook.increment(
                    names.ANCHOR_END_FALLBACKS, labels={"fallback": "next_section"}
                )
            else:
                logger.warning(
                    "No next section found for node: %s. Using document end as fallback.",
                    title,
                )
                end = text_len
                self.metrics_hook.increment(
                    names.ANCHOR_END_FALLBACKS, labels={"fallback": "document_end"}
                )

        end = min(end, text_len)
        if end <= start:
            raise InvalidRangeError(
                f"Anchor positions out of bounds for node '{title}': "
                f"start={start}, end={end}, documentLength={text_len}"
            )
        return start, end

    @staticmethod
    def _ai_offsets_or_raise(
        node: NodeProposal, text_len: int, exc: AnchorNotFoundError
    ) -> tuple[int, int]:
        start, end = node.start_offset, node.end_offset
        if start is None or end is None:
            logger.error("No AI-provided offsets available as fallback for '%s'", node.title)
            raise exc
        if not (0 <= start < end <= text_len):
            logger.error(
                "AI-provided offsets are invalid for '%s': [%d:%d), document length: %d",
                node.title,
                start,
                end,
                text_len,
            )
            raise exc
        logger.warning(
            "Anchor matching failed for '%s', using AI-provided offsets: [%d:%d)",
            node.title,
            start,
            end,
        )
        return start, end

    def _find(
        self,
        space: _SearchSpace,
        anchor: str,
        from_index: int,
        title: str,
        boundary: str,
    ) -> AnchorMatch | None:
        if len(anchor) < MIN_ANCHOR_LENGTH:
            logger.warning(
                "%s anchor '%s' for node '%s' is too short (%d chars), "
                "should be at least %d characters",
                boundary,
                anchor,
                title,
                len(anchor),
                MIN_ANCHOR_LENGTH,
            )

        anchor = unicodedata.normalize("NFC", anchor)
        for strategy in (
            self._exact,
            self._whitespace_normalized,
            self._unescaped,
            self._case_insensitive,
            self._shortened,
            self._fuzzy,
            self._word_phrase,
            self._fuzzy_case_insensitive,
        ):
            match = strategy(space, anchor, from_index)
            if match is not None:
                logger.debug(
                    "Found %s anchor '%s' for node '%s' using %s at position %d",
                    boundary,
                    anchor[:30],
                    title,
                    match.strategy,
                    match.start,
                )
                self.metrics_hook.increment(
                    names.ANCHOR_STRATEGY_HITS,
                    labels={"strategy": match.strategy, "boundary": boundary},
                )
                return match

        logger.warning(
            "%s anchor '%s' not found for node '%s'. Document preview: '%s'",
            boundary,
            anchor[:50],
            title,
            space.text[:200],
        )
        return None

    # -- strategies -------------------------------------------------------

    @staticmethod
    def _exact(space: _SearchSpace, anchor: str, from_index: int) -> AnchorMatch | None:
        pos = space.text.find(anchor, from_index)
        if pos == -1:
            return None
        return AnchorMatch(pos, pos + len(anchor), "exact")

    @staticmethod
    def _collapsed_match(
        space: _SearchSpace,
        needle: str,
        from_index: int,
        strategy: str,
        *,
        lower: bool = False,
        unique: bool = False,
    ) -> AnchorMatch | None:
        if not needle:
            return None
        haystack = space.collapsed_lower if lower else space.collapsed
        if lower:
            needle = _lower_same_length(needle)
        pos, count = _count_from(haystack, needle, space.to_collapsed(from_index))
        if pos == -1 or (unique and count > 1):
            return None
        start, end = space.span_from_collapsed(pos, len(needle))
        return AnchorMatch(start, end, strategy)

    def _whitespace_normalized(
        self, space: _SearchSpace, anchor: str, from_index: int
    ) -> AnchorMatch | None:
        return self._collapsed_match(
            space, normalize_whitespace(anchor), from_index, "whitespace"
        )

    def _unescaped(
        self, space: _SearchSpace, anchor: str, from_index: int
    ) -> AnchorMatch | None:
        unescaped = unescape_anchor(anchor)
        if unescaped == anchor:
            return None
        pos = space.text.find(unescaped, from_index)
        if pos != -1:
            return AnchorMatch(pos, pos + len(unescaped), "unescaped")
        return self._collapsed_match(
            space, normalize_whitespace(unescaped), from_index, "unescaped"
        )

    def _case_insensitive(
        self, space: _SearchSpace, anchor: str, from_index: int
    ) -> AnchorMatch | None:
        candidate = unescape_anchor(anchor)
        lowered = _lower_same_length(candidate)
        pos = space.lower.find(lowered, from_index)
        if pos != -1:
            return AnchorMatch(pos, pos + len(lowered), "case_insensitive")
        match = self._collapsed_match(
            space,
            normalize_whitespace(candidate),
            from_index,
            "case_insensitive",
            lower=True,
        )
        return match

    def _shortened(
        self, space: _SearchSpace, anchor: str, from_index: int
    ) -> AnchorMatch | None:
        normalized = normalize_whitespace(unescape_anchor(anchor))
        if len(normalized) <= MIN_ANCHOR_LENGTH:
            return None

        half = max(MIN_ANCHOR_LENGTH, len(normalized) // 2)
        lengths = sorted(
            {n for n in (*SHORTENED_PREFIX_LENGTHS, half) if MIN_ANCHOR_LENGTH <= n < len(normalized)},
            reverse=True,
        )
        text_len = len(space.text)
        for length in lengths:
            prefix = normalized[:length].rstrip()
            pos, count = _count_from(space.collapsed, prefix, space.to_collapsed(from_index))
            if pos == -1:
                continue
            if count > 1:
                # A shorter prefix of an ambiguous prefix is just as ambiguous.
                logger.debug("Shortened anchor '%s' is ambiguous, giving up", prefix[:30])
                return None
            start, _ = space.span_from_collapsed(pos, len(prefix))
            return AnchorMatch(start, min(text_len, start + len(normalized)), "shortened")
        return None

    def _window_scan(
        self, space: _SearchSpace, anchor: str, from_index: int, *, lower: bool
    ) -> AnchorMatch | None:
        normalized = normalize_whitespace(unescape_anchor(anchor))
        haystack = space.collapsed_lower if lower else space.collapsed
        if lower:
            normalized = _lower_same_length(normalized)
        strategy = "fuzzy_case_insensitive" if lower else "fuzzy"
        search_from = space.to_collapsed(from_index)
        text_len = len(space.text)

        length = min(len(normalized), FUZZY_MAX_WINDOW)
        while length >= FUZZY_MIN_WINDOW:
            offsets = [0]
            if len(normalized) > length:
                offsets.append(len(normalized) - length)
            if len(normalized) > length + 10:
                offsets.append((len(normalized) - length) // 2)

            for offset in offsets:
                window = normalized[offset : offset + length]
                pos, count = _count_from(haystack, window, search_from)
                if pos == -1 or count > 1:
                    continue
                # Start at the matched window; end where the rest of the
                # anchor would finish.
                coll_end = min(
                    len(haystack), max(pos + length, pos - offset + len(normalized))
                )
                start = space.to_original(pos)
                end = min(text_len, space.to_original(coll_end - 1) + 1)
                return AnchorMatch(start, end, strategy)
            length -= FUZZY_WINDOW_STEP
        return None

    def _fuzzy(
        self, space: _SearchSpace, anchor: str, from_index: int
    ) -> AnchorMatch | None:
        return self._window_scan(space, anchor, from_index, lower=False)

    def _fuzzy_case_insensitive(
        self, space: _SearchSpace, anchor: str, from_index: int
    ) -> AnchorMatch | None:
        return self._window_scan(space, anchor, from_index, lower=True)

    @staticmethod
    def _word_phrase(
        space: _SearchSpace, anchor: str, from_index: int
    ) -> AnchorMatch | None:
        normalized = normalize_whitespace(unescape_anchor(anchor))
        words = _lower_same_length(normalized).split(" ")
        if len(words) < WORD_MATCH_MIN_WORDS:
            return None

        search_from = space.to_collapsed(from_index)
        for word_count in range(min(len(words), WORD_MATCH_MAX_WORDS), WORD_MATCH_MIN_WORDS - 1, -1):
            phrase = " ".join(words[:word_count])
            pos, count = _count_from(space.collapsed_lower, phrase, search_from)
            if pos == -1:
                continue
            if count > 1:
                return None
            start = space.to_original(pos)
            return AnchorMatch(
                start, min(len(space.text), start + len(normalized)), "word_phrase"
            )
        return None
