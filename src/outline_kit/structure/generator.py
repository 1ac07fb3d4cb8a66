# src/outline_kit/structure/generator.py

import json
import logging
import re
from collections.abc import Sequence
from time import monotonic
from typing import Any, Protocol

from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from outline_kit.config import RetryConfig
from outline_kit.errors import NO_NODES_GENERATED, GenerationError, GenerationTimeoutError
from outline_kit.llms import LLMClient, LLMConfig, Message, Role, create_llm_client
from outline_kit.models import NodeProposal, StructureOptions
from outline_kit.observability import names
from outline_kit.observability.base import MetricsHook, NoOpMetricsHook
from outline_kit.prompts import Prompt, PromptsLibrary

logger = logging.getLogger(__name__)

STRUCTURE_PROMPT = "document_structure"
STRUCTURE_PROMPT_VERSION = "1"

# How many previous nodes are shown to the model as context.
MAX_CONTEXT_NODES = 10

_CODE_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


class StructureGenerator(Protocol):
    """The model collaborator: turns text into proposed outline nodes.

    Implementations raise ``GenerationError`` with a message containing
    "No nodes generated" when the model found nothing to outline. The
    chunked pipeline treats that case as recoverable.
    """

    async def generate_structure(
        self, text: str, options: StructureOptions
    ) -> list[NodeProposal]: ...

    async def generate_structure_with_context(
        self,
        text: str,
        options: StructureOptions,
        previous_nodes: Sequence[NodeProposal],
        chunk_index: int,
        total_chunks: int,
    ) -> list[NodeProposal]: ...


def format_context(previous_nodes: Sequence[NodeProposal]) -> str:
    """Render the last few previous nodes as a bullet list for the prompt."""
    if not previous_nodes:
        return "None (first chunk)"

    shown = previous_nodes[-MAX_CONTEXT_NODES:]
    lines = [
        f"- [depth {node.depth or 0}] {(node.type.value if node.type else 'other')}: "
        f"{node.title or '(untitled)'}"
        for node in shown
    ]
    omitted = len(previous_nodes) - len(shown)
    if omitted > 0:
        lines.append(f"(... and {omitted} more nodes)")
    return "\n".join(lines)


def parse_nodes(content: str | None) -> list[NodeProposal]:
    """Parse a model reply into proposals.

    Accepts ``{"nodes": [...]}`` or a bare list, optionally wrapped in a
    markdown code fence. Items that fail validation are skipped.

    Raises:
        GenerationError: The reply is not JSON, has the wrong shape, or
            yields no usable nodes.
    """
    if not content or not content.strip():
        raise GenerationError(f"{NO_NODES_GENERATED}: empty model response")

    payload = content.strip()
    fenced = _CODE_FENCE.search(payload)
    if fenced:
        payload = fenced.group(1).strip()

    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise GenerationError(f"Model returned invalid JSON: {e}") from e

    if isinstance(data, dict):
        items = data.get("nodes")
    else:
        items = data
    if not isinstance(items, list):
        raise GenerationError("Model response has no 'nodes' list")

    proposals: list[NodeProposal] = []
    for i, item in enumerate(items):
        if not isinstance(item, dict):
            logger.warning("Skipping node %d: expected an object, got %s", i, type(item).__name__)
            continue
        proposal = _to_proposal(i, item)
        if proposal is not None:
            proposals.append(proposal)

    if not proposals:
        raise GenerationError(NO_NODES_GENERATED)
    return proposals


def _to_proposal(index: int, item: dict[str, Any]) -> NodeProposal | None:
    depth = item.get("depth")
    if isinstance(depth, (int, float)) and depth < 0:
        logger.warning(
            "Node %d '%s' has negative depth %s, clamping to 0",
            index,
            item.get("title"),
            depth,
        )
        item = {**item, "depth": 0}
    try:
        return NodeProposal.model_validate(item)
    except ValidationError as e:
        logger.warning("Skipping node %d: %s", index, e.errors()[0].get("msg", e))
        return None


class LLMStructureGenerator:
    """``StructureGenerator`` backed by an ``LLMClient``.

    The transport retries network errors on its own. This layer retries
    whole attempts, including replies that cannot be parsed, with
    exponential backoff plus jitter.

    Args:
        client: Async LLM client used for completions.
        prompts: Prompt library holding the structure template.
        retry_config: Attempt budget and backoff for one chunk.
        metrics_hook: Optional metrics hook for observability.
    """

    def __init__(
        self,
        client: LLMClient,
        prompts: PromptsLibrary | None = None,
        retry_config: RetryConfig = RetryConfig(),
        metrics_hook: MetricsHook = NoOpMetricsHook(),
    ) -> None:
        self.client = client
        self.prompt: Prompt = (prompts or PromptsLibrary()).get(
            STRUCTURE_PROMPT, STRUCTURE_PROMPT_VERSION
        )
        self.retry_config = retry_config
        self.metrics_hook = metrics_hook

    @classmethod
    def from_config(
        cls,
        config: LLMConfig,
        retry_config: RetryConfig = RetryConfig(),
        metrics_hook: MetricsHook = NoOpMetricsHook(),
    ) -> "LLMStructureGenerator":
        return cls(
            create_llm_client(config, metrics_hook),
            retry_config=retry_config,
            metrics_hook=metrics_hook,
        )

    async def generate_structure(
        self, text: str, options: StructureOptions
    ) -> list[NodeProposal]:
        return await self.generate_structure_with_context(text, options, [], 0, 1)

    async def generate_structure_with_context(
        self,
        text: str,
        options: StructureOptions,
        previous_nodes: Sequence[NodeProposal],
        chunk_index: int,
        total_chunks: int,
    ) -> list[NodeProposal]:
        messages = self.build_messages(
            text, options, previous_nodes, chunk_index, total_chunks
        )
        start = monotonic()
        try:
            nodes = await self._complete_with_retry(messages, options)
        finally:
            self.metrics_hook.record_latency(
                names.GENERATION_DURATION, 1000 * (monotonic() - start)
            )
        self.metrics_hook.increment(names.GENERATION_NODES_PROPOSED, len(nodes))
        logger.info(
            "Generated %d nodes for chunk %d of %d",
            len(nodes),
            chunk_index + 1,
            total_chunks,
        )
        return nodes

    def build_messages(
        self,
        text: str,
        options: StructureOptions,
        previous_nodes: Sequence[NodeProposal],
        chunk_index: int,
        total_chunks: int,
    ) -> list[Message]:
        user = self.prompt.render(
            profile=options.profile,
            granularity=options.granularity,
            chunk_position=f"Chunk Position: {chunk_index + 1} of {total_chunks}",
            chunk_length=len(text),
            context=format_context(previous_nodes),
            text=text,
        )
        messages = []
        if self.prompt.system:
            messages.append(Message(role=Role.SYSTEM, content=self.prompt.system.strip()))
        messages.append(Message(role=Role.USER, content=user))
        return messages

    async def _complete_with_retry(
        self, messages: list[Message], options: StructureOptions
    ) -> list[NodeProposal]:
        cfg = self.retry_config
        retrying = AsyncRetrying(
            stop=stop_after_attempt(cfg.max_attempts),
            wait=wait_exponential(multiplier=cfg.base_delay_s, max=cfg.max_delay_s)
            + wait_random(0, cfg.jitter_s),
            retry=retry_if_exception_type(Exception),
            before_sleep=before_sleep_log(logger, logging.WARNING),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    attempt_number = attempt.retry_state.attempt_number
                    self.metrics_hook.increment(names.GENERATION_ATTEMPTS_TOTAL)
                    logger.debug(
                        "Structure generation attempt %d/%d (model=%s)",
                        attempt_number,
                        cfg.max_attempts,
                        options.model,
                    )
                    response = await self.client.complete(
                        messages=messages,
                        temperature=options.temperature,
                        max_tokens=options.max_tokens,
                        json_mode=True,
                    )
                    if response.finish_reason == "length":
                        logger.warning("Model reply was truncated at the token limit")
                    return parse_nodes(response.content)
        except RetryError as e:
            last = e.last_attempt.exception()
            logger.error(
                "Structure generation failed after %d attempts: %s", cfg.max_attempts, last
            )
            raise GenerationTimeoutError(
                f"Structure generation failed after {cfg.max_attempts} attempts: {last}",
                attempts=cfg.max_attempts,
            ) from last
