# src/outline_kit/observability/names.py

"""Standard metric names for outline-kit observability.

Use these constants instead of hardcoded strings for consistency
across the codebase.

Note: All duration metrics are in milliseconds by convention.
"""

# ============================================================================
# LLM Metrics
# ============================================================================

LLM_COMPLETION_DURATION = "llm_completion_duration"

LLM_REQUESTS_TOTAL = "llm_requests_total"
LLM_ERRORS_TOTAL = "llm_errors_total"

LLM_TOKENS_PROMPT = "llm_tokens_prompt"
LLM_TOKENS_COMPLETION = "llm_tokens_completion"
LLM_TOKENS_TOTAL = "llm_tokens_total"


# ============================================================================
# Structure Generation Metrics
# ============================================================================

GENERATION_DURATION = "structure_generation_duration"
GENERATION_ATTEMPTS_TOTAL = "structure_generation_attempts_total"
GENERATION_NODES_PROPOSED = "structure_generation_nodes_proposed"


# ============================================================================
# Chunking Metrics
# ============================================================================

CHUNKING_DURATION = "chunking_duration"
CHUNKING_CHUNKS_CREATED = "chunking_chunks_created"
CHUNKING_FALLBACK_NODES = "chunking_fallback_nodes"


# ============================================================================
# Anchor Resolution Metrics
# ============================================================================

# Labelled with {"strategy": ..., "boundary": "start" | "end"}
ANCHOR_STRATEGY_HITS = "anchor_strategy_hits"
ANCHOR_AI_OFFSET_FALLBACKS = "anchor_ai_offset_fallbacks"
ANCHOR_END_FALLBACKS = "anchor_end_fallbacks"


# ============================================================================
# Structure Build Metrics
# ============================================================================

BUILD_DURATION = "structure_build_duration"
BUILD_LAYERS_PERSISTED = "structure_build_layers_persisted"
BUILD_NODES_PERSISTED = "structure_build_nodes_persisted"
BUILD_FAILURES_TOTAL = "structure_build_failures_total"
BUILD_VALIDATION_WARNINGS = "structure_build_validation_warnings"


# ============================================================================
# Node Repository Metrics
# ============================================================================

REPOSITORY_SAVE_DURATION = "node_repository_save_duration"
REPOSITORY_QUERY_DURATION = "node_repository_query_duration"
REPOSITORY_OPERATIONS_TOTAL = "node_repository_operations_total"
