"""LLM gateway configuration.

Default parameters for LLM calls, the response cache and the self-healing
retry loop. These can be overridden per call.
"""

# =============================================================================
# Generation Defaults
# =============================================================================
# Structured pipeline output benefits from a low temperature. MAX_TOKENS caps
# response length so calls complete and costs stay bounded.

DEFAULT_TEMPERATURE = 0.2
MAX_TOKENS = 8192

# =============================================================================
# Response Cache
# =============================================================================
# The cache is content addressed, so entries are safe to share between runs.
# Entries expire after CACHE_TTL_SECONDS and the least recently used entry is
# evicted past CACHE_MAX_ENTRIES.

CACHE_MAX_ENTRIES = 512
CACHE_TTL_SECONDS = 3600

# =============================================================================
# Token Estimation
# =============================================================================
# Code tokenizes at roughly 3.5 characters per token across common
# tokenizers. Usage above the warning thresholds is reported to the caller;
# it never blocks a call.

CHARS_PER_TOKEN = 3.5
MIN_OUTPUT_RESERVE_TOKENS = 4096
OUTPUT_RESERVE_RATIO = 0.15
TOKEN_WARNING_PERCENT = 75
TOKEN_DANGER_PERCENT = 90
TOKEN_CRITICAL_PERCENT = 100

# =============================================================================
# Self-Healing Retry
# =============================================================================
# On context overflow the prompt is shrunk to REDUCTION_SAFETY_MARGIN of the
# reported limit (or of FALLBACK_REDUCTION_RATIO times the current size when
# no limit is reported). A reduction that keeps more than
# MIN_REDUCTION_PROGRESS of the previous size is treated as stuck.

MAX_HEAL_ATTEMPTS = 3
REDUCTION_SAFETY_MARGIN = 0.85
FALLBACK_REDUCTION_RATIO = 0.7
MIN_REDUCTION_PROGRESS = 0.95
TRUNCATION_NOTICE = "\n\n[Content truncated to fit token limit]"

# =============================================================================
# Cost Estimation
# =============================================================================
# Rough per-stage output sizes used for up-front cost estimates. The range
# reported to users spans COST_RANGE_FACTOR either side of the estimate.

COST_TOKENS_PER_CHAR = 0.25
PROMPT_OVERHEAD_FACTOR = 1.3
ABSTRACTION_OUTPUT_TOKENS = 2000
RELATIONSHIP_OUTPUT_TOKENS = 1500
ORDERING_OUTPUT_TOKENS = 500
CHAPTER_OUTPUT_TOKENS = 3000
COST_RANGE_FACTOR = 0.2
