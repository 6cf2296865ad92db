"""Repository crawl and file filtering configuration.

These settings control which remote files are downloaded for documentation
generation. Large or binary files are skipped to keep the LLM context
focused on human-readable source code.
"""

# =============================================================================
# GitHub API
# =============================================================================
# The crawler talks to the REST API directly instead of cloning. The v3 media
# type keeps response shapes stable across API revisions.

GITHUB_API_BASE = "https://api.github.com"
GITHUB_ACCEPT_HEADER = "application/vnd.github.v3+json"
GITHUB_USER_AGENT = "repodocs-crawler"
DEFAULT_BRANCH_FALLBACK = "main"

# =============================================================================
# Size Limits
# =============================================================================
# Files larger than MAX_FILE_SIZE_KB are skipped before their content is
# requested. The tree listing carries blob sizes, so oversized files cost no
# extra API call.

MAX_FILE_SIZE_KB = 500

# =============================================================================
# Binary Detection
# =============================================================================
# A null byte in the first BINARY_CHECK_BYTES of a blob marks it as binary.
# This catches generated or mislabelled files that slip past extension rules.

BINARY_CHECK_BYTES = 1024

# =============================================================================
# Minified File Detection
# =============================================================================
# Average line length above this threshold (over the first lines sampled)
# marks a file as minified or generated.

MINIFIED_AVG_LINE_LENGTH = 500
MINIFIED_SAMPLE_LINES = 20

# =============================================================================
# Fetch Concurrency
# =============================================================================
# Blob contents are fetched in batches. Each batch runs concurrently; batches
# run one after another to stay friendly with secondary rate limits.

FETCH_BATCH_SIZE = 10
REQUEST_TIMEOUT_SECONDS = 30.0

# =============================================================================
# Rate Limits
# =============================================================================
# When x-ratelimit-remaining drops below this value the crawler logs a
# warning suggesting a token.

RATE_LIMIT_WARNING_THRESHOLD = 10
