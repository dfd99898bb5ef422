"""Configuration for the pull-request analysis agent."""

from __future__ import annotations

# ── Persona ──────────────────────────────────────────────────────────────────
PERSONA = """You are an expert software engineer and code reviewer.
You read diffs carefully, reason about how a change affects the rest of the
codebase, and only flag problems that would actually break a build or a run."""

# ── Diff Parsing ─────────────────────────────────────────────────────────────
# Paths matching any of these regexes are parsed for bookkeeping but never
# returned to the orchestrator.
SKIP_PATH_PATTERNS = [
    r"(?:^|/)dist/",
    r"(?:^|/)build/",
    r"(?:^|/)node_modules/",
    r"(?:^|/)__pycache__/",
    r"\.pyc$",
    r"\.map$",
    r"\.d\.ts$",
    r"\.min\.(?:js|css)$",
    r"(?:^|/)(?:package-lock\.json|yarn\.lock|pnpm-lock\.yaml|poetry\.lock|Cargo\.lock|go\.sum)$",
]

LANGUAGE_BY_EXTENSION = {
    "ts": "typescript",
    "tsx": "typescript",
    "js": "javascript",
    "jsx": "javascript",
    "py": "python",
    "java": "java",
    "go": "go",
    "rs": "rust",
    "rb": "ruby",
    "php": "php",
    "cpp": "cpp",
    "c": "c",
    "cs": "csharp",
    "swift": "swift",
    "kt": "kotlin",
    "sh": "bash",
    "yaml": "yaml",
    "yml": "yaml",
    "json": "json",
    "md": "markdown",
    "html": "html",
    "css": "css",
}

# ── Priority Scoring ─────────────────────────────────────────────────────────
STATUS_BONUS = {
    "added": 30,  # new files are analyzed in full
    "deleted": 40,  # deletions can break importers
    "renamed": 20,
}

# (regex, bonus); every matching rule adds its bonus
PATH_BONUSES = [
    (r"(?i)(config|setup|package|\.env)", 50),
    (r"(?i)(auth|security|permission)", 40),
    (r"(?i)test", 30),
    (r"\.(ts|js|py|java|go)$", 10),
]

# ── Token Estimation & Chunking ──────────────────────────────────────────────
# Rough approximation: 1 token ≈ 4 characters
CHARS_PER_TOKEN = 4

# Diffs estimated above this many tokens take the chunked path
MAX_NORMAL_TOKENS = 15_000

# Per-chunk ceiling (80% of the 15k-token request budget)
CHUNK_MAX_TOKENS = 12_000

# Trailing context repeated at the top of the next chunk
CHUNK_OVERLAP_TOKENS = 1_000

# Concurrent chunk requests in flight (matches the Bedrock connection pool)
CHUNK_MAX_WORKERS = 4

# ── Orchestrator ─────────────────────────────────────────────────────────────
MIN_MAX_ITERATIONS = 30
ITERATIONS_PER_FILE = 2

# A "synthesize" decision is honored once coverage reaches this ratio ...
SYNTHESIZE_COVERAGE = 0.8
# ... or once this many files (capped at coverage × total) are analyzed
SYNTHESIZE_MIN_FILES = 20

# Plans with more files than this default to the "focused" strategy
FOCUSED_STRATEGY_FILE_THRESHOLD = 20

# Maximum files handed to one fallback group analysis
FALLBACK_GROUP_SIZE = 3

# Files shown to the reasoning call when deciding what to do next
DECISION_PREVIEW_FILES = 5

# Files listed in the planning prompt
PLANNING_PREVIEW_FILES = 10

# Complexity at or above this value is recorded as an insight
HIGH_COMPLEXITY_INSIGHT = 4

DEFAULT_COMPLEXITY = 3

# ── Bedrock Config ───────────────────────────────────────────────────────────
BEDROCK_PROFILE = "bedrock"
BEDROCK_REGION = "eu-west-1"
BEDROCK_MODEL_ID = "eu.anthropic.claude-sonnet-4-6"
BEDROCK_MAX_TOKENS = 8000
BEDROCK_READ_TIMEOUT = 120
BEDROCK_CONNECT_TIMEOUT = 10

ANALYSIS_TEMPERATURE = 0.2
REASONING_TEMPERATURE = 0.3
REASONING_MAX_TOKENS = 1000

# ── Source Hosting ───────────────────────────────────────────────────────────
GITHUB_API_BASE = "https://api.github.com"
GITHUB_TIMEOUT = 30.0
GITHUB_USER_AGENT = "pr-analyst"

# Local git lookups for new and deleted files
LOCAL_HEAD_REF = "HEAD"
LOCAL_BASE_REF = "HEAD~1"
GIT_SHOW_MAX_BYTES = 10 * 1024 * 1024

# ── Architecture Docs ────────────────────────────────────────────────────────
# Markdown files in this folder of the repository are searched for context
ARCH_DOCS_DIR = ".arch-docs"

# Documents whose first section is always offered, in this order
ARCH_DOCS_KEY_DOCS = ("architecture", "patterns", "file-structure", "security")

ARCH_DOCS_MAX_KEYWORDS = 20
ARCH_DOCS_RESULTS_PER_KEYWORD = 3
ARCH_DOCS_MAX_SECTIONS = 10

# Relevance weights: whole query in section, per word hit, query in heading
ARCH_DOCS_PHRASE_WEIGHT = 10
ARCH_DOCS_WORD_WEIGHT = 2
ARCH_DOCS_HEADING_WEIGHT = 5
ARCH_DOCS_KEY_DOC_RELEVANCE = 3

# Path fragments that imply a topic worth searching for
ARCH_DOCS_PATH_TOPICS = {
    "test": "testing",
    "api": "api",
    "auth": "authentication",
    "db": "database",
    "database": "database",
    "security": "security",
    "schema": "schema",
    "config": "configuration",
    "migration": "migration",
}

ARCH_DOCS_STOPWORDS = frozenset(
    """the and for that this with from have been will your more when some them
    than into only other then also make made like time very just file code
    test docs info data type name index""".split()
)

# ── Result Cache ─────────────────────────────────────────────────────────────
CACHE_DIR = ".pr-analyst/cache"

# ── Server Config ────────────────────────────────────────────────────────────
SERVER_NAME = "pr-analyst-mcp"
SERVER_VERSION = "0.1.0"
SERVER_HOST = "127.0.0.1"
SERVER_PORT = 8089

# ── Usage Logging ────────────────────────────────────────────────────────────
USAGE_LOG_PATH = "usage.log"
