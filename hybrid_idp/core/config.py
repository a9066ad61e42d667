# =============================================================================
# Decision Ladder Thresholds
# =============================================================================

VERY_HIGH_CONFIDENCE = 0.90  # Fully local, no review
HIGH_CONFIDENCE = 0.85  # Fully local, flagged for quality audit
MEDIUM_CONFIDENCE = 0.70  # Local result pending user confirmation
LOW_CONFIDENCE = 0.50  # Local result improved by assisted analysis

ESCALATION_THRESHOLD = MEDIUM_CONFIDENCE  # Below this the matcher asks for help
MIN_FIELD_CONFIDENCE = 0.5  # Per-field extractions must exceed this to count

HYBRID_CONFIDENCE_BOOST = 0.15
HYBRID_CONFIDENCE_CAP = 0.85


# =============================================================================
# Cost Model
# =============================================================================

FULL_ANALYSIS_TOKENS = 4000
PARTIAL_ANALYSIS_TOKENS = 2000

INPUT_TOKEN_SHARE = 0.7
OUTPUT_TOKEN_SHARE = 0.3
INPUT_PRICE_PER_1K_TOKENS = 0.01  # USD
OUTPUT_PRICE_PER_1K_TOKENS = 0.03  # USD

# Baseline used for savings reports (every document sent to assisted analysis)
ASSISTED_COST_PER_DOCUMENT = 0.04  # USD


# =============================================================================
# Similarity Weights
# =============================================================================

STRUCTURAL_WEIGHT = 0.25
PATTERN_WEIGHT = 0.30
CONTENT_WEIGHT = 0.20
LAYOUT_WEIGHT = 0.15
KEYWORD_WEIGHT = 0.10

DEFAULT_MIN_SIMILARITY = 0.5
DEFAULT_MAX_SIMILAR_RESULTS = 10
MATCH_REASON_THRESHOLD = 0.8  # Component score that earns a mention in match reasons

MAX_KEYWORDS = 15


# =============================================================================
# Pattern Matching
# =============================================================================

MAX_CANDIDATE_PATTERNS = 10
MAX_SUGGESTED_PATTERNS = 3
FIELD_TYPE_MISMATCH_PENALTY = 0.5  # Applied when a value does not fit its expected type


# =============================================================================
# Learning
# =============================================================================

SUCCESS_RATE_ALPHA = 0.1  # Exponential moving average weight of the newest outcome
INITIAL_SUCCESS_RATE = 1.0
DEFAULT_MINIMUM_PATTERN_CONFIDENCE = 0.7
DEFAULT_RULE_PRIORITY = 100
DEFAULT_TARGET_LOCATION_TYPE = "ExcelCell"
DEFAULT_GROUP_ID = "default"


# =============================================================================
# Rule Condition Fuzzy Credit
# =============================================================================

CONTAINS_CREDIT = 0.5
AFFIX_CREDIT = 0.7  # starts_with / ends_with
REGEX_MISS_CREDIT = 0.1


# =============================================================================
# External Service Timeouts (seconds)
# =============================================================================

ASSISTED_TIMEOUT_SECONDS = 60.0
ASSISTED_CLIENT_TIMEOUT_SECONDS = 90.0
ERROR_BODY_MAX_CHARS = 500


# =============================================================================
# Retry / Circuit Breaker
# =============================================================================

ASSISTED_MAX_ATTEMPTS = 1
INITIAL_BACKOFF = 0.5  # seconds
BACKOFF_MULTIPLIER = 2
CIRCUIT_FAILURE_THRESHOLD = 5
CIRCUIT_RESET_SECONDS = 60


# =============================================================================
# Storage
# =============================================================================

PATTERNS_FILE = "patterns.json"
RULES_FILE = "rules.json"
MAX_APPLIED_KEYS_PER_ENTITY = 1000  # Oldest idempotence keys are forgotten first
FINGERPRINT_CACHE_SIZE = 512
