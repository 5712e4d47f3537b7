"""Constants - Rate limit rules, validation patterns and wire error codes."""

import re

from lootbox.config import settings


# =============================================================================
# Action Kinds
# =============================================================================

ACTION_OPEN_CONTAINER = "open_container"
ACTION_LIQUIDATE_REWARD = "liquidate_reward"
ACTION_KEEP_REWARD = "keep_reward"
ACTION_API_CALLS = "api_calls"


# =============================================================================
# Rate Limit Rules
# =============================================================================
# max_attempts per window_seconds; block_seconds is the base block duration,
# escalated by the limiter on repeated violations.

RATE_LIMIT_RULES = {
    ACTION_OPEN_CONTAINER: {
        "max_attempts": settings.rate_limit_max_attempts,
        "window_seconds": settings.rate_limit_window_seconds,
        "block_seconds": settings.rate_limit_block_seconds,
    },
    ACTION_LIQUIDATE_REWARD: {
        "max_attempts": 5,
        "window_seconds": 30.0,
        "block_seconds": 120.0,
    },
    ACTION_KEEP_REWARD: {
        "max_attempts": 30,
        "window_seconds": 60.0,
        "block_seconds": 60.0,
    },
    ACTION_API_CALLS: {
        "max_attempts": 30,
        "window_seconds": 60.0,
        "block_seconds": 60.0,
    },
}

DEFAULT_RATE_LIMIT_RULE = RATE_LIMIT_RULES[ACTION_API_CALLS]

# Escalation factor applied per consecutive violation
BLOCK_ESCALATION_FACTOR = 0.5


# =============================================================================
# Validation
# =============================================================================

IDENTIFIER_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

# Keyword-plus-operator combinations indicative of query injection
INJECTION_PATTERNS = [
    re.compile(r"\bUNION\b.*\bSELECT\b", re.IGNORECASE),
    re.compile(r"\bDROP\b.*\bTABLE\b", re.IGNORECASE),
    re.compile(r"\bINSERT\b.*\bINTO\b", re.IGNORECASE),
    re.compile(r"\bDELETE\b.*\bFROM\b", re.IGNORECASE),
    re.compile(r"\bUPDATE\b.*\bSET\b", re.IGNORECASE),
    re.compile(r"\bEXEC\b|\bEXECUTE\b", re.IGNORECASE),
    re.compile(r"--|#|/\*|\*/"),
    re.compile(r"\bOR\b.*=.*\bOR\b", re.IGNORECASE),
    re.compile(r"\bAND\b.*=.*\bAND\b", re.IGNORECASE),
]

SANITIZE_MAX_LENGTH = 1000


# =============================================================================
# Wire Error Codes (backend -> client)
# =============================================================================

ERROR_INSUFFICIENT_FUNDS = "insufficient_funds"
ERROR_RATE_LIMITED = "rate_limited"
ERROR_CONTAINER_NOT_FOUND = "container_not_found"
ERROR_CONTAINER_EMPTY = "container_empty"
ERROR_PAYMENT_MODE_NOT_ALLOWED = "payment_mode_not_allowed"
ERROR_SESSION_IN_PROGRESS = "session_in_progress"
ERROR_SESSION_NOT_FOUND = "session_not_found"
ERROR_REWARD_NOT_FOUND = "reward_not_found"
ERROR_ALREADY_CLAIMED = "reward_already_claimed"
ERROR_VALUE_MISMATCH = "value_mismatch"
ERROR_INVALID_REQUEST = "invalid_request"
