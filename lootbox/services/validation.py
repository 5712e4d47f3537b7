"""
Validation - Pure guards for identifiers, monetary amounts and free text.

These are a client-side first line of defense. The backend repeats every
check authoritatively.
"""

import html
from typing import Any

from lootbox.config import settings
from lootbox.constants import IDENTIFIER_PATTERN, INJECTION_PATTERNS, SANITIZE_MAX_LENGTH


def is_valid_identifier(value: Any) -> bool:
    """True for a canonical UUID string (versions 1-5)."""
    return isinstance(value, str) and IDENTIFIER_PATTERN.match(value) is not None


def is_valid_amount(value: Any, max_value: int = settings.max_reward_value) -> bool:
    """True for a non-negative integer not above max_value. Booleans are rejected."""
    if isinstance(value, bool) or not isinstance(value, int):
        return False
    return 0 <= value <= max_value


def is_safe_text(value: Any) -> bool:
    """False if the string matches a known injection pattern."""
    if not isinstance(value, str):
        return False
    return not any(pattern.search(value) for pattern in INJECTION_PATTERNS)


def sanitize(value: Any, max_length: int = SANITIZE_MAX_LENGTH) -> str:
    """
    HTML-escape <, >, &, " and ', trim, and truncate.

    Never raises: non-string input degrades to an empty string.
    """
    if not isinstance(value, str):
        return ""
    return html.escape(value, quote=True).strip()[:max_length]
