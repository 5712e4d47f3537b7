"""Security Models - Privilege policy, rate limit state and session metrics."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class PrivilegeTier(str, Enum):
    """
    Privilege policy consulted once at the top of every protected operation.

    Administrators neither contribute to nor are constrained by rate limit
    and anomaly state.
    """
    USER = "user"
    ADMIN = "admin"

    @property
    def is_exempt(self) -> bool:
        return self is PrivilegeTier.ADMIN


@dataclass
class RateLimitState:
    """Sliding window counters for one (actor_id, action_kind) key."""
    window_start: float
    attempt_count: int = 0
    consecutive_violations: int = 0
    blocked_until: Optional[float] = None


@dataclass(frozen=True)
class RateLimitDecision:
    """Result of a limiter check."""
    allowed: bool
    remaining: int
    reset_at: float
    reason: Optional[str] = None


@dataclass(frozen=True)
class ActivityEvent:
    """A single action recorded by the anomaly detector."""
    action_kind: str
    timestamp: float
    value: Optional[int] = None


class SecurityMetrics(BaseModel):
    """Per-actor counters accumulated for the session lifetime."""
    rate_limit_violations: int = 0
    suspicious_action_count: int = 0
    last_violation_at: Optional[float] = None


class RateLimitStatus(BaseModel):
    """Read-only view of one limiter key for calling UI code."""
    action_kind: str
    attempt_count: int = 0
    consecutive_violations: int = 0
    blocked: bool = False
    blocked_until: Optional[float] = None
    remaining_block_seconds: float = 0.0
