"""
Adaptive Rate Limiter

Per-actor, per-action sliding window with escalating block durations and
violation memory.
"""

import logging
import time
from typing import Callable, Dict, Optional, Tuple

from lootbox.constants import (
    BLOCK_ESCALATION_FACTOR,
    DEFAULT_RATE_LIMIT_RULE,
    RATE_LIMIT_RULES,
)
from lootbox.models.security import RateLimitDecision, RateLimitState, RateLimitStatus


logger = logging.getLogger(__name__)


class AdaptiveRateLimiter:
    """
    Sliding window rate limiter with adaptive ceilings.

    SECURITY: Repeat offenders get a shrinking allowance and longer blocks:
    - effective_max = max(1, max_attempts - violations // 2)
    - block = block_seconds * (1 + violations * 0.5)

    Privilege exemptions are NOT handled here; callers consult the
    PrivilegeTier before invoking the limiter.

    Every check is a synchronous read-modify-write with no suspension point,
    so counters stay consistent on a single event loop.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._states: Dict[Tuple[str, str], RateLimitState] = {}

    def check_and_consume(
        self,
        actor_id: str,
        action_kind: str,
        max_attempts: Optional[int] = None,
        window_seconds: Optional[float] = None,
        block_seconds: Optional[float] = None,
    ) -> RateLimitDecision:
        """
        Count one attempt for (actor_id, action_kind) and decide.

        Missing limits fall back to the configured rule for the action.
        """
        rule = RATE_LIMIT_RULES.get(action_kind, DEFAULT_RATE_LIMIT_RULE)
        if max_attempts is None:
            max_attempts = rule["max_attempts"]
        if window_seconds is None:
            window_seconds = rule["window_seconds"]
        if block_seconds is None:
            block_seconds = rule["block_seconds"]

        now = self._clock()
        key = (actor_id, action_kind)
        state = self._states.get(key)
        if state is None:
            state = RateLimitState(window_start=now)
            self._states[key] = state

        # Active block
        if state.blocked_until is not None:
            if now < state.blocked_until:
                return RateLimitDecision(
                    allowed=False,
                    remaining=0,
                    reset_at=state.blocked_until,
                    reason="Rate limit exceeded. Try again later.",
                )
            # Block expired
            state.blocked_until = None
            state.attempt_count = 0
            state.window_start = now

        # Window expired
        if now - state.window_start >= window_seconds:
            state.attempt_count = 0
            state.window_start = now

        effective_max = self.effective_max(max_attempts, state.consecutive_violations)
        state.attempt_count += 1

        if state.attempt_count > effective_max:
            state.blocked_until = now + block_seconds * (
                1 + state.consecutive_violations * BLOCK_ESCALATION_FACTOR
            )
            state.consecutive_violations += 1
            logger.warning(
                f"Rate limit exceeded for {actor_id}:{action_kind} "
                f"(violation #{state.consecutive_violations}, "
                f"blocked for {state.blocked_until - now:.0f}s)"
            )
            return RateLimitDecision(
                allowed=False,
                remaining=0,
                reset_at=state.blocked_until,
                reason=f"Too many {action_kind} attempts. Please wait.",
            )

        return RateLimitDecision(
            allowed=True,
            remaining=effective_max - state.attempt_count,
            reset_at=state.window_start + window_seconds,
        )

    @staticmethod
    def effective_max(max_attempts: int, consecutive_violations: int) -> int:
        """Allowance after adapting to the actor's violation history."""
        return max(1, max_attempts - consecutive_violations // 2)

    def get_state(self, actor_id: str, action_kind: str) -> Optional[RateLimitState]:
        return self._states.get((actor_id, action_kind))

    def get_remaining_block(self, actor_id: str, action_kind: str) -> float:
        """Seconds until the current block lifts, 0 if not blocked."""
        state = self._states.get((actor_id, action_kind))
        if state is None or state.blocked_until is None:
            return 0.0
        return max(0.0, state.blocked_until - self._clock())

    def get_status(self, actor_id: str, action_kind: str) -> RateLimitStatus:
        state = self._states.get((actor_id, action_kind))
        if state is None:
            return RateLimitStatus(action_kind=action_kind)
        remaining_block = self.get_remaining_block(actor_id, action_kind)
        return RateLimitStatus(
            action_kind=action_kind,
            attempt_count=state.attempt_count,
            consecutive_violations=state.consecutive_violations,
            blocked=remaining_block > 0,
            blocked_until=state.blocked_until,
            remaining_block_seconds=remaining_block,
        )

    def clear_actor(self, actor_id: str) -> None:
        """Forget every counter for the actor."""
        for key in [k for k in self._states if k[0] == actor_id]:
            del self._states[key]
