"""
Security Context

Owns the rate limiter, anomaly detector and per-actor security metrics for
one orchestrator instance, so tests and sessions get isolated state instead
of process-wide maps.
"""

import logging
import time
from typing import Callable, Dict, Optional

from lootbox.models.security import RateLimitDecision, RateLimitStatus, SecurityMetrics
from lootbox.services.anomaly_detector import AnomalyDetector
from lootbox.services.rate_limiter import AdaptiveRateLimiter


logger = logging.getLogger(__name__)


class SecurityContext:
    """
    Session-local security state.

    Callers consult PrivilegeTier before using any method here; exempt actors
    must not reach this object at all.
    """

    def __init__(
        self,
        rate_limiter: Optional[AdaptiveRateLimiter] = None,
        anomaly_detector: Optional[AnomalyDetector] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._clock = clock
        self.rate_limiter = rate_limiter or AdaptiveRateLimiter(clock=clock)
        self.anomaly_detector = anomaly_detector or AnomalyDetector(clock=clock)
        self._metrics: Dict[str, SecurityMetrics] = {}

    def _metrics_for(self, actor_id: str) -> SecurityMetrics:
        metrics = self._metrics.get(actor_id)
        if metrics is None:
            metrics = SecurityMetrics()
            self._metrics[actor_id] = metrics
        return metrics

    def check_rate_limit(
        self,
        actor_id: str,
        action_kind: str,
        max_attempts: Optional[int] = None,
        window_seconds: Optional[float] = None,
    ) -> RateLimitDecision:
        """Consume one attempt and record a violation if denied."""
        decision = self.rate_limiter.check_and_consume(
            actor_id, action_kind, max_attempts, window_seconds
        )
        if not decision.allowed:
            metrics = self._metrics_for(actor_id)
            metrics.rate_limit_violations += 1
            metrics.last_violation_at = self._clock()
        return decision

    def record_activity(
        self, actor_id: str, action_kind: str, value: Optional[int] = None
    ) -> bool:
        """Feed the anomaly detector; count suspicious actions."""
        anomalous = self.anomaly_detector.record_and_evaluate(actor_id, action_kind, value)
        if anomalous:
            self._metrics_for(actor_id).suspicious_action_count += 1
        return anomalous

    def get_metrics(self, actor_id: str) -> SecurityMetrics:
        """Snapshot of the actor's metrics."""
        return self._metrics_for(actor_id).model_copy()

    def get_rate_limit_status(self, actor_id: str, action_kind: str) -> RateLimitStatus:
        return self.rate_limiter.get_status(actor_id, action_kind)

    def reset_actor(self, actor_id: str) -> None:
        """Drop all state for the actor (sign-out)."""
        self._metrics.pop(actor_id, None)
        self.rate_limiter.clear_actor(actor_id)
        self.anomaly_detector.clear_actor(actor_id)
        logger.info(f"Security state reset for {actor_id}")
