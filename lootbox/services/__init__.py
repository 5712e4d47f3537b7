"""Lootbox Services Package"""

from lootbox.services.anomaly_detector import AnomalyDetector
from lootbox.services.animation import RouletteAnimation, RouletteGeometry
from lootbox.services.audit_service import AuditService
from lootbox.services.backend_client import HttpRewardBackend
from lootbox.services.balance_reconciler import BalanceReconciler
from lootbox.services.orchestrator import RewardOrchestrator
from lootbox.services.rate_limiter import AdaptiveRateLimiter
from lootbox.services.redis_service import RedisService
from lootbox.services.reward_service import RewardService
from lootbox.services.security_context import SecurityContext

__all__ = [
    "AnomalyDetector",
    "RouletteAnimation",
    "RouletteGeometry",
    "AuditService",
    "HttpRewardBackend",
    "BalanceReconciler",
    "RewardOrchestrator",
    "AdaptiveRateLimiter",
    "RedisService",
    "RewardService",
    "SecurityContext",
]
