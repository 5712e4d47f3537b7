"""Lootbox Models Package"""

from lootbox.models.reward import (
    CurrencyPrize,
    DisplayItem,
    ErrorKind,
    ItemPrize,
    PaymentMode,
    RewardActionResult,
    RewardDecision,
    RewardOutcome,
    RewardRequest,
)
from lootbox.models.security import (
    PrivilegeTier,
    RateLimitDecision,
    RateLimitState,
    RateLimitStatus,
    SecurityMetrics,
)

__all__ = [
    "CurrencyPrize",
    "DisplayItem",
    "ErrorKind",
    "ItemPrize",
    "PaymentMode",
    "RewardActionResult",
    "RewardDecision",
    "RewardOutcome",
    "RewardRequest",
    "PrivilegeTier",
    "RateLimitDecision",
    "RateLimitState",
    "RateLimitStatus",
    "SecurityMetrics",
]
