"""Reward Models - Prizes, roulette display items and orchestration outcomes."""

from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from lootbox.config import settings


MAX_REWARD_VALUE = settings.max_reward_value


class PaymentMode(str, Enum):
    """How a container open is paid for. Exactly one per request."""
    OWNED = "owned"
    FREE = "free"
    AD_VIEWED = "ad_viewed"


class ErrorKind(str, Enum):
    """Failure taxonomy surfaced to calling UI code."""
    INVALID_INPUT = "invalid_input"
    RATE_LIMITED = "rate_limited"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    NETWORK_FAILURE = "network_failure"
    SERVER_REJECTED = "server_rejected"
    BUSY = "busy"


# =============================================================================
# Prizes
# =============================================================================

class ItemPrize(BaseModel):
    """An inventory item won from a container."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    type: Literal["skin"] = "skin"
    id: str
    display_name: str = Field(..., alias="name")
    tier: Optional[str] = Field(None, alias="rarity")
    liquidation_value: int = Field(..., alias="price", ge=0, le=MAX_REWARD_VALUE)
    image_url: Optional[str] = None


class CurrencyPrize(BaseModel):
    """A currency amount won from a container."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    type: Literal["coin_reward"] = "coin_reward"
    id: Optional[str] = None
    amount: int = Field(..., ge=0, le=MAX_REWARD_VALUE)


Prize = Annotated[Union[ItemPrize, CurrencyPrize], Field(discriminator="type")]


class DisplayItem(BaseModel):
    """
    One entry of the roulette script.

    Carries display attributes only; the payout is fixed by the backend's
    prize and winner position.
    """
    model_config = ConfigDict(frozen=True)

    type: Literal["skin", "coin_reward"] = "skin"
    id: Optional[str] = None
    name: str = ""
    rarity: Optional[str] = None
    image_url: Optional[str] = None
    price: int = Field(0, ge=0, le=MAX_REWARD_VALUE)
    amount: Optional[int] = Field(None, ge=0, le=MAX_REWARD_VALUE)

    def matches(self, prize: Union[ItemPrize, CurrencyPrize]) -> bool:
        """True when this item represents the given prize."""
        if self.type != prize.type:
            return False
        if isinstance(prize, CurrencyPrize):
            return self.amount == prize.amount and (
                prize.id is None or self.id == prize.id
            )
        return self.id == prize.id

    @classmethod
    def from_prize(cls, prize: Union[ItemPrize, CurrencyPrize]) -> "DisplayItem":
        if isinstance(prize, CurrencyPrize):
            return cls(
                type="coin_reward",
                id=prize.id,
                name=f"{prize.amount} coins",
                price=prize.amount,
                amount=prize.amount,
            )
        return cls(
            type="skin",
            id=prize.id,
            name=prize.display_name,
            rarity=prize.tier,
            image_url=prize.image_url,
            price=prize.liquidation_value,
        )


# =============================================================================
# Orchestration
# =============================================================================

class RewardRequest(BaseModel):
    """A validated request to open a container."""
    model_config = ConfigDict(frozen=True)

    actor_id: str
    container_id: str
    payment_mode: PaymentMode
    session_id: str


class RewardOutcome(BaseModel):
    """
    Result of one orchestration cycle.

    On success the prize and winner index are present and the winner index
    points at the script element representing the prize.
    """
    success: bool
    prize: Optional[Prize] = None
    new_balance: Optional[int] = Field(None, ge=0)
    roulette_script: List[DisplayItem] = Field(default_factory=list)
    winner_index: Optional[int] = None
    error_kind: Optional[ErrorKind] = None
    message: Optional[str] = None
    retry_after: Optional[float] = None
    required: Optional[int] = None
    current: Optional[int] = None
    session_id: Optional[str] = None
    reward_ref: Optional[str] = None

    @model_validator(mode="after")
    def check_winner_consistency(self):
        if not self.success:
            if self.error_kind is None:
                raise ValueError("failed outcome requires an error_kind")
            return self
        if self.prize is None or self.winner_index is None:
            raise ValueError("successful outcome requires prize and winner_index")
        if not 0 <= self.winner_index < len(self.roulette_script):
            raise ValueError("winner_index outside roulette_script")
        if not self.roulette_script[self.winner_index].matches(self.prize):
            raise ValueError("roulette_script winner does not match prize")
        return self

    @property
    def winner_item(self) -> Optional[DisplayItem]:
        if not self.success:
            return None
        return self.roulette_script[self.winner_index]

    @classmethod
    def failure(cls, error_kind: ErrorKind, message: str, **extra) -> "RewardOutcome":
        return cls(success=False, error_kind=error_kind, message=message, **extra)


class RewardDecision(str, Enum):
    """What the actor did with a resolved prize."""
    KEPT = "kept"
    LIQUIDATED = "liquidated"


class RewardActionResult(BaseModel):
    """Result of a keep / liquidate follow-up action."""
    success: bool
    decision: Optional[RewardDecision] = None
    new_balance: Optional[int] = Field(None, ge=0)
    already_settled: bool = False
    error_kind: Optional[ErrorKind] = None
    message: Optional[str] = None
    retry_after: Optional[float] = None

    @classmethod
    def failure(cls, error_kind: ErrorKind, message: str, **extra) -> "RewardActionResult":
        return cls(success=False, error_kind=error_kind, message=message, **extra)


# =============================================================================
# Wire Payloads (backend RPC contract)
# =============================================================================

class OpenContainerPayload(BaseModel):
    actor_id: str
    container_id: str
    payment_mode: PaymentMode
    session_id: str


class LiquidateRewardPayload(BaseModel):
    actor_id: str
    reward_ref: str
    expected_value: int = Field(..., ge=0, le=MAX_REWARD_VALUE)


class KeepRewardPayload(BaseModel):
    actor_id: str
    reward_ref: str


class OpenContainerResponse(BaseModel):
    """Backend response for open_container. Errors are data, not exceptions."""
    success: bool
    reward: Optional[Prize] = None
    reward_ref: Optional[str] = None
    new_balance: Optional[int] = Field(None, ge=0)
    roulette_items: List[DisplayItem] = Field(default_factory=list)
    winner_position: Optional[int] = None
    session_id: Optional[str] = None
    error: Optional[str] = None
    required: Optional[int] = None
    current: Optional[int] = None
    retry_after: Optional[float] = None


class LiquidateRewardResponse(BaseModel):
    success: bool
    new_balance: Optional[int] = Field(None, ge=0)
    already_settled: Optional[bool] = None
    error: Optional[str] = None
    retry_after: Optional[float] = None


class KeepRewardResponse(BaseModel):
    success: bool
    error: Optional[str] = None
    retry_after: Optional[float] = None


class BalanceResponse(BaseModel):
    balance: int = Field(..., ge=0)
