"""Container Models - Catalog, opening sessions and inventory records for MongoDB."""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from lootbox.config import settings
from lootbox.models.reward import Prize


class ContainerEntry(BaseModel):
    """A prize that can drop from a container, with its selection weight."""
    prize: Prize
    weight: float = Field(..., ge=0)
    never_drop: bool = False


class Container(BaseModel):
    """
    Container model for MongoDB.

    Fields:
    - container_id: UUID of the container
    - price: Cost in coins for an owned-currency open
    - is_free: Can be opened with the free payment mode (on cooldown)
    - ad_unlockable: Can be opened after viewing an ad (on cooldown)
    - entries: Weighted prize table, only ever evaluated server-side
    """
    container_id: str = Field(..., description="Container UUID")
    name: str
    price: int = Field(..., ge=0, le=settings.max_reward_value)
    is_free: bool = False
    ad_unlockable: bool = False
    entries: List[ContainerEntry] = Field(default_factory=list)

    @property
    def droppable(self) -> List[ContainerEntry]:
        return [e for e in self.entries if not e.never_drop and e.weight > 0]


class OpeningStatus(str, Enum):
    """Lifecycle of an opening session."""
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class OpeningSession(BaseModel):
    """
    Idempotency record for one logical container open.

    The stored response is returned verbatim for repeated session IDs.
    """
    session_id: str
    actor_id: str
    container_id: str
    payment_mode: str
    status: OpeningStatus = OpeningStatus.PROCESSING
    coins_debited: int = 0
    response: Optional[dict] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None

    class Config:
        use_enum_values = True


class InventoryStatus(str, Enum):
    """Decision state of an inventory record."""
    HELD = "held"
    KEPT = "kept"
    LIQUIDATED = "liquidated"


class InventoryRecord(BaseModel):
    """An item prize credited to an actor's inventory."""
    inventory_id: str
    actor_id: str
    session_id: str
    prize: dict
    liquidation_value: int = Field(..., ge=0, le=settings.max_reward_value)
    status: InventoryStatus = InventoryStatus.HELD
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Config:
        use_enum_values = True
