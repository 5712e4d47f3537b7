"""
Authentication Dependencies

FastAPI dependencies resolving the calling actor and its privilege tier.
Identity is established upstream: the gateway sets X-Actor-Id.
"""

from typing import Optional

from fastapi import HTTPException, Header, status
from pydantic import BaseModel

from lootbox.config import settings
from lootbox.models.security import PrivilegeTier
from lootbox.services.reward_service import RewardService
from lootbox.services.validation import is_valid_identifier


class CurrentActor(BaseModel):
    """Authenticated caller."""
    actor_id: str
    privilege: PrivilegeTier = PrivilegeTier.USER


_reward_service: Optional[RewardService] = None


def get_reward_service() -> RewardService:
    """Process-wide RewardService, so the server-side limiter keeps its state."""
    global _reward_service
    if _reward_service is None:
        _reward_service = RewardService()
    return _reward_service


async def get_current_actor(
    x_actor_id: Optional[str] = Header(None),
    x_admin_secret: Optional[str] = Header(None),
) -> CurrentActor:
    """
    Get the calling actor from gateway headers.

    SECURITY: Administrators additionally present the X-Admin-Secret header
    and are exempt from rate limiting.
    """
    if not x_actor_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Actor-Id header required",
        )

    if not is_valid_identifier(x_actor_id):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid actor identifier",
        )

    privilege = PrivilegeTier.USER
    if (
        x_admin_secret
        and settings.admin_api_secret
        and x_admin_secret == settings.admin_api_secret
    ):
        privilege = PrivilegeTier.ADMIN

    return CurrentActor(actor_id=x_actor_id, privilege=privilege)


def require_same_actor(actor_id: str, current: CurrentActor) -> None:
    """Reject requests acting on behalf of someone else."""
    if actor_id != current.actor_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Cannot act on behalf of another actor",
        )
