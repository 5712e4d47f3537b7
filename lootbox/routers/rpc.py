"""
RPC Router

Authoritative reward operations: open, liquidate, keep and balance reads.
Business failures are returned as structured payloads with HTTP 200.
"""

from fastapi import APIRouter, Depends

from lootbox.dependencies import (
    CurrentActor,
    get_current_actor,
    get_reward_service,
    require_same_actor,
)
from lootbox.models.reward import (
    BalanceResponse,
    KeepRewardPayload,
    KeepRewardResponse,
    LiquidateRewardPayload,
    LiquidateRewardResponse,
    OpenContainerPayload,
    OpenContainerResponse,
)
from lootbox.services.reward_service import RewardService


router = APIRouter()


@router.post(
    "/open_container",
    response_model=OpenContainerResponse,
    response_model_exclude_none=True,
)
async def open_container(
    payload: OpenContainerPayload,
    current: CurrentActor = Depends(get_current_actor),
    reward_service: RewardService = Depends(get_reward_service),
):
    """
    Open a container.

    Debits, selects the prize and credits it as one unit. Repeating a
    session_id returns the stored result without charging again.
    """
    require_same_actor(payload.actor_id, current)
    return await reward_service.open_container(payload, current.privilege)


@router.post(
    "/liquidate_reward",
    response_model=LiquidateRewardResponse,
    response_model_exclude_none=True,
)
async def liquidate_reward(
    payload: LiquidateRewardPayload,
    current: CurrentActor = Depends(get_current_actor),
    reward_service: RewardService = Depends(get_reward_service),
):
    """Convert a held item into coins."""
    require_same_actor(payload.actor_id, current)
    return await reward_service.liquidate_reward(payload, current.privilege)


@router.post(
    "/keep_reward",
    response_model=KeepRewardResponse,
    response_model_exclude_none=True,
)
async def keep_reward(
    payload: KeepRewardPayload,
    current: CurrentActor = Depends(get_current_actor),
    reward_service: RewardService = Depends(get_reward_service),
):
    require_same_actor(payload.actor_id, current)
    return await reward_service.keep_reward(payload, current.privilege)


@router.get("/balance/{actor_id}", response_model=BalanceResponse)
async def get_balance(
    actor_id: str,
    current: CurrentActor = Depends(get_current_actor),
    reward_service: RewardService = Depends(get_reward_service),
):
    require_same_actor(actor_id, current)
    balance = await reward_service.get_balance(actor_id)
    return {"balance": balance}


@router.get(
    "/openings/{actor_id}/{session_id}",
    response_model=OpenContainerResponse,
    response_model_exclude_none=True,
)
async def get_opening(
    actor_id: str,
    session_id: str,
    current: CurrentActor = Depends(get_current_actor),
    reward_service: RewardService = Depends(get_reward_service),
):
    """Stored result of an opening session, for reconciliation after a lost response."""
    require_same_actor(actor_id, current)
    return await reward_service.get_opening(actor_id, session_id)
