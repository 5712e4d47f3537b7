"""
Shared fixtures: a controllable clock and an in-memory authoritative backend.
"""

import asyncio
import uuid
from collections import defaultdict
from typing import Optional, Union
from unittest.mock import AsyncMock

import pytest

from lootbox.models.reward import (
    CurrencyPrize,
    DisplayItem,
    ItemPrize,
    KeepRewardPayload,
    KeepRewardResponse,
    LiquidateRewardPayload,
    LiquidateRewardResponse,
    OpenContainerPayload,
    OpenContainerResponse,
)
from lootbox.services.backend_client import BackendUnavailableError
from lootbox.services.orchestrator import RewardOrchestrator


ACTOR_ID = "6f1c2b1e-8a3d-4c5e-9f7a-1b2c3d4e5f60"
OTHER_ACTOR_ID = "9a8b7c6d-5e4f-4a3b-8c2d-1e0f9a8b7c6d"
CONTAINER_ID = "0b7e4a52-3c1d-4f8e-a2b6-9d8c7e6f5a41"


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeBackend:
    """
    In-memory stand-in for the authoritative backend.

    Debits, rolls the configured prize and credits it atomically, and can
    be told to hold, fail or lose responses.
    """

    def __init__(
        self,
        balance: int = 100,
        price: int = 100,
        prize: Optional[Union[ItemPrize, CurrencyPrize]] = None,
        script_length: int = 10,
        winner_position: int = 7,
    ):
        self.balance = balance
        self.price = price
        self.prize = prize or ItemPrize(
            id="skin-dragon-lore", name="Dragon Lore", rarity="covert", price=60
        )
        self.script_length = script_length
        self.winner_position = winner_position
        self.calls = defaultdict(int)
        self.sessions = {}
        self.inventory = {}

        self.open_gate: Optional[asyncio.Event] = None
        self.open_error: Optional[Exception] = None
        self.commit_before_error = False
        self.fetch_error: Optional[Exception] = None
        self.corrupt_script = False

    def _script(self):
        items = [
            DisplayItem(type="skin", id=f"decoy-{i}", name=f"Decoy {i}", price=1)
            for i in range(self.script_length)
        ]
        items[self.winner_position] = DisplayItem.from_prize(self.prize)
        return items

    async def open_container(self, payload: OpenContainerPayload) -> OpenContainerResponse:
        self.calls["open_container"] += 1
        if self.open_gate is not None:
            await self.open_gate.wait()
        if self.open_error is not None and not self.commit_before_error:
            raise self.open_error

        if self.balance < self.price:
            response = OpenContainerResponse(
                success=False,
                error="insufficient_funds",
                required=self.price,
                current=self.balance,
            )
        else:
            self.balance -= self.price
            reward_ref = None
            if isinstance(self.prize, CurrencyPrize):
                self.balance += self.prize.amount
            else:
                reward_ref = str(uuid.uuid4())
                self.inventory[reward_ref] = {
                    "status": "held",
                    "value": self.prize.liquidation_value,
                }
            winner = self.winner_position
            if self.corrupt_script:
                winner = (winner + 1) % self.script_length
            response = OpenContainerResponse(
                success=True,
                reward=self.prize,
                reward_ref=reward_ref,
                new_balance=self.balance,
                roulette_items=self._script(),
                winner_position=winner,
                session_id=payload.session_id,
            )

        self.sessions[payload.session_id] = response
        if self.open_error is not None:
            raise self.open_error
        return response

    async def liquidate_reward(self, payload: LiquidateRewardPayload) -> LiquidateRewardResponse:
        self.calls["liquidate_reward"] += 1
        await asyncio.sleep(0)
        record = self.inventory.get(payload.reward_ref)
        if record is None:
            return LiquidateRewardResponse(success=False, error="reward_not_found")
        if record["status"] == "liquidated":
            return LiquidateRewardResponse(
                success=True, new_balance=self.balance, already_settled=True
            )
        if record["status"] != "held":
            return LiquidateRewardResponse(success=False, error="reward_already_claimed")
        if record["value"] != payload.expected_value:
            return LiquidateRewardResponse(success=False, error="value_mismatch")
        record["status"] = "liquidated"
        self.balance += record["value"]
        return LiquidateRewardResponse(success=True, new_balance=self.balance)

    async def keep_reward(self, payload: KeepRewardPayload) -> KeepRewardResponse:
        self.calls["keep_reward"] += 1
        record = self.inventory.get(payload.reward_ref)
        if record is None:
            return KeepRewardResponse(success=False, error="reward_not_found")
        if record["status"] == "liquidated":
            return KeepRewardResponse(success=False, error="reward_already_claimed")
        record["status"] = "kept"
        return KeepRewardResponse(success=True)

    async def fetch_balance(self, actor_id: str) -> int:
        self.calls["fetch_balance"] += 1
        if self.fetch_error is not None:
            raise self.fetch_error
        return self.balance

    async def get_opening(self, actor_id: str, session_id: str) -> OpenContainerResponse:
        self.calls["get_opening"] += 1
        response = self.sessions.get(session_id)
        if response is None:
            return OpenContainerResponse(success=False, error="session_not_found")
        return response


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def audit():
    sink = AsyncMock()
    sink.log_action = AsyncMock(return_value=None)
    return sink


@pytest.fixture
def orchestrator(backend, audit, clock):
    return RewardOrchestrator(backend, audit=audit, clock=clock)


@pytest.fixture
def network_error():
    return BackendUnavailableError("Timeout calling /open_container")
