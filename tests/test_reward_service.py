"""
Tests for Reward Service

Server-side resolution against a mocked MongoDB.
"""

import random
import time
import uuid
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import ACTOR_ID, CONTAINER_ID
from lootbox.models.container import Container
from lootbox.models.reward import (
    KeepRewardPayload,
    LiquidateRewardPayload,
    OpenContainerPayload,
    PaymentMode,
)
from lootbox.models.security import PrivilegeTier, RateLimitDecision
from lootbox.services.reward_service import RewardService


SESSION_ID = "3d2c1b0a-9f8e-4d7c-b6a5-4f3e2d1c0b9a"
REWARD_REF = "7e6d5c4b-3a29-4180-9f7e-6d5c4b3a2918"


class FakeRedisService:
    """Lock that is always (or never) available."""

    def __init__(self, available=True):
        self.available = available

    @asynccontextmanager
    async def actor_lock(self, operation, actor_id):
        yield self.available


def container_doc(**overrides):
    doc = {
        "_id": "mongo-id",
        "container_id": CONTAINER_ID,
        "name": "Starter Case",
        "price": 100,
        "entries": [
            {
                "prize": {
                    "type": "skin", "id": "skin-1", "name": "Dragon Lore",
                    "rarity": "covert", "price": 60,
                },
                "weight": 1,
            },
            {
                "prize": {"type": "coin_reward", "amount": 1_000_000},
                "weight": 5,
                "never_drop": True,
            },
        ],
    }
    doc.update(overrides)
    return doc


def open_payload(mode=PaymentMode.OWNED):
    return OpenContainerPayload(
        actor_id=ACTOR_ID,
        container_id=CONTAINER_ID,
        payment_mode=mode,
        session_id=SESSION_ID,
    )


class TestRewardService:
    """Tests for RewardService."""

    @pytest.fixture
    def db(self):
        db = MagicMock()
        db.openings.find_one = AsyncMock(return_value=None)
        db.openings.insert_one = AsyncMock()
        db.openings.update_one = AsyncMock()
        db.containers.find_one = AsyncMock(return_value=container_doc())
        db.users.update_one = AsyncMock()
        db.users.find_one = AsyncMock(return_value={"user_id": ACTOR_ID, "coins": 30})
        db.users.find_one_and_update = AsyncMock(return_value={"user_id": ACTOR_ID, "coins": 50})
        db.inventory.insert_one = AsyncMock()
        db.inventory.find_one = AsyncMock()
        db.inventory.find_one_and_update = AsyncMock()
        return db

    @pytest.fixture
    def audit_service(self):
        audit = MagicMock()
        audit.log_action = AsyncMock()
        return audit

    @pytest.fixture
    def rate_limiter(self):
        limiter = MagicMock()
        limiter.check_and_consume.return_value = RateLimitDecision(
            allowed=True, remaining=9, reset_at=time.time() + 60
        )
        return limiter

    @pytest.fixture
    def service(self, db, audit_service, rate_limiter):
        return RewardService(
            redis_service=FakeRedisService(),
            rate_limiter=rate_limiter,
            audit_service=audit_service,
            rng=random.Random(42),
            db=db,
        )

    # =========================================================================
    # Open Container
    # =========================================================================

    @pytest.mark.asyncio
    async def test_open_debits_and_credits_inventory(self, service, db):
        response = await service.open_container(open_payload())

        assert response["success"] is True
        assert response["new_balance"] == 50
        assert response["reward"]["id"] == "skin-1"
        assert response["reward"]["price"] == 60
        uuid.UUID(response["reward_ref"])

        position = response["winner_position"]
        assert 35 <= position < 45
        assert len(response["roulette_items"]) == 50
        assert response["roulette_items"][position]["id"] == "skin-1"
        # never_drop entries are not used even as decoys
        assert all(item["type"] == "skin" for item in response["roulette_items"])

        db.users.find_one_and_update.assert_awaited_once()
        debit_filter = db.users.find_one_and_update.await_args.args[0]
        assert debit_filter == {"user_id": ACTOR_ID, "coins": {"$gte": 100}}
        db.inventory.insert_one.assert_awaited_once()
        final_update = db.openings.update_one.await_args_list[-1].args[1]["$set"]
        assert final_update["status"] == "completed"

    @pytest.mark.asyncio
    async def test_insufficient_funds(self, service, db):
        db.users.find_one_and_update.return_value = None

        response = await service.open_container(open_payload())

        assert response == {
            "success": False,
            "error": "insufficient_funds",
            "required": 100,
            "current": 30,
        }
        db.inventory.insert_one.assert_not_awaited()
        final_update = db.openings.update_one.await_args_list[-1].args[1]["$set"]
        assert final_update["status"] == "failed"

    @pytest.mark.asyncio
    async def test_currency_prize_credited_at_open(self, service, db):
        db.containers.find_one.return_value = container_doc(entries=[
            {"prize": {"type": "coin_reward", "amount": 500}, "weight": 1},
        ])
        db.users.find_one_and_update.side_effect = [
            {"user_id": ACTOR_ID, "coins": 0},
            {"user_id": ACTOR_ID, "coins": 500},
        ]

        response = await service.open_container(open_payload())

        assert response["success"] is True
        assert response["new_balance"] == 500
        assert response["reward_ref"] is None
        db.inventory.insert_one.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_completed_session_is_replayed(self, service, db):
        stored = {"success": True, "new_balance": 50, "session_id": SESSION_ID}
        db.openings.find_one.return_value = {
            "session_id": SESSION_ID, "actor_id": ACTOR_ID,
            "status": "completed", "response": stored,
        }

        response = await service.open_container(open_payload())

        assert response == stored
        db.containers.find_one.assert_not_awaited()
        db.users.find_one_and_update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_processing_session_is_in_progress(self, service, db):
        db.openings.find_one.return_value = {
            "session_id": SESSION_ID, "actor_id": ACTOR_ID, "status": "processing",
        }

        response = await service.open_container(open_payload())

        assert response["error"] == "session_in_progress"

    @pytest.mark.asyncio
    async def test_other_actors_session_is_hidden(self, service, db):
        db.openings.find_one.return_value = {
            "session_id": SESSION_ID, "actor_id": "someone-else",
            "status": "completed", "response": {"success": True},
        }

        response = await service.get_opening(ACTOR_ID, SESSION_ID)

        assert response["error"] == "session_not_found"

    @pytest.mark.asyncio
    async def test_lock_held_elsewhere(self, service, db):
        service.redis_service = FakeRedisService(available=False)

        response = await service.open_container(open_payload())

        assert response["error"] == "session_in_progress"
        db.users.find_one_and_update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_identifiers(self, service, db):
        payload = open_payload().model_copy(update={"container_id": "nope"})

        response = await service.open_container(payload)

        assert response["error"] == "invalid_request"
        db.openings.find_one.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_container(self, service, db):
        db.containers.find_one.return_value = None

        response = await service.open_container(open_payload())

        assert response["error"] == "container_not_found"

    @pytest.mark.asyncio
    async def test_free_mode_requires_free_container(self, service):
        response = await service.open_container(open_payload(PaymentMode.FREE))

        assert response["error"] == "payment_mode_not_allowed"

    @pytest.mark.asyncio
    async def test_free_mode_on_cooldown(self, service, db):
        db.containers.find_one.return_value = container_doc(is_free=True)
        db.users.find_one_and_update.return_value = None

        response = await service.open_container(open_payload(PaymentMode.FREE))

        assert response["error"] == "rate_limited"
        assert response["retry_after"] > 0

    @pytest.mark.asyncio
    async def test_rate_limited(self, service, rate_limiter, db):
        rate_limiter.check_and_consume.return_value = RateLimitDecision(
            allowed=False, remaining=0, reset_at=time.time() + 120
        )

        response = await service.open_container(open_payload())

        assert response["error"] == "rate_limited"
        assert 110 < response["retry_after"] <= 120
        db.containers.find_one.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_admin_skips_rate_limit(self, service, rate_limiter):
        await service.open_container(open_payload(), PrivilegeTier.ADMIN)

        rate_limiter.check_and_consume.assert_not_called()

    @pytest.mark.asyncio
    async def test_failure_after_debit_is_refunded(self, service, db):
        db.inventory.insert_one.side_effect = RuntimeError("write failed")

        with pytest.raises(RuntimeError):
            await service.open_container(open_payload())

        db.users.update_one.assert_any_await({"user_id": ACTOR_ID}, {"$inc": {"coins": 100}})
        final_update = db.openings.update_one.await_args_list[-1].args[1]["$set"]
        assert final_update["status"] == "failed"

    # =========================================================================
    # Selection
    # =========================================================================

    def test_build_roulette_places_winner(self, service):
        container = Container(**{k: v for k, v in container_doc().items() if k != "_id"})
        entries = container.droppable

        items, position = service.build_roulette(entries, entries[0])

        assert len(entries) == 1
        assert 35 <= position < 45
        assert items[position].matches(entries[0].prize)

    # =========================================================================
    # Liquidate / Keep
    # =========================================================================

    def held_record(self, status="held", value=60):
        return {
            "inventory_id": REWARD_REF, "actor_id": ACTOR_ID,
            "status": status, "liquidation_value": value,
        }

    @pytest.mark.asyncio
    async def test_liquidate_credits_balance(self, service, db):
        db.inventory.find_one.return_value = self.held_record()
        db.inventory.find_one_and_update.return_value = self.held_record()
        db.users.find_one_and_update.return_value = {"user_id": ACTOR_ID, "coins": 160}

        response = await service.liquidate_reward(
            LiquidateRewardPayload(actor_id=ACTOR_ID, reward_ref=REWARD_REF, expected_value=60)
        )

        assert response == {"success": True, "new_balance": 160}
        db.users.find_one_and_update.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_liquidate_after_keep_is_rejected(self, service, db):
        db.inventory.find_one.return_value = self.held_record(status="kept")

        response = await service.liquidate_reward(
            LiquidateRewardPayload(actor_id=ACTOR_ID, reward_ref=REWARD_REF, expected_value=60)
        )

        assert response["error"] == "reward_already_claimed"
        db.users.find_one_and_update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_liquidate_retry_returns_current_balance(self, service, db):
        db.inventory.find_one.return_value = self.held_record(status="liquidated")

        response = await service.liquidate_reward(
            LiquidateRewardPayload(actor_id=ACTOR_ID, reward_ref=REWARD_REF, expected_value=60)
        )

        assert response == {"success": True, "new_balance": 30, "already_settled": True}
        db.inventory.find_one_and_update.assert_not_awaited()
        db.users.find_one_and_update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_liquidate_value_mismatch(self, service, db):
        db.inventory.find_one.return_value = self.held_record(value=60)

        response = await service.liquidate_reward(
            LiquidateRewardPayload(actor_id=ACTOR_ID, reward_ref=REWARD_REF, expected_value=6000)
        )

        assert response["error"] == "value_mismatch"

    @pytest.mark.asyncio
    async def test_keep_is_idempotent(self, service, db):
        db.inventory.find_one_and_update.return_value = None
        db.inventory.find_one.return_value = self.held_record(status="kept")

        response = await service.keep_reward(
            KeepRewardPayload(actor_id=ACTOR_ID, reward_ref=REWARD_REF)
        )

        assert response == {"success": True}

    @pytest.mark.asyncio
    async def test_keep_after_liquidate_is_rejected(self, service, db):
        db.inventory.find_one_and_update.return_value = None
        db.inventory.find_one.return_value = self.held_record(status="liquidated")

        response = await service.keep_reward(
            KeepRewardPayload(actor_id=ACTOR_ID, reward_ref=REWARD_REF)
        )

        assert response["error"] == "reward_already_claimed"

    @pytest.mark.asyncio
    async def test_keep_rate_limited(self, service, rate_limiter, db):
        rate_limiter.check_and_consume.return_value = RateLimitDecision(
            allowed=False, remaining=0, reset_at=time.time() + 60
        )

        response = await service.keep_reward(
            KeepRewardPayload(actor_id=ACTOR_ID, reward_ref=REWARD_REF)
        )

        assert response["error"] == "rate_limited"
        assert rate_limiter.check_and_consume.call_args.args == (ACTOR_ID, "keep_reward")
        db.inventory.find_one_and_update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_admin_keep_skips_rate_limit(self, service, rate_limiter, db):
        db.inventory.find_one_and_update.return_value = self.held_record()

        response = await service.keep_reward(
            KeepRewardPayload(actor_id=ACTOR_ID, reward_ref=REWARD_REF), PrivilegeTier.ADMIN
        )

        assert response == {"success": True}
        rate_limiter.check_and_consume.assert_not_called()
