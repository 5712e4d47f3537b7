"""
Tests for Backend Client

HTTP transport behaviour using httpx.MockTransport.
"""

import httpx
import pytest

from conftest import ACTOR_ID, CONTAINER_ID
from lootbox.models.reward import (
    ItemPrize,
    LiquidateRewardPayload,
    OpenContainerPayload,
    PaymentMode,
)
from lootbox.services.backend_client import (
    BackendRejectedError,
    BackendUnavailableError,
    HttpRewardBackend,
)


SESSION_ID = "3d2c1b0a-9f8e-4d7c-b6a5-4f3e2d1c0b9a"
REWARD_REF = "7e6d5c4b-3a29-4180-9f7e-6d5c4b3a2918"


def make_backend(handler, admin_secret=None):
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler),
        base_url="http://backend.test/api/v1/rpc",
    )
    return HttpRewardBackend(client=client, admin_secret=admin_secret)


def open_payload():
    return OpenContainerPayload(
        actor_id=ACTOR_ID,
        container_id=CONTAINER_ID,
        payment_mode=PaymentMode.OWNED,
        session_id=SESSION_ID,
    )


class TestHttpRewardBackend:
    """Tests for HttpRewardBackend."""

    @pytest.mark.asyncio
    async def test_open_container_parses_success(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["actor"] = request.headers.get("X-Actor-Id")
            seen["admin"] = request.headers.get("X-Admin-Secret")
            return httpx.Response(200, json={
                "success": True,
                "reward": {
                    "type": "skin", "id": "skin-1", "name": "Dragon Lore",
                    "rarity": "covert", "price": 60,
                },
                "reward_ref": REWARD_REF,
                "new_balance": 40,
                "roulette_items": [
                    {"type": "skin", "id": "decoy", "name": "Decoy", "price": 1},
                    {"type": "skin", "id": "skin-1", "name": "Dragon Lore", "price": 60},
                ],
                "winner_position": 1,
                "session_id": SESSION_ID,
            })

        backend = make_backend(handler)
        response = await backend.open_container(open_payload())

        assert seen["path"] == "/api/v1/rpc/open_container"
        assert seen["actor"] == ACTOR_ID
        assert seen["admin"] is None
        assert response.success is True
        assert isinstance(response.reward, ItemPrize)
        assert response.reward.liquidation_value == 60
        assert response.winner_position == 1

    @pytest.mark.asyncio
    async def test_structured_failure_is_data(self):
        def handler(request):
            return httpx.Response(200, json={
                "success": False, "error": "insufficient_funds",
                "required": 100, "current": 30,
            })

        response = await make_backend(handler).open_container(open_payload())

        assert response.success is False
        assert response.error == "insufficient_funds"
        assert response.required == 100
        assert response.current == 30

    @pytest.mark.asyncio
    async def test_admin_secret_header(self):
        def handler(request):
            assert request.headers["X-Admin-Secret"] == "s3cret"
            return httpx.Response(200, json={"balance": 7})

        balance = await make_backend(handler, admin_secret="s3cret").fetch_balance(ACTOR_ID)

        assert balance == 7

    # =========================================================================
    # Transport Failures
    # =========================================================================

    @pytest.mark.asyncio
    async def test_server_error_is_unavailable(self):
        def handler(request):
            return httpx.Response(503, json={"detail": "down"})

        with pytest.raises(BackendUnavailableError):
            await make_backend(handler).open_container(open_payload())

    @pytest.mark.asyncio
    async def test_connection_error_is_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(BackendUnavailableError):
            await make_backend(handler).fetch_balance(ACTOR_ID)

    @pytest.mark.asyncio
    async def test_timeout_is_unavailable(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(BackendUnavailableError):
            await make_backend(handler).open_container(open_payload())

    @pytest.mark.asyncio
    async def test_malformed_success_is_unavailable(self):
        def handler(request):
            return httpx.Response(200, json={"success": True, "new_balance": -5})

        with pytest.raises(BackendUnavailableError):
            await make_backend(handler).open_container(open_payload())

    @pytest.mark.asyncio
    async def test_unreadable_body_is_unavailable(self):
        def handler(request):
            return httpx.Response(200, content=b"<html>")

        with pytest.raises(BackendUnavailableError):
            await make_backend(handler).open_container(open_payload())

    # =========================================================================
    # Rejections
    # =========================================================================

    @pytest.mark.asyncio
    async def test_client_error_becomes_failure_payload(self):
        def handler(request):
            return httpx.Response(403, json={"detail": "Cannot act on behalf of another actor"})

        response = await make_backend(handler).liquidate_reward(
            LiquidateRewardPayload(actor_id=ACTOR_ID, reward_ref=REWARD_REF, expected_value=60)
        )

        assert response.success is False
        assert response.error == "Cannot act on behalf of another actor"

    @pytest.mark.asyncio
    async def test_client_error_on_balance_is_rejected(self):
        def handler(request):
            return httpx.Response(401, json={"detail": "X-Actor-Id header required"})

        with pytest.raises(BackendRejectedError):
            await make_backend(handler).fetch_balance(ACTOR_ID)
