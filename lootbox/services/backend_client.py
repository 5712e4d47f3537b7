"""
Backend Client - Transport for the authoritative reward RPC contract.

Business failures come back as structured payloads. Only transport-level
problems (timeouts, connection errors, 5xx) raise BackendUnavailableError,
because for those the server-side outcome is unknown.
"""

import logging
from typing import Optional, Protocol, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from lootbox.config import settings
from lootbox.models.reward import (
    BalanceResponse,
    KeepRewardPayload,
    KeepRewardResponse,
    LiquidateRewardPayload,
    LiquidateRewardResponse,
    OpenContainerPayload,
    OpenContainerResponse,
)


logger = logging.getLogger(__name__)

ResponseT = TypeVar("ResponseT", bound=BaseModel)


class BackendUnavailableError(Exception):
    """The backend could not be reached or answered ambiguously."""


class BackendRejectedError(Exception):
    """The backend refused a request that has no structured failure payload."""


class RewardBackend(Protocol):
    """Remote procedures the orchestrator depends on."""

    async def open_container(self, payload: OpenContainerPayload) -> OpenContainerResponse:
        ...

    async def liquidate_reward(self, payload: LiquidateRewardPayload) -> LiquidateRewardResponse:
        ...

    async def keep_reward(self, payload: KeepRewardPayload) -> KeepRewardResponse:
        ...

    async def fetch_balance(self, actor_id: str) -> int:
        ...

    async def get_opening(self, actor_id: str, session_id: str) -> OpenContainerResponse:
        ...


class HttpRewardBackend:
    """RewardBackend over HTTP using httpx."""

    def __init__(
        self,
        base_url: str = settings.backend_base_url,
        timeout: float = settings.backend_timeout_seconds,
        admin_secret: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=f"{base_url.rstrip('/')}{settings.api_v1_str}/rpc",
            timeout=timeout,
        )
        self._admin_secret = admin_secret

    def _headers(self, actor_id: str) -> dict:
        headers = {"X-Actor-Id": actor_id}
        if self._admin_secret:
            headers["X-Admin-Secret"] = self._admin_secret
        return headers

    async def _call(
        self,
        method: str,
        path: str,
        actor_id: str,
        response_model: Type[ResponseT],
        json: Optional[dict] = None,
    ) -> ResponseT:
        try:
            response = await self._client.request(
                method, path, json=json, headers=self._headers(actor_id)
            )
        except httpx.TimeoutException as e:
            logger.warning(f"Backend timeout on {path}: {e}")
            raise BackendUnavailableError(f"Timeout calling {path}") from e
        except httpx.TransportError as e:
            logger.warning(f"Backend transport error on {path}: {e}")
            raise BackendUnavailableError(f"Could not reach backend for {path}") from e

        if response.status_code >= 500:
            raise BackendUnavailableError(
                f"Backend error {response.status_code} on {path}"
            )

        try:
            body = response.json()
        except ValueError as e:
            raise BackendUnavailableError(f"Unreadable response from {path}") from e

        if response.status_code >= 400:
            detail = body.get("detail") if isinstance(body, dict) else None
            logger.warning(f"Backend rejected {path} ({response.status_code}): {detail}")
            try:
                return response_model.model_validate(
                    {"success": False, "error": str(detail or "request_rejected")}
                )
            except ValidationError as e:
                raise BackendRejectedError(str(detail or "request_rejected")) from e

        try:
            return response_model.model_validate(body)
        except ValidationError as e:
            logger.error(f"Malformed response from {path}: {e}")
            raise BackendUnavailableError(f"Malformed response from {path}") from e

    async def open_container(self, payload: OpenContainerPayload) -> OpenContainerResponse:
        return await self._call(
            "POST", "/open_container", payload.actor_id, OpenContainerResponse,
            json=payload.model_dump(mode="json"),
        )

    async def liquidate_reward(self, payload: LiquidateRewardPayload) -> LiquidateRewardResponse:
        return await self._call(
            "POST", "/liquidate_reward", payload.actor_id, LiquidateRewardResponse,
            json=payload.model_dump(mode="json"),
        )

    async def keep_reward(self, payload: KeepRewardPayload) -> KeepRewardResponse:
        return await self._call(
            "POST", "/keep_reward", payload.actor_id, KeepRewardResponse,
            json=payload.model_dump(mode="json"),
        )

    async def fetch_balance(self, actor_id: str) -> int:
        result = await self._call("GET", f"/balance/{actor_id}", actor_id, BalanceResponse)
        return result.balance

    async def get_opening(self, actor_id: str, session_id: str) -> OpenContainerResponse:
        return await self._call(
            "GET", f"/openings/{actor_id}/{session_id}", actor_id, OpenContainerResponse
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
