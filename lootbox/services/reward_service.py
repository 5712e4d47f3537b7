"""
Reward Service - Authoritative container resolution.

Debit, weighted prize selection and inventory/ledger credit run as one
all-or-nothing unit per opening session. The client never rolls prizes.
"""

import logging
import random
import uuid
from typing import List, Optional, Tuple

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from lootbox.config import settings
from lootbox.constants import (
    ACTION_KEEP_REWARD,
    ACTION_LIQUIDATE_REWARD,
    ACTION_OPEN_CONTAINER,
    ERROR_ALREADY_CLAIMED,
    ERROR_CONTAINER_EMPTY,
    ERROR_CONTAINER_NOT_FOUND,
    ERROR_INSUFFICIENT_FUNDS,
    ERROR_INVALID_REQUEST,
    ERROR_PAYMENT_MODE_NOT_ALLOWED,
    ERROR_RATE_LIMITED,
    ERROR_REWARD_NOT_FOUND,
    ERROR_SESSION_IN_PROGRESS,
    ERROR_SESSION_NOT_FOUND,
    ERROR_VALUE_MISMATCH,
)
from lootbox.database import get_db
from lootbox.models.container import (
    Container,
    ContainerEntry,
    InventoryRecord,
    InventoryStatus,
    OpeningSession,
    OpeningStatus,
)
from lootbox.models.reward import (
    CurrencyPrize,
    DisplayItem,
    KeepRewardPayload,
    LiquidateRewardPayload,
    OpenContainerPayload,
    PaymentMode,
)
from lootbox.models.security import PrivilegeTier
from lootbox.services.audit_service import AuditService
from lootbox.services.rate_limiter import AdaptiveRateLimiter
from lootbox.services.redis_service import RedisService
from lootbox.services.validation import is_valid_amount, is_valid_identifier
from lootbox.utils.timezone_utils import seconds_until, utc_after, utc_now


logger = logging.getLogger(__name__)

# Cooldown field per payment mode, keyed by container ID inside the user doc
COOLDOWN_FIELDS = {
    PaymentMode.FREE: ("free_available_at", settings.free_cooldown_seconds),
    PaymentMode.AD_VIEWED: ("ad_available_at", settings.ad_cooldown_seconds),
}


def _error(code: str, **extra) -> dict:
    response = {"success": False, "error": code}
    response.update({k: v for k, v in extra.items() if v is not None})
    return response


class RewardService:
    """
    Server-side reward resolution.

    SECURITY:
    - Prize selection uses a system RNG and never leaves the server before
      the debit is committed.
    - Each actor's opens are serialized by a Redis lock; the debit is a
      conditional update (coins >= price) so balances never go negative.
    - session_id makes open_container exactly-once: replays return the
      stored response without charging again.
    """

    def __init__(
        self,
        redis_service: Optional[RedisService] = None,
        rate_limiter: Optional[AdaptiveRateLimiter] = None,
        audit_service: Optional[AuditService] = None,
        rng: Optional[random.Random] = None,
        db=None,
    ):
        self.redis_service = redis_service or RedisService()
        self.rate_limiter = rate_limiter or AdaptiveRateLimiter()
        self.audit_service = audit_service or AuditService()
        self._rng = rng or random.SystemRandom()
        self._db = db

    @property
    def db(self):
        return self._db if self._db is not None else get_db()

    # =========================================================================
    # Lookups
    # =========================================================================

    async def get_container(self, container_id: str) -> Optional[Container]:
        doc = await self.db.containers.find_one({"container_id": container_id})
        if not doc:
            return None
        doc.pop("_id", None)
        return Container(**doc)

    async def get_balance(self, actor_id: str) -> int:
        user = await self.db.users.find_one({"user_id": actor_id})
        return (user or {}).get("coins", 0)

    async def get_opening(self, actor_id: str, session_id: str) -> dict:
        """Stored outcome of an opening session, for client reconciliation."""
        session = await self.db.openings.find_one({"session_id": session_id})
        return self._replay(session, actor_id)

    def _replay(self, session: Optional[dict], actor_id: str) -> dict:
        if not session or session.get("actor_id") != actor_id:
            return _error(ERROR_SESSION_NOT_FOUND)
        if session.get("status") == OpeningStatus.PROCESSING.value or not session.get("response"):
            return _error(ERROR_SESSION_IN_PROGRESS)
        return session["response"]

    # =========================================================================
    # Prize Selection
    # =========================================================================

    def select_entry(self, entries: List[ContainerEntry]) -> ContainerEntry:
        """Weighted random choice among droppable entries."""
        weights = [e.weight for e in entries]
        return self._rng.choices(entries, weights=weights, k=1)[0]

    def build_roulette(
        self, entries: List[ContainerEntry], winner: ContainerEntry
    ) -> Tuple[List[DisplayItem], int]:
        """
        Weighted decoy sequence with the real prize at a server-chosen slot.

        The winner is kept away from both ends so the reveal always scrolls
        past decoys and stops with decoys visible on either side.
        """
        length = max(settings.roulette_length, 6)
        low = min(settings.roulette_winner_min, length - 6)
        high = length - 5
        winner_position = self._rng.randrange(low, high)

        weights = [e.weight for e in entries]
        decoys = self._rng.choices(entries, weights=weights, k=length)
        items = [DisplayItem.from_prize(e.prize) for e in decoys]
        items[winner_position] = DisplayItem.from_prize(winner.prize)
        return items, winner_position

    # =========================================================================
    # Open Container
    # =========================================================================

    async def open_container(
        self,
        payload: OpenContainerPayload,
        privilege: PrivilegeTier = PrivilegeTier.USER,
    ) -> dict:
        """
        Debit, resolve and credit as one unit.

        Returns the wire response dict; business failures are data.
        """
        actor_id = payload.actor_id
        if not all(
            is_valid_identifier(v)
            for v in (actor_id, payload.container_id, payload.session_id)
        ):
            return _error(ERROR_INVALID_REQUEST)

        existing = await self.db.openings.find_one({"session_id": payload.session_id})
        if existing:
            logger.info(f"Replaying opening session {payload.session_id}")
            return self._replay(existing, actor_id)

        if not privilege.is_exempt:
            decision = self.rate_limiter.check_and_consume(actor_id, ACTION_OPEN_CONTAINER)
            if not decision.allowed:
                return _error(
                    ERROR_RATE_LIMITED, retry_after=retry_after_from(decision.reset_at)
                )

        async with self.redis_service.actor_lock(ACTION_OPEN_CONTAINER, actor_id) as locked:
            if not locked:
                return _error(ERROR_SESSION_IN_PROGRESS)
            return await self._open_locked(payload)

    async def _open_locked(self, payload: OpenContainerPayload) -> dict:
        actor_id = payload.actor_id
        container = await self.get_container(payload.container_id)
        if container is None:
            return _error(ERROR_CONTAINER_NOT_FOUND)

        entries = container.droppable
        if not entries:
            return _error(ERROR_CONTAINER_EMPTY)

        mode = PaymentMode(payload.payment_mode)
        if (mode == PaymentMode.FREE and not container.is_free) or (
            mode == PaymentMode.AD_VIEWED and not container.ad_unlockable
        ):
            return _error(ERROR_PAYMENT_MODE_NOT_ALLOWED)

        session = OpeningSession(
            session_id=payload.session_id,
            actor_id=actor_id,
            container_id=container.container_id,
            payment_mode=mode.value,
        )
        try:
            await self.db.openings.insert_one(session.model_dump())
        except DuplicateKeyError:
            existing = await self.db.openings.find_one({"session_id": payload.session_id})
            return self._replay(existing, actor_id)

        await self.db.users.update_one(
            {"user_id": actor_id},
            {"$setOnInsert": {"user_id": actor_id, "coins": 0}},
            upsert=True,
        )

        charge = await self._charge(actor_id, container, mode)
        if not charge["success"]:
            await self._finish_session(payload.session_id, OpeningStatus.FAILED, charge)
            await self.audit_service.log_action(
                actor_id, "case_open_failed",
                {"container_id": container.container_id, "error": charge["error"]},
                success=False,
            )
            return charge

        debited = charge["debited"]
        credited = False
        try:
            await self.db.openings.update_one(
                {"session_id": payload.session_id}, {"$set": {"coins_debited": debited}}
            )

            entry = self.select_entry(entries)
            items, winner_position = self.build_roulette(entries, entry)
            prize = entry.prize
            reward_ref = None

            if isinstance(prize, CurrencyPrize):
                user = await self.db.users.find_one_and_update(
                    {"user_id": actor_id},
                    {"$inc": {"coins": prize.amount}},
                    return_document=ReturnDocument.AFTER,
                )
                new_balance = user["coins"]
            else:
                reward_ref = str(uuid.uuid4())
                record = InventoryRecord(
                    inventory_id=reward_ref,
                    actor_id=actor_id,
                    session_id=payload.session_id,
                    prize=prize.model_dump(by_alias=True),
                    liquidation_value=prize.liquidation_value,
                )
                await self.db.inventory.insert_one(record.model_dump())
                new_balance = charge["balance"]
            credited = True

            response = {
                "success": True,
                "reward": prize.model_dump(by_alias=True, mode="json"),
                "reward_ref": reward_ref,
                "new_balance": new_balance,
                "roulette_items": [i.model_dump(mode="json") for i in items],
                "winner_position": winner_position,
                "session_id": payload.session_id,
            }
            await self._finish_session(payload.session_id, OpeningStatus.COMPLETED, response)
        except Exception:
            logger.exception(f"Open failed mid-flight for session {payload.session_id}")
            if not credited:
                await self._compensate(actor_id, container, mode, debited)
                await self._finish_session(
                    payload.session_id, OpeningStatus.FAILED, _error("internal_error")
                )
            raise

        logger.info(
            f"Actor {actor_id} opened {container.container_id} "
            f"({mode.value}) -> {prize.type}, balance {new_balance}"
        )
        await self.audit_service.log_action(
            actor_id, "case_open_success",
            {
                "container_id": container.container_id,
                "session_id": payload.session_id,
                "payment_mode": mode.value,
                "reward": response["reward"],
            },
        )
        return response

    async def _charge(self, actor_id: str, container: Container, mode: PaymentMode) -> dict:
        """Debit-if-affordable or claim a cooldown slot, atomically."""
        if mode == PaymentMode.OWNED:
            cost = container.price
            user = await self.db.users.find_one_and_update(
                {"user_id": actor_id, "coins": {"$gte": cost}},
                {"$inc": {"coins": -cost}},
                return_document=ReturnDocument.AFTER,
            )
            if user is None:
                current = await self.get_balance(actor_id)
                return _error(ERROR_INSUFFICIENT_FUNDS, required=cost, current=current)
            return {"success": True, "debited": cost, "balance": user["coins"]}

        field_name, cooldown = COOLDOWN_FIELDS[mode]
        field = f"{field_name}.{container.container_id}"
        now = utc_now()
        user = await self.db.users.find_one_and_update(
            {
                "user_id": actor_id,
                "$or": [{field: {"$exists": False}}, {field: {"$lte": now}}],
            },
            {"$set": {field: utc_after(cooldown)}},
            return_document=ReturnDocument.AFTER,
        )
        if user is None:
            doc = await self.db.users.find_one({"user_id": actor_id}) or {}
            available_at = doc.get(field_name, {}).get(container.container_id)
            retry_after = seconds_until(available_at) if available_at else float(cooldown)
            return _error(ERROR_RATE_LIMITED, retry_after=retry_after)
        return {"success": True, "debited": 0, "balance": user.get("coins", 0)}

    async def _compensate(
        self, actor_id: str, container: Container, mode: PaymentMode, debited: int
    ) -> None:
        """Undo the charge of an open that could not be credited."""
        try:
            if debited > 0:
                await self.db.users.update_one(
                    {"user_id": actor_id}, {"$inc": {"coins": debited}}
                )
            elif mode in COOLDOWN_FIELDS:
                field_name, _ = COOLDOWN_FIELDS[mode]
                await self.db.users.update_one(
                    {"user_id": actor_id},
                    {"$unset": {f"{field_name}.{container.container_id}": ""}},
                )
        except Exception as e:
            logger.critical(f"Compensation failed for {actor_id} (debited {debited}): {e}")

    async def _finish_session(self, session_id: str, status: OpeningStatus, response: dict) -> None:
        await self.db.openings.update_one(
            {"session_id": session_id},
            {"$set": {"status": status.value, "response": response, "completed_at": utc_now()}},
        )

    # =========================================================================
    # Post-resolution Actions
    # =========================================================================

    async def liquidate_reward(
        self,
        payload: LiquidateRewardPayload,
        privilege: PrivilegeTier = PrivilegeTier.USER,
    ) -> dict:
        """Convert a held item into coins at its stored liquidation value."""
        actor_id = payload.actor_id
        if not (
            is_valid_identifier(actor_id)
            and is_valid_identifier(payload.reward_ref)
            and is_valid_amount(payload.expected_value)
        ):
            return _error(ERROR_INVALID_REQUEST)

        if not privilege.is_exempt:
            decision = self.rate_limiter.check_and_consume(actor_id, ACTION_LIQUIDATE_REWARD)
            if not decision.allowed:
                return _error(
                    ERROR_RATE_LIMITED, retry_after=retry_after_from(decision.reset_at)
                )

        record = await self.db.inventory.find_one(
            {"inventory_id": payload.reward_ref, "actor_id": actor_id}
        )
        if not record:
            return _error(ERROR_REWARD_NOT_FOUND)
        if record.get("status") == InventoryStatus.LIQUIDATED.value:
            # Retry of a liquidation whose response was lost
            logger.info(f"Liquidation of {payload.reward_ref} already applied")
            return {
                "success": True,
                "new_balance": await self.get_balance(actor_id),
                "already_settled": True,
            }
        if record.get("status") != InventoryStatus.HELD.value:
            return _error(ERROR_ALREADY_CLAIMED)
        if record.get("liquidation_value") != payload.expected_value:
            return _error(ERROR_VALUE_MISMATCH)

        # Only one concurrent claim can flip the status
        claimed = await self.db.inventory.find_one_and_update(
            {
                "inventory_id": payload.reward_ref,
                "actor_id": actor_id,
                "status": InventoryStatus.HELD.value,
            },
            {"$set": {"status": InventoryStatus.LIQUIDATED.value, "decided_at": utc_now()}},
        )
        if claimed is None:
            return _error(ERROR_ALREADY_CLAIMED)

        try:
            user = await self.db.users.find_one_and_update(
                {"user_id": actor_id},
                {"$inc": {"coins": record["liquidation_value"]}},
                return_document=ReturnDocument.AFTER,
            )
        except Exception:
            await self.db.inventory.update_one(
                {"inventory_id": payload.reward_ref},
                {"$set": {"status": InventoryStatus.HELD.value}},
            )
            raise

        logger.info(
            f"Actor {actor_id} liquidated {payload.reward_ref} "
            f"for {record['liquidation_value']}"
        )
        await self.audit_service.log_action(
            actor_id, "reward_liquidated",
            {"reward_ref": payload.reward_ref, "value": record["liquidation_value"]},
        )
        return {"success": True, "new_balance": user["coins"]}

    async def keep_reward(
        self,
        payload: KeepRewardPayload,
        privilege: PrivilegeTier = PrivilegeTier.USER,
    ) -> dict:
        """Confirm a held item stays in the inventory. Idempotent."""
        actor_id = payload.actor_id
        if not (is_valid_identifier(actor_id) and is_valid_identifier(payload.reward_ref)):
            return _error(ERROR_INVALID_REQUEST)

        if not privilege.is_exempt:
            decision = self.rate_limiter.check_and_consume(actor_id, ACTION_KEEP_REWARD)
            if not decision.allowed:
                return _error(
                    ERROR_RATE_LIMITED, retry_after=retry_after_from(decision.reset_at)
                )

        updated = await self.db.inventory.find_one_and_update(
            {
                "inventory_id": payload.reward_ref,
                "actor_id": actor_id,
                "status": InventoryStatus.HELD.value,
            },
            {"$set": {"status": InventoryStatus.KEPT.value, "decided_at": utc_now()}},
        )
        if updated is None:
            record = await self.db.inventory.find_one(
                {"inventory_id": payload.reward_ref, "actor_id": actor_id}
            )
            if not record:
                return _error(ERROR_REWARD_NOT_FOUND)
            if record.get("status") == InventoryStatus.KEPT.value:
                return {"success": True}
            return _error(ERROR_ALREADY_CLAIMED)

        await self.audit_service.log_action(
            actor_id, "reward_kept", {"reward_ref": payload.reward_ref}
        )
        return {"success": True}


def retry_after_from(reset_at: float) -> float:
    """Convert a limiter reset timestamp into a retry-after delay."""
    return max(0.0, reset_at - utc_now().timestamp())
