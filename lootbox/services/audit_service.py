"""Audit Service - Audit logging for container opens, reward decisions and security events."""

import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

from lootbox.database import get_db
from lootbox.models.audit_log import ActorType, AuditLog
from lootbox.utils.timezone_utils import utc_now


logger = logging.getLogger(__name__)


class AuditSink(Protocol):
    """Best-effort audit collaborator consumed by the orchestrator."""

    async def log_action(
        self,
        user_id: str,
        action: str,
        details: Optional[Dict[str, Any]] = None,
        success: bool = True,
    ) -> Any:
        ...


async def _write_to_mongo(entry: AuditLog) -> None:
    db = get_db()
    await db.audit_logs.insert_one(entry.model_dump())


class AuditService:
    """
    Audit logging service.

    SECURITY: All significant actions are logged for accountability.
    Logs include:
    - Container opens (success, failure, invalid parameters)
    - Keep / liquidate decisions
    - Rate limit violations and suspicious activity
    """

    def __init__(self, writer: Optional[Callable[[AuditLog], Awaitable[None]]] = None):
        self._writer = writer or _write_to_mongo

    async def log(
        self,
        actor_type: ActorType,
        actor_id: str,
        action: str,
        success: bool = True,
        target_type: Optional[str] = None,
        target_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        """
        Log an action.

        Args:
            actor_type: user, admin, or system
            actor_id: ID of the actor
            action: Name of the action
            success: Whether the action succeeded
            target_type: Type of target (container, reward)
            target_id: ID of the target
            metadata: Additional context
        """
        entry = AuditLog(
            log_id=str(uuid.uuid4()),
            timestamp=utc_now(),
            actor_type=actor_type,
            actor_id=actor_id,
            action=action,
            success=success,
            target_type=target_type,
            target_id=target_id,
            metadata=metadata,
        )

        await self._writer(entry)

        return entry

    async def log_action(
        self,
        user_id: str,
        action: str,
        details: Optional[Dict[str, Any]] = None,
        success: bool = True,
        object_type: Optional[str] = None,
        object_id: Optional[str] = None,
    ) -> Optional[AuditLog]:
        """Log a user action without ever breaking callers."""
        try:
            return await self.log(
                actor_type=ActorType.USER,
                actor_id=user_id,
                action=action,
                success=success,
                target_type=object_type,
                target_id=object_id,
                metadata=details,
            )
        except Exception as e:
            # Do not propagate logging failures to callers
            logger.error(f"Audit log failed for {action} ({user_id}): {e}")
            return None
