"""Audit Log Model - Defines the audit log schema for reward and security actions."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ActorType(str, Enum):
    """Type of actor performing the action."""
    USER = "user"
    ADMIN = "admin"
    SYSTEM = "system"


class AuditLog(BaseModel):
    """
    Audit log model for MongoDB.

    SECURITY: Every container open, keep, liquidation and security event is
    logged for accountability.

    Fields:
    - log_id: Unique UUID for the log entry
    - timestamp: When the action occurred
    - actor_type: user/admin/system
    - actor_id: ID of the actor
    - action: Action name (case_open_success, rate_limit_exceeded, ...)
    - success: Whether the action succeeded
    - target_type: Type of target (container, reward)
    - target_id: ID of the target
    - metadata: Additional context
    """
    log_id: str = Field(..., description="Unique log ID")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    actor_type: ActorType
    actor_id: str = Field(..., description="Actor's ID")
    action: str = Field(..., description="Action name")
    success: bool = True
    target_type: Optional[str] = Field(None)
    target_id: Optional[str] = Field(None)
    metadata: Optional[dict] = Field(None)

    class Config:
        use_enum_values = True
