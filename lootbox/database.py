"""
Lootbox Database Module

MongoDB and Redis connection management for the authoritative backend.
"""

from typing import Optional

import redis.asyncio as redis
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from lootbox.config import settings


# =============================================================================
# MongoDB Connection
# =============================================================================

class MongoDB:
    """MongoDB connection manager."""

    client: Optional[AsyncIOMotorClient] = None
    db: Optional[AsyncIOMotorDatabase] = None


mongo = MongoDB()


async def init_mongodb():
    """Initialize MongoDB connection and create indexes."""
    mongo.client = AsyncIOMotorClient(settings.mongodb_uri)
    mongo.db = mongo.client[settings.mongodb_database]

    # Users (balances and payment-mode cooldowns)
    await mongo.db.users.create_index("user_id", unique=True)

    # Container catalog
    await mongo.db.containers.create_index("container_id", unique=True)

    # Opening sessions: the unique session_id is the idempotency key
    await mongo.db.openings.create_index("session_id", unique=True)
    await mongo.db.openings.create_index([("actor_id", 1), ("created_at", -1)])

    # Inventory
    await mongo.db.inventory.create_index("inventory_id", unique=True)
    await mongo.db.inventory.create_index([("actor_id", 1), ("status", 1)])

    # Audit logs
    await mongo.db.audit_logs.create_index("log_id", unique=True)
    await mongo.db.audit_logs.create_index("timestamp")
    await mongo.db.audit_logs.create_index("actor_id")
    await mongo.db.audit_logs.create_index("action")


async def close_mongodb():
    """Close MongoDB connection."""
    if mongo.client:
        mongo.client.close()


def get_db() -> AsyncIOMotorDatabase:
    """Get database instance."""
    if mongo.db is None:
        raise RuntimeError("Database not initialized")
    return mongo.db


# =============================================================================
# Redis Connection
# =============================================================================

class RedisClient:
    """Redis connection manager."""

    client: Optional[redis.Redis] = None


redis_client = RedisClient()


async def init_redis():
    """Initialize Redis connection."""
    redis_client.client = redis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        health_check_interval=30,
        socket_connect_timeout=5,
        retry_on_timeout=True,
        socket_keepalive=True
    )


async def close_redis():
    """Close Redis connection."""
    if redis_client.client:
        await redis_client.client.close()


def get_redis() -> redis.Redis:
    """Get Redis client instance."""
    if redis_client.client is None:
        raise RuntimeError("Redis not initialized")
    return redis_client.client


# =============================================================================
# Combined Initialization
# =============================================================================

async def init_db():
    """Initialize all database connections."""
    await init_mongodb()
    await init_redis()


async def close_db():
    """Close all database connections."""
    await close_mongodb()
    await close_redis()
