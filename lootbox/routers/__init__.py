"""Lootbox Routers Package"""

from lootbox.routers import rpc

__all__ = ["rpc"]
