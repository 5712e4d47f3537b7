"""
Balance Reconciler

The backend balance is ground truth. The cached value here is advisory: it
is overwritten after every confirmed mutation and re-fetched after
ambiguous failures. It is never decremented optimistically.
"""

import logging
from typing import Awaitable, Callable, Optional

from lootbox.services.validation import is_valid_amount


logger = logging.getLogger(__name__)


class BalanceReconciler:
    """Cached, correctable view of one actor's authoritative balance."""

    def __init__(
        self,
        actor_id: str,
        fetch_balance: Callable[[str], Awaitable[int]],
        initial_balance: Optional[int] = None,
    ):
        self.actor_id = actor_id
        self._fetch_balance = fetch_balance
        self._balance: Optional[int] = None
        self.stale = True
        if initial_balance is not None:
            self.reconcile(initial_balance)

    @property
    def balance(self) -> Optional[int]:
        """Last known balance, None until first reconciliation."""
        return self._balance

    def reconcile(self, new_balance: int) -> None:
        """Overwrite the cached balance with a backend-confirmed value."""
        if not is_valid_amount(new_balance, max_value=2**63 - 1):
            raise ValueError(f"Invalid balance from backend: {new_balance!r}")
        if self._balance != new_balance:
            logger.info(f"Balance for {self.actor_id}: {self._balance} -> {new_balance}")
        self._balance = new_balance
        self.stale = False

    def mark_stale(self) -> None:
        """Flag the cache as untrusted until the next resync."""
        self.stale = True

    async def resync(self) -> int:
        """
        Re-fetch the authoritative balance.

        On failure the exception propagates and the cached value is left
        untouched (still flagged stale).
        """
        balance = await self._fetch_balance(self.actor_id)
        self.reconcile(balance)
        return balance

    def can_afford(self, cost: int) -> bool:
        """
        Advisory affordability check for UI affordances.

        May be wrong by one resolution cycle; the backend re-validates.
        """
        if self._balance is None:
            return True
        return self._balance >= cost
