"""
Reward Orchestrator - Client-side core for opening containers.

Sequences validation, rate limiting and exactly one call to the backend's
atomic open. The orchestrator never debits, rolls or credits anything
itself: every balance it reports comes from the backend.
"""

import asyncio
import logging
import math
import time
import uuid
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Union

from pydantic import ValidationError

from lootbox.constants import (
    ACTION_KEEP_REWARD,
    ACTION_LIQUIDATE_REWARD,
    ACTION_OPEN_CONTAINER,
    ERROR_ALREADY_CLAIMED,
    ERROR_INSUFFICIENT_FUNDS,
    ERROR_RATE_LIMITED,
    ERROR_SESSION_IN_PROGRESS,
    ERROR_SESSION_NOT_FOUND,
)
from lootbox.models.reward import (
    CurrencyPrize,
    DisplayItem,
    ErrorKind,
    KeepRewardPayload,
    LiquidateRewardPayload,
    OpenContainerPayload,
    OpenContainerResponse,
    PaymentMode,
    RewardActionResult,
    RewardDecision,
    RewardOutcome,
    RewardRequest,
)
from lootbox.models.security import PrivilegeTier, RateLimitStatus, SecurityMetrics
from lootbox.services.animation import RouletteAnimation
from lootbox.services.audit_service import AuditSink
from lootbox.services.backend_client import (
    BackendRejectedError,
    BackendUnavailableError,
    RewardBackend,
)
from lootbox.services.balance_reconciler import BalanceReconciler
from lootbox.services.security_context import SecurityContext
from lootbox.services.validation import is_valid_amount, is_valid_identifier, sanitize


logger = logging.getLogger(__name__)


class OrchestratorState(str, Enum):
    """Per-actor lifecycle of the most recent open."""
    IDLE = "idle"
    VALIDATING = "validating"
    RATE_LIMITED = "rate_limited"
    REQUESTING = "requesting"
    RESOLVED = "resolved"
    FAILED = "failed"


def format_wait(seconds: float) -> str:
    """Human-presentable wait time."""
    seconds = max(1, math.ceil(seconds))
    if seconds < 60:
        return f"{seconds} second{'s' if seconds != 1 else ''}"
    minutes = math.ceil(seconds / 60)
    return f"{minutes} minute{'s' if minutes != 1 else ''}"


class RewardOrchestrator:
    """
    Orchestrates container opens and the keep / liquidate follow-ups.

    Usage:
        orchestrator = RewardOrchestrator(HttpRewardBackend())
        outcome = await orchestrator.open_container(actor_id, container_id)
        animation = orchestrator.create_animation(outcome)
        ...
        await orchestrator.keep_reward(actor_id, outcome)

    All security state lives in the injected SecurityContext, so separate
    instances never share counters.
    """

    def __init__(
        self,
        backend: RewardBackend,
        privilege: PrivilegeTier = PrivilegeTier.USER,
        security: Optional[SecurityContext] = None,
        audit: Optional[AuditSink] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.backend = backend
        self.privilege = privilege
        self.security = security or SecurityContext(clock=clock)
        self.audit = audit
        self._clock = clock

        self._states: Dict[str, OrchestratorState] = {}
        self._in_flight: Set[str] = set()
        self._reconcilers: Dict[str, BalanceReconciler] = {}
        self._pending_sessions: Dict[str, List[str]] = {}
        self._last_outcomes: Dict[str, RewardOutcome] = {}

        self._decisions: Dict[str, RewardDecision] = {}
        self._decision_locks: Dict[str, asyncio.Lock] = {}
        self._revealed: Set[str] = set()
        self._refs_by_actor: Dict[str, Set[str]] = {}

        self._audit_tasks: Set[asyncio.Task] = set()

    # =========================================================================
    # State
    # =========================================================================

    def state_of(self, actor_id: str) -> OrchestratorState:
        return self._states.get(actor_id, OrchestratorState.IDLE)

    def _set_state(self, actor_id: str, state: OrchestratorState) -> None:
        self._states[actor_id] = state
        logger.debug(f"Orchestrator {actor_id} -> {state.value}")

    def reconciler_for(self, actor_id: str) -> BalanceReconciler:
        reconciler = self._reconcilers.get(actor_id)
        if reconciler is None:
            reconciler = BalanceReconciler(actor_id, self.backend.fetch_balance)
            self._reconcilers[actor_id] = reconciler
        return reconciler

    def last_outcome(self, actor_id: str) -> Optional[RewardOutcome]:
        return self._last_outcomes.get(actor_id)

    def has_pending(self, actor_id: str) -> bool:
        """True while an open with unknown server-side result awaits recovery."""
        return bool(self._pending_sessions.get(actor_id))

    # =========================================================================
    # Open Container
    # =========================================================================

    async def open_container(
        self,
        actor_id: str,
        container_id: str,
        payment_mode: Union[PaymentMode, str] = PaymentMode.OWNED,
    ) -> RewardOutcome:
        """
        Open a container through the backend's atomic operation.

        Never raises for business failures; the returned outcome carries the
        error kind and a presentable message.
        """
        # Check and mark in-flight without suspending in between
        if isinstance(actor_id, str) and actor_id in self._in_flight:
            logger.warning(f"Open rejected for {actor_id}: request already in flight")
            return RewardOutcome.failure(
                ErrorKind.BUSY, "An opening is already in progress."
            )

        exempt = self.privilege.is_exempt

        request = self._build_request(actor_id, container_id, payment_mode)
        if request is None:
            logger.warning(f"Invalid open parameters from {actor_id!r}")
            if isinstance(actor_id, str):
                self._set_state(actor_id, OrchestratorState.FAILED)
                self._audit(
                    actor_id,
                    "case_open_invalid_params",
                    {"container_id": sanitize(container_id)},
                    success=False,
                )
            return RewardOutcome.failure(
                ErrorKind.INVALID_INPUT, "Invalid container or account."
            )

        if not exempt:
            decision = self.security.check_rate_limit(actor_id, ACTION_OPEN_CONTAINER)
            if not decision.allowed:
                self._set_state(actor_id, OrchestratorState.RATE_LIMITED)
                retry_after = max(0.0, decision.reset_at - self._clock())
                logger.warning(f"Open rate limited for {actor_id}: {decision.reason}")
                self._audit(
                    actor_id,
                    "rate_limit_exceeded",
                    {"action": ACTION_OPEN_CONTAINER, "retry_after": retry_after},
                    success=False,
                )
                return RewardOutcome.failure(
                    ErrorKind.RATE_LIMITED,
                    f"Too many attempts. Try again in {format_wait(retry_after)}.",
                    retry_after=retry_after,
                    new_balance=self.reconciler_for(actor_id).balance,
                )
            if self.security.record_activity(actor_id, ACTION_OPEN_CONTAINER):
                logger.warning(f"Suspicious open frequency for {actor_id}")
                self._audit(
                    actor_id,
                    "suspicious_activity",
                    {"action": ACTION_OPEN_CONTAINER, "container_id": container_id},
                    success=False,
                )

        self._in_flight.add(actor_id)
        self._set_state(actor_id, OrchestratorState.REQUESTING)
        try:
            return await self._resolve(request)
        finally:
            self._in_flight.discard(actor_id)

    def _build_request(
        self, actor_id: Any, container_id: Any, payment_mode: Any
    ) -> Optional[RewardRequest]:
        if not is_valid_identifier(actor_id) or not is_valid_identifier(container_id):
            return None
        if isinstance(actor_id, str):
            self._set_state(actor_id, OrchestratorState.VALIDATING)
        try:
            mode = PaymentMode(payment_mode)
        except ValueError:
            return None
        return RewardRequest(
            actor_id=actor_id,
            container_id=container_id,
            payment_mode=mode,
            session_id=str(uuid.uuid4()),
        )

    async def _resolve(self, request: RewardRequest) -> RewardOutcome:
        payload = OpenContainerPayload(
            actor_id=request.actor_id,
            container_id=request.container_id,
            payment_mode=request.payment_mode,
            session_id=request.session_id,
        )
        try:
            response = await self.backend.open_container(payload)
        except BackendUnavailableError as e:
            return await self._handle_network_failure(request, e)
        except BackendRejectedError as e:
            self._set_state(request.actor_id, OrchestratorState.FAILED)
            return RewardOutcome.failure(
                ErrorKind.SERVER_REJECTED,
                sanitize(str(e)) or "Request rejected.",
                session_id=request.session_id,
            )

        return await self._apply_open_response(
            request.actor_id, request.container_id, request.session_id, response
        )

    async def _handle_network_failure(
        self, request: RewardRequest, error: Exception
    ) -> RewardOutcome:
        """The server may or may not have committed: resync, never assume."""
        actor_id = request.actor_id
        logger.warning(f"Open for {actor_id} ended ambiguously: {error}")
        self._set_state(actor_id, OrchestratorState.FAILED)
        self._pending_sessions.setdefault(actor_id, []).append(request.session_id)

        reconciler = self.reconciler_for(actor_id)
        reconciler.mark_stale()
        await self._try_resync(reconciler)

        self._audit(
            actor_id,
            "case_open_failed",
            {"container_id": request.container_id, "error": "network_failure"},
            success=False,
        )
        return RewardOutcome.failure(
            ErrorKind.NETWORK_FAILURE,
            "Connection problem. Your balance was refreshed; check your "
            "inventory before trying again.",
            new_balance=reconciler.balance,
            session_id=request.session_id,
        )

    async def _try_resync(self, reconciler: BalanceReconciler) -> None:
        try:
            await reconciler.resync()
        except (BackendUnavailableError, BackendRejectedError, ValueError) as e:
            logger.warning(f"Balance resync failed for {reconciler.actor_id}: {e}")

    async def _apply_open_response(
        self,
        actor_id: str,
        container_id: Optional[str],
        session_id: str,
        response: OpenContainerResponse,
    ) -> RewardOutcome:
        reconciler = self.reconciler_for(actor_id)

        if not response.success:
            outcome = self._map_open_error(actor_id, session_id, response)
            if response.error == ERROR_RATE_LIMITED:
                self._set_state(actor_id, OrchestratorState.RATE_LIMITED)
            else:
                self._set_state(actor_id, OrchestratorState.FAILED)
            self._audit(
                actor_id,
                "case_open_failed",
                {"container_id": container_id, "error": response.error},
                success=False,
            )
            return outcome

        outcome = self._build_success(session_id, response)
        if outcome is None:
            self._set_state(actor_id, OrchestratorState.FAILED)
            reconciler.mark_stale()
            await self._try_resync(reconciler)
            return RewardOutcome.failure(
                ErrorKind.SERVER_REJECTED,
                "The server returned an incomplete result.",
                new_balance=reconciler.balance,
                session_id=session_id,
            )

        if response.new_balance is not None:
            reconciler.reconcile(response.new_balance)
        else:
            reconciler.mark_stale()
            await self._try_resync(reconciler)

        self._last_outcomes[actor_id] = outcome
        self._track_ref(actor_id, self._outcome_ref(outcome))
        self._set_state(actor_id, OrchestratorState.RESOLVED)
        logger.info(
            f"Container {container_id} opened for {actor_id}: "
            f"{outcome.prize.type} (balance {reconciler.balance})"
        )
        self._audit(
            actor_id,
            "case_open_success",
            {
                "container_id": container_id,
                "session_id": session_id,
                "prize_type": outcome.prize.type,
                "prize_id": outcome.prize.id,
            },
        )
        return outcome

    def _build_success(
        self, session_id: str, response: OpenContainerResponse
    ) -> Optional[RewardOutcome]:
        if response.reward is None:
            logger.error(f"Successful open {session_id} carried no reward")
            return None
        fields = dict(
            success=True,
            prize=response.reward,
            new_balance=response.new_balance,
            session_id=session_id,
            reward_ref=response.reward_ref,
        )
        try:
            return RewardOutcome(
                roulette_script=response.roulette_items,
                winner_index=response.winner_position,
                **fields,
            )
        except ValidationError as e:
            # Render only the authoritative prize rather than a mismatched script
            logger.error(f"Inconsistent roulette script for {session_id}: {e}")
            return RewardOutcome(
                roulette_script=[DisplayItem.from_prize(response.reward)],
                winner_index=0,
                **fields,
            )

    def _map_open_error(
        self, actor_id: str, session_id: str, response: OpenContainerResponse
    ) -> RewardOutcome:
        balance = self.reconciler_for(actor_id).balance
        error = response.error

        if error == ERROR_INSUFFICIENT_FUNDS:
            if response.current is not None and is_valid_amount(
                response.current, max_value=2**63 - 1
            ):
                self.reconciler_for(actor_id).reconcile(response.current)
                balance = response.current
            if response.required is not None and response.current is not None:
                message = (
                    f"Not enough coins: need {response.required}, have {response.current}."
                )
            else:
                message = "Not enough coins to open this container."
            return RewardOutcome.failure(
                ErrorKind.INSUFFICIENT_FUNDS,
                message,
                required=response.required,
                current=response.current,
                new_balance=balance,
                session_id=session_id,
            )

        if error == ERROR_RATE_LIMITED:
            retry_after = response.retry_after or 0.0
            return RewardOutcome.failure(
                ErrorKind.RATE_LIMITED,
                f"Not available yet. Try again in {format_wait(retry_after)}.",
                retry_after=retry_after,
                new_balance=balance,
                session_id=session_id,
            )

        if error == ERROR_SESSION_IN_PROGRESS:
            return RewardOutcome.failure(
                ErrorKind.BUSY,
                "An opening is already in progress.",
                new_balance=balance,
                session_id=session_id,
            )

        return RewardOutcome.failure(
            ErrorKind.SERVER_REJECTED,
            sanitize(error) or "Request rejected.",
            new_balance=balance,
            session_id=session_id,
        )

    async def recover_pending(self, actor_id: str) -> Optional[RewardOutcome]:
        """
        Look up the result of an open that ended in a network failure.

        Returns None when nothing is pending. Several ambiguous opens are
        recovered one per call, oldest first. This is a read of the stored
        session on the backend; it never spends again.
        """
        pending = self._pending_sessions.get(actor_id)
        if not pending:
            return None
        session_id = pending[0]
        if actor_id in self._in_flight:
            return RewardOutcome.failure(
                ErrorKind.BUSY, "An opening is already in progress."
            )

        self._in_flight.add(actor_id)
        try:
            try:
                response = await self.backend.get_opening(actor_id, session_id)
            except (BackendUnavailableError, BackendRejectedError) as e:
                logger.warning(f"Could not recover session {session_id}: {e}")
                return RewardOutcome.failure(
                    ErrorKind.NETWORK_FAILURE,
                    "Still unable to reach the server.",
                    new_balance=self.reconciler_for(actor_id).balance,
                    session_id=session_id,
                )

            if response.error == ERROR_SESSION_IN_PROGRESS:
                return RewardOutcome.failure(
                    ErrorKind.BUSY,
                    "The previous opening is still being processed.",
                    session_id=session_id,
                )

            pending.pop(0)
            if not pending:
                self._pending_sessions.pop(actor_id, None)

            if response.error == ERROR_SESSION_NOT_FOUND:
                # Never committed on the server, so nothing was spent
                reconciler = self.reconciler_for(actor_id)
                await self._try_resync(reconciler)
                self._set_state(actor_id, OrchestratorState.FAILED)
                return RewardOutcome.failure(
                    ErrorKind.SERVER_REJECTED,
                    "The previous opening did not go through. No coins were spent.",
                    new_balance=reconciler.balance,
                    session_id=session_id,
                )

            logger.info(f"Recovered session {session_id} for {actor_id}")
            return await self._apply_open_response(actor_id, None, session_id, response)
        finally:
            self._in_flight.discard(actor_id)

    # =========================================================================
    # Keep / Liquidate
    # =========================================================================

    async def keep_reward(self, actor_id: str, outcome: RewardOutcome) -> RewardActionResult:
        """Move a resolved item into the persistent inventory."""
        return await self._decide(actor_id, outcome, RewardDecision.KEPT)

    async def liquidate_reward(
        self, actor_id: str, outcome: RewardOutcome
    ) -> RewardActionResult:
        """Convert a resolved item to coins at its liquidation value."""
        return await self._decide(actor_id, outcome, RewardDecision.LIQUIDATED)

    @staticmethod
    def _outcome_ref(outcome: RewardOutcome) -> Optional[str]:
        return outcome.reward_ref or outcome.session_id

    async def _decide(
        self, actor_id: str, outcome: RewardOutcome, decision: RewardDecision
    ) -> RewardActionResult:
        exempt = self.privilege.is_exempt

        if not isinstance(outcome, RewardOutcome) or not outcome.success:
            return RewardActionResult.failure(
                ErrorKind.INVALID_INPUT, "There is no reward to act on."
            )
        if not is_valid_identifier(actor_id):
            return RewardActionResult.failure(ErrorKind.INVALID_INPUT, "Invalid account.")

        reconciler = self.reconciler_for(actor_id)
        ref = self._outcome_ref(outcome)
        self._track_ref(actor_id, ref)

        if isinstance(outcome.prize, CurrencyPrize):
            # Coins were credited by the open itself
            self._decisions.setdefault(ref, decision)
            return RewardActionResult(
                success=True,
                decision=self._decisions[ref],
                new_balance=reconciler.balance,
                already_settled=True,
            )

        if not is_valid_identifier(outcome.reward_ref):
            return RewardActionResult.failure(ErrorKind.INVALID_INPUT, "Invalid reward.")
        if decision == RewardDecision.LIQUIDATED and not is_valid_amount(
            outcome.prize.liquidation_value
        ):
            return RewardActionResult.failure(
                ErrorKind.INVALID_INPUT, "Invalid reward value."
            )
        if ref not in self._revealed:
            return RewardActionResult.failure(
                ErrorKind.BUSY, "Wait for the reveal to finish."
            )

        lock = self._decision_locks.setdefault(ref, asyncio.Lock())
        async with lock:
            settled = self._settled_result(ref, reconciler)
            if settled is not None:
                return settled

            action = (
                ACTION_KEEP_REWARD if decision == RewardDecision.KEPT
                else ACTION_LIQUIDATE_REWARD
            )
            if not exempt:
                limited = self._check_action_limit(actor_id, action)
                if limited is not None:
                    return limited
                value = outcome.prize.liquidation_value
                if self.security.record_activity(actor_id, action, value):
                    logger.warning(f"Suspicious {action} by {actor_id} (value {value})")
                    self._audit(
                        actor_id,
                        "suspicious_activity",
                        {"action": action, "value": value},
                        success=False,
                    )

            if decision == RewardDecision.KEPT:
                return await self._keep(actor_id, outcome, reconciler)
            return await self._liquidate(actor_id, outcome, reconciler)

    def _settled_result(
        self, ref: str, reconciler: BalanceReconciler
    ) -> Optional[RewardActionResult]:
        existing = self._decisions.get(ref)
        if existing is None:
            return None
        return RewardActionResult(
            success=True,
            decision=existing,
            new_balance=reconciler.balance,
            already_settled=True,
        )

    def _check_action_limit(
        self, actor_id: str, action: str
    ) -> Optional[RewardActionResult]:
        decision = self.security.check_rate_limit(actor_id, action)
        if decision.allowed:
            return None
        retry_after = max(0.0, decision.reset_at - self._clock())
        logger.warning(f"{action} rate limited for {actor_id}")
        self._audit(
            actor_id,
            "rate_limit_exceeded",
            {"action": action, "retry_after": retry_after},
            success=False,
        )
        return RewardActionResult.failure(
            ErrorKind.RATE_LIMITED,
            f"Too many attempts. Try again in {format_wait(retry_after)}.",
            retry_after=retry_after,
        )

    async def _keep(
        self, actor_id: str, outcome: RewardOutcome, reconciler: BalanceReconciler
    ) -> RewardActionResult:
        ref = outcome.reward_ref
        try:
            response = await self.backend.keep_reward(
                KeepRewardPayload(actor_id=actor_id, reward_ref=ref)
            )
        except (BackendUnavailableError, BackendRejectedError) as e:
            logger.warning(f"Keep for {ref} failed: {e}")
            return RewardActionResult.failure(
                ErrorKind.NETWORK_FAILURE,
                "Connection problem. Please try again.",
                new_balance=reconciler.balance,
            )

        if not response.success:
            return self._action_rejected(actor_id, response.error, response.retry_after, reconciler)

        self._decisions[ref] = RewardDecision.KEPT
        logger.info(f"Reward {ref} kept by {actor_id}")
        self._audit(actor_id, "reward_kept", {"reward_ref": ref, "prize_id": outcome.prize.id})
        return RewardActionResult(
            success=True, decision=RewardDecision.KEPT, new_balance=reconciler.balance
        )

    async def _liquidate(
        self, actor_id: str, outcome: RewardOutcome, reconciler: BalanceReconciler
    ) -> RewardActionResult:
        ref = outcome.reward_ref
        value = outcome.prize.liquidation_value
        try:
            response = await self.backend.liquidate_reward(
                LiquidateRewardPayload(actor_id=actor_id, reward_ref=ref, expected_value=value)
            )
        except (BackendUnavailableError, BackendRejectedError) as e:
            logger.warning(f"Liquidate for {ref} ended ambiguously: {e}")
            reconciler.mark_stale()
            await self._try_resync(reconciler)
            return RewardActionResult.failure(
                ErrorKind.NETWORK_FAILURE,
                "Connection problem. Your balance was refreshed.",
                new_balance=reconciler.balance,
            )

        if not response.success:
            if response.error == ERROR_ALREADY_CLAIMED:
                # An earlier ambiguous attempt may have credited the balance
                reconciler.mark_stale()
                await self._try_resync(reconciler)
            return self._action_rejected(actor_id, response.error, response.retry_after, reconciler)

        self._decisions[ref] = RewardDecision.LIQUIDATED
        if response.new_balance is not None:
            reconciler.reconcile(response.new_balance)
        else:
            reconciler.mark_stale()
            await self._try_resync(reconciler)
        if response.already_settled:
            logger.info(f"Reward {ref} was already liquidated by an earlier attempt")
            return RewardActionResult(
                success=True,
                decision=RewardDecision.LIQUIDATED,
                new_balance=reconciler.balance,
                already_settled=True,
            )
        logger.info(f"Reward {ref} liquidated by {actor_id} for {value}")
        self._audit(
            actor_id,
            "reward_liquidated",
            {"reward_ref": ref, "prize_id": outcome.prize.id, "value": value},
        )
        return RewardActionResult(
            success=True, decision=RewardDecision.LIQUIDATED, new_balance=reconciler.balance
        )

    def _action_rejected(
        self,
        actor_id: str,
        error: Optional[str],
        retry_after: Optional[float],
        reconciler: BalanceReconciler,
    ) -> RewardActionResult:
        logger.warning(f"Reward action rejected for {actor_id}: {error}")
        if error == ERROR_RATE_LIMITED:
            wait = retry_after or 0.0
            return RewardActionResult.failure(
                ErrorKind.RATE_LIMITED,
                f"Too many attempts. Try again in {format_wait(wait)}.",
                retry_after=wait,
                new_balance=reconciler.balance,
            )
        return RewardActionResult.failure(
            ErrorKind.SERVER_REJECTED,
            sanitize(error) or "Request rejected.",
            new_balance=reconciler.balance,
        )

    # =========================================================================
    # Reveal
    # =========================================================================

    def reveal(self, outcome: RewardOutcome) -> None:
        """Make keep / liquidate available for an outcome."""
        if outcome is not None and outcome.success:
            self._revealed.add(self._outcome_ref(outcome))

    def create_animation(self, outcome: Optional[RewardOutcome], **kwargs) -> RouletteAnimation:
        """
        Build and start the reveal for an outcome.

        Keep / liquidate unlock when the animation completes. A caller
        supplied on_complete still runs afterwards.
        """
        user_on_complete = kwargs.pop("on_complete", None)

        def on_complete(completed: RewardOutcome) -> None:
            self.reveal(completed)
            if user_on_complete:
                user_on_complete(completed)

        animation = RouletteAnimation(on_complete=on_complete, **kwargs)
        animation.start(outcome)
        return animation

    # =========================================================================
    # Read-only Security Surface
    # =========================================================================

    def get_security_metrics(self, actor_id: str) -> SecurityMetrics:
        if self.privilege.is_exempt:
            return SecurityMetrics()
        return self.security.get_metrics(actor_id)

    def get_rate_limit_status(
        self, actor_id: str, action_kind: str = ACTION_OPEN_CONTAINER
    ) -> RateLimitStatus:
        return self.security.get_rate_limit_status(actor_id, action_kind)

    def sign_out(self, actor_id: str) -> None:
        """Forget everything held for the actor."""
        self.security.reset_actor(actor_id)
        self._states.pop(actor_id, None)
        self._reconcilers.pop(actor_id, None)
        self._pending_sessions.pop(actor_id, None)
        self._last_outcomes.pop(actor_id, None)
        for ref in self._refs_by_actor.pop(actor_id, set()):
            self._decisions.pop(ref, None)
            self._decision_locks.pop(ref, None)
            self._revealed.discard(ref)

    def _track_ref(self, actor_id: str, ref: Optional[str]) -> None:
        if ref is not None:
            self._refs_by_actor.setdefault(actor_id, set()).add(ref)

    # =========================================================================
    # Audit
    # =========================================================================

    def _audit(
        self,
        actor_id: str,
        action: str,
        details: Optional[Dict[str, Any]] = None,
        success: bool = True,
    ) -> None:
        """Fire-and-forget submission to the audit collaborator."""
        if self.audit is None:
            return
        task = asyncio.get_running_loop().create_task(
            self.audit.log_action(actor_id, action, details, success=success)
        )
        self._audit_tasks.add(task)
        task.add_done_callback(self._audit_done)

    def _audit_done(self, task: asyncio.Task) -> None:
        self._audit_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Audit submission failed: {task.exception()}")

    async def aclose(self) -> None:
        """Wait for outstanding audit submissions."""
        if self._audit_tasks:
            await asyncio.gather(*list(self._audit_tasks), return_exceptions=True)
