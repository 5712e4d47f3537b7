"""
Roulette Animation - Reveal state machine driven by a server-issued outcome.

The stopping offset is a pure function of the winner index and fixed item
geometry, so the same outcome always lands on the same item. The state
machine never re-rolls or guesses: without a valid outcome it goes to ERROR.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from lootbox.config import settings
from lootbox.models.reward import DisplayItem, RewardOutcome


logger = logging.getLogger(__name__)


class AnimationPhase(str, Enum):
    """Visual phases of the reveal."""
    IDLE = "idle"
    OPENING = "opening"
    SCROLLING = "scrolling"
    SETTLED = "settled"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"


ALLOWED_TRANSITIONS = {
    AnimationPhase.IDLE: {AnimationPhase.OPENING, AnimationPhase.ERROR},
    AnimationPhase.OPENING: {AnimationPhase.SCROLLING, AnimationPhase.CANCELLED},
    AnimationPhase.SCROLLING: {AnimationPhase.SETTLED, AnimationPhase.CANCELLED},
    AnimationPhase.SETTLED: {AnimationPhase.COMPLETE, AnimationPhase.CANCELLED},
    AnimationPhase.COMPLETE: set(),
    AnimationPhase.ERROR: set(),
    AnimationPhase.CANCELLED: set(),
}

TERMINAL_PHASES = {AnimationPhase.COMPLETE, AnimationPhase.ERROR, AnimationPhase.CANCELLED}


class InvalidTransitionError(Exception):
    """A phase change not allowed by the state machine."""


@dataclass(frozen=True)
class RouletteGeometry:
    """Fixed layout of the roulette strip, in pixels."""
    item_width: int = settings.roulette_item_width
    item_margin: int = settings.roulette_item_margin
    viewport_width: int = settings.roulette_viewport_width

    @property
    def slot_width(self) -> int:
        return self.item_width + self.item_margin

    def offset_for(self, index: int) -> float:
        """Strip translation that centers item `index` under the marker."""
        return -(index * self.slot_width - self.viewport_width / 2 + self.slot_width / 2)

    def index_at(self, offset: float) -> int:
        """Index of the item under the center marker for a given translation."""
        return math.floor((self.viewport_width / 2 - offset) / self.slot_width)


def ease_out_cubic(progress: float) -> float:
    progress = min(max(progress, 0.0), 1.0)
    return 1 - (1 - progress) ** 3


class RouletteAnimation:
    """
    Reveal state machine: IDLE -> OPENING -> SCROLLING -> SETTLED -> COMPLETE.

    Phases can be stepped deterministically with advance(elapsed) or driven
    in real time with run_timers(). teardown() cancels pending timers and
    suppresses callbacks.
    """

    def __init__(
        self,
        geometry: Optional[RouletteGeometry] = None,
        opening_seconds: float = settings.animation_opening_seconds,
        scroll_seconds: float = settings.animation_scroll_seconds,
        settle_seconds: float = settings.animation_settle_seconds,
        on_phase_change: Optional[Callable[[AnimationPhase], None]] = None,
        on_complete: Optional[Callable[[RewardOutcome], None]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.geometry = geometry or RouletteGeometry()
        self.opening_seconds = opening_seconds
        self.scroll_seconds = scroll_seconds
        self.settle_seconds = settle_seconds
        self._on_phase_change = on_phase_change
        self._on_complete = on_complete
        self._sleep = sleep

        self.phase = AnimationPhase.IDLE
        self.outcome: Optional[RewardOutcome] = None
        self.error: Optional[str] = None
        self.target_offset: Optional[float] = None
        self._task: Optional[asyncio.Task] = None

    # =========================================================================
    # Transitions
    # =========================================================================

    def _transition(self, target: AnimationPhase) -> None:
        if target not in ALLOWED_TRANSITIONS[self.phase]:
            raise InvalidTransitionError(f"{self.phase.value} -> {target.value}")
        self.phase = target
        logger.debug(f"Roulette phase -> {target.value}")
        if target == AnimationPhase.CANCELLED:
            return
        if self._on_phase_change:
            self._on_phase_change(target)
        if target == AnimationPhase.COMPLETE and self._on_complete:
            self._on_complete(self.outcome)

    def start(self, outcome: Optional[RewardOutcome]) -> bool:
        """
        Begin the reveal for a resolved outcome.

        Returns False and enters ERROR when there is no usable outcome.
        """
        reason = self._reject_reason(outcome)
        if reason:
            logger.error(f"Cannot start roulette: {reason}")
            self.error = reason
            self._transition(AnimationPhase.ERROR)
            return False

        self.outcome = outcome
        self.target_offset = self.geometry.offset_for(outcome.winner_index)
        self._transition(AnimationPhase.OPENING)
        return True

    @staticmethod
    def _reject_reason(outcome: Optional[RewardOutcome]) -> Optional[str]:
        if outcome is None:
            return "no outcome available"
        if not outcome.success:
            return f"outcome failed ({outcome.error_kind.value})"
        index = outcome.winner_index
        if index is None or not 0 <= index < len(outcome.roulette_script):
            return "winner index outside roulette script"
        return None

    def begin_scroll(self) -> None:
        self._transition(AnimationPhase.SCROLLING)

    def settle(self) -> None:
        self._transition(AnimationPhase.SETTLED)

    def complete(self) -> None:
        self._transition(AnimationPhase.COMPLETE)

    # =========================================================================
    # Deterministic stepping
    # =========================================================================

    def phase_for(self, elapsed: float) -> AnimationPhase:
        """Phase the reveal should be in `elapsed` seconds after start."""
        if elapsed < self.opening_seconds:
            return AnimationPhase.OPENING
        if elapsed < self.opening_seconds + self.scroll_seconds:
            return AnimationPhase.SCROLLING
        if elapsed < self.opening_seconds + self.scroll_seconds + self.settle_seconds:
            return AnimationPhase.SETTLED
        return AnimationPhase.COMPLETE

    def advance(self, elapsed: float) -> AnimationPhase:
        """Step through every phase boundary passed by `elapsed`."""
        if self.phase in TERMINAL_PHASES or self.phase == AnimationPhase.IDLE:
            return self.phase
        order = [
            AnimationPhase.OPENING,
            AnimationPhase.SCROLLING,
            AnimationPhase.SETTLED,
            AnimationPhase.COMPLETE,
        ]
        target = self.phase_for(elapsed)
        while order.index(self.phase) < order.index(target):
            self._transition(order[order.index(self.phase) + 1])
        return self.phase

    def offset_at(self, elapsed: float) -> float:
        """Strip translation `elapsed` seconds after start (ease-out)."""
        if self.target_offset is None:
            return 0.0
        progress = (elapsed - self.opening_seconds) / self.scroll_seconds
        return self.target_offset * ease_out_cubic(progress)

    @property
    def visible_item(self) -> Optional[DisplayItem]:
        """Item under the marker once the strip has stopped."""
        if self.phase not in (AnimationPhase.SETTLED, AnimationPhase.COMPLETE):
            return None
        index = self.geometry.index_at(self.target_offset)
        return self.outcome.roulette_script[index]

    # =========================================================================
    # Timers
    # =========================================================================

    def run_timers(self) -> asyncio.Task:
        """Drive the remaining phases in real time on the running loop."""
        if self.phase != AnimationPhase.OPENING:
            raise InvalidTransitionError(f"cannot run timers from {self.phase.value}")
        self._task = asyncio.get_running_loop().create_task(self._drive())
        return self._task

    async def _drive(self) -> None:
        await self._sleep(self.opening_seconds)
        self.begin_scroll()
        await self._sleep(self.scroll_seconds)
        self.settle()
        await self._sleep(self.settle_seconds)
        self.complete()

    def teardown(self) -> None:
        """
        Stop the reveal, e.g. when the UI is dismissed.

        Pending timers are cancelled and no further callbacks fire. The
        underlying reward is unaffected.
        """
        if self._task is not None and not self._task.done():
            self._task.cancel()
        if self.phase not in TERMINAL_PHASES and self.phase != AnimationPhase.IDLE:
            self._transition(AnimationPhase.CANCELLED)
