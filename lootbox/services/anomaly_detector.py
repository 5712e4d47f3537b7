"""
Anomaly Detector

Keeps a rolling activity log per actor and flags high-frequency or
high-value operations. Flagging never blocks by itself.
"""

import logging
import time
from collections import defaultdict, deque
from typing import Callable, Deque, Dict, Optional

from lootbox.config import settings
from lootbox.models.security import ActivityEvent


logger = logging.getLogger(__name__)


class AnomalyDetector:
    """
    Rolling-window anomaly signal.

    An action is anomalous when:
    1. The same action kind occurred more than frequency_threshold times
       in the window, or
    2. Its value exceeds high_value_threshold.
    """

    def __init__(
        self,
        window_seconds: float = settings.anomaly_window_seconds,
        frequency_threshold: int = settings.anomaly_frequency_threshold,
        high_value_threshold: int = settings.anomaly_high_value_threshold,
        clock: Callable[[], float] = time.time,
    ):
        self.window_seconds = window_seconds
        self.frequency_threshold = frequency_threshold
        self.high_value_threshold = high_value_threshold
        self._clock = clock
        self._events: Dict[str, Deque[ActivityEvent]] = defaultdict(deque)

    def record_and_evaluate(
        self, actor_id: str, action_kind: str, value: Optional[int] = None
    ) -> bool:
        """Record the action and return whether it looks anomalous."""
        now = self._clock()
        events = self._events[actor_id]

        # Drop events older than the window
        cutoff = now - self.window_seconds
        while events and events[0].timestamp < cutoff:
            events.popleft()

        events.append(ActivityEvent(action_kind=action_kind, timestamp=now, value=value))

        same_kind = sum(1 for e in events if e.action_kind == action_kind)
        if same_kind > self.frequency_threshold:
            logger.warning(
                f"High-frequency {action_kind} for {actor_id}: "
                f"{same_kind} in {self.window_seconds:.0f}s"
            )
            return True

        if value is not None and value > self.high_value_threshold:
            logger.warning(f"High-value {action_kind} for {actor_id}: {value}")
            return True

        return False

    def recent_events(self, actor_id: str) -> list:
        return list(self._events.get(actor_id, ()))

    def clear_actor(self, actor_id: str) -> None:
        self._events.pop(actor_id, None)
