#!/usr/bin/env python3
"""
BehaviorHPA Recommendation History
==================================

Per-autoscaler log of raw recommendations and the stabilizer that reads it.

Scale-down takes the highest recommendation seen inside the scale-down
window, so one recent spike vetoes a drop. Scale-up takes the lowest inside
the scale-up window; with the default window of 0 that is the fresh
recommendation itself.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from hpa_spec import Behavior

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Recommendation:
    timestamp: float
    desired_replicas: int


class RecommendationHistory:
    """Timestamp-ordered raw recommendations for one autoscaler"""

    def __init__(self):
        self._entries: List[Recommendation] = []

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> Tuple[Recommendation, ...]:
        return tuple(self._entries)

    @property
    def latest(self) -> Optional[Recommendation]:
        return self._entries[-1] if self._entries else None

    def append(self, timestamp: float, desired_replicas: int) -> bool:
        """
        Record a recommendation. A second entry at the latest timestamp
        replaces the first (replayed tick); an older timestamp is stale and
        ignored. Returns True when the history changed.
        """
        entry = Recommendation(timestamp, desired_replicas)
        latest = self.latest
        if latest is not None:
            if timestamp < latest.timestamp:
                logger.warning(
                    f"Ignoring stale recommendation at {timestamp} (latest is {latest.timestamp})"
                )
                return False
            if timestamp == latest.timestamp:
                if latest == entry:
                    return False
                self._entries[-1] = entry
                return True
        self._entries.append(entry)
        return True

    def prune(self, now: float, horizon_seconds: float) -> int:
        """Drop entries older than ``horizon_seconds`` before ``now``."""
        cutoff = now - horizon_seconds
        keep_from = 0
        while keep_from < len(self._entries) and self._entries[keep_from].timestamp < cutoff:
            keep_from += 1
        if keep_from:
            del self._entries[:keep_from]
        return keep_from

    def within(self, now: float, window_seconds: float) -> List[Recommendation]:
        return [e for e in self._entries if now - window_seconds <= e.timestamp <= now]


def stabilize(history: RecommendationHistory, behavior: Behavior, recommendation: int,
              current_replicas: int, now: float) -> int:
    """Dampened replica count for ``recommendation`` given the stored history."""
    if recommendation == current_replicas:
        return current_replicas

    if recommendation < current_replicas:
        window = behavior.scale_down.stabilization_window_seconds
        values = [e.desired_replicas for e in history.within(now, window)] or [recommendation]
        return min(current_replicas, max(values))

    window = behavior.scale_up.stabilization_window_seconds
    values = [e.desired_replicas for e in history.within(now, window)] or [recommendation]
    return max(current_replicas, min(values))
