#!/usr/bin/env python3
"""
BehaviorHPA Rate Limiter
========================

Behavior policies cap how far the replica count may move inside a trailing
period. Change already applied inside that period is read back from the
scaling event ledger, so limits hold across ticks rather than per tick.

Each policy produces a candidate replica bound; the rule's ``selectPolicy``
reduces the candidates to one (``Max`` = most permissive, ``Min`` = most
conservative).
"""

import logging
import math
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from hpa_spec import Behavior, PolicyType, ScalingPolicy, ScalingRules, SelectPolicy
from scaling_decision import ScalingDirection

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScalingEvent:
    timestamp: float
    from_replicas: int
    to_replicas: int

    @property
    def direction(self) -> str:
        return ScalingDirection.of(self.from_replicas, self.to_replicas)

    @property
    def magnitude(self) -> int:
        return abs(self.to_replicas - self.from_replicas)


class ScalingEventLedger:
    """Applied replica changes, newest last"""

    def __init__(self):
        self._events: List[ScalingEvent] = []

    def __len__(self) -> int:
        return len(self._events)

    @property
    def events(self) -> Tuple[ScalingEvent, ...]:
        return tuple(self._events)

    def record(self, timestamp: float, from_replicas: int, to_replicas: int) -> bool:
        """Append an applied change; an identical event is only counted once."""
        if from_replicas == to_replicas:
            return False
        event = ScalingEvent(timestamp, from_replicas, to_replicas)
        if event in self._events:
            logger.debug(f"Scaling event {event} already recorded")
            return False
        self._events.append(event)
        self._events.sort(key=lambda e: e.timestamp)
        return True

    def prune(self, now: float, horizon_seconds: float) -> int:
        cutoff = now - horizon_seconds
        before = len(self._events)
        self._events = [e for e in self._events if e.timestamp > cutoff]
        return before - len(self._events)

    def change_within(self, now: float, period_seconds: float, direction: str) -> int:
        """Pods added (direction up) or removed (down) during (now - period, now]."""
        cutoff = now - period_seconds
        return sum(
            e.magnitude
            for e in self._events
            if e.timestamp > cutoff and e.timestamp <= now and e.direction == direction
        )


def _policy_bound(policy: ScalingPolicy, ledger: ScalingEventLedger, current_replicas: int,
                  now: float, scale_up: bool) -> int:
    # Replica count at the start of the trailing period, net of both directions
    added = ledger.change_within(now, policy.period_seconds, ScalingDirection.UP)
    removed = ledger.change_within(now, policy.period_seconds, ScalingDirection.DOWN)
    start = current_replicas - added + removed

    if policy.type == PolicyType.PODS:
        allowed = policy.value
    else:
        allowed = math.ceil(start * policy.value / 100.0)

    return start + allowed if scale_up else start - allowed


# (selectPolicy, scale_up) -> reducer over candidate bounds
_REDUCERS: Dict[Tuple[SelectPolicy, bool], Callable] = {
    (SelectPolicy.MAX, True): max,
    (SelectPolicy.MAX, False): min,
    (SelectPolicy.MIN, True): min,
    (SelectPolicy.MIN, False): max,
}


def replica_bound(rules: ScalingRules, ledger: ScalingEventLedger, current_replicas: int,
                  now: float, scale_up: bool) -> Tuple[int, Optional[str]]:
    """
    Furthest replica count reachable this tick in the given direction.

    Returns ``(bound, policy_label)``. The bound never points against the
    direction: an up bound is at least ``current_replicas``, a down bound at
    most ``current_replicas`` and never negative.
    """
    direction_label = "ScaleUp" if scale_up else "ScaleDown"
    if rules.disabled:
        return current_replicas, f"{direction_label}:Disabled"
    if not rules.policies:
        return current_replicas, f"{direction_label}:NoPolicies"

    candidates = [
        (_policy_bound(p, ledger, current_replicas, now, scale_up), p) for p in rules.policies
    ]
    reducer = _REDUCERS[(rules.select_policy, scale_up)]
    bound = reducer(b for b, _ in candidates)
    policy = next(p for b, p in candidates if b == bound)

    if scale_up:
        bound = max(bound, current_replicas)
    else:
        bound = max(0, min(bound, current_replicas))
    return bound, f"{direction_label}:{policy.describe()}"


def limit_replicas(behavior: Behavior, ledger: ScalingEventLedger, current_replicas: int,
                   stabilized: int, now: float) -> Tuple[int, Optional[str]]:
    """
    Apply the rate limits to a stabilized recommendation.

    Returns ``(replicas, applied_policy)`` where ``applied_policy`` names the
    policy only when it actually held the change back.
    """
    if stabilized == current_replicas:
        return current_replicas, None

    scale_up = stabilized > current_replicas
    rules = behavior.rules_for(scale_up)
    bound, label = replica_bound(rules, ledger, current_replicas, now, scale_up)
    limited = min(stabilized, bound) if scale_up else max(stabilized, bound)

    if limited != stabilized:
        logger.debug(f"{label} limited {current_replicas} -> {stabilized} to {limited}")
        return limited, label
    return limited, None
