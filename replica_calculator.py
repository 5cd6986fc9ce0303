#!/usr/bin/env python3
"""
BehaviorHPA Replica Calculator
==============================

Turns already-fetched metric values into a raw replica recommendation:

    desired = ceil(current_replicas * current_value / target_value)

A ratio within ``tolerance`` of 1.0 keeps the current count so measurement
noise never turns into a scaling event.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional, Sequence

from scaling_errors import MetricUnavailable

logger = logging.getLogger(__name__)

# Absorbs float error at the tolerance edges and in ceil()
FLOAT_EPSILON = 1e-9


@dataclass(frozen=True)
class MetricSample:
    """One metric reading for a tick; ``error`` is set when the fetch failed"""
    name: str
    current_value: Optional[float] = None
    target_value: Optional[float] = None
    error: Optional[MetricUnavailable] = None

    @classmethod
    def unavailable(cls, name: str, reason: str) -> "MetricSample":
        return cls(name=name, error=MetricUnavailable(reason, metric_name=name))

    @property
    def available(self) -> bool:
        return self.error is None and self.current_value is not None


def desired_replicas_for_metric(current_value: Optional[float], target_value: Optional[float],
                                current_replicas: int, tolerance: float,
                                metric_name: str = "metric") -> int:
    """Raw desired replica count for a single metric."""
    if current_value is None:
        raise MetricUnavailable(f"no current value for {metric_name}", metric_name=metric_name)
    if not math.isfinite(current_value):
        raise MetricUnavailable(f"non-finite value {current_value!r} for {metric_name}", metric_name=metric_name)
    if target_value is None or not math.isfinite(target_value) or target_value <= 0:
        raise MetricUnavailable(f"invalid target {target_value!r} for {metric_name}", metric_name=metric_name)
    if current_replicas <= 0:
        raise MetricUnavailable(
            f"cannot compute {metric_name} utilization with {current_replicas} replicas",
            metric_name=metric_name,
        )

    ratio = current_value / target_value
    if abs(ratio - 1.0) <= tolerance + FLOAT_EPSILON:
        return current_replicas

    usage = current_replicas * current_value / target_value
    return max(1, math.ceil(usage - FLOAT_EPSILON))


def recommend_replicas(samples: Sequence[MetricSample], current_replicas: int, tolerance: float) -> int:
    """
    Largest recommendation across all metrics.

    Raises MetricUnavailable when no metric produced a value. When only some
    metrics failed, the result never goes below ``current_replicas``: a
    missing metric might have been the one asking for more pods.
    """
    recommendations = []
    failures = []
    for sample in samples:
        if sample.error is not None:
            failures.append(sample.error)
            continue
        try:
            recommendations.append(
                desired_replicas_for_metric(
                    sample.current_value, sample.target_value, current_replicas, tolerance, sample.name
                )
            )
        except MetricUnavailable as e:
            failures.append(e)

    if not recommendations:
        if failures:
            raise failures[0]
        raise MetricUnavailable("no metrics configured")

    recommendation = max(recommendations)
    if failures and recommendation < current_replicas:
        logger.debug(
            f"{len(failures)} metric(s) unavailable, holding at {current_replicas} instead of {recommendation}"
        )
        recommendation = current_replicas
    return recommendation
