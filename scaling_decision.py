#!/usr/bin/env python3
"""
Decision and status records exchanged between the engine and its caller.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from scaling_errors import AutoscalingError


class ScalingDirection:
    NONE = "none"
    UP = "up"
    DOWN = "down"

    @staticmethod
    def of(current: int, desired: int) -> str:
        if desired > current:
            return ScalingDirection.UP
        if desired < current:
            return ScalingDirection.DOWN
        return ScalingDirection.NONE


@dataclass(frozen=True)
class Decision:
    desired_replicas: int
    current_replicas: int
    timestamp: float
    applied_policy: Optional[str] = None
    clamped_by_min: bool = False
    clamped_by_max: bool = False
    raw_recommendation: Optional[int] = None
    stabilized_recommendation: Optional[int] = None
    reason: str = ""
    error: Optional[AutoscalingError] = None

    @property
    def direction(self) -> str:
        return ScalingDirection.of(self.current_replicas, self.desired_replicas)

    @property
    def requires_apply(self) -> bool:
        return self.desired_replicas != self.current_replicas

    def to_dict(self) -> Dict[str, Any]:
        return {
            "desired_replicas": self.desired_replicas,
            "current_replicas": self.current_replicas,
            "direction": self.direction,
            "applied_policy": self.applied_policy,
            "clamped_by_min": self.clamped_by_min,
            "clamped_by_max": self.clamped_by_max,
            "raw_recommendation": self.raw_recommendation,
            "stabilized_recommendation": self.stabilized_recommendation,
            "reason": self.reason,
            "error": type(self.error).__name__ if self.error else None,
            "timestamp": self.timestamp,
        }


@dataclass
class Condition:
    type: str
    status: str
    reason: str
    message: str = ""
    last_transition_time: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "status": self.status,
            "reason": self.reason,
            "message": self.message,
            "lastTransitionTime": self.last_transition_time,
        }


@dataclass
class AutoscalerStatus:
    """What the controller persists for operators after each tick"""
    current_replicas: int = 0
    desired_replicas: int = 0
    current_metrics: Dict[str, float] = field(default_factory=dict)
    last_scale_time: Optional[str] = None
    conditions: List[Condition] = field(default_factory=list)
    last_error: Optional[Dict[str, str]] = None

    def set_condition(self, type_: str, status: bool, reason: str, message: str = "") -> None:
        status_str = "True" if status else "False"
        for existing in self.conditions:
            if existing.type != type_:
                continue
            if existing.status != status_str:
                existing.last_transition_time = datetime.now().isoformat()
            existing.status = status_str
            existing.reason = reason
            existing.message = message
            return
        self.conditions.append(Condition(type_, status_str, reason, message))

    def get_condition(self, type_: str) -> Optional[Condition]:
        for condition in self.conditions:
            if condition.type == type_:
                return condition
        return None

    def record_error(self, error: AutoscalingError) -> None:
        self.last_error = {
            "type": type(error).__name__,
            "reason": error.reason,
            "message": str(error),
            "time": datetime.now().isoformat(),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currentReplicas": self.current_replicas,
            "desiredReplicas": self.desired_replicas,
            "currentMetrics": dict(self.current_metrics),
            "lastScaleTime": self.last_scale_time,
            "conditions": [c.to_dict() for c in self.conditions],
            "lastError": self.last_error,
        }
