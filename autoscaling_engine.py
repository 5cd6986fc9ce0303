#!/usr/bin/env python3
"""
BehaviorHPA Decision Engine
===========================

One reconciliation tick, start to finish:

    metric samples -> raw recommendation -> history -> stabilizer
                   -> rate limiter (ledger) -> clamp to [min, max]

The engine performs no I/O. The caller fetches metrics, hands them in, applies
the returned Decision to the scale subresource and only then calls
``confirm_applied`` so the change is charged against the behavior policies.
"""

import logging
from dataclasses import dataclass, field
from typing import Sequence, Tuple

from hpa_spec import AutoscalerSpec
from rate_limiter import ScalingEventLedger, limit_replicas
from recommendation_history import RecommendationHistory, stabilize
from replica_calculator import MetricSample, recommend_replicas
from scaling_decision import Decision, ScalingDirection
from scaling_errors import MetricUnavailable

logger = logging.getLogger(__name__)


@dataclass
class AutoscalerState:
    """History and ledger owned by exactly one autoscaler's reconciliation"""
    history: RecommendationHistory = field(default_factory=RecommendationHistory)
    ledger: ScalingEventLedger = field(default_factory=ScalingEventLedger)


class DecisionEngine:
    """Stateless orchestration over an externally owned AutoscalerState"""

    @staticmethod
    def clamp(spec: AutoscalerSpec, replicas: int) -> Tuple[int, bool, bool]:
        if replicas < spec.min_replicas:
            return spec.min_replicas, True, False
        if replicas > spec.max_replicas:
            return spec.max_replicas, False, True
        return replicas, False, False

    def decide(self, spec: AutoscalerSpec, state: AutoscalerState, current_replicas: int,
               samples: Sequence[MetricSample], now: float) -> Decision:
        if current_replicas <= 0:
            desired, by_min, by_max = self.clamp(spec, 0)
            return Decision(
                desired_replicas=desired,
                current_replicas=current_replicas,
                timestamp=now,
                clamped_by_min=by_min,
                clamped_by_max=by_max,
                reason="ScalingDisabled",
            )

        try:
            raw = recommend_replicas(samples, current_replicas, spec.tolerance_ratio)
        except MetricUnavailable as e:
            logger.warning(f"{spec.key}: metrics unavailable, keeping {current_replicas} replicas: {e}")
            desired, by_min, by_max = self.clamp(spec, current_replicas)
            return Decision(
                desired_replicas=desired,
                current_replicas=current_replicas,
                timestamp=now,
                clamped_by_min=by_min,
                clamped_by_max=by_max,
                reason=e.reason,
                error=e,
            )

        state.history.append(now, raw)
        state.history.prune(now, spec.history_horizon())
        stabilized = stabilize(state.history, spec.behavior, raw, current_replicas, now)

        state.ledger.prune(now, spec.ledger_horizon())
        limited, applied_policy = limit_replicas(spec.behavior, state.ledger, current_replicas, stabilized, now)
        desired, by_min, by_max = self.clamp(spec, limited)

        decision = Decision(
            desired_replicas=desired,
            current_replicas=current_replicas,
            timestamp=now,
            applied_policy=applied_policy,
            clamped_by_min=by_min,
            clamped_by_max=by_max,
            raw_recommendation=raw,
            stabilized_recommendation=stabilized,
            reason=self._reason(current_replicas, raw, stabilized, limited, desired, by_min, by_max),
        )

        if decision.requires_apply:
            logger.info(
                f"{spec.key}: {current_replicas} -> {desired} "
                f"(raw={raw}, stabilized={stabilized}, policy={applied_policy}, reason={decision.reason})"
            )
        else:
            logger.debug(f"{spec.key}: holding at {current_replicas} (raw={raw}, reason={decision.reason})")
        return decision

    @staticmethod
    def _reason(current: int, raw: int, stabilized: int, limited: int, desired: int,
                by_min: bool, by_max: bool) -> str:
        if by_min:
            return "TooFewReplicas"
        if by_max:
            return "TooManyReplicas"
        if raw == current:
            return "WithinTolerance"
        if stabilized == current:
            return "Stabilized"
        if limited != stabilized:
            return "RateLimited"
        return "ScaleUp" if ScalingDirection.of(current, desired) == ScalingDirection.UP else "ScaleDown"

    @staticmethod
    def confirm_applied(state: AutoscalerState, decision: Decision) -> bool:
        """
        Charge an applied decision against the behavior policies. Call only
        after the scale subresource accepted the change. Returns False when
        there was nothing to record or it was already recorded.
        """
        if not decision.requires_apply:
            return False
        return state.ledger.record(decision.timestamp, decision.current_replicas, decision.desired_replicas)
