#!/usr/bin/env python3
"""
BehaviorHPA Admission Strategy
==============================

Runs before an autoscaler is handed to the controller:

- ``prepare_for_create`` / ``prepare_for_update`` clear metric sources whose
  feature gate is off (cleared, not ignored).
- ``validate_autoscaler_spec`` rejects specs the decision engine must never
  see, raising InvalidSpec with every violation found.
"""

import logging
from typing import Dict, List, Optional

from config import default_feature_gates
from hpa_spec import AutoscalerSpec, MetricSourceType, MetricTargetType, ScalingRules, SelectPolicy
from scaling_errors import InvalidSpec

logger = logging.getLogger(__name__)

CONTAINER_METRICS_GATE = "HPAContainerMetrics"

# Same limits the Kubernetes API server applies to autoscaling/v2 behavior
MAX_STABILIZATION_WINDOW_SECONDS = 3600
MAX_PERIOD_SECONDS = 1800


def _gate_enabled(feature_gates: Optional[Dict[str, bool]], gate: str) -> bool:
    if feature_gates is None:
        feature_gates = default_feature_gates()
    return bool(feature_gates.get(gate, False))


def _uses_container_metrics(spec: Optional[AutoscalerSpec]) -> bool:
    return spec is not None and any(m.type == MetricSourceType.CONTAINER_RESOURCE for m in spec.metrics)


def _drop_disabled_fields(spec: AutoscalerSpec, old_spec: Optional[AutoscalerSpec],
                          feature_gates: Optional[Dict[str, bool]]) -> None:
    if _gate_enabled(feature_gates, CONTAINER_METRICS_GATE) or _uses_container_metrics(old_spec):
        return

    kept = [m for m in spec.metrics if m.type != MetricSourceType.CONTAINER_RESOURCE]
    dropped = len(spec.metrics) - len(kept)
    if dropped:
        logger.info(f"{spec.key}: dropped {dropped} ContainerResource metric(s), {CONTAINER_METRICS_GATE} is disabled")
    spec.metrics = kept


def prepare_for_create(spec: AutoscalerSpec, feature_gates: Optional[Dict[str, bool]] = None) -> AutoscalerSpec:
    _drop_disabled_fields(spec, None, feature_gates)
    return spec


def prepare_for_update(spec: AutoscalerSpec, old_spec: AutoscalerSpec,
                       feature_gates: Optional[Dict[str, bool]] = None) -> AutoscalerSpec:
    """Like prepare_for_create, but a source already in use survives the gate."""
    _drop_disabled_fields(spec, old_spec, feature_gates)
    return spec


def _validate_rules(rules: ScalingRules, path: str) -> List[str]:
    errors = []
    window = rules.stabilization_window_seconds
    if window < 0 or window > MAX_STABILIZATION_WINDOW_SECONDS:
        errors.append(f"{path}.stabilizationWindowSeconds must be within [0, {MAX_STABILIZATION_WINDOW_SECONDS}], got {window}")

    if rules.select_policy != SelectPolicy.DISABLED and not rules.policies:
        errors.append(f"{path}.policies must not be empty unless selectPolicy is Disabled")

    seen = set()
    for i, policy in enumerate(rules.policies):
        policy_path = f"{path}.policies[{i}]"
        if policy.value <= 0:
            errors.append(f"{policy_path}.value must be positive, got {policy.value}")
        if policy.period_seconds <= 0 or policy.period_seconds > MAX_PERIOD_SECONDS:
            errors.append(f"{policy_path}.periodSeconds must be within [1, {MAX_PERIOD_SECONDS}], got {policy.period_seconds}")
        identity = (policy.type, policy.period_seconds)
        if identity in seen:
            errors.append(f"{policy_path} duplicates another {policy.type.value} policy over {policy.period_seconds}s")
        seen.add(identity)
    return errors


def validate_autoscaler_spec(spec: AutoscalerSpec) -> AutoscalerSpec:
    errors = []

    if not spec.name:
        errors.append("metadata.name is required")
    if not spec.scale_target_ref.name:
        errors.append("spec.scaleTargetRef.name is required")
    if spec.min_replicas < 0:
        errors.append(f"spec.minReplicas must be >= 0, got {spec.min_replicas}")
    if spec.max_replicas < 1:
        errors.append(f"spec.maxReplicas must be >= 1, got {spec.max_replicas}")
    if spec.min_replicas > spec.max_replicas:
        errors.append(f"spec.minReplicas ({spec.min_replicas}) must be <= spec.maxReplicas ({spec.max_replicas})")
    if not 0 <= spec.tolerance_ratio < 1:
        errors.append(f"spec.toleranceRatio must be within [0, 1), got {spec.tolerance_ratio}")

    if not spec.metrics:
        errors.append("spec.metrics must contain at least one metric")
    for i, metric in enumerate(spec.metrics):
        path = f"spec.metrics[{i}]"
        if not metric.name:
            errors.append(f"{path}.name is required")
        if metric.target.value <= 0:
            errors.append(f"{path}.target value must be positive, got {metric.target.value}")
        if metric.type == MetricSourceType.CONTAINER_RESOURCE and not metric.container:
            errors.append(f"{path}.container is required for ContainerResource metrics")
        if (metric.target.type == MetricTargetType.UTILIZATION
                and metric.type not in (MetricSourceType.RESOURCE, MetricSourceType.CONTAINER_RESOURCE)):
            errors.append(f"{path}: Utilization targets are only valid for Resource metrics")

    errors.extend(_validate_rules(spec.behavior.scale_up, "spec.behavior.scaleUp"))
    errors.extend(_validate_rules(spec.behavior.scale_down, "spec.behavior.scaleDown"))

    if errors:
        raise InvalidSpec([f"{spec.key}: {e}" for e in errors])
    return spec


def admit(spec: AutoscalerSpec, old_spec: Optional[AutoscalerSpec] = None,
          feature_gates: Optional[Dict[str, bool]] = None) -> AutoscalerSpec:
    """Full admission pass: drop disabled fields, then validate."""
    if old_spec is None:
        prepare_for_create(spec, feature_gates)
    else:
        prepare_for_update(spec, old_spec, feature_gates)
    return validate_autoscaler_spec(spec)
