#!/usr/bin/env python3
"""
BehaviorHPA Behavior Simulator
==============================

Replays scaling scenarios through the real controller and decision engine
with a fake clock, an in-memory scale target and a scripted load, so
behavior policies can be checked without a cluster.

Load is modelled as a total amount of work spread evenly over the running
pods: per-pod value = load(t) / replicas.

Usage:
    python behavior_simulator.py --scenario scale_up_pods
    python behavior_simulator.py --manifest hpa.yaml --load 0:150 --load 300:40 --duration 600
"""

import argparse
import json
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from autoscaling_integration import AutoscalingController
from hpa_spec import (
    AutoscalerSpec,
    Behavior,
    MetricSourceType,
    MetricSpec,
    MetricTarget,
    MetricTargetType,
    PolicyType,
    ScaleTargetRef,
    ScalingPolicy,
    ScalingRules,
    SelectPolicy,
    load_autoscaler_specs,
)
from hpa_validation import admit
from logging_utils import get_app_logger
from replica_calculator import MetricSample
from scaling_errors import ApplyFailed, MetricUnavailable

logger = logging.getLogger(__name__)


class FakeClock:
    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class InMemoryScaleTarget:
    """Scale subresource stand-in; ``fail_next`` rejects that many updates"""

    def __init__(self, replicas: int):
        self.replicas = replicas
        self.fail_next = 0
        self.updates: List[int] = []

    def get_replicas(self, ref: ScaleTargetRef, namespace: str = "default") -> int:
        return self.replicas

    def set_replicas(self, ref: ScaleTargetRef, replicas: int, namespace: str = "default") -> None:
        if self.fail_next > 0:
            self.fail_next -= 1
            raise ApplyFailed(f"simulated rejection scaling {ref.name} to {replicas}", desired_replicas=replicas)
        self.replicas = replicas
        self.updates.append(replicas)


class ScriptedMetricSource:
    """Per-pod metric derived from a load curve over the fake clock"""

    def __init__(self, clock: Callable[[], float], load: Callable[[float], float],
                 noise: float = 0.0, seed: int = 42,
                 outages: Optional[List[Tuple[float, float]]] = None):
        self.clock = clock
        self.load = load
        self.noise = noise
        self.rng = random.Random(seed)
        self.outages = outages or []

    def get_utilization(self, spec: AutoscalerSpec, metric: MetricSpec, current_replicas: int) -> MetricSample:
        now = self.clock()
        name = metric.describe()
        for start, end in self.outages:
            if start <= now < end:
                raise MetricUnavailable(f"simulated outage at t={now:.0f}s", metric_name=name)
        if current_replicas <= 0:
            raise MetricUnavailable("no running pods", metric_name=name)

        per_pod = self.load(now) / current_replicas
        if self.noise:
            per_pod = max(0.0, per_pod + self.rng.gauss(0.0, self.noise))
        return MetricSample(name=name, current_value=per_pod, target_value=metric.target.value)


def step_load(points: List[Tuple[float, float]]) -> Callable[[float], float]:
    """Piecewise-constant load: each (t, value) holds until the next point."""
    ordered = sorted(points)

    def load(now: float) -> float:
        value = ordered[0][1]
        for t, v in ordered:
            if now >= t:
                value = v
        return value

    return load


# ---------------------------------------------------------------------------
# Built-in scenarios
# ---------------------------------------------------------------------------

def _cpu_metric(target_utilization: float = 50.0) -> List[MetricSpec]:
    return [
        MetricSpec(
            MetricSourceType.RESOURCE,
            "cpu",
            MetricTarget(MetricTargetType.UTILIZATION, target_utilization),
        )
    ]


def _spec(name: str, min_replicas: int, max_replicas: int,
          scale_up: Optional[ScalingRules] = None,
          scale_down: Optional[ScalingRules] = None) -> AutoscalerSpec:
    return AutoscalerSpec(
        name=name,
        scale_target_ref=ScaleTargetRef(name=f"{name}-deployment"),
        min_replicas=min_replicas,
        max_replicas=max_replicas,
        metrics=_cpu_metric(),
        behavior=Behavior(
            scale_up=scale_up or ScalingRules.default_scale_up(),
            scale_down=scale_down or ScalingRules.default_scale_down(),
        ),
    )


@dataclass
class ScenarioConfig:
    name: str
    spec: AutoscalerSpec
    start_replicas: int
    load_points: List[Tuple[float, float]]
    expected_replicas: int
    duration: float = 300.0
    step: float = 15.0
    outages: List[Tuple[float, float]] = field(default_factory=list)


def build_scenarios() -> Dict[str, ScenarioConfig]:
    # Target is 50% CPU, so a total load of 50 * N settles at N replicas.
    return {
        "scale_up_pods": ScenarioConfig(
            name="scale_up_pods",
            spec=_spec(
                "scale-up-pods", 1, 5,
                scale_up=ScalingRules(0, [ScalingPolicy(PolicyType.PODS, 1, 90)]),
            ),
            start_replicas=1,
            load_points=[(0, 150.0)],
            expected_replicas=3,
        ),
        "scale_down_pods": ScenarioConfig(
            name="scale_down_pods",
            spec=_spec(
                "scale-down-pods", 1, 5,
                scale_down=ScalingRules(300, [ScalingPolicy(PolicyType.PODS, 1, 150)]),
            ),
            start_replicas=5,
            load_points=[(0, 150.0)],
            expected_replicas=3,
        ),
        "scale_up_percent": ScenarioConfig(
            name="scale_up_percent",
            spec=_spec(
                "scale-up-percent", 3, 10,
                scale_up=ScalingRules(0, [ScalingPolicy(PolicyType.PERCENT, 40, 60)]),
            ),
            start_replicas=3,
            load_points=[(0, 350.0)],
            expected_replicas=7,
        ),
        "scale_up_disabled": ScenarioConfig(
            name="scale_up_disabled",
            spec=_spec(
                "scale-up-disabled", 1, 10,
                scale_up=ScalingRules(0, [ScalingPolicy(PolicyType.PODS, 4, 15)], SelectPolicy.DISABLED),
            ),
            start_replicas=2,
            load_points=[(0, 400.0)],
            expected_replicas=2,
        ),
    }


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

@dataclass
class SimulationResult:
    name: str
    timeline: List[Dict[str, Any]]
    final_replicas: int

    def time_to_reach(self, replicas: int) -> Optional[float]:
        """First tick time at which the target held ``replicas``."""
        for entry in self.timeline:
            if entry["replicas_after"] == replicas:
                return entry["t"]
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scenario": self.name,
            "final_replicas": self.final_replicas,
            "timeline": self.timeline,
        }


def run_simulation(spec: AutoscalerSpec, start_replicas: int, load: Callable[[float], float],
                   duration: float, step: float = 15.0, noise: float = 0.0, seed: int = 42,
                   outages: Optional[List[Tuple[float, float]]] = None,
                   name: Optional[str] = None) -> SimulationResult:
    clock = FakeClock()
    target = InMemoryScaleTarget(start_replicas)
    source = ScriptedMetricSource(clock, load, noise=noise, seed=seed, outages=outages)
    controller = AutoscalingController(target, source, clock=clock)
    controller.add_autoscaler(spec)

    timeline = []
    while clock.now <= duration:
        before = target.replicas
        decision = controller.reconcile(spec.key)
        timeline.append({
            "t": clock.now,
            "replicas_before": before,
            "replicas_after": target.replicas,
            "raw": decision.raw_recommendation if decision else None,
            "reason": decision.reason if decision else None,
            "applied_policy": decision.applied_policy if decision else None,
        })
        clock.advance(step)

    return SimulationResult(name or spec.name, timeline, target.replicas)


def run_scenario(scenario: ScenarioConfig, noise: float = 0.0, seed: int = 42) -> SimulationResult:
    return run_simulation(
        scenario.spec,
        scenario.start_replicas,
        step_load(scenario.load_points),
        scenario.duration,
        step=scenario.step,
        noise=noise,
        seed=seed,
        outages=scenario.outages,
        name=scenario.name,
    )


def _parse_load_point(raw: str) -> Tuple[float, float]:
    t, value = raw.split(":", 1)
    return float(t), float(value)


def main() -> None:
    scenarios = build_scenarios()
    parser = argparse.ArgumentParser(description="Simulate HPA behavior policies with a fake clock")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--scenario", choices=sorted(scenarios.keys()))
    source.add_argument("--manifest", help="YAML file; the first HorizontalPodAutoscaler is simulated")
    parser.add_argument("--load", action="append", default=[], help="t:total_load step, repeatable (manifest mode)")
    parser.add_argument("--start-replicas", type=int, default=1)
    parser.add_argument("--duration", type=float, default=300.0)
    parser.add_argument("--step", type=float, default=15.0)
    parser.add_argument("--noise", type=float, default=0.0, help="Gaussian noise stddev on the per-pod value")
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--output", help="Write the JSON timeline here instead of stdout")
    args = parser.parse_args()

    get_app_logger("", level="WARNING")

    if args.scenario:
        result = run_scenario(scenarios[args.scenario], noise=args.noise, seed=args.seed)
    else:
        specs = load_autoscaler_specs(args.manifest)
        if not specs:
            parser.error(f"no HorizontalPodAutoscaler found in {args.manifest}")
        if not args.load:
            parser.error("--load is required with --manifest")
        spec = admit(specs[0])
        result = run_simulation(
            spec,
            args.start_replicas,
            step_load([_parse_load_point(p) for p in args.load]),
            args.duration,
            step=args.step,
            noise=args.noise,
            seed=args.seed,
        )

    output = json.dumps(result.to_dict(), indent=2)
    if args.output:
        with open(args.output, "w") as f:
            f.write(output)
        print(f"Saved simulation timeline: {args.output}")
    else:
        print(output)


if __name__ == "__main__":
    main()
