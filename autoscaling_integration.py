#!/usr/bin/env python3
"""
BehaviorHPA Controller
======================

Wires the decision engine to a metric source and a scale client.

Every registered autoscaler is reconciled periodically by a pool of worker
threads pulling keys from a de-duplicating work queue. A key is never
processed by two workers at once, so each autoscaler's history/ledger pair
has a single writer. Failed ticks (metrics unavailable, scale update
rejected) are re-queued with exponential backoff.
"""

import argparse
import logging
import signal
import threading
import time
from collections import deque
from datetime import datetime
from typing import Callable, Dict, List, Optional

from autoscaling_engine import AutoscalerState, DecisionEngine
from config import (
    BACKOFF_BASE_SECONDS,
    BACKOFF_MAX_SECONDS,
    RECONCILE_INTERVAL_SECONDS,
    WORKER_COUNT,
)
from hpa_spec import AutoscalerSpec, load_autoscaler_specs
from hpa_validation import admit
from k8s_metrics_collector import KubernetesMetricsCollector
from k8s_scale_client import KubectlScaleClient
from logging_utils import get_app_logger
from replica_calculator import MetricSample
from scaling_decision import AutoscalerStatus, Decision
from scaling_errors import ApplyFailed, AutoscalingError, MetricUnavailable, ScaleTargetUnavailable

logger = logging.getLogger(__name__)


class WorkQueue:
    """
    Keyed work queue with at-least-once delivery.

    A key already waiting is not queued twice. A key added while a worker
    holds it is marked dirty and queued again once that worker calls done().
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._queue = deque()
        self._queued = set()
        self._processing = set()
        self._dirty = set()
        self._timers: List[threading.Timer] = []
        self._shutting_down = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    def add(self, key: str) -> None:
        with self._cond:
            if self._shutting_down:
                return
            if key in self._processing:
                self._dirty.add(key)
                return
            if key in self._queued:
                return
            self._queued.add(key)
            self._queue.append(key)
            self._cond.notify()

    def add_after(self, key: str, delay: float) -> None:
        if delay <= 0:
            self.add(key)
            return
        timer = threading.Timer(delay, self.add, args=(key,))
        timer.daemon = True
        with self._cond:
            self._timers = [t for t in self._timers if t.is_alive()]
            self._timers.append(timer)
        timer.start()

    def get(self, timeout: Optional[float] = None) -> Optional[str]:
        with self._cond:
            while not self._queue and not self._shutting_down:
                if not self._cond.wait(timeout):
                    return None
            if not self._queue:
                return None
            key = self._queue.popleft()
            self._queued.discard(key)
            self._processing.add(key)
            return key

    def done(self, key: str) -> None:
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._dirty.discard(key)
                self._queued.add(key)
                self._queue.append(key)
                self._cond.notify()

    def shutdown(self) -> None:
        with self._cond:
            self._shutting_down = True
            for timer in self._timers:
                timer.cancel()
            self._timers = []
            self._cond.notify_all()


class AutoscalingController:
    """Reconciles registered autoscalers against the cluster"""

    def __init__(self, scale_client, metric_source,
                 engine: Optional[DecisionEngine] = None,
                 clock: Callable[[], float] = time.time,
                 feature_gates: Optional[Dict[str, bool]] = None,
                 worker_count: int = WORKER_COUNT,
                 resync_interval: float = RECONCILE_INTERVAL_SECONDS):
        self.scale_client = scale_client
        self.metric_source = metric_source
        self.engine = engine or DecisionEngine()
        self.clock = clock
        self.feature_gates = feature_gates
        self.worker_count = worker_count
        self.resync_interval = resync_interval

        self.queue = WorkQueue()
        self._lock = threading.Lock()
        self._specs: Dict[str, AutoscalerSpec] = {}
        self._states: Dict[str, AutoscalerState] = {}
        self._statuses: Dict[str, AutoscalerStatus] = {}
        self._failures: Dict[str, int] = {}

        self._running = False
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def add_autoscaler(self, spec: AutoscalerSpec) -> AutoscalerSpec:
        """Admit a new or updated spec and queue it. Raises InvalidSpec."""
        with self._lock:
            old_spec = self._specs.get(spec.key)
        admit(spec, old_spec, self.feature_gates)

        with self._lock:
            self._specs[spec.key] = spec
            self._statuses.setdefault(spec.key, AutoscalerStatus())
        logger.info(f"{'Updated' if old_spec else 'Registered'} autoscaler {spec.key}")
        self.queue.add(spec.key)
        return spec

    def remove_autoscaler(self, key: str) -> bool:
        """Forget an autoscaler together with its history and ledger."""
        with self._lock:
            existed = self._specs.pop(key, None) is not None
            self._states.pop(key, None)
            self._statuses.pop(key, None)
            self._failures.pop(key, None)
        if existed:
            logger.info(f"Removed autoscaler {key}")
        return existed

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(self._specs)

    def get_status(self, key: str) -> Optional[AutoscalerStatus]:
        with self._lock:
            return self._statuses.get(key)

    def get_state(self, key: str) -> Optional[AutoscalerState]:
        with self._lock:
            return self._states.get(key)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def _collect_metrics(self, spec: AutoscalerSpec, current_replicas: int) -> List[MetricSample]:
        samples = []
        for metric in spec.metrics:
            try:
                samples.append(self.metric_source.get_utilization(spec, metric, current_replicas))
            except MetricUnavailable as e:
                logger.warning(f"{spec.key}: {metric.describe()} unavailable: {e}")
                samples.append(MetricSample(name=metric.describe(), error=e))
        return samples

    def _backoff(self, key: str) -> float:
        with self._lock:
            failures = self._failures.get(key, 0)
            if key in self._specs:
                self._failures[key] = failures + 1
        return min(BACKOFF_MAX_SECONDS, BACKOFF_BASE_SECONDS * (2 ** failures))

    def _requeue_with_backoff(self, key: str, error: AutoscalingError) -> None:
        delay = self._backoff(key)
        logger.warning(f"⚠️ {key}: {error.reason}, retrying in {delay:.0f}s")
        self.queue.add_after(key, delay)

    def reconcile(self, key: str) -> Optional[Decision]:
        """Run one tick for ``key``. Returns the Decision, or None if none was made."""
        with self._lock:
            spec = self._specs.get(key)
            if spec is None:
                return None
            state = self._states.setdefault(key, AutoscalerState())
            status = self._statuses.setdefault(key, AutoscalerStatus())

        now = self.clock()
        ref = spec.scale_target_ref

        try:
            current = self.scale_client.get_replicas(ref, spec.namespace)
        except ScaleTargetUnavailable as e:
            status.set_condition("AbleToScale", False, e.reason, str(e))
            status.record_error(e)
            self._requeue_with_backoff(key, e)
            return None

        samples = self._collect_metrics(spec, current)
        decision = self.engine.decide(spec, state, current, samples, now)

        status.current_replicas = current
        status.current_metrics = {s.name: s.current_value for s in samples if s.available}
        if decision.error is not None:
            status.set_condition("ScalingActive", False, decision.error.reason, str(decision.error))
            status.record_error(decision.error)
        elif decision.reason == "ScalingDisabled":
            status.set_condition("ScalingActive", False, "ScalingDisabled",
                                 "scaling is disabled since the replica count of the target is zero")
        else:
            status.set_condition("ScalingActive", True, "ValidMetricFound",
                                 "the autoscaler was able to compute a replica count from metrics")

        if decision.applied_policy or decision.clamped_by_min or decision.clamped_by_max:
            status.set_condition("ScalingLimited", True, decision.reason,
                                 decision.applied_policy or "the desired count is outside [min, max]")
        else:
            status.set_condition("ScalingLimited", False, "DesiredWithinRange",
                                 "the desired count is within the acceptable range")

        if decision.requires_apply:
            try:
                self.scale_client.set_replicas(ref, decision.desired_replicas, spec.namespace)
            except ApplyFailed as e:
                status.set_condition("AbleToScale", False, e.reason, str(e))
                status.record_error(e)
                self._requeue_with_backoff(key, e)
                return decision

            self.engine.confirm_applied(state, decision)
            status.last_scale_time = datetime.fromtimestamp(now).isoformat()
            status.set_condition("AbleToScale", True, "SucceededRescale",
                                 f"scaled from {current} to {decision.desired_replicas}")
        else:
            status.set_condition("AbleToScale", True, "ReadyForNewScale",
                                 "recommended size matches current size")

        status.desired_replicas = decision.desired_replicas

        if decision.error is not None:
            self._requeue_with_backoff(key, decision.error)
        else:
            with self._lock:
                self._failures.pop(key, None)
        return decision

    def process_next(self, timeout: Optional[float] = None) -> bool:
        """Pull one key from the queue and reconcile it. False when nothing was pulled."""
        key = self.queue.get(timeout)
        if key is None:
            return False
        try:
            self.reconcile(key)
        except Exception as e:
            logger.error(f"❌ Unexpected error reconciling {key}: {e}", exc_info=True)
            self.queue.add_after(key, self._backoff(key))
        finally:
            self.queue.done(key)
        return True

    def resync(self) -> None:
        for key in self.keys():
            self.queue.add(key)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._stop_event.clear()
        # A stopped queue stays shut down, so each run gets a fresh one
        self.queue = WorkQueue()
        self.resync()

        def worker_loop():
            while self._running:
                self.process_next(timeout=1.0)

        def resync_loop():
            while not self._stop_event.wait(self.resync_interval):
                self.resync()

        for i in range(self.worker_count):
            thread = threading.Thread(target=worker_loop, name=f"hpa-worker-{i}", daemon=True)
            thread.start()
            self._threads.append(thread)
        resync_thread = threading.Thread(target=resync_loop, name="hpa-resync", daemon=True)
        resync_thread.start()
        self._threads.append(resync_thread)
        logger.info(f"✅ Started {self.worker_count} worker(s), resync every {self.resync_interval}s")

    def stop(self, timeout: float = 5.0) -> None:
        self._running = False
        self._stop_event.set()
        self.queue.shutdown()
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads = []
        logger.info("🛑 Stopped autoscaling controller")


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the behavior-aware horizontal autoscaler against a cluster")
    parser.add_argument("--manifest", required=True, help="YAML file with HorizontalPodAutoscaler documents")
    parser.add_argument("--kubeconfig", default=None, help="Path to kubeconfig (defaults to in-cluster / ~/.kube/config)")
    parser.add_argument("--workers", type=int, default=WORKER_COUNT)
    parser.add_argument("--interval", type=float, default=RECONCILE_INTERVAL_SECONDS)
    args = parser.parse_args()

    get_app_logger("")

    controller = AutoscalingController(
        KubectlScaleClient(args.kubeconfig),
        KubernetesMetricsCollector(args.kubeconfig),
        worker_count=args.workers,
        resync_interval=args.interval,
    )
    for spec in load_autoscaler_specs(args.manifest):
        controller.add_autoscaler(spec)

    stop = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: stop.set())
    signal.signal(signal.SIGTERM, lambda *_: stop.set())

    controller.start()
    stop.wait()
    controller.stop()


if __name__ == "__main__":
    main()
