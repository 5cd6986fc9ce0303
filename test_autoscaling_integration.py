#!/usr/bin/env python3
"""
Controller tests against an in-memory scale target and scripted metrics
"""

import threading

import pytest

from autoscaling_integration import AutoscalingController, WorkQueue
from behavior_simulator import FakeClock, InMemoryScaleTarget, ScriptedMetricSource
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
)
from scaling_errors import InvalidSpec, ScaleTargetUnavailable


def _spec(name="web", min_replicas=1, max_replicas=5, up=None):
    return AutoscalerSpec(
        name=name,
        scale_target_ref=ScaleTargetRef(name),
        min_replicas=min_replicas,
        max_replicas=max_replicas,
        metrics=[MetricSpec(MetricSourceType.RESOURCE, "cpu", MetricTarget(MetricTargetType.UTILIZATION, 50))],
        behavior=Behavior(scale_up=up or ScalingRules(0, [ScalingPolicy(PolicyType.PODS, 1, 90)])),
    )


def _wait_for_replicas(controller, replicas):
    for _ in range(200):
        if controller.scale_client.replicas == replicas:
            return
        threading.Event().wait(0.01)


class _UnreadableTarget(InMemoryScaleTarget):
    def get_replicas(self, ref, namespace="default"):
        raise ScaleTargetUnavailable(f"deployment/{ref.name} not found")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def load():
    return {"value": 150.0}


@pytest.fixture
def controller(clock, load):
    target = InMemoryScaleTarget(1)
    source = ScriptedMetricSource(clock, lambda now: load["value"])
    return AutoscalingController(target, source, clock=clock, worker_count=1)


class TestWorkQueue:
    def test_deduplicates_waiting_keys(self):
        queue = WorkQueue()
        queue.add("default/web")
        queue.add("default/web")
        assert len(queue) == 1

    def test_key_added_while_processing_is_requeued_on_done(self):
        queue = WorkQueue()
        queue.add("default/web")
        key = queue.get(timeout=0)
        queue.add("default/web")
        assert len(queue) == 0

        queue.done(key)
        assert queue.get(timeout=0) == "default/web"

    def test_get_times_out_when_empty(self):
        assert WorkQueue().get(timeout=0.01) is None

    def test_shutdown_releases_waiters(self):
        queue = WorkQueue()
        results = []
        waiter = threading.Thread(target=lambda: results.append(queue.get()))
        waiter.start()
        queue.shutdown()
        waiter.join(timeout=2)
        assert results == [None]


class TestRegistration:
    def test_add_and_remove(self, controller):
        controller.add_autoscaler(_spec())
        assert controller.keys() == ["default/web"]
        assert controller.remove_autoscaler("default/web") is True
        assert controller.keys() == []
        assert controller.remove_autoscaler("default/web") is False

    def test_invalid_spec_rejected(self, controller):
        with pytest.raises(InvalidSpec):
            controller.add_autoscaler(_spec(min_replicas=4, max_replicas=2))
        assert controller.keys() == []

    def test_update_keeps_state(self, controller, clock):
        controller.add_autoscaler(_spec())
        controller.reconcile("default/web")
        state = controller.get_state("default/web")

        controller.add_autoscaler(_spec(max_replicas=8))
        assert controller.get_state("default/web") is state

    def test_unknown_key(self, controller):
        assert controller.reconcile("default/missing") is None


class TestReconcile:
    def test_scales_and_records_event(self, controller):
        controller.add_autoscaler(_spec())
        decision = controller.reconcile("default/web")

        assert decision.desired_replicas == 2
        assert controller.scale_client.replicas == 2
        assert len(controller.get_state("default/web").ledger) == 1

        status = controller.get_status("default/web")
        assert status.current_replicas == 1
        assert status.desired_replicas == 2
        assert status.last_scale_time is not None
        assert status.get_condition("AbleToScale").reason == "SucceededRescale"
        assert status.get_condition("ScalingLimited").status == "True"
        assert status.get_condition("ScalingActive").status == "True"

    def test_rate_limit_across_ticks(self, controller, clock):
        controller.add_autoscaler(_spec())
        seen = []
        while clock.now <= 120:
            controller.reconcile("default/web")
            seen.append((clock.now, controller.scale_client.replicas))
            clock.advance(15)
        assert [r for t, r in seen if t < 90] == [2] * 6
        assert dict(seen)[90] == 3

    def test_apply_failure_records_no_event(self, controller):
        controller.add_autoscaler(_spec())
        controller.scale_client.fail_next = 1

        decision = controller.reconcile("default/web")
        assert decision.desired_replicas == 2
        assert controller.scale_client.replicas == 1
        assert len(controller.get_state("default/web").ledger) == 0

        status = controller.get_status("default/web")
        assert status.get_condition("AbleToScale").status == "False"
        assert status.last_error["reason"] == "FailedUpdateScale"

    def test_retry_after_apply_failure_uses_full_budget(self, controller, clock):
        controller.add_autoscaler(_spec())
        controller.scale_client.fail_next = 1
        controller.reconcile("default/web")

        clock.advance(15)
        decision = controller.reconcile("default/web")
        assert decision.desired_replicas == 2
        assert controller.scale_client.replicas == 2

    def test_metrics_outage_reported(self, clock, load):
        source = ScriptedMetricSource(clock, lambda now: load["value"], outages=[(0, 30)])
        controller = AutoscalingController(InMemoryScaleTarget(3), source, clock=clock)
        controller.add_autoscaler(_spec())

        decision = controller.reconcile("default/web")
        assert decision.desired_replicas == 3
        assert decision.error is not None
        status = controller.get_status("default/web")
        assert status.get_condition("ScalingActive").status == "False"
        assert status.get_condition("ScalingActive").reason == "FailedGetMetrics"
        assert status.last_error["type"] == "MetricUnavailable"
        assert status.current_metrics == {}

    def test_unreadable_target(self, clock, load):
        source = ScriptedMetricSource(clock, lambda now: load["value"])
        controller = AutoscalingController(_UnreadableTarget(1), source, clock=clock)
        controller.add_autoscaler(_spec())

        assert controller.reconcile("default/web") is None
        status = controller.get_status("default/web")
        assert status.get_condition("AbleToScale").reason == "FailedGetScale"

    def test_zero_replicas_disables_scaling(self, clock, load):
        target = InMemoryScaleTarget(0)
        controller = AutoscalingController(target, ScriptedMetricSource(clock, lambda now: load["value"]), clock=clock)
        controller.add_autoscaler(_spec(min_replicas=0))

        decision = controller.reconcile("default/web")
        assert decision.desired_replicas == 0
        assert target.updates == []
        assert controller.get_status("default/web").get_condition("ScalingActive").reason == "ScalingDisabled"

    def test_within_tolerance_holds(self, controller, load):
        load["value"] = 52.0
        controller.add_autoscaler(_spec())
        decision = controller.reconcile("default/web")

        assert not decision.requires_apply
        assert controller.scale_client.updates == []
        status = controller.get_status("default/web")
        assert status.get_condition("AbleToScale").reason == "ReadyForNewScale"
        assert status.to_dict()["currentMetrics"] == {"Resource/cpu": 52.0}

    def test_backoff_grows_and_resets(self, controller):
        controller.add_autoscaler(_spec())
        first = controller._backoff("default/web")
        second = controller._backoff("default/web")
        assert second == first * 2

        controller.reconcile("default/web")
        assert controller._backoff("default/web") == first

    def test_backoff_after_removal_leaves_no_entry(self, controller):
        controller.add_autoscaler(_spec())
        controller._backoff("default/web")
        controller.remove_autoscaler("default/web")

        controller._backoff("default/web")
        assert "default/web" not in controller._failures


class TestWorkers:
    def test_process_next_drains_queue(self, controller):
        controller.add_autoscaler(_spec())
        assert controller.process_next(timeout=0) is True
        assert controller.scale_client.replicas == 2
        assert controller.process_next(timeout=0) is False

    def test_start_and_stop(self, controller, clock):
        controller.add_autoscaler(_spec())
        controller.start()
        try:
            _wait_for_replicas(controller, 2)
        finally:
            controller.stop()
        assert controller.scale_client.replicas == 2

        # Restarting after stop() gets a working queue again
        clock.advance(90)
        controller.start()
        try:
            _wait_for_replicas(controller, 3)
        finally:
            controller.stop()
        assert controller.scale_client.replicas == 3
