#!/usr/bin/env python3
"""
Tests for recommendation history and the stabilizer
"""

from hpa_spec import Behavior, PolicyType, ScalingPolicy, ScalingRules
from recommendation_history import RecommendationHistory, stabilize


def _behavior(up_window=0, down_window=300):
    return Behavior(
        scale_up=ScalingRules(up_window, [ScalingPolicy(PolicyType.PODS, 4, 15)]),
        scale_down=ScalingRules(down_window, [ScalingPolicy(PolicyType.PERCENT, 100, 15)]),
    )


def _history(*entries):
    history = RecommendationHistory()
    for timestamp, replicas in entries:
        history.append(timestamp, replicas)
    return history


class TestRecommendationHistory:
    def test_append_keeps_order(self):
        history = _history((0, 3), (15, 4), (30, 5))
        assert [e.timestamp for e in history.entries] == [0, 15, 30]
        assert history.latest.desired_replicas == 5

    def test_same_timestamp_replaces_latest(self):
        history = _history((0, 3), (15, 4))
        assert history.append(15, 6) is True
        assert len(history) == 2
        assert history.latest.desired_replicas == 6

    def test_identical_replay_is_a_no_op(self):
        history = _history((0, 3))
        assert history.append(0, 3) is False
        assert len(history) == 1

    def test_stale_timestamp_ignored(self):
        history = _history((30, 3))
        assert history.append(15, 9) is False
        assert history.latest.desired_replicas == 3

    def test_prune_drops_entries_past_horizon(self):
        history = _history((0, 3), (100, 4), (200, 5))
        assert history.prune(now=300, horizon_seconds=150) == 2
        assert [e.timestamp for e in history.entries] == [200]

    def test_within_window_is_inclusive(self):
        history = _history((0, 3), (60, 4), (120, 5))
        assert [e.desired_replicas for e in history.within(120, 60)] == [4, 5]
        assert [e.desired_replicas for e in history.within(120, 0)] == [5]


class TestStabilize:
    def test_scale_down_takes_max_in_window(self):
        history = _history((0, 8), (100, 4), (200, 3))
        assert stabilize(history, _behavior(), 3, 6, now=200) == 6

    def test_scale_down_spike_outside_window_ignored(self):
        history = _history((0, 8), (100, 4), (400, 3))
        assert stabilize(history, _behavior(), 3, 6, now=400) == 4

    def test_scale_down_never_above_current(self):
        history = _history((0, 9), (15, 2))
        assert stabilize(history, _behavior(), 2, 5, now=15) == 5

    def test_scale_up_zero_window_follows_recommendation(self):
        history = _history((0, 2), (15, 7))
        assert stabilize(history, _behavior(), 7, 3, now=15) == 7

    def test_scale_up_window_takes_min(self):
        history = _history((0, 5), (30, 8), (60, 10))
        assert stabilize(history, _behavior(up_window=60), 10, 3, now=60) == 5

    def test_scale_up_never_below_current(self):
        history = _history((0, 2), (30, 9))
        assert stabilize(history, _behavior(up_window=60), 9, 4, now=30) == 4

    def test_unchanged_recommendation_passes_through(self):
        history = _history((0, 9))
        assert stabilize(history, _behavior(), 4, 4, now=0) == 4

    def test_empty_history_uses_recommendation(self):
        assert stabilize(RecommendationHistory(), _behavior(), 2, 5, now=0) == 2
