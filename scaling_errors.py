#!/usr/bin/env python3
"""
BehaviorHPA Errors
==================

Typed failures raised by the decision engine, the admission strategy and the
cluster adapters. Callers match on the class, never on message text.
"""

from typing import List, Optional


class AutoscalingError(Exception):
    """Base class for all autoscaling failures"""

    reason = "AutoscalingError"


class MetricUnavailable(AutoscalingError):
    """A metric value could not be obtained for this tick"""

    reason = "FailedGetMetrics"

    def __init__(self, message: str, metric_name: Optional[str] = None):
        super().__init__(message)
        self.metric_name = metric_name


class InvalidSpec(AutoscalingError):
    """The autoscaler spec was rejected at admission"""

    reason = "InvalidSpec"

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "invalid autoscaler spec")


class ScaleTargetUnavailable(AutoscalingError):
    """The scale subresource could not be read"""

    reason = "FailedGetScale"


class ApplyFailed(AutoscalingError):
    """Setting replicas on the scale subresource failed"""

    reason = "FailedUpdateScale"

    def __init__(self, message: str, desired_replicas: Optional[int] = None):
        super().__init__(message)
        self.desired_replicas = desired_replicas
