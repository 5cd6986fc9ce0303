#!/usr/bin/env python3
"""
Central runtime configuration defaults for BehaviorHPA services.
"""

import os


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# Reconciliation cadence
RECONCILE_INTERVAL_SECONDS = float(os.getenv("RECONCILE_INTERVAL_SECONDS", "15"))
WORKER_COUNT = int(os.getenv("WORKER_COUNT", "2"))

# Requeue backoff after MetricUnavailable / ApplyFailed
BACKOFF_BASE_SECONDS = float(os.getenv("BACKOFF_BASE_SECONDS", "5"))
BACKOFF_MAX_SECONDS = float(os.getenv("BACKOFF_MAX_SECONDS", "300"))

# Decision defaults (applied when a manifest leaves them out)
DEFAULT_MIN_REPLICAS = int(os.getenv("DEFAULT_MIN_REPLICAS", "1"))
DEFAULT_TOLERANCE_RATIO = float(os.getenv("DEFAULT_TOLERANCE_RATIO", "0.10"))
DEFAULT_SCALE_UP_STABILIZATION_SECONDS = int(os.getenv("DEFAULT_SCALE_UP_STABILIZATION_SECONDS", "0"))
DEFAULT_SCALE_DOWN_STABILIZATION_SECONDS = int(os.getenv("DEFAULT_SCALE_DOWN_STABILIZATION_SECONDS", "300"))

# Admission feature gates
HPA_CONTAINER_METRICS_ENABLED = _env_bool("HPA_CONTAINER_METRICS_ENABLED", "true")

# Cluster access
KUBECONFIG_PATH = os.getenv("KUBECONFIG_PATH") or None
KUBECTL_TIMEOUT_SECONDS = int(os.getenv("KUBECTL_TIMEOUT_SECONDS", "30"))
PROMETHEUS_URL = os.getenv("PROMETHEUS_URL", "http://127.0.0.1:9090")
PROMETHEUS_TIMEOUT_SECONDS = float(os.getenv("PROMETHEUS_TIMEOUT_SECONDS", "10"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE") or None


def default_feature_gates() -> dict:
    return {"HPAContainerMetrics": HPA_CONTAINER_METRICS_ENABLED}
