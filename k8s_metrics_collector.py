#!/usr/bin/env python3
"""
Kubernetes Metrics Collector
============================

Metric source for the controller. Resolves one MetricSpec of an autoscaler
into a (current value, target value) sample:

- Resource / ContainerResource: pod usage from the ``metrics.k8s.io`` API,
  compared with the pods' resource requests for Utilization targets.
- Pods / Object / External: instant queries against the Prometheus HTTP API.

Any failure surfaces as MetricUnavailable; nothing here retries.
"""

import logging
from typing import Any, Dict, List, Optional

import numpy as np
import requests
from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.utils.quantity import parse_quantity

from config import KUBECONFIG_PATH, PROMETHEUS_TIMEOUT_SECONDS, PROMETHEUS_URL
from hpa_spec import AutoscalerSpec, MetricSourceType, MetricSpec, MetricTargetType
from replica_calculator import MetricSample
from scaling_errors import MetricUnavailable

logger = logging.getLogger(__name__)

_SCALE_TARGET_READERS = {
    "deployment": "read_namespaced_deployment",
    "statefulset": "read_namespaced_stateful_set",
    "replicaset": "read_namespaced_replica_set",
}


class KubernetesMetricsCollector:
    """Collects per-autoscaler metric samples from a Kubernetes cluster"""

    def __init__(self, kubeconfig_path: Optional[str] = KUBECONFIG_PATH,
                 prometheus_url: str = PROMETHEUS_URL,
                 timeout: float = PROMETHEUS_TIMEOUT_SECONDS):
        self.kubeconfig_path = kubeconfig_path
        self.prometheus_url = prometheus_url.rstrip('/')
        self.timeout = timeout
        self.k8s_client = None
        self._initialize_k8s_client()

    def _initialize_k8s_client(self):
        """Initialize Kubernetes client"""
        try:
            if self.kubeconfig_path:
                logger.info(f"Loading kubeconfig from: {self.kubeconfig_path}")
                config.load_kube_config(config_file=self.kubeconfig_path)
            else:
                try:
                    config.load_incluster_config()
                    logger.info("Using in-cluster config")
                except config.ConfigException:
                    config.load_kube_config()
                    logger.info("Using default kubeconfig")
            self.k8s_client = client.ApiClient()
        except (config.ConfigException, OSError) as e:
            logger.warning(f"Kubernetes client unavailable, resource metrics disabled: {e}")
            self.k8s_client = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get_utilization(self, spec: AutoscalerSpec, metric: MetricSpec, current_replicas: int) -> MetricSample:
        name = metric.describe()
        if metric.type in (MetricSourceType.RESOURCE, MetricSourceType.CONTAINER_RESOURCE):
            current = self._resource_metric(spec, metric)
        elif metric.type == MetricSourceType.PODS:
            current = float(np.mean(self._query_prometheus(self._promql(metric, spec.namespace))))
        else:
            values = self._query_prometheus(self._promql(metric, spec.namespace))
            current = float(np.sum(values))
            if metric.target.type == MetricTargetType.AVERAGE_VALUE:
                if current_replicas <= 0:
                    raise MetricUnavailable(f"{name}: no replicas to average over", metric_name=name)
                current = current / current_replicas

        logger.debug(f"{spec.key} {name}: current={current:.3f} target={metric.target.value}")
        return MetricSample(name=name, current_value=current, target_value=metric.target.value)

    # ------------------------------------------------------------------
    # Resource metrics
    # ------------------------------------------------------------------

    def _require_client(self, metric_name: str):
        if self.k8s_client is None:
            raise MetricUnavailable("Kubernetes client not available", metric_name=metric_name)

    def _pod_selector(self, spec: AutoscalerSpec) -> str:
        ref = spec.scale_target_ref
        reader = _SCALE_TARGET_READERS.get(ref.kind.lower())
        if reader is None:
            raise MetricUnavailable(f"unsupported scale target kind {ref.kind}")
        try:
            target = getattr(client.AppsV1Api(self.k8s_client), reader)(ref.name, spec.namespace)
        except ApiException as e:
            raise MetricUnavailable(f"failed to read {ref.kind}/{ref.name}: {e.reason}") from e

        labels = (target.spec.selector.match_labels or {}) if target.spec.selector else {}
        if not labels:
            raise MetricUnavailable(f"{ref.kind}/{ref.name} has no matchLabels selector")
        return ",".join(f"{k}={v}" for k, v in sorted(labels.items()))

    def _resource_metric(self, spec: AutoscalerSpec, metric: MetricSpec) -> float:
        name = metric.describe()
        self._require_client(name)
        selector = self._pod_selector(spec)

        try:
            pod_metrics = client.CustomObjectsApi(self.k8s_client).list_namespaced_custom_object(
                "metrics.k8s.io", "v1beta1", spec.namespace, "pods", label_selector=selector
            )
            pods = client.CoreV1Api(self.k8s_client).list_namespaced_pod(spec.namespace, label_selector=selector)
        except ApiException as e:
            raise MetricUnavailable(f"{name}: metrics API error {e.status} {e.reason}", metric_name=name) from e

        usage = {}
        for item in pod_metrics.get('items', []):
            total = self._sum_containers(item.get('containers', []), metric, lambda c: c.get('usage', {}))
            if total is not None:
                usage[item['metadata']['name']] = total

        running = [p for p in pods.items if p.status.phase == "Running" and p.metadata.name in usage]
        if not running:
            raise MetricUnavailable(f"{name}: no metrics returned for pods matching {selector}", metric_name=name)

        usages = np.array([usage[p.metadata.name] for p in running], dtype=float)
        if metric.target.type != MetricTargetType.UTILIZATION:
            return float(np.mean(usages))

        requests_ = []
        for pod in running:
            containers = [
                {'name': c.name, 'requests': (c.resources.requests or {}) if c.resources else {}}
                for c in pod.spec.containers
            ]
            total = self._sum_containers(containers, metric, lambda c: c['requests'])
            if not total:
                raise MetricUnavailable(
                    f"{name}: missing {metric.name} request on pod {pod.metadata.name}", metric_name=name
                )
            requests_.append(total)

        return float(np.sum(usages) / np.sum(np.array(requests_, dtype=float)) * 100.0)

    @staticmethod
    def _sum_containers(containers: List[Dict[str, Any]], metric: MetricSpec, values) -> Optional[float]:
        total = 0.0
        found = False
        for container in containers:
            if metric.container and container.get('name') != metric.container:
                continue
            raw = values(container).get(metric.name)
            if raw is None:
                continue
            total += float(parse_quantity(raw))
            found = True
        return total if found else None

    # ------------------------------------------------------------------
    # Prometheus-backed metrics
    # ------------------------------------------------------------------

    @staticmethod
    def _promql(metric: MetricSpec, namespace: str) -> str:
        matchers = {}
        if metric.type != MetricSourceType.EXTERNAL:
            matchers['namespace'] = namespace
        selector = metric.selector or {}
        matchers.update(selector.get('matchLabels', {}) if 'matchLabels' in selector else selector)
        if not matchers:
            return metric.name
        labels = ",".join(f'{k}="{v}"' for k, v in sorted(matchers.items()))
        return f"{metric.name}{{{labels}}}"

    def _query_prometheus(self, query: str) -> List[float]:
        try:
            response = requests.get(
                f"{self.prometheus_url}/api/v1/query",
                params={'query': query},
                timeout=self.timeout
            )
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as e:
            raise MetricUnavailable(f"Prometheus query failed for {query}: {e}", metric_name=query) from e

        if payload.get('status') != 'success':
            raise MetricUnavailable(f"Prometheus returned {payload.get('status')} for {query}", metric_name=query)

        values = []
        for series in payload.get('data', {}).get('result', []):
            try:
                values.append(float(series['value'][1]))
            except (KeyError, IndexError, TypeError, ValueError):
                continue
        values = [v for v in values if np.isfinite(v)]
        if not values:
            raise MetricUnavailable(f"no samples for {query}", metric_name=query)
        return values
