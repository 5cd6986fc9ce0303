#!/usr/bin/env python3
"""
BehaviorHPA Scale Client
========================

Reads and writes the replica count of a scale target (Deployment,
StatefulSet, ReplicaSet) through kubectl.
"""

import json
import logging
import os
import subprocess
from typing import Any, Dict, Optional

from config import KUBECONFIG_PATH, KUBECTL_TIMEOUT_SECONDS
from hpa_spec import ScaleTargetRef
from scaling_errors import ApplyFailed, ScaleTargetUnavailable

logger = logging.getLogger(__name__)


class KubectlScaleClient:
    """Scale subresource access via kubectl"""

    def __init__(self, kubeconfig_path: Optional[str] = KUBECONFIG_PATH,
                 timeout: int = KUBECTL_TIMEOUT_SECONDS):
        self.kubeconfig_path = kubeconfig_path
        self.timeout = timeout
        self.kubectl_env = {}
        if kubeconfig_path:
            self.kubectl_env['KUBECONFIG'] = kubeconfig_path

    def _execute_kubectl(self, command: str) -> Dict[str, Any]:
        """Execute kubectl command"""
        try:
            cmd = ['kubectl'] + command.split()
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env={**os.environ, **self.kubectl_env} if self.kubectl_env else None
            )

            if result.returncode == 0:
                return {
                    'success': True,
                    'output': result.stdout,
                    'result': self._parse_output(result.stdout)
                }
            else:
                return {
                    'success': False,
                    'error': result.stderr or 'Command failed',
                    'output': result.stdout
                }
        except subprocess.TimeoutExpired:
            return {
                'success': False,
                'error': 'Command timed out'
            }
        except OSError as e:
            return {
                'success': False,
                'error': str(e)
            }

    def _parse_output(self, output: str) -> Any:
        """Parse kubectl output"""
        try:
            return json.loads(output)
        except ValueError:
            return output

    @staticmethod
    def _resource(ref: ScaleTargetRef) -> str:
        return f"{ref.kind.lower()}/{ref.name.strip()}"

    def get_replicas(self, ref: ScaleTargetRef, namespace: str = "default") -> int:
        """Current spec.replicas of the scale target"""
        result = self._execute_kubectl(f"get {self._resource(ref)} -n {namespace.strip()} -o json")
        if not result['success']:
            raise ScaleTargetUnavailable(f"Failed to read {self._resource(ref)}: {result.get('error')}")

        obj = result['result']
        if not isinstance(obj, dict):
            raise ScaleTargetUnavailable(f"Unexpected kubectl output for {self._resource(ref)}")
        return int(obj.get('spec', {}).get('replicas', 0) or 0)

    def set_replicas(self, ref: ScaleTargetRef, replicas: int, namespace: str = "default") -> None:
        result = self._execute_kubectl(
            f"scale {self._resource(ref)} -n {namespace.strip()} --replicas={replicas}"
        )
        if not result['success']:
            raise ApplyFailed(
                f"Failed to scale {self._resource(ref)} to {replicas}: {result.get('error')}",
                desired_replicas=replicas,
            )
        logger.info(f"Scaled {namespace}/{self._resource(ref)} to {replicas} replicas")
