"""Health assessment of Kubernetes resources."""

from __future__ import annotations

from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from .health_simple import (
    get_api_service_health,
    get_argo_workflow_health,
    get_hpa_health,
    get_ingress_health,
    get_pvc_health,
    get_service_health,
)
from .health_types import (
    GroupVersionKind,
    HealthCheckError,
    HealthStatus,
    HealthStatusCode,
    group_version_kind,
)
from .health_workloads import (
    get_daemon_set_health,
    get_deployment_health,
    get_job_health,
    get_pod_health,
    get_replica_set_health,
    get_stateful_set_health,
)

HealthCheck = Callable[[Mapping[str, Any]], HealthStatus]
OverrideCheck = Callable[[Mapping[str, Any]], Optional[HealthStatus]]


class HealthOverride:
    """Custom health assessment that takes precedence over the built-in one.

    Either pass a callable that returns a status (or None to defer to the
    built-in assessment), or subclass and override ``get_resource_health``.
    """

    def __init__(self, check: Optional[OverrideCheck] = None) -> None:
        self._check = check

    def get_resource_health(self, obj: Mapping[str, Any]) -> Optional[HealthStatus]:
        """Return an overriding status, or None to use the built-in assessment."""
        if self._check is None:
            return None
        return self._check(obj)


_HEALTH_CHECKS: Dict[Tuple[str, str], HealthCheck] = {
    ("apps", "Deployment"): get_deployment_health,
    ("apps", "StatefulSet"): get_stateful_set_health,
    ("apps", "ReplicaSet"): get_replica_set_health,
    ("apps", "DaemonSet"): get_daemon_set_health,
    ("extensions", "Ingress"): get_ingress_health,
    ("argoproj.io", "Workflow"): get_argo_workflow_health,
    ("apiregistration.k8s.io", "APIService"): get_api_service_health,
    ("networking.k8s.io", "Ingress"): get_ingress_health,
    ("", "Service"): get_service_health,
    ("", "PersistentVolumeClaim"): get_pvc_health,
    ("", "Pod"): get_pod_health,
    ("batch", "Job"): get_job_health,
    ("autoscaling", "HorizontalPodAutoscaler"): get_hpa_health,
}


def get_health_check_func(gvk: GroupVersionKind) -> Optional[HealthCheck]:
    """Return the built-in health check for ``gvk``, or None if there is none."""
    return _HEALTH_CHECKS.get((gvk.group, gvk.kind))


def _deletion_pending(obj: Mapping[str, Any]) -> bool:
    metadata = obj.get("metadata")
    if not isinstance(metadata, Mapping):
        return False
    timestamp = metadata.get("deletionTimestamp")
    return isinstance(timestamp, str) and bool(timestamp)


def get_resource_health(
    obj: Mapping[str, Any], health_override: Optional[HealthOverride] = None
) -> Optional[HealthStatus]:
    """Return the health of a resource, or None when it has no known health check.

    Raises HealthCheckError when the health cannot be assessed; callers should
    then regard the resource's health as unknown.
    """
    if _deletion_pending(obj):
        return HealthStatus(HealthStatusCode.PROGRESSING, "Pending deletion")

    if health_override is not None:
        try:
            health = health_override.get_resource_health(obj)
        except HealthCheckError:
            raise
        except Exception as exc:
            raise HealthCheckError(str(exc)) from exc
        if health is not None:
            return health

    check = get_health_check_func(group_version_kind(obj))
    if check is None:
        return None
    return check(obj)