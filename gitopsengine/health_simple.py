"""Health checks for ingresses, workflows, claims, services, API services and autoscalers."""

from __future__ import annotations

import json
from typing import Any, Iterable, Mapping, NamedTuple, Optional, Sequence

from .health_types import (
    GroupVersionKind,
    HealthCheckError,
    HealthStatus,
    HealthStatusCode,
    group_version_kind,
)


class _ConversionError(ValueError):
    """A field of an unstructured object does not have the expected type."""


def _lookup(obj: Any, *path: str) -> Any:
    """Return the value at ``path``, or None where anything along it is missing."""
    current = obj
    for key in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def _typed(obj: Mapping[str, Any], path: Sequence[str], expected: type, default: Any) -> Any:
    """Return the value at ``path``, checking types along the way like a typed decode."""
    current: Any = obj
    for depth, key in enumerate(path):
        if current is None:
            return default
        if not isinstance(current, Mapping):
            where = ".".join(path[:depth]) or "object"
            raise _ConversionError(f"{where}: expected object, got {type(current).__name__}")
        current = current.get(key)
    if current is None:
        return default
    if not isinstance(current, expected) or (expected is int and isinstance(current, bool)):
        raise _ConversionError(
            f"{'.'.join(path)}: expected {expected.__name__}, got {type(current).__name__}"
        )
    return current


def _string_field(item: Mapping[str, Any], key: str) -> str:
    value = item.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise _ConversionError(f"{key}: expected str, got {type(value).__name__}")
    return value


def _conditions(obj: Mapping[str, Any]) -> list:
    conditions = _typed(obj, ("status", "conditions"), list, [])
    for condition in conditions:
        if not isinstance(condition, Mapping):
            raise _ConversionError(
                f"status.conditions: expected object, got {type(condition).__name__}"
            )
    return conditions


def _require_gvk(obj: Mapping[str, Any], allowed: Iterable[GroupVersionKind], name: str) -> GroupVersionKind:
    gvk = group_version_kind(obj)
    if gvk not in set(allowed):
        raise HealthCheckError(f"unsupported {name} GVK: {gvk}")
    return gvk


def get_ingress_health(obj: Mapping[str, Any]) -> HealthStatus:
    """Healthy once the load balancer reports at least one ingress point."""
    ingresses = _lookup(obj, "status", "loadBalancer", "ingress")
    if isinstance(ingresses, list) and ingresses:
        return HealthStatus(HealthStatusCode.HEALTHY)
    return HealthStatus(HealthStatusCode.PROGRESSING)


def get_argo_workflow_health(obj: Mapping[str, Any]) -> HealthStatus:
    """Assess a workflow from its status phase and message only."""
    try:
        phase = _typed(obj, ("status", "phase"), str, "")
        message = _typed(obj, ("status", "message"), str, "")
    except _ConversionError as exc:
        raise HealthCheckError(str(exc)) from exc

    if phase in ("", "Pending", "Running"):
        return HealthStatus(HealthStatusCode.PROGRESSING, message)
    if phase == "Succeeded":
        return HealthStatus(HealthStatusCode.HEALTHY, message)
    if phase in ("Failed", "Error"):
        return HealthStatus(HealthStatusCode.DEGRADED, message)
    return HealthStatus(HealthStatusCode.UNKNOWN, message)


_PVC_PHASES = {
    "Lost": HealthStatusCode.DEGRADED,
    "Pending": HealthStatusCode.PROGRESSING,
    "Bound": HealthStatusCode.HEALTHY,
}


def get_pvc_health(obj: Mapping[str, Any]) -> HealthStatus:
    """Assess a PersistentVolumeClaim from its phase."""
    _require_gvk(obj, [GroupVersionKind("", "v1", "PersistentVolumeClaim")], "PersistentVolumeClaim")
    try:
        phase = _typed(obj, ("status", "phase"), str, "")
    except _ConversionError as exc:
        raise HealthCheckError(
            f"failed to convert unstructured PersistentVolumeClaim to typed: {exc}"
        ) from exc
    return HealthStatus(_PVC_PHASES.get(phase, HealthStatusCode.UNKNOWN))


def get_service_health(obj: Mapping[str, Any]) -> HealthStatus:
    """Services are healthy, except load balancers still waiting for an ingress point."""
    _require_gvk(obj, [GroupVersionKind("", "v1", "Service")], "Service")
    try:
        service_type = _typed(obj, ("spec", "type"), str, "")
        ingress = _typed(obj, ("status", "loadBalancer", "ingress"), list, [])
    except _ConversionError as exc:
        raise HealthCheckError(f"failed to convert unstructured Service to typed: {exc}") from exc

    if service_type == "LoadBalancer" and not ingress:
        return HealthStatus(HealthStatusCode.PROGRESSING)
    return HealthStatus(HealthStatusCode.HEALTHY)


def get_api_service_health(obj: Mapping[str, Any]) -> HealthStatus:
    """Assess an APIService from its Available condition."""
    _require_gvk(
        obj,
        [
            GroupVersionKind("apiregistration.k8s.io", "v1", "APIService"),
            GroupVersionKind("apiregistration.k8s.io", "v1beta1", "APIService"),
        ],
        "APIService",
    )
    try:
        conditions = [
            {key: _string_field(c, key) for key in ("type", "status", "reason", "message")}
            for c in _conditions(obj)
        ]
    except _ConversionError as exc:
        raise HealthCheckError(f"failed to convert unstructured APIService to typed: {exc}") from exc

    for condition in conditions:
        if condition["type"] == "Available":
            message = f"{condition['reason']}: {condition['message']}"
            if condition["status"] == "True":
                return HealthStatus(HealthStatusCode.HEALTHY, message)
            return HealthStatus(HealthStatusCode.PROGRESSING, message)
    return HealthStatus(HealthStatusCode.PROGRESSING, "Waiting to be processed")


class _HpaCondition(NamedTuple):
    type: str
    reason: str
    message: str
    status: str


_HPA_DEGRADED_STATES = {
    ("AbleToScale", "FailedGetScale"),
    ("AbleToScale", "FailedUpdateScale"),
    ("ScalingActive", "FailedGetResourceMetric"),
    ("ScalingActive", "InvalidSelector"),
}
_HPA_HEALTHY_TYPES = ("AbleToScale", "ScalingLimited")
_HPA_CONDITIONS_ANNOTATION = "autoscaling.alpha.kubernetes.io/conditions"
_HPA_FAILED_CONVERSION = "failed to convert unstructured HPA to typed: {}"


def _progressing_hpa() -> HealthStatus:
    return HealthStatus(HealthStatusCode.PROGRESSING, "Waiting to Autoscale")


def _hpa_condition(item: Mapping[str, Any], case_insensitive: bool = False) -> _HpaCondition:
    if case_insensitive:
        folded = {}
        for key, value in item.items():
            folded.setdefault(str(key).lower(), value)
        for key, value in item.items():
            if key in ("type", "reason", "message", "status"):
                folded[key] = value
        item = folded
    return _HpaCondition(
        type=_string_field(item, "type"),
        reason=_string_field(item, "reason"),
        message=_string_field(item, "message"),
        status=_string_field(item, "status"),
    )


def _check_hpa_conditions(conditions: Iterable[_HpaCondition]) -> HealthStatus:
    for condition in conditions:
        if (condition.type, condition.reason) in _HPA_DEGRADED_STATES:
            return HealthStatus(HealthStatusCode.DEGRADED, condition.message)
        if condition.type in _HPA_HEALTHY_TYPES and condition.status == "True":
            return HealthStatus(HealthStatusCode.HEALTHY, condition.message)
    return _progressing_hpa()


def _v1_hpa_conditions(obj: Mapping[str, Any]) -> Optional[list]:
    try:
        annotations = _typed(obj, ("metadata", "annotations"), Mapping, {})
    except _ConversionError as exc:
        raise HealthCheckError(_HPA_FAILED_CONVERSION.format(exc)) from exc
    annotation = annotations.get(_HPA_CONDITIONS_ANNOTATION)
    if annotation is None:
        return None
    if not isinstance(annotation, str):
        raise HealthCheckError(
            _HPA_FAILED_CONVERSION.format("annotations: expected str values")
        )
    failed = "failed to convert conditions annotation to typed: {}"
    try:
        decoded = json.loads(annotation)
    except json.JSONDecodeError as exc:
        raise HealthCheckError(failed.format(exc)) from exc
    if decoded is None:
        return []
    if not isinstance(decoded, list) or not all(isinstance(c, Mapping) for c in decoded):
        raise HealthCheckError(failed.format("expected a list of objects"))
    try:
        return [_hpa_condition(c, case_insensitive=True) for c in decoded]
    except _ConversionError as exc:
        raise HealthCheckError(failed.format(exc)) from exc


def get_hpa_health(obj: Mapping[str, Any]) -> HealthStatus:
    """Assess a HorizontalPodAutoscaler from its scaling conditions."""
    kind = "HorizontalPodAutoscaler"
    gvk = _require_gvk(
        obj,
        [GroupVersionKind("autoscaling", version, kind) for version in ("v1", "v2beta1", "v2beta2", "v2")],
        "HPA",
    )
    if gvk.version == "v1":
        conditions = _v1_hpa_conditions(obj)
        if not conditions:
            return _progressing_hpa()
        return _check_hpa_conditions(conditions)

    try:
        conditions = [_hpa_condition(c) for c in _conditions(obj)]
    except _ConversionError as exc:
        raise HealthCheckError(_HPA_FAILED_CONVERSION.format(exc)) from exc
    return _check_hpa_conditions(conditions)