"""Health checks for deployments, daemon sets, replica sets, stateful sets, jobs and pods."""

from __future__ import annotations

import json
from contextlib import contextmanager
from typing import Any, Iterator, List, Mapping, NamedTuple, Optional, Sequence

from .health_types import (
    GroupVersionKind,
    HealthCheckError,
    HealthStatus,
    HealthStatusCode,
    group_version_kind,
)

_DEPLOYMENT = GroupVersionKind("apps", "v1", "Deployment")
_DAEMON_SET = GroupVersionKind("apps", "v1", "DaemonSet")
_REPLICA_SET = GroupVersionKind("apps", "v1", "ReplicaSet")
_STATEFUL_SET = GroupVersionKind("apps", "v1", "StatefulSet")
_JOB = GroupVersionKind("batch", "v1", "Job")
_POD = GroupVersionKind("", "v1", "Pod")


class _ConversionError(ValueError):
    """A field of an unstructured object does not have the expected type."""


def _describe(path: Sequence[str]) -> str:
    return ".".join(path) or "object"


def _coerce(value: Any, expected: type, path: Sequence[str]) -> Any:
    if expected is int:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
    elif isinstance(value, expected):
        return value
    raise _ConversionError(
        f"{_describe(path)}: expected {expected.__name__}, got {type(value).__name__}"
    )


def _field(obj: Any, path: Sequence[str], expected: type, default: Any = None) -> Any:
    """Return the value at ``path``, checking its type; ``default`` where it is absent."""
    current = obj
    for depth, key in enumerate(path):
        if current is None:
            return default
        if not isinstance(current, Mapping):
            raise _ConversionError(
                f"{_describe(path[:depth])}: expected object, got {type(current).__name__}"
            )
        current = current.get(key)
    if current is None:
        return default
    return _coerce(current, expected, path)


def _objects(obj: Any, path: Sequence[str]) -> List[Mapping[str, Any]]:
    items = _field(obj, path, list, [])
    for item in items:
        if not isinstance(item, Mapping):
            raise _ConversionError(
                f"{_describe(path)}: expected object, got {type(item).__name__}"
            )
    return items


class _Condition(NamedTuple):
    type: str
    status: str
    reason: str
    message: str


def _conditions(obj: Mapping[str, Any]) -> List[_Condition]:
    return [
        _Condition(
            type=_field(item, ("type",), str, ""),
            status=_field(item, ("status",), str, ""),
            reason=_field(item, ("reason",), str, ""),
            message=_field(item, ("message",), str, ""),
        )
        for item in _objects(obj, ("status", "conditions"))
    ]


def _find_condition(conditions: Sequence[_Condition], cond_type: str) -> Optional[_Condition]:
    return next((c for c in conditions if c.type == cond_type), None)


def _check_kind(obj: Mapping[str, Any], expected: GroupVersionKind, name: str) -> None:
    gvk = group_version_kind(obj)
    if gvk != expected:
        raise HealthCheckError(f"unsupported {name} GVK: {gvk}")


@contextmanager
def _converted(kind: str) -> Iterator[None]:
    try:
        yield
    except _ConversionError as exc:
        raise HealthCheckError(f"failed to convert unstructured {kind} to typed: {exc}") from exc


def _quote(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


def _generation(obj: Mapping[str, Any]) -> int:
    return _field(obj, ("metadata", "generation"), int, 0)


def _status_int(obj: Mapping[str, Any], key: str) -> int:
    return _field(obj, ("status", key), int, 0)


def get_deployment_health(obj: Mapping[str, Any]) -> HealthStatus:
    """Assess a Deployment the way a rollout status check does."""
    _check_kind(obj, _DEPLOYMENT, "Deployment")
    with _converted("Deployment"):
        name = _field(obj, ("metadata", "name"), str, "")
        generation = _generation(obj)
        paused = _field(obj, ("spec", "paused"), bool, False)
        replicas = _field(obj, ("spec", "replicas"), int)
        observed = _status_int(obj, "observedGeneration")
        total = _status_int(obj, "replicas")
        updated = _status_int(obj, "updatedReplicas")
        available = _status_int(obj, "availableReplicas")
        conditions = _conditions(obj)

    if paused:
        return HealthStatus(HealthStatusCode.SUSPENDED, "Deployment is paused")
    if generation > observed:
        return HealthStatus(
            HealthStatusCode.PROGRESSING,
            "Waiting for rollout to finish: observed deployment generation less than desired generation",
        )
    progressing = _find_condition(conditions, "Progressing")
    if progressing is not None and progressing.reason == "ProgressDeadlineExceeded":
        return HealthStatus(
            HealthStatusCode.DEGRADED,
            f"Deployment {_quote(name)} exceeded its progress deadline",
        )
    if replicas is not None and updated < replicas:
        return HealthStatus(
            HealthStatusCode.PROGRESSING,
            f"Waiting for rollout to finish: {updated} out of {replicas} new replicas have been updated...",
        )
    if total > updated:
        return HealthStatus(
            HealthStatusCode.PROGRESSING,
            f"Waiting for rollout to finish: {total - updated} old replicas are pending termination...",
        )
    if available < updated:
        return HealthStatus(
            HealthStatusCode.PROGRESSING,
            f"Waiting for rollout to finish: {available} of {updated} updated replicas are available...",
        )
    return HealthStatus(HealthStatusCode.HEALTHY)


def get_daemon_set_health(obj: Mapping[str, Any]) -> HealthStatus:
    """Assess a DaemonSet the way a rollout status check does."""
    _check_kind(obj, _DAEMON_SET, "DaemonSet")
    with _converted("DaemonSet"):
        name = _field(obj, ("metadata", "name"), str, "")
        generation = _generation(obj)
        strategy = _field(obj, ("spec", "updateStrategy", "type"), str, "")
        observed = _status_int(obj, "observedGeneration")
        updated = _status_int(obj, "updatedNumberScheduled")
        desired = _status_int(obj, "desiredNumberScheduled")
        available = _status_int(obj, "numberAvailable")

    if generation > observed:
        return HealthStatus(
            HealthStatusCode.PROGRESSING,
            "Waiting for rollout to finish: observed daemon set generation less than desired generation",
        )
    if strategy == "OnDelete":
        return HealthStatus(
            HealthStatusCode.HEALTHY,
            f"daemon set {updated} out of {desired} new pods have been updated",
        )
    if updated < desired:
        return HealthStatus(
            HealthStatusCode.PROGRESSING,
            f"Waiting for daemon set {_quote(name)} rollout to finish: "
            f"{updated} out of {desired} new pods have been updated...",
        )
    if available < desired:
        return HealthStatus(
            HealthStatusCode.PROGRESSING,
            f"Waiting for daemon set {_quote(name)} rollout to finish: "
            f"{available} of {desired} updated pods are available...",
        )
    return HealthStatus(HealthStatusCode.HEALTHY)


def get_replica_set_health(obj: Mapping[str, Any]) -> HealthStatus:
    """Assess a ReplicaSet from its failure condition and available replicas."""
    _check_kind(obj, _REPLICA_SET, "ReplicaSet")
    with _converted("ReplicaSet"):
        generation = _generation(obj)
        replicas = _field(obj, ("spec", "replicas"), int)
        observed = _status_int(obj, "observedGeneration")
        available = _status_int(obj, "availableReplicas")
        conditions = _conditions(obj)

    if generation > observed:
        return HealthStatus(
            HealthStatusCode.PROGRESSING,
            "Waiting for rollout to finish: observed replica set generation less than desired generation",
        )
    failure = _find_condition(conditions, "ReplicaFailure")
    if failure is not None and failure.status == "True":
        return HealthStatus(HealthStatusCode.DEGRADED, failure.message)
    if replicas is not None and available < replicas:
        return HealthStatus(
            HealthStatusCode.PROGRESSING,
            f"Waiting for rollout to finish: {available} out of {replicas} new replicas are available...",
        )
    return HealthStatus(HealthStatusCode.HEALTHY)


def get_stateful_set_health(obj: Mapping[str, Any]) -> HealthStatus:
    """Assess a StatefulSet the way a rollout status check does."""
    _check_kind(obj, _STATEFUL_SET, "StatefulSet")
    with _converted("StatefulSet"):
        generation = _generation(obj)
        replicas = _field(obj, ("spec", "replicas"), int)
        strategy = _field(obj, ("spec", "updateStrategy", "type"), str, "")
        rolling_update = _field(obj, ("spec", "updateStrategy", "rollingUpdate"), Mapping)
        partition = _field(rolling_update, ("partition",), int) if rolling_update is not None else None
        observed = _status_int(obj, "observedGeneration")
        ready = _status_int(obj, "readyReplicas")
        updated = _status_int(obj, "updatedReplicas")
        current = _status_int(obj, "currentReplicas")
        update_revision = _field(obj, ("status", "updateRevision"), str, "")
        current_revision = _field(obj, ("status", "currentRevision"), str, "")

    if observed == 0 or generation > observed:
        return HealthStatus(
            HealthStatusCode.PROGRESSING, "Waiting for statefulset spec update to be observed..."
        )
    if replicas is not None and ready < replicas:
        return HealthStatus(
            HealthStatusCode.PROGRESSING, f"Waiting for {replicas - ready} pods to be ready..."
        )
    if strategy == "RollingUpdate" and rolling_update is not None:
        if replicas is not None and partition is not None and updated < replicas - partition:
            return HealthStatus(
                HealthStatusCode.PROGRESSING,
                f"Waiting for partitioned roll out to finish: {updated} out of "
                f"{replicas - partition} new pods have been updated...",
            )
        return HealthStatus(
            HealthStatusCode.HEALTHY,
            f"partitioned roll out complete: {updated} new pods have been updated...",
        )
    if strategy == "OnDelete":
        return HealthStatus(HealthStatusCode.HEALTHY, f"statefulset has {ready} ready pods")
    if update_revision != current_revision:
        return HealthStatus(
            HealthStatusCode.PROGRESSING,
            f"waiting for statefulset rolling update to complete {updated} pods "
            f"at revision {update_revision}...",
        )
    return HealthStatus(
        HealthStatusCode.HEALTHY,
        f"statefulset rolling update complete {current} pods at revision {current_revision}...",
    )


def get_job_health(obj: Mapping[str, Any]) -> HealthStatus:
    """Assess a Job from its Failed, Complete and Suspended conditions."""
    _check_kind(obj, _JOB, "Job")
    with _converted("Job"):
        conditions = _conditions(obj)

    failed = complete = suspended = False
    fail_message = message = ""
    for condition in conditions:
        if condition.type == "Failed":
            failed = complete = True
            fail_message = condition.message
        elif condition.type == "Complete":
            complete = True
            message = condition.message
        elif condition.type == "Suspended":
            complete = True
            message = condition.message
            if condition.status == "True":
                suspended = True

    if not complete:
        return HealthStatus(HealthStatusCode.PROGRESSING, message)
    if failed:
        return HealthStatus(HealthStatusCode.DEGRADED, fail_message)
    if suspended:
        return HealthStatus(HealthStatusCode.SUSPENDED, fail_message)
    return HealthStatus(HealthStatusCode.HEALTHY, message)


class _ContainerStatus(NamedTuple):
    name: str
    waiting_reason: Optional[str]
    waiting_message: str
    terminated: Optional[Mapping[str, Any]]
    last_terminated: Optional[Mapping[str, Any]]


def _container_statuses(obj: Mapping[str, Any], key: str) -> List[_ContainerStatus]:
    statuses = []
    for item in _objects(obj, ("status", key)):
        waiting = _field(item, ("state", "waiting"), Mapping)
        terminated = _field(item, ("state", "terminated"), Mapping)
        if terminated is not None:
            _field(terminated, ("message",), str, "")
            _field(terminated, ("reason",), str, "")
            _field(terminated, ("exitCode",), int, 0)
        statuses.append(
            _ContainerStatus(
                name=_field(item, ("name",), str, ""),
                waiting_reason=None if waiting is None else _field(waiting, ("reason",), str, ""),
                waiting_message="" if waiting is None else _field(waiting, ("message",), str, ""),
                terminated=terminated,
                last_terminated=_field(item, ("lastState", "terminated"), Mapping),
            )
        )
    return statuses


def _fail_message(container: _ContainerStatus) -> str:
    terminated = container.terminated
    if terminated is None:
        return ""
    message = _field(terminated, ("message",), str, "")
    if message:
        return message
    reason = _field(terminated, ("reason",), str, "")
    if reason == "OOMKilled":
        return reason
    exit_code = _field(terminated, ("exitCode",), int, 0)
    if exit_code != 0:
        return f"container {_quote(container.name)} failed with exit code {exit_code}"
    return ""


def _is_error_reason(reason: str) -> bool:
    return reason.startswith("Err") or reason.endswith("Error") or reason.endswith("BackOff")


def get_pod_health(obj: Mapping[str, Any]) -> HealthStatus:
    """Assess a Pod from its phase, readiness and container states."""
    _check_kind(obj, _POD, "Pod")
    with _converted("Pod"):
        restart_policy = _field(obj, ("spec", "restartPolicy"), str, "")
        phase = _field(obj, ("status", "phase"), str, "")
        message = _field(obj, ("status", "message"), str, "")
        conditions = _conditions(obj)
        containers = _container_statuses(obj, "containerStatuses")
        init_containers = _container_statuses(obj, "initContainerStatuses")

    # Only for long-running pods: hook pods must not be failed early on a pull back-off.
    if restart_policy == "Always":
        errors = [
            c.waiting_message
            for c in containers
            if c.waiting_reason is not None and _is_error_reason(c.waiting_reason)
        ]
        if errors:
            return HealthStatus(HealthStatusCode.DEGRADED, ", ".join(errors))

    if phase == "Pending":
        return HealthStatus(HealthStatusCode.PROGRESSING, message)
    if phase == "Succeeded":
        return HealthStatus(HealthStatusCode.HEALTHY, message)
    if phase == "Failed":
        if message:
            return HealthStatus(HealthStatusCode.DEGRADED, message)
        with _converted("Pod"):
            for container in [*init_containers, *containers]:
                fail_message = _fail_message(container)
                if fail_message:
                    return HealthStatus(HealthStatusCode.DEGRADED, fail_message)
        return HealthStatus(HealthStatusCode.DEGRADED, "")
    if phase == "Running":
        if restart_policy == "Always":
            ready = _find_condition(conditions, "Ready")
            if ready is not None and ready.status == "True":
                return HealthStatus(HealthStatusCode.HEALTHY, message)
            if any(c.last_terminated is not None for c in containers):
                return HealthStatus(HealthStatusCode.DEGRADED, message)
            return HealthStatus(HealthStatusCode.PROGRESSING, message)
        if restart_policy in ("OnFailure", "Never"):
            # Finite-lived pods are typically hooks: they progress rather than stay healthy.
            return HealthStatus(HealthStatusCode.PROGRESSING, message)
    return HealthStatus(HealthStatusCode.UNKNOWN, message)