import pytest

from gitopsengine.health_types import HealthCheckError, HealthStatusCode
from gitopsengine.health_workloads import (
    get_daemon_set_health,
    get_deployment_health,
    get_job_health,
    get_pod_health,
    get_replica_set_health,
    get_stateful_set_health,
)


def deployment(spec=None, status=None, generation=1, api_version="apps/v1"):
    return {
        "apiVersion": api_version,
        "kind": "Deployment",
        "metadata": {"name": "nginx", "generation": generation},
        "spec": spec if spec is not None else {"replicas": 1},
        "status": status if status is not None else {
            "observedGeneration": 1,
            "replicas": 1,
            "updatedReplicas": 1,
            "availableReplicas": 1,
        },
    }


def test_deployment_healthy():
    health = get_deployment_health(deployment())
    assert health.status == HealthStatusCode.HEALTHY
    assert health.message == ""


def test_deployment_progressing():
    obj = deployment(
        spec={"replicas": 3},
        status={"observedGeneration": 1, "replicas": 3, "updatedReplicas": 1, "availableReplicas": 1},
    )
    health = get_deployment_health(obj)
    assert health.status == HealthStatusCode.PROGRESSING
    assert health.message == "Waiting for rollout to finish: 1 out of 3 new replicas have been updated..."


def test_deployment_suspended():
    health = get_deployment_health(deployment(spec={"replicas": 1, "paused": True}))
    assert health.status == HealthStatusCode.SUSPENDED
    assert health.message == "Deployment is paused"


def test_deployment_degraded():
    obj = deployment(
        status={
            "observedGeneration": 1,
            "replicas": 1,
            "updatedReplicas": 1,
            "availableReplicas": 0,
            "conditions": [
                {"type": "Available", "status": "False", "reason": "MinimumReplicasUnavailable"},
                {"type": "Progressing", "status": "False", "reason": "ProgressDeadlineExceeded"},
            ],
        }
    )
    health = get_deployment_health(obj)
    assert health.status == HealthStatusCode.DEGRADED
    assert health.message == 'Deployment "nginx" exceeded its progress deadline'


def test_deployment_generation_not_observed():
    health = get_deployment_health(deployment(generation=2))
    assert health.status == HealthStatusCode.PROGRESSING
    assert "observed deployment generation less than desired generation" in health.message


def test_deployment_old_replicas_pending():
    obj = deployment(
        spec={"replicas": 2},
        status={"observedGeneration": 1, "replicas": 3, "updatedReplicas": 2, "availableReplicas": 2},
    )
    assert get_deployment_health(obj).message == (
        "Waiting for rollout to finish: 1 old replicas are pending termination..."
    )


def test_deployment_updated_not_available():
    obj = deployment(
        spec={"replicas": 2},
        status={"observedGeneration": 1, "replicas": 2, "updatedReplicas": 2, "availableReplicas": 1},
    )
    assert get_deployment_health(obj).message == (
        "Waiting for rollout to finish: 1 of 2 updated replicas are available..."
    )


def test_deployment_unsupported_version():
    with pytest.raises(HealthCheckError, match="unsupported Deployment GVK"):
        get_deployment_health(deployment(api_version="apps/v1beta2"))


def test_deployment_bad_field_type():
    with pytest.raises(HealthCheckError, match="failed to convert unstructured Deployment to typed"):
        get_deployment_health(deployment(spec={"replicas": "two"}))


def stateful_set(spec, status, generation=1):
    return {
        "apiVersion": "apps/v1",
        "kind": "StatefulSet",
        "metadata": {"name": "redis", "generation": generation},
        "spec": spec,
        "status": status,
    }


def test_stateful_set_healthy():
    obj = stateful_set(
        {"replicas": 1, "updateStrategy": {"type": "RollingUpdate", "rollingUpdate": {"partition": 0}}},
        {"observedGeneration": 1, "replicas": 1, "readyReplicas": 1, "updatedReplicas": 1,
         "currentRevision": "redis-1", "updateRevision": "redis-1"},
    )
    health = get_stateful_set_health(obj)
    assert health.status == HealthStatusCode.HEALTHY
    assert health.message == "partitioned roll out complete: 1 new pods have been updated..."


def test_stateful_set_on_delete_healthy():
    obj = stateful_set(
        {"replicas": 2, "updateStrategy": {"type": "OnDelete"}},
        {"observedGeneration": 1, "readyReplicas": 2},
    )
    health = get_stateful_set_health(obj)
    assert health.status == HealthStatusCode.HEALTHY
    assert health.message == "statefulset has 2 ready pods"


def test_stateful_set_not_observed():
    obj = stateful_set({"replicas": 1}, {"observedGeneration": 0})
    health = get_stateful_set_health(obj)
    assert health.status == HealthStatusCode.PROGRESSING
    assert health.message == "Waiting for statefulset spec update to be observed..."


def test_stateful_set_pods_not_ready():
    obj = stateful_set({"replicas": 3}, {"observedGeneration": 1, "readyReplicas": 1})
    assert get_stateful_set_health(obj).message == "Waiting for 2 pods to be ready..."


def test_stateful_set_partitioned_progressing():
    obj = stateful_set(
        {"replicas": 3, "updateStrategy": {"type": "RollingUpdate", "rollingUpdate": {"partition": 1}}},
        {"observedGeneration": 1, "readyReplicas": 3, "updatedReplicas": 1},
    )
    health = get_stateful_set_health(obj)
    assert health.status == HealthStatusCode.PROGRESSING
    assert health.message == (
        "Waiting for partitioned roll out to finish: 1 out of 2 new pods have been updated..."
    )


def test_stateful_set_revision_mismatch():
    obj = stateful_set(
        {"replicas": 1},
        {"observedGeneration": 1, "readyReplicas": 1, "updatedReplicas": 0, "currentReplicas": 1,
         "currentRevision": "a", "updateRevision": "b"},
    )
    health = get_stateful_set_health(obj)
    assert health.status == HealthStatusCode.PROGRESSING
    assert health.message == "waiting for statefulset rolling update to complete 0 pods at revision b..."


def test_stateful_set_rolling_update_complete():
    obj = stateful_set(
        {"replicas": 1},
        {"observedGeneration": 1, "readyReplicas": 1, "currentReplicas": 1,
         "currentRevision": "a", "updateRevision": "a"},
    )
    assert get_stateful_set_health(obj).message == (
        "statefulset rolling update complete 1 pods at revision a..."
    )


def daemon_set(strategy, status, generation=1):
    return {
        "apiVersion": "apps/v1",
        "kind": "DaemonSet",
        "metadata": {"name": "fluentd", "generation": generation},
        "spec": {"updateStrategy": {"type": strategy}},
        "status": status,
    }


def test_daemon_set_on_delete_healthy():
    obj = daemon_set("OnDelete", {"observedGeneration": 1, "updatedNumberScheduled": 1,
                                  "desiredNumberScheduled": 3})
    health = get_daemon_set_health(obj)
    assert health.status == HealthStatusCode.HEALTHY
    assert health.message == "daemon set 1 out of 3 new pods have been updated"


def test_daemon_set_rolling_progressing():
    obj = daemon_set("RollingUpdate", {"observedGeneration": 1, "updatedNumberScheduled": 1,
                                       "desiredNumberScheduled": 3})
    health = get_daemon_set_health(obj)
    assert health.status == HealthStatusCode.PROGRESSING
    assert health.message == (
        'Waiting for daemon set "fluentd" rollout to finish: 1 out of 3 new pods have been updated...'
    )


def test_daemon_set_not_available():
    obj = daemon_set("RollingUpdate", {"observedGeneration": 1, "updatedNumberScheduled": 3,
                                       "desiredNumberScheduled": 3, "numberAvailable": 2})
    assert get_daemon_set_health(obj).message == (
        'Waiting for daemon set "fluentd" rollout to finish: 2 of 3 updated pods are available...'
    )


def test_daemon_set_generation_and_healthy():
    stale = daemon_set("RollingUpdate", {"observedGeneration": 1}, generation=2)
    assert get_daemon_set_health(stale).status == HealthStatusCode.PROGRESSING
    done = daemon_set("RollingUpdate", {"observedGeneration": 1, "updatedNumberScheduled": 2,
                                        "desiredNumberScheduled": 2, "numberAvailable": 2})
    assert get_daemon_set_health(done).status == HealthStatusCode.HEALTHY


def replica_set(status, replicas=2):
    return {
        "apiVersion": "apps/v1",
        "kind": "ReplicaSet",
        "metadata": {"name": "rs", "generation": 1},
        "spec": {"replicas": replicas},
        "status": status,
    }


def test_replica_set_states():
    failed = replica_set({"observedGeneration": 1, "conditions": [
        {"type": "ReplicaFailure", "status": "True", "message": "quota exceeded"}]})
    health = get_replica_set_health(failed)
    assert health.status == HealthStatusCode.DEGRADED
    assert health.message == "quota exceeded"

    waiting = replica_set({"observedGeneration": 1, "availableReplicas": 1})
    assert get_replica_set_health(waiting).message == (
        "Waiting for rollout to finish: 1 out of 2 new replicas are available..."
    )

    ready = replica_set({"observedGeneration": 1, "availableReplicas": 2})
    assert get_replica_set_health(ready).status == HealthStatusCode.HEALTHY


def job(conditions):
    return {
        "apiVersion": "batch/v1",
        "kind": "Job",
        "metadata": {"name": "pi"},
        "status": {"conditions": conditions},
    }


def test_job_running():
    assert get_job_health(job([])).status == HealthStatusCode.PROGRESSING


def test_job_failed():
    health = get_job_health(job([{"type": "Failed", "status": "True", "message": "BackoffLimitExceeded"}]))
    assert health.status == HealthStatusCode.DEGRADED
    assert health.message == "BackoffLimitExceeded"


def test_job_succeeded():
    health = get_job_health(job([{"type": "Complete", "status": "True", "message": "done"}]))
    assert health.status == HealthStatusCode.HEALTHY
    assert health.message == "done"


def test_job_suspended():
    health = get_job_health(job([{"type": "Suspended", "status": "True", "message": "Job suspended"}]))
    assert health.status == HealthStatusCode.SUSPENDED


def pod(phase, restart_policy="Always", containers=None, conditions=None, message="", init=None):
    status = {"phase": phase, "containerStatuses": containers or [], "conditions": conditions or []}
    if message:
        status["message"] = message
    if init is not None:
        status["initContainerStatuses"] = init
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {"name": "my-pod"},
        "spec": {"restartPolicy": restart_policy},
        "status": status,
    }


def test_pod_pending():
    assert get_pod_health(pod("Pending")).status == HealthStatusCode.PROGRESSING


def test_pod_running_not_ready():
    obj = pod("Running", conditions=[{"type": "Ready", "status": "False"}],
              containers=[{"name": "main", "state": {"running": {}}}])
    assert get_pod_health(obj).status == HealthStatusCode.PROGRESSING


def test_pod_crashloop():
    obj = pod("Running", containers=[{"name": "main", "state": {"waiting": {
        "reason": "CrashLoopBackOff", "message": "back-off restarting failed container"}}}])
    health = get_pod_health(obj)
    assert health.status == HealthStatusCode.DEGRADED
    assert health.message == "back-off restarting failed container"


def test_pod_image_pull_back_off_joins_messages():
    obj = pod("Pending", containers=[
        {"name": "a", "state": {"waiting": {"reason": "ImagePullBackOff", "message": "pull a"}}},
        {"name": "b", "state": {"waiting": {"reason": "ErrImagePull", "message": "pull b"}}},
    ])
    health = get_pod_health(obj)
    assert health.status == HealthStatusCode.DEGRADED
    assert health.message == "pull a, pull b"


def test_pod_error():
    obj = pod("Running", containers=[{"name": "main", "state": {"waiting": {
        "reason": "RunContainerError", "message": "cannot start"}}}])
    assert get_pod_health(obj).status == HealthStatusCode.DEGRADED


def test_pod_running_restart_always_ready():
    obj = pod("Running", conditions=[{"type": "Ready", "status": "True"}])
    assert get_pod_health(obj).status == HealthStatusCode.HEALTHY


def test_pod_running_restarted_is_degraded():
    obj = pod("Running", conditions=[{"type": "Ready", "status": "False"}],
              containers=[{"name": "main", "lastState": {"terminated": {"exitCode": 1}}}])
    assert get_pod_health(obj).status == HealthStatusCode.DEGRADED


@pytest.mark.parametrize("policy", ["Never", "OnFailure"])
def test_pod_running_finite_restart_policy(policy):
    obj = pod("Running", restart_policy=policy, conditions=[{"type": "Ready", "status": "True"}])
    assert get_pod_health(obj).status == HealthStatusCode.PROGRESSING


def test_pod_waiting_ignored_for_hooks():
    obj = pod("Pending", restart_policy="Never", containers=[
        {"name": "a", "state": {"waiting": {"reason": "ImagePullBackOff", "message": "x"}}}])
    assert get_pod_health(obj).status == HealthStatusCode.PROGRESSING


def test_pod_failed_exit_code():
    obj = pod("Failed", restart_policy="Never",
              containers=[{"name": "main", "state": {"terminated": {"exitCode": 2}}}])
    health = get_pod_health(obj)
    assert health.status == HealthStatusCode.DEGRADED
    assert health.message == 'container "main" failed with exit code 2'


def test_pod_failed_prefers_pod_message_then_init_containers():
    with_message = pod("Failed", message="Evicted")
    assert get_pod_health(with_message).message == "Evicted"
    oom = pod("Failed", restart_policy="Never",
              init=[{"name": "init", "state": {"terminated": {"reason": "OOMKilled", "exitCode": 137}}}],
              containers=[{"name": "main", "state": {"terminated": {"exitCode": 1}}}])
    assert get_pod_health(oom).message == "OOMKilled"


def test_pod_failed_without_details():
    health = get_pod_health(pod("Failed", restart_policy="Never"))
    assert health.status == HealthStatusCode.DEGRADED
    assert health.message == ""


def test_pod_succeeded():
    assert get_pod_health(pod("Succeeded", restart_policy="Never")).status == HealthStatusCode.HEALTHY


def test_pod_unknown_phase():
    health = get_pod_health(pod("Unknown", message="node lost"))
    assert health.status == HealthStatusCode.UNKNOWN
    assert health.message == "node lost"


def test_pod_wrong_kind_version():
    obj = pod("Running")
    obj["apiVersion"] = "v2"
    with pytest.raises(HealthCheckError, match="unsupported Pod GVK"):
        get_pod_health(obj)