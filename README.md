# gitopsengine

Building blocks for GitOps tooling. The package works on Kubernetes manifests
held as plain Python dictionaries, such as parsed JSON or YAML objects. It has
no runtime dependencies beyond the standard library.

## Modules

- `gitopsengine.health`: `get_resource_health(obj, health_override)` returns a
  `HealthStatus` with a `HealthStatusCode` and a message. It returns `None` when
  the resource's group and kind have no built-in check. It raises
  `HealthCheckError` when the resource cannot be assessed, for example when a
  field has the wrong type or the API version is not supported. An object with a
  `metadata.deletionTimestamp` is always `Progressing` with the message
  "Pending deletion". Built-in checks cover:
  - Deployment, StatefulSet, ReplicaSet and DaemonSet (`apps/v1`)
  - Job (`batch/v1`)
  - Pod, Service and PersistentVolumeClaim (`v1`)
  - Ingress (`extensions`, `networking.k8s.io`)
  - HorizontalPodAutoscaler (`autoscaling` v1, v2beta1, v2beta2, v2)
  - APIService (`apiregistration.k8s.io` v1, v1beta1)
  - Argo Workflow (`argoproj.io`)

  `get_health_check_func(gvk)` returns the check for a `GroupVersionKind`.
  `HealthOverride` puts a custom check in front of the built-in ones. Either
  pass it a callable or subclass it and override `get_resource_health`; return
  `None` to fall back to the built-in check.
- `gitopsengine.health_types`: `HealthStatusCode`, `HealthStatus`,
  `HealthCheckError`, `GroupVersionKind`, `group_version_kind(obj)` and
  `is_worse(current, new)`, which ranks codes from Healthy through Suspended,
  Progressing, Missing and Degraded to Unknown.
- `gitopsengine.health_simple` and `gitopsengine.health_workloads`: the
  individual checks, such as `get_pod_health` and `get_hpa_health`.
- `gitopsengine.diff`: `diff(config, live, options)` compares a desired manifest
  with a live one and returns a `DiffResult` with `modified`, `normalized_live`
  and `predicted_live`. The last two are JSON bytes with sorted keys. When the
  live object carries the `kubectl.kubernetes.io/last-applied-configuration`
  annotation, a three-way diff is made. Otherwise `diff` falls back to
  `two_way_diff`. Fields that the cluster added to the live object, and that were
  never applied, do not count as differences. Other entry points:
  - `three_way_diff` and `two_way_diff` can be called directly.
  - `diff_array` compares two equal-length sequences pair by pair and returns a
    `DiffResultList`.
  - A `None` config means deletion and a `None` live means creation.
  - Errors are raised as `DiffError`.
- `gitopsengine.diff_options`: the `DiffOptions` dataclass has the following
  fields:
  - `ignore_aggregated_roles`
  - `normalizer`
  - `log`
  - `structured_merge_diff`
  - `gvk_parser`
  - `manager`
  - `server_side_diff`
  - `server_side_dry_runner`
  - `ignore_mutation_webhook`

  The module also defines the `Normalizer`, `ServerSideDryRunner` and
  `KubeApplier` protocols, `NoopNormalizer`, `get_noop_normalizer()` and
  `KubeServerSideDryRunner`. `KubeServerSideDryRunner` passes a dry-run
  server-side apply to an applier that you supply.
- `gitopsengine.diff_normalize`: normalization run before a comparison.
  - `normalize` drops `metadata.creationTimestamp` and dispatches by kind.
  - `normalize_secret` folds `stringData` into base64 `data`.
  - `normalize_role` turns empty rule lists into null, and does the same for the
    rules of aggregated roles when `ignore_aggregated_roles` is set.
  - `remove_namespace_annotation` removes the namespace and any null or empty
    annotations.
  - `get_last_applied_config_annotation` reads the last applied configuration.
  - `hide_secret_data(target, live)` replaces secret values with runs of `+`.
    This covers the target, the live object and the live object's last-applied
    configuration. Equal values get equal masks, so differences stay visible.
- `gitopsengine.sync_types`: the vocabulary of a sync operation:
  - the `SyncPhase`, `OperationPhase`, `ResultCode`, `HookType` and
    `HookDeletePolicy` enums;
  - the `ResourceSyncResult` dataclass;
  - the annotation and sync-option constants;
  - `new_hook_type` and `new_hook_delete_policy`, which return the enum member or
    `None` for unknown names.

## Installing

```
pip install .
```

## Examples

Assess health:

```python
from gitopsengine.health import get_resource_health

pvc = {
    "apiVersion": "v1",
    "kind": "PersistentVolumeClaim",
    "metadata": {"name": "data"},
    "status": {"phase": "Bound"},
}
status = get_resource_health(pvc, None)
print(status.status.value)  # Healthy
```

Diff a desired manifest against a live one:

```python
from gitopsengine.diff import diff
from gitopsengine.diff_options import DiffOptions

config = {"apiVersion": "v1", "kind": "ConfigMap",
          "metadata": {"name": "cm"}, "data": {"a": "1"}}
live = {"apiVersion": "v1", "kind": "ConfigMap",
        "metadata": {"name": "cm", "namespace": "default"}, "data": {"a": "2"}}

result = diff(config, live, DiffOptions())
print(result.modified)  # True
```

Parse a hook annotation value:

```python
from gitopsengine.sync_types import HookType, new_hook_type

assert new_hook_type("PreSync") is HookType.PRE_SYNC
assert new_hook_type("Garbage") is None
```

## What it does not do

- It does not talk to a cluster. It has no client, cache or sync loop, and no
  command-line tool.
- Diffs are JSON merge patches on plain dictionaries. There is no per-kind
  strategic merge and no filling in of API-server defaults from type schemas.
  Endpoint subsets are given a default TCP protocol but are not re-sorted.
- Structured merge diff is not available. When it is requested, either by
  `structured_merge_diff` or by the `ServerSideApply=true` sync option, and both
  objects are given, `diff` raises `DiffError`.
- A server-side diff needs a `ServerSideDryRunner` in `DiffOptions`. The package
  does not provide a cluster connection for it. Mutations that no managed-fields
  entry owns are reverted by walking the `fieldsV1` trees.

## Running the tests

```
pip install .[test]
pytest
```