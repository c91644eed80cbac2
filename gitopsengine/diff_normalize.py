"""Normalization of resources before they are compared."""

from __future__ import annotations

import base64
import copy
import json
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .diff_options import DiffOptions
from .health_types import group_version_kind

ANNOTATION_LAST_APPLIED_CONFIG = "kubectl.kubernetes.io/last-applied-configuration"

_RBAC_GROUP = "rbac.authorization.k8s.io"


def _options(options: Optional[DiffOptions]) -> DiffOptions:
    return options if options is not None else DiffOptions()


def normalize(obj: Optional[Dict[str, Any]], options: Optional[DiffOptions] = None) -> None:
    """Normalize ``obj`` in place so that irrelevant differences disappear."""
    if obj is None:
        return
    opts = _options(options)

    # creationTimestamp is sometimes null in exported configs; dropping it keeps diffs clean.
    metadata = obj.get("metadata")
    if isinstance(metadata, dict):
        metadata.pop("creationTimestamp", None)

    gvk = group_version_kind(obj)
    if gvk.group == "" and gvk.kind == "Secret":
        normalize_secret(obj, opts)
    elif gvk.group == _RBAC_GROUP and gvk.kind in ("ClusterRole", "Role"):
        normalize_role(obj, opts)
    elif gvk.group == "" and gvk.kind == "Endpoints":
        _normalize_endpoint(obj)

    try:
        opts.normalizer.normalize(obj)
    except Exception as exc:  # a user normalizer must not abort the diff
        name = metadata.get("name", "") if isinstance(metadata, Mapping) else ""
        namespace = metadata.get("namespace", "") if isinstance(metadata, Mapping) else ""
        opts.log.error("Failed to normalize %s/%s/%s: %s", gvk, namespace, name, exc)


def _decode_secret_data(value: Any) -> Optional[Dict[str, bytes]]:
    if value is None:
        return None
    if not isinstance(value, Mapping):
        raise ValueError(f"data: expected object, got {type(value).__name__}")
    decoded = {}
    for key, item in value.items():
        if item is None:
            decoded[key] = b""
        elif isinstance(item, str):
            decoded[key] = base64.b64decode(item, validate=True)
        else:
            raise ValueError(f"data.{key}: expected string, got {type(item).__name__}")
    return decoded


def _secret_string_data(value: Any) -> Dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"stringData: expected object, got {type(value).__name__}")
    result = {}
    for key, item in value.items():
        if item is None:
            result[key] = ""
        elif isinstance(item, str):
            result[key] = item
        else:
            raise ValueError(f"stringData.{key}: expected string, got {type(item).__name__}")
    return result


def normalize_secret(obj: Optional[Dict[str, Any]], options: Optional[DiffOptions] = None) -> None:
    """Fold stringData into base64 data and turn null data values into empty strings.

    Objects that are not secrets, or are invalid secrets, are left unchanged.
    """
    if obj is None:
        return
    gvk = group_version_kind(obj)
    if gvk.group != "" or gvk.kind != "Secret":
        return
    opts = _options(options)
    try:
        data = _decode_secret_data(obj.get("data"))
        string_data = _secret_string_data(obj.get("stringData"))
    except ValueError as exc:
        opts.log.error("Failed to convert from unstructured into Secret: %s", exc)
        return

    if string_data:
        if data is None:
            data = {}
        for key, value in string_data.items():
            data[key] = value.encode("utf-8")
        obj.pop("stringData", None)

    if data is not None:
        encoded = {key: base64.b64encode(value).decode("ascii") for key, value in data.items()}
        obj["data"] = encoded or None


def normalize_role(obj: Optional[Dict[str, Any]], options: Optional[DiffOptions] = None) -> None:
    """Set rules of a Role/ClusterRole to null when empty, or when aggregated and ignored."""
    if obj is None:
        return
    gvk = group_version_kind(obj)
    if gvk.group != _RBAC_GROUP or gvk.kind not in ("Role", "ClusterRole"):
        return
    opts = _options(options)

    if opts.ignore_aggregated_roles and "aggregationRule" in obj:
        if isinstance(obj["aggregationRule"], Mapping):
            obj["rules"] = None
        else:
            name = obj.get("metadata", {}).get("name", "") if isinstance(obj.get("metadata"), Mapping) else ""
            opts.log.info("Malformed aggregationRule in resource '%s', won't modify.", name)

    rules = obj.get("rules")
    if isinstance(rules, list) and not rules:
        obj["rules"] = None


def _normalize_endpoint(obj: Dict[str, Any]) -> None:
    """Give endpoint subset ports the default TCP protocol when they have none."""
    subsets = obj.get("subsets")
    if not isinstance(subsets, list):
        return
    for subset in subsets:
        if not isinstance(subset, dict):
            continue
        ports = subset.get("ports")
        if not isinstance(ports, list):
            continue
        for port in ports:
            if isinstance(port, dict) and not port.get("protocol"):
                port["protocol"] = "TCP"


def remove_namespace_annotation(obj: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy without metadata.namespace and without null or empty annotations."""
    obj = copy.deepcopy(obj)
    metadata = obj.get("metadata")
    if isinstance(metadata, dict):
        metadata.pop("namespace", None)
        if "annotations" in metadata:
            annotations = metadata["annotations"]
            if annotations is None or (isinstance(annotations, Mapping) and not annotations):
                del metadata["annotations"]
    return obj


def _annotations(obj: Mapping[str, Any]) -> Dict[str, Any]:
    metadata = obj.get("metadata")
    if not isinstance(metadata, Mapping):
        return {}
    annotations = metadata.get("annotations")
    if not isinstance(annotations, Mapping):
        return {}
    return dict(annotations)


def _name(obj: Mapping[str, Any]) -> str:
    metadata = obj.get("metadata")
    if isinstance(metadata, Mapping) and isinstance(metadata.get("name"), str):
        return metadata["name"]
    return ""


def get_last_applied_config_annotation(live: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
    """Return the object stored in the last-applied-configuration annotation, if any.

    Raises ValueError when the annotation cannot be parsed.
    """
    if live is None:
        return None
    last_applied = _annotations(live).get(ANNOTATION_LAST_APPLIED_CONFIG)
    if last_applied is None:
        return None
    prefix = f"failed to unmarshal {ANNOTATION_LAST_APPLIED_CONFIG} in {_name(live)}"
    if not isinstance(last_applied, str):
        raise ValueError(f"{prefix}: annotation is not a string")
    try:
        obj = json.loads(last_applied)
    except json.JSONDecodeError as exc:
        raise ValueError(f"{prefix}: {exc}") from exc
    if not isinstance(obj, dict):
        raise ValueError(f"{prefix}: expected a JSON object")
    if not isinstance(obj.get("kind"), str) or not obj["kind"]:
        raise ValueError(f"{prefix}: Object 'Kind' is missing")
    return obj


def _to_string(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _marshal(obj: Any) -> str:
    return json.dumps(obj, separators=(",", ":"), sort_keys=True, ensure_ascii=False)


def hide_secret_data(
    target: Optional[Dict[str, Any]], live: Optional[Dict[str, Any]]
) -> Tuple[Optional[Dict[str, Any]], Optional[Dict[str, Any]]]:
    """Replace secret values in target, live and live's last-applied config with '+' runs.

    Equal values get equal replacements and different values different ones, so the
    differences between the three survive the masking.
    """
    orig: Optional[Dict[str, Any]] = None
    if live is not None:
        try:
            orig = get_last_applied_config_annotation(live)
        except ValueError:
            orig = None
        live = copy.deepcopy(live)
    if target is not None:
        target = copy.deepcopy(target)

    objects: List[Dict[str, Any]] = [obj for obj in (target, live, orig) if obj is not None]

    keys = set()
    for obj in objects:
        normalize_secret(obj)
        data = obj.get("data")
        if isinstance(data, Mapping):
            keys.update(data)

    for key in keys:
        next_replacement = "++++++++"
        replacements: Dict[str, str] = {}
        for obj in objects:
            if "data" in obj and obj["data"] is None:
                continue
            raw = obj.get("data")
            if raw is not None and not isinstance(raw, Mapping):
                raise ValueError(
                    f"unstructured.NestedMap error: data accessor error: "
                    f"{raw!r} is of the type {type(raw).__name__}, expected map"
                )
            data = dict(raw) if raw is not None else {}
            if key not in data:
                continue
            value = _to_string(data[key])
            replacement = replacements.get(value)
            if replacement is None:
                replacement = next_replacement
                next_replacement += "++++"
                replacements[value] = replacement
            data[key] = replacement
            obj["data"] = data

    if live is not None and orig is not None:
        annotations = _annotations(live)
        annotations[ANNOTATION_LAST_APPLIED_CONFIG] = _marshal(orig)
        metadata = live.get("metadata")
        if not isinstance(metadata, dict):
            metadata = {}
            live["metadata"] = metadata
        metadata["annotations"] = annotations

    return target, live