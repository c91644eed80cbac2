"""Comparison of desired and live Kubernetes resources, in the manner of ``kubectl diff``."""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from .diff_normalize import get_last_applied_config_annotation, normalize, remove_namespace_annotation
from .diff_options import DiffOptions
from .sync_types import ANNOTATION_SYNC_OPTIONS, SYNC_OPTION_SERVER_SIDE_APPLY

Path = Tuple[str, ...]

_MANAGED_FIELDS_PATH: Path = ("metadata", "managedFields")


class DiffError(Exception):
    """Raised when two resources cannot be compared."""


@dataclass
class DiffResult:
    """Result of comparing two resources."""

    # True when the resources do not match.
    modified: bool
    # JSON of the live resource with normalizations applied.
    normalized_live: bytes
    # JSON of the expected live resource.
    predicted_live: bytes


@dataclass
class DiffResultList:
    """Result of comparing two sets of resources."""

    diffs: List[DiffResult] = field(default_factory=list)
    modified: bool = False


def _marshal(obj: Any) -> bytes:
    return json.dumps(obj, separators=(",", ":"), sort_keys=True, ensure_ascii=False).encode("utf-8")


def _json_equal(left: Any, right: Any) -> bool:
    return _marshal(left) == _marshal(right)


def _strip_type_information(obj: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy that has been through a JSON round trip."""
    try:
        return json.loads(_marshal(obj))
    except (TypeError, ValueError) as exc:
        raise DiffError(f"could not marshal resource: {exc}") from exc


def _metadata(obj: Mapping[str, Any]) -> Mapping[str, Any]:
    metadata = obj.get("metadata")
    return metadata if isinstance(metadata, Mapping) else {}


def _kind_and_name(obj: Mapping[str, Any]) -> str:
    kind = obj.get("kind") if isinstance(obj.get("kind"), str) else ""
    name = _metadata(obj).get("name")
    return f"{kind}/{name if isinstance(name, str) else ''}"


def _has_annotation_option(obj: Mapping[str, Any], annotation: str, option: str) -> bool:
    annotations = _metadata(obj).get("annotations")
    if not isinstance(annotations, Mapping):
        return False
    value = annotations.get(annotation)
    if not isinstance(value, str):
        return False
    return any(item.strip() == option for item in value.split(","))


def _build_diff_result(predicted: bytes, live: bytes) -> DiffResult:
    return DiffResult(modified=live != predicted, normalized_live=live, predicted_live=predicted)


def _handle_create_or_delete(
    config: Optional[Dict[str, Any]], live: Optional[Dict[str, Any]]
) -> DiffResult:
    """Diff for a resource being created (no live) or deleted (no config)."""
    if live is not None and config is not None:
        raise DiffError(
            "unnexpected state: expected live or config to be null: not create or delete operation"
        )
    if live is not None:
        return DiffResult(modified=False, normalized_live=_marshal(live), predicted_live=b"null")
    if config is not None:
        return DiffResult(modified=True, normalized_live=b"null", predicted_live=_marshal(config))
    raise DiffError("both live and config are null objects")


def diff(
    config: Optional[Dict[str, Any]],
    live: Optional[Dict[str, Any]],
    options: Optional[DiffOptions] = None,
) -> DiffResult:
    """Compare a desired and a live resource.

    When the live resource carries a last-applied-configuration annotation a
    three-way diff is attempted first; otherwise a two-way diff is made.
    """
    opts = options if options is not None else DiffOptions()
    if config is not None:
        config = _strip_type_information(config)
        normalize(config, opts)
    if live is not None:
        live = _strip_type_information(live)
        normalize(live, opts)

    if opts.server_side_diff:
        try:
            return server_side_diff(config, live, opts)
        except DiffError as exc:
            raise DiffError(f"error calculating server side diff: {exc}") from exc

    structured = opts.structured_merge_diff or (
        config is not None
        and _has_annotation_option(config, ANNOTATION_SYNC_OPTIONS, SYNC_OPTION_SERVER_SIDE_APPLY)
    )
    if structured:
        try:
            return _structured_merge_diff(config, live)
        except DiffError as exc:
            raise DiffError(f"error calculating structured merge diff: {exc}") from exc

    try:
        orig = get_last_applied_config_annotation(live)
    except ValueError as exc:
        opts.log.debug("Failed to get last applied configuration: %s", exc)
    else:
        if orig is not None and config is not None:
            normalize(orig, opts)
            try:
                return three_way_diff(orig, config, live)
            except DiffError as exc:
                opts.log.debug(
                    "three-way diff calculation failed: %s. Falling back to two-way diff", exc
                )
    return two_way_diff(config, live)


def _structured_merge_diff(
    config: Optional[Dict[str, Any]], live: Optional[Dict[str, Any]]
) -> DiffResult:
    if live is not None and config is not None:
        raise DiffError(
            f"unable to resolve parseableType for resource {_kind_and_name(config)}: "
            "no type schema is available"
        )
    return _handle_create_or_delete(config, live)


def diff_array(
    config_array: Sequence[Optional[Dict[str, Any]]],
    live_array: Sequence[Optional[Dict[str, Any]]],
    options: Optional[DiffOptions] = None,
) -> DiffResultList:
    """Compare resources pairwise; both sequences must have the same length."""
    if len(config_array) != len(live_array):
        raise DiffError("left and right arrays have mismatched lengths")
    result = DiffResultList()
    for config, live in zip(config_array, live_array):
        item = diff(config, live, options)
        result.diffs.append(item)
        result.modified = result.modified or item.modified
    return result


def two_way_diff(config: Optional[Dict[str, Any]], live: Optional[Dict[str, Any]]) -> DiffResult:
    """Three-way diff that uses ``config`` as the most recently applied configuration."""
    if live is not None and config is not None:
        return three_way_diff(config, copy.deepcopy(config), live)
    return _handle_create_or_delete(config, live)


def three_way_diff(orig: Dict[str, Any], config: Dict[str, Any], live: Dict[str, Any]) -> DiffResult:
    """Diff that takes the last applied configuration ``orig`` into account."""
    orig = remove_namespace_annotation(orig)
    config = remove_namespace_annotation(config)
    patch = _three_way_merge_patch(orig, config, live)
    live_bytes = _marshal(live)
    predicted = _merge_patch(json.loads(live_bytes), patch)
    if not isinstance(predicted, dict):
        raise DiffError("predicted live state is not an object")
    return _build_diff_result(_marshal(predicted), live_bytes)


def _remove_map_fields(config: Mapping[str, Any], live: Mapping[str, Any]) -> Dict[str, Any]:
    """Drop fields of ``live`` that ``config`` does not have."""
    result = {}
    for key, config_value in config.items():
        if key not in live:
            continue
        live_value = live[key]
        if live_value is not None:
            live_value = _remove_fields(config_value, live_value)
        result[key] = live_value
    return result


def _remove_list_fields(config: Sequence[Any], live: Sequence[Any]) -> List[Any]:
    # Extra trailing live items are kept so that they show up in the diff.
    result = []
    for position, live_value in enumerate(live):
        if position < len(config) and live_value is not None:
            live_value = _remove_fields(config[position], live_value)
        result.append(live_value)
    return result


def _remove_fields(config: Any, live: Any) -> Any:
    if isinstance(config, Mapping) and isinstance(live, Mapping):
        return _remove_map_fields(config, live)
    if isinstance(config, list) and isinstance(live, list):
        return _remove_list_fields(config, live)
    return live


def _create_merge_patch(original: Mapping[str, Any], modified: Mapping[str, Any]) -> Dict[str, Any]:
    """JSON merge patch that turns ``original`` into ``modified``."""
    patch: Dict[str, Any] = {}
    for key, new_value in modified.items():
        if key not in original:
            patch[key] = copy.deepcopy(new_value)
            continue
        old_value = original[key]
        if isinstance(old_value, Mapping) and isinstance(new_value, Mapping):
            sub_patch = _create_merge_patch(old_value, new_value)
            if sub_patch:
                patch[key] = sub_patch
        elif not _json_equal(old_value, new_value):
            patch[key] = copy.deepcopy(new_value)
    for key in original:
        if key not in modified:
            patch[key] = None
    return patch


def _keep_or_delete_null(patch: Mapping[str, Any], keep_null: bool) -> Dict[str, Any]:
    """Keep only the deletions of a patch, or only its additions and changes."""
    filtered: Dict[str, Any] = {}
    for key, value in patch.items():
        if value is None:
            if keep_null:
                filtered[key] = None
        elif isinstance(value, Mapping):
            # An explicitly empty map is a value, not an empty patch.
            if not value:
                if not keep_null:
                    filtered[key] = {}
                continue
            sub = _keep_or_delete_null(value, keep_null)
            if sub:
                filtered[key] = sub
        elif not keep_null:
            filtered[key] = value
    return filtered


def _has_conflicts(left: Any, right: Any) -> bool:
    if isinstance(left, Mapping):
        if not isinstance(right, Mapping):
            return True
        return any(_has_conflicts(value, right[key]) for key, value in left.items() if key in right)
    if isinstance(left, list):
        if not isinstance(right, list) or len(left) != len(right):
            return True
        return any(_has_conflicts(a, b) for a, b in zip(left, right))
    return not _json_equal(left, right)


def _merge_patch(document: Any, patch: Any) -> Any:
    """Apply a JSON merge patch to ``document``."""
    if not isinstance(patch, Mapping):
        return copy.deepcopy(patch)
    result = dict(document) if isinstance(document, Mapping) else {}
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = _merge_patch(result.get(key), value)
    return result


def _three_way_merge_patch(
    orig: Dict[str, Any], config: Dict[str, Any], live: Dict[str, Any]
) -> Dict[str, Any]:
    # Fields of live that were never applied (defaults and the like) play no part.
    pruned_live = _remove_map_fields(orig, live)
    additions = _keep_or_delete_null(_create_merge_patch(pruned_live, config), keep_null=False)
    deletions = _keep_or_delete_null(_create_merge_patch(orig, config), keep_null=True)
    if _has_conflicts(additions, deletions):
        raise DiffError("three-way merge patch has conflicting changes")
    return _merge_patch(deletions, additions)


def server_side_diff(
    config: Optional[Dict[str, Any]],
    live: Optional[Dict[str, Any]],
    options: Optional[DiffOptions] = None,
) -> DiffResult:
    """Diff against the result of a dry-run server-side apply of ``config``.

    Creation and deletion get a plain diff without contacting the server.
    """
    opts = options if options is not None else DiffOptions()
    if live is not None and config is not None:
        try:
            return _server_side_diff(config, live, opts)
        except DiffError as exc:
            raise DiffError(f"serverSideDiff error: {exc}") from exc
    try:
        return _handle_create_or_delete(config, live)
    except DiffError as exc:
        raise DiffError(f"error handling resource creation or deletion: {exc}") from exc


def _server_side_diff(config: Dict[str, Any], live: Dict[str, Any], opts: DiffOptions) -> DiffResult:
    runner = opts.server_side_dry_runner
    if runner is None:
        raise DiffError("serverSideDryRunner is null")
    resource = _kind_and_name(config)
    try:
        predicted_json = runner.run(config, opts.manager)
    except Exception as exc:
        raise DiffError(
            f"error running server side apply in dryrun mode for resource {resource}: {exc}"
        ) from exc
    try:
        predicted = json.loads(predicted_json)
    except (TypeError, ValueError) as exc:
        raise DiffError(
            f"error converting json string to unstructured for resource {resource}: "
            f"unmarshal error: {exc}"
        ) from exc
    if not isinstance(predicted, dict):
        raise DiffError(
            f"error converting json string to unstructured for resource {resource}: "
            "unmarshal error: expected a JSON object"
        )

    live = copy.deepcopy(live)
    if opts.ignore_mutation_webhook:
        try:
            predicted = _remove_webhook_mutation(predicted, live)
        except DiffError as exc:
            raise DiffError(
                f"error removing non config mutations for resource {resource}: {exc}"
            ) from exc

    normalize(predicted, opts)
    _remove_managed_fields(predicted)
    _remove_managed_fields(live)
    return _build_diff_result(_marshal(predicted), _marshal(live))


def _remove_managed_fields(obj: Dict[str, Any]) -> None:
    metadata = obj.get("metadata")
    if isinstance(metadata, dict):
        metadata.pop("managedFields", None)


def _leaves(value: Any, path: Path) -> Iterator[Path]:
    if isinstance(value, Mapping) and value:
        for key, item in value.items():
            yield from _leaves(item, path + (key,))
    else:
        yield path


def _compare(live: Any, predicted: Any, path: Path = ()) -> Iterator[Tuple[str, Path]]:
    """Yield ("added" | "removed" | "modified", path) for each differing field."""
    if path == _MANAGED_FIELDS_PATH:
        return
    if isinstance(live, Mapping) and isinstance(predicted, Mapping):
        for key, value in predicted.items():
            child = path + (key,)
            if child == _MANAGED_FIELDS_PATH:
                continue
            if key not in live:
                yield from (("added", leaf) for leaf in _leaves(value, child))
            else:
                yield from _compare(live[key], value, child)
        for key, value in live.items():
            child = path + (key,)
            if key not in predicted and child != _MANAGED_FIELDS_PATH:
                yield from (("removed", leaf) for leaf in _leaves(value, child))
    elif not _json_equal(live, predicted):
        yield ("modified", path)


def _owned(fields: Mapping[str, Any], path: Path) -> bool:
    node: Any = fields
    for key in path:
        if not isinstance(node, Mapping):
            return False
        node = node.get(f"f:{key}")
        if node is None:
            return False
    return True


def _has_path(obj: Any, path: Path) -> bool:
    for key in path:
        if not isinstance(obj, Mapping) or key not in obj:
            return False
        obj = obj[key]
    return True


def _get_path(obj: Any, path: Path) -> Any:
    for key in path:
        obj = obj[key]
    return obj


def _set_path(obj: Dict[str, Any], path: Path, value: Any) -> None:
    node = obj
    for key in path[:-1]:
        child = node.get(key)
        if not isinstance(child, dict):
            child = {}
            node[key] = child
        node = child
    node[path[-1]] = value


def _remove_path(obj: Dict[str, Any], path: Path, live: Mapping[str, Any]) -> None:
    """Remove ``path``, and parent maps it leaves empty that live does not have."""
    parents = []
    node: Any = obj
    for key in path[:-1]:
        if not isinstance(node, dict) or not isinstance(node.get(key), dict):
            return
        parents.append((node, key))
        node = node[key]
    node.pop(path[-1], None)
    for depth, (parent, key) in reversed(list(enumerate(parents, start=1))):
        if parent[key] or _has_path(live, path[:depth]):
            break
        del parent[key]


def _remove_webhook_mutation(predicted: Dict[str, Any], live: Dict[str, Any]) -> Dict[str, Any]:
    """Revert changes in ``predicted`` that no field manager owns."""
    managed = _metadata(predicted).get("managedFields")
    if not isinstance(managed, list) or not managed:
        raise DiffError(
            f"predictedLive for resource {_kind_and_name(predicted)} must have the managedFields"
        )
    field_sets = []
    for entry in managed:
        fields = entry.get("fieldsV1") if isinstance(entry, Mapping) else None
        if fields is None:
            fields = {}
        if not isinstance(fields, Mapping):
            raise DiffError("error building managedFields set: fieldsV1 is not an object")
        field_sets.append(fields)

    result = copy.deepcopy(predicted)
    for change, path in list(_compare(live, predicted)):
        if not path or any(_owned(fields, path) for fields in field_sets):
            continue
        if change == "added":
            _remove_path(result, path, live)
        else:
            _set_path(result, path, copy.deepcopy(_get_path(live, path)))
    return result