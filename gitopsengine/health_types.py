"""Health status codes, results and resource kind identification."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Union


class HealthStatusCode(str, Enum):
    """Health of a resource."""

    # Health assessment failed; actual health is unknown.
    UNKNOWN = "Unknown"
    # Not healthy yet, but may still become healthy.
    PROGRESSING = "Progressing"
    HEALTHY = "Healthy"
    # Suspended or paused resources.
    SUSPENDED = "Suspended"
    # Resource reports failure or could not become healthy in time.
    DEGRADED = "Degraded"
    # Resource is missing in the cluster.
    MISSING = "Missing"


@dataclass
class HealthStatus:
    """Result of a health assessment."""

    status: HealthStatusCode
    message: str = ""


class HealthCheckError(Exception):
    """Raised when a resource's health cannot be assessed."""


# From most healthy to least healthy.
_HEALTH_ORDER = (
    HealthStatusCode.HEALTHY,
    HealthStatusCode.SUSPENDED,
    HealthStatusCode.PROGRESSING,
    HealthStatusCode.MISSING,
    HealthStatusCode.DEGRADED,
    HealthStatusCode.UNKNOWN,
)


def _rank(code: Union[HealthStatusCode, str]) -> int:
    for index, known in enumerate(_HEALTH_ORDER):
        if code == known:
            return index
    return 0


def is_worse(current: Union[HealthStatusCode, str], new: Union[HealthStatusCode, str]) -> bool:
    """Return whether ``new`` is a worse condition than ``current``."""
    return _rank(new) > _rank(current)


@dataclass(frozen=True)
class GroupVersionKind:
    """API group, version and kind of a resource."""

    group: str = ""
    version: str = ""
    kind: str = ""

    @property
    def api_version(self) -> str:
        if not self.group:
            return self.version
        return f"{self.group}/{self.version}"

    def __str__(self) -> str:
        return f"{self.group}/{self.version}, Kind={self.kind}"


def group_version_kind(obj: Mapping[str, Any]) -> GroupVersionKind:
    """Read the group, version and kind of an unstructured object.

    An apiVersion that cannot be parsed yields an entirely empty result.
    """
    api_version = obj.get("apiVersion")
    kind = obj.get("kind")
    api_version = api_version if isinstance(api_version, str) else ""
    kind = kind if isinstance(kind, str) else ""

    if not api_version:
        return GroupVersionKind("", "", kind)
    if api_version == "/":
        return GroupVersionKind("", "", kind)
    parts = api_version.split("/")
    if len(parts) == 1:
        return GroupVersionKind("", parts[0], kind)
    if len(parts) == 2:
        return GroupVersionKind(parts[0], parts[1], kind)
    return GroupVersionKind()