import pytest

from gitopsengine.health_types import (
    GroupVersionKind,
    HealthStatus,
    HealthStatusCode,
    group_version_kind,
    is_worse,
)

ORDER = [
    HealthStatusCode.HEALTHY,
    HealthStatusCode.SUSPENDED,
    HealthStatusCode.PROGRESSING,
    HealthStatusCode.MISSING,
    HealthStatusCode.DEGRADED,
    HealthStatusCode.UNKNOWN,
]


@pytest.mark.parametrize("code", list(HealthStatusCode))
def test_is_worse_irreflexive(code):
    assert is_worse(code, code) is False


def test_is_worse_follows_order():
    for i, current in enumerate(ORDER):
        for j, new in enumerate(ORDER):
            assert is_worse(current, new) is (j > i)


def test_is_worse_examples():
    assert is_worse(HealthStatusCode.HEALTHY, HealthStatusCode.DEGRADED) is True
    assert is_worse(HealthStatusCode.DEGRADED, HealthStatusCode.HEALTHY) is False


def test_is_worse_unknown_string_treated_as_most_healthy():
    assert is_worse("Whatever", HealthStatusCode.SUSPENDED) is True
    assert is_worse(HealthStatusCode.HEALTHY, "Whatever") is False


def test_is_worse_accepts_plain_strings():
    assert is_worse("Progressing", "Missing") is True


def test_health_status_default_message():
    status = HealthStatus(HealthStatusCode.HEALTHY)
    assert status.message == ""
    assert status.status == "Healthy"


def test_group_version_kind_with_group():
    gvk = group_version_kind({"apiVersion": "apps/v1", "kind": "Deployment"})
    assert gvk == GroupVersionKind("apps", "v1", "Deployment")


def test_group_version_kind_core():
    gvk = group_version_kind({"apiVersion": "v1", "kind": "Service"})
    assert gvk == GroupVersionKind("", "v1", "Service")


def test_group_version_kind_missing_fields():
    assert group_version_kind({}) == GroupVersionKind()


def test_group_version_kind_invalid_api_version():
    assert group_version_kind({"apiVersion": "a/b/c", "kind": "Foo"}) == GroupVersionKind()


def test_api_version_round_trip():
    for api_version in ("apps/v1", "v1", "autoscaling/v2beta2"):
        obj = {"apiVersion": api_version, "kind": "X"}
        assert group_version_kind(obj).api_version == api_version


def test_gvk_str():
    assert str(GroupVersionKind("apps", "v1", "Deployment")) == "apps/v1, Kind=Deployment"