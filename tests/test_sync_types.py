import pytest

from gitopsengine.sync_types import (
    HookDeletePolicy,
    HookType,
    OperationPhase,
    ResourceSyncResult,
    ResultCode,
    new_hook_delete_policy,
    new_hook_type,
)


def test_new_hook_type_garbage():
    assert new_hook_type("Garbage") is None


@pytest.mark.parametrize(
    "name, expected",
    [
        ("PreSync", HookType.PRE_SYNC),
        ("Sync", HookType.SYNC),
        ("PostSync", HookType.POST_SYNC),
        ("SyncFail", HookType.SYNC_FAIL),
        ("Skip", HookType.SKIP),
    ],
)
def test_new_hook_type_valid(name, expected):
    assert new_hook_type(name) is expected


def test_new_hook_delete_policy_garbage():
    assert new_hook_delete_policy("Garbage") is None


@pytest.mark.parametrize(
    "name, expected",
    [
        ("HookSucceeded", HookDeletePolicy.HOOK_SUCCEEDED),
        ("HookFailed", HookDeletePolicy.HOOK_FAILED),
        ("BeforeHookCreation", HookDeletePolicy.BEFORE_HOOK_CREATION),
    ],
)
def test_new_hook_delete_policy_valid(name, expected):
    assert new_hook_delete_policy(name) is expected


@pytest.mark.parametrize(
    "phase, completed",
    [
        (OperationPhase.RUNNING, False),
        (OperationPhase.TERMINATING, False),
        (OperationPhase.FAILED, True),
        (OperationPhase.ERROR, True),
        (OperationPhase.SUCCEEDED, True),
    ],
)
def test_operation_phase_completed(phase, completed):
    assert phase.completed() is completed


def test_operation_phase_predicates():
    assert OperationPhase.RUNNING.running() is True
    assert OperationPhase.SUCCEEDED.running() is False
    assert OperationPhase.SUCCEEDED.successful() is True
    assert OperationPhase.ERROR.successful() is False
    assert OperationPhase.FAILED.failed() is True
    assert OperationPhase.ERROR.failed() is False


def test_resource_sync_result_defaults():
    result = ResourceSyncResult(resource_key=("apps", "Deployment", "ns", "demo"))
    assert result.order == 0
    assert result.hook_type is None
    assert result.message == ""


def test_resource_sync_result_fields():
    result = ResourceSyncResult(
        resource_key="key", status=ResultCode.PRUNED, hook_phase=OperationPhase.SUCCEEDED
    )
    assert result.status == "Pruned"
    assert result.hook_phase.successful()