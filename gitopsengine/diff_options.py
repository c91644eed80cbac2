"""Settings that control how resources are compared."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Protocol, Tuple, runtime_checkable

# Dry-run strategy that asks the API server to evaluate a request without persisting it.
DRY_RUN_SERVER = "server"


@runtime_checkable
class Normalizer(Protocol):
    """Updates a resource in place before it is compared."""

    def normalize(self, obj: Dict[str, Any]) -> None:
        ...


class NoopNormalizer:
    """Normalizer that leaves resources untouched: it has no steps to apply."""

    steps: Tuple[Callable[[Dict[str, Any]], None], ...] = ()

    def normalize(self, obj: Dict[str, Any]) -> None:
        for step in self.steps:
            step(obj)


def get_noop_normalizer() -> NoopNormalizer:
    """Return a normalizer that does not modify resources."""
    return NoopNormalizer()


@runtime_checkable
class KubeApplier(Protocol):
    """Applies a resource to a cluster and returns the resulting object as JSON."""

    def apply_resource(
        self,
        obj: Dict[str, Any],
        dry_run_strategy: str,
        force: bool,
        validate: bool,
        server_side_apply: bool,
        manager: str,
        server_side_diff: bool,
    ) -> str:
        ...


@runtime_checkable
class ServerSideDryRunner(Protocol):
    """Runs a server-side apply in dry-run mode."""

    def run(self, obj: Dict[str, Any], manager: str) -> str:
        ...


class KubeServerSideDryRunner:
    """Server-side dry runner backed by a cluster applier."""

    def __init__(self, applier: KubeApplier) -> None:
        self.applier = applier

    def run(self, obj: Dict[str, Any], manager: str) -> str:
        """Apply ``obj`` server-side in dry-run mode; return the predicted live state as JSON."""
        return self.applier.apply_resource(
            obj,
            dry_run_strategy=DRY_RUN_SERVER,
            force=False,
            validate=False,
            server_side_apply=True,
            manager=manager,
            server_side_diff=True,
        )


def _default_logger() -> logging.Logger:
    return logging.getLogger("gitopsengine.diff")


@dataclass
class DiffOptions:
    """Diffing settings."""

    # Ignore differences in rules of aggregated RBAC roles.
    ignore_aggregated_roles: bool = False
    normalizer: Normalizer = field(default_factory=NoopNormalizer)
    log: logging.Logger = field(default_factory=_default_logger)
    structured_merge_diff: bool = False
    gvk_parser: Any = None
    manager: str = ""
    server_side_diff: bool = False
    server_side_dry_runner: Optional[ServerSideDryRunner] = None
    ignore_mutation_webhook: bool = True