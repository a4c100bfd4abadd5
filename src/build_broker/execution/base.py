"""Build-execution collaborator interface."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from build_broker.orchestrator.models import BuildJobSpec


class BuildExecutionError(RuntimeError):
    """Executor failed to produce a deliverable for one attempt."""


@dataclass(slots=True)
class Deliverable:
    """Result of one successful build execution."""

    url: str


class BuildExecutor(Protocol):
    """Protocol implemented by build executors."""

    async def execute(self, spec: BuildJobSpec) -> Deliverable:
        """Produce a deliverable for a build spec or raise BuildExecutionError."""
