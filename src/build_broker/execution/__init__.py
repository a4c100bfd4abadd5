"""Build-execution collaborators."""

from build_broker.execution.base import BuildExecutionError, BuildExecutor, Deliverable
from build_broker.execution.echo import EchoBuildExecutor
from build_broker.execution.http_executor import HttpBuildExecutor

__all__ = [
    "BuildExecutionError",
    "BuildExecutor",
    "Deliverable",
    "EchoBuildExecutor",
    "HttpBuildExecutor",
]
