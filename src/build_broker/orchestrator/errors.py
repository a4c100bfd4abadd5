"""Error taxonomy surfaced by the orchestrator."""

from __future__ import annotations


class BuildBrokerError(Exception):
    """Base class for all orchestrator errors."""


class NotFoundError(BuildBrokerError):
    """Referenced request, pitch, build or job does not exist."""


class TransitionRejected(BuildBrokerError):
    """Requested build status change is not allowed."""

    def __init__(self, *, build_id: str, current: str, target: str, reason: str) -> None:
        self.build_id = build_id
        self.current = current
        self.target = target
        self.reason = reason
        super().__init__(
            f"Cannot move build {build_id} from '{current}' to '{target}': {reason}",
        )


class HireRejected(BuildBrokerError):
    """Hire preconditions on the request or pitch are not met."""


class SettlementFailed(BuildBrokerError):
    """Settlement call failed; the build was left unchanged."""


class DepositRejected(BuildBrokerError):
    """Deposit could not be verified against the expected amount."""


class ExecutionFailed(BuildBrokerError):
    """Build-execution collaborator failed for one attempt."""


class JobAbandoned(BuildBrokerError):
    """Claimed job can no longer be built because its build moved on."""


class ClaimLost(BuildBrokerError):
    """Job is no longer running under this worker's claim."""


class StoreUnavailable(BuildBrokerError):
    """Persistence collaborator could not be reached."""
