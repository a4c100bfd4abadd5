"""Declarative transition table for build status changes."""

from __future__ import annotations

from dataclasses import dataclass

from build_broker.orchestrator.errors import TransitionRejected
from build_broker.orchestrator.models import Actor, BuildStatus


@dataclass(frozen=True, slots=True)
class TransitionRule:
    """One legal edge of the build lifecycle graph."""

    from_status: BuildStatus
    to_status: BuildStatus
    actor: Actor


TRANSITION_TABLE: tuple[TransitionRule, ...] = (
    TransitionRule(BuildStatus.HIRED, BuildStatus.BUILDING, Actor.AGENT),
    TransitionRule(BuildStatus.HIRED, BuildStatus.DELIVERED, Actor.AGENT),
    TransitionRule(BuildStatus.HIRED, BuildStatus.CANCELLED, Actor.REQUESTER),
    TransitionRule(BuildStatus.BUILDING, BuildStatus.DELIVERED, Actor.AGENT),
    TransitionRule(BuildStatus.BUILDING, BuildStatus.CANCELLED, Actor.REQUESTER),
    TransitionRule(BuildStatus.DELIVERED, BuildStatus.ACCEPTED, Actor.REQUESTER),
    TransitionRule(BuildStatus.DELIVERED, BuildStatus.REVISION_REQUESTED, Actor.REQUESTER),
    TransitionRule(BuildStatus.DELIVERED, BuildStatus.DISPUTED, Actor.REQUESTER),
    TransitionRule(BuildStatus.REVISION_REQUESTED, BuildStatus.BUILDING, Actor.AGENT),
    TransitionRule(BuildStatus.REVISION_REQUESTED, BuildStatus.DELIVERED, Actor.AGENT),
    TransitionRule(BuildStatus.REVISION_REQUESTED, BuildStatus.DISPUTED, Actor.REQUESTER),
    TransitionRule(BuildStatus.DISPUTED, BuildStatus.ARBITRATION_PENDING, Actor.PLATFORM),
    TransitionRule(BuildStatus.DISPUTED, BuildStatus.ACCEPTED, Actor.PLATFORM),
    TransitionRule(BuildStatus.DISPUTED, BuildStatus.REFUNDED, Actor.PLATFORM),
    TransitionRule(BuildStatus.ARBITRATION_PENDING, BuildStatus.ACCEPTED, Actor.PLATFORM),
    TransitionRule(BuildStatus.ARBITRATION_PENDING, BuildStatus.REFUNDED, Actor.PLATFORM),
)

_RULES_BY_EDGE: dict[tuple[BuildStatus, BuildStatus], TransitionRule] = {
    (rule.from_status, rule.to_status): rule for rule in TRANSITION_TABLE
}


def find_rule(from_status: BuildStatus, to_status: BuildStatus) -> TransitionRule | None:
    """Return the rule for an edge, or None when the edge does not exist."""

    return _RULES_BY_EDGE.get((BuildStatus(from_status), BuildStatus(to_status)))


def is_transition_allowed(from_status: BuildStatus, to_status: BuildStatus) -> bool:
    """Single boolean check consulted before every status mutation."""

    return find_rule(from_status, to_status) is not None


def allowed_targets(from_status: BuildStatus) -> list[BuildStatus]:
    return [rule.to_status for rule in TRANSITION_TABLE if rule.from_status == from_status]


def require_transition(
    *,
    build_id: str,
    from_status: BuildStatus,
    to_status: BuildStatus,
    actor: Actor,
) -> TransitionRule:
    """Return the matching rule or raise TransitionRejected.

    The edge must exist and the caller must be the edge's actor. Fund-moving
    resolutions out of a dispute are platform edges, so a requester or agent
    can never release or refund frozen escrow through this check.
    """

    rule = find_rule(from_status, to_status)
    if rule is None:
        targets = ", ".join(status.value for status in allowed_targets(from_status)) or "none"
        raise TransitionRejected(
            build_id=build_id,
            current=BuildStatus(from_status).value,
            target=BuildStatus(to_status).value,
            reason=f"no such transition (allowed targets: {targets})",
        )
    if rule.actor != Actor(actor):
        raise TransitionRejected(
            build_id=build_id,
            current=rule.from_status.value,
            target=rule.to_status.value,
            reason=f"only the {rule.actor.value} may perform it, not the {Actor(actor).value}",
        )
    return rule
