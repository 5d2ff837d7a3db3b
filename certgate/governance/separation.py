"""
Separation-of-Duties Guard — integrity rules over workflow history.

No single principal may complete conflicting steps of the same certification
workflow. Each rule is an independent predicate returning a RuleResult when it
vetoes the request and ``None`` otherwise:

- SELF_APPROVAL         — creator, same organization or contributor approving
- WORKFLOW_CONFLICT     — forbidden (previous step, current step) combination
- VENDOR_REVIEW         — vendor roles never review or test
- ADMIN_APPROVAL        — administrators manage the system, never adjudicate
- CONFLICT_OF_INTEREST  — committee votes require an active, clean declaration
- QUORUM                — committee approval needs enough completed reviewers
- LAB_ASSIGNMENT        — testing-lab staff act only on assigned resources

``evaluate`` runs the rules applicable to a workflow step. When both the
self-approval and workflow-conflict rules veto, the workflow conflict is
reported.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from certgate.policy.matrix import VENDOR_ROLES
from certgate.policy.schema import (
    ConflictDeclaration,
    DenialReason,
    Principal,
    ResourceSnapshot,
    Role,
    WorkflowStep,
)

logger = logging.getLogger(__name__)

S = WorkflowStep

# (previous step, current step) pairs one principal may never combine
FORBIDDEN_COMBINATIONS: frozenset[tuple[str, str]] = frozenset({
    (S.SUBMISSION.value, S.APPROVAL.value),
    (S.SUBMISSION.value, S.REVIEW.value),
    (S.REVIEW.value, S.APPROVAL.value),
    (S.TESTING.value, S.APPROVAL.value),
    (S.SUBMISSION.value, S.TESTING.value),
})

# Steps judged as approval for conflict purposes
APPROVAL_ALIASES: dict[str, str] = {
    S.VOTE.value: S.APPROVAL.value,
    S.CERTIFICATION.value: S.APPROVAL.value,
}

APPROVAL_STEPS: frozenset[str] = frozenset({S.APPROVAL.value, S.VOTE.value, S.CERTIFICATION.value})
REVIEW_STEPS: frozenset[str] = frozenset({S.REVIEW.value, S.TESTING.value})

# (resource, action) → workflow step the action performs
STEP_FOR_ACTION: dict[tuple[str, str], WorkflowStep] = {
    ("applications", "submit"): S.SUBMISSION,
    ("applications", "approve"): S.APPROVAL,
    ("applications", "reject"): S.REJECTION,
    ("applications", "return"): S.RETURN,
    ("applications", "withdraw"): S.WITHDRAWAL,
    ("applications", "review"): S.REVIEW,
    ("reviews", "create"): S.REVIEW,
    ("reviews", "submit"): S.REVIEW,
    ("reviews", "update"): S.REVIEW,
    ("documents", "review"): S.REVIEW,
    ("tests", "execute"): S.TESTING,
    ("test_results", "create"): S.TESTING,
    ("test_results", "submit"): S.TESTING,
    ("test_results", "update"): S.TESTING,
    ("votes", "create"): S.VOTE,
    ("votes", "update"): S.VOTE,
    ("decisions", "create"): S.APPROVAL,
}


def step_for_action(resource: str, action: str) -> WorkflowStep | None:
    """Workflow step performed by ``action`` on ``resource``, if it is one."""
    return STEP_FOR_ACTION.get((resource, action))


@dataclass
class RuleResult:
    """A veto raised by one separation-of-duties rule."""

    rule: str
    reason: DenialReason
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def code(self) -> str:
        return self.reason.legacy_code


class SeparationOfDutiesGuard:
    """
    Evaluates separation-of-duties rules.

    Every rule is a pure function of its inputs; the guard holds only the
    configured reviewer minimum.
    """

    def __init__(self, min_reviewers: int = 2) -> None:
        self.min_reviewers = min_reviewers

    # ── Individual rules ────────────────────────────────────────

    def check_self_approval(
        self, principal: Principal, resource: ResourceSnapshot
    ) -> RuleResult | None:
        """Creator, same-organization or contributor approval."""
        violation = None
        if resource.creator_id and resource.creator_id == principal.id:
            violation = "self_approval"
            message = "You cannot approve a resource you created"
        elif principal.organization_id and principal.organization_id == resource.organization_id:
            violation = "organization_conflict"
            message = "You cannot approve a resource from your own organization"
        elif principal.id in resource.team_member_ids:
            violation = "contributor_approval"
            message = "You cannot approve a resource you contributed to"
        if violation is None:
            return None
        return RuleResult(
            rule="self_approval",
            reason=DenialReason.SELF_APPROVAL,
            message=message,
            details={"violation": violation, "resource_id": resource.id},
        )

    def check_workflow_conflict(
        self, principal: Principal, resource: ResourceSnapshot, step: str | WorkflowStep
    ) -> RuleResult | None:
        """Forbidden combination of a previously performed step with ``step``."""
        current = _value(step)
        judged = APPROVAL_ALIASES.get(current, current)
        for previous in resource.steps_performed_by(principal.id):
            if (previous, judged) in FORBIDDEN_COMBINATIONS:
                return RuleResult(
                    rule="workflow_conflict",
                    reason=DenialReason.WORKFLOW_STEP_CONFLICT,
                    message=(
                        f"You performed the '{previous}' step on this resource and "
                        f"cannot also perform '{current}'"
                    ),
                    details={
                        "previous_step": previous,
                        "current_step": current,
                        "resource_id": resource.id,
                    },
                )
        return None

    def check_vendor_review(
        self, principal: Principal, step: str | WorkflowStep
    ) -> RuleResult | None:
        if _value(step) not in REVIEW_STEPS or principal.role not in VENDOR_ROLES:
            return None
        return RuleResult(
            rule="vendor_review",
            reason=DenialReason.VENDOR_REVIEW_RESTRICTED,
            message="Vendor users cannot review or test certification applications",
            details={"role": principal.role, "step": _value(step)},
        )

    def check_admin_approval(
        self, principal: Principal, step: str | WorkflowStep
    ) -> RuleResult | None:
        if _value(step) not in APPROVAL_STEPS or principal.role != Role.DHA_SYSTEM_ADMINISTRATOR:
            return None
        return RuleResult(
            rule="admin_approval",
            reason=DenialReason.ADMIN_APPROVAL_RESTRICTED,
            message="System administrators cannot approve or vote on certifications",
            details={"step": _value(step)},
        )

    def check_conflict_of_interest(
        self,
        principal: Principal,
        resource: ResourceSnapshot,
        declaration: ConflictDeclaration | None,
    ) -> RuleResult | None:
        """Active declaration required; declared or known ties veto the vote."""
        if declaration is None or not declaration.is_active:
            return RuleResult(
                rule="conflict_of_interest",
                reason=DenialReason.DECLARATION_REQUIRED,
                message="Declare any conflict of interest for this application before voting",
                details={"resource_id": resource.id, "action_required": "declare_conflict_of_interest"},
            )
        if declaration.has_conflict:
            return RuleResult(
                rule="conflict_of_interest",
                reason=DenialReason.MUST_ABSTAIN,
                message="You declared a conflict of interest and must abstain",
                details={
                    "resource_id": resource.id,
                    "conflict_type": declaration.conflict_type.value if declaration.conflict_type else None,
                },
            )
        if principal.has_ties_to(resource.organization_id):
            return RuleResult(
                rule="conflict_of_interest",
                reason=DenialReason.FINANCIAL_CONFLICT,
                message="You have employment or financial ties to the applicant organization",
                details={"resource_id": resource.id, "organization_id": resource.organization_id},
            )
        return None

    def check_quorum(
        self, principal: Principal, completed_reviewers: int
    ) -> RuleResult | None:
        if principal.role != Role.CERTIFICATION_COMMITTEE_MEMBER:
            return None
        if completed_reviewers >= self.min_reviewers:
            return None
        return RuleResult(
            rule="quorum",
            reason=DenialReason.INSUFFICIENT_REVIEWERS,
            message=(
                f"At least {self.min_reviewers} completed reviews are required "
                f"before approval ({completed_reviewers} recorded)"
            ),
            details={"required": self.min_reviewers, "current": completed_reviewers},
        )

    def check_lab_assignment(
        self, principal: Principal, resource: ResourceSnapshot, is_assigned: bool
    ) -> RuleResult | None:
        if principal.role != Role.TESTING_LAB_STAFF or is_assigned:
            return None
        return RuleResult(
            rule="lab_assignment",
            reason=DenialReason.UNASSIGNED_ACCESS,
            message="Testing lab staff can only access resources assigned to them or their lab",
            details={"resource_id": resource.id},
        )

    # ── Composition ─────────────────────────────────────────────

    @staticmethod
    def needs_declaration(step: str | WorkflowStep | None) -> bool:
        return _value(step) == S.VOTE.value

    @staticmethod
    def needs_reviewer_count(step: str | WorkflowStep | None, role: str) -> bool:
        return _value(step) == S.APPROVAL.value and role == Role.CERTIFICATION_COMMITTEE_MEMBER

    def evaluate(
        self,
        step: str | WorkflowStep | None,
        principal: Principal,
        resource: ResourceSnapshot,
        declaration: ConflictDeclaration | None = None,
        completed_reviewers: int = 0,
        is_assigned: bool = False,
    ) -> RuleResult | None:
        """
        Run every rule applicable to ``step`` and return the veto to report.

        Args:
            step: Workflow step being attempted; ``None`` for plain access.
            principal: Acting principal.
            resource: Snapshot carrying workflow history.
            declaration: Active conflict declaration (votes only).
            completed_reviewers: Distinct completed reviewers (committee approval only).
            is_assigned: Whether the resource is assigned to the principal.

        Returns:
            The RuleResult to report, or None when every rule passes.
        """
        result = self.check_lab_assignment(principal, resource, is_assigned)
        if result or step is None:
            return self._log(result, principal, resource)

        current = _value(step)

        if current in REVIEW_STEPS:
            result = self.check_vendor_review(principal, current)
            if result:
                return self._log(result, principal, resource)

        if current in APPROVAL_STEPS:
            result = self.check_admin_approval(principal, current)
            if result:
                return self._log(result, principal, resource)

        conflict = self.check_workflow_conflict(principal, resource, current)
        self_approval = (
            self.check_self_approval(principal, resource) if current in APPROVAL_STEPS else None
        )
        if conflict or self_approval:
            return self._log(conflict or self_approval, principal, resource)

        if current == S.VOTE.value:
            result = self.check_conflict_of_interest(principal, resource, declaration)
            if result:
                return self._log(result, principal, resource)

        if current == S.APPROVAL.value:
            result = self.check_quorum(principal, completed_reviewers)
            if result:
                return self._log(result, principal, resource)

        return None

    @staticmethod
    def _log(
        result: RuleResult | None, principal: Principal, resource: ResourceSnapshot
    ) -> RuleResult | None:
        if result is not None:
            logger.warning(
                "SoD violation [%s]: rule=%s principal=%s resource=%s",
                result.code, result.rule, principal.id, resource.id,
            )
        return result


def _value(item) -> str | None:
    return item.value if hasattr(item, "value") else item
