"""
Tests for the Separation-of-Duties Guard.

Validates each rule independently and the reporting precedence between the
self-approval and workflow-conflict rules.
"""

from __future__ import annotations

import pytest

from fakes import application, history, principal

from certgate.governance.separation import (
    FORBIDDEN_COMBINATIONS,
    SeparationOfDutiesGuard,
    step_for_action,
)
from certgate.policy.schema import (
    ConflictDeclaration,
    ConflictType,
    DeclarationStatus,
    DenialReason,
    Role,
    WorkflowStep,
)

OFFICER = Role.DHA_CERTIFICATION_OFFICER
COMMITTEE = Role.CERTIFICATION_COMMITTEE_MEMBER


class TestSelfApproval:
    def setup_method(self):
        self.guard = SeparationOfDutiesGuard()

    def test_creator_cannot_approve(self):
        creator = principal(OFFICER, id="vendor-1")
        result = self.guard.check_self_approval(creator, application())
        assert result.reason == DenialReason.SELF_APPROVAL
        assert result.details["violation"] == "self_approval"
        assert result.code == "SOD-001"

    def test_same_organization_cannot_approve(self):
        colleague = principal(OFFICER, id="x", organization_id="org-vendor")
        result = self.guard.check_self_approval(colleague, application())
        assert result.details["violation"] == "organization_conflict"

    def test_team_member_cannot_approve(self):
        contributor = principal(OFFICER, id="dev-2")
        result = self.guard.check_self_approval(contributor, application(team_member_ids=["dev-2"]))
        assert result.details["violation"] == "contributor_approval"

    def test_unrelated_principal_passes(self):
        assert self.guard.check_self_approval(principal(OFFICER, id="o1"), application()) is None

    def test_creator_vetoed_through_evaluate(self):
        result = self.guard.evaluate(WorkflowStep.APPROVAL, principal(OFFICER, id="vendor-1"), application())
        assert result.reason == DenialReason.SELF_APPROVAL


class TestWorkflowConflict:
    def setup_method(self):
        self.guard = SeparationOfDutiesGuard()

    @pytest.mark.parametrize("previous, current", sorted(FORBIDDEN_COMBINATIONS))
    def test_forbidden_pairs(self, previous, current):
        resource = application(workflow_history=[history(WorkflowStep(previous), "p1")])
        result = self.guard.check_workflow_conflict(principal(OFFICER, id="p1"), resource, current)
        assert result.reason == DenialReason.WORKFLOW_STEP_CONFLICT
        assert result.details["previous_step"] == previous

    def test_reviewer_cannot_approve(self):
        resource = application(workflow_history=[history(WorkflowStep.REVIEW, "o1")])
        result = self.guard.evaluate(WorkflowStep.APPROVAL, principal(OFFICER, id="o1"), resource)
        assert result.reason == DenialReason.WORKFLOW_STEP_CONFLICT

    def test_reviewer_cannot_vote(self):
        resource = application(workflow_history=[history(WorkflowStep.REVIEW, "c1")])
        result = self.guard.check_workflow_conflict(principal(COMMITTEE, id="c1"), resource, WorkflowStep.VOTE)
        assert result.reason == DenialReason.WORKFLOW_STEP_CONFLICT

    def test_other_performer_does_not_conflict(self):
        resource = application(workflow_history=[history(WorkflowStep.REVIEW, "o1")])
        assert self.guard.check_workflow_conflict(principal(OFFICER, id="o2"), resource, "approval") is None

    def test_allowed_combination(self):
        resource = application(workflow_history=[history(WorkflowStep.REVIEW, "o1")])
        assert self.guard.check_workflow_conflict(principal(OFFICER, id="o1"), resource, "review") is None

    def test_conflict_takes_precedence_over_self_approval(self):
        resource = application(workflow_history=[history(WorkflowStep.SUBMISSION, "vendor-1")])
        actor = principal(OFFICER, id="vendor-1")
        assert self.guard.check_self_approval(actor, resource) is not None
        result = self.guard.evaluate(WorkflowStep.APPROVAL, actor, resource)
        assert result.reason == DenialReason.WORKFLOW_STEP_CONFLICT


class TestRoleRestrictions:
    def setup_method(self):
        self.guard = SeparationOfDutiesGuard()

    @pytest.mark.parametrize("role", [
        Role.VENDOR_DEVELOPER, Role.VENDOR_TECHNICAL_LEAD, Role.VENDOR_COMPLIANCE_OFFICER,
    ])
    @pytest.mark.parametrize("step", [WorkflowStep.REVIEW, WorkflowStep.TESTING])
    def test_vendors_never_review_or_test(self, role, step):
        result = self.guard.evaluate(step, principal(role, id="v9"), application())
        assert result.reason == DenialReason.VENDOR_REVIEW_RESTRICTED

    def test_officer_may_review(self):
        assert self.guard.check_vendor_review(principal(OFFICER), WorkflowStep.REVIEW) is None

    def test_admin_never_approves(self):
        result = self.guard.evaluate(
            WorkflowStep.APPROVAL, principal(Role.DHA_SYSTEM_ADMINISTRATOR, id="a1"), application(),
        )
        assert result.reason == DenialReason.ADMIN_APPROVAL_RESTRICTED

    def test_lab_staff_must_be_assigned(self):
        tester = principal(Role.TESTING_LAB_STAFF, id="t1")
        result = self.guard.evaluate(WorkflowStep.TESTING, tester, application(), is_assigned=False)
        assert result.reason == DenialReason.UNASSIGNED_ACCESS
        assert self.guard.evaluate(WorkflowStep.TESTING, tester, application(), is_assigned=True) is None


class TestConflictOfInterest:
    def setup_method(self):
        self.guard = SeparationOfDutiesGuard()
        self.member = principal(COMMITTEE, id="c1")
        self.resource = application(state="committee_review")

    def declaration(self, **kwargs):
        return ConflictDeclaration(principal_id="c1", resource_id="app-1", **kwargs)

    def test_vote_without_declaration(self):
        result = self.guard.evaluate(WorkflowStep.VOTE, self.member, self.resource, declaration=None)
        assert result.reason == DenialReason.DECLARATION_REQUIRED

    def test_revoked_declaration_is_not_active(self):
        declaration = self.declaration(status=DeclarationStatus.REVOKED)
        result = self.guard.check_conflict_of_interest(self.member, self.resource, declaration)
        assert result.reason == DenialReason.DECLARATION_REQUIRED

    def test_declared_conflict_must_abstain(self):
        declaration = self.declaration(has_conflict=True, conflict_type=ConflictType.FINANCIAL_INTEREST)
        result = self.guard.evaluate(WorkflowStep.VOTE, self.member, self.resource, declaration=declaration)
        assert result.reason == DenialReason.MUST_ABSTAIN
        assert result.details["conflict_type"] == "financial_interest"

    def test_undeclared_ties_are_financial_conflict(self):
        tied = principal(COMMITTEE, id="c1", employment_org_ids=["org-vendor"])
        result = self.guard.evaluate(
            WorkflowStep.VOTE, tied, self.resource, declaration=self.declaration(),
        )
        assert result.reason == DenialReason.FINANCIAL_CONFLICT

    def test_clean_declaration_passes(self):
        assert self.guard.evaluate(
            WorkflowStep.VOTE, self.member, self.resource, declaration=self.declaration(),
        ) is None


class TestQuorum:
    def setup_method(self):
        self.guard = SeparationOfDutiesGuard(min_reviewers=2)
        self.member = principal(COMMITTEE, id="c1")
        self.resource = application(state="committee_review")

    @pytest.mark.parametrize("count, vetoed", [(0, True), (1, True), (2, False), (3, False)])
    def test_minimum_reviewers(self, count, vetoed):
        result = self.guard.evaluate(
            WorkflowStep.APPROVAL, self.member, self.resource, completed_reviewers=count,
        )
        if vetoed:
            assert result.reason == DenialReason.INSUFFICIENT_REVIEWERS
            assert result.details == {"required": 2, "current": count}
        else:
            assert result is None

    def test_quorum_only_for_committee(self):
        assert self.guard.check_quorum(principal(OFFICER), 0) is None

    def test_configured_minimum(self):
        guard = SeparationOfDutiesGuard(min_reviewers=3)
        assert guard.check_quorum(self.member, 2).reason == DenialReason.INSUFFICIENT_REVIEWERS


class TestStepMapping:
    def test_actions_map_to_steps(self):
        assert step_for_action("applications", "submit") == WorkflowStep.SUBMISSION
        assert step_for_action("reviews", "submit") == WorkflowStep.REVIEW
        assert step_for_action("tests", "execute") == WorkflowStep.TESTING
        assert step_for_action("votes", "create") == WorkflowStep.VOTE
        assert step_for_action("decisions", "create") == WorkflowStep.APPROVAL
        assert step_for_action("applications", "read") is None

    def test_plain_access_runs_only_assignment_rule(self):
        guard = SeparationOfDutiesGuard()
        assert guard.evaluate(None, principal(Role.VENDOR_DEVELOPER, id="vendor-1"), application()) is None
