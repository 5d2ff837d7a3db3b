"""
Tests for the Lifecycle State Machine.

Validates:
- Transition idempotence for every state
- Terminal states have no outbound transitions
- Invalid transitions enumerate the allowed set
- Role-gated targets and gated pairs
- apply() produces history and refuses unvalidated transitions
- Table invariants for both domains
"""

from __future__ import annotations

import pytest

from certgate.governance.lifecycle import (
    LifecycleStateMachine,
    TransitionError,
    domain_for_resource,
    lifecycle,
)
from certgate.policy.catalog import CatalogError
from certgate.policy.schema import (
    AccountState,
    ApplicationState,
    DenialReason,
    LifecycleDomain,
    ResourceSnapshot,
    Role,
    StateCategory,
    WorkflowStep,
)

ACCOUNT = LifecycleDomain.ACCOUNT
APPLICATION = LifecycleDomain.APPLICATION


class TestTransitionValidation:
    """Test structural validation."""

    def setup_method(self):
        self.machine = LifecycleStateMachine()

    def test_sixteen_account_and_nine_application_states(self):
        assert len(self.machine.states(ACCOUNT)) == 16
        assert len(self.machine.states(APPLICATION)) == 9

    @pytest.mark.parametrize("state", list(AccountState))
    def test_account_self_transition_is_valid(self, state):
        check = self.machine.validate_transition(ACCOUNT, state, state)
        assert check.valid
        assert check.is_noop

    @pytest.mark.parametrize("state", list(ApplicationState))
    def test_application_self_transition_is_valid(self, state):
        assert self.machine.validate_transition(APPLICATION, state.value, state.value).valid

    def test_terminal_account_state_has_no_exits(self):
        assert self.machine.valid_next_states(ACCOUNT, AccountState.DEACTIVATED) == []
        assert self.machine.is_terminal_state(ACCOUNT, "deactivated")
        for state in AccountState:
            if state == AccountState.DEACTIVATED:
                continue
            check = self.machine.validate_transition(ACCOUNT, AccountState.DEACTIVATED, state)
            assert not check.valid
            assert check.reason == DenialReason.INVALID_TRANSITION

    def test_withdrawn_application_is_terminal(self):
        assert self.machine.valid_next_states(APPLICATION, "withdrawn") == []
        assert self.machine.state_category(APPLICATION, "withdrawn") == StateCategory.TERMINAL

    def test_invalid_transition_enumerates_allowed_states(self):
        check = self.machine.validate_transition(APPLICATION, "draft", "approved")
        assert not check.valid
        assert check.reason == DenialReason.INVALID_TRANSITION
        assert check.allowed_states == ["submitted", "withdrawn"]
        assert "submitted" in check.message and "withdrawn" in check.message

    def test_unknown_state(self):
        check = self.machine.validate_transition(ACCOUNT, "active", "banished")
        assert check.reason == DenialReason.UNKNOWN_STATE
        check = self.machine.validate_transition(APPLICATION, "limbo", "draft")
        assert check.reason == DenialReason.UNKNOWN_STATE

    def test_account_state_is_unknown_in_application_domain(self):
        check = self.machine.validate_transition(APPLICATION, "active", "suspended")
        assert check.reason == DenialReason.UNKNOWN_STATE


class TestRoleGates:
    """Test role-gated targets and pairs."""

    def setup_method(self):
        self.machine = LifecycleStateMachine()

    @pytest.mark.parametrize("role", list(Role))
    def test_only_admin_reinstates_suspended_account(self, role):
        check = self.machine.validate_transition_with_role(ACCOUNT, "suspended", "active", role)
        if role == Role.DHA_SYSTEM_ADMINISTRATOR:
            assert check.valid
        else:
            assert not check.valid
            assert check.reason == DenialReason.INSUFFICIENT_ROLE_FOR_TRANSITION
            assert check.required_roles == ["dha_system_administrator"]

    def test_structural_check_precedes_role_gate(self):
        check = self.machine.validate_transition_with_role(ACCOUNT, "deactivated", "active", "public_user")
        assert check.reason == DenialReason.INVALID_TRANSITION

    def test_suspend_requires_admin(self):
        check = self.machine.validate_transition_with_role(
            ACCOUNT, "active", "suspended", Role.DHA_CERTIFICATION_OFFICER,
        )
        assert check.reason == DenialReason.INSUFFICIENT_ROLE_FOR_TRANSITION

    def test_ungated_target_allows_any_role(self):
        check = self.machine.validate_transition_with_role(ACCOUNT, "active", "inactive", "vendor_developer")
        assert check.valid

    def test_committee_approves_application(self):
        check = self.machine.validate_transition_with_role(
            APPLICATION, "committee_review", "approved", "certification_committee_member",
        )
        assert check.valid

    def test_vendor_cannot_move_to_review(self):
        check = self.machine.validate_transition_with_role(
            APPLICATION, "submitted", "under_review", "vendor_developer",
        )
        assert check.reason == DenialReason.INSUFFICIENT_ROLE_FOR_TRANSITION

    def test_return_to_draft_requires_officer(self):
        assert not self.machine.validate_transition_with_role(
            APPLICATION, "under_review", "draft", "vendor_developer",
        ).valid
        assert self.machine.validate_transition_with_role(
            APPLICATION, "under_review", "draft", "dha_certification_officer",
        ).valid

    def test_rejected_application_resubmitted_by_vendor(self):
        assert self.machine.validate_transition_with_role(
            APPLICATION, "rejected", "draft", "vendor_developer",
        ).valid


class TestApply:
    def setup_method(self):
        self.machine = LifecycleStateMachine()
        self.resource = ResourceSnapshot(id="app-1", state="submitted", creator_id="v1")

    def test_apply_returns_state_and_history_entry(self):
        new_state, entry = self.machine.apply(
            APPLICATION, self.resource, "under_review", "officer-1", role="dha_certification_officer",
        )
        assert new_state == "under_review"
        assert entry.step == WorkflowStep.REVIEW.value
        assert entry.performer_id == "officer-1"
        assert (entry.from_state, entry.to_state) == ("submitted", "under_review")

    def test_apply_uses_explicit_step(self):
        _, entry = self.machine.apply(APPLICATION, self.resource, "rejected", "o1", step=WorkflowStep.REJECTION)
        assert entry.step == "rejection"

    def test_apply_invalid_transition_raises(self):
        with pytest.raises(TransitionError):
            self.machine.apply(APPLICATION, self.resource, "certified", "o1")

    def test_apply_with_insufficient_role_raises(self):
        with pytest.raises(TransitionError):
            self.machine.apply(APPLICATION, self.resource, "under_review", "v1", role="vendor_developer")


class TestStateQueries:
    def test_can_login(self):
        assert lifecycle.can_login("active")
        assert lifecycle.can_login(AccountState.UNDER_REVIEW)
        assert not lifecycle.can_login("suspended")
        assert not lifecycle.can_login("pending_verification")

    def test_disabled_states(self):
        assert lifecycle.is_disabled_state(ACCOUNT, "suspended")
        assert lifecycle.is_disabled_state(ACCOUNT, "deactivated")
        assert not lifecycle.is_disabled_state(ACCOUNT, "active")

    def test_every_state_has_one_category(self):
        for state in AccountState:
            assert lifecycle.state_category(ACCOUNT, state) is not None
        for state in ApplicationState:
            assert lifecycle.state_category(APPLICATION, state) is not None

    def test_step_for_state(self):
        assert lifecycle.step_for_state(APPLICATION, "approved") == WorkflowStep.APPROVAL
        assert lifecycle.step_for_state(APPLICATION, "draft") == WorkflowStep.RETURN
        assert lifecycle.step_for_state(ACCOUNT, "suspended") == WorkflowStep.STATUS_CHANGE

    def test_domain_for_resource(self):
        assert domain_for_resource("users") == ACCOUNT
        assert domain_for_resource("applications") == APPLICATION
        assert domain_for_resource("registry") is None


class TestActionTransitions:
    """Targets reachable through a specific action."""

    def setup_method(self):
        self.machine = LifecycleStateMachine()

    def test_action_without_targets_moves_nothing(self):
        assert self.machine.action_targets("applications", "read") == frozenset()
        check = self.machine.validate_action_transition(
            "applications", "read", APPLICATION, "committee_review", "approved",
            role=Role.DHA_CERTIFICATION_OFFICER,
        )
        assert not check.valid
        assert check.reason == DenialReason.INVALID_TRANSITION
        assert check.allowed_states == []

    def test_target_outside_action(self):
        check = self.machine.validate_action_transition(
            "applications", "reject", APPLICATION, "committee_review", "approved",
        )
        assert check.reason == DenialReason.INVALID_TRANSITION
        assert check.allowed_states == ["rejected"]

    def test_target_within_action_goes_through_role_gates(self):
        check = self.machine.validate_action_transition(
            "applications", "approve", APPLICATION, "committee_review", "approved",
            role=Role.VENDOR_DEVELOPER,
        )
        assert check.reason == DenialReason.INSUFFICIENT_ROLE_FOR_TRANSITION

    def test_single_reachable_target_is_derived(self):
        check = self.machine.validate_action_transition(
            "applications", "approve", APPLICATION, "approved",
            role=Role.DHA_CERTIFICATION_OFFICER,
        )
        assert check.valid
        assert check.to_state == "certified"

    def test_no_reachable_target(self):
        check = self.machine.validate_action_transition("applications", "approve", APPLICATION, "draft")
        assert not check.valid
        assert check.allowed_states == []
        assert "needs a target state" in check.message

    def test_several_reachable_targets(self):
        check = self.machine.validate_action_transition("decisions", "create", APPLICATION, "committee_review")
        assert not check.valid
        assert check.allowed_states == ["approved", "rejected"]

    def test_optional_transition_without_target_is_noop(self):
        assert not self.machine.requires_transition("applications", "review")
        check = self.machine.validate_action_transition("applications", "review", APPLICATION, "under_review")
        assert check.is_noop

    def test_required_transition_cannot_stay_put(self):
        check = self.machine.validate_action_transition(
            "applications", "withdraw", APPLICATION, "draft", "draft",
        )
        assert check.reason == DenialReason.INVALID_TRANSITION
        assert check.allowed_states == ["withdrawn"]

    def test_unknown_target_reported_as_unknown(self):
        check = self.machine.validate_action_transition(
            "applications", "approve", APPLICATION, "committee_review", "published",
        )
        assert check.reason == DenialReason.UNKNOWN_STATE


class TestTableInvariants:
    def test_shipped_tables_are_valid(self):
        LifecycleStateMachine().validate_table()

    def test_unreachable_target_detected(self):
        machine = LifecycleStateMachine(transitions={
            ACCOUNT: {"active": {"ghost"}},
            APPLICATION: {"draft": set()},
        }, categories={
            ACCOUNT: {"active": StateCategory.ACTIVE},
            APPLICATION: {"draft": StateCategory.TERMINAL},
        }, required_roles={ACCOUNT: {}, APPLICATION: {}}, pair_roles={ACCOUNT: {}, APPLICATION: {}})
        with pytest.raises(CatalogError, match="ghost"):
            machine.validate_table()

    def test_terminal_with_exits_detected(self):
        machine = LifecycleStateMachine(transitions={
            ACCOUNT: {"active": {"closed"}, "closed": {"active"}},
            APPLICATION: {"draft": set()},
        }, categories={
            ACCOUNT: {"active": StateCategory.ACTIVE, "closed": StateCategory.TERMINAL},
            APPLICATION: {"draft": StateCategory.TERMINAL},
        }, required_roles={ACCOUNT: {}, APPLICATION: {}}, pair_roles={ACCOUNT: {}, APPLICATION: {}})
        with pytest.raises(CatalogError, match="terminal state closed"):
            machine.validate_table()

    def test_action_target_must_be_a_known_state(self):
        machine = LifecycleStateMachine(action_transitions={
            ("applications", "publish"): (APPLICATION, {"published"}),
        }, transition_required=[])
        with pytest.raises(CatalogError, match="applications.publish: unknown application target published"):
            machine.validate_table()
