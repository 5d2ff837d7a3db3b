"""
Lifecycle State Machine — account and certification-application lifecycles.

Two closed state sets are governed here:

- ACCOUNT     — 16 states, from pending verification to permanent deactivation
- APPLICATION — 9 states, from draft through committee review to certification

Every change of state follows the same two-step protocol:

1. VALIDATE — structural table lookup, then the role gate for the target state
              (and for gated (from, to) pairs such as reinstatement)
2. APPLY    — only after validation; produces the new state and the workflow
              history entry the Separation-of-Duties Guard later reads

A transition requested through an action is first narrowed to that action's
targets (ACTION_TRANSITIONS); reading or editing a resource never moves it.

Validation never raises; it returns a TransitionCheck carrying the denial
reason and the allowed set. ``apply`` raises TransitionError when called with a
transition that does not validate, since that is a caller defect.

Invariants:
    A state transitioning to itself is always a valid no-op.
    Terminal states have no outbound transitions.
    Every state reachable in a table is also a from-key in that table.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Mapping

from certgate.policy.catalog import CatalogError
from certgate.policy.schema import (
    AccountState,
    ApplicationState,
    DenialReason,
    LifecycleDomain,
    ResourceSnapshot,
    Role,
    StateCategory,
    WorkflowHistoryEntry,
    WorkflowStep,
)

logger = logging.getLogger(__name__)

A = AccountState
P = ApplicationState


# ════════════════════════════════════════════════════════════════
# Transition Tables
# ════════════════════════════════════════════════════════════════

ACCOUNT_TRANSITIONS: dict[AccountState, set[AccountState]] = {
    A.PENDING_VERIFICATION: {A.ACTIVE, A.PENDING_SETUP, A.SUSPENDED, A.CANCELLED, A.TERMINATED},
    A.PENDING_REGISTRATION: {A.PENDING_VERIFICATION, A.SUBMITTED, A.CANCELLED, A.TERMINATED},
    A.PENDING_SETUP: {A.ACTIVE, A.SUSPENDED, A.CANCELLED, A.TERMINATED},
    A.ACTIVE: {
        A.ROLE_UPDATE_PENDING, A.SUBMITTED, A.INACTIVE, A.SUSPENDED,
        A.TERMINATED, A.CANCELLED, A.DEACTIVATED,
    },
    A.ROLE_UPDATE_PENDING: {A.ACTIVE, A.SUSPENDED, A.TERMINATED},
    A.SUBMITTED: {A.UNDER_REVIEW, A.REJECTED, A.CANCELLED, A.ACTIVE},
    A.UNDER_REVIEW: {A.CLARIFICATION, A.APPROVED, A.REJECTED, A.CANCELLED, A.SUBMITTED},
    A.CLARIFICATION: {A.UNDER_REVIEW, A.REJECTED, A.CANCELLED, A.SUBMITTED},
    A.APPROVED: {A.CERTIFIED, A.ACTIVE, A.REJECTED, A.SUSPENDED, A.TERMINATED},
    A.CERTIFIED: {A.ACTIVE, A.SUSPENDED, A.TERMINATED, A.REJECTED},
    A.INACTIVE: {A.ACTIVE, A.SUSPENDED, A.TERMINATED, A.DEACTIVATED},
    A.SUSPENDED: {A.ACTIVE, A.TERMINATED, A.DEACTIVATED},
    A.TERMINATED: {A.ACTIVE, A.DEACTIVATED},
    A.CANCELLED: {A.ACTIVE, A.PENDING_VERIFICATION, A.TERMINATED, A.DEACTIVATED},
    A.REJECTED: {A.SUBMITTED, A.ACTIVE, A.TERMINATED, A.CANCELLED},
    A.DEACTIVATED: set(),
}

APPLICATION_TRANSITIONS: dict[ApplicationState, set[ApplicationState]] = {
    P.DRAFT: {P.SUBMITTED, P.WITHDRAWN},
    P.SUBMITTED: {P.UNDER_REVIEW, P.DRAFT, P.REJECTED, P.WITHDRAWN},
    P.UNDER_REVIEW: {P.TESTING, P.COMMITTEE_REVIEW, P.DRAFT, P.REJECTED, P.WITHDRAWN},
    P.TESTING: {P.UNDER_REVIEW, P.COMMITTEE_REVIEW, P.REJECTED, P.WITHDRAWN},
    P.COMMITTEE_REVIEW: {P.APPROVED, P.REJECTED, P.UNDER_REVIEW},
    P.APPROVED: {P.CERTIFIED, P.REJECTED},
    P.CERTIFIED: {P.REJECTED},
    P.REJECTED: {P.SUBMITTED, P.DRAFT},
    P.WITHDRAWN: set(),
}

_ADMIN = {Role.DHA_SYSTEM_ADMINISTRATOR}
_OFFICER = Role.DHA_CERTIFICATION_OFFICER
_COMMITTEE = Role.CERTIFICATION_COMMITTEE_MEMBER

# Target state → roles allowed to move a resource into it
ACCOUNT_REQUIRED_ROLES: dict[AccountState, set[Role]] = {
    A.DEACTIVATED: _ADMIN,
    A.SUSPENDED: _ADMIN,
    A.TERMINATED: _ADMIN,
    A.UNDER_REVIEW: {_OFFICER, Role.DHA_SYSTEM_ADMINISTRATOR},
    A.APPROVED: {_OFFICER, _COMMITTEE},
    A.CERTIFIED: {_COMMITTEE, _OFFICER},
    A.REJECTED: {_OFFICER, Role.DHA_SYSTEM_ADMINISTRATOR},
}

APPLICATION_REQUIRED_ROLES: dict[ApplicationState, set[Role]] = {
    P.SUBMITTED: {Role.VENDOR_DEVELOPER},
    P.UNDER_REVIEW: {_OFFICER, Role.DHA_SYSTEM_ADMINISTRATOR},
    P.TESTING: {_OFFICER},
    P.COMMITTEE_REVIEW: {_OFFICER},
    P.APPROVED: {_OFFICER, _COMMITTEE},
    P.CERTIFIED: {_COMMITTEE, _OFFICER},
    P.REJECTED: {_OFFICER, _COMMITTEE},
    P.WITHDRAWN: {Role.VENDOR_DEVELOPER, Role.DHA_SYSTEM_ADMINISTRATOR},
}

# (from, to) pairs gated independently of the target state
ACCOUNT_PAIR_ROLES: dict[tuple[AccountState, AccountState], set[Role]] = {
    (A.SUSPENDED, A.ACTIVE): _ADMIN,
    (A.TERMINATED, A.ACTIVE): _ADMIN,
}

APPLICATION_PAIR_ROLES: dict[tuple[ApplicationState, ApplicationState], set[Role]] = {
    (P.SUBMITTED, P.DRAFT): {_OFFICER},
    (P.UNDER_REVIEW, P.DRAFT): {_OFFICER},
}

ACCOUNT_CATEGORIES: dict[AccountState, StateCategory] = {
    A.PENDING_VERIFICATION: StateCategory.INITIAL,
    A.PENDING_REGISTRATION: StateCategory.INITIAL,
    A.PENDING_SETUP: StateCategory.INITIAL,
    A.ACTIVE: StateCategory.ACTIVE,
    A.ROLE_UPDATE_PENDING: StateCategory.ACTIVE,
    A.SUBMITTED: StateCategory.WORKFLOW,
    A.UNDER_REVIEW: StateCategory.WORKFLOW,
    A.CLARIFICATION: StateCategory.WORKFLOW,
    A.APPROVED: StateCategory.WORKFLOW,
    A.CERTIFIED: StateCategory.WORKFLOW,
    A.INACTIVE: StateCategory.DISABLED,
    A.SUSPENDED: StateCategory.DISABLED,
    A.TERMINATED: StateCategory.DISABLED,
    A.CANCELLED: StateCategory.DISABLED,
    A.REJECTED: StateCategory.DISABLED,
    A.DEACTIVATED: StateCategory.TERMINAL,
}

APPLICATION_CATEGORIES: dict[ApplicationState, StateCategory] = {
    P.DRAFT: StateCategory.INITIAL,
    P.SUBMITTED: StateCategory.WORKFLOW,
    P.UNDER_REVIEW: StateCategory.WORKFLOW,
    P.TESTING: StateCategory.WORKFLOW,
    P.COMMITTEE_REVIEW: StateCategory.WORKFLOW,
    P.APPROVED: StateCategory.WORKFLOW,
    P.CERTIFIED: StateCategory.ACTIVE,
    P.REJECTED: StateCategory.DISABLED,
    P.WITHDRAWN: StateCategory.TERMINAL,
}

# Account states that permit signing in
LOGIN_STATES: frozenset[str] = frozenset(s.value for s in (
    A.ACTIVE, A.ROLE_UPDATE_PENDING, A.SUBMITTED, A.UNDER_REVIEW,
    A.CLARIFICATION, A.APPROVED, A.CERTIFIED,
))

# Target state → workflow step recorded in history
APPLICATION_STEPS: dict[ApplicationState, WorkflowStep] = {
    P.DRAFT: WorkflowStep.RETURN,
    P.SUBMITTED: WorkflowStep.SUBMISSION,
    P.UNDER_REVIEW: WorkflowStep.REVIEW,
    P.TESTING: WorkflowStep.REVIEW,
    P.COMMITTEE_REVIEW: WorkflowStep.REVIEW,
    P.APPROVED: WorkflowStep.APPROVAL,
    P.CERTIFIED: WorkflowStep.CERTIFICATION,
    P.REJECTED: WorkflowStep.REJECTION,
    P.WITHDRAWN: WorkflowStep.WITHDRAWAL,
}

ACCOUNT_STEPS: dict[AccountState, WorkflowStep] = {
    A.SUBMITTED: WorkflowStep.SUBMISSION,
    A.UNDER_REVIEW: WorkflowStep.REVIEW,
    A.APPROVED: WorkflowStep.APPROVAL,
    A.CERTIFIED: WorkflowStep.CERTIFICATION,
    A.REJECTED: WorkflowStep.REJECTION,
}

# Resource names in the permission matrix governed by a lifecycle
RESOURCE_DOMAINS: dict[str, LifecycleDomain] = {
    "users": LifecycleDomain.ACCOUNT,
    "accounts": LifecycleDomain.ACCOUNT,
    "applications": LifecycleDomain.APPLICATION,
}

# (resource, action) → lifecycle and the target states the action may move into.
# A desired state outside its action's targets is never committed.
ACTION_TRANSITIONS: dict[tuple[str, str], tuple[LifecycleDomain, set]] = {
    ("applications", "submit"): (LifecycleDomain.APPLICATION, {P.SUBMITTED}),
    ("applications", "withdraw"): (LifecycleDomain.APPLICATION, {P.WITHDRAWN}),
    ("applications", "approve"): (LifecycleDomain.APPLICATION, {P.APPROVED, P.CERTIFIED}),
    ("applications", "reject"): (LifecycleDomain.APPLICATION, {P.REJECTED}),
    ("applications", "return"): (LifecycleDomain.APPLICATION, {P.DRAFT}),
    ("applications", "review"): (
        LifecycleDomain.APPLICATION, {P.UNDER_REVIEW, P.TESTING, P.COMMITTEE_REVIEW},
    ),
    ("decisions", "create"): (LifecycleDomain.APPLICATION, {P.APPROVED, P.REJECTED}),
    ("users", "update"): (LifecycleDomain.ACCOUNT, set(AccountState)),
    ("users", "delete"): (LifecycleDomain.ACCOUNT, {A.DEACTIVATED}),
}

# Actions that always change state; without a desired state the target is derived
TRANSITION_REQUIRED: frozenset[tuple[str, str]] = frozenset({
    ("applications", "submit"),
    ("applications", "withdraw"),
    ("applications", "approve"),
    ("applications", "reject"),
    ("applications", "return"),
    ("decisions", "create"),
    ("users", "delete"),
})


def _freeze(table: Mapping) -> dict:
    """Normalize enum keys/values to plain strings and sets to frozensets."""
    frozen = {}
    for key, value in table.items():
        if isinstance(key, tuple):
            key = tuple(k.value if hasattr(k, "value") else k for k in key)
        elif hasattr(key, "value"):
            key = key.value
        if isinstance(value, (set, frozenset)):
            value = frozenset(v.value if isinstance(v, (AccountState, ApplicationState)) else v for v in value)
        frozen[key] = value
    return frozen


# ════════════════════════════════════════════════════════════════
# Results & Errors
# ════════════════════════════════════════════════════════════════


@dataclass
class TransitionCheck:
    """Result of validating a lifecycle transition."""

    valid: bool
    domain: LifecycleDomain
    from_state: str
    to_state: str
    reason: DenialReason | None = None
    allowed_states: list[str] = field(default_factory=list)
    required_roles: list[str] = field(default_factory=list)
    message: str = ""

    @property
    def is_noop(self) -> bool:
        return self.valid and self.from_state == self.to_state


class TransitionError(Exception):
    """Raised when a transition is applied without validating."""

    pass


# ════════════════════════════════════════════════════════════════
# State Machine
# ════════════════════════════════════════════════════════════════


class LifecycleStateMachine:
    """
    Table-driven lifecycle validation for accounts and applications.

    Tables are frozen at construction; every method is a pure function of its
    arguments, so one instance is shared process-wide.
    """

    def __init__(
        self,
        transitions: Mapping[LifecycleDomain, Mapping] | None = None,
        required_roles: Mapping[LifecycleDomain, Mapping] | None = None,
        pair_roles: Mapping[LifecycleDomain, Mapping] | None = None,
        categories: Mapping[LifecycleDomain, Mapping] | None = None,
        action_transitions: Mapping[tuple[str, str], tuple] | None = None,
        transition_required: Iterable[tuple[str, str]] | None = None,
    ) -> None:
        transitions = transitions or {
            LifecycleDomain.ACCOUNT: ACCOUNT_TRANSITIONS,
            LifecycleDomain.APPLICATION: APPLICATION_TRANSITIONS,
        }
        required_roles = required_roles or {
            LifecycleDomain.ACCOUNT: ACCOUNT_REQUIRED_ROLES,
            LifecycleDomain.APPLICATION: APPLICATION_REQUIRED_ROLES,
        }
        pair_roles = pair_roles or {
            LifecycleDomain.ACCOUNT: ACCOUNT_PAIR_ROLES,
            LifecycleDomain.APPLICATION: APPLICATION_PAIR_ROLES,
        }
        categories = categories or {
            LifecycleDomain.ACCOUNT: ACCOUNT_CATEGORIES,
            LifecycleDomain.APPLICATION: APPLICATION_CATEGORIES,
        }
        self._transitions = {d: _freeze(t) for d, t in transitions.items()}
        self._required_roles = {d: _freeze(t) for d, t in required_roles.items()}
        self._pair_roles = {d: _freeze(t) for d, t in pair_roles.items()}
        self._categories = {d: _freeze(t) for d, t in categories.items()}
        self._action_transitions = {
            key: (LifecycleDomain(domain), frozenset(_value(s) for s in targets))
            for key, (domain, targets) in (action_transitions or ACTION_TRANSITIONS).items()
        }
        self._transition_required = frozenset(
            TRANSITION_REQUIRED if transition_required is None else transition_required
        )

    # ── Lookups ─────────────────────────────────────────────────

    def states(self, domain: LifecycleDomain | str) -> list[str]:
        return list(self._transitions[LifecycleDomain(domain)])

    def is_known_state(self, domain: LifecycleDomain | str, state: str | None) -> bool:
        return _value(state) in self._transitions[LifecycleDomain(domain)]

    def valid_next_states(self, domain: LifecycleDomain | str, state: str) -> list[str]:
        """Allowed targets from ``state``; empty for terminal or unknown states."""
        allowed = self._transitions[LifecycleDomain(domain)].get(_value(state), frozenset())
        return sorted(allowed)

    def is_terminal_state(self, domain: LifecycleDomain | str, state: str) -> bool:
        return self.state_category(domain, state) == StateCategory.TERMINAL

    def is_disabled_state(self, domain: LifecycleDomain | str, state: str) -> bool:
        return self.state_category(domain, state) in (StateCategory.DISABLED, StateCategory.TERMINAL)

    def state_category(self, domain: LifecycleDomain | str, state: str) -> StateCategory | None:
        return self._categories[LifecycleDomain(domain)].get(_value(state))

    @staticmethod
    def can_login(state: str) -> bool:
        """Whether an account in ``state`` may sign in."""
        return _value(state) in LOGIN_STATES

    @staticmethod
    def step_for_state(domain: LifecycleDomain | str, to_state: str) -> WorkflowStep:
        """The workflow step recorded when a resource enters ``to_state``."""
        steps = APPLICATION_STEPS if LifecycleDomain(domain) == LifecycleDomain.APPLICATION else ACCOUNT_STEPS
        return steps.get(_value(to_state), WorkflowStep.STATUS_CHANGE)

    def required_roles_for(
        self, domain: LifecycleDomain | str, from_state: str, to_state: str
    ) -> list[frozenset[Role]]:
        """Every role gate the (from, to) transition must pass."""
        domain = LifecycleDomain(domain)
        gates = []
        target_gate = self._required_roles[domain].get(_value(to_state))
        if target_gate:
            gates.append(target_gate)
        pair_gate = self._pair_roles[domain].get((_value(from_state), _value(to_state)))
        if pair_gate:
            gates.append(pair_gate)
        return gates

    # ── Validation ──────────────────────────────────────────────

    def validate_transition(
        self, domain: LifecycleDomain | str, from_state: str, to_state: str
    ) -> TransitionCheck:
        """
        Structural check of a transition against the domain table.

        Returns:
            TransitionCheck; ``allowed_states`` enumerates legal targets on failure.
        """
        domain = LifecycleDomain(domain)
        from_state, to_state = _value(from_state), _value(to_state)
        table = self._transitions[domain]

        for state in (from_state, to_state):
            if state not in table:
                return TransitionCheck(
                    valid=False,
                    domain=domain,
                    from_state=from_state,
                    to_state=to_state,
                    reason=DenialReason.UNKNOWN_STATE,
                    message=f"Unknown {domain.value} state: {state!r}",
                )

        if from_state == to_state:
            return TransitionCheck(
                valid=True, domain=domain, from_state=from_state, to_state=to_state,
                message="No state change",
            )

        allowed = sorted(table[from_state])
        if to_state not in table[from_state]:
            return TransitionCheck(
                valid=False,
                domain=domain,
                from_state=from_state,
                to_state=to_state,
                reason=DenialReason.INVALID_TRANSITION,
                allowed_states=allowed,
                message=(
                    f"Invalid {domain.value} transition from '{from_state}' to "
                    f"'{to_state}'. Allowed: {', '.join(allowed) or 'none (terminal state)'}"
                ),
            )

        return TransitionCheck(
            valid=True,
            domain=domain,
            from_state=from_state,
            to_state=to_state,
            allowed_states=allowed,
            message=f"Transition '{from_state}' -> '{to_state}' is valid",
        )

    def validate_transition_with_role(
        self,
        domain: LifecycleDomain | str,
        from_state: str,
        to_state: str,
        role: str | Role,
    ) -> TransitionCheck:
        """Structural check followed by the role gates for the target and the pair."""
        check = self.validate_transition(domain, from_state, to_state)
        if not check.valid or check.is_noop:
            return check

        role_name = _value(role)
        for gate in self.required_roles_for(check.domain, check.from_state, check.to_state):
            if role_name not in {r.value for r in gate}:
                required = sorted(r.value for r in gate)
                check.valid = False
                check.reason = DenialReason.INSUFFICIENT_ROLE_FOR_TRANSITION
                check.required_roles = required
                check.message = (
                    f"Role '{role_name}' cannot move {check.domain.value} from "
                    f"'{check.from_state}' to '{check.to_state}'. Required: {', '.join(required)}"
                )
                return check
        return check

    def action_targets(self, resource: str, action: str) -> frozenset[str]:
        """States ``action`` on ``resource`` may move into; empty when it moves none."""
        entry = self._action_transitions.get((resource, action))
        return entry[1] if entry else frozenset()

    def requires_transition(self, resource: str, action: str) -> bool:
        return (resource, action) in self._transition_required

    def validate_action_transition(
        self,
        resource: str,
        action: str,
        domain: LifecycleDomain | str,
        from_state: str,
        to_state: str | None = None,
        role: str | Role | None = None,
    ) -> TransitionCheck:
        """
        Validate a transition requested through a specific action.

        The target must be one the action may move into; an action outside
        ACTION_TRANSITIONS moves nothing. When ``to_state`` is omitted for an
        action in TRANSITION_REQUIRED, the single target reachable from
        ``from_state`` is used. The result then goes through the structural
        check and, when ``role`` is given, the role gates.
        """
        domain = LifecycleDomain(domain)
        from_state = _value(from_state)
        targets = self.action_targets(resource, action)
        required = self.requires_transition(resource, action)
        reachable = sorted(targets & self._transitions[domain].get(from_state, frozenset()))

        def invalid(target: str, message: str) -> TransitionCheck:
            return TransitionCheck(
                valid=False,
                domain=domain,
                from_state=from_state,
                to_state=target,
                reason=DenialReason.INVALID_TRANSITION,
                allowed_states=reachable,
                message=message,
            )

        if to_state is None:
            if not required:
                return TransitionCheck(
                    valid=True, domain=domain, from_state=from_state, to_state=from_state,
                    message="No state change",
                )
            if len(reachable) != 1:
                options = ", ".join(reachable) or "none"
                return invalid(
                    from_state,
                    f"'{action}' on {resource} from '{from_state}' needs a target state. "
                    f"Allowed: {options}",
                )
            to_state = reachable[0]

        to_state = _value(to_state)
        if not self.is_known_state(domain, to_state) or not self.is_known_state(domain, from_state):
            return self.validate_transition(domain, from_state, to_state)

        if to_state == from_state:
            if required:
                return invalid(
                    to_state,
                    f"'{action}' on {resource} must change state from '{from_state}'. "
                    f"Allowed: {', '.join(reachable) or 'none'}",
                )
        elif to_state not in targets:
            return invalid(
                to_state,
                f"'{action}' on {resource} cannot move '{from_state}' to '{to_state}'. "
                f"Allowed: {', '.join(reachable) or 'none'}",
            )

        if role is None:
            return self.validate_transition(domain, from_state, to_state)
        return self.validate_transition_with_role(domain, from_state, to_state, role)

    # ── Application ─────────────────────────────────────────────

    def apply(
        self,
        domain: LifecycleDomain | str,
        resource: ResourceSnapshot,
        to_state: str,
        performer_id: str,
        role: str | Role | None = None,
        step: str | WorkflowStep | None = None,
        notes: str = "",
    ) -> tuple[str, WorkflowHistoryEntry]:
        """
        Produce the new state and the history entry for a validated transition.

        Args:
            domain: Lifecycle the resource belongs to.
            resource: Snapshot read before validation.
            to_state: Target state.
            performer_id: Principal performing the step.
            role: When given, role gates are re-checked as well.
            step: Step to record; defaults to the step for ``to_state``.
            notes: Free-form history notes.

        Returns:
            (new_state, WorkflowHistoryEntry)

        Raises:
            TransitionError: If the transition does not validate.
        """
        if role is not None:
            check = self.validate_transition_with_role(domain, resource.state, to_state, role)
        else:
            check = self.validate_transition(domain, resource.state, to_state)
        if not check.valid:
            raise TransitionError(check.message)

        recorded_step = step or self.step_for_state(check.domain, check.to_state)
        entry = WorkflowHistoryEntry(
            step=_value(recorded_step),
            performer_id=performer_id,
            from_state=check.from_state,
            to_state=check.to_state,
            notes=notes,
        )
        logger.info(
            "Transition applied: %s %s %s -> %s by %s",
            check.domain.value, resource.id, check.from_state, check.to_state, performer_id,
        )
        return check.to_state, entry

    # ── Startup validation ──────────────────────────────────────

    def validate_table(self, domains: Iterable[LifecycleDomain] | None = None) -> None:
        """
        Check table invariants for each domain.

        Raises:
            CatalogError: Listing every invariant violation.
        """
        problems: list[str] = []
        for domain in domains or self._transitions:
            domain = LifecycleDomain(domain)
            table = self._transitions[domain]
            categories = self._categories[domain]
            for from_state, targets in table.items():
                for target in targets:
                    if target not in table:
                        problems.append(f"{domain.value}: {target} is reachable but has no entry")
                category = categories.get(from_state)
                if category is None:
                    problems.append(f"{domain.value}: {from_state} has no category")
                elif category == StateCategory.TERMINAL and targets:
                    problems.append(f"{domain.value}: terminal state {from_state} has outbound transitions")
                elif category != StateCategory.TERMINAL and not targets:
                    problems.append(f"{domain.value}: {from_state} has no outbound transitions but is not terminal")
            for state in self._required_roles[domain]:
                if state not in table:
                    problems.append(f"{domain.value}: role gate for unknown state {state}")
            for from_state, to_state in self._pair_roles[domain]:
                if to_state not in table.get(from_state, frozenset()):
                    problems.append(f"{domain.value}: pair gate for missing transition {from_state}->{to_state}")
        for (resource, action), (domain, targets) in self._action_transitions.items():
            for target in sorted(targets - set(self._transitions[domain])):
                problems.append(f"{resource}.{action}: unknown {domain.value} target {target}")
        for key in self._transition_required - set(self._action_transitions):
            problems.append(f"{key[0]}.{key[1]}: requires a transition but has no targets")
        if problems:
            raise CatalogError("Lifecycle tables invalid: " + "; ".join(problems))


def domain_for_resource(resource: str) -> LifecycleDomain | None:
    """Lifecycle governing a matrix resource, if any."""
    return RESOURCE_DOMAINS.get(resource)


def _value(item) -> str:
    return item.value if hasattr(item, "value") else item


# Global state machine instance
lifecycle = LifecycleStateMachine()
