"""
CertGate — Decision Orchestrator.

Central authorization entrypoint that sequences every decision:
1. Permission Resolver   — role grant, restriction and scope
2. Condition enforcement — draft limits, allowed statuses, test completion
3. Lifecycle             — action targets, structural transition and role gates
4. Separation of duties  — rules applicable to the action's workflow step
5. Commit                — compare-and-swap transition plus workflow history
6. Record                — decision appended to the audit ledger

The first denial short-circuits the sequence and its reason is returned
verbatim. Committing the transition and recording the decision are the only
side effects in the core.

Run ``python -m certgate.orchestrator`` to validate the catalog and lifecycle
tables against the configured database at startup.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from certgate.config import CertGateSettings, settings
from certgate.governance.contracts import (
    ConcurrentModificationError,
    DecisionRecorder,
    ResourceStore,
)
from certgate.governance.lifecycle import LifecycleStateMachine, domain_for_resource, lifecycle
from certgate.governance.permissions import PermissionResolver, Resolution, ResolutionContext
from certgate.governance.scope import ScopeFilter
from certgate.governance.separation import (
    APPROVAL_ALIASES,
    SeparationOfDutiesGuard,
    step_for_action,
)
from certgate.policy.catalog import RoleCatalog, role_catalog
from certgate.policy.schema import (
    Decision,
    DenialReason,
    Principal,
    ResourceSnapshot,
    StateTransition,
    WorkflowHistoryEntry,
    WorkflowStep,
)

logger = logging.getLogger(__name__)

# Conditions the orchestrator evaluates; every other condition is advisory
ENFORCED_CONDITIONS = frozenset({
    "max_draft_applications",
    "allowed_statuses",
    "require_all_tests_passed",
})


def configure_logging() -> None:
    """Configure structured logging."""
    logging.basicConfig(level=settings.log_level, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            (
                structlog.dev.ConsoleRenderer()
                if settings.log_format != "json"
                else structlog.processors.JSONRenderer()
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(settings.log_level)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


class DecisionOrchestrator:
    """
    Sequences the decision components for one request.

    The orchestrator holds no per-request state; concurrent calls are safe as
    long as the injected store is. Transitions are never retried here: a
    ConcurrentModification denial is returned to the caller.
    """

    def __init__(
        self,
        store: ResourceStore,
        recorder: DecisionRecorder | None = None,
        catalog: RoleCatalog | None = None,
        state_machine: LifecycleStateMachine | None = None,
        guard: SeparationOfDutiesGuard | None = None,
        max_draft_applications: int | None = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            store: Resource lookups and transition commits.
            recorder: Audit sink for decisions; None disables recording.
            catalog: Role catalog. Defaults to the shipped matrix.
            state_machine: Lifecycle tables. Defaults to the shipped tables.
            guard: Separation-of-duties rules. Defaults to a two-reviewer quorum.
            max_draft_applications: Overrides the matrix draft limit when set.
        """
        self.store = store
        self.recorder = recorder
        self.catalog = catalog or role_catalog
        self.resolver = PermissionResolver(self.catalog)
        self.scope_filter = ScopeFilter(self.catalog)
        self.lifecycle = state_machine or lifecycle
        self.guard = guard or SeparationOfDutiesGuard()
        self.max_draft_applications = max_draft_applications
        self.log = structlog.get_logger("certgate.decision")

    def authorize(
        self,
        principal: Principal,
        resource: str,
        action: str,
        resource_id: str | None = None,
        desired_state: str | None = None,
        category: str | None = None,
        notes: str = "",
    ) -> Decision:
        """
        Decide whether ``principal`` may perform ``action`` on ``resource``.

        Args:
            principal: Authenticated actor.
            resource: Resource name in the permission matrix.
            action: Action being attempted.
            resource_id: Target resource; None for collection-level actions such as create.
            desired_state: Lifecycle state the action moves the resource into.
            category: Sub-category for nested resources (document types).
            notes: Recorded with the workflow history entry.

        Returns:
            Decision; denials carry the originating reason code.

        Raises:
            ValueError: If ``desired_state`` is given without a resource that
                has a lifecycle.
        """
        base = {
            "principal_id": principal.id,
            "role": principal.role,
            "resource": resource,
            "action": action,
            "resource_id": resource_id,
        }

        # 1. Coarse grant, independent of the target resource
        resolution = self.resolver.resolve(
            principal.role, resource, action, ResolutionContext(category=category)
        )
        if not resolution.allowed:
            return self._deny(base, resolution.reason, resolution.message)

        snapshot = None
        is_assigned = False
        if resource_id is not None:
            snapshot = self.store.get_resource(resource_id)
            if snapshot is None:
                return self._deny(
                    base, DenialReason.NO_RESOURCE_ACCESS, f"Resource {resource_id} not found",
                )
            is_assigned = self._is_assigned(principal, snapshot)
            resolution = self.resolver.resolve(
                principal.role,
                resource,
                action,
                ResolutionContext(
                    check_scope=True,
                    is_owner=self._is_owner(principal, snapshot),
                    is_assigned=is_assigned,
                    principal_county=principal.county,
                    resource_county=snapshot.county,
                    resource_state=snapshot.state,
                    category=category,
                ),
            )
            if not resolution.allowed:
                return self._deny(base, resolution.reason, resolution.message, scope=resolution.scope)

        # 2. Conditions
        denial = self._enforce_conditions(principal, resolution, snapshot)
        if denial is not None:
            reason, message, details = denial
            return self._deny(base, reason, message, scope=resolution.scope, details=details)

        # 3. Lifecycle, through the targets the action may move into
        domain = None
        changes_state = False
        if desired_state is not None and snapshot is None:
            raise ValueError("desired_state requires a resource_id")
        if snapshot is not None and (
            desired_state is not None or self.lifecycle.requires_transition(resource, action)
        ):
            domain = domain_for_resource(snapshot.kind)
            if domain is None:
                raise ValueError(f"Resource kind '{snapshot.kind}' has no lifecycle")
            check = self.lifecycle.validate_action_transition(
                resource, action, domain, snapshot.state, desired_state, role=principal.role,
            )
            if not check.valid:
                return self._deny(
                    base,
                    check.reason,
                    check.message,
                    scope=resolution.scope,
                    details={
                        "from_state": check.from_state,
                        "to_state": check.to_state,
                        "allowed_states": check.allowed_states,
                        "required_roles": check.required_roles,
                    },
                )
            desired_state = check.to_state
            changes_state = not check.is_noop

        step = step_for_action(resource, action)
        if changes_state:
            state_step = self.lifecycle.step_for_state(domain, desired_state)
            # certification is recorded as itself but judged as approval
            if step is None or APPROVAL_ALIASES.get(state_step.value) == step.value:
                step = state_step

        # 4. Separation of duties
        if snapshot is not None:
            violation = self.guard.evaluate(
                step,
                principal,
                snapshot,
                declaration=self._declaration(principal, snapshot, step),
                completed_reviewers=self._reviewer_count(principal, snapshot, step),
                is_assigned=is_assigned,
            )
            if violation is not None:
                return self._deny(
                    base,
                    violation.reason,
                    violation.message,
                    scope=resolution.scope,
                    step=step,
                    details={"rule": violation.rule, "code": violation.code, **violation.details},
                )

        # 5. Commit
        transition = None
        entry = None
        if changes_state:
            new_state, entry = self.lifecycle.apply(
                domain, snapshot, desired_state, principal.id,
                role=principal.role, step=step, notes=notes,
            )
            try:
                self.store.commit_transition(
                    snapshot.id, snapshot.state, new_state, principal.id, entry
                )
            except ConcurrentModificationError as e:
                return self._deny(
                    base,
                    DenialReason.CONCURRENT_MODIFICATION,
                    str(e),
                    scope=resolution.scope,
                    step=step,
                    details={"expected_state": e.expected_state, "actual_state": e.actual_state},
                )
            transition = StateTransition(
                domain=domain,
                resource_id=snapshot.id,
                from_state=snapshot.state,
                to_state=new_state,
                performer_id=principal.id,
            )
        elif step is not None and snapshot is not None:
            entry = WorkflowHistoryEntry(
                step=step.value,
                performer_id=principal.id,
                from_state=snapshot.state,
                to_state=snapshot.state,
                notes=notes,
            )
            self.store.append_history(snapshot.id, entry)

        decision = Decision(
            allowed=True,
            message=resolution.message,
            step=step.value if step else None,
            scope=resolution.scope,
            predicate=self.scope_filter.predicate_for(resolution.scope, principal),
            conditions={
                k: v for k, v in resolution.conditions.items() if k not in ENFORCED_CONDITIONS
            },
            transition=transition,
            history_entry=entry,
            **base,
        )
        return self._finish(decision)

    # ── Relationship facts ──────────────────────────────────────

    def _is_owner(self, principal: Principal, snapshot: ResourceSnapshot) -> bool:
        if principal.organization_id and principal.organization_id == snapshot.organization_id:
            return True
        return self.store.is_owner(principal.id, snapshot.id)

    def _is_assigned(self, principal: Principal, snapshot: ResourceSnapshot) -> bool:
        if snapshot.assigned_team and snapshot.assigned_team in principal.team_ids:
            return True
        if snapshot.assigned_lab_id and snapshot.assigned_lab_id == principal.lab_id:
            return True
        return self.store.is_assigned(principal.id, snapshot.id)

    def _declaration(self, principal: Principal, snapshot: ResourceSnapshot, step):
        if not self.guard.needs_declaration(step):
            return None
        declaration = self.store.get_active_declaration(principal.id, snapshot.id)
        return declaration or principal.declaration_for(snapshot.id)

    def _reviewer_count(self, principal: Principal, snapshot: ResourceSnapshot, step) -> int:
        if not self.guard.needs_reviewer_count(step, principal.role):
            return 0
        return self.store.count_completed_reviewers(snapshot.id)

    # ── Conditions ──────────────────────────────────────────────

    def _enforce_conditions(
        self,
        principal: Principal,
        resolution: Resolution,
        snapshot: ResourceSnapshot | None,
    ) -> tuple[DenialReason, str, dict[str, Any]] | None:
        conditions = resolution.conditions

        if "max_draft_applications" in conditions:
            limit = (
                self.max_draft_applications
                if self.max_draft_applications is not None
                else conditions["max_draft_applications"]
            )
            drafts = self.store.count_draft_applications(principal.id)
            if drafts >= limit:
                return (
                    DenialReason.CONDITION_NOT_MET,
                    f"Draft application limit reached ({drafts}/{limit})",
                    {"condition": "max_draft_applications", "limit": limit, "current": drafts},
                )

        if "allowed_statuses" in conditions and snapshot is not None:
            allowed = conditions["allowed_statuses"]
            if snapshot.state not in allowed:
                return (
                    DenialReason.CONDITION_NOT_MET,
                    f"Action '{resolution.action}' is not allowed while the resource is "
                    f"'{snapshot.state}'. Allowed: {', '.join(allowed)}",
                    {"condition": "allowed_statuses", "allowed": list(allowed), "current": snapshot.state},
                )

        if conditions.get("require_all_tests_passed") and snapshot is not None:
            if not self.store.all_tests_passed(snapshot.id):
                return (
                    DenialReason.CONDITION_NOT_MET,
                    "All compliance tests must pass before this action",
                    {"condition": "require_all_tests_passed"},
                )

        return None

    # ── Results ─────────────────────────────────────────────────

    def _deny(
        self,
        base: dict[str, Any],
        reason: DenialReason,
        message: str,
        scope=None,
        step: WorkflowStep | None = None,
        details: dict[str, Any] | None = None,
    ) -> Decision:
        decision = Decision(
            allowed=False,
            reason=reason,
            message=message,
            scope=scope,
            step=step.value if step else None,
            details=details or {},
            **base,
        )
        return self._finish(decision)

    def _finish(self, decision: Decision) -> Decision:
        if self.recorder is not None:
            try:
                self.recorder.record(decision)
            except Exception:
                # Store writes are already committed; the caller must see the outcome
                if decision.transition is None and decision.history_entry is None:
                    raise
                logger.exception(
                    "Failed to record committed decision: %s %s.%s on %s",
                    decision.principal_id, decision.resource, decision.action, decision.resource_id,
                )

        event = "certgate.decision.allowed" if decision.allowed else "certgate.decision.denied"
        self.log.info(
            event,
            principal_id=decision.principal_id,
            role=decision.role,
            resource=decision.resource,
            action=decision.action,
            resource_id=decision.resource_id,
            reason=decision.code,
            transition=(
                f"{decision.transition.from_state}->{decision.transition.to_state}"
                if decision.transition else None
            ),
        )
        return decision


def build_orchestrator(config: CertGateSettings | None = None) -> DecisionOrchestrator:
    """
    Wire the orchestrator to the configured database.

    Validates the role catalog and lifecycle tables first; a malformed table
    fails here rather than at request time.

    Raises:
        CatalogError: If the catalog or the lifecycle tables are invalid.
    """
    from certgate.ledger.models import create_db_engine
    from certgate.ledger.service import DecisionLedger
    from certgate.ledger.store import SqlResourceStore

    config = config or settings
    role_catalog.validate()
    lifecycle.validate_table()

    engine = create_db_engine(config.database_url, echo=config.database_echo)
    store = SqlResourceStore(engine=engine)
    store.initialize()

    recorder = None
    if config.record_decisions:
        recorder = DecisionLedger(engine=engine)
        recorder.initialize()

    return DecisionOrchestrator(
        store=store,
        recorder=recorder,
        guard=SeparationOfDutiesGuard(min_reviewers=config.min_reviewers),
        max_draft_applications=config.max_draft_applications,
    )


def main() -> None:
    """Startup check: validate tables, connect storage, verify the ledger."""
    configure_logging()
    log = structlog.get_logger()

    log.info(
        "certgate.orchestrator.starting",
        database_url=settings.database_url.split("@")[-1],
        min_reviewers=settings.min_reviewers,
        record_decisions=settings.record_decisions,
    )

    try:
        orchestrator = build_orchestrator()
    except Exception as e:
        log.exception("certgate.orchestrator.fatal_error", error=str(e))
        sys.exit(1)

    if orchestrator.recorder is not None:
        is_valid, entries, msg = orchestrator.recorder.verify_chain()
        if not is_valid:
            log.critical("certgate.orchestrator.integrity_failure", message=msg, entries=entries)
            sys.exit(1)
        log.info("certgate.orchestrator.ledger_ready", entries=entries)

    log.info("certgate.orchestrator.ready", roles=len(orchestrator.catalog.roles))


if __name__ == "__main__":
    main()
