"""
Authorization Schema — Pydantic models for every entity the certification
authorization core reasons about.

These models are the canonical data structures shared by the Role Catalog,
the Permission Resolver, the Lifecycle State Machine, the Separation-of-Duties
Guard and the Decision Orchestrator. They describe *what* is being decided
(who, on which resource, in which state, with which history); none of them
touch storage.

Enumerations are plain ``str`` enums so that values round-trip unchanged through
JSON, SQL columns and transport layers.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ════════════════════════════════════════════════════════════════
# Enumerations
# ════════════════════════════════════════════════════════════════


class Role(str, enum.Enum):
    """The nine roles of the certification platform."""

    # Vendor / developer organizations
    VENDOR_DEVELOPER = "vendor_developer"
    VENDOR_TECHNICAL_LEAD = "vendor_technical_lead"
    VENDOR_COMPLIANCE_OFFICER = "vendor_compliance_officer"

    # DHA administration
    DHA_SYSTEM_ADMINISTRATOR = "dha_system_administrator"
    DHA_CERTIFICATION_OFFICER = "dha_certification_officer"

    # Testing lab
    TESTING_LAB_STAFF = "testing_lab_staff"

    # Certification committee
    CERTIFICATION_COMMITTEE_MEMBER = "certification_committee_member"

    # County health
    COUNTY_HEALTH_OFFICER = "county_health_officer"

    # Public
    PUBLIC_USER = "public_user"


class Scope(str, enum.Enum):
    """Breadth of resources a role may act on."""

    OWN = "own"
    ASSIGNED = "assigned"
    COUNTY = "county"
    CERTIFIED_ONLY = "certified_only"
    ALL = "all"


class LifecycleDomain(str, enum.Enum):
    """The two lifecycles governed by the state machine."""

    ACCOUNT = "account"
    APPLICATION = "application"


class AccountState(str, enum.Enum):
    """Account status lifecycle."""

    # Initial
    PENDING_VERIFICATION = "pending_verification"
    PENDING_REGISTRATION = "pending_registration"
    PENDING_SETUP = "pending_setup"

    # Active
    ACTIVE = "active"
    ROLE_UPDATE_PENDING = "role_update_pending"

    # Workflow (organization accounts)
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    CLARIFICATION = "clarification"
    APPROVED = "approved"
    CERTIFIED = "certified"

    # Disabled
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    TERMINATED = "terminated"
    CANCELLED = "cancelled"
    REJECTED = "rejected"

    # Terminal
    DEACTIVATED = "deactivated"


class ApplicationState(str, enum.Enum):
    """Certification application lifecycle."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    TESTING = "testing"
    COMMITTEE_REVIEW = "committee_review"
    APPROVED = "approved"
    CERTIFIED = "certified"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


class StateCategory(str, enum.Enum):
    """Primary category of a lifecycle state."""

    INITIAL = "initial"
    ACTIVE = "active"
    WORKFLOW = "workflow"
    DISABLED = "disabled"
    TERMINAL = "terminal"


class WorkflowStep(str, enum.Enum):
    """Named steps recorded in a resource's workflow history."""

    SUBMISSION = "submission"
    REVIEW = "review"
    TESTING = "testing"
    VOTE = "vote"
    APPROVAL = "approval"
    CERTIFICATION = "certification"
    REJECTION = "rejection"
    RETURN = "return"
    WITHDRAWAL = "withdrawal"
    STATUS_CHANGE = "status_change"


class ConflictType(str, enum.Enum):
    """Kinds of declared conflict of interest."""

    FINANCIAL_INTEREST = "financial_interest"
    EMPLOYMENT_HISTORY = "employment_history"
    FAMILY_RELATIONSHIP = "family_relationship"
    BUSINESS_RELATIONSHIP = "business_relationship"
    ADVISORY_ROLE = "advisory_role"
    COMPETITIVE_INTEREST = "competitive_interest"
    OTHER = "other"


class DeclarationStatus(str, enum.Enum):
    ACTIVE = "active"
    RESOLVED = "resolved"
    REVIEWED = "reviewed"
    EXPIRED = "expired"
    REVOKED = "revoked"


class DenialReason(str, enum.Enum):
    """
    Stable denial reason codes returned by ``authorize``.

    Values never change: transports map them to status codes and user-facing
    remediation messages.
    """

    UNKNOWN_ROLE = "UnknownRole"
    NO_RESOURCE_ACCESS = "NoResourceAccess"
    ACTION_NOT_PERMITTED = "ActionNotPermitted"
    ROLE_RESTRICTED = "RoleRestricted"
    SCOPE_VIOLATION = "ScopeViolation"
    CONDITION_NOT_MET = "ConditionNotMet"
    UNKNOWN_STATE = "UnknownState"
    INVALID_TRANSITION = "InvalidTransition"
    INSUFFICIENT_ROLE_FOR_TRANSITION = "InsufficientRoleForTransition"
    SELF_APPROVAL = "SelfApproval"
    WORKFLOW_STEP_CONFLICT = "WorkflowStepConflict"
    VENDOR_REVIEW_RESTRICTED = "VendorReviewRestricted"
    ADMIN_APPROVAL_RESTRICTED = "AdminApprovalRestricted"
    DECLARATION_REQUIRED = "DeclarationRequired"
    MUST_ABSTAIN = "MustAbstain"
    FINANCIAL_CONFLICT = "FinancialConflict"
    INSUFFICIENT_REVIEWERS = "InsufficientReviewers"
    UNASSIGNED_ACCESS = "UnassignedAccess"
    CONCURRENT_MODIFICATION = "ConcurrentModification"

    @property
    def http_status(self) -> int:
        """Suggested transport status for this reason."""
        return _REASON_HTTP_STATUS.get(self, 403)

    @property
    def legacy_code(self) -> str:
        """Error code used by the existing certification portal clients."""
        return _REASON_LEGACY_CODES.get(self, "AUTHZ-001")

    @property
    def retryable(self) -> bool:
        return self is DenialReason.CONCURRENT_MODIFICATION


_REASON_HTTP_STATUS: dict[DenialReason, int] = {
    DenialReason.UNKNOWN_STATE: 400,
    DenialReason.INVALID_TRANSITION: 400,
    DenialReason.CONCURRENT_MODIFICATION: 409,
}

_REASON_LEGACY_CODES: dict[DenialReason, str] = {
    DenialReason.CONDITION_NOT_MET: "AUTHZ-002",
    DenialReason.UNKNOWN_STATE: "AUTHZ-003",
    DenialReason.INVALID_TRANSITION: "AUTHZ-003",
    DenialReason.INSUFFICIENT_ROLE_FOR_TRANSITION: "AUTHZ-003",
    DenialReason.SELF_APPROVAL: "SOD-001",
    DenialReason.DECLARATION_REQUIRED: "SOD-002",
    DenialReason.MUST_ABSTAIN: "SOD-002",
    DenialReason.FINANCIAL_CONFLICT: "SOD-002",
    DenialReason.UNASSIGNED_ACCESS: "SOD-003",
    DenialReason.WORKFLOW_STEP_CONFLICT: "SOD-004",
    DenialReason.VENDOR_REVIEW_RESTRICTED: "SOD-005",
    DenialReason.ADMIN_APPROVAL_RESTRICTED: "SOD-006",
    DenialReason.INSUFFICIENT_REVIEWERS: "SOD-007",
    DenialReason.CONCURRENT_MODIFICATION: "SYS-003",
}


# ════════════════════════════════════════════════════════════════
# Role & Permission Models
# ════════════════════════════════════════════════════════════════


class ResourcePermission(BaseModel):
    """
    What one role may do to one resource.

    A resource is either *flat* (``categories`` empty: ``actions``/``scope``
    apply directly) or *nested* (``categories`` maps a sub-category such as a
    document type to its own ResourcePermission). Both shapes are resolved
    through the same lookup in the Permission Resolver.
    """

    model_config = ConfigDict(frozen=True)

    actions: frozenset[str] = Field(
        default_factory=frozenset, description="Actions granted on the resource"
    )
    scope: Scope = Field(default=Scope.OWN, description="Breadth of the grant")
    conditions: dict[str, dict[str, Any]] = Field(
        default_factory=dict,
        description="Per-action conditions, e.g. {'create': {'max_draft_applications': 5}}",
    )
    restrictions: dict[str, bool] = Field(
        default_factory=dict,
        description="Explicit negative overrides keyed 'cannot_<action>'",
    )
    categories: dict[str, ResourcePermission] = Field(
        default_factory=dict, description="Per-category grants for nested resources"
    )
    attributes: dict[str, Any] = Field(
        default_factory=dict,
        description="Descriptive qualifiers (types, formats, detail level)",
    )

    @property
    def is_nested(self) -> bool:
        return bool(self.categories)

    def conditions_for(self, action: str) -> dict[str, Any]:
        return dict(self.conditions.get(action, {}))

    def is_restricted(self, action: str) -> bool:
        return bool(self.restrictions.get(f"cannot_{action}", False))

    def all_actions(self) -> frozenset[str]:
        """Union of flat actions and every category's actions."""
        actions = set(self.actions)
        for category in self.categories.values():
            actions |= category.all_actions()
        return frozenset(actions)


ResourcePermission.model_rebuild()


class RoleDefinition(BaseModel):
    """
    Static description of a role.

    ``level`` orders roles by systemic authority. It is not a total order over
    permissions: a higher level never implies a superset of grants.
    """

    model_config = ConfigDict(frozen=True)

    role: Role
    display_name: str
    level: int = Field(description="Precedence level (higher = more systemic authority)")
    portal: str = Field(description="Default landing area after sign-in")
    restrictions: dict[str, bool] = Field(
        default_factory=dict,
        description="Role-wide 'cannot_<action>' overrides applied to every resource",
    )
    description: str = ""


# ════════════════════════════════════════════════════════════════
# Principal & Resource Models
# ════════════════════════════════════════════════════════════════


class ConflictDeclaration(BaseModel):
    """A committee member's conflict-of-interest declaration for one resource."""

    principal_id: str
    resource_id: str
    has_conflict: bool = False
    conflict_type: ConflictType | None = None
    details: str = ""
    status: DeclarationStatus = DeclarationStatus.ACTIVE
    declared_at: datetime = Field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        return self.status == DeclarationStatus.ACTIVE


class Principal(BaseModel):
    """
    The authenticated actor requesting an action.

    Created by the authentication layer and passed in by reference; the core
    never mutates it.
    """

    id: str
    role: str = Field(description="Role identifier; unknown values are denied, not raised")
    organization_id: str | None = None
    county: str | None = None
    team_ids: list[str] = Field(default_factory=list)
    lab_id: str | None = None
    conflict_declarations: dict[str, ConflictDeclaration] = Field(
        default_factory=dict, description="Declarations keyed by resource id"
    )
    financial_interest_org_ids: list[str] = Field(default_factory=list)
    employment_org_ids: list[str] = Field(default_factory=list)

    def declaration_for(self, resource_id: str) -> ConflictDeclaration | None:
        declaration = self.conflict_declarations.get(resource_id)
        if declaration is not None and declaration.is_active:
            return declaration
        return None

    def has_ties_to(self, organization_id: str | None) -> bool:
        """Whether the principal was employed by or holds an interest in the organization."""
        if not organization_id:
            return False
        return (
            organization_id in self.financial_interest_org_ids
            or organization_id in self.employment_org_ids
        )


class WorkflowHistoryEntry(BaseModel):
    """One append-only record of who performed which step on a resource."""

    step: str
    performer_id: str
    timestamp: datetime = Field(default_factory=utcnow)
    from_state: str | None = None
    to_state: str | None = None
    notes: str = ""


class ResourceSnapshot(BaseModel):
    """
    Authorization-relevant view of a resource (application or account).

    Returned by the resource store; everything else about the resource is
    business data the core does not see.
    """

    id: str
    kind: str = Field(default="applications", description="Resource name in the permission matrix")
    creator_id: str | None = None
    organization_id: str | None = None
    county: str | None = None
    state: str
    team_member_ids: list[str] = Field(default_factory=list)
    assignee_id: str | None = None
    assigned_team: str | None = None
    assigned_lab_id: str | None = None
    workflow_history: list[WorkflowHistoryEntry] = Field(default_factory=list)

    def steps_performed_by(self, principal_id: str) -> list[str]:
        """Distinct steps the principal performed, in first-performed order."""
        steps: list[str] = []
        for entry in self.workflow_history:
            if entry.performer_id == principal_id and entry.step not in steps:
                steps.append(entry.step)
        return steps

    def performers_of(self, step: str) -> set[str]:
        return {e.performer_id for e in self.workflow_history if e.step == step}


# ════════════════════════════════════════════════════════════════
# Decision Models
# ════════════════════════════════════════════════════════════════


class ScopePredicate(BaseModel):
    """
    Declarative data-access predicate derived from a resolved scope.

    ``field``/``operator``/``values`` describe a single clause; ``any_of``
    holds alternative clauses (assignment matches either the assignee or the
    assigned team). An unrestricted predicate has ``operator == "any"``.
    """

    model_config = ConfigDict(frozen=True)

    scope: Scope | None = None
    field: str | None = None
    operator: str = "any"
    values: tuple[str, ...] = ()
    any_of: tuple[ScopePredicate, ...] = ()

    @computed_field
    @property
    def unrestricted(self) -> bool:
        return self.operator == "any" and not self.any_of

    def matches(self, record: dict[str, Any]) -> bool:
        """Evaluate the predicate against a plain mapping of resource fields."""
        if self.any_of:
            return any(clause.matches(record) for clause in self.any_of)
        if self.operator == "any":
            return True
        if self.operator == "none":
            return False
        value = record.get(self.field) if self.field else None
        if isinstance(value, enum.Enum):
            value = value.value
        if self.operator == "eq":
            return value is not None and value == self.values[0]
        if self.operator == "in":
            return value in self.values
        raise ValueError(f"Unsupported predicate operator: {self.operator}")

    def as_dict(self) -> dict[str, Any]:
        """Store-neutral description for callers translating to their own query language."""
        if self.any_of:
            return {"any_of": [clause.as_dict() for clause in self.any_of]}
        if self.operator == "any":
            return {}
        if self.operator == "none":
            return {"none": True}
        if self.operator == "eq":
            return {self.field: self.values[0]}
        return {self.field: {"in": list(self.values)}}


ScopePredicate.model_rebuild()


class StateTransition(BaseModel):
    """A committed lifecycle transition."""

    domain: LifecycleDomain
    resource_id: str
    from_state: str
    to_state: str
    performer_id: str


class Decision(BaseModel):
    """
    The result of ``authorize``.

    Denials carry the originating reason code verbatim. Allowed decisions carry
    the scope predicate for downstream filtering and, for state changes, the
    committed transition and the appended history entry.
    """

    allowed: bool
    reason: DenialReason | None = None
    message: str = ""
    principal_id: str
    role: str
    resource: str
    action: str
    resource_id: str | None = None
    step: str | None = None
    scope: Scope | None = None
    predicate: ScopePredicate | None = None
    conditions: dict[str, Any] = Field(default_factory=dict)
    transition: StateTransition | None = None
    history_entry: WorkflowHistoryEntry | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    decided_at: datetime = Field(default_factory=utcnow)

    @computed_field
    @property
    def retryable(self) -> bool:
        return self.reason is not None and self.reason.retryable

    @property
    def code(self) -> str | None:
        return self.reason.value if self.reason else None
