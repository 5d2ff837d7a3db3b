"""
Permission Matrix — the complete per-role, per-resource grant table.

Each of the nine roles maps resource names to a ResourcePermission. Nested
resources (documents for the technical lead and compliance officer) carry
per-category grants instead of a flat action list.

Role-wide restrictions (``cannot_approve``, ``cannot_vote``, ...) live on the
RoleDefinition and override positive grants on every resource.
"""

from __future__ import annotations

from certgate.policy.schema import (
    ApplicationState,
    ResourcePermission,
    Role,
    RoleDefinition,
    Scope,
)

RP = ResourcePermission


# ════════════════════════════════════════════════════════════════
# Role Definitions
# ════════════════════════════════════════════════════════════════

ROLE_DEFINITIONS: dict[Role, RoleDefinition] = {
    Role.VENDOR_DEVELOPER: RoleDefinition(
        role=Role.VENDOR_DEVELOPER,
        display_name="Vendor/Developer",
        level=50,
        portal="/vendor-portal",
        description="Software vendors submitting certification applications.",
    ),
    Role.VENDOR_TECHNICAL_LEAD: RoleDefinition(
        role=Role.VENDOR_TECHNICAL_LEAD,
        display_name="Vendor Technical Lead",
        level=40,
        portal="/vendor-portal",
        description="Vendor staff responsible for technical documentation and API compliance.",
    ),
    Role.VENDOR_COMPLIANCE_OFFICER: RoleDefinition(
        role=Role.VENDOR_COMPLIANCE_OFFICER,
        display_name="Vendor Compliance Officer",
        level=40,
        portal="/vendor-portal",
        description="Vendor staff responsible for compliance documentation.",
    ),
    Role.DHA_SYSTEM_ADMINISTRATOR: RoleDefinition(
        role=Role.DHA_SYSTEM_ADMINISTRATOR,
        display_name="DHA System Administrator",
        level=100,
        portal="/admin-portal",
        restrictions={
            "cannot_approve": True,
            "cannot_vote": True,
            "cannot_conduct_reviews": True,
        },
        description="Manages the platform; never adjudicates certifications.",
    ),
    Role.DHA_CERTIFICATION_OFFICER: RoleDefinition(
        role=Role.DHA_CERTIFICATION_OFFICER,
        display_name="DHA Certification Officer",
        level=80,
        portal="/certification-portal",
        description="Reviews and evaluates certification applications.",
    ),
    Role.TESTING_LAB_STAFF: RoleDefinition(
        role=Role.TESTING_LAB_STAFF,
        display_name="Testing Lab Staff",
        level=60,
        portal="/lab-portal",
        restrictions={
            "cannot_approve": True,
            "cannot_access_business_docs": True,
            "cannot_access_compliance_docs": True,
        },
        description="Conducts technical compliance tests on assigned applications.",
    ),
    Role.CERTIFICATION_COMMITTEE_MEMBER: RoleDefinition(
        role=Role.CERTIFICATION_COMMITTEE_MEMBER,
        display_name="Certification Committee Member",
        level=90,
        portal="/committee-portal",
        restrictions={
            "cannot_conduct_reviews": True,
            "cannot_execute": True,
            "cannot_contact_vendors": True,
            "must_declare_conflicts": True,
        },
        description="Votes on final certification decisions.",
    ),
    Role.COUNTY_HEALTH_OFFICER: RoleDefinition(
        role=Role.COUNTY_HEALTH_OFFICER,
        display_name="County Health Officer",
        level=30,
        portal="/county-portal",
        restrictions={
            "cannot_access_applications": True,
            "cannot_access_reviews": True,
            "cannot_access_vendor_docs": True,
            "read_only_access": True,
        },
        description="Monitors certified systems within a county.",
    ),
    Role.PUBLIC_USER: RoleDefinition(
        role=Role.PUBLIC_USER,
        display_name="Public User",
        level=10,
        portal="/dashboard",
        restrictions={
            "read_only": True,
            "no_application_access": True,
            "no_document_access": True,
            "no_test_access": True,
        },
        description="Read-only access to the registry of certified systems.",
    ),
}

VENDOR_ROLES: frozenset[Role] = frozenset({
    Role.VENDOR_DEVELOPER,
    Role.VENDOR_TECHNICAL_LEAD,
    Role.VENDOR_COMPLIANCE_OFFICER,
})

DHA_ROLES: frozenset[Role] = frozenset({
    Role.DHA_SYSTEM_ADMINISTRATOR,
    Role.DHA_CERTIFICATION_OFFICER,
})

ADMIN_ROLES: frozenset[Role] = frozenset({Role.DHA_SYSTEM_ADMINISTRATOR})

APPROVAL_ROLES: frozenset[Role] = frozenset({Role.CERTIFICATION_COMMITTEE_MEMBER})

# Every action name that may appear in the matrix
KNOWN_ACTIONS: frozenset[str] = frozenset({
    "access", "approve", "assign", "attend", "comment", "create", "delete",
    "execute", "export", "filter", "read", "reject", "restore", "return",
    "review", "search", "submit", "subscribe", "update", "verify", "withdraw",
})

_COMMITTEE_VISIBLE = [
    ApplicationState.COMMITTEE_REVIEW.value,
    ApplicationState.APPROVED.value,
    ApplicationState.CERTIFIED.value,
]


# ════════════════════════════════════════════════════════════════
# Permission Matrix
# ════════════════════════════════════════════════════════════════

PERMISSION_MATRIX: dict[Role, dict[str, ResourcePermission]] = {
    # ── Vendor Developer ───────────────────────────────────────
    Role.VENDOR_DEVELOPER: {
        "applications": RP(
            actions=["create", "read", "update", "submit", "withdraw"],
            scope=Scope.OWN,
            conditions={
                "create": {"max_draft_applications": 5},
                "update": {"allowed_statuses": ["draft", "rejected"]},
                "submit": {"allowed_statuses": ["draft", "rejected"]},
            },
        ),
        "documents": RP(
            actions=["create", "read", "update", "delete"],
            scope=Scope.OWN,
            conditions={"delete": {"not_in_review": True}},
            attributes={"types": ["technical", "compliance", "business", "security", "user_manual"]},
        ),
        "team": RP(
            actions=["create", "read", "update", "delete"],
            scope=Scope.OWN,
            attributes={"roles": [r.value for r in sorted(VENDOR_ROLES, key=lambda r: r.value)]},
        ),
        "tests": RP(actions=["read"], scope=Scope.OWN, attributes={"details": "summary"}),
        "reports": RP(
            actions=["read"],
            scope=Scope.OWN,
            attributes={"types": ["test_summary", "review_summary"]},
        ),
        "registry": RP(actions=["read"], scope=Scope.ALL),
        "api_credentials": RP(actions=["read"], scope=Scope.OWN),
        "notifications": RP(actions=["read", "update"], scope=Scope.OWN),
    },
    # ── Vendor Technical Lead ──────────────────────────────────
    Role.VENDOR_TECHNICAL_LEAD: {
        "applications": RP(
            actions=["read", "update"],
            scope=Scope.OWN,
            conditions={
                "update": {"sections": ["technical_specs", "api_documentation", "architecture"]},
            },
        ),
        "documents": RP(
            scope=Scope.OWN,
            categories={
                "technical": RP(
                    actions=["create", "read", "update", "delete"],
                    scope=Scope.OWN,
                    attributes={"types": [
                        "api_docs", "technical_specs", "architecture",
                        "data_dictionary", "integration_guide",
                    ]},
                ),
                "compliance": RP(actions=["read"], scope=Scope.OWN),
                "business": RP(actions=["read"], scope=Scope.OWN),
            },
        ),
        "api_docs": RP(
            actions=["create", "read", "update", "delete"],
            scope=Scope.OWN,
            attributes={"formats": ["openapi", "swagger", "postman", "fhir"]},
        ),
        "test_credentials": RP(
            actions=["create", "read", "update", "delete"],
            scope=Scope.OWN,
            attributes={"types": ["sandbox", "test_environment"]},
        ),
        "tests": RP(actions=["read"], scope=Scope.OWN, attributes={"details": "detailed"}),
        "team": RP(actions=["read"], scope=Scope.OWN),
        "reports": RP(
            actions=["read"],
            scope=Scope.OWN,
            attributes={"types": ["technical_assessment", "api_compliance"]},
        ),
        "registry": RP(actions=["read"], scope=Scope.ALL),
    },
    # ── Vendor Compliance Officer ──────────────────────────────
    Role.VENDOR_COMPLIANCE_OFFICER: {
        "applications": RP(actions=["read"], scope=Scope.OWN),
        "documents": RP(
            scope=Scope.OWN,
            categories={
                "compliance": RP(
                    actions=["create", "read", "update", "delete"],
                    scope=Scope.OWN,
                    attributes={"types": [
                        "dpia", "privacy_policy", "terms_of_service",
                        "consent_forms", "data_retention_policy",
                    ]},
                ),
                "technical": RP(actions=["read"], scope=Scope.OWN),
                "business": RP(actions=["read"], scope=Scope.OWN),
            },
        ),
        "dpia": RP(
            actions=["create", "read", "update"],
            scope=Scope.OWN,
            attributes={"required_fields": ["data_types", "processing_activities", "risks", "mitigations"]},
        ),
        "policies": RP(
            actions=["create", "read", "update"],
            scope=Scope.OWN,
            attributes={"types": ["privacy", "security", "data_retention", "consent_management"]},
        ),
        "compliance_checklist": RP(
            actions=["create", "read", "update"],
            scope=Scope.OWN,
            attributes={"frameworks": ["data_protection_act", "health_act", "interoperability_standards"]},
        ),
        "tests": RP(actions=["read"], scope=Scope.OWN, attributes={"details": "compliance_only"}),
        "team": RP(actions=["read"], scope=Scope.OWN),
        "reports": RP(
            actions=["read"],
            scope=Scope.OWN,
            attributes={"types": ["compliance_assessment", "dpia_summary"]},
        ),
        "registry": RP(actions=["read"], scope=Scope.ALL),
    },
    # ── DHA System Administrator ───────────────────────────────
    Role.DHA_SYSTEM_ADMINISTRATOR: {
        "users": RP(
            actions=["create", "read", "update", "delete"],
            scope=Scope.ALL,
            conditions={
                "create": {"require_approval": True},
                "delete": {"require_confirmation": True, "cannot_delete": ["own_account"]},
            },
        ),
        "roles": RP(
            actions=["create", "read", "update", "delete"],
            scope=Scope.ALL,
            restrictions={"cannot_modify": True},
            attributes={"protected_roles": [Role.DHA_SYSTEM_ADMINISTRATOR.value]},
        ),
        "permissions": RP(actions=["create", "read", "update", "delete"], scope=Scope.ALL),
        "system_settings": RP(
            actions=["create", "read", "update", "delete"],
            scope=Scope.ALL,
            attributes={"categories": ["platform", "email", "notifications", "integrations", "security"]},
        ),
        "applications": RP(
            actions=["read", "delete"],
            scope=Scope.ALL,
            conditions={
                "delete": {"allowed_statuses": ["draft", "withdrawn"], "require_confirmation": True},
            },
        ),
        "documents": RP(
            actions=["read", "delete"],
            scope=Scope.ALL,
            conditions={"delete": {"require_justification": True}},
        ),
        "tests": RP(actions=["read", "delete"], scope=Scope.ALL),
        "audit_logs": RP(actions=["read", "export"], scope=Scope.ALL, attributes={"retention": "7_years"}),
        "reports": RP(
            actions=["read", "export"],
            scope=Scope.ALL,
            attributes={"types": ["system_usage", "user_activity", "application_statistics", "security_events"]},
        ),
        "security_events": RP(actions=["read", "export"], scope=Scope.ALL),
        "ip_management": RP(actions=["create", "read", "update", "delete"], scope=Scope.ALL),
        "backups": RP(actions=["create", "read", "restore"], scope=Scope.ALL),
        "registry": RP(actions=["read"], scope=Scope.ALL),
    },
    # ── DHA Certification Officer ──────────────────────────────
    Role.DHA_CERTIFICATION_OFFICER: {
        "applications": RP(
            actions=["read", "update", "approve", "reject", "return", "review"],
            scope=Scope.ALL,
            conditions={
                "approve": {"require_all_tests_passed": True, "require_committee_vote": True},
                "reject": {"require_justification": True},
                "return": {"require_feedback": True},
                "update": {"sections": ["review_status", "officer_notes", "checklist"]},
            },
            attributes={"workflow": {"can_assign": True, "can_reassign": True, "can_escalate": True}},
        ),
        "users": RP(
            actions=["read", "update"],
            scope=Scope.ALL,
            attributes={"purpose": "organization account review"},
        ),
        "documents": RP(
            actions=["read", "review", "comment"],
            scope=Scope.ALL,
            attributes={"can_request_changes": True},
        ),
        "reviews": RP(
            actions=["create", "read", "update", "submit"],
            scope=Scope.ASSIGNED,
            attributes={"checklist": [
                "technical_compliance", "legal_compliance",
                "security_requirements", "interoperability_standards",
            ]},
        ),
        "tests": RP(
            actions=["create", "read", "update", "execute", "assign"],
            scope=Scope.ASSIGNED,
            attributes={"can_create_test_plan": True, "can_assign_to_lab": True},
        ),
        "comments": RP(
            actions=["create", "read", "update", "delete"],
            scope=Scope.ASSIGNED,
            attributes={"types": ["internal", "vendor_facing"]},
        ),
        "reports": RP(
            actions=["create", "read", "export"],
            scope=Scope.ASSIGNED,
            attributes={"types": ["review_report", "compliance_report", "recommendation_report"]},
        ),
        "notifications": RP(
            actions=["create", "read"],
            scope=Scope.ASSIGNED,
            attributes={"can_notify_vendors": True},
        ),
        "registry": RP(actions=["read"], scope=Scope.ALL),
        "vendor_communication": RP(
            actions=["create", "read"],
            scope=Scope.ASSIGNED,
            attributes={"types": ["clarification_request", "document_request", "meeting_request"]},
        ),
    },
    # ── Testing Lab Staff ──────────────────────────────────────
    Role.TESTING_LAB_STAFF: {
        "applications": RP(
            actions=["read"],
            scope=Scope.ASSIGNED,
            attributes={"access_level": "technical_only"},
        ),
        "tests": RP(
            actions=["read", "execute", "update"],
            scope=Scope.ASSIGNED,
            attributes={
                "types": [
                    "api_compliance", "security_testing", "performance_testing",
                    "interoperability_testing", "data_validation",
                ],
                "can_create_test_cases": True,
            },
        ),
        "test_results": RP(
            actions=["create", "read", "update", "submit"],
            scope=Scope.ASSIGNED,
            attributes={
                "status": ["pass", "fail", "conditional_pass", "not_applicable"],
                "evidence": "required",
                "notes": "required_for_failures",
            },
        ),
        "evidence": RP(
            actions=["create", "read", "update", "delete"],
            scope=Scope.ASSIGNED,
            attributes={"types": ["screenshots", "logs", "api_responses", "test_outputs"], "max_file_size": "50MB"},
        ),
        "test_environments": RP(actions=["read", "access"], scope=Scope.ASSIGNED),
        "reports": RP(
            actions=["create", "read", "export"],
            scope=Scope.ASSIGNED,
            attributes={"types": ["test_execution_report", "findings_report", "technical_summary"]},
        ),
        "vendor_communication": RP(
            actions=["create", "read"],
            scope=Scope.ASSIGNED,
            attributes={
                "types": ["technical_clarification", "test_credentials_request"],
                "must_cc_certification_officer": True,
            },
        ),
        "registry": RP(actions=["read"], scope=Scope.ALL),
    },
    # ── Certification Committee Member ─────────────────────────
    Role.CERTIFICATION_COMMITTEE_MEMBER: {
        "applications": RP(
            actions=["read"],
            scope=Scope.ALL,
            conditions={"read": {"allowed_statuses": _COMMITTEE_VISIBLE}},
            attributes={"access_level": "summary"},
        ),
        "documents": RP(
            actions=["read"],
            scope=Scope.ALL,
            conditions={"read": {"allowed_statuses": _COMMITTEE_VISIBLE}},
            attributes={"types": ["executive_summary", "review_summary", "test_summary"]},
        ),
        "test_results": RP(
            actions=["read"],
            scope=Scope.ALL,
            conditions={"read": {"allowed_statuses": _COMMITTEE_VISIBLE}},
            attributes={"details": "summary_only"},
        ),
        "reports": RP(
            actions=["read"],
            scope=Scope.ALL,
            conditions={"read": {"allowed_statuses": _COMMITTEE_VISIBLE}},
            attributes={"types": [
                "certification_officer_recommendation", "test_summary", "compliance_summary",
            ]},
        ),
        "votes": RP(
            actions=["create", "read", "update"],
            scope=Scope.ASSIGNED,
            conditions={
                "create": {"require_justification": True, "conflict_of_interest_check": True},
                "update": {"require_justification": True, "conflict_of_interest_check": True},
            },
            attributes={"options": ["approve", "reject", "abstain", "request_more_info"]},
        ),
        "decisions": RP(
            actions=["create", "read"],
            scope=Scope.ASSIGNED,
            conditions={"create": {"require_majority": True, "quorum_required": True}},
        ),
        "meetings": RP(
            actions=["read", "attend"],
            scope=Scope.ASSIGNED,
            attributes={"can_request_presentation": True},
        ),
        "registry": RP(actions=["read"], scope=Scope.ALL),
        "conflict_of_interest": RP(
            actions=["create", "read", "update"],
            scope=Scope.OWN,
            attributes={"required_before_vote": True},
        ),
    },
    # ── County Health Officer ──────────────────────────────────
    Role.COUNTY_HEALTH_OFFICER: {
        "registry": RP(
            actions=["read", "search", "filter"],
            scope=Scope.ALL,
            attributes={"can_filter_by_county": True, "can_view_certificate_details": True},
        ),
        "certificates": RP(
            actions=["read", "verify", "export"],
            scope=Scope.ALL,
            attributes={"can_check_validity": True, "can_view_history": True},
        ),
        "reports": RP(
            actions=["create", "read", "export"],
            scope=Scope.COUNTY,
            attributes={"types": ["county_adoption_report", "certified_systems_list", "compliance_monitoring"]},
        ),
        "incidents": RP(
            actions=["create", "read"],
            scope=Scope.COUNTY,
            attributes={"types": ["compliance_issue", "security_incident", "patient_complaint"]},
        ),
        "notifications": RP(
            actions=["read", "subscribe"],
            scope=Scope.OWN,
            attributes={"types": ["new_certifications", "certificate_revocations", "system_alerts"]},
        ),
    },
    # ── Public User ────────────────────────────────────────────
    Role.PUBLIC_USER: {
        "registry": RP(
            actions=["read", "search"],
            scope=Scope.CERTIFIED_ONLY,
            attributes={"fields": [
                "system_name", "vendor", "certificate_number",
                "issue_date", "expiry_date", "category",
            ]},
        ),
        "certificates": RP(
            actions=["read", "verify"],
            scope=Scope.ALL,
            attributes={"can_verify_certificate_number": True},
        ),
    },
}
