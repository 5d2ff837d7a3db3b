"""
Certification Store — SQLAlchemy models for authorization-relevant resource data
and the decision audit ledger.

Only the columns the decision core reasons about are modelled: ownership,
assignment, lifecycle state, workflow history, conflict declarations, review
completion and test outcomes. Business payloads live elsewhere.

The decision ledger table is APPEND-ONLY. Every row stores the SHA-256 hash of
(previous_hash || canonical_json(entry_fields)) so that any retroactive change
to a recorded decision is detectable by recomputing the chain.

Column types are portable (String ids, generic JSON) so the same models run on
PostgreSQL in production and SQLite in tests.
"""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    func,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, relationship
from sqlalchemy.pool import StaticPool


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all certgate models."""
    pass


def _uuid() -> str:
    return str(uuid4())


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine for ``database_url``.

    In-memory SQLite URLs share one connection so every session sees the same
    database.
    """
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(database_url, echo=echo)


# ════════════════════════════════════════════════════════════════
# Resource Store
# ════════════════════════════════════════════════════════════════


class ResourceDB(Base):
    """
    A governed resource: a certification application or an account.

    ``state`` is only ever changed through a compare-and-swap UPDATE
    conditioned on the previously read state.
    """

    __tablename__ = "resources"

    id = Column(String(36), primary_key=True, default=_uuid)
    kind = Column(
        String(50), nullable=False, default="applications",
        comment="Resource name in the permission matrix (applications, users)",
    )
    creator_id = Column(String(64), nullable=True, index=True)
    organization_id = Column(String(64), nullable=True, index=True)
    county = Column(String(100), nullable=True)
    state = Column(String(50), nullable=False, comment="Current lifecycle state")

    # Assignment
    assignee_id = Column(String(64), nullable=True)
    assigned_team = Column(String(64), nullable=True)
    assigned_lab_id = Column(String(64), nullable=True)

    version = Column(Integer, nullable=False, default=1, comment="Bumped on every transition")
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True)

    team_members = relationship(
        "ResourceTeamMemberDB", back_populates="resource", cascade="all, delete-orphan",
    )
    history = relationship(
        "WorkflowHistoryDB",
        back_populates="resource",
        order_by="WorkflowHistoryDB.sequence",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_resource_kind_state", "kind", "state"),
        Index("ix_resource_creator_state", "creator_id", "state"),
    )

    def __repr__(self) -> str:
        return f"<Resource {self.kind}:{self.id} state={self.state}>"


class ResourceTeamMemberDB(Base):
    """Principals who contributed to a resource (vendor team members)."""

    __tablename__ = "resource_team_members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    resource_id = Column(String(36), ForeignKey("resources.id"), nullable=False)
    principal_id = Column(String(64), nullable=False)

    resource = relationship("ResourceDB", back_populates="team_members")

    __table_args__ = (
        UniqueConstraint("resource_id", "principal_id", name="uq_team_member"),
    )


class WorkflowHistoryDB(Base):
    """
    Append-only record of who performed which workflow step on a resource.

    The separation-of-duties rules read nothing else besides role and
    organization identity.
    """

    __tablename__ = "workflow_history"

    sequence = Column(Integer, primary_key=True, autoincrement=True)
    resource_id = Column(String(36), ForeignKey("resources.id"), nullable=False, index=True)
    step = Column(String(50), nullable=False)
    performer_id = Column(String(64), nullable=False, index=True)
    from_state = Column(String(50), nullable=True)
    to_state = Column(String(50), nullable=True)
    notes = Column(Text, nullable=False, default="")
    timestamp = Column(DateTime(timezone=True), nullable=False, default=func.now())

    resource = relationship("ResourceDB", back_populates="history")


class ConflictDeclarationDB(Base):
    """Committee conflict-of-interest declarations, one active per (principal, resource)."""

    __tablename__ = "conflict_declarations"

    id = Column(String(36), primary_key=True, default=_uuid)
    principal_id = Column(String(64), nullable=False)
    resource_id = Column(String(36), ForeignKey("resources.id"), nullable=False)
    has_conflict = Column(Boolean, nullable=False, default=False)
    conflict_type = Column(String(50), nullable=True)
    details = Column(Text, nullable=False, default="")
    status = Column(
        String(20), nullable=False, default="active",
        comment="active, resolved, reviewed, expired or revoked",
    )
    declared_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    __table_args__ = (
        Index("ix_declaration_principal_resource", "principal_id", "resource_id", "status"),
    )


class ReviewDB(Base):
    """Officer reviews of a resource; completed reviews count toward quorum."""

    __tablename__ = "reviews"

    id = Column(String(36), primary_key=True, default=_uuid)
    resource_id = Column(String(36), ForeignKey("resources.id"), nullable=False, index=True)
    reviewer_id = Column(String(64), nullable=False)
    status = Column(
        String(20), nullable=False, default="in_progress",
        comment="in_progress or completed",
    )
    completed_at = Column(DateTime(timezone=True), nullable=True)


class TestRunDB(Base):
    """Lab test outcomes for an application."""

    __tablename__ = "test_runs"
    __test__ = False

    id = Column(String(36), primary_key=True, default=_uuid)
    resource_id = Column(String(36), ForeignKey("resources.id"), nullable=False, index=True)
    test_name = Column(String(100), nullable=False)
    status = Column(
        String(30), nullable=False, default="pending",
        comment="pending, pass, fail, conditional_pass or not_applicable",
    )
    executed_by = Column(String(64), nullable=True)
    executed_at = Column(DateTime(timezone=True), nullable=True)


# ════════════════════════════════════════════════════════════════
# Decision Ledger
# ════════════════════════════════════════════════════════════════


class DecisionEntryDB(Base):
    """
    One recorded authorization decision.

    This table is APPEND-ONLY. No rows may be updated or deleted; sequence 0 is
    the genesis entry anchoring the hash chain.
    """

    __tablename__ = "decision_entries"

    id = Column(String(36), primary_key=True, default=_uuid)

    # Chain ordering
    sequence_number = Column(
        Integer, nullable=False, unique=True, index=True,
        comment="Monotonically increasing sequence number",
    )

    # Hash chain
    previous_hash = Column(
        String(64), nullable=False,
        comment="SHA-256 hash of the previous entry",
    )
    entry_hash = Column(
        String(64), nullable=False, unique=True,
        comment="SHA-256 hash of this entry",
    )

    timestamp = Column(
        DateTime(timezone=True), nullable=False,
        comment="When the decision was made",
    )
    entry_type = Column(String(20), nullable=False, comment="genesis or decision")

    # Decision inputs
    principal_id = Column(String(64), nullable=True, index=True)
    role = Column(String(64), nullable=True)
    resource = Column(String(64), nullable=True)
    action = Column(String(50), nullable=True)
    resource_id = Column(String(64), nullable=True, index=True)

    # Outcome
    allowed = Column(Boolean, nullable=False, default=False)
    reason = Column(String(50), nullable=True, comment="Denial reason code")

    content = Column(
        JSON, nullable=False,
        comment="Full decision record",
    )

    __table_args__ = (
        Index("ix_decision_reason", "reason"),
        Index("ix_decision_resource_action", "resource", "action"),
    )

    def __repr__(self) -> str:
        return (
            f"<DecisionEntry seq={self.sequence_number} "
            f"allowed={self.allowed} hash={self.entry_hash[:12]}...>"
        )
