"""
SQL Resource Store — the ResourceStore contract over SQLAlchemy.

Lookups return pydantic snapshots detached from the session. The only mutating
operation the decision core performs, ``commit_transition``, is a
compare-and-swap UPDATE conditioned on the state read before validation; a
concurrent writer that got there first makes it raise
ConcurrentModificationError instead of silently overwriting.

The ``add_*``/``record_*`` helpers seed and maintain the authorization-relevant
data; they are used by the owning service and by tests.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.orm import selectinload, sessionmaker

from certgate.governance.contracts import ConcurrentModificationError
from certgate.ledger.models import (
    Base,
    ConflictDeclarationDB,
    ResourceDB,
    ResourceTeamMemberDB,
    ReviewDB,
    TestRunDB,
    WorkflowHistoryDB,
    create_db_engine,
)
from certgate.policy.schema import (
    ApplicationState,
    ConflictDeclaration,
    DeclarationStatus,
    ResourceSnapshot,
    WorkflowHistoryEntry,
)

logger = logging.getLogger(__name__)

# Test outcomes that count as passed
PASSING_TEST_STATUSES = frozenset({"pass", "conditional_pass", "not_applicable"})


class SqlResourceStore:
    """
    Resource store backed by a relational database.

    Usage:
        store = SqlResourceStore("postgresql+psycopg2://...")
        store.initialize()
        snapshot = store.get_resource(application_id)
    """

    def __init__(self, database_url: str | None = None, engine: Engine | None = None) -> None:
        if engine is None and database_url is None:
            raise ValueError("SqlResourceStore needs a database_url or an engine")
        self.engine = engine or create_db_engine(database_url)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

    def initialize(self) -> None:
        """Create tables if they do not exist."""
        Base.metadata.create_all(self.engine)

    # ── Lookups ─────────────────────────────────────────────────

    def get_resource(self, resource_id: str) -> ResourceSnapshot | None:
        with self.SessionLocal() as session:
            row = session.execute(
                select(ResourceDB)
                .where(ResourceDB.id == resource_id)
                .options(selectinload(ResourceDB.team_members), selectinload(ResourceDB.history))
            ).scalar_one_or_none()
            if row is None:
                return None
            return self._to_snapshot(row)

    def is_owner(self, principal_id: str, resource_id: str) -> bool:
        with self.SessionLocal() as session:
            creator_id = session.execute(
                select(ResourceDB.creator_id).where(ResourceDB.id == resource_id)
            ).scalar_one_or_none()
            return creator_id is not None and creator_id == principal_id

    def is_assigned(self, principal_id: str, resource_id: str) -> bool:
        with self.SessionLocal() as session:
            assignee_id = session.execute(
                select(ResourceDB.assignee_id).where(ResourceDB.id == resource_id)
            ).scalar_one_or_none()
            return assignee_id is not None and assignee_id == principal_id

    def get_active_declaration(
        self, principal_id: str, resource_id: str
    ) -> ConflictDeclaration | None:
        with self.SessionLocal() as session:
            row = session.execute(
                select(ConflictDeclarationDB)
                .where(
                    ConflictDeclarationDB.principal_id == principal_id,
                    ConflictDeclarationDB.resource_id == resource_id,
                    ConflictDeclarationDB.status == DeclarationStatus.ACTIVE.value,
                )
                .order_by(ConflictDeclarationDB.declared_at.desc())
                .limit(1)
            ).scalar_one_or_none()
            if row is None:
                return None
            return ConflictDeclaration(
                principal_id=row.principal_id,
                resource_id=row.resource_id,
                has_conflict=row.has_conflict,
                conflict_type=row.conflict_type,
                details=row.details,
                status=row.status,
                declared_at=row.declared_at,
            )

    def count_completed_reviewers(self, resource_id: str) -> int:
        with self.SessionLocal() as session:
            return session.execute(
                select(func.count(func.distinct(ReviewDB.reviewer_id))).where(
                    ReviewDB.resource_id == resource_id,
                    ReviewDB.status == "completed",
                )
            ).scalar() or 0

    def count_draft_applications(self, principal_id: str) -> int:
        with self.SessionLocal() as session:
            return session.execute(
                select(func.count()).select_from(ResourceDB).where(
                    ResourceDB.kind == "applications",
                    ResourceDB.creator_id == principal_id,
                    ResourceDB.state == ApplicationState.DRAFT.value,
                )
            ).scalar() or 0

    def all_tests_passed(self, resource_id: str) -> bool:
        """True when at least one test ran and every test passed."""
        with self.SessionLocal() as session:
            statuses = session.execute(
                select(TestRunDB.status).where(TestRunDB.resource_id == resource_id)
            ).scalars().all()
            return bool(statuses) and all(s in PASSING_TEST_STATUSES for s in statuses)

    # ── Transitions ─────────────────────────────────────────────

    def commit_transition(
        self,
        resource_id: str,
        from_state: str,
        to_state: str,
        performer_id: str,
        entry: WorkflowHistoryEntry,
    ) -> None:
        """
        Compare-and-swap the resource state and append the history entry in
        one transaction.

        Raises:
            ConcurrentModificationError: If the stored state is no longer ``from_state``.
        """
        with self.SessionLocal() as session, session.begin():
            result = session.execute(
                update(ResourceDB)
                .where(ResourceDB.id == resource_id, ResourceDB.state == from_state)
                .values(
                    state=to_state,
                    version=ResourceDB.version + 1,
                    updated_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                actual = session.execute(
                    select(ResourceDB.state).where(ResourceDB.id == resource_id)
                ).scalar_one_or_none()
                logger.warning(
                    "CAS failed: resource=%s expected=%s actual=%s performer=%s",
                    resource_id, from_state, actual, performer_id,
                )
                raise ConcurrentModificationError(resource_id, from_state, actual)
            session.add(self._history_row(resource_id, entry))

        logger.info(
            "Transition committed: resource=%s %s -> %s by %s",
            resource_id, from_state, to_state, performer_id,
        )

    def append_history(self, resource_id: str, entry: WorkflowHistoryEntry) -> None:
        """Append a history entry for a step that does not change state."""
        with self.SessionLocal() as session, session.begin():
            session.add(self._history_row(resource_id, entry))

    # ── Seeding & maintenance ───────────────────────────────────

    def add_resource(self, snapshot: ResourceSnapshot) -> None:
        """Insert a resource with its team members and any existing history."""
        with self.SessionLocal() as session, session.begin():
            row = ResourceDB(
                id=snapshot.id,
                kind=snapshot.kind,
                creator_id=snapshot.creator_id,
                organization_id=snapshot.organization_id,
                county=snapshot.county,
                state=snapshot.state,
                assignee_id=snapshot.assignee_id,
                assigned_team=snapshot.assigned_team,
                assigned_lab_id=snapshot.assigned_lab_id,
            )
            row.team_members = [
                ResourceTeamMemberDB(principal_id=member) for member in snapshot.team_member_ids
            ]
            session.add(row)
            session.flush()
            for entry in snapshot.workflow_history:
                session.add(self._history_row(snapshot.id, entry))

    def assign(
        self,
        resource_id: str,
        assignee_id: str | None = None,
        assigned_team: str | None = None,
        assigned_lab_id: str | None = None,
    ) -> None:
        with self.SessionLocal() as session, session.begin():
            session.execute(
                update(ResourceDB)
                .where(ResourceDB.id == resource_id)
                .values(
                    assignee_id=assignee_id,
                    assigned_team=assigned_team,
                    assigned_lab_id=assigned_lab_id,
                )
            )

    def declare_conflict(self, declaration: ConflictDeclaration) -> None:
        """Record a declaration, superseding any active one for the same pair."""
        with self.SessionLocal() as session, session.begin():
            session.execute(
                update(ConflictDeclarationDB)
                .where(
                    ConflictDeclarationDB.principal_id == declaration.principal_id,
                    ConflictDeclarationDB.resource_id == declaration.resource_id,
                    ConflictDeclarationDB.status == DeclarationStatus.ACTIVE.value,
                )
                .values(status=DeclarationStatus.REVIEWED.value)
            )
            session.add(ConflictDeclarationDB(
                principal_id=declaration.principal_id,
                resource_id=declaration.resource_id,
                has_conflict=declaration.has_conflict,
                conflict_type=declaration.conflict_type.value if declaration.conflict_type else None,
                details=declaration.details,
                status=declaration.status.value,
                declared_at=declaration.declared_at,
            ))

    def record_review(self, resource_id: str, reviewer_id: str, completed: bool = True) -> None:
        with self.SessionLocal() as session, session.begin():
            session.add(ReviewDB(
                resource_id=resource_id,
                reviewer_id=reviewer_id,
                status="completed" if completed else "in_progress",
                completed_at=datetime.now(timezone.utc) if completed else None,
            ))

    def record_test_run(
        self, resource_id: str, test_name: str, status: str, executed_by: str | None = None
    ) -> None:
        with self.SessionLocal() as session, session.begin():
            session.add(TestRunDB(
                resource_id=resource_id,
                test_name=test_name,
                status=status,
                executed_by=executed_by,
                executed_at=datetime.now(timezone.utc) if status != "pending" else None,
            ))

    # ── Internal ────────────────────────────────────────────────

    @staticmethod
    def _history_row(resource_id: str, entry: WorkflowHistoryEntry) -> WorkflowHistoryDB:
        return WorkflowHistoryDB(
            resource_id=resource_id,
            step=entry.step,
            performer_id=entry.performer_id,
            from_state=entry.from_state,
            to_state=entry.to_state,
            notes=entry.notes,
            timestamp=entry.timestamp,
        )

    @staticmethod
    def _to_snapshot(row: ResourceDB) -> ResourceSnapshot:
        return ResourceSnapshot(
            id=row.id,
            kind=row.kind,
            creator_id=row.creator_id,
            organization_id=row.organization_id,
            county=row.county,
            state=row.state,
            team_member_ids=[m.principal_id for m in row.team_members],
            assignee_id=row.assignee_id,
            assigned_team=row.assigned_team,
            assigned_lab_id=row.assigned_lab_id,
            workflow_history=[
                WorkflowHistoryEntry(
                    step=h.step,
                    performer_id=h.performer_id,
                    timestamp=h.timestamp,
                    from_state=h.from_state,
                    to_state=h.to_state,
                    notes=h.notes,
                )
                for h in row.history
            ],
        )
