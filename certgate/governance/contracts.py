"""
Lookup contracts — the narrow interfaces the decision core consumes.

Decision logic never touches storage directly. Ownership, assignment,
snapshots, declarations, reviewer counts and transition commits all come
through a ResourceStore supplied by the caller; decisions are handed to a
DecisionRecorder for audit. ``SqlResourceStore`` and ``DecisionLedger`` in
``certgate.ledger`` are the shipped implementations.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from certgate.policy.schema import ConflictDeclaration, Decision, ResourceSnapshot, WorkflowHistoryEntry


class ConcurrentModificationError(Exception):
    """
    Raised by a store when a compare-and-swap commit finds the resource no
    longer in the state that was read.
    """

    def __init__(self, resource_id: str, expected_state: str, actual_state: str | None = None) -> None:
        message = f"Resource {resource_id} is no longer in state '{expected_state}'"
        if actual_state is not None:
            message += f" (now '{actual_state}')"
        super().__init__(message)
        self.resource_id = resource_id
        self.expected_state = expected_state
        self.actual_state = actual_state


@runtime_checkable
class ResourceStore(Protocol):
    """Resource lookups and the single mutating operation the core needs."""

    def is_owner(self, principal_id: str, resource_id: str) -> bool: ...

    def is_assigned(self, principal_id: str, resource_id: str) -> bool: ...

    def get_resource(self, resource_id: str) -> ResourceSnapshot | None: ...

    def get_active_declaration(
        self, principal_id: str, resource_id: str
    ) -> ConflictDeclaration | None: ...

    def count_completed_reviewers(self, resource_id: str) -> int: ...

    def count_draft_applications(self, principal_id: str) -> int: ...

    def all_tests_passed(self, resource_id: str) -> bool: ...

    def commit_transition(
        self,
        resource_id: str,
        from_state: str,
        to_state: str,
        performer_id: str,
        entry: WorkflowHistoryEntry,
    ) -> None:
        """
        Move the resource from ``from_state`` to ``to_state`` and append
        ``entry`` atomically.

        Raises:
            ConcurrentModificationError: If the stored state is not ``from_state``.
        """
        ...

    def append_history(self, resource_id: str, entry: WorkflowHistoryEntry) -> None: ...


@runtime_checkable
class DecisionRecorder(Protocol):
    """Append-only audit sink for authorization decisions."""

    def record(self, decision: Decision) -> str: ...
