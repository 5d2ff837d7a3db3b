"""
Tests for the Decision Ledger hash chain.

Validates:
- Genesis block seeding
- Append-only recording of decisions
- SHA-256 hash chain integrity
- Tamper detection
- Denial queries
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from certgate.ledger.models import DecisionEntryDB
from certgate.ledger.service import GENESIS_HASH, DecisionLedger
from certgate.policy.schema import Decision, DenialReason


def make_decision(allowed=True, reason=None, resource_id="app-1", action="read") -> Decision:
    return Decision(
        allowed=allowed,
        reason=reason,
        principal_id="user-1",
        role="vendor_developer",
        resource="applications",
        action=action,
        resource_id=resource_id,
    )


class TestLedgerHash:
    """Test the canonical hash computation."""

    def setup_method(self):
        self.kwargs = {
            "entry_id": "entry-1",
            "sequence_number": 1,
            "previous_hash": GENESIS_HASH,
            "timestamp": datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc),
            "entry_type": "decision",
            "fields": {"principal_id": "user-1", "allowed": True, "reason": None},
            "content": {"action": "read"},
        }

    def test_compute_hash_deterministic(self):
        h1 = DecisionLedger._compute_hash(**self.kwargs)
        h2 = DecisionLedger._compute_hash(**self.kwargs)
        assert h1 == h2, "Hash should be deterministic"
        assert len(h1) == 64
        assert all(c in "0123456789abcdef" for c in h1)

    def test_naive_timestamp_treated_as_utc(self):
        aware = DecisionLedger._compute_hash(**self.kwargs)
        naive = DecisionLedger._compute_hash(**{**self.kwargs, "timestamp": datetime(2026, 1, 1, 12, 0)})
        assert aware == naive

    def test_hash_changes_with_content(self):
        original = DecisionLedger._compute_hash(**self.kwargs)
        altered = DecisionLedger._compute_hash(**{**self.kwargs, "content": {"action": "delete"}})
        assert original != altered

    def test_hash_changes_with_outcome(self):
        original = DecisionLedger._compute_hash(**self.kwargs)
        fields = {**self.kwargs["fields"], "allowed": False, "reason": "SelfApproval"}
        assert original != DecisionLedger._compute_hash(**{**self.kwargs, "fields": fields})


class TestDecisionLedger:
    """Test the SQL-backed ledger against an in-memory database."""

    def setup_method(self):
        self.ledger = DecisionLedger("sqlite://")
        self.ledger.initialize()

    def test_genesis_block(self):
        genesis = self.ledger.get_by_sequence(0)
        assert genesis is not None
        assert genesis.entry_type == "genesis"
        assert genesis.previous_hash == GENESIS_HASH
        assert self.ledger.get_entry_count() == 1

    def test_initialize_is_idempotent(self):
        self.ledger.initialize()
        assert self.ledger.get_entry_count() == 1

    def test_record_links_to_previous_entry(self):
        genesis = self.ledger.get_by_sequence(0)
        first_hash = self.ledger.record(make_decision())
        second_hash = self.ledger.record(make_decision(action="update"))

        first = self.ledger.get_by_sequence(1)
        second = self.ledger.get_by_sequence(2)
        assert first.entry_hash == first_hash
        assert first.previous_hash == genesis.entry_hash
        assert second.previous_hash == first_hash
        assert second.entry_hash == second_hash

    def test_record_stores_decision_inputs(self):
        self.ledger.record(make_decision(allowed=False, reason=DenialReason.SCOPE_VIOLATION))
        entry = self.ledger.get_by_sequence(1)
        assert entry.principal_id == "user-1"
        assert entry.reason == "ScopeViolation"
        assert entry.allowed is False
        assert entry.content["resource"] == "applications"

    def test_verify_chain(self):
        for action in ("read", "update", "submit"):
            self.ledger.record(make_decision(action=action))
        is_valid, count, message = self.ledger.verify_chain()
        assert is_valid, message
        assert count == 4

    def test_append_retries_after_sequence_collision(self):
        self.ledger.record(make_decision())
        real_last_entry = self.ledger._last_entry
        stale_reads = []

        def stale_then_current(session):
            # First read sees the head from before another writer appended
            if not stale_reads:
                stale_reads.append(True)
                return session.execute(
                    select(DecisionEntryDB).where(DecisionEntryDB.sequence_number == 0)
                ).scalar_one()
            return real_last_entry(session)

        self.ledger._last_entry = stale_then_current
        entry = self.ledger.append(make_decision(action="update"))

        assert entry.sequence_number == 2
        assert entry.previous_hash == self.ledger.get_by_sequence(1).entry_hash
        is_valid, count, message = self.ledger.verify_chain()
        assert is_valid, message
        assert count == 3

    def test_append_gives_up_after_max_attempts(self):
        ledger = DecisionLedger(engine=self.ledger.engine, max_append_attempts=2)
        self.ledger.record(make_decision())

        def always_genesis(session):
            return session.execute(
                select(DecisionEntryDB).where(DecisionEntryDB.sequence_number == 0)
            ).scalar_one()

        ledger._last_entry = always_genesis
        with pytest.raises(IntegrityError):
            ledger.append(make_decision(action="update"))
        assert self.ledger.get_entry_count() == 2

    def test_tampered_outcome_detected(self):
        self.ledger.record(make_decision(allowed=False, reason=DenialReason.SELF_APPROVAL))
        self.ledger.record(make_decision())

        with self.ledger.SessionLocal() as session:
            session.execute(
                update(DecisionEntryDB)
                .where(DecisionEntryDB.sequence_number == 1)
                .values(allowed=True, reason=None)
            )
            session.commit()

        is_valid, count, message = self.ledger.verify_chain()
        assert not is_valid
        assert count == 1
        assert "Hash mismatch at sequence 1" in message

    def test_tampered_content_detected(self):
        self.ledger.record(make_decision())
        with self.ledger.SessionLocal() as session:
            session.execute(
                update(DecisionEntryDB)
                .where(DecisionEntryDB.sequence_number == 1)
                .values(content={"allowed": False})
            )
            session.commit()
        is_valid, _, _ = self.ledger.verify_chain()
        assert not is_valid

    def test_get_denials(self):
        self.ledger.record(make_decision())
        self.ledger.record(make_decision(allowed=False, reason=DenialReason.SELF_APPROVAL))
        self.ledger.record(make_decision(allowed=False, reason=DenialReason.SCOPE_VIOLATION))

        assert [e.reason for e in self.ledger.get_denials()] == ["ScopeViolation", "SelfApproval"]
        only = self.ledger.get_denials(reason="SelfApproval")
        assert len(only) == 1
        assert only[0].sequence_number == 2

    def test_get_entries_for_resource(self):
        self.ledger.record(make_decision(resource_id="app-1"))
        self.ledger.record(make_decision(resource_id="app-2"))
        self.ledger.record(make_decision(resource_id="app-1", action="update"))
        entries = self.ledger.get_entries_for_resource("app-1")
        assert [e.sequence_number for e in entries] == [3, 1]

    def test_get_latest_entries(self):
        self.ledger.record(make_decision())
        latest = self.ledger.get_latest_entries(limit=1)
        assert latest[0].sequence_number == 1
