"""
Decision Ledger Service — append-only, hash-chained record of authorization
decisions.

Every decision returned by the orchestrator, allowed or denied, is appended
here with the inputs that produced it. The service provides:

- Append new entries with automatic hash chain computation
- Verify the integrity of the full hash chain
- Query entries by resource, principal or denial reason

Integrity requirements:
1. Cryptographically Verifiable  — SHA-256 hash chain
2. Append-Only                   — only INSERT operations permitted
3. Independently Auditable       — verify_chain() and the audit CLI
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from certgate.ledger.models import Base, DecisionEntryDB, create_db_engine
from certgate.policy.schema import Decision

logger = logging.getLogger(__name__)


# ════════════════════════════════════════════════════════════════
# Genesis Constants
# ════════════════════════════════════════════════════════════════

GENESIS_HASH = "0" * 64  # The "previous hash" for the first entry in the chain


class LedgerIntegrityError(Exception):
    """Raised when the hash chain integrity check fails."""
    pass


class DecisionLedger:
    """
    Decision Ledger — the audit record of every authorization decision.

    Implements the DecisionRecorder contract consumed by the orchestrator.

    Usage:
        ledger = DecisionLedger(database_url)
        ledger.initialize()  # Create tables, seed genesis block

        entry_hash = ledger.record(decision)
        is_valid, count, message = ledger.verify_chain()
    """

    def __init__(
        self,
        database_url: str | None = None,
        engine: Engine | None = None,
        max_append_attempts: int = 3,
    ) -> None:
        """
        Initialize the ledger service.

        Args:
            database_url: SQLAlchemy connection string (sync driver).
            engine: Existing engine to share with the resource store.
            max_append_attempts: Appends tried before a sequence collision is raised.
        """
        if engine is None and database_url is None:
            raise ValueError("DecisionLedger needs a database_url or an engine")
        self.engine = engine or create_db_engine(database_url)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)
        self.max_append_attempts = max(1, max_append_attempts)
        self._append_lock = threading.Lock()

    def initialize(self) -> None:
        """
        Initialize the database schema and seed the genesis block.

        The genesis block anchors the chain; its previous_hash is all zeros.
        """
        Base.metadata.create_all(self.engine)

        with self.SessionLocal() as session:
            existing = session.execute(
                select(DecisionEntryDB).where(DecisionEntryDB.sequence_number == 0)
            ).scalar_one_or_none()

            if existing is None:
                genesis = self._create_genesis_block()
                session.add(genesis)
                session.commit()
                logger.info(
                    "Genesis block created: hash=%s", genesis.entry_hash[:16]
                )

    def _create_genesis_block(self) -> DecisionEntryDB:
        """Create the genesis block — the anchor of the hash chain."""
        genesis_id = str(uuid4())
        genesis_timestamp = datetime.now(timezone.utc)
        content = {
            "message": "Genesis of the certification decision ledger",
            "integrity_standard": {
                "cryptographically_verifiable": True,
                "append_only": True,
                "independently_auditable": True,
            },
        }
        fields = {
            "principal_id": None,
            "role": "system",
            "resource": None,
            "action": None,
            "resource_id": None,
            "allowed": True,
            "reason": None,
        }

        entry_hash = self._compute_hash(
            entry_id=genesis_id,
            sequence_number=0,
            previous_hash=GENESIS_HASH,
            timestamp=genesis_timestamp,
            entry_type="genesis",
            fields=fields,
            content=content,
        )

        return DecisionEntryDB(
            id=genesis_id,
            sequence_number=0,
            previous_hash=GENESIS_HASH,
            entry_hash=entry_hash,
            timestamp=genesis_timestamp,
            entry_type="genesis",
            content=content,
            **fields,
        )

    def record(self, decision: Decision) -> str:
        """Append a decision and return its entry hash."""
        return self.append(decision).entry_hash

    def _last_entry(self, session) -> DecisionEntryDB | None:
        return session.execute(
            select(DecisionEntryDB)
            .order_by(DecisionEntryDB.sequence_number.desc())
            .limit(1)
        ).scalar_one_or_none()

    def append(self, decision: Decision) -> DecisionEntryDB:
        """
        Append a decision to the ledger.

        This is the ONLY write operation. There is no update, no delete.

        Another process may claim the same sequence number between reading the
        chain head and committing; the append is then retried against the new
        head, up to ``max_append_attempts`` times.

        Args:
            decision: The decision returned by the orchestrator.

        Returns:
            The newly created DecisionEntryDB record.

        Raises:
            LedgerIntegrityError: If the genesis block is missing.
            IntegrityError: If every attempt lost the race for the chain head.
        """
        content = decision.model_dump(mode="json")
        fields = {
            "principal_id": decision.principal_id,
            "role": decision.role,
            "resource": decision.resource,
            "action": decision.action,
            "resource_id": decision.resource_id,
            "allowed": decision.allowed,
            "reason": decision.reason.value if decision.reason else None,
        }

        with self._append_lock:
            for attempt in range(1, self.max_append_attempts + 1):
                try:
                    return self._append_once(decision, fields, content)
                except IntegrityError:
                    if attempt == self.max_append_attempts:
                        raise
                    logger.warning(
                        "Ledger head moved during append (attempt %d/%d), retrying",
                        attempt, self.max_append_attempts,
                    )

    def _append_once(
        self, decision: Decision, fields: dict[str, Any], content: dict[str, Any]
    ) -> DecisionEntryDB:
        with self.SessionLocal() as session:
            last_entry = self._last_entry(session)

            if last_entry is None:
                raise LedgerIntegrityError(
                    "Cannot append: no genesis block found. Call initialize() first."
                )

            new_seq = last_entry.sequence_number + 1
            previous_hash = last_entry.entry_hash
            entry_id = str(uuid4())
            timestamp = decision.decided_at

            entry_hash = self._compute_hash(
                entry_id=entry_id,
                sequence_number=new_seq,
                previous_hash=previous_hash,
                timestamp=timestamp,
                entry_type="decision",
                fields=fields,
                content=content,
            )

            entry = DecisionEntryDB(
                id=entry_id,
                sequence_number=new_seq,
                previous_hash=previous_hash,
                entry_hash=entry_hash,
                timestamp=timestamp,
                entry_type="decision",
                content=content,
                **fields,
            )

            session.add(entry)
            session.commit()

            logger.debug(
                "Decision recorded: seq=%d allowed=%s reason=%s hash=%s",
                new_seq, decision.allowed, fields["reason"], entry_hash[:16],
            )

            return entry

    def verify_chain(self) -> tuple[bool, int, str]:
        """
        Verify the integrity of the entire hash chain.

        Walks every entry from genesis forward, recomputing each hash and
        verifying it matches the stored hash.

        Returns:
            Tuple of (is_valid, entries_verified, message).
        """
        with self.SessionLocal() as session:
            entries = session.execute(
                select(DecisionEntryDB).order_by(DecisionEntryDB.sequence_number.asc())
            ).scalars().all()

            if not entries:
                return False, 0, "No entries found in ledger"

            first = entries[0]
            if first.sequence_number != 0:
                return False, 0, f"First entry has sequence {first.sequence_number}, expected 0"

            if first.previous_hash != GENESIS_HASH:
                return False, 0, "Genesis block has incorrect previous_hash"

            for i, entry in enumerate(entries):
                expected_hash = self._compute_hash(
                    entry_id=entry.id,
                    sequence_number=entry.sequence_number,
                    previous_hash=entry.previous_hash,
                    timestamp=entry.timestamp,
                    entry_type=entry.entry_type,
                    fields={
                        "principal_id": entry.principal_id,
                        "role": entry.role,
                        "resource": entry.resource,
                        "action": entry.action,
                        "resource_id": entry.resource_id,
                        "allowed": entry.allowed,
                        "reason": entry.reason,
                    },
                    content=entry.content,
                )

                if entry.entry_hash != expected_hash:
                    return (
                        False, i,
                        f"Hash mismatch at sequence {entry.sequence_number}: "
                        f"stored={entry.entry_hash[:16]}... "
                        f"computed={expected_hash[:16]}..."
                    )

                if i > 0 and entry.previous_hash != entries[i - 1].entry_hash:
                    return (
                        False, i,
                        f"Chain break at sequence {entry.sequence_number}: "
                        f"previous_hash does not match prior entry's hash"
                    )

            return (
                True, len(entries),
                f"Chain verified: {len(entries)} entries, integrity intact"
            )

    def get_by_sequence(self, sequence_number: int) -> DecisionEntryDB | None:
        """Retrieve a ledger entry by sequence number."""
        with self.SessionLocal() as session:
            return session.execute(
                select(DecisionEntryDB).where(
                    DecisionEntryDB.sequence_number == sequence_number
                )
            ).scalar_one_or_none()

    def get_entries_for_resource(self, resource_id: str, limit: int = 100) -> list[DecisionEntryDB]:
        """Decisions concerning one resource, newest first."""
        with self.SessionLocal() as session:
            return list(
                session.execute(
                    select(DecisionEntryDB)
                    .where(DecisionEntryDB.resource_id == resource_id)
                    .order_by(DecisionEntryDB.sequence_number.desc())
                    .limit(limit)
                ).scalars().all()
            )

    def get_denials(self, reason: str | None = None, limit: int = 100) -> list[DecisionEntryDB]:
        """Denied decisions, optionally for a single reason code, newest first."""
        with self.SessionLocal() as session:
            stmt = select(DecisionEntryDB).where(
                DecisionEntryDB.entry_type == "decision",
                DecisionEntryDB.allowed.is_(False),
            )
            if reason:
                stmt = stmt.where(DecisionEntryDB.reason == reason)
            stmt = stmt.order_by(DecisionEntryDB.sequence_number.desc()).limit(limit)
            return list(session.execute(stmt).scalars().all())

    def get_latest_entries(self, limit: int = 50) -> list[DecisionEntryDB]:
        """Retrieve the most recent ledger entries."""
        with self.SessionLocal() as session:
            return list(
                session.execute(
                    select(DecisionEntryDB)
                    .order_by(DecisionEntryDB.sequence_number.desc())
                    .limit(limit)
                ).scalars().all()
            )

    def get_entry_count(self) -> int:
        """Return the total number of entries in the ledger."""
        with self.SessionLocal() as session:
            result = session.execute(
                select(func.count()).select_from(DecisionEntryDB)
            )
            return result.scalar() or 0

    # ── Internal ────────────────────────────────────────────────

    @staticmethod
    def _compute_hash(
        entry_id: str,
        sequence_number: int,
        previous_hash: str,
        timestamp: datetime,
        entry_type: str,
        fields: dict[str, Any],
        content: dict[str, Any],
    ) -> str:
        """
        Compute the SHA-256 hash for a ledger entry.

        Hash = SHA-256(previous_hash || canonical_json(entry_fields))
        """
        # SQLite returns naive datetimes; stored values are always UTC
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        hashable = {
            "id": str(entry_id),
            "sequence_number": sequence_number,
            "previous_hash": previous_hash,
            "timestamp": timestamp.astimezone(timezone.utc).isoformat(),
            "entry_type": entry_type,
            "content": content,
            **fields,
        }
        canonical = json.dumps(hashable, sort_keys=True, default=str)
        return hashlib.sha256(
            (previous_hash + canonical).encode("utf-8")
        ).hexdigest()
