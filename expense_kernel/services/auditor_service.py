"""
AuditorService -- tamper-evident audit log and hash chain maintenance.

Responsibility:
    Creates append-only, hash-chained audit log entries for every state
    change of expenses, approvals and workflows.  Provides chain validation
    for tamper detection and per-entity trace queries.

Architecture position:
    Kernel > Services -- imperative shell, called by ApprovalWorkflowService
    inside the caller's transaction.

Invariants enforced:
    - Sequence monotonicity via SequenceService (never ``max(seq) + 1``).
    - Chain integrity: ``hash = H(entity_type | entity_id | action |
      payload_hash | prev_hash)``.
    - Append-only: entries are never modified or deleted (ORM listener).

Failure modes:
    - AuditChainBrokenError: recomputed hash does not match the stored one,
      or prev_hash does not match the predecessor's hash.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from expense_kernel.domain.clock import Clock, SystemClock
from expense_kernel.exceptions import AuditChainBrokenError
from expense_kernel.logging_config import get_logger
from expense_kernel.models.audit_log import AuditAction, AuditEntity, AuditLogEntry
from expense_kernel.services.sequence_service import SequenceService
from expense_kernel.utils.hashing import hash_audit_entry, hash_payload, to_json_safe

logger = get_logger("services.auditor")


@dataclass(frozen=True)
class AuditTraceEntry:
    """A single entry in an entity's audit trace."""

    seq: int
    action: AuditAction
    actor_id: UUID
    occurred_at: datetime
    old_values: dict[str, Any] | None
    new_values: dict[str, Any] | None
    hash: str


def _payload(
    company_id: str | None,
    old_values: dict[str, Any] | None,
    new_values: dict[str, Any] | None,
) -> dict[str, Any]:
    return {
        "company_id": company_id,
        "old_values": old_values,
        "new_values": new_values,
    }


class AuditorService:
    """
    Service for creating and validating audit log entries.

    Does NOT call ``session.commit()``; entries land or vanish together with
    the state change they describe.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)

    def _get_last_hash(self) -> str | None:
        last_entry = self._session.execute(
            select(AuditLogEntry).order_by(AuditLogEntry.seq.desc()).limit(1)
        ).scalar_one_or_none()
        return last_entry.hash if last_entry else None

    def record(
        self,
        entity_type: AuditEntity,
        entity_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        company_id: UUID | None = None,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
    ) -> AuditLogEntry:
        """
        Append an audit entry with hash chain linkage.

        ``old_values`` / ``new_values`` may contain Decimals, UUIDs, enums and
        datetimes; they are stored in canonical JSON form.
        """
        # Sequence lock first: it serializes writers, so the last hash read
        # below belongs to the committed predecessor.
        seq = self._sequence_service.next_value(SequenceService.AUDIT_LOG)
        prev_hash = self._get_last_hash()

        company = str(company_id) if company_id is not None else None
        safe_old = to_json_safe(old_values) if old_values is not None else None
        safe_new = to_json_safe(new_values) if new_values is not None else None
        payload_hash = hash_payload(_payload(company, safe_old, safe_new))

        entry_hash = hash_audit_entry(
            entity_type=entity_type.value,
            entity_id=str(entity_id),
            action=action.value,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
        )

        entry = AuditLogEntry(
            seq=seq,
            entity_type=entity_type.value,
            entity_id=entity_id,
            action=action.value,
            actor_id=actor_id,
            company_id=company_id,
            old_values=safe_old,
            new_values=safe_new,
            occurred_at=self._clock.now(),
            payload_hash=payload_hash,
            prev_hash=prev_hash,
            hash=entry_hash,
        )
        self._session.add(entry)
        self._session.flush()

        logger.info(
            "audit_entry_created",
            extra={
                "entity_type": entity_type.value,
                "entity_id": str(entity_id),
                "action": action.value,
                "seq": seq,
            },
        )
        return entry

    def validate_chain(self) -> bool:
        """
        Recompute every payload hash and chain link.

        Raises:
            AuditChainBrokenError: at the first entry that does not verify.
        """
        entries = self._session.execute(
            select(AuditLogEntry).order_by(AuditLogEntry.seq)
        ).scalars().all()

        previous: AuditLogEntry | None = None
        for entry in entries:
            expected_prev = previous.hash if previous is not None else None
            if entry.prev_hash != expected_prev:
                logger.critical(
                    "audit_chain_broken",
                    extra={"seq": entry.seq, "check": "prev_hash"},
                )
                raise AuditChainBrokenError(
                    str(entry.id), expected_prev or "None", entry.prev_hash or "None",
                )

            company = str(entry.company_id) if entry.company_id is not None else None
            payload_hash = hash_payload(_payload(company, entry.old_values, entry.new_values))
            expected_hash = hash_audit_entry(
                entity_type=entry.entity_type,
                entity_id=str(entry.entity_id),
                action=entry.action,
                payload_hash=payload_hash,
                prev_hash=entry.prev_hash,
            )
            if entry.hash != expected_hash or entry.payload_hash != payload_hash:
                logger.critical(
                    "audit_chain_broken",
                    extra={"seq": entry.seq, "check": "hash"},
                )
                raise AuditChainBrokenError(str(entry.id), expected_hash, entry.hash)

            previous = entry

        logger.info("audit_chain_valid", extra={"entry_count": len(entries)})
        return True

    def get_trace(self, entity_type: AuditEntity, entity_id: UUID) -> tuple[AuditTraceEntry, ...]:
        """All entries for one entity, oldest first."""
        entries = self._session.execute(
            select(AuditLogEntry)
            .where(
                AuditLogEntry.entity_type == entity_type.value,
                AuditLogEntry.entity_id == entity_id,
            )
            .order_by(AuditLogEntry.seq)
        ).scalars().all()

        return tuple(
            AuditTraceEntry(
                seq=entry.seq,
                action=AuditAction(entry.action),
                actor_id=entry.actor_id,
                occurred_at=entry.occurred_at,
                old_values=entry.old_values,
                new_values=entry.new_values,
                hash=entry.hash,
            )
            for entry in entries
        )
