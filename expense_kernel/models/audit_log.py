"""
Module: expense_kernel.models.audit_log
Responsibility: ORM persistence for the tamper-evident audit log.
Architecture position: Kernel > Models.  May import from db/base.py only.
Invariants enforced:
    - Append-only: no UPDATE or DELETE (ORM listener in db/immutability.py).
    - Hash chain: hash = H(entity_type | entity_id | action | payload_hash |
      prev_hash).  Validated by AuditorService.validate_chain().
    - seq is monotonically increasing, allocated by SequenceService.
Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
    - AuditChainBrokenError when chain validation detects a mismatch.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, BigInteger, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from expense_kernel.db.base import Base, UUIDString


class AuditEntity(str, Enum):
    EXPENSE = "expense"
    APPROVAL = "approval"
    WORKFLOW = "workflow"


class AuditAction(str, Enum):
    """Types of auditable actions."""

    CREATE = "create"
    UPDATE = "update"
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    CANCEL = "cancel"
    DELEGATE = "delegate"
    PAY = "pay"


class AuditLogEntry(Base):
    """
    One audit log entry with hash-chain linkage.

    ``old_values`` / ``new_values`` are before/after snapshots of the fields
    the action touched.  The payload hash covers both plus ``company_id``.
    """

    __tablename__ = "audit_log"
    __table_args__ = (
        Index("idx_audit_log_entity", "entity_type", "entity_id"),
        Index("idx_audit_log_company", "company_id"),
        Index("idx_audit_log_seq", "seq"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    company_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    old_values: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    new_values: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    # Null only for the genesis entry
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditLogEntry #{self.seq} {self.action} on {self.entity_type}:{self.entity_id}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None
