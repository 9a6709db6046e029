"""
Module: expense_kernel.models.approval_workflow
Responsibility: ORM persistence for company approval workflows.

The ``configuration`` column holds the JSON-shaped definition
(``{enabled, workflow_type, approval_levels | approval_rules,
auto_approve_below}``).  It is parsed into a typed ``WorkflowConfig`` on
load; the raw JSON is never interpreted anywhere else.

Active-workflow selection (see ApprovalWorkflowService) picks the highest
``priority`` among active rows, ties broken by earliest ``created_at`` then
lowest id.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from expense_kernel.db.base import Base, UUIDString
from expense_kernel.domain.dtos import WorkflowRecord
from expense_kernel.domain.workflow import WorkflowConfig, parse_workflow_config


class ApprovalWorkflow(Base):
    __tablename__ = "approval_workflows"

    __table_args__ = (
        Index("ix_approval_workflows_company_active", "company_id", "is_active", "priority"),
    )

    company_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("companies.id"), nullable=False,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    # Denormalized from configuration for querying; None when disabled
    workflow_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    configuration: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    priority: Mapped[int] = mapped_column(nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<ApprovalWorkflow {self.name} priority={self.priority}>"

    def parsed_config(self) -> WorkflowConfig:
        """Raises WorkflowConfigurationError if the stored JSON is malformed."""
        return parse_workflow_config(self.configuration)

    def to_dto(self) -> WorkflowRecord:
        return WorkflowRecord(
            id=self.id,
            company_id=self.company_id,
            name=self.name,
            config=self.parsed_config(),
            priority=self.priority,
            is_active=self.is_active,
            created_at=self.created_at,
        )
