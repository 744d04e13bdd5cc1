"""
Module: procurement_kernel.models.approval
Responsibility: ORM persistence for per-approver approval records.

Architecture position: Kernel > Models.  May import from db/ only
    (domain DTOs are imported lazily inside to_dto).

Invariants enforced:
    - UNIQUE(request_id, role, user_id): one record per eligible approver
      per role.  Several approvers may share a role (fan-out); the workflow
      lets exactly one of them resolve it and cancels the rest, pointing
      them at the winner through superseded_by_id.
    - status and role values limited by CHECK constraints.

Failure modes:
    - IntegrityError on duplicate (request, role, approver).
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from procurement_kernel.db.base import TrackedBase, UUIDString
from procurement_kernel.db.types import StatusCode

if TYPE_CHECKING:
    from procurement_kernel.domain.dtos import ApprovalRecord
    from procurement_kernel.models.request import Request


class Approval(TrackedBase):
    """
    One approver's record for one role of one request.

    Contract:
        Created pending when the request is submitted (or resubmitted).
        Resolved only by its approver, or in bulk by supersession,
        rejection, cancellation and resubmission reset.
    """

    __tablename__ = "approvals"

    __table_args__ = (
        UniqueConstraint(
            "request_id", "role", "user_id",
            name="uq_approvals_request_role_user",
        ),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'cancelled', "
            "'revision_requested')",
            name="ck_approvals_valid_status",
        ),
        CheckConstraint(
            "role IN ('section_head', 'scm_head', 'pjo')",
            name="ck_approvals_valid_role",
        ),
        Index("ix_approvals_request_role_status", "request_id", "role", "status"),
        Index("ix_approvals_user_status", "user_id", "status"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("requests.id"), nullable=False,
    )
    user_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=False,
    )
    role: Mapped[StatusCode] = mapped_column(nullable=False)
    status: Mapped[StatusCode] = mapped_column(nullable=False, default="pending")
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    signature_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    # The sibling approval whose resolution cancelled this one.
    superseded_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    request: Mapped[Request] = relationship("Request", back_populates="approvals")

    def __repr__(self) -> str:
        return (
            f"<Approval {self.role} request={self.request_id} "
            f"user={self.user_id} status={self.status}>"
        )

    def to_dto(self) -> ApprovalRecord:
        """Convert ORM model to frozen domain DTO."""
        from procurement_kernel.domain.approval import ApprovalStatus
        from procurement_kernel.domain.dtos import ApprovalRecord
        from procurement_kernel.domain.roles import Role

        return ApprovalRecord(
            id=self.id,
            request_id=self.request_id,
            user_id=self.user_id,
            role=Role(self.role),
            status=ApprovalStatus(self.status),
            comments=self.comments,
            signature_ref=self.signature_ref,
            approved_at=self.approved_at,
            superseded_by_id=self.superseded_by_id,
        )
