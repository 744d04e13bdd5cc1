"""
Module: procurement_kernel.models.request
Responsibility: ORM persistence for procurement requests and their line
    items.
Architecture position: Kernel > Models.  May import from db/, domain/ DTOs
    (inside to_dto only) and exceptions.
    MUST NOT import from services/, selectors/, or outer layers.

Invariants enforced:
    - requests.request_number is UNIQUE and write-once: the before_update
      listener raises ImmutabilityViolationError if a flush would change it.
    - status is limited to the lifecycle values by a CHECK constraint; the
      workflow service alone decides which transitions are legal.
    - request_items(request_id, item_number) is UNIQUE and quantity > 0.

Failure modes:
    - IntegrityError on duplicate request_number (surfaced by the workflow
      as a retryable AllocationError).
    - ImmutabilityViolationError on request_number rewrite.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Text,
    UniqueConstraint,
    event,
    inspect,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from procurement_kernel.db.base import Base, TrackedBase, UUIDString
from procurement_kernel.db.types import LongText, Name, RequestNumberStr, StatusCode
from procurement_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from procurement_kernel.domain.dtos import RequestItemRecord, RequestRecord
    from procurement_kernel.models.approval import Approval


class Request(TrackedBase):
    """
    The workflow subject.

    Contract:
        Mutated only through RequestWorkflowService.  Status changes use
        compare-and-set UPDATEs, so this row is never the target of a
        blind read-modify-write.

    Guarantees:
        - request_number never changes after the first flush.
    """

    __tablename__ = "requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'submitted', 'section_approved', "
            "'scm_approved', 'completed', 'rejected', 'cancelled', "
            "'revision_requested')",
            name="ck_requests_valid_status",
        ),
        Index("ix_requests_scope_status", "company_id", "department_id", "status"),
        Index("ix_requests_status", "status"),
        Index("ix_requests_user", "user_id"),
    )

    request_number: Mapped[RequestNumberStr] = mapped_column(
        nullable=False, unique=True,
    )
    request_date: Mapped[date] = mapped_column(Date, nullable=False)
    company_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("companies.id"), nullable=False,
    )
    department_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("departments.id"), nullable=False,
    )
    user_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=False,
    )
    status: Mapped[StatusCode] = mapped_column(nullable=False, default="draft")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    items: Mapped[list[RequestItem]] = relationship(
        "RequestItem",
        back_populates="request",
        order_by="RequestItem.item_number",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    approvals: Mapped[list[Approval]] = relationship(
        "Approval",
        back_populates="request",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Request {self.request_number} status={self.status}>"

    def to_dto(self) -> RequestRecord:
        """Convert ORM model to frozen domain DTO."""
        from procurement_kernel.domain.dtos import RequestRecord
        from procurement_kernel.domain.request_lifecycle import RequestStatus

        return RequestRecord(
            id=self.id,
            request_number=self.request_number,
            request_date=self.request_date,
            company_id=self.company_id,
            department_id=self.department_id,
            user_id=self.user_id,
            status=RequestStatus(self.status),
            notes=self.notes,
            cancellation_reason=self.cancellation_reason,
            cancelled_at=self.cancelled_at,
            items=tuple(i.to_dto() for i in self.items),
            approvals=tuple(
                a.to_dto()
                for a in sorted(self.approvals, key=lambda a: (a.role, str(a.user_id)))
            ),
        )


class RequestItem(Base):
    """
    Line item.  ``item_number`` runs 1..n without gaps within a request.
    """

    __tablename__ = "request_items"

    __table_args__ = (
        UniqueConstraint("request_id", "item_number", name="uq_request_items_number"),
        CheckConstraint("quantity > 0", name="ck_request_items_positive_quantity"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("requests.id"), nullable=False,
    )
    item_number: Mapped[int] = mapped_column(nullable=False)
    description: Mapped[LongText] = mapped_column(nullable=False)
    specification: Mapped[str | None] = mapped_column(Text, nullable=True)
    quantity: Mapped[int] = mapped_column(nullable=False)
    unit_of_measurement: Mapped[Name] = mapped_column(nullable=False)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    request: Mapped[Request] = relationship("Request", back_populates="items")

    def __repr__(self) -> str:
        return f"<RequestItem #{self.item_number} request={self.request_id}>"

    def to_dto(self) -> RequestItemRecord:
        from procurement_kernel.domain.dtos import RequestItemRecord

        return RequestItemRecord(
            id=self.id,
            item_number=self.item_number,
            description=self.description,
            quantity=self.quantity,
            unit_of_measurement=self.unit_of_measurement,
            specification=self.specification,
            remarks=self.remarks,
        )


# =============================================================================
# ORM-Level Immutability for request numbers
# =============================================================================


@event.listens_for(Request, "before_update")
def prevent_request_number_change(mapper, connection, target):
    """Reject any flush that would rewrite an assigned request number."""
    history = inspect(target).attrs.request_number.history
    if history.deleted and history.deleted[0] is not None and history.added:
        if history.added[0] != history.deleted[0]:
            raise ImmutabilityViolationError(
                entity_type="Request",
                entity_id=str(target.id),
                reason=(
                    f"request_number is write-once "
                    f"({history.deleted[0]} -> {history.added[0]})"
                ),
            )
