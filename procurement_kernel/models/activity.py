"""
Module: procurement_kernel.models.activity
Responsibility: ORM persistence for the per-request activity trail.
Architecture position: Kernel > Models.  May import from db/ and exceptions.

Invariants enforced:
    - Entries of one request are numbered 1..n (uq_request_activities_seq).
    - Activity rows are append-only: the before_update listener raises
      ImmutabilityViolationError.  Rows disappear only together with their
      request (RequestWorkflowService.delete_request).

Failure modes:
    - ImmutabilityViolationError on any UPDATE attempt.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column

from procurement_kernel.db.base import Base, UUIDString
from procurement_kernel.exceptions import ImmutabilityViolationError


class ActivityAction(str, Enum):
    """Recorded workflow actions."""

    CREATED = "created"
    ITEM_ADDED = "item_added"
    ITEM_UPDATED = "item_updated"
    ITEM_REMOVED = "item_removed"
    NOTES_UPDATED = "notes_updated"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    REVISION_REQUESTED = "revision_requested"
    RESUBMITTED = "resubmitted"


class RequestActivity(Base):
    """One entry in a request's history."""

    __tablename__ = "request_activities"

    __table_args__ = (
        UniqueConstraint("request_id", "seq", name="uq_request_activities_seq"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("requests.id"), nullable=False,
    )
    # Position within the request's trail, 1-based.
    seq: Mapped[int] = mapped_column(nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    action: Mapped[str] = mapped_column(String(30), nullable=False)
    from_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    to_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )

    def __repr__(self) -> str:
        return f"<RequestActivity {self.action} request={self.request_id}>"

    def to_dto(self):
        from procurement_kernel.domain.dtos import ActivityRecord

        return ActivityRecord(
            id=self.id,
            request_id=self.request_id,
            seq=self.seq,
            actor_id=self.actor_id,
            action=self.action,
            from_status=self.from_status,
            to_status=self.to_status,
            comment=self.comment,
            occurred_at=self.occurred_at,
        )


@event.listens_for(RequestActivity, "before_update")
def prevent_activity_update(mapper, connection, target):
    """Activity entries are append-only."""
    raise ImmutabilityViolationError(
        entity_type="RequestActivity",
        entity_id=str(target.id),
        reason="Activity entries are immutable -- cannot modify",
    )
