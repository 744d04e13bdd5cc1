"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Immutable records returned by services and selectors: RequestRecord
    (with its items and approvals), RequestItemRecord, ApprovalRecord,
    ActivityRecord, StuckWorkflow.  ItemSpec is the input shape for line
    item creation and editing.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  ORM models convert themselves into
    these via ``to_dto()``; callers outside the kernel never receive ORM
    entities.

Failure modes:
    - InvalidItemError from ItemSpec on empty description or non-positive
      quantity.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from uuid import UUID

from procurement_kernel.domain.approval import ApprovalStatus
from procurement_kernel.domain.request_lifecycle import RequestStatus
from procurement_kernel.domain.roles import Role
from procurement_kernel.exceptions import InvalidItemError


@dataclass(frozen=True)
class ItemSpec:
    """Line item input.  Validated on construction."""

    description: str
    quantity: int
    unit_of_measurement: str = "pcs"
    specification: str | None = None
    remarks: str | None = None

    def __post_init__(self) -> None:
        if not self.description or not self.description.strip():
            raise InvalidItemError("description", "must not be empty")
        # bool is an int subclass; reject it explicitly.
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise InvalidItemError("quantity", "must be an integer")
        if self.quantity <= 0:
            raise InvalidItemError("quantity", f"must be positive, got {self.quantity}")
        if not self.unit_of_measurement or not self.unit_of_measurement.strip():
            raise InvalidItemError("unit_of_measurement", "must not be empty")


@dataclass(frozen=True)
class RequestItemRecord:
    id: UUID
    item_number: int
    description: str
    quantity: int
    unit_of_measurement: str
    specification: str | None = None
    remarks: str | None = None


@dataclass(frozen=True)
class ApprovalRecord:
    id: UUID
    request_id: UUID
    user_id: UUID
    role: Role
    status: ApprovalStatus
    comments: str | None = None
    signature_ref: str | None = None
    approved_at: datetime | None = None
    superseded_by_id: UUID | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == ApprovalStatus.PENDING


@dataclass(frozen=True)
class RequestRecord:
    """A request with its ordered items and all approval rows."""

    id: UUID
    request_number: str
    request_date: date
    company_id: UUID
    department_id: UUID
    user_id: UUID
    status: RequestStatus
    notes: str | None = None
    cancellation_reason: str | None = None
    cancelled_at: datetime | None = None
    items: tuple[RequestItemRecord, ...] = field(default_factory=tuple)
    approvals: tuple[ApprovalRecord, ...] = field(default_factory=tuple)

    def approvals_for(self, role: Role) -> tuple[ApprovalRecord, ...]:
        return tuple(a for a in self.approvals if a.role == role)

    @property
    def item_count(self) -> int:
        return len(self.items)


@dataclass(frozen=True)
class ActivityRecord:
    """One entry of a request's activity trail."""

    id: UUID
    request_id: UUID
    seq: int
    actor_id: UUID
    action: str
    from_status: str | None
    to_status: str | None
    comment: str | None
    occurred_at: datetime


@dataclass(frozen=True)
class StuckWorkflow:
    """An active request whose next role has no eligible approver."""

    request_id: UUID
    request_number: str
    status: RequestStatus
    waiting_on: Role
