"""
Module: procurement_kernel.models.counter
Responsibility: Lock target for request number allocation.

One row per ``{company}-{department}-{YYYYMM}`` prefix.  The allocator
locks this row (``SELECT ... FOR UPDATE``) for the read-max / write-new
step, so allocations for one prefix serialize while different prefixes
never contend.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from procurement_kernel.db.base import Base, UUIDString


class RequestNumberCounter(Base):
    """Last sequence handed out for one allocation prefix."""

    __tablename__ = "request_number_counters"

    prefix: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    company_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("companies.id"), nullable=False,
    )
    department_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("departments.id"), nullable=False,
    )
    period: Mapped[str] = mapped_column(String(6), nullable=False)
    last_sequence: Mapped[int] = mapped_column(nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<RequestNumberCounter {self.prefix} last={self.last_sequence}>"
