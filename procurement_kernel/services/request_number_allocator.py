"""
RequestNumberAllocator -- collision-free sequential request numbers.

Responsibility:
    Allocates ``{company}-{department}-{YYYYMM}-{seq:04d}`` numbers.  The
    sequence restarts at 1 in every (company, department, period) scope
    and is one more than the highest number already issued in that scope.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by RequestWorkflowService.create_request.

Invariants enforced:
    - The read-max / write-new step runs under a row lock on the scope's
      RequestNumberCounter (``SELECT ... FOR UPDATE``; on SQLite the
      ``BEGIN IMMEDIATE`` write lock), held until the caller's transaction
      ends.  Two allocations in one scope serialize; different scopes lock
      different rows and never block each other.
    - The next value is max(counter, highest persisted suffix) + 1, so
      requests inserted by other means (imports, seed data) are never
      duplicated.
    - Exceeding ``max_sequence`` fails; the sequence never wraps.

Failure modes:
    - AllocationError(retryable=False): sequence exhausted for the period.
    - AllocationError(retryable=True): lock wait timed out or the database
      reported an operational failure.
    - IntegrityError on first-use counter creation race: handled with a
      savepoint and retry.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select, text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.request_number import (
    MAX_SEQUENCE,
    RequestNumber,
    period_for,
    prefix_for,
)
from procurement_kernel.exceptions import (
    AllocationError,
    CompanyNotFoundError,
    DepartmentNotFoundError,
)
from procurement_kernel.logging_config import get_logger
from procurement_kernel.models.counter import RequestNumberCounter
from procurement_kernel.models.organization import Company, Department
from procurement_kernel.models.request import Request
from procurement_kernel.services.base import BaseService

logger = get_logger("services.request_number_allocator")


class RequestNumberAllocator(BaseService):
    """
    Allocates request numbers under a per-scope lock.

    Contract:
        ``allocate`` returns a RequestNumber never handed out before for
        its scope.  The counter increment is transactional: it becomes
        visible when the caller commits and is returned on rollback.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT persist the Request; the caller does, in the same
          transaction.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        max_sequence: int = MAX_SEQUENCE,
        lock_timeout_ms: int | None = None,
    ):
        super().__init__(session)
        if not 1 <= max_sequence <= MAX_SEQUENCE:
            raise ValueError(f"max_sequence must be in 1..{MAX_SEQUENCE}")
        self._clock = clock or SystemClock()
        self._max_sequence = max_sequence
        self._lock_timeout_ms = lock_timeout_ms

    def allocate(self, company_id: UUID, department_id: UUID) -> RequestNumber:
        """
        Allocate the next request number for a company/department.

        Preconditions:
            - The caller is within an active transaction and will persist
              a Request carrying the returned number in that transaction.

        Raises:
            CompanyNotFoundError, DepartmentNotFoundError: unknown scope.
            AllocationError: exhaustion (fatal) or lock contention (retryable).
        """
        company = self.session.get(Company, company_id)
        if company is None:
            raise CompanyNotFoundError(str(company_id))
        department = self.session.get(Department, department_id)
        if department is None or department.company_id != company_id:
            raise DepartmentNotFoundError(str(department_id))

        period = period_for(self._clock.now_utc())
        prefix = prefix_for(company.code, department.code, period)

        try:
            self._apply_lock_timeout()
            counter = self._lock_counter(prefix, company_id, department_id, period)
            highest = self._highest_issued(prefix)
        except OperationalError as exc:
            logger.warning(
                "request_number_lock_failed",
                extra={"prefix": prefix, "db_error": str(exc.orig)},
            )
            raise AllocationError(
                prefix, "lock wait timed out or database busy", retryable=True,
            ) from exc

        sequence = max(counter.last_sequence, highest) + 1
        if sequence > self._max_sequence:
            logger.error(
                "request_number_exhausted",
                extra={"prefix": prefix, "max_sequence": self._max_sequence},
            )
            raise AllocationError(
                prefix,
                f"sequence exhausted (max {self._max_sequence}) for period {period}",
                retryable=False,
            )

        counter.last_sequence = sequence
        self.session.flush()

        number = RequestNumber(
            company_code=company.code,
            department_code=department.code,
            period=period,
            sequence=sequence,
        )
        logger.info(
            "request_number_allocated",
            extra={"request_number": number.value, "prefix": prefix, "sequence": sequence},
        )
        return number

    def current_sequence(self, company_id: UUID, department_id: UUID, period: str) -> int:
        """Last sequence handed out for a scope (0 if none).  No lock."""
        last = self.session.execute(
            select(RequestNumberCounter.last_sequence).where(
                RequestNumberCounter.company_id == company_id,
                RequestNumberCounter.department_id == department_id,
                RequestNumberCounter.period == period,
            )
        ).scalar_one_or_none()
        return last or 0

    # ------------------------------------------------------------------

    def _apply_lock_timeout(self) -> None:
        if self._lock_timeout_ms is None:
            return
        if self.session.get_bind().dialect.name != "postgresql":
            return
        self.session.execute(
            text(f"SET LOCAL lock_timeout = {int(self._lock_timeout_ms)}")
        )

    def _select_locked(self, prefix: str) -> RequestNumberCounter | None:
        return self.session.execute(
            select(RequestNumberCounter)
            .where(RequestNumberCounter.prefix == prefix)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _lock_counter(
        self,
        prefix: str,
        company_id: UUID,
        department_id: UUID,
        period: str,
    ) -> RequestNumberCounter:
        counter = self._select_locked(prefix)
        if counter is not None:
            return counter

        # First allocation in this scope.  A concurrent creator may win the
        # insert; the savepoint keeps the rest of the transaction intact.
        savepoint = self.session.begin_nested()
        try:
            counter = RequestNumberCounter(
                prefix=prefix,
                company_id=company_id,
                department_id=department_id,
                period=period,
                last_sequence=0,
            )
            self.session.add(counter)
            self.session.flush()
            savepoint.commit()
            return counter
        except IntegrityError:
            logger.debug("request_number_counter_race_retry", extra={"prefix": prefix})
            savepoint.rollback()
            counter = self._select_locked(prefix)
            if counter is None:
                raise AllocationError(
                    prefix, "counter row vanished during creation", retryable=True,
                )
            return counter

    def _highest_issued(self, prefix: str) -> int:
        # Suffixes are zero-padded to a fixed width, so the string maximum
        # is the numeric maximum.
        highest = self.session.execute(
            select(func.max(Request.request_number)).where(
                Request.request_number.like(f"{prefix}-%")
            )
        ).scalar_one_or_none()
        if highest is None:
            return 0
        return int(highest[len(prefix) + 1:])
