"""
Tests for RequestNumberAllocator.

Covers:
- sequential numbers within a (company, department, period) scope
- period rollover restarts the sequence
- numbers already present (imports, seed data) are never duplicated
- exhaustion raises a non-retryable AllocationError
- unknown or mismatched scopes
"""

from datetime import UTC, datetime
from uuid import uuid4

import pytest

from procurement_kernel.domain.request_number import RequestNumber
from procurement_kernel.exceptions import (
    AllocationError,
    CompanyNotFoundError,
    DepartmentNotFoundError,
)
from procurement_kernel.models.request import Request
from procurement_kernel.services.request_number_allocator import RequestNumberAllocator


@pytest.fixture
def allocator(session, deterministic_clock):
    return RequestNumberAllocator(session, clock=deterministic_clock)


def _scope(org, key="ACME/ENG"):
    department = org.departments[key]
    return department.company_id, department.id


class TestAllocate:

    def test_sequential_within_scope(self, allocator, org):
        numbers = [allocator.allocate(*_scope(org)).value for _ in range(3)]
        assert numbers == [
            "ACME-ENG-202508-0001",
            "ACME-ENG-202508-0002",
            "ACME-ENG-202508-0003",
        ]

    def test_scopes_are_independent(self, allocator, org):
        allocator.allocate(*_scope(org))
        assert allocator.allocate(*_scope(org, "ACME/OPS")).sequence == 1
        assert allocator.allocate(*_scope(org, "GLOBEX/ENG")).value == "GLOBEX-ENG-202508-0001"

    def test_new_period_restarts(self, allocator, org, deterministic_clock):
        allocator.allocate(*_scope(org))
        allocator.allocate(*_scope(org))
        deterministic_clock.set_time(datetime(2025, 9, 1, 0, 0, tzinfo=UTC))
        number = allocator.allocate(*_scope(org))
        assert number.value == "ACME-ENG-202509-0001"

    def test_current_sequence(self, allocator, org):
        company_id, department_id = _scope(org)
        assert allocator.current_sequence(company_id, department_id, "202508") == 0
        allocator.allocate(company_id, department_id)
        allocator.allocate(company_id, department_id)
        assert allocator.current_sequence(company_id, department_id, "202508") == 2

    def test_returns_parseable_number(self, allocator, org):
        number = allocator.allocate(*_scope(org))
        assert RequestNumber.parse(number.value) == number


class TestExistingNumbers:

    def test_skips_past_persisted_numbers(self, allocator, org, session, deterministic_clock):
        company_id, department_id = _scope(org)
        session.add(Request(
            request_number="ACME-ENG-202508-0041",
            request_date=deterministic_clock.now_utc().date(),
            company_id=company_id,
            department_id=department_id,
            user_id=org.users["requester"].id,
            status="draft",
        ))
        session.flush()
        assert allocator.allocate(company_id, department_id).sequence == 42

    def test_dashed_company_code(self, allocator, session, deterministic_clock):
        from procurement_kernel.services.organization_service import OrganizationService

        service = OrganizationService(session)
        company = service.create_company("Jakarta", "AKM-JKT")
        department = service.create_department(company.id, "IT", "IT")
        first = allocator.allocate(company.id, department.id)
        second = allocator.allocate(company.id, department.id)
        assert first.value == "AKM-JKT-IT-202508-0001"
        assert second.value == "AKM-JKT-IT-202508-0002"


class TestFailures:

    def test_exhaustion_is_not_retryable(self, session, org, deterministic_clock, captured_logs):
        allocator = RequestNumberAllocator(session, clock=deterministic_clock, max_sequence=2)
        allocator.allocate(*_scope(org))
        allocator.allocate(*_scope(org))
        with pytest.raises(AllocationError) as exc:
            allocator.allocate(*_scope(org))
        assert exc.value.retryable is False
        assert exc.value.prefix == "ACME-ENG-202508"
        assert any(r["message"] == "request_number_exhausted" for r in captured_logs())

    def test_exhaustion_only_affects_its_scope(self, session, org, deterministic_clock):
        allocator = RequestNumberAllocator(session, clock=deterministic_clock, max_sequence=1)
        allocator.allocate(*_scope(org))
        with pytest.raises(AllocationError):
            allocator.allocate(*_scope(org))
        assert allocator.allocate(*_scope(org, "ACME/OPS")).sequence == 1

    @pytest.mark.parametrize("max_sequence", [0, 10000])
    def test_max_sequence_bounds(self, session, max_sequence):
        with pytest.raises(ValueError):
            RequestNumberAllocator(session, max_sequence=max_sequence)

    def test_unknown_company(self, allocator, org):
        with pytest.raises(CompanyNotFoundError):
            allocator.allocate(uuid4(), org.departments["ACME/ENG"].id)

    def test_department_of_other_company(self, allocator, org):
        with pytest.raises(DepartmentNotFoundError):
            allocator.allocate(org.companies["GLOBEX"].id, org.departments["ACME/ENG"].id)
