"""
Tests for structured logging of workflow events.

Covers:
- approval_granted carries the decision fields plus the actor, request id
  and request number bound for the operation
- approval_role_without_approver is a WARNING naming each uncovered role
- request_number_lock_failed is a WARNING and the caller gets a
  retryable AllocationError
- kernel errors logged with exc_info render as an ``error`` object
- LogContext.bind restores the previous fields and rejects unknown ones
"""

import pytest
from sqlalchemy.exc import OperationalError

from procurement_kernel.domain.approval import ApprovalStatus
from procurement_kernel.exceptions import AllocationError
from procurement_kernel.logging_config import LogContext
from procurement_kernel.selectors.identity_selector import IdentityContext
from procurement_kernel.services.organization_service import OrganizationService
from procurement_kernel.services.request_number_allocator import RequestNumberAllocator
from scripts import department_utility


def events(logs, message):
    return [r for r in logs if r["message"] == message]


class TestApprovalEvents:

    def test_approval_granted_fields(self, captured_logs, workflow, org, submitted):
        workflow.approve(org.section_head, submitted.id, comments="ok")

        (granted,) = events(captured_logs(), "approval_granted")
        assert granted["level"] == "INFO"
        assert granted["logger"] == "procurement_kernel.services.request_workflow"
        assert granted["actor_id"] == str(org.users["section_head"].id)
        assert granted["request_id"] == str(submitted.id)
        assert granted["request_number"] == submitted.request_number
        assert granted["role"] == "section_head"
        assert granted["from_status"] == "submitted"
        assert granted["to_status"] == "section_approved"

    def test_bound_fields_end_with_the_operation(self, captured_logs, workflow, org, submitted):
        workflow.approve(org.section_head, submitted.id)
        assert LogContext.get_all() == {}

    def test_role_without_approver_is_a_warning(self, captured_logs, session, workflow, items):
        service = OrganizationService(session)
        company = service.create_company("Initech", "INIT")
        department = service.create_department(company.id, "Support", "SUP")
        user = service.create_user("INI001", "Initech Clerk", department_id=department.id)
        principal = IdentityContext(session).principal_for(user.id)

        record = workflow.create_request(principal, items=items)
        record = workflow.submit(principal, record.id)

        warnings = events(captured_logs(), "approval_role_without_approver")
        # scm_head is centralized, so only the scoped roles go uncovered.
        assert [w["role"] for w in warnings] == ["section_head", "pjo"]
        for warning in warnings:
            assert warning["level"] == "WARNING"
            assert warning["request_number"] == record.request_number
            assert warning["actor_id"] == str(user.id)
        assert all(a.status == ApprovalStatus.PENDING for a in record.approvals)


class TestAllocationEvents:

    def test_lock_failure_is_logged_and_retryable(
        self, captured_logs, monkeypatch, workflow, org, items,
    ):
        def locked(self, prefix, *args):
            raise OperationalError("SELECT ... FOR UPDATE", {}, Exception("database is locked"))

        monkeypatch.setattr(RequestNumberAllocator, "_lock_counter", locked)
        with pytest.raises(AllocationError) as exc:
            workflow.create_request(org.requester, items=items)
        assert exc.value.retryable is True

        logs = captured_logs()
        (failed,) = events(logs, "request_number_lock_failed")
        assert failed["level"] == "WARNING"
        assert failed["prefix"] == exc.value.prefix
        assert failed["db_error"] == "database is locked"
        assert failed["actor_id"] == str(org.users["requester"].id)
        assert "request_number" not in failed
        assert events(logs, "request_created") == []


class TestErrorObject:

    def test_cli_failure_renders_kernel_error(self, captured_logs, tmp_path, capsys):
        url = f"sqlite:///{tmp_path / 'logging.db'}"
        exit_code = department_utility.main(["list", "--company", "NOPE", "--database-url", url])
        assert exit_code == department_utility.EXIT_ERROR
        capsys.readouterr()

        (failed,) = events(captured_logs(), "cli_action_failed")
        assert failed["level"] == "WARNING"
        assert failed["action"] == "list"
        assert len(failed["correlation_id"]) == 32
        error = failed["error"]
        assert error["type"] == "CompanyNotFoundError"
        assert error["code"] == "COMPANY_NOT_FOUND"
        assert error["retryable"] is False
        assert "NOPE" in error["company_ref"]
        assert "CompanyNotFoundError" in failed["traceback"]

    def test_correlation_id_does_not_outlive_the_command(self, captured_logs, tmp_path, capsys):
        url = f"sqlite:///{tmp_path / 'logging.db'}"
        department_utility.main(["stats", "--database-url", url])
        capsys.readouterr()
        assert LogContext.get_all() == {}


class TestLogContext:

    def test_bind_restores_previous_fields(self):
        LogContext.set(correlation_id="c-1")
        with LogContext.bind(actor_id="u-1", request_id="r-1"):
            LogContext.set(request_number="ACME-ENG-202508-0001")
            assert LogContext.get_all() == {
                "correlation_id": "c-1",
                "actor_id": "u-1",
                "request_id": "r-1",
                "request_number": "ACME-ENG-202508-0001",
            }
        assert LogContext.get_all() == {"correlation_id": "c-1"}

    def test_bind_restores_after_error(self):
        with pytest.raises(AllocationError):
            with LogContext.bind(request_id="r-1"):
                raise AllocationError("ACME-ENG-202508", "busy", retryable=True)
        assert LogContext.get_all() == {}

    @pytest.mark.parametrize("field", ["trace_id", "user", "role"])
    def test_unknown_field_rejected(self, field):
        with pytest.raises(TypeError):
            LogContext.set(**{field: "x"})
        with pytest.raises(TypeError):
            with LogContext.bind(**{field: "x"}):
                pass

    def test_none_is_not_bound(self):
        LogContext.set(actor_id=None, request_id="r-1")
        assert LogContext.get_all() == {"request_id": "r-1"}
