"""
Tests for OrganizationService -- companies, departments, users, roles.

Covers:
- code normalization and uniqueness (company global, department per company)
- user creation: department implies company, mismatches rejected
- role grants and revocation
- section head assignment (single head per department) and auto-assignment
- pending approvals withdrawn when a user loses approval authority
- cleanup of departments nothing refers to
"""

import pytest
from sqlalchemy import select

from procurement_kernel.domain.approval import ApprovalStatus
from procurement_kernel.domain.dtos import ItemSpec
from procurement_kernel.domain.request_lifecycle import RequestStatus
from procurement_kernel.domain.roles import Role
from procurement_kernel.exceptions import (
    CompanyNotFoundError,
    DepartmentNotFoundError,
    DuplicateCodeError,
    InvalidCodeError,
    NotAssignedApproverError,
    SectionHeadAssignmentError,
    UserNotFoundError,
)
from procurement_kernel.models.approval import Approval
from procurement_kernel.models.counter import RequestNumberCounter
from procurement_kernel.models.organization import Department
from procurement_kernel.selectors.identity_selector import IdentityContext
from procurement_kernel.selectors.organization_selector import OrganizationSelector
from procurement_kernel.services.organization_service import OrganizationService


@pytest.fixture
def service(session):
    return OrganizationService(session)


@pytest.fixture
def company(service):
    return service.create_company("PT. Adijaya Karya Makmur - Jakarta", "akm-jkt")


class TestCompaniesAndDepartments:

    def test_codes_are_upper_cased(self, company, service):
        assert company.code == "AKM-JKT"
        department = service.create_department(company.id, " Information Technology ", "it")
        assert department.code == "IT"
        assert department.name == "Information Technology"

    def test_duplicate_company_code(self, company, service):
        with pytest.raises(DuplicateCodeError) as exc:
            service.create_company("Another", "AKM-JKT")
        assert exc.value.entity_type == "Company"

    @pytest.mark.parametrize("code", ["", "  ", "AKM JKT", "-AKM", "AKM-", "A" * 21])
    def test_invalid_company_code(self, service, code):
        with pytest.raises(InvalidCodeError):
            service.create_company("Bad", code)

    def test_department_code_may_not_contain_dash(self, company, service):
        with pytest.raises(InvalidCodeError):
            service.create_department(company.id, "Bad", "IT-OPS")

    def test_department_code_unique_per_company(self, company, service):
        service.create_department(company.id, "IT", "IT")
        with pytest.raises(DuplicateCodeError):
            service.create_department(company.id, "IT again", "IT")
        other = service.create_company("Surabaya", "AKM-SBY")
        assert service.create_department(other.id, "IT", "IT").code == "IT"

    def test_department_needs_existing_company(self, service):
        from uuid import uuid4

        with pytest.raises(CompanyNotFoundError):
            service.create_department(uuid4(), "IT", "IT")


class TestUsers:

    def test_department_implies_company(self, company, service):
        department = service.create_department(company.id, "IT", "IT")
        user = service.create_user("IT001", "Staff", department_id=department.id)
        assert user.company_id == company.id
        assert user.role_names == {"user"}

    def test_department_of_other_company_rejected(self, company, service):
        other = service.create_company("Surabaya", "AKM-SBY")
        department = service.create_department(other.id, "IT", "IT")
        with pytest.raises(DepartmentNotFoundError):
            service.create_user(
                "IT001", "Staff", company_id=company.id, department_id=department.id,
            )

    def test_duplicate_employee_id(self, company, service):
        service.create_user("E1", "One", company_id=company.id)
        with pytest.raises(DuplicateCodeError):
            service.create_user("E1", "Two", company_id=company.id)

    def test_unknown_role_rejected(self, company, service):
        with pytest.raises(ValueError):
            service.create_user("E1", "One", company_id=company.id, roles=("auditor",))

    def test_grant_and_revoke(self, company, service):
        user = service.create_user("E1", "One", company_id=company.id)
        assert service.grant_role(user.id, Role.PJO) is True
        assert service.grant_role(user.id, "pjo") is False
        assert user.role_names == {"user", "pjo"}
        assert service.revoke_role(user.id, Role.PJO) is True
        assert service.revoke_role(user.id, Role.PJO) is False
        assert user.role_names == {"user"}

    def test_deactivated_user_has_no_principal(self, company, service, session):
        user = service.create_user("E1", "One", company_id=company.id)
        service.deactivate_user(user.id)
        with pytest.raises(UserNotFoundError):
            IdentityContext(session).principal_for(user.id)

    def test_unknown_user(self, service):
        from uuid import uuid4

        with pytest.raises(UserNotFoundError):
            service.grant_role(uuid4(), Role.PJO)


class TestSectionHeads:

    def test_assignment_replaces_previous_head(self, org, service, session):
        department = org.departments["ACME/ENG"]
        replaced = service.assign_section_head(department.id, org.users["colleague"].id)
        assert [u.id for u in replaced] == [org.users["section_head"].id]

        heads = OrganizationSelector(session).section_heads(department.id)
        assert [u.employee_id for u in heads] == ["EMP002"]
        assert "section_head" not in org.users["section_head"].role_names

    def test_reassigning_current_head_is_noop(self, org, service):
        department = org.departments["ACME/ENG"]
        assert service.assign_section_head(department.id, org.users["section_head"].id) == []

    def test_user_outside_department(self, org, service):
        with pytest.raises(SectionHeadAssignmentError):
            service.assign_section_head(
                org.departments["ACME/ENG"].id, org.users["ops_user"].id,
            )

    def test_inactive_user(self, org, service):
        service.deactivate_user(org.users["colleague"].id)
        with pytest.raises(SectionHeadAssignmentError):
            service.assign_section_head(
                org.departments["ACME/ENG"].id, org.users["colleague"].id,
            )

    def test_new_head_receives_future_approvals(self, org, service, workflow, items):
        service.assign_section_head(org.departments["ACME/ENG"].id, org.users["colleague"].id)
        record = workflow.create_request(org.requester, items=items)
        record = workflow.submit(org.requester, record.id)
        assert [a.user_id for a in record.approvals_for(Role.SECTION_HEAD)] == [
            org.users["colleague"].id,
        ]

    def test_auto_assign_single_candidate(self, company, service, session):
        lonely = service.create_department(company.id, "Finance", "FIN")
        crowded = service.create_department(company.id, "Ops", "OPS")
        only = service.create_user("FIN001", "Fin Staff", department_id=lonely.id)
        service.create_user("OPS001", "Ops One", department_id=crowded.id)
        service.create_user("OPS002", "Ops Two", department_id=crowded.id)

        assigned = service.auto_assign_section_heads("AKM-JKT")
        assert [(summary.code, user.id) for summary, user in assigned] == [("FIN", only.id)]
        missing = OrganizationSelector(session).departments_without_section_head()
        assert [d.code for d in missing] == ["OPS"]


class TestApprovalWithdrawal:

    def test_replaced_head_cannot_approve(self, org, service, workflow, submitted, selector):
        service.assign_section_head(org.departments["ACME/ENG"].id, org.users["colleague"].id)

        with pytest.raises(NotAssignedApproverError):
            workflow.approve(org.section_head, submitted.id)
        record = selector.get(org.admin, submitted.id)
        assert record.status == RequestStatus.SUBMITTED
        (approval,) = record.approvals_for(Role.SECTION_HEAD)
        assert approval.user_id == org.users["section_head"].id
        assert approval.status == ApprovalStatus.CANCELLED

    def test_revoked_role_withdraws_only_that_role(self, org, service, session, workflow, draft):
        service.grant_role(org.users["pjo"].id, Role.SCM_HEAD)
        workflow.submit(org.requester, draft.id)
        assert service.revoke_role(org.users["pjo"].id, Role.PJO) is True

        statuses = dict(session.execute(
            select(Approval.role, Approval.status).where(
                Approval.request_id == draft.id,
                Approval.user_id == org.users["pjo"].id,
            )
        ).all())
        assert statuses == {"scm_head": "pending", "pjo": "cancelled"}

    def test_revoked_approver_cannot_approve(self, org, service, workflow, submitted):
        stale = org.section_head
        service.revoke_role(org.users["section_head"].id, Role.SECTION_HEAD)
        with pytest.raises(NotAssignedApproverError):
            workflow.approve(stale, submitted.id)

    def test_deactivated_approver_cannot_approve(self, org, service, workflow, submitted, session):
        stale = org.section_head
        service.deactivate_user(org.users["section_head"].id)

        with pytest.raises(NotAssignedApproverError):
            workflow.approve(stale, submitted.id)
        pending = session.execute(
            select(Approval.id).where(
                Approval.user_id == org.users["section_head"].id,
                Approval.status == ApprovalStatus.PENDING.value,
            )
        ).all()
        assert pending == []

    def test_revoking_non_approver_role_keeps_approvals(self, org, service, session, submitted):
        service.grant_role(org.users["pjo"].id, Role.ADMIN)
        service.revoke_role(org.users["pjo"].id, Role.ADMIN)
        (status,) = session.execute(
            select(Approval.status).where(
                Approval.request_id == submitted.id,
                Approval.user_id == org.users["pjo"].id,
            )
        ).scalars().all()
        assert status == "pending"

    def test_withdrawal_logged(self, captured_logs, org, service, submitted):
        service.deactivate_user(org.users["pjo_2"].id)
        logs = captured_logs()
        (withdrawn,) = [r for r in logs if r["message"] == "approvals_withdrawn"]
        assert withdrawn["user_id"] == str(org.users["pjo_2"].id)
        assert withdrawn["roles"] is None
        assert withdrawn["count"] == 1
        (deactivated,) = [r for r in logs if r["message"] == "user_deactivated"]
        assert deactivated["approvals_withdrawn"] == 1


class TestCleanup:

    def test_removes_only_unreferenced_departments(self, org, service, session):
        spare = service.create_department(org.companies["ACME"].id, "Spare", "SPR")
        removed = service.cleanup_empty_departments()
        assert [d.id for d in removed] == [spare.id]
        assert session.get(Department, spare.id) is None
        assert session.get(Department, org.departments["ACME/ENG"].id) is not None

    def test_dry_run_deletes_nothing(self, org, service, session):
        spare = service.create_department(org.companies["ACME"].id, "Spare", "SPR")
        assert [d.id for d in service.cleanup_empty_departments(dry_run=True)] == [spare.id]
        assert session.get(Department, spare.id) is not None

    def test_department_with_requests_is_kept(self, org, service, workflow, session):
        workflow.create_request(org.ops_user, items=[ItemSpec("Gloves", 1)])
        service.deactivate_user(org.users["ops_user"].id)
        assert service.cleanup_empty_departments("ACME") == []
        counters = session.execute(select(RequestNumberCounter)).scalars().all()
        assert len(counters) == 1

    def test_company_filter(self, org, service):
        service.create_department(org.companies["ACME"].id, "Spare", "SPR")
        assert service.cleanup_empty_departments("GLOBEX") == []
