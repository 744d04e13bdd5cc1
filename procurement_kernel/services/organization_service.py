"""
OrganizationService -- companies, departments, users and role grants.

Responsibility:
    Administrative writes over the organizational hierarchy: creating
    companies, departments and users, granting and revoking roles,
    assigning section heads and removing departments nothing refers to.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Consumed by the department utility CLI and the seed script.

Invariants enforced:
    - Codes are stored upper-case.  Department codes are alphanumeric and
      unique within their company; company codes are globally unique and
      may contain dashes between alphanumeric groups.
    - A user's department belongs to the user's company.
    - A department has at most one section head: assigning a new one
      revokes the role from every other member of that department.
    - Only departments with no users and no requests are removed.
    - A user who loses an approver role, or is deactivated, keeps no
      pending approval in that role.

Failure modes:
    - InvalidCodeError, DuplicateCodeError on bad or reused codes.
    - CompanyNotFoundError, DepartmentNotFoundError, UserNotFoundError.
    - SectionHeadAssignmentError when the user is outside the department
      or inactive.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import delete, select

from procurement_kernel.domain.request_number import (
    COMPANY_CODE_PATTERN,
    DEPARTMENT_CODE_PATTERN,
)
from procurement_kernel.domain.roles import APPROVER_ROLES, Role, parse_roles
from procurement_kernel.exceptions import (
    CompanyNotFoundError,
    DepartmentNotFoundError,
    DuplicateCodeError,
    InvalidCodeError,
    SectionHeadAssignmentError,
    UserNotFoundError,
)
from procurement_kernel.logging_config import get_logger
from procurement_kernel.models.counter import RequestNumberCounter
from procurement_kernel.models.organization import Company, Department, User, UserRole
from procurement_kernel.selectors.organization_selector import (
    DepartmentSummary,
    OrganizationSelector,
)
from procurement_kernel.services.approval_chain import ApprovalChainService
from procurement_kernel.services.base import BaseService

logger = get_logger("services.organization")

MAX_CODE_LENGTH = 20


def _normalize_code(entity_type: str, value: str, pattern) -> str:
    code = (value or "").strip().upper()
    if not code or len(code) > MAX_CODE_LENGTH or not pattern.match(code):
        raise InvalidCodeError(entity_type, value)
    return code


class OrganizationService(BaseService):
    """
    Administrative writes.  Flushes, never commits.

    Reads needed to validate a write go through OrganizationSelector so
    the reporting rules (who counts as section head, what is "empty")
    have one definition.
    """

    def __init__(self, session):
        super().__init__(session)
        self._selector = OrganizationSelector(session)
        self._approvals = ApprovalChainService(session)

    # ------------------------------------------------------------------
    # Companies, departments, users
    # ------------------------------------------------------------------

    def create_company(self, name: str, code: str) -> Company:
        code = _normalize_code("Company", code, COMPANY_CODE_PATTERN)
        existing = self.session.execute(
            select(Company.id).where(Company.code == code)
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicateCodeError("Company", code)

        company = Company(name=name.strip(), code=code, is_active=True)
        self.session.add(company)
        self.session.flush()
        logger.info("company_created", extra={"company_id": str(company.id), "code": code})
        return company

    def create_department(self, company_id: UUID, name: str, code: str) -> Department:
        if self.session.get(Company, company_id) is None:
            raise CompanyNotFoundError(str(company_id))
        code = _normalize_code("Department", code, DEPARTMENT_CODE_PATTERN)
        existing = self.session.execute(
            select(Department.id).where(
                Department.company_id == company_id,
                Department.code == code,
            )
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicateCodeError("Department", code)

        department = Department(company_id=company_id, name=name.strip(), code=code)
        self.session.add(department)
        self.session.flush()
        logger.info(
            "department_created",
            extra={
                "department_id": str(department.id),
                "company_id": str(company_id),
                "code": code,
            },
        )
        return department

    def create_user(
        self,
        employee_id: str,
        name: str,
        company_id: UUID | None = None,
        department_id: UUID | None = None,
        email: str | None = None,
        roles=(Role.USER,),
    ) -> User:
        """
        Create a user with an initial role set.

        A department without a company implies the department's company.
        """
        if department_id is not None:
            department = self.session.get(Department, department_id)
            if department is None:
                raise DepartmentNotFoundError(str(department_id))
            if company_id is None:
                company_id = department.company_id
            elif department.company_id != company_id:
                raise DepartmentNotFoundError(str(department_id))
        if company_id is not None and self.session.get(Company, company_id) is None:
            raise CompanyNotFoundError(str(company_id))

        existing = self.session.execute(
            select(User.id).where(User.employee_id == employee_id)
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicateCodeError("User", employee_id)

        user = User(
            employee_id=employee_id,
            name=name,
            email=email,
            company_id=company_id,
            department_id=department_id,
            is_active=True,
        )
        user.role_grants = [UserRole(role=role.value) for role in sorted(parse_roles(roles))]
        self.session.add(user)
        self.session.flush()
        logger.info(
            "user_created",
            extra={
                "user_id": str(user.id),
                "employee_id": employee_id,
                "roles": sorted(user.role_names),
            },
        )
        return user

    def deactivate_user(self, user_id: UUID) -> User:
        """Deactivate a user; their pending approvals are withdrawn."""
        user = self._get_user(user_id)
        user.is_active = False
        self.session.flush()
        withdrawn = self._approvals.cancel_for_user(user_id)
        logger.info(
            "user_deactivated",
            extra={"user_id": str(user_id), "approvals_withdrawn": withdrawn},
        )
        return user

    # ------------------------------------------------------------------
    # Role grants
    # ------------------------------------------------------------------

    def grant_role(self, user_id: UUID, role: Role | str) -> bool:
        """Grant a role.  Returns False when the user already holds it."""
        user = self._get_user(user_id)
        role = Role(role)
        if role.value in user.role_names:
            return False
        user.role_grants.append(UserRole(role=role.value))
        self.session.flush()
        logger.info("role_granted", extra={"user_id": str(user_id), "role": role.value})
        return True

    def revoke_role(self, user_id: UUID, role: Role | str) -> bool:
        """Revoke a role.  Returns False when the user did not hold it.

        Pending approvals the user holds in that role are withdrawn.
        """
        user = self._get_user(user_id)
        role = Role(role)
        remaining = [grant for grant in user.role_grants if grant.role != role.value]
        if len(remaining) == len(user.role_grants):
            return False
        user.role_grants = remaining
        self.session.flush()
        withdrawn = 0
        if role in APPROVER_ROLES:
            withdrawn = self._approvals.cancel_for_user(user_id, [role])
        logger.info(
            "role_revoked",
            extra={
                "user_id": str(user_id),
                "role": role.value,
                "approvals_withdrawn": withdrawn,
            },
        )
        return True

    def assign_section_head(self, department_id: UUID, user_id: UUID) -> list[User]:
        """
        Make ``user_id`` the section head of ``department_id``.

        Returns the users who lost the role.  Re-assigning the current
        head is a no-op that returns an empty list.

        Raises:
            SectionHeadAssignmentError: user outside the department or
                inactive.
        """
        department = self._selector.get_department(department_id)
        user = self._get_user(user_id)
        if user.department_id != department.id:
            raise SectionHeadAssignmentError(
                str(department_id), str(user_id), "user does not belong to the department",
            )
        if not user.is_active:
            raise SectionHeadAssignmentError(
                str(department_id), str(user_id), "user is inactive",
            )

        replaced = [
            head for head in self._selector.section_heads(department.id)
            if head.id != user.id
        ]
        for head in replaced:
            self.revoke_role(head.id, Role.SECTION_HEAD)
        self.grant_role(user.id, Role.SECTION_HEAD)

        logger.info(
            "section_head_assigned",
            extra={
                "department_id": str(department_id),
                "user_id": str(user_id),
                "replaced": [str(head.id) for head in replaced],
            },
        )
        return replaced

    def auto_assign_section_heads(
        self, company_code: str | None = None,
    ) -> list[tuple[DepartmentSummary, User]]:
        """
        Fill departments lacking a head where exactly one candidate exists.

        Departments with zero or several candidates are left untouched
        and are still reported by
        ``OrganizationSelector.departments_without_section_head``.
        """
        assigned = []
        for summary in self._selector.departments_without_section_head(company_code):
            candidates = self._selector.section_head_candidates(summary.id)
            if len(candidates) != 1:
                continue
            self.assign_section_head(summary.id, candidates[0].id)
            assigned.append((summary, candidates[0]))
        return assigned

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def cleanup_empty_departments(
        self, company_code: str | None = None, dry_run: bool = False,
    ) -> list[DepartmentSummary]:
        """
        Delete departments with no users and no requests.

        Their request number counters go with them.  With ``dry_run`` the
        candidates are returned and nothing is deleted.
        """
        empty = self._selector.empty_departments(company_code)
        if dry_run or not empty:
            return empty

        ids = [summary.id for summary in empty]
        self.session.execute(
            delete(RequestNumberCounter)
            .where(RequestNumberCounter.department_id.in_(ids))
            .execution_options(synchronize_session=False)
        )
        for department_id in ids:
            department = self.session.get(Department, department_id)
            if department is not None:
                self.session.delete(department)
        self.session.flush()
        logger.info(
            "departments_cleaned_up",
            extra={"count": len(empty), "codes": [d.code for d in empty]},
        )
        return empty

    def _get_user(self, user_id: UUID) -> User:
        user = self.session.get(User, user_id)
        if user is None:
            raise UserNotFoundError(str(user_id))
        return user
