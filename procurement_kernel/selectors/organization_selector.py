"""
Module: procurement_kernel.selectors.organization_selector
Responsibility: Read-only reports over the organizational hierarchy:
    department listings with head and request counts, departments lacking
    a section head, section head candidates, aggregate statistics, and
    the set of departments that are safe to remove.
Architecture position: Kernel > Selectors.  May import from models/ and
    domain/.  MUST NOT import from services/.

Invariants enforced:
    - A department "has a section head" when at least one ACTIVE user of
      that department holds the section_head role.
    - A request is "active" while its status is not terminal.
    - A department is "empty" when no user and no request references it.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, select

from procurement_kernel.domain.request_lifecycle import TERMINAL_REQUEST_STATUSES
from procurement_kernel.domain.roles import Role
from procurement_kernel.exceptions import CompanyNotFoundError, DepartmentNotFoundError
from procurement_kernel.models.organization import Company, Department, User, UserRole
from procurement_kernel.models.request import Request
from procurement_kernel.selectors.base import BaseSelector

# Holders of these roles are never proposed as section head candidates.
_NON_CANDIDATE_ROLES = frozenset({Role.ADMIN, Role.SECTION_HEAD, Role.SCM_HEAD, Role.PJO})


@dataclass(frozen=True)
class DepartmentSummary:
    id: UUID
    company_id: UUID
    company_code: str
    name: str
    code: str
    user_count: int
    request_count: int
    active_request_count: int
    section_head_names: tuple[str, ...]

    @property
    def has_section_head(self) -> bool:
        return bool(self.section_head_names)


@dataclass(frozen=True)
class CompanyBreakdown:
    code: str
    name: str
    department_count: int
    user_count: int

    @property
    def average_users_per_department(self) -> float:
        if self.department_count == 0:
            return 0.0
        return round(self.user_count / self.department_count, 1)


@dataclass(frozen=True)
class OrganizationStats:
    total_departments: int
    with_section_head: int
    without_section_head: int
    departments_with_active_requests: int
    companies: tuple[CompanyBreakdown, ...]

    def percentage(self, count: int) -> float:
        if self.total_departments == 0:
            return 0.0
        return round(count * 100 / self.total_departments, 1)


class OrganizationSelector(BaseSelector):
    """Department and company reports for administrators and the CLI."""

    def get_company_by_code(self, code: str) -> Company:
        company = self.session.execute(
            select(Company).where(Company.code == code.strip().upper())
        ).scalar_one_or_none()
        if company is None:
            raise CompanyNotFoundError(code)
        return company

    def get_department(self, department_id: UUID) -> Department:
        department = self.session.get(Department, department_id)
        if department is None:
            raise DepartmentNotFoundError(str(department_id))
        return department

    def list_departments(self, company_code: str | None = None) -> list[DepartmentSummary]:
        """Departments ordered by company code then department code."""
        stmt = select(Department, Company.code).join(Company, Company.id == Department.company_id)
        if company_code is not None:
            stmt = stmt.where(Company.id == self.get_company_by_code(company_code).id)
        stmt = stmt.order_by(Company.code, Department.code)
        rows = self.session.execute(stmt).all()
        if not rows:
            return []

        user_counts = dict(self.session.execute(
            select(User.department_id, func.count(User.id))
            .where(User.department_id.is_not(None))
            .group_by(User.department_id)
        ).all())
        request_counts = dict(self.session.execute(
            select(Request.department_id, func.count(Request.id))
            .group_by(Request.department_id)
        ).all())
        active_counts = dict(self.session.execute(
            select(Request.department_id, func.count(Request.id))
            .where(Request.status.notin_([s.value for s in TERMINAL_REQUEST_STATUSES]))
            .group_by(Request.department_id)
        ).all())
        heads = self._section_head_names()

        return [
            DepartmentSummary(
                id=department.id,
                company_id=department.company_id,
                company_code=code,
                name=department.name,
                code=department.code,
                user_count=user_counts.get(department.id, 0),
                request_count=request_counts.get(department.id, 0),
                active_request_count=active_counts.get(department.id, 0),
                section_head_names=tuple(heads.get(department.id, ())),
            )
            for department, code in rows
        ]

    def departments_without_section_head(
        self, company_code: str | None = None,
    ) -> list[DepartmentSummary]:
        return [d for d in self.list_departments(company_code) if not d.has_section_head]

    def empty_departments(self, company_code: str | None = None) -> list[DepartmentSummary]:
        """Departments no user and no request refers to."""
        return [
            d for d in self.list_departments(company_code)
            if d.user_count == 0 and d.request_count == 0
        ]

    def section_heads(self, department_id: UUID) -> list[User]:
        """Users of the department holding section_head, active or not."""
        return list(self.session.execute(
            select(User)
            .join(UserRole, UserRole.user_id == User.id)
            .where(
                User.department_id == department_id,
                UserRole.role == Role.SECTION_HEAD.value,
            )
            .order_by(User.employee_id)
        ).scalars())

    def section_head_candidates(self, department_id: UUID) -> list[User]:
        """Active department members holding no approver or admin role."""
        members = self.session.execute(
            select(User)
            .where(User.department_id == department_id, User.is_active.is_(True))
            .order_by(User.employee_id)
        ).scalars()
        blocked = {role.value for role in _NON_CANDIDATE_ROLES}
        return [user for user in members if not (user.role_names & blocked)]

    def statistics(self) -> OrganizationStats:
        departments = self.list_departments()
        with_head = sum(1 for d in departments if d.has_section_head)

        companies = []
        for company in self.session.execute(select(Company).order_by(Company.code)).scalars():
            owned = [d for d in departments if d.company_id == company.id]
            companies.append(CompanyBreakdown(
                code=company.code,
                name=company.name,
                department_count=len(owned),
                user_count=sum(d.user_count for d in owned),
            ))

        return OrganizationStats(
            total_departments=len(departments),
            with_section_head=with_head,
            without_section_head=len(departments) - with_head,
            departments_with_active_requests=sum(
                1 for d in departments if d.active_request_count > 0
            ),
            companies=tuple(companies),
        )

    def _section_head_names(self) -> dict[UUID, list[str]]:
        heads: dict[UUID, list[str]] = {}
        rows = self.session.execute(
            select(User.department_id, User.name)
            .join(UserRole, UserRole.user_id == User.id)
            .where(
                UserRole.role == Role.SECTION_HEAD.value,
                User.is_active.is_(True),
                User.department_id.is_not(None),
            )
            .order_by(User.name)
        ).all()
        for department_id, name in rows:
            heads.setdefault(department_id, []).append(name)
        return heads
