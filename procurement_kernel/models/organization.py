"""
Module: procurement_kernel.models.organization
Responsibility: ORM persistence for the organizational hierarchy: companies
    (tenant boundary), departments, users and their role grants.
Architecture position: Kernel > Models.  May import from db/ only.
    MUST NOT import from services/, selectors/, or outer layers.

Invariants enforced:
    - companies.code is globally unique.
    - departments.code is unique within its company.
    - users.employee_id is globally unique.
    - A user holds each role at most once (uq_user_roles_user_role); role
      values are limited by a CHECK constraint.
    - At most one section head per department is NOT a database constraint;
      OrganizationService.assign_section_head enforces it.

Failure modes:
    - IntegrityError on duplicate codes / employee ids / role grants.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from procurement_kernel.db.base import Base, TrackedBase, UUIDString
from procurement_kernel.db.types import Name, ShortCode, StatusCode


class Company(TrackedBase):
    """
    Tenant boundary.  Owns departments, users and requests.

    Guarantees:
        - code is unique and stored upper-case.
    """

    __tablename__ = "companies"

    name: Mapped[Name] = mapped_column(nullable=False)
    code: Mapped[ShortCode] = mapped_column(nullable=False, unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    departments: Mapped[list[Department]] = relationship(
        "Department",
        back_populates="company",
        order_by="Department.code",
    )

    def __repr__(self) -> str:
        return f"<Company {self.code}>"


class Department(TrackedBase):
    """Organizational unit within a company."""

    __tablename__ = "departments"

    __table_args__ = (
        UniqueConstraint("company_id", "code", name="uq_departments_company_code"),
    )

    company_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("companies.id"), nullable=False,
    )
    name: Mapped[Name] = mapped_column(nullable=False)
    code: Mapped[ShortCode] = mapped_column(nullable=False)

    company: Mapped[Company] = relationship("Company", back_populates="departments")

    def __repr__(self) -> str:
        return f"<Department {self.code} company={self.company_id}>"


class User(TrackedBase):
    """
    A principal.  ``company_id`` / ``department_id`` scope role authority.

    Admins and centralized SCM heads may have no department.
    """

    __tablename__ = "users"

    __table_args__ = (
        Index("ix_users_company_department", "company_id", "department_id"),
    )

    employee_id: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[Name] = mapped_column(nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    company_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("companies.id"), nullable=True,
    )
    department_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("departments.id"), nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    role_grants: Mapped[list[UserRole]] = relationship(
        "UserRole",
        back_populates="user",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def role_names(self) -> frozenset[str]:
        return frozenset(grant.role for grant in self.role_grants)

    def __repr__(self) -> str:
        return f"<User {self.employee_id} roles={sorted(self.role_names)}>"


class UserRole(Base):
    """One role grant.  A user may hold several roles at once."""

    __tablename__ = "user_roles"

    __table_args__ = (
        UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),
        CheckConstraint(
            "role IN ('admin', 'user', 'section_head', 'scm_head', 'pjo')",
            name="ck_user_roles_valid_role",
        ),
        Index("ix_user_roles_role", "role"),
    )

    user_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=False,
    )
    role: Mapped[StatusCode] = mapped_column(nullable=False)

    user: Mapped[User] = relationship("User", back_populates="role_grants")

    def __repr__(self) -> str:
        return f"<UserRole {self.role} user={self.user_id}>"
