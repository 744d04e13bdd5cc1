"""
Roles and principals (``procurement_kernel.domain.roles``).

Responsibility
--------------
Defines the closed set of roles, the pure role -> scope table consumed by
both the approval chain (who is eligible) and the authorization scope (who
sees what), and the explicit ``Principal`` value passed into every core
operation.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  There is no
ambient "current user": callers resolve a Principal (see
``selectors.identity_selector.IdentityContext``) and pass it in.

Invariants enforced
-------------------
* Role policy lives in ``ROLE_SCOPES`` only; no scattered per-role checks.
* A Principal's role set is a frozenset of ``Role`` members.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID


class Role(str, Enum):
    """Roles a user may hold.  A user may hold several at once."""

    ADMIN = "admin"
    USER = "user"
    SECTION_HEAD = "section_head"
    SCM_HEAD = "scm_head"
    PJO = "pjo"


# Canonical order of the approval chain.  Configured chains must be an
# ordered subsequence of this tuple.
CANONICAL_APPROVER_ORDER: tuple[Role, ...] = (
    Role.SECTION_HEAD,
    Role.SCM_HEAD,
    Role.PJO,
)

APPROVER_ROLES: frozenset[Role] = frozenset(CANONICAL_APPROVER_ORDER)


@dataclass(frozen=True)
class RoleScope:
    """How far an approver role's authority reaches.

    company_scoped: authority limited to the approver's own company.
    department_scoped: authority further limited to the approver's department.
    """

    company_scoped: bool
    department_scoped: bool


ROLE_SCOPES: dict[Role, RoleScope] = {
    Role.SECTION_HEAD: RoleScope(company_scoped=True, department_scoped=True),
    # SCM is centralized: approves for every company.
    Role.SCM_HEAD: RoleScope(company_scoped=False, department_scoped=False),
    Role.PJO: RoleScope(company_scoped=True, department_scoped=False),
}


def covers(
    role: Role,
    holder_company_id: UUID | None,
    holder_department_id: UUID | None,
    company_id: UUID | None,
    department_id: UUID | None,
) -> bool:
    """True if a holder of ``role`` placed in the holder's company and
    department has authority over a request in ``company_id`` /
    ``department_id``."""
    scope = ROLE_SCOPES[role]
    if scope.company_scoped and (holder_company_id is None or holder_company_id != company_id):
        return False
    if scope.department_scoped and (
        holder_department_id is None or holder_department_id != department_id
    ):
        return False
    return True


def parse_roles(values) -> frozenset[Role]:
    """Coerce an iterable of role strings/members into a frozenset of Role.

    Raises:
        ValueError: on an unknown role name.
    """
    return frozenset(Role(v) for v in values)


@dataclass(frozen=True)
class Principal:
    """The authenticated actor performing an action.

    Carries the organizational scope (company, department) and the role set
    that together determine the permission surface.
    """

    user_id: UUID
    company_id: UUID | None
    department_id: UUID | None
    roles: frozenset[Role] = field(default_factory=frozenset)
    name: str = ""

    def has_role(self, role: Role) -> bool:
        return role in self.roles

    @property
    def is_admin(self) -> bool:
        return Role.ADMIN in self.roles

    def within_scope(
        self,
        role: Role,
        company_id: UUID | None,
        department_id: UUID | None,
    ) -> bool:
        """True if this principal's ``role`` authority covers the given scope."""
        if role not in self.roles:
            return False
        return covers(role, self.company_id, self.department_id, company_id, department_id)
