"""
IdentityContext -- resolves the acting principal.

Loads a User and its role grants and returns the frozen ``Principal``
value every workflow operation takes explicitly.  Authentication itself
happens outside the kernel; this only turns an authenticated user id into
organizational scope plus role set.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select

from procurement_kernel.domain.roles import Principal, parse_roles
from procurement_kernel.exceptions import UserNotFoundError
from procurement_kernel.models.organization import User
from procurement_kernel.selectors.base import BaseSelector


class IdentityContext(BaseSelector):
    """Builds Principals from persisted users."""

    def principal_for(self, user_id: UUID) -> Principal:
        """
        Raises:
            UserNotFoundError: no such user, or the user is deactivated.
        """
        user = self.session.get(User, user_id)
        if user is None or not user.is_active:
            raise UserNotFoundError(str(user_id))
        return self._to_principal(user)

    def principal_for_employee(self, employee_id: str) -> Principal:
        user = self.session.execute(
            select(User).where(User.employee_id == employee_id)
        ).scalar_one_or_none()
        if user is None or not user.is_active:
            raise UserNotFoundError(employee_id)
        return self._to_principal(user)

    @staticmethod
    def _to_principal(user: User) -> Principal:
        return Principal(
            user_id=user.id,
            company_id=user.company_id,
            department_id=user.department_id,
            roles=parse_roles(user.role_names),
            name=user.name,
        )
