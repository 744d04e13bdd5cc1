"""
AuthorizationScope -- who may see and act on which requests.

Responsibility:
    Computes the visibility predicate for a principal (a SQL boolean
    expression over ``requests``) and answers ``can_perform`` for a
    principal, action and request.

Architecture position:
    Kernel > Selectors.  Read-only.  Role authority comes from
    ``ROLE_SCOPES`` and the chain policy; no role is special-cased.

Visibility (union; everyone sees their own requests):
    * admin       -- every request.
    * approver    -- requests in the status at which that role acts in the
                     request company's chain, restricted by the role's
                     scope: section_head to its company and department,
                     pjo to its company, scm_head to nothing (centralized).
    * plain user  -- own requests only.

Invariants enforced:
    - ``can_perform`` for approver actions delegates to the pending
      Approval check, which also requires the approver to still hold the
      role in scope, the same test the workflow enforces.
    - Visibility reads take no locks.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import ColumnElement, and_, false, or_, select, true

from procurement_kernel.domain.approval import (
    DEFAULT_CHAIN_POLICY,
    ApprovalChainPolicy,
    ApprovalStatus,
    acting_status,
    next_role,
)
from procurement_kernel.domain.request_lifecycle import (
    RequestAction,
    RequestStatus,
    is_action_allowed,
)
from procurement_kernel.domain.roles import (
    CANONICAL_APPROVER_ORDER,
    ROLE_SCOPES,
    Principal,
    Role,
    covers,
)
from procurement_kernel.models.approval import Approval
from procurement_kernel.models.organization import Company, User, UserRole
from procurement_kernel.models.request import Request
from procurement_kernel.selectors.base import BaseSelector

OWNER_ACTIONS: frozenset[RequestAction] = frozenset({
    RequestAction.EDIT,
    RequestAction.SUBMIT,
    RequestAction.CANCEL,
    RequestAction.RESUBMIT,
    RequestAction.DELETE,
})

APPROVER_ACTIONS: frozenset[RequestAction] = frozenset({
    RequestAction.APPROVE,
    RequestAction.REJECT,
    RequestAction.REQUEST_REVISION,
})


class AuthorizationScope(BaseSelector):
    """Visibility predicates and action permission checks."""

    def __init__(self, session, policy: ApprovalChainPolicy = DEFAULT_CHAIN_POLICY):
        super().__init__(session)
        self._policy = policy

    # ------------------------------------------------------------------
    # Visibility
    # ------------------------------------------------------------------

    def visible_requests(self, principal: Principal) -> ColumnElement[bool]:
        """SQL predicate selecting the requests ``principal`` may see."""
        if principal.is_admin:
            return true()
        clauses = [Request.user_id == principal.user_id]
        for role in CANONICAL_APPROVER_ORDER:
            if principal.has_role(role):
                clauses.append(self._role_clause(principal, role))
        return or_(*clauses)

    def can_view(self, principal: Principal, request_id: UUID) -> bool:
        return self.session.execute(
            select(Request.id).where(
                Request.id == request_id,
                self.visible_requests(principal),
            )
        ).first() is not None

    def can_access(self, principal: Principal, request_id: UUID) -> bool:
        """Visible, or the principal holds any Approval on the request.

        Approvers keep access to requests that moved past their stage so
        that late actions fail with a precise error instead of a
        not-found.
        """
        if self.can_view(principal, request_id):
            return True
        return self.session.execute(
            select(Approval.id).where(
                Approval.request_id == request_id,
                Approval.user_id == principal.user_id,
            ).limit(1)
        ).first() is not None

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def can_perform(self, principal: Principal, action: RequestAction, request) -> bool:
        """
        True if ``principal`` may perform ``action`` on ``request`` now.

        ``request`` is a Request model or RequestRecord.
        """
        status = RequestStatus(request.status)
        if not is_action_allowed(status, action):
            return False
        if action in OWNER_ACTIONS:
            return request.user_id == principal.user_id
        role = next_role(status, self.chain_for(request.company_id))
        if role is None:
            return False
        return self.has_pending_approval(principal, request.id, role)

    def has_pending_approval(
        self,
        principal: Principal,
        request_id: UUID,
        role: Role,
    ) -> bool:
        """Pending Approval for ``role`` held by a user who still has the role.

        The user row is read back so that a deactivation or revocation
        after the Principal was built is honoured.
        """
        row = self.session.execute(
            select(
                User.company_id,
                User.department_id,
                Request.company_id,
                Request.department_id,
            )
            .select_from(Approval)
            .join(User, User.id == Approval.user_id)
            .join(UserRole, and_(UserRole.user_id == User.id, UserRole.role == Approval.role))
            .join(Request, Request.id == Approval.request_id)
            .where(
                Approval.request_id == request_id,
                Approval.user_id == principal.user_id,
                Approval.role == role.value,
                Approval.status == ApprovalStatus.PENDING.value,
                User.is_active.is_(True),
            )
        ).first()
        return row is not None and covers(role, *row)

    def chain_for(self, company_id: UUID) -> tuple[Role, ...]:
        return self._policy.roles_for(self._company_code(company_id))

    # ------------------------------------------------------------------

    def _company_code(self, company_id: UUID) -> str:
        return self.session.execute(
            select(Company.code).where(Company.id == company_id)
        ).scalar_one()

    def _role_clause(self, principal: Principal, role: Role) -> ColumnElement[bool]:
        scope = ROLE_SCOPES[role]
        if scope.company_scoped and principal.company_id is None:
            return false()
        if scope.department_scoped and principal.department_id is None:
            return false()

        if scope.company_scoped:
            # One company, one chain.
            status = acting_status(role, self.chain_for(principal.company_id))
            status_clause = (
                Request.status == status.value if status is not None else false()
            )
        else:
            status_clause = self._status_clause_across_chains(role)

        conditions = [status_clause]
        if scope.company_scoped:
            conditions.append(Request.company_id == principal.company_id)
        if scope.department_scoped:
            conditions.append(Request.department_id == principal.department_id)
        return and_(*conditions)

    def _status_clause_across_chains(self, role: Role) -> ColumnElement[bool]:
        parts = []
        override_codes = sorted(self._policy.override_codes)
        default_status = acting_status(role, self._policy.default_chain)
        if default_status is not None:
            clause = Request.status == default_status.value
            if override_codes:
                clause = and_(
                    clause,
                    Request.company_id.not_in(
                        select(Company.id).where(Company.code.in_(override_codes))
                    ),
                )
            parts.append(clause)
        for code, chain in self._policy.company_overrides:
            status = acting_status(role, chain)
            if status is None:
                continue
            parts.append(
                and_(
                    Request.status == status.value,
                    Request.company_id.in_(
                        select(Company.id).where(Company.code == code)
                    ),
                )
            )
        return or_(*parts) if parts else false()
