"""
Module: procurement_kernel.selectors.request_selector
Responsibility: Read-only request queries: visibility-filtered lookups and
    listings, the approver inbox, the stuck-workflow report, dashboard
    counts and the activity history.
Architecture position: Kernel > Selectors.  May import from models/,
    domain/ and selectors/.  MUST NOT import from services/.

Invariants enforced:
    - Every principal-facing query is filtered through
      AuthorizationScope.visible_requests; a request outside scope is
      indistinguishable from a missing one.
    - Results are DTOs, never ORM entities.

Failure modes:
    - RequestNotAccessibleError from ``get`` for missing or invisible
      requests.  Listing methods return empty results instead of raising.
"""

from __future__ import annotations

from collections import Counter
from uuid import UUID

from sqlalchemy import and_, func, select

from procurement_kernel.domain.approval import (
    DEFAULT_CHAIN_POLICY,
    ApprovalChainPolicy,
    ApprovalStatus,
    next_role,
)
from procurement_kernel.domain.dtos import ActivityRecord, RequestRecord, StuckWorkflow
from procurement_kernel.domain.request_lifecycle import (
    AWAITING_APPROVAL_STATUSES,
    RequestStatus,
)
from procurement_kernel.domain.roles import CANONICAL_APPROVER_ORDER, Principal, Role, covers
from procurement_kernel.exceptions import RequestNotAccessibleError
from procurement_kernel.models.activity import RequestActivity
from procurement_kernel.models.approval import Approval
from procurement_kernel.models.organization import Company, User, UserRole
from procurement_kernel.models.request import Request
from procurement_kernel.selectors.authorization_scope import AuthorizationScope
from procurement_kernel.selectors.base import BaseSelector


class RequestSelector(BaseSelector):
    """Read-side queries over requests and approvals."""

    def __init__(self, session, policy: ApprovalChainPolicy = DEFAULT_CHAIN_POLICY):
        super().__init__(session)
        self._policy = policy
        self._scope = AuthorizationScope(session, policy)

    def get(self, principal: Principal, request_id: UUID) -> RequestRecord:
        """
        Load one request the principal may see.

        Raises:
            RequestNotAccessibleError: missing or outside scope.
        """
        request = self.session.execute(
            select(Request).where(
                Request.id == request_id,
                self._scope.visible_requests(principal),
            )
        ).scalar_one_or_none()
        if request is None:
            raise RequestNotAccessibleError(str(request_id))
        return request.to_dto()

    def get_by_number(self, principal: Principal, request_number: str) -> RequestRecord:
        request = self.session.execute(
            select(Request).where(
                Request.request_number == request_number,
                self._scope.visible_requests(principal),
            )
        ).scalar_one_or_none()
        if request is None:
            raise RequestNotAccessibleError(request_number)
        return request.to_dto()

    def list_visible(
        self,
        principal: Principal,
        status: RequestStatus | None = None,
        limit: int | None = None,
    ) -> list[RequestRecord]:
        """Visible requests, newest number first."""
        stmt = select(Request).where(self._scope.visible_requests(principal))
        if status is not None:
            stmt = stmt.where(Request.status == RequestStatus(status).value)
        stmt = stmt.order_by(Request.request_date.desc(), Request.request_number.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        return [r.to_dto() for r in self.session.execute(stmt).scalars()]

    def pending_for_approver(self, principal: Principal) -> list[RequestRecord]:
        """Requests on which the principal can act right now."""
        rows = self.session.execute(
            select(Request, Approval.role, User.company_id, User.department_id)
            .join(Approval, Approval.request_id == Request.id)
            .join(User, User.id == Approval.user_id)
            .join(UserRole, and_(UserRole.user_id == User.id, UserRole.role == Approval.role))
            .where(
                Approval.user_id == principal.user_id,
                Approval.status == ApprovalStatus.PENDING.value,
                User.is_active.is_(True),
                Request.status.in_([s.value for s in AWAITING_APPROVAL_STATUSES]),
            )
            .order_by(Request.request_number)
        ).all()
        chains = self._chains_by_company()
        actionable: dict[UUID, RequestRecord] = {}
        for request, role, company_id, department_id in rows:
            role = Role(role)
            chain = chains.get(request.company_id, self._policy.default_chain)
            if next_role(RequestStatus(request.status), chain) != role:
                continue
            if covers(role, company_id, department_id, request.company_id, request.department_id):
                actionable[request.id] = request.to_dto()
        return list(actionable.values())

    def stuck_workflows(self) -> list[StuckWorkflow]:
        """
        Active requests whose next role has no eligible pending approver.

        A pending Approval only counts while its user is active, still
        holds the role and the role's scope still covers the request.
        Such requests can never advance on their own.  Not scoped to a
        principal; meant for administrators and monitoring.
        """
        live_roles: dict[UUID, set[Role]] = {}
        for request_id, role, *placement in self.session.execute(
            select(
                Approval.request_id,
                Approval.role,
                User.company_id,
                User.department_id,
                Request.company_id,
                Request.department_id,
            )
            .join(User, User.id == Approval.user_id)
            .join(UserRole, and_(UserRole.user_id == User.id, UserRole.role == Approval.role))
            .join(Request, Request.id == Approval.request_id)
            .where(
                Approval.status == ApprovalStatus.PENDING.value,
                User.is_active.is_(True),
            )
        ):
            if covers(Role(role), *placement):
                live_roles.setdefault(request_id, set()).add(Role(role))

        chains = self._chains_by_company()
        stuck: list[StuckWorkflow] = []
        requests = self.session.execute(
            select(Request.id, Request.request_number, Request.status, Request.company_id)
            .where(Request.status.in_([s.value for s in AWAITING_APPROVAL_STATUSES]))
            .order_by(Request.request_number)
        ).all()
        for request_id, number, status, company_id in requests:
            chain = chains.get(company_id, self._policy.default_chain)
            role = next_role(RequestStatus(status), chain)
            if role is None:
                continue
            if role not in live_roles.get(request_id, set()):
                stuck.append(StuckWorkflow(
                    request_id=request_id,
                    request_number=number,
                    status=RequestStatus(status),
                    waiting_on=role,
                ))
        return stuck

    def status_counts(self, principal: Principal) -> dict[RequestStatus, int]:
        """Visible requests per status; every status present, zero-filled."""
        counts = {status: 0 for status in RequestStatus}
        rows = self.session.execute(
            select(Request.status, func.count(Request.id))
            .where(self._scope.visible_requests(principal))
            .group_by(Request.status)
        ).all()
        for status, count in rows:
            counts[RequestStatus(status)] = count
        return counts

    def pending_approval_counts(self) -> dict[Role, int]:
        """Requests currently waiting on each approver role."""
        chains = self._chains_by_company()
        counter: Counter[Role] = Counter({role: 0 for role in CANONICAL_APPROVER_ORDER})
        for status, company_id in self.session.execute(
            select(Request.status, Request.company_id).where(
                Request.status.in_([s.value for s in AWAITING_APPROVAL_STATUSES])
            )
        ):
            chain = chains.get(company_id, self._policy.default_chain)
            role = next_role(RequestStatus(status), chain)
            if role is not None:
                counter[role] += 1
        return dict(counter)

    def history(self, principal: Principal, request_id: UUID) -> list[ActivityRecord]:
        """Activity trail of a visible request, oldest first."""
        if not self._scope.can_access(principal, request_id):
            raise RequestNotAccessibleError(str(request_id))
        rows = self.session.execute(
            select(RequestActivity)
            .where(RequestActivity.request_id == request_id)
            .order_by(RequestActivity.seq)
        ).scalars()
        return [row.to_dto() for row in rows]

    def _chains_by_company(self) -> dict[UUID, tuple[Role, ...]]:
        return {
            company_id: self._policy.roles_for(code)
            for company_id, code in self.session.execute(select(Company.id, Company.code))
        }
