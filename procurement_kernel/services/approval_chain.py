"""
ApprovalChainService -- approval record fan-out and resolution.

Responsibility:
    Determines a request's required approver roles from the configured
    chain policy, creates one pending Approval per eligible approver per
    role, and resolves approvals with compare-and-set updates so that
    exactly one approver per role wins.

Architecture position:
    Kernel > Services.  Called by RequestWorkflowService, and by
    OrganizationService to withdraw approvals.  Eligibility is read
    from ``ROLE_SCOPES``; there are no per-role special cases here.

Invariants enforced:
    - Fan-out: every eligible approver of a role receives a pending
      Approval; one approval per role advances the request.
    - First approver wins: ``claim`` only moves an Approval out of
      ``pending`` if it is still pending (``UPDATE ... WHERE
      status='pending'``), and ``supersede_siblings`` cancels every other
      pending Approval of that role in the same transaction.
    - Resubmission restarts the whole chain: every Approval of a still
      eligible approver is reset to pending, never resumed.
    - Approval authority is re-read from the stored user on every
      decision (``is_eligible``); a Principal built before a role was
      revoked grants nothing.

Failure modes:
    - A role with no eligible approver is logged
      (``approval_role_without_approver``) but does not fail creation;
      the request stalls and shows up in
      ``RequestSelector.stuck_workflows()``.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from procurement_kernel.domain.approval import (
    DEFAULT_CHAIN_POLICY,
    RESETTABLE_STATUSES,
    ApprovalChainPolicy,
    ApprovalStatus,
    is_valid_approval_transition,
    next_role,
)
from procurement_kernel.domain.request_lifecycle import RequestStatus
from procurement_kernel.domain.roles import ROLE_SCOPES, Role, covers
from procurement_kernel.logging_config import get_logger
from procurement_kernel.models.approval import Approval
from procurement_kernel.models.organization import Company, User, UserRole
from procurement_kernel.models.request import Request
from procurement_kernel.services.base import BaseService

logger = get_logger("services.approval_chain")


class ApprovalChainService(BaseService):
    """Creates, resolves and resets Approval rows.  Flushes, never commits."""

    def __init__(
        self,
        session: Session,
        policy: ApprovalChainPolicy = DEFAULT_CHAIN_POLICY,
    ):
        super().__init__(session)
        self._policy = policy

    @property
    def policy(self) -> ApprovalChainPolicy:
        return self._policy

    # ------------------------------------------------------------------
    # Chain shape
    # ------------------------------------------------------------------

    def required_roles(self, request: Request) -> tuple[Role, ...]:
        """Ordered approver roles for ``request``'s company."""
        company_code = self.session.execute(
            select(Company.code).where(Company.id == request.company_id)
        ).scalar_one()
        return self._policy.roles_for(company_code)

    def next_role(self, request: Request) -> Role | None:
        return next_role(RequestStatus(request.status), self.required_roles(request))

    def eligible_approvers(
        self,
        role: Role,
        company_id: UUID,
        department_id: UUID,
    ) -> list[User]:
        """Active users holding ``role`` whose scope covers the request."""
        scope = ROLE_SCOPES[role]
        stmt = (
            select(User)
            .join(UserRole, UserRole.user_id == User.id)
            .where(UserRole.role == role.value, User.is_active.is_(True))
        )
        if scope.company_scoped:
            stmt = stmt.where(User.company_id == company_id)
        if scope.department_scoped:
            stmt = stmt.where(User.department_id == department_id)
        return list(self.session.execute(stmt.order_by(User.employee_id)).scalars())

    def is_eligible(self, user_id: UUID, role: Role, request: Request) -> bool:
        """True if ``user_id`` may act as ``role`` on ``request`` right now.

        Reads the stored user, not a caller-held Principal, so a revoked
        role or a deactivation takes effect immediately.
        """
        row = self.session.execute(
            select(User.company_id, User.department_id)
            .join(UserRole, UserRole.user_id == User.id)
            .where(
                User.id == user_id,
                User.is_active.is_(True),
                UserRole.role == role.value,
            )
        ).first()
        if row is None:
            return False
        return covers(role, row.company_id, row.department_id,
                      request.company_id, request.department_id)

    # ------------------------------------------------------------------
    # Creation and reset
    # ------------------------------------------------------------------

    def create_approval_records(self, request: Request) -> list[Approval]:
        """
        Fan out one pending Approval per eligible approver per required role.

        Returns:
            The created Approval rows (may be empty for some roles).
        """
        created: list[Approval] = []
        existing = self._existing_keys(request.id)
        for role in self.required_roles(request):
            approvers = self.eligible_approvers(
                role, request.company_id, request.department_id,
            )
            if not approvers:
                logger.warning(
                    "approval_role_without_approver",
                    extra={
                        "request_id": str(request.id),
                        "request_number": request.request_number,
                        "role": role.value,
                    },
                )
                continue
            for user in approvers:
                if (role.value, user.id) in existing:
                    continue
                approval = Approval(
                    request_id=request.id,
                    user_id=user.id,
                    role=role.value,
                    status=ApprovalStatus.PENDING.value,
                )
                self.session.add(approval)
                created.append(approval)
        self.session.flush()
        logger.info(
            "approval_records_created",
            extra={
                "request_id": str(request.id),
                "count": len(created),
                "roles": [r.value for r in self.required_roles(request)],
            },
        )
        return created

    def reset_for_resubmission(self, request: Request) -> list[Approval]:
        """
        Restart the chain: reset every Approval to pending.

        Approvals for roles no longer in the chain, and approvals of users
        who are no longer eligible for their role (deactivated, role
        revoked, moved), are dropped.  Approvers who became eligible since
        the first submission are added.

        Returns:
            Newly created Approval rows.
        """
        chain = self.required_roles(request)
        result = self.session.execute(
            update(Approval)
            .where(
                Approval.request_id == request.id,
                Approval.status.in_([s.value for s in RESETTABLE_STATUSES]),
            )
            .values(
                status=ApprovalStatus.PENDING.value,
                comments=None,
                signature_ref=None,
                approved_at=None,
                superseded_by_id=None,
            )
            .execution_options(synchronize_session=False)
        )
        dropped = self.session.execute(
            delete(Approval)
            .where(
                Approval.request_id == request.id,
                Approval.role.not_in([r.value for r in chain]),
            )
            .execution_options(synchronize_session=False)
        ).rowcount
        for role in chain:
            eligible = [
                user.id for user in self.eligible_approvers(
                    role, request.company_id, request.department_id,
                )
            ]
            dropped += self.session.execute(
                delete(Approval)
                .where(
                    Approval.request_id == request.id,
                    Approval.role == role.value,
                    Approval.user_id.not_in(eligible),
                )
                .execution_options(synchronize_session=False)
            ).rowcount
        logger.debug(
            "approvals_reset",
            extra={
                "request_id": str(request.id),
                "count": result.rowcount,
                "dropped": dropped,
            },
        )
        self.session.expire(request, ["approvals"])
        return self.create_approval_records(request)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def find(self, request_id: UUID, role: Role, user_id: UUID) -> Approval | None:
        return self.session.execute(
            select(Approval)
            .where(
                Approval.request_id == request_id,
                Approval.role == role.value,
                Approval.user_id == user_id,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def has_superseded_approval(self, request_id: UUID, user_id: UUID) -> bool:
        """True if one of ``user_id``'s approvals lost to a sibling."""
        return self.session.execute(
            select(Approval.id).where(
                Approval.request_id == request_id,
                Approval.user_id == user_id,
                Approval.superseded_by_id.is_not(None),
            ).limit(1)
        ).first() is not None

    def claim(
        self,
        approval_id: UUID,
        new_status: ApprovalStatus,
        comments: str | None = None,
        approved_at: datetime | None = None,
        signature_ref: str | None = None,
    ) -> bool:
        """
        Move a pending Approval to ``new_status`` if it is still pending.

        Raises:
            ValueError: ``new_status`` is not reachable from pending.

        Returns:
            False if a concurrent actor resolved it first.
        """
        if not is_valid_approval_transition(ApprovalStatus.PENDING, new_status):
            raise ValueError(f"An approval cannot move from pending to {new_status}")
        values: dict = {"status": new_status.value, "comments": comments}
        if approved_at is not None:
            values["approved_at"] = approved_at
        if signature_ref is not None:
            values["signature_ref"] = signature_ref
        result = self.session.execute(
            update(Approval)
            .where(
                Approval.id == approval_id,
                Approval.status == ApprovalStatus.PENDING.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def supersede_siblings(self, winner: Approval) -> int:
        """Cancel the other pending Approvals of the winner's (request, role)."""
        result = self.session.execute(
            update(Approval)
            .where(
                Approval.request_id == winner.request_id,
                Approval.role == winner.role,
                Approval.id != winner.id,
                Approval.status == ApprovalStatus.PENDING.value,
            )
            .values(
                status=ApprovalStatus.CANCELLED.value,
                superseded_by_id=winner.id,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info(
                "approvals_superseded",
                extra={
                    "request_id": str(winner.request_id),
                    "role": winner.role,
                    "winner_id": str(winner.id),
                    "count": result.rowcount,
                },
            )
        return result.rowcount

    def cancel_pending(self, request_id: UUID) -> int:
        """Cancel every remaining pending Approval of a request."""
        result = self.session.execute(
            update(Approval)
            .where(
                Approval.request_id == request_id,
                Approval.status == ApprovalStatus.PENDING.value,
            )
            .values(status=ApprovalStatus.CANCELLED.value)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def cancel_for_user(self, user_id: UUID, roles: Iterable[Role] | None = None) -> int:
        """
        Cancel ``user_id``'s pending Approvals, optionally only for ``roles``.

        Called when a user loses approval authority.  Requests left with no
        pending Approval for their next role show up as stuck workflows.
        """
        role_values = None if roles is None else sorted(Role(r).value for r in roles)
        stmt = update(Approval).where(
            Approval.user_id == user_id,
            Approval.status == ApprovalStatus.PENDING.value,
        )
        if role_values is not None:
            stmt = stmt.where(Approval.role.in_(role_values))
        result = self.session.execute(
            stmt.values(status=ApprovalStatus.CANCELLED.value)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info(
                "approvals_withdrawn",
                extra={
                    "user_id": str(user_id),
                    "roles": role_values,
                    "count": result.rowcount,
                },
            )
        return result.rowcount

    # ------------------------------------------------------------------

    def _existing_keys(self, request_id: UUID) -> set[tuple[str, UUID]]:
        rows = self.session.execute(
            select(Approval.role, Approval.user_id).where(
                Approval.request_id == request_id
            )
        ).all()
        return {(role, user_id) for role, user_id in rows}
