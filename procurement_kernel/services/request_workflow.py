"""
RequestWorkflowService -- the request state machine.

Responsibility:
    Owns every mutation of a request: creation and editing while
    editable, submission, approval, rejection, cancellation, revision
    requests, resubmission and deletion.  Each operation checks access,
    ownership or approver assignment, legality in the lifecycle table and
    its own guards, then applies the change.

Architecture position:
    Kernel > Services.  Composes RequestNumberAllocator,
    ApprovalChainService, ActivityRecorder, AuthorizationScope and a
    SignatureStamp.  The only writer of ``requests.status``.

Invariants enforced:
    - Only transitions in ``REQUEST_TRANSITIONS`` are applied, and only
      from the statuses listed in ``ACTION_SOURCES``.
    - Status changes are compare-and-set (``UPDATE ... WHERE status =
      <read status>``).  Of two concurrent actors exactly one moves the
      request; the other gets AlreadyResolvedError (approvers) or
      ConcurrencyError (owner actions).
    - A request outside the principal's scope is reported exactly like a
      missing one (RequestNotAccessibleError).
    - All-or-nothing: operations flush only; the caller's transaction
      commits or rolls back the whole operation, including the activity
      entry and the signature reference.

Failure modes:
    - ValidationError subclasses for guard violations.
    - AuthorizationError subclasses for access, ownership and assignment.
    - AlreadyResolvedError / ConcurrencyError for lost races.
    - AllocationError from request creation.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from contextlib import contextmanager
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from procurement_kernel.domain.approval import (
    DEFAULT_CHAIN_POLICY,
    ApprovalChainPolicy,
    ApprovalStatus,
    next_role,
    status_after,
)
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.dtos import ItemSpec, RequestItemRecord, RequestRecord
from procurement_kernel.domain.request_lifecycle import (
    ACTION_SOURCES,
    AWAITING_APPROVAL_STATUSES,
    EDITABLE_STATUSES,
    RequestAction,
    RequestStatus,
    is_valid_transition,
)
from procurement_kernel.domain.request_number import MAX_SEQUENCE
from procurement_kernel.domain.roles import Principal, Role
from procurement_kernel.domain.signature import HashSignatureStamp, SignatureStamp
from procurement_kernel.exceptions import (
    AllocationError,
    AlreadyResolvedError,
    ConcurrencyError,
    EmptyRequestError,
    InvalidItemError,
    InvalidTransitionError,
    MissingOrganizationScopeError,
    NotAssignedApproverError,
    NotRequestOwnerError,
    ReasonRequiredError,
    RequestNotAccessibleError,
    RequestNotEditableError,
)
from procurement_kernel.logging_config import LogContext, get_logger
from procurement_kernel.models.activity import ActivityAction, RequestActivity
from procurement_kernel.models.approval import Approval
from procurement_kernel.models.request import Request, RequestItem
from procurement_kernel.selectors.authorization_scope import AuthorizationScope
from procurement_kernel.services.activity_recorder import ActivityRecorder
from procurement_kernel.services.approval_chain import ApprovalChainService
from procurement_kernel.services.base import BaseService
from procurement_kernel.services.request_number_allocator import RequestNumberAllocator

logger = get_logger("services.request_workflow")


def _coerce_item(item: ItemSpec | Mapping) -> ItemSpec:
    if isinstance(item, ItemSpec):
        return item
    return ItemSpec(**item)


def _require_reason(reason: str | None, action: str) -> str:
    if reason is None or not reason.strip():
        raise ReasonRequiredError(action)
    return reason.strip()


class RequestWorkflowService(BaseService):
    """
    Request lifecycle operations.

    Contract:
        Every public method takes the acting ``Principal`` explicitly and
        returns a frozen DTO.  Nothing is committed here.

    Usage:
        with session_scope() as session:
            workflow = RequestWorkflowService(session, clock=clock)
            record = workflow.create_request(principal, [ItemSpec("Paper", 5)])
            workflow.submit(principal, record.id)
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: ApprovalChainPolicy = DEFAULT_CHAIN_POLICY,
        signature_stamp: SignatureStamp | None = None,
        max_sequence: int = MAX_SEQUENCE,
        lock_timeout_ms: int | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._chain = ApprovalChainService(session, policy)
        self._scope = AuthorizationScope(session, policy)
        self._allocator = RequestNumberAllocator(
            session,
            clock=self._clock,
            max_sequence=max_sequence,
            lock_timeout_ms=lock_timeout_ms,
        )
        self._activity = ActivityRecorder(session, clock=self._clock)
        self._stamp = signature_stamp or HashSignatureStamp()

    # ------------------------------------------------------------------
    # Creation and editing (owner, while editable)
    # ------------------------------------------------------------------

    def create_request(
        self,
        principal: Principal,
        items: Iterable[ItemSpec | Mapping] = (),
        notes: str | None = None,
    ) -> RequestRecord:
        """
        Create a draft request owned by ``principal`` with a fresh number.

        Raises:
            MissingOrganizationScopeError: principal lacks company/department.
            InvalidItemError: an item failed validation.
            AllocationError: no number could be allocated.
        """
        if principal.company_id is None or principal.department_id is None:
            raise MissingOrganizationScopeError(str(principal.user_id))
        specs = [_coerce_item(item) for item in items]

        with LogContext.bind(actor_id=str(principal.user_id)):
            number = self._allocator.allocate(principal.company_id, principal.department_id)
            LogContext.set(request_number=number.value)
            request = Request(
                request_number=number.value,
                request_date=self._clock.now_utc().date(),
                company_id=principal.company_id,
                department_id=principal.department_id,
                user_id=principal.user_id,
                status=RequestStatus.DRAFT.value,
                notes=notes,
            )
            for item_number, spec in enumerate(specs, start=1):
                request.items.append(self._build_item(spec, item_number))
            self.session.add(request)
            try:
                self.session.flush()
            except IntegrityError as exc:
                raise AllocationError(
                    number.prefix,
                    f"request number {number.value} collided with an existing request",
                    retryable=True,
                ) from exc

            self._activity.record(
                request.id,
                principal.user_id,
                ActivityAction.CREATED,
                to_status=RequestStatus.DRAFT.value,
                payload={"item_count": len(specs)},
            )
            logger.info(
                "request_created",
                extra={
                    "request_id": str(request.id),
                    "request_number": number.value,
                    "item_count": len(specs),
                },
            )
            return self._record(request.id)

    def add_item(
        self,
        principal: Principal,
        request_id: UUID,
        item: ItemSpec | Mapping,
    ) -> RequestItemRecord:
        spec = _coerce_item(item)
        with self._bound(principal, request_id):
            request = self._load_editable(principal, request_id)
            model = self._build_item(spec, len(request.items) + 1)
            request.items.append(model)
            self.session.flush()
            self._activity.record(
                request.id, principal.user_id, ActivityAction.ITEM_ADDED,
                payload={"item_number": model.item_number},
            )
            return model.to_dto()

    def update_item(
        self,
        principal: Principal,
        request_id: UUID,
        item_number: int,
        item: ItemSpec | Mapping,
    ) -> RequestItemRecord:
        spec = _coerce_item(item)
        with self._bound(principal, request_id):
            request = self._load_editable(principal, request_id)
            model = self._find_item(request, item_number)
            model.description = spec.description
            model.specification = spec.specification
            model.quantity = spec.quantity
            model.unit_of_measurement = spec.unit_of_measurement
            model.remarks = spec.remarks
            self.session.flush()
            self._activity.record(
                request.id, principal.user_id, ActivityAction.ITEM_UPDATED,
                payload={"item_number": item_number},
            )
            return model.to_dto()

    def remove_item(
        self,
        principal: Principal,
        request_id: UUID,
        item_number: int,
    ) -> RequestRecord:
        """Remove an item; later items shift down to keep numbering 1..n."""
        with self._bound(principal, request_id):
            request = self._load_editable(principal, request_id)
            model = self._find_item(request, item_number)
            request.items.remove(model)
            self.session.flush()
            # Ascending, one flush each: the slot below is always free.
            for later in sorted(request.items, key=lambda i: i.item_number):
                if later.item_number > item_number:
                    later.item_number -= 1
                    self.session.flush()
            self._activity.record(
                request.id, principal.user_id, ActivityAction.ITEM_REMOVED,
                payload={"item_number": item_number},
            )
            return self._record(request.id)

    def update_notes(
        self,
        principal: Principal,
        request_id: UUID,
        notes: str | None,
    ) -> RequestRecord:
        with self._bound(principal, request_id):
            request = self._load_editable(principal, request_id)
            request.notes = notes
            self.session.flush()
            self._activity.record(request.id, principal.user_id, ActivityAction.NOTES_UPDATED)
            return self._record(request.id)

    # ------------------------------------------------------------------
    # Owner transitions
    # ------------------------------------------------------------------

    def submit(self, principal: Principal, request_id: UUID) -> RequestRecord:
        """
        draft -> submitted; fans out pending approvals for the chain.

        Raises:
            NotRequestOwnerError, InvalidTransitionError, EmptyRequestError.
        """
        with self._bound(principal, request_id):
            request = self._load_for_action(principal, request_id)
            self._require_owner(principal, request, RequestAction.SUBMIT)
            current = self._require_status(request, RequestAction.SUBMIT)
            if not request.items:
                raise EmptyRequestError(str(request_id))

            self._transition(request, current, RequestStatus.SUBMITTED)
            approvals = self._chain.create_approval_records(request)
            self._activity.record(
                request.id, principal.user_id, ActivityAction.SUBMITTED,
                from_status=current.value,
                to_status=RequestStatus.SUBMITTED.value,
                payload={"approval_count": len(approvals)},
            )
            logger.info(
                "request_submitted",
                extra={
                    "request_id": str(request.id),
                    "approval_count": len(approvals),
                },
            )
            return self._record(request.id)

    def cancel(
        self,
        principal: Principal,
        request_id: UUID,
        reason: str | None,
    ) -> RequestRecord:
        """
        Owner cancels a draft or in-flight request; pending approvals die.

        Raises:
            NotRequestOwnerError, ReasonRequiredError, InvalidTransitionError.
        """
        with self._bound(principal, request_id):
            request = self._load_for_action(principal, request_id)
            self._require_owner(principal, request, RequestAction.CANCEL)
            reason = _require_reason(reason, "cancel")
            current = self._require_status(request, RequestAction.CANCEL)

            self._transition(
                request,
                current,
                RequestStatus.CANCELLED,
                cancellation_reason=reason,
                cancelled_at=self._clock.now_utc(),
            )
            cancelled = self._chain.cancel_pending(request.id)
            self._activity.record(
                request.id, principal.user_id, ActivityAction.CANCELLED,
                from_status=current.value,
                to_status=RequestStatus.CANCELLED.value,
                comment=reason,
            )
            logger.info(
                "request_cancelled",
                extra={
                    "request_id": str(request.id),
                    "from_status": current.value,
                    "approvals_cancelled": cancelled,
                },
            )
            return self._record(request.id)

    def resubmit(self, principal: Principal, request_id: UUID) -> RequestRecord:
        """
        revision_requested -> submitted; the approval chain restarts.

        Raises:
            NotRequestOwnerError, InvalidTransitionError (not in
            revision_requested), EmptyRequestError.
        """
        with self._bound(principal, request_id):
            request = self._load_for_action(principal, request_id)
            self._require_owner(principal, request, RequestAction.RESUBMIT)
            current = self._require_status(request, RequestAction.RESUBMIT)
            if not request.items:
                raise EmptyRequestError(str(request_id))

            self._transition(request, current, RequestStatus.SUBMITTED)
            added = self._chain.reset_for_resubmission(request)
            self._activity.record(
                request.id, principal.user_id, ActivityAction.RESUBMITTED,
                from_status=current.value,
                to_status=RequestStatus.SUBMITTED.value,
                payload={"approvals_added": len(added)},
            )
            logger.info(
                "request_resubmitted",
                extra={"request_id": str(request.id), "approvals_added": len(added)},
            )
            return self._record(request.id)

    def delete_request(self, principal: Principal, request_id: UUID) -> None:
        """
        Physically delete a draft or rejected request with everything it owns.

        The request number is not handed out again: the allocation counter
        keeps its position.
        """
        with self._bound(principal, request_id):
            request = self._load_for_action(principal, request_id, lock=True)
            self._require_owner(principal, request, RequestAction.DELETE)
            current = self._require_status(request, RequestAction.DELETE)
            number = request.request_number

            self.session.execute(
                delete(RequestActivity)
                .where(RequestActivity.request_id == request.id)
                .execution_options(synchronize_session=False)
            )
            self.session.delete(request)
            self.session.flush()
            logger.info(
                "request_deleted",
                extra={
                    "request_id": str(request_id),
                    "request_number": number,
                    "from_status": current.value,
                },
            )

    # ------------------------------------------------------------------
    # Approver transitions
    # ------------------------------------------------------------------

    def approve(
        self,
        principal: Principal,
        request_id: UUID,
        comments: str | None = None,
        role: Role | None = None,
    ) -> RequestRecord:
        """
        Resolve the principal's pending Approval at the current role.

        First approver wins: sibling approvals of the role are cancelled
        and point at the winner.  The request advances to the role's
        approved status, or to ``completed`` after the last role.

        Args:
            role: Pin the role being approved.  Without it the role is
                inferred from the request status.

        Raises:
            RequestNotAccessibleError, InvalidTransitionError,
            NotAssignedApproverError, AlreadyResolvedError.
        """
        with self._bound(principal, request_id):
            request = self._load_for_action(principal, request_id)
            current, approval, acting_role, chain = self._resolve_actor_approval(
                principal, request, RequestAction.APPROVE, role,
            )
            new_status = status_after(acting_role, chain)
            now = self._clock.now_utc()

            self._transition(request, current, new_status, acting_role=acting_role)
            signature_ref = self._stamp.issue(approval.id, acting_role, now)
            self._claim(request, approval, ApprovalStatus.APPROVED, current,
                        comments=comments, approved_at=now, signature_ref=signature_ref)
            superseded = self._chain.supersede_siblings(approval)

            self._activity.record(
                request.id, principal.user_id, ActivityAction.APPROVED,
                from_status=current.value,
                to_status=new_status.value,
                comment=comments,
                payload={"role": acting_role.value, "signature_ref": signature_ref},
            )
            logger.info(
                "approval_granted",
                extra={
                    "request_id": str(request.id),
                    "role": acting_role.value,
                    "from_status": current.value,
                    "to_status": new_status.value,
                    "superseded": superseded,
                },
            )
            if new_status == RequestStatus.COMPLETED:
                logger.info("request_completed", extra={"request_id": str(request.id)})
            return self._record(request.id)

    def reject(
        self,
        principal: Principal,
        request_id: UUID,
        reason: str | None,
        role: Role | None = None,
    ) -> RequestRecord:
        """
        Reject at the current role; the chain stops and every remaining
        pending approval is cancelled.
        """
        with self._bound(principal, request_id):
            request = self._load_for_action(principal, request_id)
            reason = _require_reason(reason, "reject")
            current, approval, acting_role, _ = self._resolve_actor_approval(
                principal, request, RequestAction.REJECT, role,
            )

            self._transition(request, current, RequestStatus.REJECTED, acting_role=acting_role)
            self._claim(request, approval, ApprovalStatus.REJECTED, current, comments=reason)
            self._chain.supersede_siblings(approval)
            remaining = self._chain.cancel_pending(request.id)

            self._activity.record(
                request.id, principal.user_id, ActivityAction.REJECTED,
                from_status=current.value,
                to_status=RequestStatus.REJECTED.value,
                comment=reason,
                payload={"role": acting_role.value},
            )
            logger.info(
                "request_rejected",
                extra={
                    "request_id": str(request.id),
                    "role": acting_role.value,
                    "from_status": current.value,
                    "approvals_cancelled": remaining,
                },
            )
            return self._record(request.id)

    def request_revision(
        self,
        principal: Principal,
        request_id: UUID,
        reason: str | None,
        role: Role | None = None,
    ) -> RequestRecord:
        """
        Send the request back to its owner.  The reason is appended to the
        request notes; resubmission restarts the chain.
        """
        with self._bound(principal, request_id):
            request = self._load_for_action(principal, request_id)
            reason = _require_reason(reason, "request revision")
            current, approval, acting_role, _ = self._resolve_actor_approval(
                principal, request, RequestAction.REQUEST_REVISION, role,
            )
            note = f"[Revision requested by {acting_role.value}] {reason}"
            notes = f"{request.notes}\n{note}" if request.notes else note

            self._transition(
                request, current, RequestStatus.REVISION_REQUESTED,
                acting_role=acting_role, notes=notes,
            )
            self._claim(request, approval, ApprovalStatus.REVISION_REQUESTED, current,
                        comments=reason)
            self._chain.supersede_siblings(approval)

            self._activity.record(
                request.id, principal.user_id, ActivityAction.REVISION_REQUESTED,
                from_status=current.value,
                to_status=RequestStatus.REVISION_REQUESTED.value,
                comment=reason,
                payload={"role": acting_role.value},
            )
            logger.info(
                "revision_requested",
                extra={
                    "request_id": str(request.id),
                    "role": acting_role.value,
                    "from_status": current.value,
                },
            )
            return self._record(request.id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @contextmanager
    def _bound(self, principal: Principal, request_id: UUID):
        with LogContext.bind(actor_id=str(principal.user_id), request_id=str(request_id)):
            yield

    def _load_for_action(
        self,
        principal: Principal,
        request_id: UUID,
        lock: bool = False,
    ) -> Request:
        request = self.session.get(
            Request, request_id, populate_existing=True, with_for_update=lock or None,
        )
        if request is None or not self._scope.can_access(principal, request_id):
            raise RequestNotAccessibleError(str(request_id))
        LogContext.set(request_number=request.request_number)
        return request

    def _load_editable(self, principal: Principal, request_id: UUID) -> Request:
        request = self._load_for_action(principal, request_id, lock=True)
        self._require_owner(principal, request, RequestAction.EDIT)
        if RequestStatus(request.status) not in EDITABLE_STATUSES:
            raise RequestNotEditableError(str(request_id), request.status)
        return request

    @staticmethod
    def _require_owner(principal: Principal, request: Request, action: RequestAction) -> None:
        if request.user_id != principal.user_id:
            raise NotRequestOwnerError(str(request.id), str(principal.user_id), action.value)

    @staticmethod
    def _require_status(request: Request, action: RequestAction) -> RequestStatus:
        current = RequestStatus(request.status)
        if current not in ACTION_SOURCES[action]:
            raise InvalidTransitionError(str(request.id), current.value, action.value)
        return current

    def _resolve_actor_approval(
        self,
        principal: Principal,
        request: Request,
        action: RequestAction,
        role: Role | None,
    ) -> tuple[RequestStatus, Approval, Role, tuple[Role, ...]]:
        """Find the principal's pending Approval at the request's current role."""
        current = RequestStatus(request.status)
        if current not in AWAITING_APPROVAL_STATUSES:
            # A sibling's decision ended the chain under this approver.
            if self._chain.has_superseded_approval(request.id, principal.user_id):
                raise AlreadyResolvedError(
                    str(request.id), role.value if role else None, current.value,
                )
            raise InvalidTransitionError(str(request.id), current.value, action.value)

        chain = self._chain.required_roles(request)
        current_role = next_role(current, chain)
        if current_role is None:
            raise InvalidTransitionError(str(request.id), current.value, action.value)
        target_role = Role(role) if role is not None else current_role

        approval = self._chain.find(request.id, target_role, principal.user_id)
        if approval is None:
            if role is None and self._chain.has_superseded_approval(
                request.id, principal.user_id,
            ):
                raise AlreadyResolvedError(str(request.id), None, current.value)
            raise NotAssignedApproverError(
                str(request.id), str(principal.user_id), target_role.value,
            )
        if not (
            principal.within_scope(target_role, request.company_id, request.department_id)
            and self._chain.is_eligible(principal.user_id, target_role, request)
        ):
            raise NotAssignedApproverError(
                str(request.id), str(principal.user_id), target_role.value,
            )
        if approval.status != ApprovalStatus.PENDING.value:
            raise AlreadyResolvedError(str(request.id), target_role.value, current.value)
        if target_role != current_role:
            # Pending at a later role; the request has not reached it yet.
            raise InvalidTransitionError(str(request.id), current.value, action.value)
        return current, approval, target_role, chain

    def _transition(
        self,
        request: Request,
        from_status: RequestStatus,
        to_status: RequestStatus,
        acting_role: Role | None = None,
        **values,
    ) -> None:
        """Compare-and-set the request status."""
        if not is_valid_transition(from_status, to_status):
            raise InvalidTransitionError(str(request.id), from_status.value, to_status.value)
        result = self.session.execute(
            update(Request)
            .where(Request.id == request.id, Request.status == from_status.value)
            .values(status=to_status.value, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            observed = self.session.execute(
                select(Request.status).where(Request.id == request.id)
            ).scalar_one()
            logger.info(
                "request_transition_conflict",
                extra={
                    "request_id": str(request.id),
                    "expected_status": from_status.value,
                    "observed_status": observed,
                },
            )
            if acting_role is not None:
                raise AlreadyResolvedError(str(request.id), acting_role.value, observed)
            raise ConcurrencyError(
                f"Request {request.id} changed concurrently: expected "
                f"'{from_status.value}', found '{observed}'"
            )
        self.session.expire(request)

    def _claim(
        self,
        request: Request,
        approval: Approval,
        new_status: ApprovalStatus,
        request_status: RequestStatus,
        **values,
    ) -> None:
        if not self._chain.claim(approval.id, new_status, **values):
            raise AlreadyResolvedError(str(request.id), approval.role, request_status.value)

    @staticmethod
    def _find_item(request: Request, item_number: int) -> RequestItem:
        for item in request.items:
            if item.item_number == item_number:
                return item
        raise InvalidItemError("item_number", f"request has no item #{item_number}")

    @staticmethod
    def _build_item(spec: ItemSpec, item_number: int) -> RequestItem:
        return RequestItem(
            item_number=item_number,
            description=spec.description.strip(),
            specification=spec.specification,
            quantity=spec.quantity,
            unit_of_measurement=spec.unit_of_measurement.strip(),
            remarks=spec.remarks,
        )

    def _record(self, request_id: UUID) -> RequestRecord:
        self.session.flush()
        self.session.expire_all()
        return self.session.get(Request, request_id, populate_existing=True).to_dto()
