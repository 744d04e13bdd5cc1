"""
Request lifecycle state machine (``procurement_kernel.domain.request_lifecycle``).

Responsibility
--------------
Single source of truth for request statuses, the actions that move a
request between them, and which statuses each action may start from.
Services consult these tables; nothing else decides legality.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Lifecycle::

    draft -> submitted -> section_approved -> scm_approved -> completed
                 |               |                  |
                 +---------------+------------------+--> rejected
                 +---------------+------------------+--> revision_requested -> submitted
    draft / submitted / section_approved / scm_approved --> cancelled

Invariants enforced
-------------------
* ``REQUEST_TRANSITIONS`` defines the only valid status changes.
  ``rejected``, ``cancelled`` and ``completed`` have no outgoing edges.
* ``ACTION_SOURCES`` defines the statuses each action may start from.
* Approval only ever advances a request forward along the chain; shorter
  configured chains may skip intermediate statuses.
"""

from __future__ import annotations

from enum import Enum

from procurement_kernel.domain.roles import Role


class RequestStatus(str, Enum):
    """Request lifecycle states."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    SECTION_APPROVED = "section_approved"
    SCM_APPROVED = "scm_approved"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    REVISION_REQUESTED = "revision_requested"


class RequestAction(str, Enum):
    """Operations that act on a request."""

    EDIT = "edit"
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    CANCEL = "cancel"
    REQUEST_REVISION = "request_revision"
    RESUBMIT = "resubmit"
    DELETE = "delete"


REQUEST_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.DRAFT: frozenset({
        RequestStatus.SUBMITTED,
        RequestStatus.CANCELLED,
    }),
    RequestStatus.SUBMITTED: frozenset({
        RequestStatus.SECTION_APPROVED,
        RequestStatus.SCM_APPROVED,
        RequestStatus.COMPLETED,
        RequestStatus.REJECTED,
        RequestStatus.CANCELLED,
        RequestStatus.REVISION_REQUESTED,
    }),
    RequestStatus.SECTION_APPROVED: frozenset({
        RequestStatus.SCM_APPROVED,
        RequestStatus.COMPLETED,
        RequestStatus.REJECTED,
        RequestStatus.CANCELLED,
        RequestStatus.REVISION_REQUESTED,
    }),
    RequestStatus.SCM_APPROVED: frozenset({
        RequestStatus.COMPLETED,
        RequestStatus.REJECTED,
        RequestStatus.CANCELLED,
        RequestStatus.REVISION_REQUESTED,
    }),
    RequestStatus.REVISION_REQUESTED: frozenset({
        RequestStatus.SUBMITTED,
    }),
    RequestStatus.COMPLETED: frozenset(),
    RequestStatus.REJECTED: frozenset(),
    RequestStatus.CANCELLED: frozenset(),
}

TERMINAL_REQUEST_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.COMPLETED,
    RequestStatus.REJECTED,
    RequestStatus.CANCELLED,
})

# Statuses in which some approver role is expected to act.
AWAITING_APPROVAL_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.SUBMITTED,
    RequestStatus.SECTION_APPROVED,
    RequestStatus.SCM_APPROVED,
})

EDITABLE_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.DRAFT,
    RequestStatus.REVISION_REQUESTED,
})

ACTION_SOURCES: dict[RequestAction, frozenset[RequestStatus]] = {
    RequestAction.EDIT: EDITABLE_STATUSES,
    RequestAction.SUBMIT: frozenset({RequestStatus.DRAFT}),
    RequestAction.APPROVE: AWAITING_APPROVAL_STATUSES,
    RequestAction.REJECT: AWAITING_APPROVAL_STATUSES,
    RequestAction.REQUEST_REVISION: AWAITING_APPROVAL_STATUSES,
    RequestAction.CANCEL: AWAITING_APPROVAL_STATUSES | {RequestStatus.DRAFT},
    RequestAction.RESUBMIT: frozenset({RequestStatus.REVISION_REQUESTED}),
    RequestAction.DELETE: frozenset({RequestStatus.DRAFT, RequestStatus.REJECTED}),
}

# The approver role whose approval produced each in-flight status
# (None: nobody has approved yet).
LAST_APPROVED_ROLE: dict[RequestStatus, Role | None] = {
    RequestStatus.SUBMITTED: None,
    RequestStatus.SECTION_APPROVED: Role.SECTION_HEAD,
    RequestStatus.SCM_APPROVED: Role.SCM_HEAD,
}

# Status reached when a role approves and another role follows it.  PJO is
# last in canonical order, so its approval always completes the request.
APPROVED_STATUS_FOR_ROLE: dict[Role, RequestStatus] = {
    Role.SECTION_HEAD: RequestStatus.SECTION_APPROVED,
    Role.SCM_HEAD: RequestStatus.SCM_APPROVED,
}

STATUS_BADGES: dict[RequestStatus, str] = {
    RequestStatus.DRAFT: "secondary",
    RequestStatus.SUBMITTED: "warning",
    RequestStatus.SECTION_APPROVED: "info",
    RequestStatus.SCM_APPROVED: "primary",
    RequestStatus.COMPLETED: "success",
    RequestStatus.REJECTED: "danger",
    RequestStatus.CANCELLED: "gray",
    RequestStatus.REVISION_REQUESTED: "warning",
}


def is_action_allowed(status: RequestStatus, action: RequestAction) -> bool:
    """True if ``action`` may start from ``status``."""
    return status in ACTION_SOURCES[action]


def is_valid_transition(from_status: RequestStatus, to_status: RequestStatus) -> bool:
    """True if the lifecycle permits moving from ``from_status`` to ``to_status``."""
    return to_status in REQUEST_TRANSITIONS[from_status]
