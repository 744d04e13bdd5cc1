"""
Approval chain domain types (``procurement_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the sequential approval chain.  Defines the
approval record lifecycle, the configurable chain policy (which approver
roles a company's requests need, in which order), and the pure functions
that map a request status onto the next acting role.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  May import
only from ``domain/roles`` and ``domain/request_lifecycle``.

Invariants enforced
-------------------
* ``APPROVAL_TRANSITIONS`` defines the only valid approval status
  changes.  Resolved approvals only return to ``pending`` through a
  resubmission reset; ``rejected`` is final because its request is.
* Every chain is a non-empty, duplicate-free, ordered subsequence of
  ``CANONICAL_APPROVER_ORDER``.
* ``next_role`` is a pure function of (status, chain).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from procurement_kernel.domain.request_lifecycle import (
    APPROVED_STATUS_FOR_ROLE,
    LAST_APPROVED_ROLE,
    RequestStatus,
)
from procurement_kernel.domain.roles import APPROVER_ROLES, CANONICAL_APPROVER_ORDER, Role


# =========================================================================
# Approval Status Lifecycle
# =========================================================================


class ApprovalStatus(str, Enum):
    """Approval record lifecycle states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    REVISION_REQUESTED = "revision_requested"


APPROVAL_TRANSITIONS: dict[ApprovalStatus, frozenset[ApprovalStatus]] = {
    ApprovalStatus.PENDING: frozenset({
        ApprovalStatus.APPROVED,
        ApprovalStatus.REJECTED,
        ApprovalStatus.CANCELLED,
        ApprovalStatus.REVISION_REQUESTED,
    }),
    # Resubmission restarts the whole chain.
    ApprovalStatus.APPROVED: frozenset({ApprovalStatus.PENDING}),
    ApprovalStatus.CANCELLED: frozenset({ApprovalStatus.PENDING}),
    ApprovalStatus.REVISION_REQUESTED: frozenset({ApprovalStatus.PENDING}),
    ApprovalStatus.REJECTED: frozenset(),
}


def is_valid_approval_transition(from_status, to_status) -> bool:
    """True if an Approval may move from ``from_status`` to ``to_status``."""
    return ApprovalStatus(to_status) in APPROVAL_TRANSITIONS[ApprovalStatus(from_status)]


# Statuses a resubmission reset may return to pending.
RESETTABLE_STATUSES: frozenset[ApprovalStatus] = frozenset(
    status for status, targets in APPROVAL_TRANSITIONS.items()
    if ApprovalStatus.PENDING in targets
)


# =========================================================================
# Chain functions
# =========================================================================


def validate_chain(roles) -> tuple[Role, ...]:
    """Coerce and validate an approval chain.

    Raises:
        ValueError: if the chain is empty, repeats a role, names a
            non-approver role, or is out of canonical order.
    """
    chain = tuple(Role(r) for r in roles)
    if not chain:
        raise ValueError("Approval chain must contain at least one role")
    if len(set(chain)) != len(chain):
        raise ValueError(f"Approval chain repeats a role: {[r.value for r in chain]}")
    for role in chain:
        if role not in APPROVER_ROLES:
            raise ValueError(f"Role '{role.value}' cannot take part in approvals")
    positions = [CANONICAL_APPROVER_ORDER.index(r) for r in chain]
    if positions != sorted(positions):
        raise ValueError(
            "Approval chain must follow the order "
            f"{[r.value for r in CANONICAL_APPROVER_ORDER]}, "
            f"got {[r.value for r in chain]}"
        )
    return chain


def next_role(status: RequestStatus, chain: tuple[Role, ...]) -> Role | None:
    """Role expected to act on a request in ``status``, or None.

    None for draft, revision_requested and every terminal status.
    """
    if status not in LAST_APPROVED_ROLE:
        return None
    last = LAST_APPROVED_ROLE[status]
    if last is None:
        return chain[0]
    if last not in chain:
        return None
    idx = chain.index(last) + 1
    return chain[idx] if idx < len(chain) else None


def status_after(role: Role, chain: tuple[Role, ...]) -> RequestStatus:
    """Request status reached once ``role`` approves."""
    if chain[-1] == role:
        return RequestStatus.COMPLETED
    return APPROVED_STATUS_FOR_ROLE[role]


def acting_status(role: Role, chain: tuple[Role, ...]) -> RequestStatus | None:
    """Request status at which ``role`` acts in ``chain`` (None if absent)."""
    if role not in chain:
        return None
    idx = chain.index(role)
    if idx == 0:
        return RequestStatus.SUBMITTED
    return APPROVED_STATUS_FOR_ROLE[chain[idx - 1]]


# =========================================================================
# Chain policy
# =========================================================================


@dataclass(frozen=True)
class ApprovalChainPolicy:
    """Which approver roles each company's requests require.

    ``company_overrides`` maps a company code onto a shorter chain (for
    example a region without a project officer).  Companies without an
    override use ``default_chain``.
    """

    default_chain: tuple[Role, ...] = CANONICAL_APPROVER_ORDER
    company_overrides: tuple[tuple[str, tuple[Role, ...]], ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "default_chain", validate_chain(self.default_chain))
        normalized = []
        seen: set[str] = set()
        for company_code, roles in self.company_overrides:
            code = company_code.upper()
            if code in seen:
                raise ValueError(f"Duplicate chain override for company {code}")
            seen.add(code)
            normalized.append((code, validate_chain(roles)))
        object.__setattr__(self, "company_overrides", tuple(normalized))

    def roles_for(self, company_code: str) -> tuple[Role, ...]:
        for code, chain in self.company_overrides:
            if code == company_code.upper():
                return chain
        return self.default_chain

    @property
    def override_codes(self) -> frozenset[str]:
        return frozenset(code for code, _ in self.company_overrides)


DEFAULT_CHAIN_POLICY = ApprovalChainPolicy()
