"""
Pure domain layer.

Value objects, enums and transition tables with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O (except SystemClock)
"""

from procurement_kernel.domain.approval import (
    APPROVAL_TRANSITIONS,
    DEFAULT_CHAIN_POLICY,
    ApprovalChainPolicy,
    ApprovalStatus,
    acting_status,
    is_valid_approval_transition,
    next_role,
    status_after,
    validate_chain,
)
from procurement_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from procurement_kernel.domain.dtos import (
    ActivityRecord,
    ApprovalRecord,
    ItemSpec,
    RequestItemRecord,
    RequestRecord,
    StuckWorkflow,
)
from procurement_kernel.domain.request_lifecycle import (
    ACTION_SOURCES,
    AWAITING_APPROVAL_STATUSES,
    EDITABLE_STATUSES,
    REQUEST_TRANSITIONS,
    STATUS_BADGES,
    TERMINAL_REQUEST_STATUSES,
    RequestAction,
    RequestStatus,
)
from procurement_kernel.domain.request_number import MAX_SEQUENCE, RequestNumber
from procurement_kernel.domain.roles import (
    APPROVER_ROLES,
    CANONICAL_APPROVER_ORDER,
    ROLE_SCOPES,
    Principal,
    Role,
    RoleScope,
)
from procurement_kernel.domain.signature import HashSignatureStamp, SignatureStamp

__all__ = [
    # Roles
    "Role",
    "RoleScope",
    "ROLE_SCOPES",
    "APPROVER_ROLES",
    "CANONICAL_APPROVER_ORDER",
    "Principal",
    # Lifecycle
    "RequestStatus",
    "RequestAction",
    "REQUEST_TRANSITIONS",
    "ACTION_SOURCES",
    "AWAITING_APPROVAL_STATUSES",
    "EDITABLE_STATUSES",
    "TERMINAL_REQUEST_STATUSES",
    "STATUS_BADGES",
    # Approval chain
    "ApprovalStatus",
    "is_valid_approval_transition",
    "APPROVAL_TRANSITIONS",
    "ApprovalChainPolicy",
    "DEFAULT_CHAIN_POLICY",
    "validate_chain",
    "next_role",
    "status_after",
    "acting_status",
    # Numbering
    "RequestNumber",
    "MAX_SEQUENCE",
    # DTOs
    "ItemSpec",
    "RequestItemRecord",
    "ApprovalRecord",
    "RequestRecord",
    "ActivityRecord",
    "StuckWorkflow",
    # Infrastructure
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "SignatureStamp",
    "HashSignatureStamp",
]
