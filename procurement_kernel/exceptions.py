"""
Typed Exception Hierarchy for the Procurement Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (UI, CLI, API layers) map kernel failures to user-facing messages.
Matching on message strings is fragile, so:
  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        workflow.approve(principal, request_id, comments="ok")
    except AlreadyResolvedError as e:
        # Another approver won the race -- safe to refresh and retry
        return conflict(code=e.code, role=e.role)
    except ValidationError as e:
        return bad_request(code=e.code)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from ProcurementKernelError:

    ProcurementKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidTransitionError
    |   +-- EmptyRequestError
    |   +-- ReasonRequiredError
    |   +-- RequestNotEditableError
    |   +-- InvalidItemError
    |   +-- MissingOrganizationScopeError
    |
    +-- AuthorizationError
    |   +-- RequestNotAccessibleError
    |   +-- NotRequestOwnerError
    |   +-- NotAssignedApproverError
    |
    +-- ConcurrencyError
    |   +-- AlreadyResolvedError
    |
    +-- AllocationError
    |
    +-- OrganizationError
    |   +-- CompanyNotFoundError
    |   +-- DepartmentNotFoundError
    |   +-- UserNotFoundError
    |   +-- DuplicateCodeError
    |   +-- InvalidCodeError
    |   +-- SectionHeadAssignmentError
    |
    +-- ImmutabilityViolationError
    |
    +-- StuckWorkflowError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | INVALID_TRANSITION          | Action not legal from current status
                | EMPTY_REQUEST               | Submit/resubmit with zero items
                | REASON_REQUIRED             | Cancel/reject/revision without reason
                | REQUEST_NOT_EDITABLE        | Edit outside draft/revision_requested
                | INVALID_ITEM                | Bad quantity/description/item number
                | MISSING_ORGANIZATION_SCOPE  | Requester has no company/department
----------------|-----------------------------|-----------------------------------------
Authorization   | REQUEST_NOT_ACCESSIBLE      | Missing OR out-of-scope (same error)
                | NOT_REQUEST_OWNER           | Owner-only action by someone else
                | NOT_ASSIGNED_APPROVER       | No pending Approval at current role
----------------|-----------------------------|-----------------------------------------
Concurrency     | ALREADY_RESOLVED            | Lost a first-approver-wins race
----------------|-----------------------------|-----------------------------------------
Allocation      | ALLOCATION_ERROR            | Sequence exhausted / lock contention
----------------|-----------------------------|-----------------------------------------
Organization    | COMPANY_NOT_FOUND           | Company id/code doesn't exist
                | DEPARTMENT_NOT_FOUND        | Department id doesn't exist
                | USER_NOT_FOUND              | User id doesn't exist
                | DUPLICATE_CODE              | Code already used in its scope
                | INVALID_CODE                | Code not upper-case alphanumeric
                | SECTION_HEAD_ASSIGNMENT     | User can't head that department
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Request number rewritten
----------------|-----------------------------|-----------------------------------------
Monitoring      | STUCK_WORKFLOW              | Next role has no eligible approver

===============================================================================
HANDLING PATTERNS
===============================================================================

1. RETRYABLE CONFLICTS carry ``retryable = True``:

    except ProcurementKernelError as e:
        if getattr(e, "retryable", False):
            schedule_retry()

2. NO EXISTENCE LEAKS: RequestNotAccessibleError is raised identically for
   a request that does not exist and for one outside the principal's scope.

3. STUCK WORKFLOWS are reported by RequestSelector.stuck_workflows(); the
   workflow operations themselves never raise StuckWorkflowError.
"""


class ProcurementKernelError(Exception):
    """
    Base exception for all procurement kernel errors.

    All subclasses must have a `code` class attribute for
    machine-readable error identification.
    """

    code: str = "PROCUREMENT_KERNEL_ERROR"
    retryable: bool = False


# Validation-related exceptions


class ValidationError(ProcurementKernelError):
    """Guard violation. No state change was applied."""

    code: str = "VALIDATION_ERROR"


class InvalidTransitionError(ValidationError):
    """The requested action is not legal from the request's current status."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, request_id: str, current_status: str, action: str):
        self.request_id = request_id
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"Cannot {action} request {request_id} in status '{current_status}'"
        )


class EmptyRequestError(ValidationError):
    """A request must carry at least one item to be submitted."""

    code: str = "EMPTY_REQUEST"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Request {request_id} has no items and cannot be submitted")


class ReasonRequiredError(ValidationError):
    """Cancellation, rejection and revision requests need a non-empty reason."""

    code: str = "REASON_REQUIRED"

    def __init__(self, action: str):
        self.action = action
        super().__init__(f"A non-empty reason is required to {action}")


class RequestNotEditableError(ValidationError):
    """Items and notes may only change while draft or revision_requested."""

    code: str = "REQUEST_NOT_EDITABLE"

    def __init__(self, request_id: str, current_status: str):
        self.request_id = request_id
        self.current_status = current_status
        super().__init__(
            f"Request {request_id} is not editable in status '{current_status}'"
        )


class InvalidItemError(ValidationError):
    """Line item data failed validation."""

    code: str = "INVALID_ITEM"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid item {field}: {reason}")


class MissingOrganizationScopeError(ValidationError):
    """Requester must belong to a company and a department."""

    code: str = "MISSING_ORGANIZATION_SCOPE"

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(
            f"User {user_id} must belong to a company and department to create requests"
        )


# Authorization-related exceptions


class AuthorizationError(ProcurementKernelError):
    """Actor lacks permission for the action. No state change was applied."""

    code: str = "AUTHORIZATION_ERROR"


class RequestNotAccessibleError(AuthorizationError):
    """
    Request does not exist or lies outside the principal's scope.

    Both cases produce the same error so callers cannot probe for the
    existence of records they are not allowed to see.
    """

    code: str = "REQUEST_NOT_ACCESSIBLE"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Request {request_id} is not accessible")


class NotRequestOwnerError(AuthorizationError):
    """Only the request owner may perform this action."""

    code: str = "NOT_REQUEST_OWNER"

    def __init__(self, request_id: str, actor_id: str, action: str):
        self.request_id = request_id
        self.actor_id = actor_id
        self.action = action
        super().__init__(
            f"Only the owner of request {request_id} may {action}"
        )


class NotAssignedApproverError(AuthorizationError):
    """Actor holds no pending Approval at the request's current role, or no
    longer holds that role in the request's scope."""

    code: str = "NOT_ASSIGNED_APPROVER"

    def __init__(self, request_id: str, actor_id: str, role: str | None):
        self.request_id = request_id
        self.actor_id = actor_id
        self.role = role
        super().__init__(
            f"User {actor_id} holds no pending {role or 'approval'} "
            f"approval on request {request_id}"
        )


# Concurrency-related exceptions


class ConcurrencyError(ProcurementKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"
    retryable: bool = True


class AlreadyResolvedError(ConcurrencyError):
    """
    The approval (or the request's status) was resolved by a concurrent actor.

    Raised to the loser of a first-approver-wins race. Retryable: a fresh
    read shows the winner's outcome.
    """

    code: str = "ALREADY_RESOLVED"

    def __init__(self, request_id: str, role: str | None, current_status: str):
        self.request_id = request_id
        self.role = role
        self.current_status = current_status
        super().__init__(
            f"Approval for request {request_id} (role={role}) was already "
            f"resolved; request is now '{current_status}'"
        )


# Allocation-related exceptions


class AllocationError(ProcurementKernelError):
    """
    Request number could not be allocated.

    ``retryable`` is True for lock contention and collisions, False for
    sequence exhaustion within a period.
    """

    code: str = "ALLOCATION_ERROR"

    def __init__(self, prefix: str, reason: str, retryable: bool = False):
        self.prefix = prefix
        self.reason = reason
        self.retryable = retryable
        super().__init__(f"Cannot allocate request number for {prefix}: {reason}")


# Organization-related exceptions


class OrganizationError(ProcurementKernelError):
    """Base exception for company/department/user administration errors."""

    code: str = "ORGANIZATION_ERROR"


class CompanyNotFoundError(OrganizationError):
    code: str = "COMPANY_NOT_FOUND"

    def __init__(self, company_ref: str):
        self.company_ref = company_ref
        super().__init__(f"Company not found: {company_ref}")


class DepartmentNotFoundError(OrganizationError):
    code: str = "DEPARTMENT_NOT_FOUND"

    def __init__(self, department_ref: str):
        self.department_ref = department_ref
        super().__init__(f"Department not found: {department_ref}")


class UserNotFoundError(OrganizationError):
    code: str = "USER_NOT_FOUND"

    def __init__(self, user_ref: str):
        self.user_ref = user_ref
        super().__init__(f"User not found: {user_ref}")


class DuplicateCodeError(OrganizationError):
    """Company codes are globally unique; department codes per company."""

    code: str = "DUPLICATE_CODE"

    def __init__(self, entity_type: str, code_value: str):
        self.entity_type = entity_type
        self.code_value = code_value
        super().__init__(f"{entity_type} code already exists: {code_value}")


class InvalidCodeError(OrganizationError):
    """Codes are upper-case alphanumerics; company codes may contain dashes."""

    code: str = "INVALID_CODE"

    def __init__(self, entity_type: str, code_value: str):
        self.entity_type = entity_type
        self.code_value = code_value
        super().__init__(f"Invalid {entity_type} code: {code_value!r}")


class SectionHeadAssignmentError(OrganizationError):
    code: str = "SECTION_HEAD_ASSIGNMENT"

    def __init__(self, department_id: str, user_id: str, reason: str):
        self.department_id = department_id
        self.user_id = user_id
        self.reason = reason
        super().__init__(
            f"Cannot assign user {user_id} as section head of "
            f"department {department_id}: {reason}"
        )


# Immutability-related exceptions


class ImmutabilityViolationError(ProcurementKernelError):
    """Attempted to rewrite a write-once field (e.g. a request number)."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Monitoring


class StuckWorkflowError(ProcurementKernelError):
    """
    One or more active requests wait on a role with no eligible approver.

    Detection only: workflow operations never raise this. It is produced
    from RequestSelector.stuck_workflows() by monitoring callers.
    """

    code: str = "STUCK_WORKFLOW"

    def __init__(self, request_numbers: list[str]):
        self.request_numbers = request_numbers
        super().__init__(
            f"{len(request_numbers)} request(s) stalled without an eligible "
            f"approver: {', '.join(request_numbers)}"
        )
