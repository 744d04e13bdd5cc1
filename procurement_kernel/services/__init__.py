"""Services for the procurement kernel (write side)."""

from procurement_kernel.services.activity_recorder import ActivityRecorder
from procurement_kernel.services.approval_chain import ApprovalChainService
from procurement_kernel.services.organization_service import OrganizationService
from procurement_kernel.services.request_number_allocator import RequestNumberAllocator
from procurement_kernel.services.request_workflow import RequestWorkflowService

__all__ = [
    "ActivityRecorder",
    "ApprovalChainService",
    "OrganizationService",
    "RequestNumberAllocator",
    "RequestWorkflowService",
]
