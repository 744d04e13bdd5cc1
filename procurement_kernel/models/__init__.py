"""Domain models for the procurement kernel."""

from procurement_kernel.models.activity import ActivityAction, RequestActivity
from procurement_kernel.models.approval import Approval
from procurement_kernel.models.counter import RequestNumberCounter
from procurement_kernel.models.organization import (
    Company,
    Department,
    User,
    UserRole,
)
from procurement_kernel.models.request import Request, RequestItem

__all__ = [
    "Company",
    "Department",
    "User",
    "UserRole",
    "Request",
    "RequestItem",
    "Approval",
    "RequestNumberCounter",
    "RequestActivity",
    "ActivityAction",
]
