"""Selectors for the procurement kernel (read side)."""

from procurement_kernel.selectors.authorization_scope import AuthorizationScope
from procurement_kernel.selectors.identity_selector import IdentityContext
from procurement_kernel.selectors.organization_selector import (
    CompanyBreakdown,
    DepartmentSummary,
    OrganizationSelector,
    OrganizationStats,
)
from procurement_kernel.selectors.request_selector import RequestSelector

__all__ = [
    "AuthorizationScope",
    "CompanyBreakdown",
    "DepartmentSummary",
    "IdentityContext",
    "OrganizationSelector",
    "OrganizationStats",
    "RequestSelector",
]
