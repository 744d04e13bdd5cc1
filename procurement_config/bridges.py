"""
Config -> Kernel Bridges.

Functions that convert a ProcurementConfig into kernel inputs.  These
live in procurement_config (the producer) because the kernel must NEVER
import procurement_config.

Usage:
    from procurement_config.bridges import build_chain_policy, build_workflow_settings

    config = get_active_config()
    workflow = RequestWorkflowService(session, **build_workflow_settings(config))
"""

from __future__ import annotations

from typing import Any

from procurement_config.schema import ProcurementConfig
from procurement_kernel.domain.approval import ApprovalChainPolicy


def build_chain_policy(config: ProcurementConfig) -> ApprovalChainPolicy:
    """Build the kernel ApprovalChainPolicy from the approval_chain section."""
    chains = config.approval_chain
    return ApprovalChainPolicy(
        default_chain=chains.default,
        company_overrides=tuple(
            (override.company_code, override.roles) for override in chains.overrides
        ),
    )


def build_allocator_settings(config: ProcurementConfig) -> int:
    """The allocator's sequence ceiling."""
    return config.request_number.max_sequence


def build_workflow_settings(config: ProcurementConfig) -> dict[str, Any]:
    """Keyword arguments for RequestWorkflowService."""
    return {
        "policy": build_chain_policy(config),
        "max_sequence": build_allocator_settings(config),
        "lock_timeout_ms": config.database.lock_timeout_ms,
    }
