"""
ProcurementConfig schema.

Frozen dataclasses the YAML configuration set is parsed into.  The loader
builds them, the validator checks them, and the bridges turn them into
kernel inputs.  No behaviour lives here.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ChainOverrideDef:
    """A company whose requests follow a chain other than the default."""

    company_code: str
    roles: tuple[str, ...]


@dataclass(frozen=True)
class ApprovalChainDef:
    default: tuple[str, ...] = ("section_head", "scm_head", "pjo")
    overrides: tuple[ChainOverrideDef, ...] = ()


@dataclass(frozen=True)
class RequestNumberDef:
    max_sequence: int = 9999


@dataclass(frozen=True)
class DatabaseDef:
    # Postgres lock_timeout for request number allocation; None waits forever.
    lock_timeout_ms: int | None = None
    busy_timeout_seconds: float = 30.0


@dataclass(frozen=True)
class ProcurementConfig:
    """
    The runtime configuration artifact.

    ``checksum`` is the SHA-256 of the canonical JSON of the source
    mapping, so two configs with equal checksums were parsed from
    identical content.
    """

    config_id: str
    version: int
    approval_chain: ApprovalChainDef = field(default_factory=ApprovalChainDef)
    request_number: RequestNumberDef = field(default_factory=RequestNumberDef)
    database: DatabaseDef = field(default_factory=DatabaseDef)
    description: str = ""
    checksum: str = ""
