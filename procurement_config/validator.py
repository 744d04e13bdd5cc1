"""
Configuration Validator (``procurement_config.validator``).

Validates a parsed ``ProcurementConfig`` before it is handed to the
kernel.  Chain rules are the kernel's own (``validate_chain``), so a
configuration that validates here always builds an ApprovalChainPolicy.

Invariants enforced
-------------------
* Every chain is non-empty, free of duplicates, made of approver roles
  and ordered as a subsequence of section_head -> scm_head -> pjo.
* Each company code has at most one override.
* ``request_number.max_sequence`` is within 1..9999.
* Timeouts are non-negative.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from procurement_config.schema import ProcurementConfig
from procurement_kernel.domain.approval import validate_chain
from procurement_kernel.domain.request_number import COMPANY_CODE_PATTERN, MAX_SEQUENCE


@dataclass
class ConfigValidationResult:
    """
    Result of configuration validation.

    ``is_valid`` is True only when ``errors`` is empty.  Warnings do not
    block use but should be reviewed.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_config(config: ProcurementConfig) -> ConfigValidationResult:
    """Validate a configuration.  A config with errors MUST NOT be used."""
    result = ConfigValidationResult()

    _validate_identity(config, result)
    _validate_chains(config, result)
    _validate_request_number(config, result)
    _validate_database(config, result)

    return result


def _validate_identity(config: ProcurementConfig, result: ConfigValidationResult) -> None:
    if not config.config_id.strip():
        result.add_error("config_id must not be empty")
    if config.version < 1:
        result.add_error(f"version must be >= 1, got {config.version}")


def _validate_chains(config: ProcurementConfig, result: ConfigValidationResult) -> None:
    chains = config.approval_chain
    try:
        default = validate_chain(chains.default)
    except ValueError as exc:
        result.add_error(f"approval_chain.default: {exc}")
        default = None

    seen: set[str] = set()
    for override in chains.overrides:
        where = f"approval_chain.overrides[{override.company_code}]"
        if not COMPANY_CODE_PATTERN.match(override.company_code):
            result.add_error(f"{where}: invalid company code")
        if override.company_code in seen:
            result.add_error(f"{where}: company has more than one override")
        seen.add(override.company_code)
        try:
            chain = validate_chain(override.roles)
        except ValueError as exc:
            result.add_error(f"{where}: {exc}")
            continue
        if default is not None and chain == default:
            result.add_warning(f"{where}: identical to the default chain")


def _validate_request_number(config: ProcurementConfig, result: ConfigValidationResult) -> None:
    max_sequence = config.request_number.max_sequence
    if not 1 <= max_sequence <= MAX_SEQUENCE:
        result.add_error(
            f"request_number.max_sequence must be in 1..{MAX_SEQUENCE}, got {max_sequence}"
        )


def _validate_database(config: ProcurementConfig, result: ConfigValidationResult) -> None:
    database = config.database
    if database.lock_timeout_ms is not None and database.lock_timeout_ms < 0:
        result.add_error("database.lock_timeout_ms must not be negative")
    if database.busy_timeout_seconds < 0:
        result.add_error("database.busy_timeout_seconds must not be negative")
