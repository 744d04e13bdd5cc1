"""
Configuration Loader (``procurement_config.loader``).

Responsibility
--------------
Loads a YAML configuration set and parses it into the frozen
``procurement_config.schema`` dataclasses.  The single runtime entry
point is ``procurement_config.get_active_config()``; this module is the
tooling underneath it.

Invariants enforced
-------------------
* Required keys (``config_id``, ``version``) raise ``KeyError`` when
  missing; there are no silent defaults for them.
* ``compute_checksum`` is deterministic: identical mappings always hash
  to the same value regardless of key order.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Wrong value types  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from procurement_config.schema import (
    ApprovalChainDef,
    ChainOverrideDef,
    DatabaseDef,
    ProcurementConfig,
    RequestNumberDef,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _role_list(value: Any, where: str) -> tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"{where} must be a list of role names, got {value!r}")
    return tuple(str(role).strip().lower() for role in value)


def parse_approval_chain(data: dict[str, Any]) -> ApprovalChainDef:
    """Parse the ``approval_chain`` section."""
    default = _role_list(
        data.get("default", list(ApprovalChainDef.default)), "approval_chain.default",
    )
    overrides = []
    for i, item in enumerate(data.get("overrides") or ()):
        overrides.append(ChainOverrideDef(
            company_code=str(item["company_code"]).strip().upper(),
            roles=_role_list(item["roles"], f"approval_chain.overrides[{i}].roles"),
        ))
    return ApprovalChainDef(default=default, overrides=tuple(overrides))


def parse_config(data: dict[str, Any]) -> ProcurementConfig:
    """
    Parse a configuration mapping into a ``ProcurementConfig``.

    The checksum is computed over ``data`` as given.

    Raises:
        KeyError: ``config_id`` or ``version`` missing.
        ValueError: a value has the wrong type.
    """
    number = data.get("request_number") or {}
    database = data.get("database") or {}
    lock_timeout = database.get("lock_timeout_ms")
    try:
        return ProcurementConfig(
            config_id=str(data["config_id"]),
            version=int(data["version"]),
            description=str(data.get("description", "")),
            approval_chain=parse_approval_chain(data.get("approval_chain") or {}),
            request_number=RequestNumberDef(
                max_sequence=int(number.get("max_sequence", RequestNumberDef.max_sequence)),
            ),
            database=DatabaseDef(
                lock_timeout_ms=int(lock_timeout) if lock_timeout is not None else None,
                busy_timeout_seconds=float(
                    database.get("busy_timeout_seconds", DatabaseDef.busy_timeout_seconds)
                ),
            ),
            checksum=compute_checksum(data),
        )
    except TypeError as exc:
        raise ValueError(f"Malformed configuration: {exc}") from exc


def load_config_file(path: Path) -> ProcurementConfig:
    """Load and parse one configuration file.  Does not validate."""
    return parse_config(load_yaml_file(path))


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Postconditions:
        - Returns a hex-encoded SHA-256 hash string.
        - Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
