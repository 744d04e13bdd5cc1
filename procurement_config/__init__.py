"""
procurement_config -- single public entrypoint for workflow configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``, which returns a validated, frozen
    ``ProcurementConfig``.

Architecture position:
    Configuration.  Sits above ``procurement_kernel``; the kernel MUST
    NEVER import from ``procurement_config``.  ``bridges`` translates the
    configuration into kernel inputs.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``ValueError`` -- parse or validation failures.

Every successful ``get_active_config()`` call emits a
``PROCUREMENT_CONFIG_TRACE`` log entry with the config_id, version and
checksum, tying workflow behaviour to the configuration that governed it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from procurement_config.loader import load_config_file
from procurement_config.schema import ProcurementConfig
from procurement_config.validator import validate_config

_logger = logging.getLogger("procurement_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(path: Path | str | None = None) -> ProcurementConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: Configuration file.  Defaults to the packaged
            ``sets/default.yaml``.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If parsing or validation fails.
    """
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    config = load_config_file(config_path)

    validation = validate_config(config)
    if not validation.is_valid:
        raise ValueError(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in validation.errors)
        )
    for warning in validation.warnings:
        _logger.warning("procurement_config_warning", extra={"detail": warning})

    _logger.info(
        "PROCUREMENT_CONFIG_TRACE",
        extra={
            "trace_type": "PROCUREMENT_CONFIG_TRACE",
            "config_set_id": config.config_id,
            "config_set_version": config.version,
            "checksum": config.checksum,
            "override_count": len(config.approval_chain.overrides),
            "source": str(config_path),
        },
    )
    return config


__all__ = ["DEFAULT_CONFIG_PATH", "ProcurementConfig", "get_active_config"]
