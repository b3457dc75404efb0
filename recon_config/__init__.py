"""
recon_config -- single public entrypoint for reconciliation configuration.

Responsibility:
    Provides the runtime way to obtain configuration through
    ``get_active_config()``.  Configuration sets live as YAML documents
    under ``recon_config/sets/<name>/reconciliation.yaml``.

Architecture position:
    Configuration layer.  Sits above ``recon_kernel`` and ``recon_engines``
    and below ``recon_services``.  The kernel never imports this package.

Invariants enforced:
    - The returned configuration has passed domain construction and
      cross-object validation.
    - A set whose tenant_id equals the requested tenant beats a wildcard
      (``"*"``) set; among equals the highest version wins.

Failure modes:
    - ``FileNotFoundError`` -- no set applies to the tenant.
    - ``ConfigValidationError`` -- validation errors in the chosen set.

Audit relevance:
    Every successful call emits a ``RECON_CONFIG_TRACE`` log entry with
    the config_id, version, checksum and object counts.
"""

from __future__ import annotations

from pathlib import Path

from recon_config.loader import load_config_file
from recon_config.schema import ReconciliationConfig, ThresholdSettings
from recon_config.validator import ConfigValidationResult, validate_configuration
from recon_kernel.exceptions import ConfigValidationError
from recon_kernel.logging_config import get_logger

__all__ = [
    "ConfigValidationResult",
    "ReconciliationConfig",
    "ThresholdSettings",
    "get_active_config",
    "validate_configuration",
]

_logger = get_logger("config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"
_CONFIG_FILE = "reconciliation.yaml"


def get_active_config(
    tenant_id: str,
    config_dir: Path | None = None,
) -> ReconciliationConfig:
    """Load, validate and return the configuration governing ``tenant_id``.

    Args:
        tenant_id: Tenant identifier used for scope matching.
        config_dir: Override path to the configuration sets directory.
            Defaults to recon_config/sets/.

    Raises:
        FileNotFoundError: If no configuration set applies.
        ConfigValidationError: If the chosen set fails validation.
    """
    sets_dir = config_dir or _DEFAULT_CONFIG_DIR
    config = _find_matching_config(sets_dir, tenant_id)

    validation = validate_configuration(config)
    if not validation.is_valid:
        raise ConfigValidationError(config.config_id, validation.errors)
    for warning in validation.warnings:
        _logger.warning("config_validation_warning", extra={
            "config_set_id": config.config_id,
            "warning": warning,
        })

    _logger.info(
        "RECON_CONFIG_TRACE",
        extra={
            "trace_type": "RECON_CONFIG_TRACE",
            "config_set_id": config.config_id,
            "config_set_version": config.version,
            "checksum": config.checksum,
            "scope_tenant": config.tenant_id,
            "requested_tenant": tenant_id,
            "matching_rule_count": len(config.matching_rules),
            "policy_count": len(config.approval_policies),
        },
    )
    return config


def _find_matching_config(sets_dir: Path, tenant_id: str) -> ReconciliationConfig:
    if not sets_dir.is_dir():
        raise FileNotFoundError(f"Configuration sets directory not found: {sets_dir}")

    exact: list[ReconciliationConfig] = []
    wildcard: list[ReconciliationConfig] = []
    for subdir in sorted(sets_dir.iterdir()):
        config_file = subdir / _CONFIG_FILE
        if not subdir.is_dir() or not config_file.exists():
            continue
        config = load_config_file(config_file)
        if config.tenant_id == tenant_id:
            exact.append(config)
        elif config.tenant_id == "*":
            wildcard.append(config)

    candidates = exact or wildcard
    if not candidates:
        raise FileNotFoundError(
            f"No configuration set found for tenant_id='{tenant_id}' in {sets_dir}"
        )
    return max(candidates, key=lambda c: c.version)
