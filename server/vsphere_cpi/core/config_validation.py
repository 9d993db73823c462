"""Configuration validation utilities."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .config import (
    Settings,
    settings,
    set_config_validation_result,
    get_config_validation_result,
)


@dataclass
class ConfigIssue:
    """Represents a single configuration issue."""

    message: str
    hint: Optional[str] = None


@dataclass
class ConfigValidationResult:
    """Outcome of running configuration checks."""

    checked_at: datetime
    errors: List[ConfigIssue] = field(default_factory=list)
    warnings: List[ConfigIssue] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)


def _warn(result: ConfigValidationResult, message: str, hint: Optional[str] = None) -> None:
    result.warnings.append(ConfigIssue(message=message, hint=hint))


def _error(result: ConfigValidationResult, message: str, hint: Optional[str] = None) -> None:
    result.errors.append(ConfigIssue(message=message, hint=hint))


def run_config_checks(
    force: bool = False, config: Optional[Settings] = None
) -> ConfigValidationResult:
    """Validate configuration combinations and cache the result."""

    if not force and config is None:
        cached = get_config_validation_result()
        if cached is not None:
            return cached

    config = config or settings
    result = ConfigValidationResult(checked_at=datetime.utcnow())

    if config.inventory_path:
        if not Path(config.inventory_path).is_file():
            _error(
                result,
                f"INVENTORY_PATH points to a missing file: {config.inventory_path}",
                "Provide a YAML or JSON cluster inventory or unset INVENTORY_PATH.",
            )
    else:
        if not config.datacenter_name.strip():
            _error(
                result,
                "DATACENTER_NAME is required when no inventory file is configured.",
                "Set DATACENTER_NAME or point INVENTORY_PATH at an inventory file.",
            )
        if not config.get_clusters_list():
            _warn(
                result,
                "No clusters configured (CLUSTERS).",
                "Set CLUSTERS to a comma-separated list so VMs can be placed "
                "without explicit cloud properties.",
            )

    if config.memory_headroom_mb < 0:
        _error(result, "MEMORY_HEADROOM_MB must not be negative.")
    if config.disk_headroom_mb < 0:
        _error(result, "DISK_HEADROOM_MB must not be negative.")

    if config.task_timeout_seconds <= 0:
        _error(
            result,
            "TASK_TIMEOUT_SECONDS must be positive.",
            "Clone tasks need a bounded wait; 900 seconds is the default.",
        )

    if config.create_vm_concurrency < 1:
        _error(result, "CREATE_VM_CONCURRENCY must be at least 1.")

    if config.drs_lock_poll_interval_seconds <= 0:
        _error(result, "DRS_LOCK_POLL_INTERVAL_SECONDS must be positive.")
    elif config.drs_lock_timeout_seconds < config.drs_lock_poll_interval_seconds:
        _warn(
            result,
            "DRS_LOCK_TIMEOUT_SECONDS is shorter than the poll interval.",
            "The DRS lock will be attempted only once before giving up.",
        )

    if not config.vm_name_prefix:
        _warn(
            result,
            "VM_NAME_PREFIX is empty.",
            "Prefixed names make CPI-created VMs easy to tell apart in the inventory.",
        )

    if not config.agent_mbus_url:
        _warn(
            result,
            "AGENT_MBUS_URL is not configured; agents will not know where to connect.",
            "Set AGENT_MBUS_URL to the message bus URL handed to every agent.",
        )

    if config is settings:
        set_config_validation_result(result)
    return result
