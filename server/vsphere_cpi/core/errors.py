"""Exceptions raised by the provisioning core."""
from __future__ import annotations

from typing import Any, List, Optional


class CpiError(RuntimeError):
    """Base exception for provisioning failures."""


class ConfigurationError(CpiError):
    """Raised when the CPI configuration cannot be used."""


class StemcellNotFound(CpiError):
    """Raised when the requested stemcell template does not exist."""

    def __init__(self, stemcell_id: str):
        super().__init__(f"Could not find stemcell: {stemcell_id}")
        self.stemcell_id = stemcell_id


class NoFeasiblePlacement(CpiError):
    """Raised when no cluster/datastore pair satisfies the resource demand."""

    def __init__(self, required_memory_mb: int, required_disk_mb: int, message: Optional[str] = None):
        super().__init__(
            message
            or (
                "No available resources: need "
                f"{required_memory_mb} MB of memory and {required_disk_mb} MB of disk"
            )
        )
        self.required_memory_mb = required_memory_mb
        self.required_disk_mb = required_disk_mb


class TooManyAffinityRules(CpiError):
    """Raised when more than one DRS rule is declared for a resource pool."""

    def __init__(self, rule_names: List[str]):
        super().__init__(
            "vSphere CPI supports only one DRS rule per resource pool, got: "
            + ", ".join(rule_names)
        )
        self.rule_names = rule_names


class UnsupportedAffinityRuleKind(CpiError):
    """Raised when a DRS rule of a type other than separate_vms is declared."""

    def __init__(self, rule_name: str, rule_type: Any):
        super().__init__(
            "vSphere CPI only supports DRS rule of 'separate_vms' type, "
            f"not '{rule_type}' (rule '{rule_name}')"
        )
        self.rule_name = rule_name
        self.rule_type = rule_type


class PlatformTaskFailure(CpiError):
    """Raised when a platform task or call fails.

    ``fault`` carries the platform fault name (for example ``DuplicateName``)
    when the transport reports one.
    """

    def __init__(self, task: str, message: str, fault: Optional[str] = None):
        super().__init__(message)
        self.task = task
        self.fault = fault
        self.message = message


class ProvisioningCancelled(CpiError):
    """Raised inside a running provisioning workflow once its caller cancelled it."""

    def __init__(self, step: str):
        super().__init__(f"Provisioning cancelled before {step}")
        self.step = step


class DrsLockTimeout(CpiError):
    """Raised when the cluster-wide DRS lock cannot be acquired in time."""

    def __init__(self, timeout_seconds: float):
        super().__init__(f"Failed to acquire DRS lock within {timeout_seconds:g} seconds")
        self.timeout_seconds = timeout_seconds


__all__ = [
    "CpiError",
    "ConfigurationError",
    "StemcellNotFound",
    "NoFeasiblePlacement",
    "TooManyAffinityRules",
    "UnsupportedAffinityRuleKind",
    "PlatformTaskFailure",
    "ProvisioningCancelled",
    "DrsLockTimeout",
]
