"""Descriptors exchanged with the virtualization platform transport.

The provisioning core never talks to the platform wire protocol directly. It
builds the descriptors defined here and hands them to a ``PlatformClient``
(see ``interfaces.py``), which is responsible for translating them into real
API calls:

- Device descriptors: ``VirtualDevice`` and ``DeviceChange``
- VM configuration: ``VmConfigSpec``
- Task specifications: one dataclass per platform task the core submits
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class DeviceKind(str, Enum):
    """Kind of a virtual hardware device."""
    DISK = "disk"
    ETHERNET = "ethernet"
    PCI_CONTROLLER = "pci_controller"
    SCSI_CONTROLLER = "scsi_controller"
    CDROM = "cdrom"
    OTHER = "other"


class DeviceOperation(str, Enum):
    """Operation applied to a device in a reconfiguration."""
    ADD = "add"
    REMOVE = "remove"
    EDIT = "edit"


class FileOperation(str, Enum):
    """Backing file operation accompanying a device change."""
    CREATE = "create"
    DESTROY = "destroy"


class DiskMode(str, Enum):
    """Virtual disk persistence mode."""
    PERSISTENT = "persistent"
    INDEPENDENT_PERSISTENT = "independent_persistent"


class RuleOperation(str, Enum):
    """Operation applied to a cluster rule."""
    ADD = "add"
    EDIT = "edit"
    REMOVE = "remove"


@dataclass
class VirtualDevice:
    """A virtual hardware device as seen in a VM's device inventory.

    ``backing`` holds kind-specific data: ``file_name``/``disk_mode``/
    ``thin_provisioned`` for disks, ``network_name`` or ``switch_uuid``/
    ``port_key``/``portgroup_key`` for NICs.
    """

    kind: DeviceKind
    key: int
    controller_key: Optional[int] = None
    unit_number: Optional[int] = None
    label: str = ""
    backing: Dict[str, Any] = field(default_factory=dict)
    capacity_mb: Optional[int] = None
    mac_address: Optional[str] = None
    start_connected: bool = False


@dataclass
class DeviceChange:
    """A single add/remove entry of a device change set."""

    operation: DeviceOperation
    device: VirtualDevice
    file_operation: Optional[FileOperation] = None


@dataclass
class VmConfigSpec:
    """Hardware configuration applied while cloning or reconfiguring a VM."""

    memory_mb: Optional[int] = None
    num_cpus: Optional[int] = None
    device_change: List[DeviceChange] = field(default_factory=list)
    extra_config: Dict[str, str] = field(default_factory=dict)


@dataclass
class AntiAffinityRule:
    """Cluster rule keeping its member VMs on separate hosts."""

    name: str
    vms: List[Any] = field(default_factory=list)
    key: Optional[int] = None
    enabled: bool = True


@dataclass
class ClusterRuleChange:
    """A rule entry of a cluster reconfiguration."""

    operation: RuleOperation
    rule: AntiAffinityRule


# ---------------------------------------------------------------------------
# Task specifications
# ---------------------------------------------------------------------------


@dataclass
class CloneVmTask:
    """Clone ``source`` into a new VM, optionally as a linked clone."""

    source: Any
    name: str
    folder: Any
    resource_pool: Any
    datastore: Any = None
    linked: bool = False
    snapshot: Any = None
    config: Optional[VmConfigSpec] = None


@dataclass
class ReconfigureVmTask:
    vm: Any
    config: VmConfigSpec


@dataclass
class PowerOnVmTask:
    vm: Any


@dataclass
class PowerOffVmTask:
    vm: Any


@dataclass
class DestroyVmTask:
    vm: Any


@dataclass
class CreateSnapshotTask:
    vm: Any
    name: str
    description: Optional[str] = None
    memory: bool = False
    quiesce: bool = False


@dataclass
class ReconfigureClusterTask:
    cluster: Any
    rules: List[ClusterRuleChange] = field(default_factory=list)


@dataclass
class CreateCustomFieldTask:
    """Define a custom attribute; fails with ``DuplicateName`` if it exists."""

    name: str
    managed_type: Optional[str] = None


@dataclass
class RemoveCustomFieldTask:
    name: str


@dataclass
class SetCustomValueTask:
    entity: Any
    key: str
    value: str


__all__ = [
    "DeviceKind",
    "DeviceOperation",
    "FileOperation",
    "DiskMode",
    "RuleOperation",
    "VirtualDevice",
    "DeviceChange",
    "VmConfigSpec",
    "AntiAffinityRule",
    "ClusterRuleChange",
    "CloneVmTask",
    "ReconfigureVmTask",
    "PowerOnVmTask",
    "PowerOffVmTask",
    "DestroyVmTask",
    "CreateSnapshotTask",
    "ReconfigureClusterTask",
    "CreateCustomFieldTask",
    "RemoveCustomFieldTask",
    "SetCustomValueTask",
]
