"""Capability wrapper around a platform virtual machine."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ..core.config import Settings, settings
from ..core.errors import CpiError
from ..core.interfaces import PlatformClient, PropertyReader
from ..core.platform_specs import (
    DestroyVmTask,
    DeviceChange,
    DeviceKind,
    PowerOffVmTask,
    PowerOnVmTask,
    VirtualDevice,
)

logger = logging.getLogger(__name__)

VM_TYPE = "VirtualMachine"
POWERED_ON = "poweredOn"

# Unit numbers a controller can hand out; 7 is reserved for the SCSI controller itself.
_UNIT_NUMBERS = range(16)
_SCSI_RESERVED_UNIT = 7


class VmResource:
    """A VM object together with the operations the provisioner needs."""

    def __init__(
        self,
        cid: str,
        mob: Any,
        client: PlatformClient,
        property_reader: PropertyReader,
        config: Optional[Settings] = None,
    ) -> None:
        self.cid = cid
        self.mob = mob
        self._client = client
        self._property_reader = property_reader
        self._settings = config or settings

    def __repr__(self) -> str:
        return f"<VM {self.cid}>"

    @property
    def devices(self) -> List[VirtualDevice]:
        return list(
            self._property_reader.get_property(
                self.mob, VM_TYPE, "config.hardware.device", ensure_all=True
            )
            or []
        )

    @property
    def system_disk(self) -> VirtualDevice:
        for device in self.devices:
            if device.kind == DeviceKind.DISK:
                return device
        raise CpiError(f"VM {self.cid} has no system disk")

    @property
    def pci_controller(self) -> VirtualDevice:
        for device in self.devices:
            if device.kind == DeviceKind.PCI_CONTROLLER:
                return device
        raise CpiError(f"VM {self.cid} has no PCI controller")

    @property
    def nics(self) -> List[VirtualDevice]:
        return [device for device in self.devices if device.kind == DeviceKind.ETHERNET]

    @property
    def instance_uuid(self) -> str:
        return self._property_reader.get_property(
            self.mob, VM_TYPE, "config.instanceUuid", ensure_all=True
        )

    @property
    def power_state(self) -> Optional[str]:
        return self._property_reader.get_property(
            self.mob, VM_TYPE, "runtime.powerState", ensure_all=True
        )

    def fix_device_unit_numbers(self, device_changes: List[DeviceChange]) -> None:
        """Assign free controller unit numbers to added devices that lack one."""
        devices = self.devices
        scsi_controllers = {
            device.key for device in devices if device.kind == DeviceKind.SCSI_CONTROLLER
        }
        available: Dict[int, List[int]] = {}

        def free_units(controller_key: int) -> List[int]:
            if controller_key not in available:
                available[controller_key] = [
                    unit
                    for unit in _UNIT_NUMBERS
                    if not (controller_key in scsi_controllers and unit == _SCSI_RESERVED_UNIT)
                ]
            return available[controller_key]

        for device in devices:
            if device.controller_key is not None and device.unit_number is not None:
                units = free_units(device.controller_key)
                if device.unit_number in units:
                    units.remove(device.unit_number)

        for change in device_changes:
            device = change.device
            if device.controller_key is None or device.unit_number is not None:
                continue
            units = free_units(device.controller_key)
            if not units:
                raise CpiError(
                    f"No available unit numbers on controller {device.controller_key} "
                    f"for device '{device.label or device.kind.value}'"
                )
            device.unit_number = units.pop(0)

    def power_on(self) -> None:
        logger.info("Powering on VM %s", self.cid)
        self._run_task(PowerOnVmTask(vm=self.mob))

    def power_off(self) -> None:
        logger.info("Powering off VM %s", self.cid)
        self._run_task(PowerOffVmTask(vm=self.mob))

    def delete(self) -> None:
        """Power off the VM if needed and destroy it with its files."""
        if self.power_state == POWERED_ON:
            self.power_off()
        logger.info("Deleting VM %s", self.cid)
        self._run_task(DestroyVmTask(vm=self.mob))

    def _run_task(self, spec: Any) -> Any:
        task = self._client.submit_task(spec)
        return self._client.await_task(task, timeout=self._settings.task_timeout_seconds)
