"""Tests for the VM capability wrapper."""
import pytest

from vsphere_cpi.core.errors import CpiError
from vsphere_cpi.core.platform_specs import (
    DestroyVmTask,
    DeviceChange,
    DeviceKind,
    DeviceOperation,
    PowerOffVmTask,
    PowerOnVmTask,
    VirtualDevice,
)
from vsphere_cpi.services.vm_resource import VmResource

from fakes import FakeMob


@pytest.fixture
def vm(world):
    return VmResource("sc-1", world.stemcell, world.client, world.reader, world.settings)


def _new_device(kind, controller_key):
    return DeviceChange(
        operation=DeviceOperation.ADD,
        device=VirtualDevice(kind=kind, key=-1, controller_key=controller_key),
    )


@pytest.mark.unit
class TestDevices:
    """Test device lookups on the VM inventory."""

    def test_device_lookups(self, vm):
        assert vm.system_disk.key == 2000
        assert vm.pci_controller.key == 100
        assert [nic.key for nic in vm.nics] == [4000]

    def test_missing_system_disk(self, world):
        bare = FakeMob("vm", "bare")
        world.reader.set(bare, "config.hardware.device", [])
        resource = VmResource("bare", bare, world.client, world.reader, world.settings)

        with pytest.raises(CpiError, match="no system disk"):
            resource.system_disk

    def test_fix_device_unit_numbers_skips_used_and_reserved_units(self, vm):
        disk = _new_device(DeviceKind.DISK, 1000)
        nic = _new_device(DeviceKind.ETHERNET, 100)

        vm.fix_device_unit_numbers([disk, nic])

        # Unit 0 holds the system disk
        assert disk.device.unit_number == 1
        assert nic.device.unit_number == 0

    def test_scsi_reserved_unit_is_never_assigned(self, vm):
        changes = [_new_device(DeviceKind.DISK, 1000) for _ in range(8)]

        vm.fix_device_unit_numbers(changes)

        units = [change.device.unit_number for change in changes]
        assert units == [1, 2, 3, 4, 5, 6, 8, 9]

    def test_existing_unit_numbers_are_kept(self, vm):
        change = _new_device(DeviceKind.DISK, 1000)
        change.device.unit_number = 5

        vm.fix_device_unit_numbers([change])

        assert change.device.unit_number == 5

    def test_controller_full(self, vm):
        changes = [_new_device(DeviceKind.DISK, 1000) for _ in range(15)]

        with pytest.raises(CpiError, match="No available unit numbers"):
            vm.fix_device_unit_numbers(changes)


@pytest.mark.unit
class TestPowerAndDelete:
    def test_power_on_uses_task_timeout(self, vm, world):
        vm.power_on()

        assert world.client.tasks_of(PowerOnVmTask) == [PowerOnVmTask(vm=world.stemcell)]
        assert world.client.timeouts == [world.settings.task_timeout_seconds]
        assert vm.power_state == "poweredOn"

    def test_delete_powered_on_vm(self, vm, world):
        vm.power_on()

        vm.delete()

        assert len(world.client.tasks_of(PowerOffVmTask)) == 1
        assert world.client.tasks_of(DestroyVmTask) == [DestroyVmTask(vm=world.stemcell)]
        assert world.client.resolve_by_path(["dc1", "vm", "templates", "sc-1"]) is None

    def test_delete_powered_off_vm_skips_power_off(self, vm, world):
        world.reader.set(world.stemcell, "runtime.powerState", "poweredOff")

        vm.delete()

        assert world.client.tasks_of(PowerOffVmTask) == []
        assert len(world.client.tasks_of(DestroyVmTask)) == 1
