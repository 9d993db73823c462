"""Tests for the asynchronous create_vm entry point."""
import asyncio
import threading

import pytest
from pydantic import ValidationError

from vsphere_cpi.core.errors import ConfigurationError, ProvisioningCancelled
from vsphere_cpi.core.models import PersistentDisk, VmCloudProperties
from vsphere_cpi.core.platform_specs import (
    CloneVmTask,
    DestroyVmTask,
    PowerOffVmTask,
    PowerOnVmTask,
)
from vsphere_cpi.services.cloud_service import CloudService, build_cloud_service
from vsphere_cpi.services.placer import FixedClusterPlacer, ResourcePlacer
from vsphere_cpi.services.vm_resource import VmResource

from fakes import FakeDiskCatalog, FakeMob

CLOUD_PROPERTIES = {"ram": 1024, "disk": 1024, "cpu": 1}
NETWORKS = {"default": {"cloud_properties": {"name": "net-a"}}}


@pytest.fixture
def disk_catalog():
    return FakeDiskCatalog(
        [
            PersistentDisk(cid="disk-1", size_mb=4096, datastore_name="ds1"),
            PersistentDisk(cid="disk-2", size_mb=1024, datastore_name="ds1"),
            PersistentDisk(cid="disk-3", size_mb=2048, datastore_name="ds2"),
        ]
    )


@pytest.fixture
def service(world, disk_catalog):
    return CloudService(world.client, world.reader, disk_catalog, world.settings)


def registered_vm(world, name):
    """A powered-on VM in the VM folder, as a finished workflow would return it."""
    mob = world.client.add_path(["dc1", "vm", "vms", name], FakeMob("vm", name))
    world.reader.set(mob, "runtime.powerState", "poweredOn")
    return VmResource(name, mob, world.client, world.reader, world.settings)


def vms_in_folder(world):
    return [
        path
        for path in world.client.paths
        if path[:3] == ("dc1", "vm", "vms") and len(path) == 4
    ]


@pytest.mark.unit
class TestCloudServiceHelpers:
    def test_disk_spec_sums_per_datastore(self, service):
        assert service.disk_spec(["disk-1", "disk-2", "disk-3"]) == {"ds1": 5120, "ds2": 2048}

    def test_disk_spec_ignores_unknown_disks(self, service, caplog):
        assert service.disk_spec(["disk-404"]) == {}
        assert "disk-404" in caplog.text

    def test_resource_placer_without_declared_clusters(self, service):
        placer = service.build_placer(VmCloudProperties(**CLOUD_PROPERTIES))

        assert isinstance(placer, ResourcePlacer)

    def test_fixed_placer_with_declared_clusters(self, service):
        properties = VmCloudProperties.model_validate(
            {**CLOUD_PROPERTIES, "datacenters": [{"name": "dc1", "clusters": [{"cluster1": {}}]}]}
        )

        assert isinstance(service.build_placer(properties), FixedClusterPlacer)


@pytest.mark.anyio("asyncio")
async def test_create_vm_returns_cid(service, world):
    cid = await service.create_vm("agent-1", "sc-1", CLOUD_PROPERTIES, NETWORKS)

    assert cid.startswith("vm-")
    assert world.client.resolve_by_path(["dc1", "vm", "vms", cid]) is not None


@pytest.mark.anyio("asyncio")
async def test_create_vm_validates_request(service, world):
    with pytest.raises(ValidationError):
        await service.create_vm("agent-1", "sc-1", {"ram": 0, "disk": 1, "cpu": 1})

    assert world.client.submitted == []


@pytest.mark.anyio("asyncio")
async def test_concurrent_create_vm_calls(service, world):
    cids = await asyncio.gather(
        *[service.create_vm(f"agent-{i}", "sc-1", CLOUD_PROPERTIES, NETWORKS) for i in range(4)]
    )

    assert len(set(cids)) == 4
    # One shared replica, one linked clone per VM
    clones = world.client.tasks_of(CloneVmTask)
    assert len([clone for clone in clones if not clone.linked]) == 1
    assert len([clone for clone in clones if clone.linked]) == 4


@pytest.mark.anyio("asyncio")
async def test_concurrency_limit(world, disk_catalog, monkeypatch):
    config = world.settings.model_copy(update={"create_vm_concurrency": 2})
    service = CloudService(world.client, world.reader, disk_catalog, config)
    running = 0
    peak = 0
    guard = threading.Lock()

    def slow_create(self, *args):
        nonlocal running, peak
        with guard:
            running += 1
            peak = max(peak, running)
        threading.Event().wait(0.05)
        with guard:
            running -= 1

        class _Vm:
            cid = "vm-x"

        return _Vm()

    monkeypatch.setattr("vsphere_cpi.services.vm_creator.VmCreator.create", slow_create)

    await asyncio.gather(
        *[service.create_vm("agent", "sc-1", CLOUD_PROPERTIES) for _ in range(5)]
    )

    assert peak <= 2


@pytest.mark.anyio("asyncio")
async def test_cancellation_signals_worker(service, monkeypatch):
    started = threading.Event()
    observed = []

    def blocking_create(self, agent_id, stemcell_id, networks, disk_locality, environment, cancelled):
        started.set()
        observed.append(cancelled.wait(timeout=5))
        raise ProvisioningCancelled("clone")

    monkeypatch.setattr("vsphere_cpi.services.vm_creator.VmCreator.create", blocking_create)

    task = asyncio.ensure_future(service.create_vm("agent", "sc-1", CLOUD_PROPERTIES))
    while not started.is_set():
        await asyncio.sleep(0.01)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    # The worker thread sees the cancellation flag
    await service.wait_idle()
    assert observed == [True]



@pytest.mark.anyio("asyncio")
async def test_cancel_during_power_on_deletes_vm(service, world, monkeypatch):
    """Cancelling while a platform task blocks leaves no VM behind."""
    powering_on = threading.Event()
    release = threading.Event()
    original_await_task = world.client.await_task

    def blocking_await_task(task, timeout=None):
        if isinstance(task, PowerOnVmTask):
            powering_on.set()
            release.wait(timeout=5)
        return original_await_task(task, timeout=timeout)

    monkeypatch.setattr(world.client, "await_task", blocking_await_task)

    task = asyncio.ensure_future(service.create_vm("agent-1", "sc-1", CLOUD_PROPERTIES, NETWORKS))
    while not powering_on.is_set():
        await asyncio.sleep(0.01)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    release.set()
    await service.wait_idle()

    assert vms_in_folder(world) == []
    assert len(world.client.tasks_of(PowerOffVmTask)) == 1
    assert len(world.client.tasks_of(DestroyVmTask)) == 1


@pytest.mark.anyio("asyncio")
async def test_vm_returned_after_cancellation_is_deleted(service, world, monkeypatch):
    started = threading.Event()
    release = threading.Event()
    late_vm = registered_vm(world, "vm-late")

    def create_ignoring_cancellation(self, *args):
        started.set()
        release.wait(timeout=5)
        return late_vm

    monkeypatch.setattr(
        "vsphere_cpi.services.vm_creator.VmCreator.create", create_ignoring_cancellation
    )

    task = asyncio.ensure_future(service.create_vm("agent", "sc-1", CLOUD_PROPERTIES))
    while not started.is_set():
        await asyncio.sleep(0.01)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    release.set()
    await service.wait_idle()

    assert world.client.destroyed == [late_vm.mob]
    assert vms_in_folder(world) == []


@pytest.mark.anyio("asyncio")
async def test_unclaimed_vm_of_finished_worker_is_deleted(service, world):
    """A worker that completed just before its caller was cancelled."""
    late_vm = registered_vm(world, "vm-unclaimed")
    worker = asyncio.get_running_loop().create_future()
    worker.set_result(late_vm)

    service._discard_unclaimed(worker)
    await service.wait_idle()

    assert world.client.destroyed == [late_vm.mob]


@pytest.mark.anyio("asyncio")
async def test_failed_worker_of_cancelled_call_deletes_nothing(service, world, caplog):
    worker = asyncio.get_running_loop().create_future()
    worker.set_exception(ProvisioningCancelled("power on"))

    service._discard_unclaimed(worker)
    await service.wait_idle()

    assert world.client.tasks_of(DestroyVmTask) == []
    assert "failed" not in caplog.text


@pytest.mark.anyio("asyncio")
async def test_cancelled_call_keeps_slot_until_worker_returns(world, disk_catalog, monkeypatch):
    """With one slot, a queued call starts only after the cancelled worker finished."""
    config = world.settings.model_copy(update={"create_vm_concurrency": 1})
    service = CloudService(world.client, world.reader, disk_catalog, config)
    first_started = threading.Event()
    release_first = threading.Event()
    events = []
    second_vm = registered_vm(world, "vm-second")

    def create(self, agent_id, *args):
        events.append(f"start {agent_id}")
        if agent_id == "agent-1":
            first_started.set()
            release_first.wait(timeout=5)
            events.append(f"end {agent_id}")
            raise ProvisioningCancelled("power on")
        events.append(f"end {agent_id}")
        return second_vm

    monkeypatch.setattr("vsphere_cpi.services.vm_creator.VmCreator.create", create)

    first = asyncio.ensure_future(service.create_vm("agent-1", "sc-1", CLOUD_PROPERTIES))
    while not first_started.is_set():
        await asyncio.sleep(0.01)
    first.cancel()
    with pytest.raises(asyncio.CancelledError):
        await first

    second = asyncio.ensure_future(service.create_vm("agent-2", "sc-1", CLOUD_PROPERTIES))
    await asyncio.sleep(0.05)
    assert events == ["start agent-1"]

    release_first.set()

    assert await second == "vm-second"
    assert events == ["start agent-1", "end agent-1", "start agent-2", "end agent-2"]


@pytest.mark.unit
class TestBuildCloudService:
    def test_builds_with_valid_configuration(self, world, disk_catalog):
        service = build_cloud_service(world.client, world.reader, disk_catalog, world.settings)

        assert isinstance(service, CloudService)

    def test_rejects_invalid_configuration(self, world, disk_catalog):
        config = world.settings.model_copy(update={"task_timeout_seconds": 0})

        with pytest.raises(ConfigurationError, match="TASK_TIMEOUT_SECONDS"):
            build_cloud_service(world.client, world.reader, disk_catalog, config)
