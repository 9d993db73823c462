"""Create-VM workflow: placement, cloning, configuration and rollback."""
from __future__ import annotations

import logging
import threading
import uuid
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

from ..core.agent_env_builder import (
    generate_agent_env,
    generate_disk_env,
    generate_network_env,
)
from ..core.config import Settings, settings
from ..core.errors import (
    CpiError,
    ProvisioningCancelled,
    StemcellNotFound,
    TooManyAffinityRules,
    UnsupportedAffinityRuleKind,
)
from ..core.interfaces import PlatformClient, PropertyReader
from ..core.models import Cluster, VmLocation
from ..core.platform_specs import CloneVmTask, VmConfigSpec
from .agent_env import AgentEnv
from .drs_rule import DrsRule
from .ephemeral_disk import EphemeralDisk, new_device_keys
from .network_wiring import NetworkWiring
from .placer import Placer
from .stemcell_replicator import StemcellReplicator
from .vm_resource import VmResource

VM_TYPE = "VirtualMachine"


def generate_unique_name() -> str:
    return str(uuid.uuid4())


class VmCreator:
    """Provision one VM from a stemcell.

    The steps run strictly in order and each depends on the previous one:
    find stemcell, place, replicate, compute device changes, linked clone,
    inject agent env, power on, apply DRS rules. Once the clone exists, any
    failure deletes the VM before the original error is re-raised; the
    stemcell replica is kept as a cache.
    """

    def __init__(
        self,
        memory_mb: int,
        disk_size_in_mb: int,
        cpu: int,
        placer: Placer,
        client: PlatformClient,
        property_reader: PropertyReader,
        agent_env: AgentEnv,
        replicator: StemcellReplicator,
        disk_spec: Callable[[Sequence[str]], Dict[str, int]],
        logger: Optional[logging.Logger] = None,
        config: Optional[Settings] = None,
        name_generator: Callable[[], str] = generate_unique_name,
        drs_rule_factory: Callable[..., DrsRule] = DrsRule,
    ) -> None:
        self.memory_mb = memory_mb
        self.disk_size_in_mb = disk_size_in_mb
        self.cpu = cpu
        self._placer = placer
        self._client = client
        self._property_reader = property_reader
        self._agent_env = agent_env
        self._replicator = replicator
        self._disk_spec = disk_spec
        self._logger = logger or logging.getLogger(__name__)
        self._settings = config or settings
        self._name_generator = name_generator
        self._drs_rule_factory = drs_rule_factory
        self._network_wiring = NetworkWiring(client, property_reader)

    def create(
        self,
        agent_id: Optional[str],
        stemcell_id: str,
        networks: Optional[Mapping[str, Dict[str, Any]]],
        disk_locality: Optional[Sequence[str]],
        environment: Optional[Dict[str, Any]],
        cancelled: Optional[threading.Event] = None,
    ) -> VmResource:
        networks = networks or {}

        def checkpoint(step: str) -> None:
            if cancelled is not None and cancelled.is_set():
                raise ProvisioningCancelled(step)

        stemcell_vm = self._replicator.find_stemcell(stemcell_id)
        if stemcell_vm is None:
            raise StemcellNotFound(stemcell_id)

        # The datastore also holds the swap file and the linked clone's share of the stemcell.
        stemcell_size_mb = self._replicator.stemcell_size_mb(stemcell_vm)
        required_disk_mb = self.disk_size_in_mb + self.memory_mb + stemcell_size_mb
        disk_spec = self._disk_spec(list(disk_locality or []))
        cluster, datastore = self._placer.place(self.memory_mb, required_disk_mb, disk_spec)
        checkpoint("replication")

        name = f"{self._settings.vm_name_prefix}{self._name_generator()}"

        replica_mob = self._replicator.replicate(cluster, datastore, stemcell_id)
        replica = VmResource(
            stemcell_id, replica_mob, self._client, self._property_reader, self._settings
        )
        snapshot = self._property_reader.get_property(
            replica_mob, VM_TYPE, "snapshot.currentSnapshot", ensure_all=True
        )
        if snapshot is None:
            raise CpiError(f"Stemcell replica of {stemcell_id} has no snapshot to clone from")

        config = VmConfigSpec(memory_mb=self.memory_mb, num_cpus=self.cpu)

        device_keys = new_device_keys()
        ephemeral_disk = EphemeralDisk(self.disk_size_in_mb, name, datastore)
        ephemeral_disk_change = ephemeral_disk.create_spec(
            replica.system_disk.controller_key, key=next(device_keys)
        )
        config.device_change.append(ephemeral_disk_change)

        dvs_index: Dict[str, str] = {}
        config.device_change.extend(
            self._network_wiring.device_changes(
                cluster.datacenter.name,
                networks,
                replica.pci_controller.key,
                replica.nics,
                dvs_index,
                device_keys,
            )
        )
        replica.fix_device_unit_numbers(config.device_change)
        checkpoint("clone")

        self._logger.info("Cloning VM %s to %s", replica, name)
        task = self._client.submit_task(
            CloneVmTask(
                source=replica_mob,
                name=name,
                folder=cluster.datacenter.vm_folder_mob,
                resource_pool=cluster.resource_pool.mob,
                datastore=datastore.mob,
                linked=True,
                snapshot=snapshot,
                config=config,
            )
        )
        vm_mob = self._client.await_task(task, timeout=self._settings.task_timeout_seconds)
        vm = VmResource(name, vm_mob, self._client, self._property_reader, self._settings)

        try:
            checkpoint("agent env injection")
            network_env = generate_network_env(vm.devices, networks, dvs_index)
            disk_env = generate_disk_env(vm.system_disk, ephemeral_disk_change.device)
            env = generate_agent_env(
                name, vm.instance_uuid, agent_id, network_env, disk_env, self._settings
            )
            env["env"] = environment or {}

            location = VmLocation(
                datacenter=cluster.datacenter.name,
                datastore=datastore.name,
                vm=name,
            )
            self._agent_env.set_env(vm_mob, location, env)
            checkpoint("power on")

            vm.power_on()

            self._apply_drs_rules(vm, cluster)
            checkpoint("return")
        except BaseException as exc:
            self._rollback(vm, exc)
            raise

        self._logger.info("Created VM %s on cluster %s", name, cluster.name)
        return vm

    def _apply_drs_rules(self, vm: VmResource, cluster: Cluster) -> None:
        drs_rules = self._placer.drs_rules
        if not drs_rules:
            return

        if len(drs_rules) > 1:
            raise TooManyAffinityRules([rule.name for rule in drs_rules])

        rule_spec = drs_rules[0]
        if not rule_spec.is_supported:
            raise UnsupportedAffinityRuleKind(rule_spec.name, rule_spec.type)

        drs_rule = self._drs_rule_factory(
            rule_spec.name,
            self._client,
            self._property_reader,
            cluster.mob,
            self._logger,
        )
        drs_rule.add_vm(vm.mob)

    def _rollback(self, vm: VmResource, error: BaseException) -> None:
        self._logger.warning("Deleting VM %s after failure: %s", vm.cid, error)
        try:
            vm.delete()
        except Exception:
            self._logger.exception("Failed to delete VM %s during rollback", vm.cid)


