"""Service making stemcell templates available on a chosen datastore."""
from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional, Tuple

from ..core.config import Settings, settings
from ..core.errors import CpiError, StemcellNotFound
from ..core.interfaces import PlatformClient, PropertyReader
from ..core.models import Cluster, Datacenter, Datastore
from ..core.platform_specs import CloneVmTask, CreateSnapshotTask
from .inventory_service import InventoryService

logger = logging.getLogger(__name__)

VM_TYPE = "VirtualMachine"
REPLICA_SNAPSHOT_NAME = "initial"


class StemcellReplicator:
    """Find stemcells and replicate them onto datastores.

    Replicas are named ``<stemcell> %2f <datastore>`` and live in the template
    folder. They act as a cache: they are never removed by a failed
    provisioning attempt. Replication of one stemcell onto one datastore is
    serialized within the process and re-checked under the lock.
    """

    def __init__(
        self,
        client: PlatformClient,
        property_reader: PropertyReader,
        inventory: InventoryService,
        config: Optional[Settings] = None,
    ) -> None:
        self._client = client
        self._property_reader = property_reader
        self._inventory = inventory
        self._settings = config or settings
        self._locks: Dict[Tuple[str, str], threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @staticmethod
    def replica_name(stemcell_id: str, datastore: Datastore) -> str:
        return f"{stemcell_id} %2f {datastore.name}"

    def _template_path(self, datacenter: Datacenter, name: str):
        return [datacenter.name, "vm", *datacenter.template_folder_components, name]

    def find_stemcell(
        self, stemcell_id: str, datacenter: Optional[Datacenter] = None
    ) -> Optional[Any]:
        """Return the stemcell template VM, or None when it does not exist."""
        datacenter = datacenter or self._inventory.datacenter()
        return self._client.resolve_by_path(self._template_path(datacenter, stemcell_id))

    def stemcell_size_mb(self, stemcell_vm: Any) -> int:
        """Committed storage of the stemcell in whole megabytes."""
        committed = self._property_reader.get_property(
            stemcell_vm, VM_TYPE, "summary.storage.committed", ensure_all=True
        )
        return int(committed or 0) // (1024 * 1024)

    def replicate(self, cluster: Cluster, datastore: Datastore, stemcell_id: str) -> Any:
        """Return a template VM of ``stemcell_id`` stored on ``datastore``."""
        datacenter = cluster.datacenter
        stemcell_vm = self.find_stemcell(stemcell_id, datacenter)
        if stemcell_vm is None:
            raise StemcellNotFound(stemcell_id)

        stemcell_datastores = self._property_reader.get_property(
            stemcell_vm, VM_TYPE, "datastore", ensure_all=True
        ) or []
        if datastore.mob in stemcell_datastores:
            logger.debug("Stemcell %s already on datastore %s", stemcell_id, datastore.name)
            return stemcell_vm

        name = self.replica_name(stemcell_id, datastore)
        replica_path = self._template_path(datacenter, name)
        replica = self._client.resolve_by_path(replica_path)
        if replica is not None:
            return replica

        with self._lock_for(stemcell_id, datastore.name):
            replica = self._client.resolve_by_path(replica_path)
            if replica is not None:
                return replica
            return self._clone_replica(cluster, datastore, stemcell_vm, name)

    def _lock_for(self, stemcell_id: str, datastore_name: str) -> threading.Lock:
        with self._locks_guard:
            key = (stemcell_id, datastore_name)
            if key not in self._locks:
                self._locks[key] = threading.Lock()
            return self._locks[key]

    def _clone_replica(
        self, cluster: Cluster, datastore: Datastore, stemcell_vm: Any, name: str
    ) -> Any:
        datacenter = cluster.datacenter
        folder = self._client.resolve_by_path(
            [datacenter.name, "vm", *datacenter.template_folder_components]
        )
        if folder is None:
            raise CpiError(
                f"Could not find template folder '{datacenter.template_folder}' "
                f"in datacenter '{datacenter.name}'"
            )

        logger.info("Replicating stemcell to %s on datastore %s", name, datastore.name)
        timeout = self._settings.task_timeout_seconds
        task = self._client.submit_task(
            CloneVmTask(
                source=stemcell_vm,
                name=name,
                folder=folder,
                resource_pool=cluster.resource_pool.mob,
                datastore=datastore.mob,
            )
        )
        replica = self._client.await_task(task, timeout=timeout)

        logger.info("Creating initial snapshot of replica %s", name)
        snapshot_task = self._client.submit_task(
            CreateSnapshotTask(vm=replica, name=REPLICA_SNAPSHOT_NAME)
        )
        self._client.await_task(snapshot_task, timeout=timeout)
        return replica
