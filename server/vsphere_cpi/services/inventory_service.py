"""Service for reading cluster inventory and current capacity."""

from __future__ import annotations

import json
import logging
import re
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError

from ..core.config import Settings, settings
from ..core.errors import ConfigurationError, CpiError
from ..core.interfaces import PlatformClient, PropertyReader
from ..core.models import (
    Cluster,
    ClusterInventoryEntry,
    Datacenter,
    Datastore,
    InventoryConfig,
    ResourcePool,
)

logger = logging.getLogger(__name__)

CLUSTER_TYPE = "ClusterComputeResource"
DATASTORE_TYPE = "Datastore"
BYTES_PER_MB = 1024 * 1024


class InventoryService:
    """Load the cluster inventory and read live capacity from the platform.

    The inventory configuration is cached after the first load. Capacity
    (cluster free memory, datastore free space) is never cached: every call to
    ``clusters()`` or ``find_cluster()`` reads it again.
    """

    def __init__(
        self,
        client: PlatformClient,
        property_reader: PropertyReader,
        config: Optional[Settings] = None,
    ) -> None:
        self._client = client
        self._property_reader = property_reader
        self._settings = config or settings
        self._inventory: Optional[InventoryConfig] = None
        self._lock = threading.Lock()

    def get_inventory(self) -> InventoryConfig:
        """Return the inventory configuration, loading it on first use."""
        with self._lock:
            if self._inventory is None:
                self._inventory = self._load_inventory()
            return self._inventory

    def clear_cache(self) -> None:
        with self._lock:
            self._inventory = None

    def _load_inventory(self) -> InventoryConfig:
        path = self._settings.inventory_path
        if not path:
            if not self._settings.datacenter_name:
                raise ConfigurationError(
                    "DATACENTER_NAME or INVENTORY_PATH must be configured"
                )
            return InventoryConfig(
                datacenter=self._settings.datacenter_name,
                vm_folder=self._settings.vm_folder,
                template_folder=self._settings.template_folder,
                clusters=[
                    ClusterInventoryEntry(name=name)
                    for name in self._settings.get_clusters_list()
                ],
            )

        inventory_file = Path(path)
        try:
            content = inventory_file.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigurationError(f"Could not read inventory file {path}: {exc}") from exc

        try:
            if inventory_file.suffix.lower() == ".json":
                data = json.loads(content)
            else:
                data = yaml.safe_load(content)
        except (json.JSONDecodeError, yaml.YAMLError) as exc:
            raise ConfigurationError(f"Could not parse inventory file {path}: {exc}") from exc

        try:
            inventory = InventoryConfig.model_validate(data or {})
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid inventory file {path}: {exc}") from exc

        logger.info(
            "Loaded inventory for datacenter %s with %d clusters from %s",
            inventory.datacenter,
            len(inventory.clusters),
            path,
        )
        return inventory

    def datacenter(self, name: Optional[str] = None) -> Datacenter:
        inventory = self.get_inventory()
        name = name or inventory.datacenter
        mob = self._client.resolve_by_path([name])
        if mob is None:
            raise CpiError(f"Could not find datacenter '{name}'")

        datacenter = Datacenter(
            name=name,
            mob=mob,
            vm_folder=inventory.vm_folder,
            template_folder=inventory.template_folder,
        )
        datacenter.vm_folder_mob = self._client.resolve_by_path(
            [name, "vm", *datacenter.vm_folder_components]
        )
        if datacenter.vm_folder_mob is None:
            raise CpiError(
                f"Could not find VM folder '{inventory.vm_folder}' in datacenter '{name}'"
            )
        return datacenter

    def clusters(self) -> List[Cluster]:
        """All configured clusters with freshly read capacity."""
        inventory = self.get_inventory()
        if not inventory.clusters:
            return []
        datacenter = self.datacenter()
        return [
            self._read_cluster(datacenter, entry.name, entry.resource_pool, entry.datastore_pattern)
            for entry in inventory.clusters
        ]

    def find_cluster(
        self,
        datacenter_name: str,
        cluster_name: str,
        resource_pool: Optional[str] = None,
    ) -> Cluster:
        """A single named cluster with freshly read capacity.

        The datastore pattern of the matching inventory entry is applied when
        the cluster is also part of the inventory.
        """
        inventory = self.get_inventory()
        datastore_pattern = ".*"
        for entry in inventory.clusters:
            if entry.name == cluster_name:
                datastore_pattern = entry.datastore_pattern
                resource_pool = resource_pool or entry.resource_pool
                break
        datacenter = self.datacenter(datacenter_name)
        return self._read_cluster(datacenter, cluster_name, resource_pool, datastore_pattern)

    def _read_cluster(
        self,
        datacenter: Datacenter,
        cluster_name: str,
        resource_pool_name: Optional[str],
        datastore_pattern: str,
    ) -> Cluster:
        cluster_mob = self._client.resolve_by_path([datacenter.name, "host", cluster_name])
        if cluster_mob is None:
            raise CpiError(
                f"Could not find cluster '{cluster_name}' in datacenter '{datacenter.name}'"
            )

        pool_path = [datacenter.name, "host", cluster_name, "Resources"]
        if resource_pool_name:
            pool_path.append(resource_pool_name)
        pool_mob = self._client.resolve_by_path(pool_path)
        if pool_mob is None:
            raise CpiError(
                f"Could not find resource pool '{resource_pool_name}' in cluster '{cluster_name}'"
            )

        properties = self._property_reader.get_properties(
            cluster_mob,
            CLUSTER_TYPE,
            ["summary.effectiveMemory", "summary.usageSummary.memDemandMB", "datastore"],
            ensure_all=True,
        )
        effective_memory = int(properties.get("summary.effectiveMemory") or 0)
        memory_demand = int(properties.get("summary.usageSummary.memDemandMB") or 0)

        datastores = self._read_datastores(properties.get("datastore") or [], datastore_pattern)

        cluster = Cluster(
            name=cluster_name,
            mob=cluster_mob,
            datacenter=datacenter,
            resource_pool=ResourcePool(name=resource_pool_name, mob=pool_mob),
            free_memory_mb=max(effective_memory - memory_demand, 0),
            datastores=datastores,
        )
        logger.debug(
            "Cluster %s: %d MB free memory, %d datastores",
            cluster.name,
            cluster.free_memory_mb,
            len(datastores),
        )
        return cluster

    def _read_datastores(self, datastore_mobs: List[Any], pattern: str) -> List[Datastore]:
        matcher = re.compile(pattern)
        datastores: List[Datastore] = []
        for mob in datastore_mobs:
            properties: Dict[str, Any] = self._property_reader.get_properties(
                mob,
                DATASTORE_TYPE,
                ["name", "summary.freeSpace", "summary.capacity"],
                ensure_all=True,
            )
            name = properties.get("name")
            if not name or not matcher.search(name):
                continue
            datastores.append(
                Datastore(
                    name=name,
                    mob=mob,
                    free_space_mb=int(properties.get("summary.freeSpace") or 0) // BYTES_PER_MB,
                    total_space_mb=int(properties.get("summary.capacity") or 0) // BYTES_PER_MB,
                )
            )
        return datastores
