"""Data models for the provisioning core."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class DrsRuleType(str, Enum):
    """DRS rule kinds the CPI knows how to enforce."""
    SEPARATE_VMS = "separate_vms"


class DrsRuleSpec(BaseModel):
    """DRS rule declared in a cluster's cloud properties.

    ``type`` is kept as free text so that unsupported kinds survive parsing and
    are rejected by the provisioner with a meaningful error.
    """
    name: str = Field(..., min_length=1, description="Name of the DRS rule")
    type: str = Field(..., description="Rule kind, only 'separate_vms' is supported")

    @property
    def is_supported(self) -> bool:
        return self.type == DrsRuleType.SEPARATE_VMS.value


class ClusterPlacement(BaseModel):
    """Placement constraints for one named cluster."""
    resource_pool: Optional[str] = Field(None, description="Resource pool inside the cluster")
    drs_rules: List[DrsRuleSpec] = Field(default_factory=list)


class DatacenterPlacement(BaseModel):
    """Clusters of a datacenter a VM may be placed in.

    ``clusters`` mirrors the manifest layout: a list of single-key mappings from
    cluster name to its placement constraints.
    """
    name: str = Field(..., min_length=1)
    clusters: List[Dict[str, ClusterPlacement]] = Field(default_factory=list)

    @field_validator("clusters")
    @classmethod
    def validate_single_cluster_per_entry(
        cls, value: List[Dict[str, ClusterPlacement]]
    ) -> List[Dict[str, ClusterPlacement]]:
        for entry in value:
            if len(entry) != 1:
                raise ValueError(
                    "each clusters entry must map exactly one cluster name to its properties"
                )
        return value


class VmCloudProperties(BaseModel):
    """Resource pool cloud properties of a VM."""
    model_config = ConfigDict(extra="allow")

    ram: int = Field(..., ge=1, description="Memory in megabytes")
    disk: int = Field(..., ge=1, description="Ephemeral disk size in megabytes")
    cpu: int = Field(..., ge=1, description="Number of virtual CPUs")
    datacenters: Optional[List[DatacenterPlacement]] = Field(
        None, description="Explicit placement; when absent every configured cluster is eligible"
    )

    def cluster_placements(self) -> List[Tuple[str, str, ClusterPlacement]]:
        """Flatten declared placements into (datacenter, cluster, constraints)."""
        placements: List[Tuple[str, str, ClusterPlacement]] = []
        for datacenter in self.datacenters or []:
            for entry in datacenter.clusters:
                for cluster_name, cluster_placement in entry.items():
                    placements.append((datacenter.name, cluster_name, cluster_placement))
        return placements


class CreateVmRequest(BaseModel):
    """Resource request for a single provisioning attempt."""
    model_config = ConfigDict(frozen=True)

    agent_id: Optional[str] = None
    stemcell_id: str = Field(..., min_length=1, description="Template image reference")
    networks: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    disk_locality: List[str] = Field(default_factory=list)
    cloud_properties: VmCloudProperties
    environment: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def validate_network_cloud_properties(self) -> "CreateVmRequest":
        for name, network in self.networks.items():
            cloud_properties = network.get("cloud_properties") or {}
            if not cloud_properties.get("name"):
                raise ValueError(
                    f"network '{name}' must set cloud_properties.name to a platform network"
                )
        return self


class ClusterInventoryEntry(BaseModel):
    """Cluster made available for placement."""
    name: str = Field(..., min_length=1)
    resource_pool: Optional[str] = None
    datastore_pattern: str = Field(".*", description="Regex selecting usable datastores")


class InventoryConfig(BaseModel):
    """Cluster inventory loaded from the inventory file or settings."""
    datacenter: str = Field(..., min_length=1)
    vm_folder: str = "vms"
    template_folder: str = "templates"
    clusters: List[ClusterInventoryEntry] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Runtime resource snapshots
# ---------------------------------------------------------------------------


@dataclass
class PersistentDisk:
    """Persistent disk known to the director."""
    cid: str
    size_mb: int
    datastore_name: str


@dataclass
class Datacenter:
    name: str
    mob: Any
    vm_folder: str = "vms"
    vm_folder_mob: Any = None
    template_folder: str = "templates"

    @property
    def vm_folder_components(self) -> List[str]:
        return [part for part in self.vm_folder.split("/") if part]

    @property
    def template_folder_components(self) -> List[str]:
        return [part for part in self.template_folder.split("/") if part]


@dataclass
class Datastore:
    """Datastore with the free space read at placement time."""
    name: str
    mob: Any
    free_space_mb: int
    total_space_mb: int = 0


@dataclass
class ResourcePool:
    name: Optional[str]
    mob: Any


@dataclass
class Cluster:
    """Cluster with the free memory read at placement time."""
    name: str
    mob: Any
    datacenter: Datacenter
    resource_pool: ResourcePool
    free_memory_mb: int
    datastores: List[Datastore] = field(default_factory=list)


@dataclass(frozen=True)
class VmLocation:
    """Where a VM's files live."""
    datacenter: str
    datastore: str
    vm: str
