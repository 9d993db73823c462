"""Placement of new VMs onto a cluster and datastore.

Both placers read capacity fresh on every ``place()`` call and never reserve
it. Two concurrent placements may pick the same datastore; the platform's own
admission control settles that race.

Scoring policy, applied to every (cluster, datastore) pair:

1. The cluster must keep ``memory_headroom_mb`` free after the VM's memory.
2. The datastore must keep ``disk_headroom_mb`` free after the VM's disk.
3. Feasible pairs are ranked by persistent disk megabytes already on the
   datastore, then cluster free memory, then datastore free space (all
   descending), then cluster and datastore name (ascending).
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import List, Mapping, Optional, Sequence, Tuple

from ..core.config import Settings, settings
from ..core.errors import NoFeasiblePlacement
from ..core.models import Cluster, ClusterPlacement, Datastore, DrsRuleSpec
from .inventory_service import InventoryService

logger = logging.getLogger(__name__)

Placement = Tuple[Cluster, Datastore]


class Placer(ABC):
    """Base placer implementing the scoring policy."""

    def __init__(self, inventory: InventoryService, config: Optional[Settings] = None) -> None:
        self._inventory = inventory
        self._settings = config or settings
        self._selected: Optional[Cluster] = None

    @property
    def drs_rules(self) -> List[DrsRuleSpec]:
        return []

    def place(
        self,
        memory_mb: int,
        disk_mb: int,
        disk_spec: Optional[Mapping[str, int]] = None,
    ) -> Placement:
        clusters = self._candidate_clusters()
        cluster, datastore = self.select(clusters, memory_mb, disk_mb, disk_spec or {})
        self._selected = cluster
        logger.info(
            "Placed VM (%d MB memory, %d MB disk) on cluster %s, datastore %s",
            memory_mb,
            disk_mb,
            cluster.name,
            datastore.name,
        )
        return cluster, datastore

    @abstractmethod
    def _candidate_clusters(self) -> List[Cluster]:
        """Clusters to score, with freshly read capacity."""

    def select(
        self,
        clusters: Sequence[Cluster],
        memory_mb: int,
        disk_mb: int,
        disk_spec: Mapping[str, int],
    ) -> Placement:
        """Return the best feasible pair or raise ``NoFeasiblePlacement``."""
        memory_headroom = self._settings.memory_headroom_mb
        disk_headroom = self._settings.disk_headroom_mb

        candidates: List[Placement] = []
        for cluster in clusters:
            if cluster.free_memory_mb - memory_headroom < memory_mb:
                logger.debug(
                    "Cluster %s rejected: %d MB free memory", cluster.name, cluster.free_memory_mb
                )
                continue
            for datastore in cluster.datastores:
                if datastore.free_space_mb - disk_headroom < disk_mb:
                    continue
                candidates.append((cluster, datastore))

        if not candidates:
            raise NoFeasiblePlacement(memory_mb, disk_mb)

        def score(candidate: Placement):
            cluster, datastore = candidate
            return (
                -disk_spec.get(datastore.name, 0),
                -cluster.free_memory_mb,
                -datastore.free_space_mb,
                cluster.name,
                datastore.name,
            )

        return min(candidates, key=score)


class ResourcePlacer(Placer):
    """Place across every cluster of the configured inventory."""

    def _candidate_clusters(self) -> List[Cluster]:
        return self._inventory.clusters()


class FixedClusterPlacer(Placer):
    """Place within the clusters named by a VM's cloud properties."""

    def __init__(
        self,
        inventory: InventoryService,
        placements: Sequence[Tuple[str, str, ClusterPlacement]],
        config: Optional[Settings] = None,
    ) -> None:
        super().__init__(inventory, config)
        self._placements = list(placements)

    @property
    def drs_rules(self) -> List[DrsRuleSpec]:
        """DRS rules of the selected cluster, or of the only declared cluster."""
        if self._selected is not None:
            selected = (self._selected.datacenter.name, self._selected.name)
            for datacenter_name, cluster_name, placement in self._placements:
                if (datacenter_name, cluster_name) == selected:
                    return list(placement.drs_rules)
            return []
        if len(self._placements) == 1:
            return list(self._placements[0][2].drs_rules)
        return []

    def _candidate_clusters(self) -> List[Cluster]:
        return [
            self._inventory.find_cluster(datacenter_name, cluster_name, placement.resource_pool)
            for datacenter_name, cluster_name, placement in self._placements
        ]
