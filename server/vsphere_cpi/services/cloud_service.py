"""Entry point used by the orchestrator to create VMs."""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Dict, Mapping, Optional, Sequence, Set, Union

from ..core.config import Settings, settings
from ..core.config_validation import run_config_checks
from ..core.errors import ConfigurationError, ProvisioningCancelled
from ..core.interfaces import DiskCatalog, PlatformClient, PropertyReader
from ..core.models import CreateVmRequest, VmCloudProperties
from .agent_env import AgentEnv
from .inventory_service import InventoryService
from .placer import FixedClusterPlacer, Placer, ResourcePlacer
from .stemcell_replicator import StemcellReplicator
from .vm_creator import VmCreator
from .vm_resource import VmResource

logger = logging.getLogger(__name__)


class CloudService:
    """Create VMs on behalf of the deployment orchestrator.

    ``create_vm`` may be awaited concurrently; at most
    ``settings.create_vm_concurrency`` workflows run at once, each in a worker
    thread because the platform calls block.
    """

    def __init__(
        self,
        client: PlatformClient,
        property_reader: PropertyReader,
        disk_catalog: DiskCatalog,
        config: Optional[Settings] = None,
    ) -> None:
        self._client = client
        self._property_reader = property_reader
        self._disk_catalog = disk_catalog
        self._settings = config or settings
        self.inventory = InventoryService(client, property_reader, self._settings)
        self.replicator = StemcellReplicator(
            client, property_reader, self.inventory, self._settings
        )
        self.agent_env = AgentEnv(client, self._settings)
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._pending: Set[asyncio.Future[Any]] = set()

    def _get_semaphore(self) -> asyncio.Semaphore:
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self._settings.create_vm_concurrency)
        return self._semaphore

    def disk_spec(self, disk_locality: Sequence[str]) -> Dict[str, int]:
        """Megabytes of the given persistent disks per datastore name."""
        spec: Dict[str, int] = {}
        for disk_cid in disk_locality:
            disk = self._disk_catalog.find_disk(disk_cid)
            if disk is None:
                logger.warning("Ignoring unknown persistent disk %s in disk locality", disk_cid)
                continue
            spec[disk.datastore_name] = spec.get(disk.datastore_name, 0) + disk.size_mb
        return spec

    def build_placer(self, cloud_properties: VmCloudProperties) -> Placer:
        placements = cloud_properties.cluster_placements()
        if placements:
            return FixedClusterPlacer(self.inventory, placements, self._settings)
        return ResourcePlacer(self.inventory, self._settings)

    def build_creator(self, cloud_properties: VmCloudProperties) -> VmCreator:
        return VmCreator(
            cloud_properties.ram,
            cloud_properties.disk,
            cloud_properties.cpu,
            self.build_placer(cloud_properties),
            self._client,
            self._property_reader,
            self.agent_env,
            self.replicator,
            self.disk_spec,
            config=self._settings,
        )

    async def create_vm(
        self,
        agent_id: Optional[str],
        stemcell_id: str,
        cloud_properties: Union[VmCloudProperties, Mapping[str, Any]],
        networks: Optional[Mapping[str, Dict[str, Any]]] = None,
        disk_locality: Optional[Sequence[str]] = None,
        environment: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Create a VM and return its cid.

        Cancelling the awaiting task stops the workflow at its next step; a VM
        that already exists at that point is deleted. The worker keeps its
        concurrency slot until the blocking workflow has returned.
        """
        request = CreateVmRequest(
            agent_id=agent_id,
            stemcell_id=stemcell_id,
            networks=dict(networks or {}),
            disk_locality=list(disk_locality or []),
            cloud_properties=cloud_properties,
            environment=dict(environment or {}),
        )
        creator = self.build_creator(request.cloud_properties)
        cancelled = threading.Event()

        worker = asyncio.ensure_future(self._provision(creator, request, cancelled))
        self._track(worker)
        try:
            vm = await asyncio.shield(worker)
        except asyncio.CancelledError:
            logger.warning("Creation of VM from stemcell %s cancelled", request.stemcell_id)
            cancelled.set()
            worker.add_done_callback(self._discard_unclaimed)
            raise

        return vm.cid

    async def wait_idle(self) -> None:
        """Wait for running workflows and cleanup of cancelled ones to finish."""
        while self._pending:
            await asyncio.wait(list(self._pending))

    async def _provision(
        self,
        creator: VmCreator,
        request: CreateVmRequest,
        cancelled: threading.Event,
    ) -> VmResource:
        async with self._get_semaphore():
            logger.info(
                "Creating VM for agent %s from stemcell %s", request.agent_id, request.stemcell_id
            )
            vm = await asyncio.to_thread(
                creator.create,
                request.agent_id,
                request.stemcell_id,
                request.networks,
                request.disk_locality,
                request.environment,
                cancelled,
            )
            if cancelled.is_set():
                await asyncio.to_thread(self._discard, vm)
                raise ProvisioningCancelled("return")
            return vm

    def _track(self, future: asyncio.Future[Any]) -> None:
        self._pending.add(future)
        future.add_done_callback(self._pending.discard)

    def _discard_unclaimed(self, worker: asyncio.Future[VmResource]) -> None:
        """Delete a VM that finished provisioning after its caller went away."""
        if worker.cancelled():
            return
        error = worker.exception()
        if error is not None:
            if not isinstance(error, ProvisioningCancelled):
                logger.warning("Cancelled VM creation failed: %s", error)
            return
        self._track(asyncio.ensure_future(asyncio.to_thread(self._discard, worker.result())))

    def _discard(self, vm: VmResource) -> None:
        logger.warning("Deleting VM %s created for a cancelled request", vm.cid)
        try:
            vm.delete()
        except Exception:
            logger.exception("Failed to delete VM %s of a cancelled request", vm.cid)


def build_cloud_service(
    client: PlatformClient,
    property_reader: PropertyReader,
    disk_catalog: DiskCatalog,
    config: Optional[Settings] = None,
) -> CloudService:
    """Validate configuration and construct a ``CloudService``."""

    result = run_config_checks(force=True, config=config)
    for issue in result.warnings:
        logger.warning("Configuration warning: %s %s", issue.message, issue.hint or "")
    if result.has_errors:
        for issue in result.errors:
            logger.error("Configuration error: %s %s", issue.message, issue.hint or "")
        raise ConfigurationError(
            "Invalid configuration: " + "; ".join(issue.message for issue in result.errors)
        )
    return CloudService(client, property_reader, disk_catalog, config)
