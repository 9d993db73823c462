"""Translate requested networks into NIC device changes."""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Iterator, List, Mapping, MutableMapping, Optional

from ..core.errors import CpiError
from ..core.interfaces import PlatformClient, PropertyReader
from ..core.platform_specs import (
    DeviceChange,
    DeviceKind,
    DeviceOperation,
    VirtualDevice,
)
from .ephemeral_disk import NEW_DEVICE_KEY, new_device_keys

logger = logging.getLogger(__name__)

NETWORK_TYPE = "Network"
NIC_ADAPTER_TYPE = "vmxnet3"


def create_nic_config_spec(
    network_name: str,
    network_mob: Any,
    controller_key: int,
    dvs_index: MutableMapping[str, str],
    property_reader: PropertyReader,
    key: int = NEW_DEVICE_KEY,
) -> DeviceChange:
    """Build the device change adding a NIC attached to ``network_mob``.

    Distributed portgroups are attached through a switch port; their portgroup
    key is recorded in ``dvs_index`` so the NIC can later be matched back to
    ``network_name``.
    """
    properties = property_reader.get_properties(
        network_mob,
        NETWORK_TYPE,
        ["config.key", "config.distributedVirtualSwitch.uuid"],
    ) or {}
    portgroup_key = properties.get("config.key")
    switch_uuid = properties.get("config.distributedVirtualSwitch.uuid")

    if portgroup_key and switch_uuid:
        backing: Dict[str, Any] = {
            "switch_uuid": switch_uuid,
            "portgroup_key": portgroup_key,
        }
        dvs_index[portgroup_key] = network_name
    else:
        backing = {"network_name": network_name, "network": network_mob}

    device = VirtualDevice(
        kind=DeviceKind.ETHERNET,
        key=key,
        controller_key=controller_key,
        label=NIC_ADAPTER_TYPE,
        backing=backing,
        start_connected=True,
    )
    return DeviceChange(operation=DeviceOperation.ADD, device=device)


def create_delete_device_spec(device: VirtualDevice) -> DeviceChange:
    return DeviceChange(operation=DeviceOperation.REMOVE, device=device)


class NetworkWiring:
    """Resolve requested networks and compute the NIC part of a device change set."""

    def __init__(self, client: PlatformClient, property_reader: PropertyReader) -> None:
        self._client = client
        self._property_reader = property_reader

    def resolve_network(self, datacenter_name: str, network_name: str) -> Any:
        network_mob = self._client.resolve_by_path([datacenter_name, "network", network_name])
        if network_mob is None:
            raise CpiError(
                f"Could not find network '{network_name}' in datacenter '{datacenter_name}'"
            )
        return network_mob

    def device_changes(
        self,
        datacenter_name: str,
        networks: Mapping[str, Dict[str, Any]],
        pci_controller_key: int,
        template_nics: Iterable[VirtualDevice],
        dvs_index: MutableMapping[str, str],
        device_keys: Optional[Iterator[int]] = None,
    ) -> List[DeviceChange]:
        """One NIC add per requested network, one remove per template NIC.

        Added NICs take their temporary keys from ``device_keys`` so they stay
        distinct from other devices added in the same change set.
        """
        changes: List[DeviceChange] = []
        if device_keys is None:
            device_keys = new_device_keys()

        for network in networks.values():
            network_name = network["cloud_properties"]["name"]
            network_mob = self.resolve_network(datacenter_name, network_name)
            changes.append(
                create_nic_config_spec(
                    network_name,
                    network_mob,
                    pci_controller_key,
                    dvs_index,
                    self._property_reader,
                    key=next(device_keys),
                )
            )

        for nic in template_nics:
            changes.append(create_delete_device_spec(nic))

        logger.debug(
            "Computed %d NIC device changes for datacenter %s", len(changes), datacenter_name
        )
        return changes
