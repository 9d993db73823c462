"""Agent environment generator.

This module builds the machine environment that the in-guest agent reads after
boot to configure itself. The environment is composed of three parts:

- network env: the requested networks, each annotated with the MAC address of
  the NIC wired to it
- disk env: unit numbers of the system and ephemeral disks
- agent env: VM identity, agent id and the agent settings from configuration

The generated dictionary is written to the VM by ``services.agent_env``.
"""
import copy
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .config import Settings, settings
from .errors import CpiError
from .platform_specs import DeviceKind, VirtualDevice

logger = logging.getLogger(__name__)


def _nic_network_name(device: VirtualDevice, dvs_index: Mapping[str, str]) -> Optional[str]:
    backing = device.backing
    portgroup_key = backing.get("portgroup_key")
    if portgroup_key:
        return dvs_index.get(portgroup_key)
    return backing.get("network_name")


def generate_network_env(
    devices: Iterable[VirtualDevice],
    networks: Mapping[str, Dict[str, Any]],
    dvs_index: Mapping[str, str],
) -> Dict[str, Dict[str, Any]]:
    """Annotate each requested network with the MAC of the NIC attached to it.

    Args:
        devices: Device inventory of the cloned VM
        networks: Requested networks keyed by logical name
        dvs_index: Distributed portgroup key to platform network name

    Returns:
        Copy of ``networks`` where every entry carries a ``mac`` key.

    Raises:
        CpiError: if no NIC of the VM is attached to a requested network.
    """
    nics: Dict[str, List[VirtualDevice]] = {}
    for device in devices:
        if device.kind != DeviceKind.ETHERNET:
            continue
        network_name = _nic_network_name(device, dvs_index)
        nics.setdefault(network_name, []).append(device)

    network_env: Dict[str, Dict[str, Any]] = {}
    for name, network in networks.items():
        entry = copy.deepcopy(dict(network))
        platform_network = entry["cloud_properties"]["name"]
        attached = nics.get(platform_network)
        if not attached:
            raise CpiError(
                f"No NIC attached to network '{platform_network}' for '{name}'"
            )
        nic = attached.pop()
        entry["mac"] = nic.mac_address
        network_env[name] = entry

    return network_env


def generate_disk_env(system_disk: VirtualDevice, ephemeral_disk: VirtualDevice) -> Dict[str, Any]:
    """Describe where the agent finds its disks."""
    return {
        "system": str(system_disk.unit_number),
        "ephemeral": str(ephemeral_disk.unit_number),
        "persistent": {},
    }


def generate_agent_env(
    name: str,
    vm_id: str,
    agent_id: Optional[str],
    network_env: Dict[str, Any],
    disk_env: Dict[str, Any],
    config: Optional[Settings] = None,
) -> Dict[str, Any]:
    """Compose the full agent environment for a new VM."""
    config = config or settings

    env: Dict[str, Any] = {
        "vm": {"name": name, "id": vm_id},
        "agent_id": agent_id,
        "networks": network_env,
        "disks": disk_env,
    }

    if config.agent_mbus_url:
        env["mbus"] = config.agent_mbus_url

    ntp_servers = config.get_ntp_servers_list()
    if ntp_servers:
        env["ntp"] = ntp_servers

    if config.agent_blobstore_provider:
        env["blobstore"] = {"provider": config.agent_blobstore_provider}

    logger.debug(
        "Generated agent env for VM '%s' with %d networks", name, len(network_env)
    )
    return env
