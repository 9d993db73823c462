"""Tests: Agent Environment Builder

This test suite validates the machine environment handed to the in-guest
agent after boot.

Tests cover:
1. Network env: MAC annotation for standard and distributed portgroups
2. Disk env: system and ephemeral unit numbers
3. Agent env: identity fields and optional agent settings
"""
import pytest

from vsphere_cpi.core.agent_env_builder import (
    generate_agent_env,
    generate_disk_env,
    generate_network_env,
)
from vsphere_cpi.core.config import Settings
from vsphere_cpi.core.errors import CpiError
from vsphere_cpi.core.platform_specs import DeviceKind, VirtualDevice


def create_nic(key: int, mac: str, **backing) -> VirtualDevice:
    """Helper to create an ethernet device with the given backing."""
    return VirtualDevice(
        kind=DeviceKind.ETHERNET,
        key=key,
        controller_key=100,
        mac_address=mac,
        backing=backing,
    )


def create_disk(key: int, unit_number: int) -> VirtualDevice:
    return VirtualDevice(kind=DeviceKind.DISK, key=key, controller_key=1000, unit_number=unit_number)


class TestNetworkEnv:
    """Test MAC annotation of requested networks."""

    def test_standard_portgroup(self):
        """NICs on standard portgroups are matched by network name."""
        networks = {
            "default": {"ip": "10.0.0.5", "cloud_properties": {"name": "net-a"}},
        }
        devices = [create_nic(4001, "00:50:56:00:00:01", network_name="net-a")]

        env = generate_network_env(devices, networks, {})

        assert env["default"]["mac"] == "00:50:56:00:00:01"
        assert env["default"]["ip"] == "10.0.0.5"
        # Request is not mutated
        assert "mac" not in networks["default"]

    def test_distributed_portgroup(self):
        """NICs on distributed portgroups are matched through the dvs index."""
        networks = {"private": {"cloud_properties": {"name": "dvpg-private"}}}
        devices = [
            create_nic(4001, "00:50:56:00:00:02", switch_uuid="dvs-1", portgroup_key="dvportgroup-7")
        ]

        env = generate_network_env(devices, networks, {"dvportgroup-7": "dvpg-private"})

        assert env["private"]["mac"] == "00:50:56:00:00:02"

    def test_two_networks_on_same_portgroup_get_distinct_nics(self):
        networks = {
            "a": {"cloud_properties": {"name": "net-a"}},
            "b": {"cloud_properties": {"name": "net-a"}},
        }
        devices = [
            create_nic(4001, "00:50:56:00:00:01", network_name="net-a"),
            create_nic(4002, "00:50:56:00:00:02", network_name="net-a"),
        ]

        env = generate_network_env(devices, networks, {})

        assert {env["a"]["mac"], env["b"]["mac"]} == {"00:50:56:00:00:01", "00:50:56:00:00:02"}

    def test_missing_nic_raises(self):
        networks = {"default": {"cloud_properties": {"name": "net-b"}}}
        devices = [
            create_nic(4001, "00:50:56:00:00:01", network_name="net-a"),
            create_disk(2000, 0),
        ]

        with pytest.raises(CpiError, match="net-b"):
            generate_network_env(devices, networks, {})


class TestDiskEnv:
    def test_unit_numbers_are_strings(self):
        env = generate_disk_env(create_disk(2000, 0), create_disk(-1, 1))

        assert env == {"system": "0", "ephemeral": "1", "persistent": {}}


class TestAgentEnv:
    """Test composition of the full agent environment."""

    def test_minimal_agent_env(self):
        config = Settings(agent_mbus_url=None, agent_ntp_servers="", agent_blobstore_provider=None)

        env = generate_agent_env("vm-1", "uuid-1", "agent-1", {}, {"system": "0"}, config)

        assert env == {
            "vm": {"name": "vm-1", "id": "uuid-1"},
            "agent_id": "agent-1",
            "networks": {},
            "disks": {"system": "0"},
        }

    def test_agent_settings_included_when_configured(self):
        config = Settings(
            agent_mbus_url="nats://nats:4222",
            agent_ntp_servers="0.pool.ntp.org,1.pool.ntp.org",
            agent_blobstore_provider="dav",
        )

        env = generate_agent_env("vm-1", "uuid-1", None, {}, {}, config)

        assert env["agent_id"] is None
        assert env["mbus"] == "nats://nats:4222"
        assert env["ntp"] == ["0.pool.ntp.org", "1.pool.ntp.org"]
        assert env["blobstore"] == {"provider": "dav"}
