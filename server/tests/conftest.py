"""Test configuration for server test suite."""

import os

import pytest

# Keep the host's environment from leaking into Settings() built by tests
for _name in ("INVENTORY_PATH", "DATACENTER_NAME", "CLUSTERS", "DEBUG"):
    os.environ.pop(_name, None)

from fakes import World, build_world  # noqa: E402


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def world() -> World:
    """A fresh fake datacenter with one cluster, one stemcell and two networks."""
    return build_world()


@pytest.fixture
def config(world):
    return world.settings
