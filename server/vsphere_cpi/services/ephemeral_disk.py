"""Ephemeral disk descriptor for newly created VMs."""
from __future__ import annotations

import itertools
from typing import Iterator, Optional

from ..core.config import EPHEMERAL_DISK_NAME
from ..core.models import Datastore
from ..core.platform_specs import (
    DeviceChange,
    DeviceKind,
    DeviceOperation,
    DiskMode,
    FileOperation,
    VirtualDevice,
)

# Temporary keys for devices that do not exist yet; the platform assigns the real ones.
NEW_DEVICE_KEY = -1


def new_device_keys() -> Iterator[int]:
    """Distinct temporary keys, one per device added in the same change set."""
    return itertools.count(NEW_DEVICE_KEY, -1)


class EphemeralDisk:
    """Thin, independent-persistent scratch disk stored next to the VM."""

    def __init__(self, size_in_mb: int, folder_name: str, datastore: Datastore) -> None:
        self.size_in_mb = size_in_mb
        self.folder_name = folder_name
        self.datastore = datastore

    @property
    def path(self) -> str:
        return f"[{self.datastore.name}] {self.folder_name}/{EPHEMERAL_DISK_NAME}.vmdk"

    def create_spec(
        self, controller_key: Optional[int] = None, key: int = NEW_DEVICE_KEY
    ) -> DeviceChange:
        device = VirtualDevice(
            kind=DeviceKind.DISK,
            key=key,
            controller_key=controller_key,
            label=EPHEMERAL_DISK_NAME,
            capacity_mb=self.size_in_mb,
            backing={
                "file_name": self.path,
                "datastore": self.datastore.mob,
                "disk_mode": DiskMode.INDEPENDENT_PERSISTENT.value,
                "thin_provisioned": True,
            },
        )
        return DeviceChange(
            operation=DeviceOperation.ADD,
            device=device,
            file_operation=FileOperation.CREATE,
        )
