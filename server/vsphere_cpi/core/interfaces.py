"""Narrow interfaces of the collaborators the provisioning core calls through.

Implementations live outside this package (session handling, property
collection and task polling belong to the transport). Tests use in-memory
fakes that satisfy these protocols.
"""
from __future__ import annotations

from typing import Any, Dict, Optional, Protocol, Sequence

from .models import PersistentDisk


class PlatformClient(Protocol):
    """Transport/session client of the virtualization API."""

    def resolve_by_path(self, path: Sequence[str]) -> Optional[Any]:
        """Return the platform object at an inventory path, or None."""

    def submit_task(self, spec: Any) -> Any:
        """Submit a task described by a ``platform_specs`` task dataclass."""

    def await_task(self, task: Any, timeout: Optional[float] = None) -> Any:
        """Block until ``task`` completes and return its result.

        Raises ``PlatformTaskFailure`` when the task errors, times out or is
        cancelled.
        """

    def upload_file(self, datacenter: str, datastore: str, path: str, contents: bytes) -> None:
        """Write ``contents`` to ``[datastore] path``."""

    def download_file(self, datacenter: str, datastore: str, path: str) -> Optional[bytes]:
        """Read ``[datastore] path``; None when the file does not exist."""


class PropertyReader(Protocol):
    """Reads properties of platform objects."""

    def get_property(
        self, obj: Any, obj_type: str, path: str, ensure_all: bool = False
    ) -> Any:
        ...

    def get_properties(
        self,
        obj: Any,
        obj_type: str,
        paths: Sequence[str],
        ensure_all: bool = False,
    ) -> Dict[str, Any]:
        ...


class DiskCatalog(Protocol):
    """Lookup of persistent disks known to the director."""

    def find_disk(self, disk_cid: str) -> Optional[PersistentDisk]:
        ...


__all__ = ["PlatformClient", "PropertyReader", "DiskCatalog"]
