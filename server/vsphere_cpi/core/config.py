"""Configuration management using Pydantic settings."""

from typing import List, Optional, TYPE_CHECKING

from pydantic_settings import BaseSettings


# Custom field names used on the platform side. They are fixed so that every
# CPI process sharing a vCenter agrees on them.
DRS_LOCK_FIELD_NAME = "drs_lock"
DRS_RULE_FIELD_NAME = "drs_rule"
EPHEMERAL_DISK_NAME = "ephemeral_disk"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application settings
    app_name: str = "vSphere CPI"
    debug: bool = False

    # Inventory settings
    datacenter_name: str = ""
    vm_folder: str = "vms"
    template_folder: str = "templates"
    inventory_path: Optional[str] = None  # YAML or JSON cluster inventory
    clusters: str = ""  # Comma-separated fallback when no inventory file is set

    # Placement settings
    memory_headroom_mb: int = 128  # Memory kept free on every cluster
    disk_headroom_mb: int = 1024  # Space kept free on every datastore

    # Provisioning settings
    vm_name_prefix: str = "vm-"
    task_timeout_seconds: float = 900.0  # 15 minutes for clone/reconfigure tasks
    create_vm_concurrency: int = 6  # Maximum concurrent create_vm calls

    # DRS lock settings
    drs_lock_timeout_seconds: float = 30.0
    drs_lock_poll_interval_seconds: float = 1.0

    # Agent environment settings
    agent_env_extra_config_key: str = "guestinfo.bosh.env"
    agent_mbus_url: Optional[str] = None
    agent_ntp_servers: str = ""  # Comma-separated list of NTP servers
    agent_blobstore_provider: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = False

    def get_clusters_list(self) -> List[str]:
        """Parse comma-separated cluster list."""
        if not self.clusters:
            return []
        return [c.strip() for c in self.clusters.split(",") if c.strip()]

    def get_ntp_servers_list(self) -> List[str]:
        """Parse comma-separated NTP server list."""
        if not self.agent_ntp_servers:
            return []
        return [s.strip() for s in self.agent_ntp_servers.split(",") if s.strip()]


settings = Settings()


if TYPE_CHECKING:  # pragma: no cover - only for type hints
    from .config_validation import ConfigValidationResult

# Cache of the configuration validation result so it can be reused across modules
_config_validation_result: Optional["ConfigValidationResult"] = None


def set_config_validation_result(result: "ConfigValidationResult") -> None:
    """Persist the configuration validation result for reuse."""

    global _config_validation_result
    _config_validation_result = result


def get_config_validation_result() -> Optional["ConfigValidationResult"]:
    """Return the cached configuration validation result, if available."""

    return _config_validation_result
