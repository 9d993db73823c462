# Vulture whitelist file
# This file contains false positives that vulture incorrectly flags as dead code.
# These are typically Pydantic fields and validators, protocol members, pytest fixtures, etc.
#
# Usage: python3 -m vulture server vulture_whitelist.py

# =============================================================================
# Pydantic Model Fields (read from cloud properties and inventory files)
# =============================================================================
# These fields are populated from manifest/inventory data and read by name.

_.ram  # models.py - VmCloudProperties
_.datacenters  # models.py - VmCloudProperties
_.datastore_pattern  # models.py - ClusterInventoryEntry
_.total_space_mb  # models.py - Datastore capacity snapshot

# =============================================================================
# Pydantic model_config (ConfigDict for Pydantic v2 configuration)
# =============================================================================
_.model_config  # Pydantic V2 configuration attribute

# =============================================================================
# Pydantic Validators (called by Pydantic during model validation)
# =============================================================================
_.validate_single_cluster_per_entry  # DatacenterPlacement validator
_.validate_network_cloud_properties  # CreateVmRequest validator

# =============================================================================
# Pydantic settings Config class
# =============================================================================
Config  # config.py - Pydantic settings class
_.env_file  # Pydantic settings configuration
_.case_sensitive  # Pydantic settings configuration
_.app_name  # config.py - reported by the embedding process

# =============================================================================
# Platform descriptor fields (translated by the PlatformClient transport)
# =============================================================================
_.start_connected  # platform_specs.py - VirtualDevice
_.description  # platform_specs.py - CreateSnapshotTask
_.memory  # platform_specs.py - CreateSnapshotTask
_.quiesce  # platform_specs.py - CreateSnapshotTask
_.managed_type  # platform_specs.py - CreateCustomFieldTask
CDROM  # platform_specs.py - DeviceKind
OTHER  # platform_specs.py - DeviceKind
EDIT  # platform_specs.py - DeviceOperation
DESTROY  # platform_specs.py - FileOperation
PERSISTENT  # platform_specs.py - DiskMode
REMOVE  # platform_specs.py - RuleOperation

# =============================================================================
# Protocol members (implemented by the transport outside this package)
# =============================================================================
_.get_properties  # interfaces.py - PropertyReader
_.download_file  # interfaces.py - PlatformClient

# =============================================================================
# Public entry points (called by the embedding process)
# =============================================================================
configure_logging  # logging_config.py
build_cloud_service  # cloud_service.py
_.get_current_env  # agent_env.py - AgentEnv

# =============================================================================
# Pytest Fixtures (discovered by pytest at runtime by name)
# =============================================================================
anyio_backend  # pytest-anyio fixture for async test backend configuration
restore_config_validation  # pytest fixture for restoring config validation state
