"""Service writing the agent environment into a VM's metadata store."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from ..core.config import Settings, settings
from ..core.errors import PlatformTaskFailure
from ..core.interfaces import PlatformClient
from ..core.models import VmLocation
from ..core.platform_specs import ReconfigureVmTask, VmConfigSpec

logger = logging.getLogger(__name__)

ENV_FILE_NAME = "env.json"


class AgentEnv:
    """Inject the machine environment the in-guest agent boots from.

    The environment is stored twice: as ``env.json`` in the VM's folder on its
    datastore, and in the VM's extra config under
    ``settings.agent_env_extra_config_key`` where the guest reads it.
    """

    def __init__(self, client: PlatformClient, config: Optional[Settings] = None) -> None:
        self._client = client
        self._settings = config or settings

    @staticmethod
    def env_path(location: VmLocation) -> str:
        return f"{location.vm}/{ENV_FILE_NAME}"

    def set_env(self, vm_mob: Any, location: VmLocation, env: Dict[str, Any]) -> None:
        payload = json.dumps(env, sort_keys=True)

        logger.info("Writing agent env for VM %s to [%s]", location.vm, location.datastore)
        try:
            self._client.upload_file(
                location.datacenter,
                location.datastore,
                self.env_path(location),
                payload.encode("utf-8"),
            )
        except PlatformTaskFailure:
            raise
        except Exception as exc:
            raise PlatformTaskFailure(
                "upload_env",
                f"Failed to upload agent env for VM {location.vm}: {exc}",
            ) from exc

        config = VmConfigSpec(
            extra_config={self._settings.agent_env_extra_config_key: payload}
        )
        task = self._client.submit_task(ReconfigureVmTask(vm=vm_mob, config=config))
        self._client.await_task(task, timeout=self._settings.task_timeout_seconds)

    def get_current_env(self, location: VmLocation) -> Optional[Dict[str, Any]]:
        """Read back the environment stored for a VM, if any."""
        contents = self._client.download_file(
            location.datacenter, location.datastore, self.env_path(location)
        )
        if contents is None:
            return None
        return json.loads(contents.decode("utf-8"))
