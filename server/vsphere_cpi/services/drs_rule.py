"""DRS anti-affinity rule enforcement."""
from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional

from ..core.config import DRS_LOCK_FIELD_NAME, DRS_RULE_FIELD_NAME, Settings, settings
from ..core.errors import DrsLockTimeout, PlatformTaskFailure
from ..core.interfaces import PlatformClient, PropertyReader
from ..core.platform_specs import (
    AntiAffinityRule,
    ClusterRuleChange,
    CreateCustomFieldTask,
    ReconfigureClusterTask,
    RemoveCustomFieldTask,
    RuleOperation,
    SetCustomValueTask,
)

logger = logging.getLogger(__name__)

CLUSTER_TYPE = "ClusterComputeResource"
VM_TYPE = "VirtualMachine"
DUPLICATE_NAME_FAULT = "DuplicateName"

_rule_locks: Dict[str, threading.Lock] = {}
_rule_locks_guard = threading.Lock()


def _process_lock(rule_name: str) -> threading.Lock:
    with _rule_locks_guard:
        if rule_name not in _rule_locks:
            _rule_locks[rule_name] = threading.Lock()
        return _rule_locks[rule_name]


class DrsLock:
    """Cluster-wide lock shared by every CPI process talking to the platform.

    Holding the lock means owning the ``drs_lock`` custom field definition:
    creating it fails with ``DuplicateName`` while another holder exists.
    """

    def __init__(
        self,
        client: PlatformClient,
        config: Optional[Settings] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._settings = config or settings
        self._sleep = sleep
        self._clock = clock

    @contextmanager
    def hold(self) -> Iterator[None]:
        self._acquire()
        try:
            yield
        except BaseException:
            self._release(raise_errors=False)
            raise
        else:
            self._release()

    def _acquire(self) -> None:
        timeout = self._settings.drs_lock_timeout_seconds
        deadline = self._clock() + timeout
        while True:
            logger.debug("Acquiring DRS lock")
            try:
                self._run(CreateCustomFieldTask(name=DRS_LOCK_FIELD_NAME))
                logger.debug("Acquired DRS lock")
                return
            except PlatformTaskFailure as exc:
                if exc.fault != DUPLICATE_NAME_FAULT:
                    raise
            if self._clock() >= deadline:
                raise DrsLockTimeout(timeout)
            self._sleep(self._settings.drs_lock_poll_interval_seconds)

    def _release(self, raise_errors: bool = True) -> None:
        logger.debug("Releasing DRS lock")
        try:
            self._run(RemoveCustomFieldTask(name=DRS_LOCK_FIELD_NAME))
        except PlatformTaskFailure:
            logger.exception("Failed to release DRS lock")
            if raise_errors:
                raise

    def _run(self, spec: Any) -> Any:
        task = self._client.submit_task(spec)
        return self._client.await_task(task, timeout=self._settings.task_timeout_seconds)


class DrsRule:
    """A named 'separate VMs' rule on a cluster.

    VMs join the rule by carrying the rule name in their ``drs_rule`` custom
    attribute. The platform rule itself needs at least two members, so it is
    created once a second VM is tagged and afterwards kept equal to the set of
    tagged VMs. Adding the same VM again leaves the membership unchanged.
    """

    def __init__(
        self,
        rule_name: str,
        client: PlatformClient,
        property_reader: PropertyReader,
        cluster_mob: Any,
        logger: Optional[logging.Logger] = None,
        config: Optional[Settings] = None,
        lock: Optional[DrsLock] = None,
    ) -> None:
        self.rule_name = rule_name
        self._client = client
        self._property_reader = property_reader
        self._cluster_mob = cluster_mob
        self._logger = logger or logging.getLogger(__name__)
        self._settings = config or settings
        self._lock = lock or DrsLock(client, self._settings)

    def add_vm(self, vm_mob: Any) -> None:
        with _process_lock(self.rule_name), self._lock.hold():
            self._tag_vm(vm_mob)

            members = self._tagged_vms()
            if vm_mob not in members:
                members.append(vm_mob)

            if len(members) < 2:
                self._logger.info(
                    "DRS rule %s has a single member; it will be created when a second VM joins",
                    self.rule_name,
                )
                return

            rule = self._find_rule()
            if rule is None:
                self._logger.info(
                    "Creating DRS rule %s with %d VMs", self.rule_name, len(members)
                )
                change = ClusterRuleChange(
                    operation=RuleOperation.ADD,
                    rule=AntiAffinityRule(name=self.rule_name, vms=members),
                )
            else:
                if len(rule.vms) == len(members) and all(vm in rule.vms for vm in members):
                    self._logger.debug("DRS rule %s already up to date", self.rule_name)
                    return
                self._logger.info(
                    "Updating DRS rule %s to %d VMs", self.rule_name, len(members)
                )
                change = ClusterRuleChange(
                    operation=RuleOperation.EDIT,
                    rule=AntiAffinityRule(
                        name=self.rule_name,
                        key=rule.key,
                        vms=members,
                        enabled=rule.enabled,
                    ),
                )

            self._run(ReconfigureClusterTask(cluster=self._cluster_mob, rules=[change]))

    def _tag_vm(self, vm_mob: Any) -> None:
        try:
            self._run(CreateCustomFieldTask(name=DRS_RULE_FIELD_NAME, managed_type=VM_TYPE))
        except PlatformTaskFailure as exc:
            if exc.fault != DUPLICATE_NAME_FAULT:
                raise
        self._run(
            SetCustomValueTask(entity=vm_mob, key=DRS_RULE_FIELD_NAME, value=self.rule_name)
        )

    def _tagged_vms(self) -> List[Any]:
        members: List[Any] = []
        vms = self._property_reader.get_property(self._cluster_mob, CLUSTER_TYPE, "vm") or []
        for vm in vms:
            custom_values = self._property_reader.get_property(vm, VM_TYPE, "customValue") or {}
            if custom_values.get(DRS_RULE_FIELD_NAME) == self.rule_name and vm not in members:
                members.append(vm)
        return members

    def _find_rule(self) -> Optional[AntiAffinityRule]:
        rules = self._property_reader.get_property(
            self._cluster_mob, CLUSTER_TYPE, "configurationEx.rule", ensure_all=True
        ) or []
        for rule in rules:
            if rule.name == self.rule_name:
                return rule
        return None

    def _run(self, spec: Any) -> Any:
        task = self._client.submit_task(spec)
        return self._client.await_task(task, timeout=self._settings.task_timeout_seconds)
