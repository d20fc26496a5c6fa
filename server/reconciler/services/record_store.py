"""Access to the persisted deployment, VM, instance and disk records.

Records are immutable values that reference each other by identifier. The
store resolves those identifiers and hands back updated copies whenever a
record changes, so callers never hold live references into storage.
"""
from __future__ import annotations

import itertools
import logging
import threading
from typing import Any, Dict, List, Optional, Protocol

from ..core.errors import RecordNotFoundError
from ..core.models import (
    DeploymentRecord,
    InstanceRecord,
    PersistentDiskRecord,
    VMRecord,
)

logger = logging.getLogger(__name__)


class RecordStore(Protocol):
    """Lookup and update interface used by the reconciliation services."""

    def get_deployment_by_name(self, name: str) -> Optional[DeploymentRecord]: ...

    def get_vm(self, vm_id: int) -> Optional[VMRecord]: ...

    def get_instance(self, instance_id: int) -> Optional[InstanceRecord]: ...

    def get_persistent_disk(self, disk_id: int) -> Optional[PersistentDiskRecord]: ...

    def list_vms(self, deployment_id: int) -> List[VMRecord]: ...

    def list_instances(self, deployment_id: int) -> List[InstanceRecord]: ...

    def update_vm(self, vm_id: int, **changes: Any) -> VMRecord: ...

    def update_instance(self, instance_id: int, **changes: Any) -> InstanceRecord: ...

    def update_persistent_disk(self, disk_id: int, **changes: Any) -> PersistentDiskRecord: ...


class InMemoryRecordStore:
    """Thread-safe in-process record store.

    Backs development data and tests. Updates may arrive from worker threads,
    so every access goes through a single lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self.deployments: Dict[int, DeploymentRecord] = {}
        self.vms: Dict[int, VMRecord] = {}
        self.instances: Dict[int, InstanceRecord] = {}
        self.persistent_disks: Dict[int, PersistentDiskRecord] = {}

    # Creation helpers

    def create_deployment(self, name: str) -> DeploymentRecord:
        with self._lock:
            record = DeploymentRecord(id=next(self._ids), name=name)
            self.deployments[record.id] = record
        return record

    def create_vm(
        self,
        deployment: DeploymentRecord,
        cid: str,
        agent_id: str,
        apply_spec: Optional[Dict[str, Any]] = None,
    ) -> VMRecord:
        with self._lock:
            record = VMRecord(
                id=next(self._ids),
                cid=cid,
                agent_id=agent_id,
                deployment_id=deployment.id,
                apply_spec=apply_spec,
            )
            self.vms[record.id] = record
        return record

    def create_instance(
        self, deployment: DeploymentRecord, job: str, index: int
    ) -> InstanceRecord:
        with self._lock:
            record = InstanceRecord(
                id=next(self._ids),
                deployment_id=deployment.id,
                job=job,
                index=index,
            )
            self.instances[record.id] = record
        return record

    def create_persistent_disk(
        self, instance: InstanceRecord, disk_cid: str, size: int = 0
    ) -> PersistentDiskRecord:
        with self._lock:
            if instance.id not in self.instances:
                raise RecordNotFoundError("Instance", instance.id)
            record = PersistentDiskRecord(
                id=next(self._ids),
                instance_id=instance.id,
                disk_cid=disk_cid,
                size=size,
            )
            self.persistent_disks[record.id] = record
            self.instances[instance.id] = self.instances[instance.id].model_copy(
                update={"persistent_disk_id": record.id}
            )
        return record

    def attach_vm(self, instance_id: int, vm_id: int) -> InstanceRecord:
        """Link an instance and a VM on both sides of the reference."""

        with self._lock:
            instance = self._require(self.instances, "Instance", instance_id)
            vm = self._require(self.vms, "VM", vm_id)
            self.vms[vm_id] = vm.model_copy(update={"instance_id": instance_id})
            instance = instance.model_copy(update={"vm_id": vm_id})
            self.instances[instance_id] = instance
        return instance

    def delete_vm(self, vm_id: int) -> None:
        with self._lock:
            vm = self.vms.pop(vm_id, None)
            if vm is None:
                return
            for instance_id, instance in list(self.instances.items()):
                if instance.vm_id == vm_id:
                    self.instances[instance_id] = instance.model_copy(update={"vm_id": None})

    # Lookups

    def get_deployment_by_name(self, name: str) -> Optional[DeploymentRecord]:
        with self._lock:
            return next(
                (record for record in self.deployments.values() if record.name == name),
                None,
            )

    def get_vm(self, vm_id: int) -> Optional[VMRecord]:
        with self._lock:
            return self.vms.get(vm_id)

    def get_instance(self, instance_id: int) -> Optional[InstanceRecord]:
        with self._lock:
            return self.instances.get(instance_id)

    def get_persistent_disk(self, disk_id: int) -> Optional[PersistentDiskRecord]:
        with self._lock:
            return self.persistent_disks.get(disk_id)

    def list_vms(self, deployment_id: int) -> List[VMRecord]:
        with self._lock:
            return [vm for vm in self.vms.values() if vm.deployment_id == deployment_id]

    def list_instances(self, deployment_id: int) -> List[InstanceRecord]:
        with self._lock:
            return [
                instance
                for instance in self.instances.values()
                if instance.deployment_id == deployment_id
            ]

    # Updates

    def update_vm(self, vm_id: int, **changes: Any) -> VMRecord:
        return self._update(self.vms, "VM", vm_id, changes)

    def update_instance(self, instance_id: int, **changes: Any) -> InstanceRecord:
        return self._update(self.instances, "Instance", instance_id, changes)

    def update_persistent_disk(self, disk_id: int, **changes: Any) -> PersistentDiskRecord:
        return self._update(self.persistent_disks, "PersistentDisk", disk_id, changes)

    def _update(self, table: Dict[int, Any], record_type: str, record_id: int, changes: Dict[str, Any]):
        with self._lock:
            current = self._require(table, record_type, record_id)
            updated = current.model_copy(update=changes)
            table[record_id] = updated
        logger.debug("Updated %s %s: %s", record_type, record_id, sorted(changes))
        return updated

    @staticmethod
    def _require(table: Dict[int, Any], record_type: str, record_id: int):
        record = table.get(record_id)
        if record is None:
            raise RecordNotFoundError(record_type, record_id)
        return record


__all__ = ["RecordStore", "InMemoryRecordStore"]
