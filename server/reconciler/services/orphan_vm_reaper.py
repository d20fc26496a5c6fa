"""Deletion of VMs that no instance owns."""
from __future__ import annotations

import logging
from typing import Iterable, List, Protocol

from ..core.models import VMRecord
from .record_store import RecordStore

logger = logging.getLogger(__name__)


class DeletionScheduler(Protocol):
    """Collects VMs to be deleted by the deploy step."""

    def mark_vm_for_deletion(self, vm: VMRecord) -> None: ...


class OrphanVmReaper:
    """Mark VMs without an owning instance for deletion.

    Such VMs predate global networking and hold no network reservations, so
    no IPs are released for them.
    """

    def __init__(self, store: RecordStore, scheduler: DeletionScheduler):
        self._store = store
        self._scheduler = scheduler

    def find_orphans(self, vms: Iterable[VMRecord]) -> List[VMRecord]:
        return [
            vm
            for vm in vms
            if vm.instance_id is None or self._store.get_instance(vm.instance_id) is None
        ]

    def reap(self, deployment_id: int) -> List[VMRecord]:
        orphans = self.find_orphans(self._store.list_vms(deployment_id))
        for vm in orphans:
            logger.debug("Marking VM %s for deletion", vm.cid)
            self._scheduler.mark_vm_for_deletion(vm)
        return orphans


__all__ = ["DeletionScheduler", "OrphanVmReaper"]
