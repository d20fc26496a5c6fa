"""Backfill of VM and disk records created by older releases."""
from __future__ import annotations

import copy
import logging
import math
import re
from collections.abc import Mapping
from typing import Any, Dict, Optional

from ..core.models import InstanceRecord, VMRecord
from .record_store import RecordStore

logger = logging.getLogger(__name__)

_LEADING_INTEGER = re.compile(r"\s*([-+]?\d+)")


def coerce_disk_size(value: Any) -> int:
    """Interpret a reported persistent disk size, defaulting to 0."""

    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else 0
    match = _LEADING_INTEGER.match(str(value))
    return int(match.group(1)) if match else 0


def scrub_release_fields(state: Mapping) -> Dict[str, Any]:
    """Return a copy of ``state`` without release information.

    Release membership is tracked by release binding and must not take part
    in state comparisons.
    """

    scrubbed = copy.deepcopy(dict(state))
    scrubbed.pop("release", None)
    job = scrubbed.get("job")
    if isinstance(job, dict):
        job.pop("release", None)
    return scrubbed


class LegacyStateMigrator:
    """Idempotently upgrade records to the current representation."""

    def __init__(self, store: RecordStore):
        self._store = store

    def migrate(
        self, vm: VMRecord, instance: Optional[InstanceRecord], state: Mapping
    ) -> Dict[str, Any]:
        """Backfill missing fields from a verified state and return the scrubbed state."""

        # VMs created before apply specs were persisted on apply
        if vm.apply_spec is None:
            logger.debug("Persisting reported state as apply spec for VM %s", vm.cid)
            self._store.update_vm(vm.id, apply_spec=copy.deepcopy(dict(state)))

        if instance is not None and instance.persistent_disk_id is not None:
            self._backfill_disk_size(instance, coerce_disk_size(state.get("persistent_disk")))

        return scrub_release_fields(state)

    def _backfill_disk_size(self, instance: InstanceRecord, disk_size: int) -> None:
        # Disks created before the size was tracked are recorded as 0
        if disk_size <= 0:
            return
        disk = self._store.get_persistent_disk(instance.persistent_disk_id)
        if disk is None or disk.size != 0:
            return
        logger.info(
            "Backfilling persistent disk %s of %s with reported size %d",
            disk.disk_cid,
            instance.label,
            disk_size,
        )
        self._store.update_persistent_disk(disk.id, size=disk_size)


__all__ = ["LegacyStateMigrator", "coerce_disk_size", "scrub_release_fields"]
