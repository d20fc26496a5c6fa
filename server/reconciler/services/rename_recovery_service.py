"""Resumption of job renames interrupted by a crash."""
from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from ..core.models import InstanceRecord, RenameIntent, RenameState
from .record_store import RecordStore

logger = logging.getLogger(__name__)


class RenameRecoveryService:
    """Apply the plan's rename intent to instance records.

    Renaming is idempotent: instances already carrying the new name no longer
    match the old one. Agents that still report the old name afterwards are
    caught by the ``job_identity`` state check.
    """

    def __init__(self, store: RecordStore, rename: Optional[RenameIntent]):
        self._store = store
        self.rename = rename

    @property
    def active(self) -> bool:
        return bool(self.rename and self.rename.old_name and self.rename.new_name)

    def rename_state(self, instances: Iterable[InstanceRecord]) -> RenameState:
        if not self.active:
            return RenameState.NOT_RENAMING
        if any(instance.job == self.rename.old_name for instance in instances):
            return RenameState.RENAME_REQUESTED
        return RenameState.RENAME_APPLIED

    def recover(self, instances: Iterable[InstanceRecord]) -> List[InstanceRecord]:
        """Rename every instance still carrying the old job name."""

        instances = list(instances)
        before = self.rename_state(instances)
        if before is RenameState.NOT_RENAMING:
            return []

        old_name = self.rename.old_name
        new_name = self.rename.new_name
        renamed: List[InstanceRecord] = []
        for instance in instances:
            if instance.job != old_name:
                continue
            logger.info("Renaming '%s' to '%s' (%s)", old_name, new_name, instance.label)
            renamed.append(self._store.update_instance(instance.id, job=new_name))

        logger.info(
            "Rename '%s' to '%s': %s -> %s",
            old_name,
            new_name,
            before.value,
            RenameState.RENAME_APPLIED.value,
        )
        return renamed


__all__ = ["RenameRecoveryService"]
