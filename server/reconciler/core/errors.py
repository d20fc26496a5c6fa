"""Errors raised while reconciling recorded VM state with live agent state."""
from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:  # pragma: no cover - only for type hints
    from ..services.current_state_service import StateFetchFailure


class ReconciliationError(RuntimeError):
    """Base class for per-VM inconsistencies that stop a deploy."""

    kind = "reconciliation_error"

    def __init__(
        self,
        message: str,
        *,
        vm_cid: Optional[str] = None,
        instance: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.vm_cid = vm_cid
        self.instance = instance


class OutOfSyncInstanceVmError(ReconciliationError):
    """VM and its owning instance belong to different deployments."""

    kind = "out_of_sync_instance_vm"


class InvalidAgentStateFormatError(ReconciliationError):
    """Agent returned a state that is not a mapping."""

    kind = "invalid_agent_state_format"


class WrongDeploymentError(ReconciliationError):
    """Agent reports a different deployment than the one being deployed."""

    kind = "wrong_deployment"


class UnexpectedJobError(ReconciliationError):
    """Agent reports a job although the VM has no instance in the database."""

    kind = "unexpected_job"


class JobMismatchError(ReconciliationError):
    """Agent reports a job/index that disagrees with the database."""

    kind = "job_mismatch"


class RenameInProgressError(ReconciliationError):
    """Agent still reports the old name of an interrupted rename."""

    kind = "rename_in_progress"


class AgentTransportError(ReconciliationError):
    """Agent could not be reached or did not answer."""

    kind = "transport_error"


class LegacyMigrationError(ReconciliationError):
    """Records could not be upgraded from a verified agent state."""

    kind = "legacy_migration_failed"


class StateCollectionError(ReconciliationError):
    """One or more agents failed to report a verified state."""

    kind = "state_collection_failed"

    def __init__(self, failures: List["StateFetchFailure"]):
        details = "; ".join(
            f"{failure.instance.label} ({failure.vm_cid}): {failure.error.message}"
            for failure in failures
        )
        super().__init__(
            f"Failed to collect current state for {len(failures)} instance(s): {details}"
        )
        self.failures = failures


class RecordNotFoundError(LookupError):
    """Raised when updating a record that does not exist."""

    def __init__(self, record_type: str, record_id: int):
        super().__init__(f"{record_type} {record_id} does not exist")
        self.record_type = record_type
        self.record_id = record_id
