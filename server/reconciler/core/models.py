"""Data models for the application."""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Dict, Any, List
from datetime import datetime
from enum import Enum


class StateCollectionFailurePolicy(str, Enum):
    """How a failed per-VM state fetch affects the whole collection batch."""
    OMIT = "omit"
    ABORT = "abort"


class RenameState(str, Enum):
    """Progress of a job rename across the instance records of a deployment."""
    NOT_RENAMING = "not_renaming"
    RENAME_REQUESTED = "rename_requested"
    RENAME_APPLIED = "rename_applied"


class EventState(str, Enum):
    """Lifecycle of a tracked event log task."""
    STARTED = "started"
    FINISHED = "finished"
    FAILED = "failed"


class DeploymentRecord(BaseModel):
    """Persisted deployment."""
    model_config = ConfigDict(frozen=True)

    id: int
    name: str


class VMRecord(BaseModel):
    """Persisted virtual machine.

    ``instance_id`` is a weak reference to the owning instance and may be unset
    (or point at a record that no longer exists).
    """
    model_config = ConfigDict(frozen=True)

    id: int
    cid: str = Field(..., description="Infrastructure identifier of the VM")
    agent_id: str
    deployment_id: int
    apply_spec: Optional[Dict[str, Any]] = None  # Last successfully applied state
    instance_id: Optional[int] = None


class InstanceRecord(BaseModel):
    """Persisted job instance (job name + index) within a deployment."""
    model_config = ConfigDict(frozen=True)

    id: int
    deployment_id: int
    job: str
    index: int
    vm_id: Optional[int] = None
    persistent_disk_id: Optional[int] = None

    @property
    def label(self) -> str:
        return f"{self.job}/{self.index}"


class PersistentDiskRecord(BaseModel):
    """Persisted persistent disk. Legacy records carry a size of zero."""
    model_config = ConfigDict(frozen=True)

    id: int
    instance_id: int
    disk_cid: str
    size: int = Field(0, ge=0, description="Disk size in MiB")


class RenameIntent(BaseModel):
    """Operator supplied description of an in-flight job rename."""
    old_name: str = Field(..., min_length=1, description="Job name being renamed")
    new_name: str = Field(..., min_length=1, description="Job name after the rename")
    force: bool = Field(
        False,
        description="Complete a previously interrupted rename even though agents still report the old name",
    )

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {"old_name": "web", "new_name": "frontend", "force": False}
        },
    )


class DeploymentPlan(BaseModel):
    """Deployment plan being prepared for a deploy.

    The plan doubles as the deletion scheduler: VMs marked for deletion are
    collected in ``vms_to_delete`` and handled by the deploy step.
    """
    name: str
    deployment_id: int
    rename: Optional[RenameIntent] = None
    jobs: List[str] = Field(default_factory=list)
    release_names: List[str] = Field(default_factory=list)
    vms_to_delete: List[VMRecord] = Field(default_factory=list)

    def mark_vm_for_deletion(self, vm: VMRecord) -> None:
        if any(existing.id == vm.id for existing in self.vms_to_delete):
            return
        self.vms_to_delete.append(vm)


class Event(BaseModel):
    """Deployment event log entry."""
    id: str
    stage: str
    task: str
    index: int
    total: Optional[int] = None
    state: EventState
    created_at: datetime
    error: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    timestamp: datetime


class ReconcileRequest(BaseModel):
    """Request body for reconciling an existing deployment."""

    rename: Optional[RenameIntent] = None


class CurrentStateEntry(BaseModel):
    """Verified agent state of one instance."""

    instance_id: int
    job: str
    index: int
    vm_cid: str
    state: Dict[str, Any]


class StateFailureEntry(BaseModel):
    """Instance whose agent state could not be collected or verified."""

    instance_id: int
    job: str
    index: int
    vm_cid: str
    kind: str
    message: str


class ReconcileResponse(BaseModel):
    """Outcome of reconciling an existing deployment."""

    deployment: str
    states: List[CurrentStateEntry] = Field(default_factory=list)
    renamed_instances: List[str] = Field(default_factory=list)
    vms_marked_for_deletion: List[str] = Field(default_factory=list)
