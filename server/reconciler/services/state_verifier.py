"""Verification of live agent state against the VM and instance records.

Checks run in a fixed order and the first failing one wins; later checks
assume everything before them held (e.g. only ``state_format`` guards field
access on the reported state).
"""
from __future__ import annotations

import logging
import pprint
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple

from ..core.errors import (
    InvalidAgentStateFormatError,
    JobMismatchError,
    OutOfSyncInstanceVmError,
    ReconciliationError,
    RenameInProgressError,
    UnexpectedJobError,
    WrongDeploymentError,
)
from ..core.models import InstanceRecord, RenameIntent, VMRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StateContext:
    """Everything a single check may look at."""

    vm: VMRecord
    instance: Optional[InstanceRecord]
    state: Any
    deployment_name: str
    rename: Optional[RenameIntent] = None

    @property
    def reported_job(self) -> Optional[str]:
        job = self.state.get("job")
        return job.get("name") if isinstance(job, Mapping) else None

    @property
    def reported_index(self) -> Any:
        return self.state.get("index")


@dataclass(frozen=True)
class StateCheck:
    """Named verification rule returning an error when it does not hold."""

    name: str
    evaluate: Callable[[StateContext], Optional[ReconciliationError]]


def _check_instance_deployment(ctx: StateContext) -> Optional[ReconciliationError]:
    instance = ctx.instance
    if instance is not None and instance.deployment_id != ctx.vm.deployment_id:
        return OutOfSyncInstanceVmError(
            f"VM '{ctx.vm.cid}' and instance '{instance.label}' "
            "don't belong to the same deployment",
            vm_cid=ctx.vm.cid,
            instance=instance.label,
        )
    return None


def _check_state_format(ctx: StateContext) -> Optional[ReconciliationError]:
    if isinstance(ctx.state, Mapping):
        return None
    logger.error("Invalid state for '%s': %s", ctx.vm.cid, pprint.pformat(ctx.state))
    return InvalidAgentStateFormatError(
        f"VM '{ctx.vm.cid}' returns invalid state: "
        f"expected a mapping, got {type(ctx.state).__name__}",
        vm_cid=ctx.vm.cid,
        instance=ctx.instance.label if ctx.instance else None,
    )


def _check_deployment_name(ctx: StateContext) -> Optional[ReconciliationError]:
    actual = ctx.state.get("deployment")
    if actual == ctx.deployment_name:
        return None
    return WrongDeploymentError(
        f"VM '{ctx.vm.cid}' is out of sync: expected to be a part of deployment "
        f"'{ctx.deployment_name}' but is actually a part of deployment '{actual}'",
        vm_cid=ctx.vm.cid,
        instance=ctx.instance.label if ctx.instance else None,
    )


def _check_unexpected_job(ctx: StateContext) -> Optional[ReconciliationError]:
    if ctx.instance is not None or ctx.reported_job is None:
        return None
    return UnexpectedJobError(
        f"VM '{ctx.vm.cid}' is out of sync: it reports itself as "
        f"'{ctx.reported_job}/{ctx.reported_index}' but there is no instance reference in DB",
        vm_cid=ctx.vm.cid,
    )


def _check_job_identity(ctx: StateContext) -> Optional[ReconciliationError]:
    instance = ctx.instance
    if instance is None:
        return None

    actual_job = ctx.reported_job
    actual_index = ctx.reported_index
    if instance.job == actual_job and instance.index == actual_index:
        return None

    rename = ctx.rename
    if (
        rename is not None
        and actual_job == rename.old_name
        and instance.job == rename.new_name
        and instance.index == actual_index
    ):
        # The DB rename happened but the agent was never re-applied.
        if rename.force:
            return None
        return RenameInProgressError(
            f"Found a job '{actual_job}' that seems to be in the middle of a rename "
            f"to '{instance.job}'. Run 'rename' again with '--force' to proceed.",
            vm_cid=ctx.vm.cid,
            instance=instance.label,
        )

    return JobMismatchError(
        f"VM '{ctx.vm.cid}' is out of sync: it reports itself as "
        f"'{actual_job}/{actual_index}' but according to DB it is '{instance.label}'",
        vm_cid=ctx.vm.cid,
        instance=instance.label,
    )


STATE_CHECKS: Tuple[StateCheck, ...] = (
    StateCheck("instance_deployment", _check_instance_deployment),
    StateCheck("state_format", _check_state_format),
    StateCheck("deployment_name", _check_deployment_name),
    StateCheck("unexpected_job", _check_unexpected_job),
    StateCheck("job_identity", _check_job_identity),
)


class StateVerifier:
    """Confirm that an agent describes the VM and deployment the DB expects."""

    def __init__(
        self,
        deployment_name: str,
        rename: Optional[RenameIntent] = None,
        checks: Tuple[StateCheck, ...] = STATE_CHECKS,
    ):
        self.deployment_name = deployment_name
        self.rename = rename
        self.checks = checks

    def evaluate(
        self, vm: VMRecord, instance: Optional[InstanceRecord], state: Any
    ) -> Optional[ReconciliationError]:
        """Return the error of the first failing check, or None."""

        ctx = StateContext(
            vm=vm,
            instance=instance,
            state=state,
            deployment_name=self.deployment_name,
            rename=self.rename,
        )
        for check in self.checks:
            error = check.evaluate(ctx)
            if error is not None:
                logger.debug("VM %s failed state check '%s'", vm.cid, check.name)
                return error
        return None

    def verify(self, vm: VMRecord, instance: Optional[InstanceRecord], state: Any) -> None:
        error = self.evaluate(vm, instance, state)
        if error is not None:
            raise error


__all__ = ["STATE_CHECKS", "StateCheck", "StateContext", "StateVerifier"]
