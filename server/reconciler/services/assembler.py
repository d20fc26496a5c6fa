"""Population of a deployment plan with the state of the existing deployment.

The assembler owns the reconciliation of existing VMs (current agent state,
orphaned VMs, interrupted renames) and sequences the one-shot binding steps
that other subsystems implement.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..core.config import settings
from ..core.errors import StateCollectionError
from ..core.models import DeploymentPlan, InstanceRecord, VMRecord
from .agent_gateway import AgentGateway
from .agent_task_service import AgentTaskService
from .current_state_service import CollectionOptions, CurrentStateCollector
from .event_log_service import EventLog
from .lock_service import LockService, lock_service as default_lock_service, release_lock_name
from .orphan_vm_reaper import OrphanVmReaper
from .record_store import RecordStore
from .rename_recovery_service import RenameRecoveryService

logger = logging.getLogger(__name__)

PlanStep = Callable[[DeploymentPlan], None]


@dataclass
class DeploymentBinders:
    """Binding steps delegated to the subsystems that own those models."""

    releases: Optional[PlanStep] = None
    stemcells: Optional[PlanStep] = None
    templates: Optional[PlanStep] = None
    properties: Optional[PlanStep] = None
    unallocated_vms: Optional[PlanStep] = None
    instance_networks: Optional[PlanStep] = None
    dns: Optional[PlanStep] = None
    links: Optional[Callable[[DeploymentPlan, str], None]] = None  # called per job


@dataclass
class ExistingDeploymentState:
    """What reconciliation learned about the existing deployment."""

    current_states: Dict[InstanceRecord, Dict[str, Any]] = field(default_factory=dict)
    reaped_vms: List[VMRecord] = field(default_factory=list)
    renamed_instances: List[InstanceRecord] = field(default_factory=list)


class DeploymentAssembler:
    """Prepare a deployment plan against the existing deployment."""

    def __init__(
        self,
        plan: DeploymentPlan,
        store: RecordStore,
        agent_gateway: AgentGateway,
        *,
        binders: Optional[DeploymentBinders] = None,
        options: Optional[CollectionOptions] = None,
        task_service: Optional[AgentTaskService] = None,
        lock_service: Optional[LockService] = None,
        event_log: Optional[EventLog] = None,
        release_lock_timeout: Optional[float] = None,
    ):
        self.plan = plan
        self._store = store
        self.binders = binders or DeploymentBinders()
        self.event_log = event_log or EventLog()
        self._lock_service = lock_service or default_lock_service
        self._release_lock_timeout = (
            release_lock_timeout
            if release_lock_timeout is not None
            else settings.release_lock_timeout_seconds
        )
        self.collector = CurrentStateCollector(
            plan.name,
            store,
            agent_gateway,
            plan.rename,
            options=options,
            task_service=task_service,
        )
        self.reaper = OrphanVmReaper(store, plan)
        self.renames = RenameRecoveryService(store, plan.rename)

    # Existing deployment reconciliation

    async def collect_current_states(
        self, instances: Optional[Iterable[InstanceRecord]] = None
    ) -> Dict[InstanceRecord, Dict[str, Any]]:
        """Return verified agent state keyed by instance."""

        if instances is None:
            instances = self._store.list_instances(self.plan.deployment_id)
        return await self.collector.collect_current_states(instances)

    def reap_orphan_vms(self) -> List[VMRecord]:
        """Mark VMs without an instance for deletion."""

        return self.reaper.reap(self.plan.deployment_id)

    def recover_renames(self) -> List[InstanceRecord]:
        """Apply the plan's rename intent to matching instances."""

        return self.renames.recover(self._store.list_instances(self.plan.deployment_id))

    async def bind_existing_deployment(self) -> ExistingDeploymentState:
        """Reconcile the DB with what the agents report.

        States are collected before renaming so that an agent still reporting
        the old name after an interrupted rename is detected on the next run.

        Raises:
            StateCollectionError: If any VM could not be fetched, verified or
                migrated. Nothing is reaped or renamed in that case.
        """

        instances = self._store.list_instances(self.plan.deployment_id)
        outcomes = await self.collector.collect_outcomes(instances)
        if outcomes.failures:
            error = StateCollectionError(outcomes.failures)
            logger.error("Existing deployment '%s' is out of sync: %s", self.plan.name, error.message)
            raise error

        return ExistingDeploymentState(
            current_states=outcomes.states,
            reaped_vms=self.reap_orphan_vms(),
            renamed_instances=self.recover_renames(),
        )

    # Delegated binding steps

    async def bind_releases(self) -> None:
        """Bind release records while holding their release locks."""

        if self.binders.releases is None:
            logger.debug("No release binder configured; skipping release binding")
            return
        names = [release_lock_name(name) for name in self.plan.release_names]
        async with self._lock_service.acquire(names, timeout=self._release_lock_timeout):
            self.binders.releases(self.plan)

    def bind_stemcells(self) -> None:
        self._run_binder("stemcells")

    def bind_templates(self) -> None:
        self._run_binder("templates")

    def bind_properties(self) -> None:
        self._run_binder("properties")

    def bind_unallocated_vms(self) -> None:
        self._run_binder("unallocated_vms")

    def bind_instance_networks(self) -> None:
        self._run_binder("instance_networks")

    def bind_dns(self) -> None:
        self._run_binder("dns")

    def bind_links(self) -> None:
        """Resolve links job by job, tracking each job in the event log."""

        resolver = self.binders.links
        if resolver is None:
            logger.debug("No links binder configured; skipping links binding")
            return
        self.event_log.begin_stage("Binding links", len(self.plan.jobs))
        for job in self.plan.jobs:
            with self.event_log.track(job):
                resolver(self.plan, job)

    def _run_binder(self, name: str) -> None:
        binder = getattr(self.binders, name)
        if binder is None:
            logger.debug("No %s binder configured; skipping", name)
            return
        logger.debug("Binding %s", name)
        binder(self.plan)

    async def prepare(self) -> ExistingDeploymentState:
        """Run the full plan preparation pipeline.

        Any terminal error propagates unchanged and aborts preparation.
        """

        logger.info("Preparing deployment plan for '%s'", self.plan.name)
        await self.bind_releases()
        existing = await self.bind_existing_deployment()
        self.bind_stemcells()
        self.bind_templates()
        self.bind_properties()
        self.bind_unallocated_vms()
        self.bind_instance_networks()
        self.bind_dns()
        self.bind_links()
        logger.info(
            "Deployment plan for '%s' prepared (%d current states, %d VMs marked for deletion)",
            self.plan.name,
            len(existing.current_states),
            len(self.plan.vms_to_delete),
        )
        return existing
