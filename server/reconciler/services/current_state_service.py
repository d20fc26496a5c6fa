"""Concurrent collection of verified agent state for existing instances."""
from __future__ import annotations

import asyncio
import logging
import pprint
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from ..core.config import Settings, settings as default_settings
from ..core.errors import (
    AgentTransportError,
    LegacyMigrationError,
    ReconciliationError,
    StateCollectionError,
)
from ..core.models import (
    InstanceRecord,
    RenameIntent,
    StateCollectionFailurePolicy,
    VMRecord,
)
from .agent_gateway import AgentGateway
from .agent_task_service import AgentTaskService
from .legacy_state_migrator import LegacyStateMigrator
from .record_store import RecordStore
from .state_verifier import StateVerifier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CollectionOptions:
    """Worker pool size and failure policy for one collector."""

    max_workers: int = 32
    failure_policy: StateCollectionFailurePolicy = StateCollectionFailurePolicy.OMIT

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "CollectionOptions":
        config = config or default_settings
        return cls(
            max_workers=max(1, config.max_threads),
            failure_policy=config.state_collection_failure_policy,
        )


@dataclass(frozen=True)
class StateFetchFailure:
    """Instance whose state could not be fetched, verified or migrated."""

    instance: InstanceRecord
    vm_cid: str
    error: ReconciliationError

    @property
    def kind(self) -> str:
        return self.error.kind


@dataclass
class StateCollectionResult:
    """Verified states keyed by instance plus the instances that failed."""

    states: Dict[InstanceRecord, Dict[str, Any]] = field(default_factory=dict)
    failures: List[StateFetchFailure] = field(default_factory=list)


_Outcome = Union[Tuple[InstanceRecord, Dict[str, Any]], StateFetchFailure]


class CurrentStateCollector:
    """Fetch, verify and migrate the live state of every VM-backed instance."""

    def __init__(
        self,
        deployment_name: str,
        store: RecordStore,
        agent_gateway: AgentGateway,
        rename: Optional[RenameIntent] = None,
        *,
        options: Optional[CollectionOptions] = None,
        task_service: Optional[AgentTaskService] = None,
        verifier: Optional[StateVerifier] = None,
        migrator: Optional[LegacyStateMigrator] = None,
    ):
        self._store = store
        self._gateway = agent_gateway
        self.options = options or CollectionOptions.from_settings()
        self._task_service = task_service
        self._verifier = verifier or StateVerifier(deployment_name, rename)
        self._migrator = migrator or LegacyStateMigrator(store)

    async def collect_current_states(
        self, instances: Iterable[InstanceRecord]
    ) -> Dict[InstanceRecord, Dict[str, Any]]:
        """Return verified states for every instance with a VM.

        Failed instances are left out, or abort the whole batch once every
        fetch has settled, depending on the failure policy.
        """

        return self.apply_failure_policy(await self.collect_outcomes(instances))

    def apply_failure_policy(
        self, result: StateCollectionResult
    ) -> Dict[InstanceRecord, Dict[str, Any]]:
        if result.failures:
            if self.options.failure_policy == StateCollectionFailurePolicy.ABORT:
                raise StateCollectionError(result.failures)
            for failure in result.failures:
                logger.warning(
                    "Skipping current state of %s (VM %s): %s",
                    failure.instance.label,
                    failure.vm_cid,
                    failure.error.message,
                )
        return result.states

    async def collect_outcomes(self, instances: Iterable[InstanceRecord]) -> StateCollectionResult:
        """Fetch every VM-backed instance concurrently and report each outcome."""

        pairs: List[Tuple[InstanceRecord, VMRecord]] = []
        for instance in instances:
            if instance.vm_id is None:
                continue
            vm = self._store.get_vm(instance.vm_id)
            if vm is None:
                logger.debug("Instance %s references missing VM %s", instance.label, instance.vm_id)
                continue
            pairs.append((instance, vm))

        result = StateCollectionResult()
        if not pairs:
            return result

        task_service = self._task_service
        owns_task_service = task_service is None
        if task_service is None:
            task_service = AgentTaskService(max_workers=self.options.max_workers)

        try:
            tasks = [
                asyncio.create_task(
                    self._collect_one(task_service, instance, vm),
                    name=f"binding agent state for ({instance.label})",
                )
                for instance, vm in pairs
            ]
            outcomes = await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            if owns_task_service:
                await task_service.stop()

        # Single consumer: only this loop touches the result mapping
        unexpected: Optional[BaseException] = None
        for outcome in outcomes:
            if isinstance(outcome, StateFetchFailure):
                result.failures.append(outcome)
            elif isinstance(outcome, BaseException):
                unexpected = unexpected or outcome
            else:
                instance, state = outcome
                result.states[instance] = state

        if unexpected is not None:
            raise unexpected

        logger.info(
            "Collected current state for %d of %d instance(s) (%d failed)",
            len(result.states),
            len(pairs),
            len(result.failures),
        )
        return result

    async def _collect_one(
        self, task_service: AgentTaskService, instance: InstanceRecord, vm: VMRecord
    ) -> _Outcome:
        logger.debug("Binding agent state for (%s)", instance.label)
        try:
            state = await self.get_state(vm, task_service=task_service)
        except ReconciliationError as exc:
            return StateFetchFailure(instance=instance, vm_cid=vm.cid, error=exc)
        return instance, state

    async def get_state(
        self, vm: VMRecord, *, task_service: Optional[AgentTaskService] = None
    ) -> Dict[str, Any]:
        """Fetch, verify and migrate the state of a single VM."""

        logger.debug("Requesting current VM state for: %s", vm.agent_id)
        state = await self._fetch_state(vm, task_service or self._task_service)
        logger.debug("Received VM state: %s", pprint.pformat(state))

        instance = self._store.get_instance(vm.instance_id) if vm.instance_id is not None else None
        self._verifier.verify(vm, instance, state)
        logger.debug("Verified VM state")

        try:
            return self._migrator.migrate(vm, instance, state)
        except Exception as exc:
            logger.error("Failed to migrate legacy records of VM %s: %s", vm.cid, exc)
            raise LegacyMigrationError(
                f"Failed to migrate legacy records of VM '{vm.cid}': {exc}",
                vm_cid=vm.cid,
                instance=instance.label if instance else None,
            ) from exc

    async def _fetch_state(self, vm: VMRecord, task_service: Optional[AgentTaskService]) -> Any:
        description = f"get_state {vm.agent_id}"
        try:
            if task_service is None:
                return await asyncio.to_thread(self._gateway.fetch_state, vm)
            return await task_service.run_blocking(
                vm.cid, self._gateway.fetch_state, vm, description=description
            )
        except ReconciliationError:
            raise
        except Exception as exc:
            raise AgentTransportError(
                f"Agent communication failed for VM '{vm.cid}': {exc}",
                vm_cid=vm.cid,
            ) from exc


__all__ = [
    "CollectionOptions",
    "CurrentStateCollector",
    "StateCollectionResult",
    "StateFetchFailure",
]
