"""Test configuration for server test suite."""

import os

import pytest

# Keep developer .env files and shells from leaking into the settings under test
os.environ.setdefault("DUMMY_DATA", "false")

from reconciler.core.models import DeploymentPlan
from reconciler.services.agent_gateway import RecordedAgentGateway
from reconciler.services.record_store import InMemoryRecordStore


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def deployment(store):
    return store.create_deployment("prod")


@pytest.fixture
def gateway():
    return RecordedAgentGateway()


@pytest.fixture
def make_plan(deployment):
    """Build a deployment plan for the ``deployment`` fixture."""

    def _make(**kwargs):
        return DeploymentPlan(name=deployment.name, deployment_id=deployment.id, **kwargs)

    return _make


@pytest.fixture
def reported_state(deployment):
    """Build the state an agent of ``deployment`` would report."""

    def _state(job=None, index=0, **extra):
        state = {"deployment": deployment.name, "index": index}
        if job is not None:
            state["job"] = {"name": job, "release": "appcloud"}
        state.update(extra)
        return state

    return _state


@pytest.fixture
def add_instance(store, deployment, gateway, reported_state):
    """Create an instance backed by a VM whose agent reports a matching state.

    Pass ``state`` to override what the agent reports (an exception makes the
    agent fail), ``with_vm=False`` for an instance without a VM.
    """

    def _add(job, index, *, state=None, with_vm=True, disk_size=None, apply_spec=None):
        instance = store.create_instance(deployment, job, index)
        if disk_size is not None:
            store.create_persistent_disk(instance, f"disk-{job}-{index}", size=disk_size)
        if not with_vm:
            return store.get_instance(instance.id), None

        vm = store.create_vm(
            deployment, f"vm-{job}-{index}", f"agent-{job}-{index}", apply_spec=apply_spec
        )
        instance = store.attach_vm(instance.id, vm.id)
        gateway.record_state(
            vm.agent_id, reported_state(job, index) if state is None else state
        )
        return instance, store.get_vm(vm.id)

    return _add
