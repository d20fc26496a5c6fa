import pytest
from pydantic import ValidationError

from reconciler.core.errors import RecordNotFoundError


def test_attach_vm_links_both_records(store, deployment):
    instance = store.create_instance(deployment, "web", 0)
    vm = store.create_vm(deployment, "vm-1", "agent-1")

    linked = store.attach_vm(instance.id, vm.id)

    assert linked.vm_id == vm.id
    assert store.get_vm(vm.id).instance_id == instance.id
    assert store.get_instance(instance.id) == linked


def test_update_returns_new_copy_and_keeps_old_value(store, deployment):
    vm = store.create_vm(deployment, "vm-1", "agent-1")

    updated = store.update_vm(vm.id, apply_spec={"index": 0})

    assert vm.apply_spec is None
    assert updated.apply_spec == {"index": 0}
    assert store.get_vm(vm.id) == updated


def test_updating_unknown_record_raises(store):
    with pytest.raises(RecordNotFoundError) as exc:
        store.update_instance(999, job="web")

    assert exc.value.record_type == "Instance"
    assert exc.value.record_id == 999


def test_persistent_disk_is_linked_to_instance(store, deployment):
    instance = store.create_instance(deployment, "db", 0)

    disk = store.create_persistent_disk(instance, "disk-1")

    assert disk.size == 0
    assert store.get_instance(instance.id).persistent_disk_id == disk.id


def test_delete_vm_clears_instance_reference(store, deployment, add_instance):
    instance, vm = add_instance("web", 0)

    store.delete_vm(vm.id)

    assert store.get_vm(vm.id) is None
    assert store.get_instance(instance.id).vm_id is None


def test_lists_are_scoped_to_deployment(store, deployment):
    other = store.create_deployment("other")
    mine = store.create_instance(deployment, "web", 0)
    store.create_instance(other, "web", 0)
    store.create_vm(other, "vm-other", "agent-other")

    assert store.list_instances(deployment.id) == [mine]
    assert store.list_vms(deployment.id) == []
    assert store.get_deployment_by_name("other") == other
    assert store.get_deployment_by_name("missing") is None


def test_records_are_hashable_and_immutable(store, deployment):
    instance = store.create_instance(deployment, "web", 0)

    assert {instance: "state"}[instance] == "state"
    assert instance.label == "web/0"
    with pytest.raises(ValidationError):
        instance.job = "db"
