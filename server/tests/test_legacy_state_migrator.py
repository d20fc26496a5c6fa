import copy

import pytest

from reconciler.services.legacy_state_migrator import (
    LegacyStateMigrator,
    coerce_disk_size,
    scrub_release_fields,
)


@pytest.fixture
def migrator(store):
    return LegacyStateMigrator(store)


def _full_state(deployment, job="db", index=0, **extra):
    state = {
        "deployment": deployment.name,
        "job": {"name": job, "release": "appcloud", "template": job},
        "index": index,
        "release": {"name": "appcloud", "version": "42"},
    }
    state.update(extra)
    return state


def test_persists_reported_state_as_missing_apply_spec(store, deployment, add_instance, migrator):
    instance, vm = add_instance("db", 0)
    state = _full_state(deployment)

    migrator.migrate(vm, instance, state)

    # The apply spec keeps the release fields; only the returned state is scrubbed
    assert store.get_vm(vm.id).apply_spec == state


def test_existing_apply_spec_is_left_alone(store, deployment, add_instance, migrator):
    existing = {"deployment": deployment.name, "job": {"name": "db"}, "index": 0}
    instance, vm = add_instance("db", 0, apply_spec=existing)

    migrator.migrate(vm, instance, _full_state(deployment, persistent_disk=0))

    assert store.get_vm(vm.id).apply_spec == existing


def test_stored_apply_spec_is_independent_of_the_state(store, deployment, add_instance, migrator):
    instance, vm = add_instance("db", 0)
    state = _full_state(deployment)

    migrator.migrate(vm, instance, state)
    state["job"]["name"] = "mutated"

    assert store.get_vm(vm.id).apply_spec["job"]["name"] == "db"


def test_backfills_zero_disk_size_from_reported_state(store, deployment, add_instance, migrator):
    instance, vm = add_instance("db", 0, disk_size=0)

    migrator.migrate(vm, instance, _full_state(deployment, persistent_disk=2048))

    assert store.get_persistent_disk(instance.persistent_disk_id).size == 2048


def test_accepts_textual_disk_size(store, deployment, add_instance, migrator):
    instance, vm = add_instance("db", 0, disk_size=0)

    migrator.migrate(vm, instance, _full_state(deployment, persistent_disk="4096"))

    assert store.get_persistent_disk(instance.persistent_disk_id).size == 4096


def test_never_overwrites_recorded_disk_size(store, deployment, add_instance, migrator):
    instance, vm = add_instance("db", 0, disk_size=1024)

    migrator.migrate(vm, instance, _full_state(deployment, persistent_disk=2048))

    assert store.get_persistent_disk(instance.persistent_disk_id).size == 1024


@pytest.mark.parametrize("reported", [0, None, "", "abc", -5])
def test_zero_or_missing_reported_size_leaves_disk_untouched(
    store, deployment, add_instance, migrator, reported
):
    instance, vm = add_instance("db", 0, disk_size=0)

    migrator.migrate(vm, instance, _full_state(deployment, persistent_disk=reported))

    assert store.get_persistent_disk(instance.persistent_disk_id).size == 0


def test_vm_without_instance_only_gets_apply_spec(store, deployment, migrator):
    vm = store.create_vm(deployment, "vm-lonely", "agent-lonely")
    state = {"deployment": deployment.name, "persistent_disk": 2048}

    result = migrator.migrate(vm, None, state)

    assert result == state
    assert store.get_vm(vm.id).apply_spec == state


def test_returned_state_has_no_release_fields(deployment, add_instance, migrator):
    instance, vm = add_instance("db", 0)
    state = _full_state(deployment)
    original = copy.deepcopy(state)

    result = migrator.migrate(vm, instance, state)

    assert "release" not in result
    assert "release" not in result["job"]
    assert result["job"] == {"name": "db", "template": "db"}
    assert state == original


def test_migration_is_idempotent(store, deployment, add_instance, migrator):
    instance, vm = add_instance("db", 0, disk_size=0)
    state = _full_state(deployment, persistent_disk=512)

    first = migrator.migrate(vm, instance, state)
    after_once = (
        store.get_vm(vm.id),
        store.get_persistent_disk(instance.persistent_disk_id),
    )
    second = migrator.migrate(store.get_vm(vm.id), store.get_instance(instance.id), state)
    after_twice = (
        store.get_vm(vm.id),
        store.get_persistent_disk(instance.persistent_disk_id),
    )

    assert first == second
    assert after_once == after_twice


@pytest.mark.parametrize(
    "value, expected",
    [
        (None, 0),
        (True, 0),
        (0, 0),
        (1024, 1024),
        (10.7, 10),
        ("2048", 2048),
        ("  300MB", 300),
        ("abc", 0),
        ("", 0),
        (float("inf"), 0),
        (float("nan"), 0),
    ],
)
def test_coerce_disk_size(value, expected):
    assert coerce_disk_size(value) == expected


def test_scrub_release_fields_ignores_non_mapping_job():
    state = {"deployment": "prod", "job": "web", "release": "appcloud"}

    assert scrub_release_fields(state) == {"deployment": "prod", "job": "web"}
