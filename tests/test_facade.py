from __future__ import annotations

import json
import threading
from pathlib import Path

import pytest

from wni.errors import (
    AggregateDestroyError,
    CorruptLedgerError,
    DestroyTimeoutError,
    PartiallyAppliedError,
    ProviderAPIError,
    SecurityGroupInUseError,
)
from wni.facade import WindowsNodeProvisioner
from wni.ledger import ResourceLedger
from wni.types import RunState

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit")]


def _on_disk(ledger: ResourceLedger) -> dict:
    with open(ledger.path, encoding="utf-8") as f:
        return json.load(f)


@pytest.fixture
def provisioner(driver, ledger, spec) -> WindowsNodeProvisioner:
    return WindowsNodeProvisioner(driver, ledger, spec)


class TestCreate:
    def test_public_vm_is_tracked(self, provisioner, ledger):
        vm = provisioner.create_windows_vm()

        assert vm.id == "i-1"
        assert vm.public_ip is not None
        assert _on_disk(ledger) == {"InstanceIDs": ["i-1"], "SecurityGroupIDs": ["sg-1"]}
        assert provisioner.state == RunState.CREATED

    def test_private_vm_has_no_public_ip(self, provisioner, ledger):
        vm = provisioner.create_windows_vm_with_private_subnet()

        assert vm.public_ip is None
        assert vm.address == vm.private_ip
        assert _on_disk(ledger)["InstanceIDs"] == ["i-1"]

    def test_reused_group_tracked_once(self, provisioner, ledger):
        provisioner.create_windows_vm()
        provisioner.create_windows_vm()
        assert _on_disk(ledger) == {"InstanceIDs": ["i-1", "i-2"], "SecurityGroupIDs": ["sg-1"]}

    def test_preexisting_group_not_tracked(self, provisioner, driver, ledger):
        driver.groups.add("sg-1")
        provisioner.create_windows_vm()
        assert _on_disk(ledger)["SecurityGroupIDs"] == []

    def test_corrupt_ledger_aborts_before_cloud_call(self, provisioner, driver, ledger):
        Path(ledger.path).write_text("{broken")
        with pytest.raises(CorruptLedgerError):
            provisioner.create_windows_vm()
        assert driver.calls == []

    def test_failed_create_tracks_leftovers(self, provisioner, driver, ledger):
        driver.create_error = ProviderAPIError(
            "boom",
            created_instance_ids=("i-orphan",),
            created_security_group_ids=("sg-orphan",),
        )
        with pytest.raises(ProviderAPIError, match="boom"):
            provisioner.create_windows_vm()

        assert _on_disk(ledger) == {"InstanceIDs": ["i-orphan"], "SecurityGroupIDs": ["sg-orphan"]}
        assert provisioner.state == RunState.FAILED

    def test_failed_create_without_leftovers_writes_nothing(self, provisioner, driver, ledger):
        driver.create_error = ProviderAPIError("quota exceeded")
        with pytest.raises(ProviderAPIError):
            provisioner.create_windows_vm()
        assert ledger.is_empty()

    def test_untrackable_instance_is_partially_applied(
        self, provisioner, monkeypatch: pytest.MonkeyPatch
    ):
        def fail(*args, **kwargs):
            raise OSError("read-only filesystem")

        monkeypatch.setattr("wni.ledger.write_record", fail)
        with pytest.raises(PartiallyAppliedError) as exc_info:
            provisioner.create_windows_vm()

        assert exc_info.value.resource_id == "i-1"
        assert provisioner.state == RunState.FAILED


    def test_untracked_group_is_named(self, provisioner, ledger, monkeypatch: pytest.MonkeyPatch):
        def fail(group_id):
            raise OSError("disk full")

        monkeypatch.setattr(ledger, "record_security_group_created", fail)
        with pytest.raises(PartiallyAppliedError) as exc_info:
            provisioner.create_windows_vm()

        assert exc_info.value.resource_id == "sg-1"
        assert _on_disk(ledger)["InstanceIDs"] == ["i-1"]

    def test_untracked_leftovers_are_all_named(self, provisioner, driver, monkeypatch: pytest.MonkeyPatch):
        driver.create_error = ProviderAPIError(
            "boom",
            created_instance_ids=("i-orphan",),
            created_security_group_ids=("sg-orphan",),
        )

        def fail(*args, **kwargs):
            raise OSError("read-only filesystem")

        monkeypatch.setattr("wni.ledger.write_record", fail)
        with pytest.raises(PartiallyAppliedError) as exc_info:
            provisioner.create_windows_vm()

        assert exc_info.value.resource_id == "i-orphan, sg-orphan"
        assert isinstance(exc_info.value.__cause__, ProviderAPIError)


class TestDestroyOne:
    def test_shared_group_kept_until_last_instance(self, provisioner, driver, ledger):
        provisioner.create_windows_vm()
        provisioner.create_windows_vm()

        provisioner.destroy_windows_vm("i-1")
        assert _on_disk(ledger) == {"InstanceIDs": ["i-2"], "SecurityGroupIDs": ["sg-1"]}
        assert "sg-1" in driver.groups
        assert provisioner.state == RunState.DESTROYED

        provisioner.destroy_windows_vm("i-2")
        assert _on_disk(ledger) == {"InstanceIDs": [], "SecurityGroupIDs": []}
        assert driver.groups == set()

    def test_already_gone_counts_as_destroyed(self, provisioner, driver, ledger):
        provisioner.create_windows_vm()
        del driver.instances["i-1"]

        provisioner.destroy_windows_vm("i-1")
        assert ledger.is_empty()

    def test_timeout_keeps_entry(self, provisioner, driver, ledger):
        provisioner.create_windows_vm()
        driver.timeouts.add("i-1")

        with pytest.raises(DestroyTimeoutError) as exc_info:
            provisioner.destroy_windows_vm("i-1")

        assert exc_info.value.retryable
        assert _on_disk(ledger)["InstanceIDs"] == ["i-1"]
        assert provisioner.state == RunState.PARTIALLY_DESTROYED

    def test_group_delete_failure_is_reported(self, provisioner, driver, ledger):
        provisioner.create_windows_vm()
        driver.failures["sg-1"] = ProviderAPIError("throttled")

        with pytest.raises(AggregateDestroyError) as exc_info:
            provisioner.destroy_windows_vm("i-1")

        assert exc_info.value.failed_ids == ("sg-1",)
        assert _on_disk(ledger) == {"InstanceIDs": [], "SecurityGroupIDs": ["sg-1"]}


class TestDestroyAll:
    def test_empty_ledger_makes_no_cloud_calls(self, provisioner, driver, ledger):
        provisioner.destroy_windows_vms()
        provisioner.destroy_windows_vms()

        assert driver.calls == []
        assert provisioner.state == RunState.DESTROYED

    def test_destroys_everything(self, provisioner, driver, ledger):
        provisioner.create_windows_vm()
        provisioner.create_windows_vm_with_private_subnet()

        provisioner.destroy_windows_vms()

        assert _on_disk(ledger) == {"InstanceIDs": [], "SecurityGroupIDs": []}
        assert driver.instances == {}
        assert driver.groups == set()
        assert provisioner.state == RunState.DESTROYED

    def test_tracker_file_from_previous_run(self, provisioner, driver, ledger):
        Path(ledger.path).write_text('{"InstanceIDs":["i-1","i-2"],"SecurityGroupIDs":["sg-1"]}')
        driver.instances.update({"i-1": ("sg-1",), "i-2": ("sg-1",)})
        driver.groups.add("sg-1")

        provisioner.destroy_windows_vms()

        assert _on_disk(ledger) == {"InstanceIDs": [], "SecurityGroupIDs": []}
        assert driver.groups == set()

    def test_groups_swept_after_instances(self, provisioner, driver):
        provisioner.create_windows_vm()
        provisioner.create_windows_vm()
        driver.calls.clear()

        provisioner.destroy_windows_vms()

        kinds = [kind for kind, _ in driver.calls]
        assert kinds == ["destroy", "destroy", "in_use", "delete_sg"]

    def test_resumes_from_ledger_of_previous_run(self, driver, ledger, spec):
        WindowsNodeProvisioner(driver, ledger, spec).create_windows_vm()

        fresh = WindowsNodeProvisioner(driver, ResourceLedger(ledger.path), spec)
        fresh.destroy_windows_vms()

        assert ResourceLedger(ledger.path).is_empty()
        assert driver.instances == {}

    def test_failures_collected_and_others_continue(self, provisioner, driver, ledger):
        for _ in range(3):
            provisioner.create_windows_vm()
        driver.timeouts.add("i-2")

        with pytest.raises(AggregateDestroyError) as exc_info:
            provisioner.destroy_windows_vms()

        err = exc_info.value
        assert set(err.failed_ids) == {"i-2", "sg-1"}
        assert isinstance(err.failures["i-2"], DestroyTimeoutError)
        assert isinstance(err.failures["sg-1"], SecurityGroupInUseError)
        assert _on_disk(ledger) == {"InstanceIDs": ["i-2"], "SecurityGroupIDs": ["sg-1"]}
        assert provisioner.state == RunState.PARTIALLY_DESTROYED

    def test_retry_after_partial_failure(self, provisioner, driver, ledger):
        provisioner.create_windows_vm()
        driver.timeouts.add("i-1")
        with pytest.raises(AggregateDestroyError):
            provisioner.destroy_windows_vms()

        driver.timeouts.clear()
        provisioner.destroy_windows_vms()
        assert ledger.is_empty()

    def test_non_retryable_failure(self, provisioner, driver):
        provisioner.create_windows_vm()
        driver.failures["i-1"] = ProviderAPIError("access denied")

        with pytest.raises(AggregateDestroyError) as exc_info:
            provisioner.destroy_windows_vms()
        assert not exc_info.value.retryable

    def test_parallel_destroy(self, driver, ledger, spec):
        provisioner = WindowsNodeProvisioner(driver, ledger, spec, destroy_concurrency=4)
        for _ in range(8):
            provisioner.create_windows_vm()

        provisioner.destroy_windows_vms()

        assert _on_disk(ledger) == {"InstanceIDs": [], "SecurityGroupIDs": []}
        assert driver.instances == {}

    def test_stop_event_skips_remaining(self, provisioner, driver, ledger):
        provisioner.create_windows_vm()
        provisioner.create_windows_vm()
        stop = threading.Event()
        stop.set()
        driver.calls.clear()

        with pytest.raises(AggregateDestroyError) as exc_info:
            provisioner.destroy_windows_vms(stop=stop)

        assert driver.calls == []
        assert set(exc_info.value.failed_ids) == {"i-1", "i-2", "sg-1"}
        assert _on_disk(ledger)["InstanceIDs"] == ["i-1", "i-2"]


class TestDeleteSecurityGroup:
    def test_in_use_raises(self, provisioner, ledger):
        provisioner.create_windows_vm()
        with pytest.raises(SecurityGroupInUseError):
            provisioner.delete_security_group("sg-1")
        assert _on_disk(ledger)["SecurityGroupIDs"] == ["sg-1"]

    def test_unused_group_deleted(self, provisioner, driver, ledger):
        provisioner.create_windows_vm()
        del driver.instances["i-1"]

        provisioner.delete_security_group("sg-1")
        assert "sg-1" not in driver.groups
        assert _on_disk(ledger)["SecurityGroupIDs"] == []

    def test_missing_group_tolerated(self, provisioner, ledger):
        ledger.record_security_group_created("sg-gone")
        provisioner.delete_security_group("sg-gone")
        assert ledger.is_empty()
