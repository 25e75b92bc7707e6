from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from google.api_core import exceptions as gexc

from wni.errors import (
    AggregateDestroyError,
    CredentialError,
    DestroyTimeoutError,
    NotFoundError,
    ProviderAPIError,
)
from wni.facade import WindowsNodeProvisioner
from wni.providers.gcp.config import GCP
from wni.providers.gcp.driver import (
    GCPDriver,
    _extract_external_ip,
    _extract_internal_ip,
    load_credentials,
)
from wni.types import VMSpec

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit")]

INFRA = "dev-x7k2p"


def _instance(status: str = "RUNNING", *, nat_ip: str | None = "34.1.2.3", tags=(f"{INFRA}-windows-worker",)):
    access = [SimpleNamespace(nat_i_p=nat_ip)] if nat_ip else []
    return SimpleNamespace(
        status=status,
        network_interfaces=[SimpleNamespace(network_i_p="10.0.32.4", access_configs=access)],
        tags=SimpleNamespace(items=list(tags)),
    )


def _config(**kwargs) -> GCP:
    return GCP(
        infrastructure_name=INFRA,
        region="us-central1",
        credentials_file="/tmp/key.json",
        **kwargs,
    )


@pytest.fixture
def clients() -> SimpleNamespace:
    instances = MagicMock()
    instances.get.return_value = _instance()
    instances.list.return_value = [_instance()]

    firewalls = MagicMock()
    firewalls.get.side_effect = gexc.NotFound("no such firewall")

    subnetworks = MagicMock()
    subnetworks.get.return_value = SimpleNamespace(
        network="global/networks/dev-x7k2p-network",
        self_link="regions/us-central1/subnetworks/dev-x7k2p-worker-subnet",
    )
    return SimpleNamespace(instances=instances, firewalls=firewalls, subnetworks=subnetworks)


def _driver(clients: SimpleNamespace, config: GCP | None = None) -> GCPDriver:
    return GCPDriver(
        config=config or _config(),
        project="my-project",
        instances_client=clients.instances,
        firewalls_client=clients.firewalls,
        subnetworks_client=clients.subnetworks,
    )


@pytest.fixture
def spec() -> VMSpec:
    return VMSpec(image_id="projects/windows-cloud/global/images/family/windows-2022-core",
                  instance_type="n2-standard-4")


class TestGCPConfig:
    def test_names(self):
        config = _config()
        assert config.type == "gcp"
        assert config.effective_zone == "us-central1-a"
        assert config.firewall_name == f"{INFRA}-windows-worker"
        assert config.subnet_name == f"{INFRA}-worker-subnet"

    def test_explicit_zone(self):
        assert _config(zone="us-central1-c").effective_zone == "us-central1-c"


class TestLoadCredentials:
    def test_unreadable_key(self, tmp_path):
        config = GCP(infrastructure_name=INFRA, region="us-central1",
                     credentials_file=str(tmp_path / "missing.json"))
        with pytest.raises(CredentialError):
            load_credentials(config)

    def test_project_from_key(self):
        creds = MagicMock(project_id="from-key")
        with patch(
            "google.oauth2.service_account.Credentials.from_service_account_file",
            return_value=creds,
        ):
            assert load_credentials(_config()) == (creds, "from-key")

    def test_explicit_project_wins(self):
        creds = MagicMock(project_id="from-key")
        with patch(
            "google.oauth2.service_account.Credentials.from_service_account_file",
            return_value=creds,
        ):
            assert load_credentials(_config(project="explicit"))[1] == "explicit"

    def test_no_project(self):
        with patch(
            "google.oauth2.service_account.Credentials.from_service_account_file",
            return_value=MagicMock(project_id=None),
        ):
            with pytest.raises(CredentialError, match="no project ID"):
                load_credentials(_config())

    def test_create_requires_region(self):
        with pytest.raises(CredentialError, match="region"):
            GCPDriver.create(GCP(infrastructure_name=INFRA, region="", credentials_file="/tmp/k"))


class TestCreate:
    def test_public_launch(self, clients, spec):
        vm = _driver(clients).create_vm(spec)

        assert vm.id.startswith(f"{INFRA}-windows-worker-")
        assert vm.public_ip == "34.1.2.3"
        assert vm.private_ip == "10.0.32.4"
        assert vm.created_security_group_ids == (f"{INFRA}-windows-worker",)

        instance = clients.instances.insert.call_args.kwargs["instance_resource"]
        assert len(instance.network_interfaces[0].access_configs) == 1
        assert list(instance.tags.items) == [f"{INFRA}-windows-worker"]
        assert instance.machine_type == "zones/us-central1-a/machineTypes/n2-standard-4"

    def test_firewall_rule(self, clients, spec):
        _driver(clients).create_vm(spec)

        rule = clients.firewalls.insert.call_args.kwargs["firewall_resource"]
        assert rule.network == "global/networks/dev-x7k2p-network"
        assert list(rule.allowed[0].ports) == ["3389", "5986"]
        assert list(rule.target_tags) == [f"{INFRA}-windows-worker"]

    def test_private_launch_has_no_access_config(self, clients, spec):
        clients.instances.get.return_value = _instance(nat_ip=None)

        vm = _driver(clients).create_vm_private_subnet(spec)

        instance = clients.instances.insert.call_args.kwargs["instance_resource"]
        assert len(instance.network_interfaces[0].access_configs) == 0
        assert vm.public_ip is None

    def test_existing_firewall_reused(self, clients, spec):
        clients.firewalls.get.side_effect = None
        clients.firewalls.get.return_value = MagicMock()

        vm = _driver(clients).create_vm(spec)

        clients.firewalls.insert.assert_not_called()
        assert vm.created_security_group_ids == ()

    def test_missing_subnet(self, clients, spec):
        clients.subnetworks.get.side_effect = gexc.NotFound("no subnet")
        with pytest.raises(ProviderAPIError, match="worker subnet"):
            _driver(clients).create_vm(spec)
        clients.instances.insert.assert_not_called()

    def test_insert_failure_reports_firewall(self, clients, spec):
        clients.instances.insert.side_effect = gexc.Forbidden("quota")

        with pytest.raises(ProviderAPIError) as exc_info:
            _driver(clients).create_vm(spec)

        assert exc_info.value.created_security_group_ids == (f"{INFRA}-windows-worker",)
        assert exc_info.value.created_instance_ids == ()

    def test_unexpected_error_after_insert_reports_instance(self, clients, spec):
        clients.instances.get.side_effect = RuntimeError("unexpected payload")

        with pytest.raises(ProviderAPIError) as exc_info:
            _driver(clients).create_vm(spec)

        assert len(exc_info.value.created_instance_ids) == 1

    def test_operation_failure_reports_instance(self, clients, spec):
        clients.instances.insert.return_value.result.side_effect = TimeoutError()

        with pytest.raises(ProviderAPIError) as exc_info:
            _driver(clients).create_vm(spec)

        assert len(exc_info.value.created_instance_ids) == 1
        assert exc_info.value.created_instance_ids[0].startswith(f"{INFRA}-windows-worker-")


class TestDestroy:
    def test_delete(self, clients):
        _driver(clients).destroy_vm("vm-1")
        clients.instances.delete.assert_called_once_with(
            project="my-project", zone="us-central1-a", instance="vm-1"
        )

    def test_unknown_instance(self, clients):
        clients.instances.delete.side_effect = gexc.NotFound("gone")
        with pytest.raises(NotFoundError):
            _driver(clients).destroy_vm("vm-1")

    def test_timeout(self, clients):
        clients.instances.delete.return_value.result.side_effect = TimeoutError()
        with pytest.raises(DestroyTimeoutError):
            _driver(clients).destroy_vm("vm-1")


class TestFirewallRules:
    def test_missing_rule_not_in_use(self, clients):
        assert not _driver(clients).security_group_in_use("rule")

    def test_in_use_by_tagged_instance(self, clients):
        clients.firewalls.get.side_effect = None
        clients.firewalls.get.return_value = SimpleNamespace(target_tags=[f"{INFRA}-windows-worker"])
        assert _driver(clients).security_group_in_use("rule")

    @pytest.mark.parametrize("status", ["TERMINATED", "SUSPENDED", "STOPPING"])
    def test_stopped_instance_keeps_rule_in_use(self, clients, status: str):
        clients.firewalls.get.side_effect = None
        clients.firewalls.get.return_value = SimpleNamespace(target_tags=[f"{INFRA}-windows-worker"])
        clients.instances.list.return_value = [_instance(status)]
        assert _driver(clients).security_group_in_use("rule")

    def test_no_instances(self, clients):
        clients.firewalls.get.side_effect = None
        clients.firewalls.get.return_value = SimpleNamespace(target_tags=[f"{INFRA}-windows-worker"])
        clients.instances.list.return_value = []
        assert not _driver(clients).security_group_in_use("rule")

    def test_untagged_instances_ignored(self, clients):
        clients.firewalls.get.side_effect = None
        clients.firewalls.get.return_value = SimpleNamespace(target_tags=[f"{INFRA}-windows-worker"])
        clients.instances.list.return_value = [_instance(tags=("linux-worker",))]
        assert not _driver(clients).security_group_in_use("rule")

    def test_delete_unknown(self, clients):
        clients.firewalls.delete.side_effect = gexc.NotFound("gone")
        with pytest.raises(NotFoundError):
            _driver(clients).delete_security_group("rule")


class TestExtractIPs:
    def test_external(self):
        assert _extract_external_ip(_instance()) == "34.1.2.3"

    def test_no_external(self):
        assert _extract_external_ip(_instance(nat_ip=None)) is None

    def test_internal(self):
        assert _extract_internal_ip(_instance()) == "10.0.32.4"

    def test_no_interfaces(self):
        assert _extract_internal_ip(SimpleNamespace(network_interfaces=[])) == ""


class TestProvisionerOnGCP:
    def test_stopped_instance_keeps_firewall_rule(self, clients, ledger, spec):
        rule = f"{INFRA}-windows-worker"
        ledger.record_instance_created("vm-1")
        ledger.record_security_group_created(rule)
        clients.firewalls.get.side_effect = None
        clients.firewalls.get.return_value = SimpleNamespace(target_tags=[rule])
        # vm-1 is gone; another Windows worker is only stopped.
        clients.instances.list.return_value = [_instance("TERMINATED")]
        provisioner = WindowsNodeProvisioner(_driver(clients), ledger, spec)

        with pytest.raises(AggregateDestroyError) as exc_info:
            provisioner.destroy_windows_vms()

        assert exc_info.value.failed_ids == (rule,)
        clients.firewalls.delete.assert_not_called()
        assert ledger.all_security_group_ids() == (rule,)
        assert ledger.all_instance_ids() == ()
