"""Azure driver for Windows worker machines.

Machines join the cluster's worker subnet inside ``<infra>-rg``. A network
security group (``<infra>-windows-worker-nsg``) opening RDP and WinRM is
attached to each machine's NIC; "in use" means some NIC is still associated
with it. NICs, public IPs and OS disks are created by the VM itself with
``delete_option="Delete"``, so deleting the VM removes them too and only the
VM name needs tracking.
"""

from __future__ import annotations

import json
import secrets
import string
import uuid
from typing import Any

from azure.core.exceptions import HttpResponseError, ResourceNotFoundError
from loguru import logger

from wni.constants import (
    AZURE_ADMIN_USER,
    CLUSTER_TAG_OWNED,
    RDP_PORT,
    WINRM_HTTPS_PORT,
    windows_worker_name,
)
from wni.errors import (
    CredentialError,
    DestroyTimeoutError,
    NotFoundError,
    ProviderAPIError,
    SecurityGroupInUseError,
)
from wni.providers.userdata import azure_setup_command
from wni.types import ProvisionedVM, VMCredentials, VMSpec

from .config import Azure

log = logger.bind(component="azure")

_NETWORK_API_VERSION = "2020-11-01"
_COMPUTER_NAME_PREFIX = "winworker"
_SETUP_EXTENSION = "winrm-setup"
_NSG_IN_USE_CODES = frozenset({"InUseNetworkSecurityGroupCannotBeDeleted"})


def load_credentials(config: Azure) -> tuple[Any, str]:
    """Read the service principal auth file and settle on a subscription.

    Returns:
        Tuple of (credential, subscription_id).

    Raises:
        CredentialError: If the file cannot be read or lacks a field.
    """
    from azure.identity import ClientSecretCredential

    try:
        with open(config.credentials_file, encoding="utf-8") as f:
            auth = json.load(f)
        credential = ClientSecretCredential(
            tenant_id=auth["tenantId"],
            client_id=auth["clientId"],
            client_secret=auth["clientSecret"],
        )
    except (OSError, ValueError, KeyError, TypeError) as e:
        raise CredentialError(
            f"cannot load service principal from {config.credentials_file}: {e}"
        ) from e

    subscription = config.subscription_id or auth.get("subscriptionId", "")
    if not subscription:
        raise CredentialError(
            f"no subscription ID given and none found in {config.credentials_file}"
        )
    return credential, subscription


def generate_password(length: int = 24) -> str:
    """Random admin password meeting Azure's complexity rules."""
    alphabet = string.ascii_letters + string.digits
    body = "".join(secrets.choice(alphabet) for _ in range(length - 4))
    return (
        body
        + secrets.choice(string.ascii_uppercase)
        + secrets.choice(string.ascii_lowercase)
        + secrets.choice(string.digits)
        + secrets.choice("!@#%^*-_")
    )


def image_reference(image_id: str) -> dict[str, str]:
    """Turn a ``publisher:offer:sku:version`` URN or a resource ID into an image reference."""
    if image_id.startswith("/"):
        return {"id": image_id}
    parts = image_id.split(":")
    if len(parts) != 4:
        raise ValueError(
            f"image {image_id!r} is neither a resource ID nor publisher:offer:sku:version"
        )
    publisher, offer, sku, version = parts
    return {"publisher": publisher, "offer": offer, "sku": sku, "version": version}


class AzureDriver:
    """Stateless Azure driver. Holds only immutable config and the management clients."""

    def __init__(self, config: Azure, compute_client: Any, network_client: Any) -> None:
        self._config = config
        self._compute = compute_client
        self._network = network_client

    @classmethod
    def create(cls, config: Azure) -> AzureDriver:
        from azure.mgmt.compute import ComputeManagementClient
        from azure.mgmt.network import NetworkManagementClient

        if not config.region:
            raise CredentialError("Azure location is not set for the cluster")
        credential, subscription = load_credentials(config)
        log.info("Resolved Azure subscription: {sub}", sub=subscription)
        return cls(
            config,
            ComputeManagementClient(credential, subscription),
            NetworkManagementClient(credential, subscription),
        )

    @property
    def name(self) -> str:
        return "azure"

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    def create_vm(self, spec: VMSpec) -> ProvisionedVM:
        return self._launch(spec, public=True)

    def create_vm_private_subnet(self, spec: VMSpec) -> ProvisionedVM:
        return self._launch(spec, public=False)

    def _worker_subnet_id(self) -> str:
        cfg = self._config
        try:
            return self._network.subnets.get(cfg.resource_group, cfg.vnet_name, cfg.subnet_name).id
        except ResourceNotFoundError as e:
            raise ProviderAPIError(
                f"worker subnet {cfg.subnet_name} not found in {cfg.vnet_name}"
            ) from e
        except HttpResponseError as e:
            raise ProviderAPIError(f"failed to look up worker subnet: {e}") from e

    def _ensure_security_group(self) -> tuple[str, str, bool]:
        """Return the Windows worker NSG, creating it if needed.

        Returns:
            Tuple of (name, resource_id, created).
        """
        cfg = self._config
        name = cfg.security_group_name
        try:
            existing = self._network.network_security_groups.get(cfg.resource_group, name)
            log.debug("Reusing network security group {name}", name=name)
            return name, existing.id, False
        except ResourceNotFoundError:
            pass
        except HttpResponseError as e:
            raise ProviderAPIError(f"failed to look up network security group {name}: {e}") from e

        log.info("Creating network security group: {name}", name=name)
        rules = [
            {
                "name": f"{label}-in",
                "protocol": "Tcp",
                "direction": "Inbound",
                "access": "Allow",
                "priority": priority,
                "source_address_prefix": cfg.ingress_cidr,
                "source_port_range": "*",
                "destination_address_prefix": "*",
                "destination_port_range": str(port),
            }
            for label, port, priority in (("rdp", RDP_PORT, 1000), ("winrm-https", WINRM_HTTPS_PORT, 1010))
        ]
        try:
            poller = self._network.network_security_groups.begin_create_or_update(
                cfg.resource_group,
                name,
                {
                    "location": cfg.region,
                    "security_rules": rules,
                    "tags": {cfg.cluster_tag_key: CLUSTER_TAG_OWNED},
                },
            )
        except HttpResponseError as e:
            raise ProviderAPIError(f"failed to create network security group {name}: {e}") from e

        try:
            nsg = poller.result(timeout=cfg.create_timeout)
            if not poller.done():
                raise TimeoutError(f"network security group {name} not ready after {cfg.create_timeout}s")
        except (HttpResponseError, TimeoutError) as e:
            raise ProviderAPIError(
                f"network security group {name} was not created: {e}",
                created_security_group_ids=(name,),
            ) from e
        return name, nsg.id, True

    def _launch(self, spec: VMSpec, *, public: bool) -> ProvisionedVM:
        cfg = self._config
        image = image_reference(spec.image_id)
        subnet_id = self._worker_subnet_id()
        group_name, group_id, created = self._ensure_security_group()
        created_groups = (group_name,) if created else ()

        suffix = uuid.uuid4().hex[:5]
        name = f"{windows_worker_name(cfg.infrastructure_name)}-{suffix}"
        password = generate_password()

        ip_configuration: dict[str, Any] = {"name": f"{name}-ipconfig", "subnet": {"id": subnet_id}}
        if public:
            ip_configuration["public_ip_address_configuration"] = {
                "name": f"{name}-pip",
                "sku": {"name": "Standard"},
                "public_ip_allocation_method": "Static",
                "delete_option": "Delete",
            }

        parameters = {
            "location": cfg.region,
            "tags": {cfg.cluster_tag_key: CLUSTER_TAG_OWNED},
            "hardware_profile": {"vm_size": spec.instance_type},
            "storage_profile": {
                "image_reference": image,
                "os_disk": {
                    "create_option": "FromImage",
                    "delete_option": "Delete",
                    "managed_disk": {"storage_account_type": "Premium_LRS"},
                },
            },
            "os_profile": {
                "computer_name": f"{_COMPUTER_NAME_PREFIX}-{suffix}",
                "admin_username": AZURE_ADMIN_USER,
                "admin_password": password,
            },
            "network_profile": {
                "network_api_version": _NETWORK_API_VERSION,
                "network_interface_configurations": [
                    {
                        "name": f"{name}-nic",
                        "primary": True,
                        "delete_option": "Delete",
                        "network_security_group": {"id": group_id},
                        "ip_configurations": [ip_configuration],
                    }
                ],
            },
        }

        try:
            poller = self._compute.virtual_machines.begin_create_or_update(
                cfg.resource_group, name, parameters
            )
        except HttpResponseError as e:
            raise ProviderAPIError(
                f"failed to create virtual machine {name}: {e}",
                created_security_group_ids=created_groups,
            ) from e
        log.info("Creating virtual machine {name} ({size})", name=name, size=spec.instance_type)

        try:
            vm = poller.result(timeout=cfg.create_timeout)
            if not poller.done():
                raise TimeoutError(f"virtual machine {name} not provisioned after {cfg.create_timeout}s")
            self._run_setup_script(name)
            private_ip, public_ip = self._addresses(vm)
        except Exception as e:
            raise ProviderAPIError(
                f"virtual machine {name} did not become usable: {e}",
                created_instance_ids=(name,),
                created_security_group_ids=created_groups,
            ) from e

        return ProvisionedVM(
            id=name,
            private_ip=private_ip,
            public_ip=public_ip,
            credentials=VMCredentials(username=AZURE_ADMIN_USER, password=password),
            security_group_ids=(group_name,),
            created_security_group_ids=created_groups,
        )

    def _run_setup_script(self, name: str) -> None:
        """Open WinRM over HTTPS through the CustomScriptExtension."""
        cfg = self._config
        poller = self._compute.virtual_machine_extensions.begin_create_or_update(
            cfg.resource_group,
            name,
            _SETUP_EXTENSION,
            {
                "location": cfg.region,
                "publisher": "Microsoft.Compute",
                "type_properties_type": "CustomScriptExtension",
                "type_handler_version": "1.10",
                "auto_upgrade_minor_version": True,
                "protected_settings": {"commandToExecute": azure_setup_command()},
            },
        )
        poller.result(timeout=cfg.create_timeout)
        if not poller.done():
            raise TimeoutError(f"setup script on {name} not finished after {cfg.create_timeout}s")

    def _addresses(self, vm: Any) -> tuple[str, str | None]:
        """Private and public IP of the VM's primary NIC."""
        rg = self._config.resource_group
        nic = self._network.network_interfaces.get(rg, _resource_name(vm.network_profile.network_interfaces[0].id))
        ip_config = nic.ip_configurations[0]
        public_ip = None
        if ip_config.public_ip_address is not None:
            pip = self._network.public_ip_addresses.get(rg, _resource_name(ip_config.public_ip_address.id))
            public_ip = pip.ip_address
        return ip_config.private_ip_address or "", public_ip

    # -------------------------------------------------------------------------
    # Destroy
    # -------------------------------------------------------------------------

    def destroy_vm(self, instance_id: str) -> None:
        cfg = self._config
        try:
            poller = self._compute.virtual_machines.begin_delete(cfg.resource_group, instance_id)
        except ResourceNotFoundError as e:
            raise NotFoundError(instance_id) from e
        except HttpResponseError as e:
            raise ProviderAPIError(f"failed to delete {instance_id}: {e}") from e

        try:
            poller.wait(timeout=cfg.destroy_timeout)
        except HttpResponseError as e:
            raise ProviderAPIError(f"deletion of {instance_id} failed: {e}") from e
        if not poller.done():
            raise DestroyTimeoutError(instance_id, cfg.destroy_timeout)
        log.info("Deleted virtual machine {name}", name=instance_id)

    def security_group_in_use(self, group_id: str) -> bool:
        try:
            nsg = self._network.network_security_groups.get(self._config.resource_group, group_id)
        except ResourceNotFoundError:
            return False
        except HttpResponseError as e:
            raise ProviderAPIError(f"failed to look up network security group {group_id}: {e}") from e
        return bool(nsg.network_interfaces) or bool(nsg.subnets)

    def delete_security_group(self, group_id: str) -> None:
        cfg = self._config
        try:
            poller = self._network.network_security_groups.begin_delete(cfg.resource_group, group_id)
            poller.wait(timeout=cfg.destroy_timeout)
        except ResourceNotFoundError as e:
            raise NotFoundError(group_id) from e
        except HttpResponseError as e:
            if getattr(e.error, "code", None) in _NSG_IN_USE_CODES:
                raise SecurityGroupInUseError(group_id) from e
            raise ProviderAPIError(f"failed to delete network security group {group_id}: {e}") from e
        if not poller.done():
            raise ProviderAPIError(
                f"network security group {group_id} not deleted after {cfg.destroy_timeout}s"
            )
        log.info("Deleted network security group {name}", name=group_id)


def _resource_name(resource_id: str) -> str:
    return resource_id.rstrip("/").rsplit("/", 1)[-1]
