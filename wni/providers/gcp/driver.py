"""Compute Engine driver for Windows worker machines.

GCP has no security groups; the equivalent is a firewall rule that applies to
every instance carrying its target network tag. The rule's name is what the
resource ledger tracks, and "in use" means an existing instance, running or
not, still carries the tag.
"""

from __future__ import annotations

import uuid
from typing import Any

from google.api_core import exceptions as gexc
from google.cloud import compute_v1
from loguru import logger

from wni.constants import CLUSTER_TAG_OWNED, RDP_PORT, WINRM_HTTPS_PORT
from wni.errors import (
    CredentialError,
    DestroyTimeoutError,
    NotFoundError,
    ProviderAPIError,
)
from wni.providers.userdata import gce_startup_metadata
from wni.types import ProvisionedVM, VMSpec
from wni.wait import wait_for_ready

from .config import GCP

log = logger.bind(component="gcp")


def load_credentials(config: GCP) -> tuple[Any, str]:
    """Load the service account key and settle on a project.

    Returns:
        Tuple of (credentials, project_id).

    Raises:
        CredentialError: If the key cannot be read or no project is known.
    """
    from google.oauth2 import service_account

    try:
        credentials = service_account.Credentials.from_service_account_file(
            config.credentials_file,
            scopes=["https://www.googleapis.com/auth/cloud-platform"],
        )
    except (ValueError, OSError) as e:
        raise CredentialError(
            f"cannot load service account key {config.credentials_file}: {e}"
        ) from e

    project = config.project or credentials.project_id
    if not project:
        raise CredentialError(
            f"no project ID given and none found in {config.credentials_file}"
        )
    return credentials, project


class GCPDriver:
    """Stateless Compute Engine driver. Holds only immutable config + sync clients."""

    def __init__(
        self,
        config: GCP,
        project: str,
        instances_client: Any,
        firewalls_client: Any,
        subnetworks_client: Any,
    ) -> None:
        self._config = config
        self._project = project
        self._instances = instances_client
        self._firewalls = firewalls_client
        self._subnetworks = subnetworks_client

    @classmethod
    def create(cls, config: GCP) -> GCPDriver:
        if not config.region:
            raise CredentialError("GCP region is not set for the cluster")
        credentials, project = load_credentials(config)
        log.info("Resolved GCP project: {project}", project=project)
        return cls(
            config=config,
            project=project,
            instances_client=compute_v1.InstancesClient(credentials=credentials),
            firewalls_client=compute_v1.FirewallsClient(credentials=credentials),
            subnetworks_client=compute_v1.SubnetworksClient(credentials=credentials),
        )

    @property
    def name(self) -> str:
        return "gcp"

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    def create_vm(self, spec: VMSpec) -> ProvisionedVM:
        return self._launch(spec, public=True)

    def create_vm_private_subnet(self, spec: VMSpec) -> ProvisionedVM:
        return self._launch(spec, public=False)

    def _worker_subnet(self) -> Any:
        try:
            return self._subnetworks.get(
                project=self._project,
                region=self._config.region,
                subnetwork=self._config.subnet_name,
            )
        except gexc.NotFound as e:
            raise ProviderAPIError(
                f"worker subnet {self._config.subnet_name} not found in {self._config.region}"
            ) from e
        except gexc.GoogleAPICallError as e:
            raise ProviderAPIError(f"failed to look up worker subnet: {e}") from e

    def _ensure_firewall(self, network: str) -> tuple[str, bool]:
        """Return the Windows worker firewall rule, creating it if needed.

        Returns:
            Tuple of (rule_name, created).
        """
        rule_name = self._config.firewall_name
        try:
            self._firewalls.get(project=self._project, firewall=rule_name)
            log.debug("Firewall rule {name} already exists", name=rule_name)
            return rule_name, False
        except gexc.NotFound:
            pass
        except gexc.GoogleAPICallError as e:
            raise ProviderAPIError(f"failed to look up firewall rule {rule_name}: {e}") from e

        log.info("Creating firewall rule: {name}", name=rule_name)
        firewall = compute_v1.Firewall(
            name=rule_name,
            direction="INGRESS",
            allowed=[
                compute_v1.Allowed(
                    I_p_protocol="tcp",
                    ports=[str(RDP_PORT), str(WINRM_HTTPS_PORT)],
                ),
            ],
            source_ranges=[self._config.ingress_cidr],
            network=network,
            target_tags=[self._config.network_tag],
        )
        try:
            operation = self._firewalls.insert(
                project=self._project,
                firewall_resource=firewall,
            )
        except gexc.GoogleAPICallError as e:
            raise ProviderAPIError(f"failed to create firewall rule {rule_name}: {e}") from e

        try:
            operation.result(timeout=self._config.create_timeout)
        except (gexc.GoogleAPICallError, TimeoutError) as e:
            raise ProviderAPIError(
                f"firewall rule {rule_name} was not created: {e}",
                created_security_group_ids=(rule_name,),
            ) from e
        return rule_name, True

    def _launch(self, spec: VMSpec, *, public: bool) -> ProvisionedVM:
        subnet = self._worker_subnet()
        rule_name, created = self._ensure_firewall(subnet.network)
        created_rules = (rule_name,) if created else ()

        zone = self._config.effective_zone
        name = f"{self._config.network_tag}-{uuid.uuid4().hex[:5]}"

        network_interface = compute_v1.NetworkInterface(subnetwork=subnet.self_link)
        if public:
            network_interface.access_configs = [
                compute_v1.AccessConfig(name="External NAT", type_="ONE_TO_ONE_NAT"),
            ]

        instance = compute_v1.Instance(
            name=name,
            machine_type=f"zones/{zone}/machineTypes/{spec.instance_type}",
            disks=[
                compute_v1.AttachedDisk(
                    auto_delete=True,
                    boot=True,
                    initialize_params=compute_v1.AttachedDiskInitializeParams(
                        source_image=spec.image_id,
                        disk_size_gb=self._config.disk_size_gb,
                    ),
                ),
            ],
            network_interfaces=[network_interface],
            metadata=compute_v1.Metadata(
                items=[compute_v1.Items(**item) for item in gce_startup_metadata()],
            ),
            tags=compute_v1.Tags(items=[self._config.network_tag]),
            labels={self._config.cluster_label: CLUSTER_TAG_OWNED},
        )

        try:
            operation = self._instances.insert(
                project=self._project,
                zone=zone,
                instance_resource=instance,
            )
        except gexc.GoogleAPICallError as e:
            raise ProviderAPIError(
                f"failed to create instance {name}: {e}",
                created_security_group_ids=created_rules,
            ) from e
        log.info("Creating instance {name} ({type}) in {zone}", name=name, type=spec.instance_type, zone=zone)

        try:
            operation.result(timeout=self._config.create_timeout)
            gce_inst = wait_for_ready(
                lambda: self._instances.get(project=self._project, zone=zone, instance=name),
                lambda inst: inst.status == "RUNNING",
                timeout=self._config.create_timeout,
                description=f"instance {name}",
            )
        except Exception as e:
            raise ProviderAPIError(
                f"instance {name} did not become usable: {e}",
                created_instance_ids=(name,),
                created_security_group_ids=created_rules,
            ) from e

        return ProvisionedVM(
            id=name,
            private_ip=_extract_internal_ip(gce_inst),
            public_ip=_extract_external_ip(gce_inst),
            security_group_ids=(rule_name,),
            created_security_group_ids=created_rules,
        )

    # -------------------------------------------------------------------------
    # Destroy
    # -------------------------------------------------------------------------

    def destroy_vm(self, instance_id: str) -> None:
        try:
            operation = self._instances.delete(
                project=self._project,
                zone=self._config.effective_zone,
                instance=instance_id,
            )
        except gexc.NotFound as e:
            raise NotFoundError(instance_id) from e
        except gexc.GoogleAPICallError as e:
            raise ProviderAPIError(f"failed to delete {instance_id}: {e}") from e

        timeout = self._config.destroy_timeout
        try:
            operation.result(timeout=timeout)
        except TimeoutError as e:
            raise DestroyTimeoutError(instance_id, timeout) from e
        except gexc.GoogleAPICallError as e:
            raise ProviderAPIError(f"deletion of {instance_id} failed: {e}") from e
        log.info("Deleted instance {name}", name=instance_id)

    def security_group_in_use(self, group_id: str) -> bool:
        try:
            firewall = self._firewalls.get(project=self._project, firewall=group_id)
        except gexc.NotFound:
            return False
        except gexc.GoogleAPICallError as e:
            raise ProviderAPIError(f"failed to look up firewall rule {group_id}: {e}") from e

        target_tags = set(firewall.target_tags)
        try:
            instances = list(
                self._instances.list(project=self._project, zone=self._config.effective_zone)
            )
        except gexc.GoogleAPICallError as e:
            raise ProviderAPIError(f"failed to list instances: {e}") from e

        # Stopped (TERMINATED) and suspended instances still exist and keep their tags.
        return any(
            not target_tags or target_tags & set(inst.tags.items) for inst in instances
        )

    def delete_security_group(self, group_id: str) -> None:
        try:
            operation = self._firewalls.delete(project=self._project, firewall=group_id)
            operation.result(timeout=self._config.destroy_timeout)
        except gexc.NotFound as e:
            raise NotFoundError(group_id) from e
        except (gexc.GoogleAPICallError, TimeoutError) as e:
            raise ProviderAPIError(f"failed to delete firewall rule {group_id}: {e}") from e
        log.info("Deleted firewall rule {name}", name=group_id)


# =============================================================================
# Pure helper functions (no GCP API calls)
# =============================================================================


def _extract_external_ip(instance: Any) -> str | None:
    """Extract external IP from a GCE instance object."""
    for iface in getattr(instance, "network_interfaces", None) or []:
        for config in getattr(iface, "access_configs", []):
            ip = getattr(config, "nat_i_p", None)
            if ip:
                return str(ip)
    return None


def _extract_internal_ip(instance: Any) -> str:
    for iface in getattr(instance, "network_interfaces", None) or []:
        if ip := getattr(iface, "network_i_p", None):
            return str(ip)
    return ""
