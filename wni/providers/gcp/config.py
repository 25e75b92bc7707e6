"""GCP driver configuration.

Immutable configuration dataclass for the Compute Engine driver.
"""

from __future__ import annotations

from dataclasses import dataclass

from wni.constants import (
    DEFAULT_CREATE_TIMEOUT,
    DEFAULT_DESTROY_TIMEOUT,
    windows_worker_name,
)


@dataclass(frozen=True, slots=True)
class GCP:
    """GCP Compute Engine driver configuration.

    Example:
        >>> from wni.providers.gcp import GCP
        >>> config = GCP(
        ...     infrastructure_name="dev-x7k2p",
        ...     region="us-central1",
        ...     credentials_file="/home/me/.gcp/osServiceAccount.json",
        ... )

    Args:
        infrastructure_name: Cluster prefix used for names, tags and labels.
        region: Region the cluster runs in.
        credentials_file: Absolute path to a service account key file.
        project: Project ID. If empty, taken from the key file.
        zone: Zone for new machines. Defaults to ``<region>-a``.
        disk_size_gb: Boot disk size in GB.
        ingress_cidr: Source range allowed to reach RDP and WinRM.
        create_timeout: Seconds to wait for the machine to run.
        destroy_timeout: Seconds to wait for the machine to be deleted.
    """

    infrastructure_name: str
    region: str
    credentials_file: str
    project: str = ""
    zone: str = ""
    disk_size_gb: int = 128
    ingress_cidr: str = "10.0.0.0/8"
    create_timeout: int = DEFAULT_CREATE_TIMEOUT
    destroy_timeout: int = DEFAULT_DESTROY_TIMEOUT

    @property
    def type(self) -> str: return "gcp"

    @property
    def effective_zone(self) -> str:
        return self.zone or f"{self.region}-a"

    @property
    def firewall_name(self) -> str:
        return windows_worker_name(self.infrastructure_name)

    @property
    def network_tag(self) -> str:
        return windows_worker_name(self.infrastructure_name)

    @property
    def subnet_name(self) -> str:
        return f"{self.infrastructure_name}-worker-subnet"

    @property
    def cluster_label(self) -> str:
        return f"kubernetes-io-cluster-{self.infrastructure_name}"
