"""Azure driver configuration."""

from __future__ import annotations

from dataclasses import dataclass

from wni.constants import (
    DEFAULT_CREATE_TIMEOUT,
    DEFAULT_DESTROY_TIMEOUT,
    windows_worker_name,
)


@dataclass(frozen=True, slots=True)
class Azure:
    """Azure virtual machine driver configuration.

    Example:
        >>> from wni.providers.azure import Azure
        >>> config = Azure(
        ...     infrastructure_name="dev-x7k2p",
        ...     region="centralus",
        ...     credentials_file="/home/me/.azure/osServicePrincipal.json",
        ... )

    Args:
        infrastructure_name: Cluster prefix used for resource group, network
            and machine names.
        region: Location the cluster runs in.
        credentials_file: Service principal auth file (``clientId``,
            ``clientSecret``, ``tenantId``, ``subscriptionId``).
        subscription_id: Subscription to use. If empty, taken from the file.
        ingress_cidr: Source range allowed to reach RDP and WinRM.
        create_timeout: Seconds to wait for the machine to be provisioned.
        destroy_timeout: Seconds to wait for the machine to be deleted.
    """

    infrastructure_name: str
    region: str
    credentials_file: str
    subscription_id: str = ""
    ingress_cidr: str = "10.0.0.0/8"
    create_timeout: int = DEFAULT_CREATE_TIMEOUT
    destroy_timeout: int = DEFAULT_DESTROY_TIMEOUT

    @property
    def type(self) -> str: return "azure"

    @property
    def resource_group(self) -> str:
        return f"{self.infrastructure_name}-rg"

    @property
    def vnet_name(self) -> str:
        return f"{self.infrastructure_name}-vnet"

    @property
    def subnet_name(self) -> str:
        return f"{self.infrastructure_name}-worker-subnet"

    @property
    def security_group_name(self) -> str:
        return f"{windows_worker_name(self.infrastructure_name)}-nsg"

    @property
    def cluster_tag_key(self) -> str:
        # Azure tag names cannot contain "/".
        return f"kubernetes.io_cluster.{self.infrastructure_name}"
