"""wni - provision Windows worker machines for an existing cluster.

Example:
    from wni import ClusterInfo, create_provisioner, load_settings

    provisioner = create_provisioner(
        load_settings(),
        lambda kubeconfig: ClusterInfo("AWS", "dev-x7k2p", "us-east-2"),
    )
    vm = provisioner.create_windows_vm()
    ...
    provisioner.destroy_windows_vms()
"""

from wni.config import ProvisionSettings, load_settings
from wni.errors import (
    AggregateDestroyError,
    CorruptLedgerError,
    CredentialError,
    DestroyTimeoutError,
    NotFoundError,
    PartiallyAppliedError,
    PathNotFoundError,
    ProviderAPIError,
    SecurityGroupInUseError,
    UnsupportedProviderError,
    WNIError,
)
from wni.facade import WindowsNodeProvisioner
from wni.factory import create_driver, create_provisioner
from wni.ledger import ResourceLedger, ResourceRecord
from wni.logging import LogConfig, setup_logging, teardown_logging
from wni.types import (
    ClusterInfo,
    PlatformType,
    ProvisionedVM,
    RunState,
    VMCredentials,
    VMSpec,
)

__all__ = [
    "AggregateDestroyError",
    "ClusterInfo",
    "CorruptLedgerError",
    "CredentialError",
    "DestroyTimeoutError",
    "LogConfig",
    "NotFoundError",
    "PartiallyAppliedError",
    "PathNotFoundError",
    "PlatformType",
    "ProviderAPIError",
    "ProvisionSettings",
    "ProvisionedVM",
    "ResourceLedger",
    "ResourceRecord",
    "RunState",
    "SecurityGroupInUseError",
    "UnsupportedProviderError",
    "VMCredentials",
    "VMSpec",
    "WNIError",
    "WindowsNodeProvisioner",
    "create_driver",
    "create_provisioner",
    "load_settings",
    "setup_logging",
    "teardown_logging",
]
