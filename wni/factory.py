"""Selection and construction of the driver matching the cluster's platform.

Uses lazy imports so only the SDK of the selected provider is loaded.
"""

from __future__ import annotations

from collections.abc import Callable

from loguru import logger

from wni.config import ProvisionSettings
from wni.errors import UnsupportedProviderError
from wni.facade import WindowsNodeProvisioner
from wni.ledger import ResourceLedger
from wni.paths import resolve_path, tracker_file_path
from wni.providers.base import CloudDriver
from wni.types import ClusterInfo, PlatformType

log = logger.bind(component="factory")

type ClusterLookup = Callable[[str], ClusterInfo]
"""Returns the target cluster's details, given the resolved kubeconfig path."""


def create_driver(cluster: ClusterInfo, settings: ProvisionSettings) -> CloudDriver:
    """Build the driver for the cluster's platform.

    ``settings`` must already carry resolved paths.

    Raises:
        UnsupportedProviderError: If no driver exists for the platform.
        CredentialError: If the credentials cannot be used.
    """
    platform = PlatformType.parse(str(cluster.platform))
    log.debug("Creating driver for platform={platform}", platform=platform)

    match platform:
        case PlatformType.AWS:
            from wni.providers.aws.config import AWS
            from wni.providers.aws.driver import AWSDriver

            return AWSDriver.create(
                AWS(
                    infrastructure_name=cluster.infrastructure_name,
                    region=cluster.region,
                    credentials_file=settings.credentials,
                    profile=settings.credential_account or "default",
                    ingress_cidr=settings.ingress_cidr,
                    create_timeout=settings.create_timeout,
                    destroy_timeout=settings.destroy_timeout,
                )
            )
        case PlatformType.AZURE:
            from wni.providers.azure.config import Azure
            from wni.providers.azure.driver import AzureDriver

            return AzureDriver.create(
                Azure(
                    infrastructure_name=cluster.infrastructure_name,
                    region=cluster.region,
                    credentials_file=settings.credentials,
                    subscription_id=settings.credential_account,
                    ingress_cidr=settings.ingress_cidr,
                    create_timeout=settings.create_timeout,
                    destroy_timeout=settings.destroy_timeout,
                )
            )
        case PlatformType.GCP:
            from wni.providers.gcp.config import GCP
            from wni.providers.gcp.driver import GCPDriver

            return GCPDriver.create(
                GCP(
                    infrastructure_name=cluster.infrastructure_name,
                    region=cluster.region,
                    credentials_file=settings.credentials,
                    project=settings.credential_account,
                    zone=settings.zone,
                    ingress_cidr=settings.ingress_cidr,
                    create_timeout=settings.create_timeout,
                    destroy_timeout=settings.destroy_timeout,
                )
            )
        case _:
            raise UnsupportedProviderError(str(platform))


def resolve_settings(settings: ProvisionSettings) -> ProvisionSettings:
    """Validate every path in ``settings`` and return them absolute.

    Raises:
        PathNotFoundError: If a required path is empty or any path is missing.
    """
    return settings.with_resolved(
        kubeconfig=resolve_path(settings.kubeconfig, optional=True, what="kubeconfig"),
        credentials=resolve_path(settings.credentials, what="credentials file"),
        resource_tracker_dir=resolve_path(
            settings.resource_tracker_dir, what="resource tracker directory"
        ),
        private_key=resolve_path(settings.private_key, optional=True, what="private key"),
    )


def create_provisioner(
    settings: ProvisionSettings,
    cluster_lookup: ClusterLookup,
) -> WindowsNodeProvisioner:
    """Build a ready-to-use provisioner for the cluster behind the kubeconfig.

    Paths are validated and the ledger is read before the cluster is looked
    up, so bad input fails before any cluster or cloud call is made.
    """
    resolved = resolve_settings(settings)
    ledger = ResourceLedger(tracker_file_path(resolved.resource_tracker_dir))
    ledger.load()

    cluster = cluster_lookup(resolved.kubeconfig)
    driver = create_driver(cluster, resolved)

    log.info(
        "Using {driver} driver for cluster {infra}, tracking resources in {path}",
        driver=driver.name,
        infra=cluster.infrastructure_name,
        path=ledger.path,
    )
    return WindowsNodeProvisioner(
        driver,
        ledger,
        resolved.vm_spec(),
        destroy_concurrency=resolved.destroy_concurrency,
    )
