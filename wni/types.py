"""Core data types shared across wni."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from wni.errors import UnsupportedProviderError


class PlatformType(StrEnum):
    """Platform type reported by the cluster's infrastructure configuration."""

    AWS = "AWS"
    AZURE = "Azure"
    GCP = "GCP"
    BARE_METAL = "BareMetal"
    OPENSTACK = "OpenStack"
    VSPHERE = "VSphere"
    NONE = "None"

    @classmethod
    def parse(cls, value: str) -> PlatformType:
        """Parse a platform value, rejecting anything outside the known set."""
        try:
            return cls(value)
        except ValueError:
            raise UnsupportedProviderError(value) from None


class RunState(StrEnum):
    """Lifecycle of a single provisioning run."""

    IDLE = "idle"
    CREATING = "creating"
    CREATED = "created"
    FAILED = "failed"
    DESTROYING = "destroying"
    DESTROYED = "destroyed"
    PARTIALLY_DESTROYED = "partially-destroyed"


@dataclass(frozen=True, slots=True)
class ClusterInfo:
    """What the core needs to know about the target cluster.

    Args:
        platform: Platform type, as reported by the cluster.
        infrastructure_name: Unique cluster prefix used in resource names and tags.
        region: Cloud region the cluster runs in.
    """

    platform: PlatformType | str
    infrastructure_name: str
    region: str = ""


@dataclass(frozen=True, slots=True)
class VMSpec:
    """Per-run parameters of the machine to create."""

    image_id: str
    instance_type: str
    ssh_key: str = ""
    private_key_path: str = ""


@dataclass(frozen=True, slots=True)
class VMCredentials:
    username: str
    password: str

    def __repr__(self) -> str:
        return f"VMCredentials(username={self.username!r}, password='***')"


@dataclass(frozen=True, slots=True)
class ProvisionedVM:
    """Handle returned to the caller after a successful create.

    Only ``id`` and ``created_security_group_ids`` end up in the ledger.
    """

    id: str
    private_ip: str
    public_ip: str | None = None
    credentials: VMCredentials | None = None
    security_group_ids: tuple[str, ...] = ()
    created_security_group_ids: tuple[str, ...] = ()

    @property
    def address(self) -> str:
        """Best address to reach the machine from the caller."""
        return self.public_ip or self.private_ip
