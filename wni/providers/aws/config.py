"""AWS driver configuration.

Immutable configuration dataclass for the EC2 driver.
"""

from __future__ import annotations

from dataclasses import dataclass

from wni.constants import DEFAULT_CREATE_TIMEOUT, DEFAULT_DESTROY_TIMEOUT


@dataclass(frozen=True, slots=True)
class AWS:
    """AWS driver configuration.

    Example:
        >>> from wni.providers.aws import AWS
        >>> config = AWS(
        ...     infrastructure_name="dev-x7k2p",
        ...     region="us-east-2",
        ...     credentials_file="/home/me/.aws/credentials",
        ...     profile="default",
        ... )

    Args:
        infrastructure_name: Cluster prefix used for names and ownership tags.
        region: AWS region the cluster runs in.
        credentials_file: Absolute path to a shared credentials file.
        profile: Profile inside the credentials file.
        ingress_cidr: Source range allowed to reach RDP and WinRM.
        create_timeout: Seconds to wait for the instance to run.
        destroy_timeout: Seconds to wait for the instance to terminate.
    """

    infrastructure_name: str
    region: str
    credentials_file: str
    profile: str = "default"
    ingress_cidr: str = "10.0.0.0/8"
    create_timeout: int = DEFAULT_CREATE_TIMEOUT
    destroy_timeout: int = DEFAULT_DESTROY_TIMEOUT

    @property
    def type(self) -> str: return "aws"

    @property
    def security_group_name(self) -> str:
        return f"{self.infrastructure_name}-windows-worker-sg"

    @property
    def worker_security_group_name(self) -> str:
        return f"{self.infrastructure_name}-worker-sg"

    @property
    def instance_profile_name(self) -> str:
        return f"{self.infrastructure_name}-worker-profile"
