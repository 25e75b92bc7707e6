"""EC2 driver for Windows worker machines.

Machines join the cluster's own VPC. They get a dedicated security group
(``<infra>-windows-worker-sg``) opening RDP and WinRM, plus the cluster's
worker security group so the node can talk to the control plane.
"""

from __future__ import annotations

import uuid
from functools import cached_property
from typing import TYPE_CHECKING, Any

from botocore.exceptions import BotoCoreError, ClientError, WaiterError
from loguru import logger

from wni.constants import (
    CLUSTER_TAG_OWNED,
    LIVE_INSTANCE_STATES,
    PASSWORD_POLL_INTERVAL,
    RDP_PORT,
    WAITER_DELAY,
    WINDOWS_ADMIN_USER,
    WINRM_HTTPS_PORT,
    cluster_tag_key,
    windows_worker_name,
)
from wni.errors import (
    CredentialError,
    DestroyTimeoutError,
    NotFoundError,
    ProviderAPIError,
    SecurityGroupInUseError,
)
from wni.providers.userdata import ec2_user_data
from wni.types import ProvisionedVM, VMCredentials, VMSpec
from wni.wait import wait_for_ready

from .config import AWS
from .password import decrypt_password

if TYPE_CHECKING:
    import boto3
    from mypy_boto3_ec2 import EC2Client

log = logger.bind(component="aws")

_INSTANCE_NOT_FOUND = frozenset({"InvalidInstanceID.NotFound", "InvalidInstanceID.Malformed"})
_GROUP_NOT_FOUND = frozenset({"InvalidGroup.NotFound", "InvalidGroupId.Malformed"})
_MAX_ATTEMPTS_EXCEEDED = "Max attempts exceeded"


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


def _max_attempts(timeout: int) -> int:
    return max(1, timeout // WAITER_DELAY)


def _instance_state(response: dict[str, Any] | None) -> str | None:
    """State name of the first instance in a ``describe_instances`` response."""
    for reservation in (response or {}).get("Reservations", []):
        for instance in reservation.get("Instances", []):
            return instance.get("State", {}).get("Name")
    return None


def create_session(config: AWS) -> boto3.Session:
    """Build a boto3 session bound to the configured credentials file and profile.

    Raises:
        CredentialError: If the region is missing or the profile does not exist.
    """
    import boto3
    import botocore.session

    if not config.region:
        raise CredentialError("AWS region is not set for the cluster")

    core = botocore.session.Session()
    core.set_config_variable("credentials_file", config.credentials_file)
    if config.profile not in core.available_profiles:
        raise CredentialError(
            f"profile '{config.profile}' not found in {config.credentials_file}. "
            f"Available: {', '.join(core.available_profiles) or 'none'}"
        )
    return boto3.Session(
        botocore_session=core,
        profile_name=config.profile,
        region_name=config.region,
    )


class AWSDriver:
    """Stateless EC2 driver. Holds only immutable config and the EC2 client."""

    def __init__(self, config: AWS, ec2: EC2Client) -> None:
        self._config = config
        self._ec2 = ec2

    @classmethod
    def create(cls, config: AWS) -> AWSDriver:
        session = create_session(config)
        log.debug(
            "AWS session ready (profile={profile}, region={region})",
            profile=config.profile,
            region=config.region,
        )
        return cls(config, session.client("ec2"))

    @property
    def name(self) -> str:
        return "aws"

    # -------------------------------------------------------------------------
    # Discovery
    # -------------------------------------------------------------------------

    @cached_property
    def _vpc(self) -> tuple[str, str]:
        """ID and CIDR block of the cluster's VPC."""
        infra = self._config.infrastructure_name
        resp = self._call(
            "describe VPCs",
            self._ec2.describe_vpcs,
            Filters=[{"Name": f"tag:{cluster_tag_key(infra)}", "Values": [CLUSTER_TAG_OWNED]}],
        )
        vpcs = resp.get("Vpcs", [])
        if not vpcs:
            raise ProviderAPIError(f"no VPC tagged for cluster {infra}")
        return vpcs[0]["VpcId"], vpcs[0]["CidrBlock"]

    def _find_subnet(self, *, public: bool) -> str:
        kind = "public" if public else "private"
        vpc_id, _ = self._vpc
        resp = self._call(
            "describe subnets",
            self._ec2.describe_subnets,
            Filters=[
                {"Name": "vpc-id", "Values": [vpc_id]},
                {
                    "Name": "tag:Name",
                    "Values": [f"{self._config.infrastructure_name}-{kind}-*"],
                },
            ],
        )
        subnets = sorted(resp.get("Subnets", []), key=lambda s: s.get("AvailabilityZone", ""))
        if not subnets:
            raise ProviderAPIError(f"no {kind} subnet found in {vpc_id}")
        return subnets[0]["SubnetId"]

    def _find_security_group(self, name: str) -> str | None:
        vpc_id, _ = self._vpc
        resp = self._call(
            "describe security groups",
            self._ec2.describe_security_groups,
            Filters=[
                {"Name": "vpc-id", "Values": [vpc_id]},
                {"Name": "group-name", "Values": [name]},
            ],
        )
        groups = resp.get("SecurityGroups", [])
        return groups[0]["GroupId"] if groups else None

    def _ensure_security_group(self) -> tuple[str, bool]:
        """Return the Windows worker group, creating it if needed.

        Returns:
            Tuple of (group_id, created).
        """
        name = self._config.security_group_name
        existing = self._find_security_group(name)
        if existing:
            log.debug("Reusing security group {id}", id=existing)
            return existing, False

        vpc_id, vpc_cidr = self._vpc
        resp = self._call(
            "create security group",
            self._ec2.create_security_group,
            GroupName=name,
            Description="Windows worker nodes",
            VpcId=vpc_id,
            TagSpecifications=[
                {
                    "ResourceType": "security-group",
                    "Tags": [
                        {"Key": "Name", "Value": name},
                        {"Key": cluster_tag_key(self._config.infrastructure_name),
                         "Value": CLUSTER_TAG_OWNED},
                    ],
                }
            ],
        )
        group_id = resp["GroupId"]
        log.info("Created security group {id}", id=group_id)

        cidr = self._config.ingress_cidr
        try:
            self._ec2.authorize_security_group_ingress(
                GroupId=group_id,
                IpPermissions=[
                    {
                        "IpProtocol": "tcp",
                        "FromPort": RDP_PORT,
                        "ToPort": RDP_PORT,
                        "IpRanges": [{"CidrIp": cidr, "Description": "RDP"}],
                    },
                    {
                        "IpProtocol": "tcp",
                        "FromPort": WINRM_HTTPS_PORT,
                        "ToPort": WINRM_HTTPS_PORT,
                        "IpRanges": [{"CidrIp": cidr, "Description": "WinRM over HTTPS"}],
                    },
                    {
                        "IpProtocol": "-1",
                        "IpRanges": [{"CidrIp": vpc_cidr, "Description": "All traffic within the VPC"}],
                    },
                ],
            )
        except (ClientError, BotoCoreError) as e:
            raise ProviderAPIError(
                f"failed to authorize ingress on {group_id}: {e}",
                created_security_group_ids=(group_id,),
            ) from e
        return group_id, True

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    def create_vm(self, spec: VMSpec) -> ProvisionedVM:
        return self._launch(spec, public=True)

    def create_vm_private_subnet(self, spec: VMSpec) -> ProvisionedVM:
        return self._launch(spec, public=False)

    def _launch(self, spec: VMSpec, *, public: bool) -> ProvisionedVM:
        subnet_id = self._find_subnet(public=public)
        worker_group = self._find_security_group(self._config.worker_security_group_name)
        group_id, created = self._ensure_security_group()
        created_groups = (group_id,) if created else ()

        groups = [group_id]
        if worker_group:
            groups.append(worker_group)

        infra = self._config.infrastructure_name
        instance_name = f"{windows_worker_name(infra)}-{uuid.uuid4().hex[:5]}"
        params: dict[str, Any] = {
            "ImageId": spec.image_id,
            "InstanceType": spec.instance_type,
            "MinCount": 1,
            "MaxCount": 1,
            "UserData": ec2_user_data(),
            "IamInstanceProfile": {"Name": self._config.instance_profile_name},
            "NetworkInterfaces": [
                {
                    "DeviceIndex": 0,
                    "SubnetId": subnet_id,
                    "Groups": groups,
                    "AssociatePublicIpAddress": public,
                }
            ],
            "TagSpecifications": [
                {
                    "ResourceType": "instance",
                    "Tags": [
                        {"Key": "Name", "Value": instance_name},
                        {"Key": cluster_tag_key(infra), "Value": CLUSTER_TAG_OWNED},
                    ],
                }
            ],
        }
        if spec.ssh_key:
            params["KeyName"] = spec.ssh_key

        try:
            resp = self._ec2.run_instances(**params)
        except (ClientError, BotoCoreError) as e:
            raise ProviderAPIError(
                f"failed to launch instance: {e}",
                created_security_group_ids=created_groups,
            ) from e

        instance_id = resp["Instances"][0]["InstanceId"]
        log.info(
            "Launched {id} ({type}) in {subnet}",
            id=instance_id,
            type=spec.instance_type,
            subnet=subnet_id,
        )

        try:
            instance = self._wait_running(instance_id)
            credentials = (
                self._windows_credentials(instance_id, spec.private_key_path)
                if spec.private_key_path
                else None
            )
        except Exception as e:
            raise ProviderAPIError(
                f"instance {instance_id} did not become usable: {e}",
                created_instance_ids=(instance_id,),
                created_security_group_ids=created_groups,
            ) from e

        return ProvisionedVM(
            id=instance_id,
            private_ip=instance.get("PrivateIpAddress", ""),
            public_ip=instance.get("PublicIpAddress"),
            credentials=credentials,
            security_group_ids=tuple(groups),
            created_security_group_ids=created_groups,
        )

    def _wait_running(self, instance_id: str) -> dict[str, Any]:
        waiter = self._ec2.get_waiter("instance_running")
        try:
            waiter.wait(
                InstanceIds=[instance_id],
                WaiterConfig={
                    "Delay": WAITER_DELAY,
                    "MaxAttempts": _max_attempts(self._config.create_timeout),
                },
            )
        except WaiterError as e:
            raise ProviderAPIError(f"{instance_id} never reached running: {e}") from e

        resp = self._call(
            "describe instance",
            self._ec2.describe_instances,
            InstanceIds=[instance_id],
        )
        instances = [i for r in resp.get("Reservations", []) for i in r.get("Instances", [])]
        if not instances:
            raise ProviderAPIError(f"{instance_id} is running but not visible to describe_instances yet")
        return instances[0]

    def _windows_credentials(self, instance_id: str, private_key_path: str) -> VMCredentials:
        def poll() -> str | None:
            resp = self._call(
                "get password data",
                self._ec2.get_password_data,
                InstanceId=instance_id,
            )
            return resp.get("PasswordData") or None

        password_data = wait_for_ready(
            poll,
            bool,
            timeout=self._config.create_timeout,
            interval=PASSWORD_POLL_INTERVAL,
            description=f"password of {instance_id}",
        )
        return VMCredentials(
            username=WINDOWS_ADMIN_USER,
            password=decrypt_password(password_data, private_key_path),
        )

    # -------------------------------------------------------------------------
    # Destroy
    # -------------------------------------------------------------------------

    def destroy_vm(self, instance_id: str) -> None:
        try:
            self._ec2.terminate_instances(InstanceIds=[instance_id])
        except ClientError as e:
            if _error_code(e) in _INSTANCE_NOT_FOUND:
                raise NotFoundError(instance_id) from e
            raise ProviderAPIError(f"failed to terminate {instance_id}: {e}") from e
        except BotoCoreError as e:
            raise ProviderAPIError(f"failed to terminate {instance_id}: {e}") from e

        timeout = self._config.destroy_timeout
        waiter = self._ec2.get_waiter("instance_terminated")
        try:
            waiter.wait(
                InstanceIds=[instance_id],
                WaiterConfig={"Delay": WAITER_DELAY, "MaxAttempts": _max_attempts(timeout)},
            )
        except WaiterError as e:
            if _MAX_ATTEMPTS_EXCEEDED in str(e.kwargs.get("reason", "")):
                raise DestroyTimeoutError(instance_id, timeout) from e
            state = _instance_state(e.last_response) or "unknown"
            raise ProviderAPIError(
                f"{instance_id} entered state '{state}' while terminating: {e}"
            ) from e
        log.info("Terminated {id}", id=instance_id)

    def security_group_in_use(self, group_id: str) -> bool:
        resp = self._call(
            "describe instances",
            self._ec2.describe_instances,
            Filters=[
                {"Name": "instance.group-id", "Values": [group_id]},
                {"Name": "instance-state-name", "Values": [str(s) for s in LIVE_INSTANCE_STATES]},
            ],
        )
        return any(r.get("Instances") for r in resp.get("Reservations", []))

    def delete_security_group(self, group_id: str) -> None:
        try:
            self._ec2.delete_security_group(GroupId=group_id)
        except ClientError as e:
            code = _error_code(e)
            if code in _GROUP_NOT_FOUND:
                raise NotFoundError(group_id) from e
            if code == "DependencyViolation":
                raise SecurityGroupInUseError(group_id) from e
            raise ProviderAPIError(f"failed to delete {group_id}: {e}") from e
        except BotoCoreError as e:
            raise ProviderAPIError(f"failed to delete {group_id}: {e}") from e
        log.info("Deleted security group {id}", id=group_id)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _call(self, action: str, fn: Any, **kwargs: Any) -> Any:
        try:
            return fn(**kwargs)
        except (ClientError, BotoCoreError) as e:
            raise ProviderAPIError(f"failed to {action}: {e}") from e
