from typing import Protocol, runtime_checkable

from wni.types import ProvisionedVM, VMSpec


@runtime_checkable
class CloudDriver(Protocol):
    """Provider-specific create/destroy operations for Windows worker machines.

    Implementations hold only immutable configuration and SDK clients. The
    resource ledger is owned by the caller; drivers never touch it, they only
    report what they created.
    """

    @property
    def name(self) -> str:
        """Short provider name used in logs."""
        ...

    def create_vm(self, spec: VMSpec) -> ProvisionedVM:
        """Create a machine in a publicly reachable network segment.

        Parameters
        ----------
        spec
            Image, machine size and key parameters.

        Returns
        -------
        ProvisionedVM
            Handle with the instance ID, addresses and any security groups
            created by this call.

        Raises
        ------
        ProviderAPIError
            If the cloud rejects the request or the machine does not come up.
            ``created_security_group_ids`` lists groups made before the failure.
        """
        ...

    def create_vm_private_subnet(self, spec: VMSpec) -> ProvisionedVM:
        """Create a machine without a public address.

        The driver discovers the cluster's private subnet. Otherwise identical
        to ``create_vm``.
        """
        ...

    def destroy_vm(self, instance_id: str) -> None:
        """Terminate an instance and block until the provider confirms it.

        Raises
        ------
        NotFoundError
            If the provider does not know the instance.
        DestroyTimeoutError
            If termination is not confirmed within the configured timeout.
        ProviderAPIError
            For any other provider failure.
        """
        ...

    def security_group_in_use(self, group_id: str) -> bool:
        """Whether any live instance still references the group."""
        ...

    def delete_security_group(self, group_id: str) -> None:
        """Delete a security group.

        Raises
        ------
        NotFoundError
            If the group no longer exists.
        SecurityGroupInUseError
            If the provider refuses because the group is still referenced.
        """
        ...
