"""Uniform lifecycle of Windows worker machines over any cloud driver.

The facade is the only component that touches both the driver and the
resource ledger. Every cloud-side create is followed by a ledger write before
control returns to the caller, and every confirmed destroy by a ledger
removal, so a later run can always pick up where an interrupted one stopped.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor

from loguru import logger

from wni.errors import (
    AggregateDestroyError,
    NotFoundError,
    PartiallyAppliedError,
    ProviderAPIError,
    SecurityGroupInUseError,
)
from wni.ledger import ResourceLedger
from wni.providers.base import CloudDriver
from wni.types import ProvisionedVM, RunState, VMSpec

log = logger.bind(component="lifecycle")


class WindowsNodeProvisioner:
    """Create and destroy Windows worker machines, tracking them in a ledger.

    Args:
        driver: Provider driver performing the cloud calls.
        ledger: Durable record of what has been created.
        spec: Parameters of the machines to create.
        destroy_concurrency: Parallel destroy calls during ``destroy_windows_vms``.
    """

    def __init__(
        self,
        driver: CloudDriver,
        ledger: ResourceLedger,
        spec: VMSpec,
        *,
        destroy_concurrency: int = 1,
    ) -> None:
        self.driver = driver
        self.ledger = ledger
        self.spec = spec
        self.destroy_concurrency = max(1, destroy_concurrency)
        self.state = RunState.IDLE

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    def create_windows_vm(self) -> ProvisionedVM:
        """Create a machine reachable from outside the cluster network."""
        return self._create(self.driver.create_vm)

    def create_windows_vm_with_private_subnet(self) -> ProvisionedVM:
        """Create a machine reachable only from inside the cluster network."""
        return self._create(self.driver.create_vm_private_subnet)

    def _create(self, create: Callable[[VMSpec], ProvisionedVM]) -> ProvisionedVM:
        # Corrupt state aborts here, before anything exists in the cloud.
        self.ledger.reload()
        self.state = RunState.CREATING

        try:
            vm = create(self.spec)
        except ProviderAPIError as e:
            self.state = RunState.FAILED
            try:
                self._track(e.created_instance_ids, e.created_security_group_ids)
            except PartiallyAppliedError as untracked:
                raise untracked from e
            raise
        except Exception:
            self.state = RunState.FAILED
            raise

        self._track((vm.id,), vm.created_security_group_ids)

        self.state = RunState.CREATED
        log.info("Created {id} ({ip})", id=vm.id, ip=vm.address)
        return vm

    def _track(self, instance_ids: tuple[str, ...], group_ids: tuple[str, ...]) -> None:
        """Record created resources, naming every one left untracked on failure."""
        pending = [(self.ledger.record_instance_created, i) for i in instance_ids]
        pending += [(self.ledger.record_security_group_created, g) for g in group_ids]
        for index, (record, resource_id) in enumerate(pending):
            try:
                record(resource_id)
            except OSError as e:
                self.state = RunState.FAILED
                untracked = ", ".join(rid for _, rid in pending[index:])
                raise PartiallyAppliedError(untracked, e) from e

    # -------------------------------------------------------------------------
    # Destroy
    # -------------------------------------------------------------------------

    def destroy_windows_vm(self, instance_id: str) -> None:
        """Destroy one instance, then delete security groups nobody uses anymore.

        An instance the provider no longer knows counts as destroyed.

        Raises:
            DestroyTimeoutError: Termination was not confirmed in time; the
                ledger entry is kept so a later call can retry.
            ProviderAPIError: Any other provider failure.
            AggregateDestroyError: An unused security group could not be deleted.
        """
        self.ledger.reload()
        self.state = RunState.DESTROYING
        try:
            self._destroy_instance(instance_id)
        except Exception:
            self.state = RunState.PARTIALLY_DESTROYED
            raise

        # Groups still shared with other instances are simply kept.
        failures = {
            group_id: err
            for group_id, err in self._sweep_security_groups().items()
            if not isinstance(err, SecurityGroupInUseError)
        }
        if failures:
            self.state = RunState.PARTIALLY_DESTROYED
            raise AggregateDestroyError(failures)
        self.state = RunState.DESTROYED

    def destroy_windows_vms(self, *, stop: threading.Event | None = None) -> None:
        """Destroy every tracked instance, then every unused tracked security group.

        Failures do not stop the remaining destroys; they are collected and
        raised together. Success means the ledger ends up empty.

        Args:
            stop: When set, no further destroy is started. Destroys already in
                flight run to completion.

        Raises:
            AggregateDestroyError: Lists every ID still owed a deletion.
        """
        record = self.ledger.reload()
        if record.is_empty:
            log.info("Nothing to destroy")
            self.state = RunState.DESTROYED
            return

        self.state = RunState.DESTROYING
        failures: dict[str, BaseException] = {}
        failures_lock = threading.Lock()

        def destroy(instance_id: str) -> None:
            if stop is not None and stop.is_set():
                err: BaseException = RuntimeError("destroy cancelled")
            else:
                try:
                    self._destroy_instance(instance_id)
                    return
                except Exception as e:
                    log.warning("Failed to destroy {id}: {err}", id=instance_id, err=e)
                    err = e
            with failures_lock:
                failures[instance_id] = err

        if self.destroy_concurrency == 1:
            for instance_id in record.instance_ids:
                destroy(instance_id)
        else:
            with ThreadPoolExecutor(
                max_workers=self.destroy_concurrency,
                thread_name_prefix="wni-destroy",
            ) as pool:
                list(pool.map(destroy, record.instance_ids))

        # Groups are swept once every instance destroy has settled.
        if not (stop is not None and stop.is_set()):
            failures.update(self._sweep_security_groups())
        else:
            failures.update(
                {g: RuntimeError("destroy cancelled") for g in self.ledger.all_security_group_ids()}
            )

        if failures:
            self.state = RunState.PARTIALLY_DESTROYED
            raise AggregateDestroyError(failures)
        self.state = RunState.DESTROYED
        log.info("All tracked resources destroyed")

    def delete_security_group(self, group_id: str) -> None:
        """Delete one security group on explicit request.

        Raises:
            SecurityGroupInUseError: If a live instance still references it.
        """
        if self.driver.security_group_in_use(group_id):
            raise SecurityGroupInUseError(group_id)
        try:
            self.driver.delete_security_group(group_id)
        except NotFoundError:
            log.debug("Security group {id} already gone", id=group_id)
        self.ledger.remove_security_group(group_id)

    def _destroy_instance(self, instance_id: str) -> None:
        try:
            self.driver.destroy_vm(instance_id)
        except NotFoundError:
            log.info("Instance {id} already gone", id=instance_id)
        self.ledger.remove_instance(instance_id)

    def _sweep_security_groups(self) -> dict[str, BaseException]:
        """Delete every tracked security group no live instance references.

        Returns:
            Groups that could not be deleted, with the reason. Groups still in
            use are reported too, since they remain in the ledger.
        """
        leftovers: dict[str, BaseException] = {}
        for group_id in self.ledger.all_security_group_ids():
            try:
                if self.driver.security_group_in_use(group_id):
                    log.info("Keeping security group {id}, still in use", id=group_id)
                    leftovers[group_id] = SecurityGroupInUseError(group_id)
                    continue
                self.driver.delete_security_group(group_id)
            except NotFoundError:
                log.debug("Security group {id} already gone", id=group_id)
            except (SecurityGroupInUseError, ProviderAPIError) as e:
                log.warning("Failed to delete security group {id}: {err}", id=group_id, err=e)
                leftovers[group_id] = e
                continue
            self.ledger.remove_security_group(group_id)
        return leftovers
