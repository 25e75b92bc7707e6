"""Exception hierarchy for wni.

Every error raised by the core derives from :class:`WNIError` so callers can
catch the whole family in one place. Provider SDK exceptions never leak out
directly; they are chained as ``__cause__`` of a :class:`ProviderAPIError`.
"""

from __future__ import annotations

from collections.abc import Mapping


class WNIError(Exception):
    """Base class for all wni errors."""


class PathNotFoundError(WNIError):
    """A caller-supplied path does not exist."""

    def __init__(self, path: str, what: str = "path") -> None:
        super().__init__(f"{what} {path!r} does not exist")
        self.path = path


class CredentialError(WNIError):
    """The credential file or the selected account cannot be used."""


class CorruptLedgerError(WNIError):
    """The resource tracker file exists but cannot be parsed."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"resource tracker {path} is corrupt: {reason}")
        self.path = path
        self.reason = reason


class UnsupportedProviderError(WNIError):
    """The cluster runs on a platform no driver exists for."""

    def __init__(self, platform: str) -> None:
        super().__init__(f"the '{platform}' cloud provider is not supported")
        self.platform = platform


class ProviderAPIError(WNIError):
    """A cloud API call failed.

    ``created_instance_ids`` and ``created_security_group_ids`` list resources
    the driver made before the failure, so they can still be tracked for
    cleanup.
    """

    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        created_instance_ids: tuple[str, ...] = (),
        created_security_group_ids: tuple[str, ...] = (),
    ) -> None:
        super().__init__(message)
        self.created_instance_ids = created_instance_ids
        self.created_security_group_ids = created_security_group_ids


class DestroyTimeoutError(ProviderAPIError):
    """Termination was requested but not confirmed within the timeout."""

    retryable = True

    def __init__(self, resource_id: str, timeout: float) -> None:
        super().__init__(
            f"timed out after {timeout:.0f}s waiting for {resource_id} to terminate"
        )
        self.resource_id = resource_id
        self.timeout = timeout


class NotFoundError(WNIError):
    """The provider does not know the resource (already gone or never existed)."""

    def __init__(self, resource_id: str) -> None:
        super().__init__(f"{resource_id} not found")
        self.resource_id = resource_id


class SecurityGroupInUseError(WNIError):
    """The security group is still referenced by a live instance."""

    def __init__(self, group_id: str) -> None:
        super().__init__(f"security group {group_id} is still in use")
        self.group_id = group_id


class PartiallyAppliedError(WNIError):
    """A cloud resource exists but could not be recorded in the ledger."""

    def __init__(self, resource_id: str, cause: BaseException) -> None:
        super().__init__(
            f"{resource_id} was created but could not be tracked: {cause}. "
            "Delete it manually to avoid an orphaned resource"
        )
        self.resource_id = resource_id


class AggregateDestroyError(WNIError):
    """Collects every per-ID failure of a bulk destroy."""

    def __init__(self, failures: Mapping[str, BaseException]) -> None:
        self.failures = dict(failures)
        details = "; ".join(f"{rid}: {err}" for rid, err in self.failures.items())
        super().__init__(f"failed to destroy {len(self.failures)} resource(s): {details}")

    @property
    def failed_ids(self) -> tuple[str, ...]:
        return tuple(self.failures)

    @property
    def retryable(self) -> bool:
        return all(getattr(err, "retryable", False) for err in self.failures.values())
