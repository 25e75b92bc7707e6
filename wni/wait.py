"""Bounded polling for cloud resources that settle asynchronously."""

from __future__ import annotations

from collections.abc import Callable

from tenacity import (
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_delay,
    wait_fixed,
)


class _NotReadyError(Exception):
    """Resource not ready yet - retry."""


def wait_for_ready[T](
    poll_fn: Callable[[], T | None],
    ready_check: Callable[[T], bool],
    *,
    timeout: float,
    interval: float = 5.0,
    description: str = "resource",
) -> T:
    """Poll until ``poll_fn`` returns something that passes ``ready_check``.

    Args:
        poll_fn: Returns the current resource state, or None if not visible yet.
        ready_check: Returns True when the resource is ready.
        timeout: Maximum time to wait in seconds.
        interval: Time between polls in seconds.
        description: Description for error messages.

    Returns:
        The ready resource.

    Raises:
        TimeoutError: If the timeout elapses first.
    """

    @retry(
        stop=stop_after_delay(timeout),
        wait=wait_fixed(interval),
        retry=retry_if_exception_type(_NotReadyError),
    )
    def _poll() -> T:
        result = poll_fn()
        if result is None or not ready_check(result):
            raise _NotReadyError()
        return result

    try:
        return _poll()
    except RetryError:
        raise TimeoutError(f"Timeout waiting for {description} after {timeout:.1f}s") from None
